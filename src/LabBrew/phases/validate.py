"""Validate packed specular and normal textures against the LabPBR 1.3 contract.

Each rule reports at most one issue, taken from the first offending pixel in
row-major order, with the number of offending pixels in the message. Decode
failures never escape `ChannelValidator.validate_bytes`; they come back as a
single error issue.
"""

import logging
from typing import List, Optional, Union

import numpy as np

from ..config import TextureKind, ValidationConfig
from ..core.buffers import PixelBuffer, decode_image
from ..core.catalog import ALBEDO_METAL_CODE, DIELECTRIC_MAX, GREEN_METAL_CODES
from ..core.records import IssueLevel, ValidationIssue, ValidationResult
from ..errors import DecodeError

logger = logging.getLogger("labpbr_pipeline.validator")

SPEC_VERSION = "1.3"
_LAST_METAL_CODE = max(GREEN_METAL_CODES)


def is_power_of_two(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


def _first_value(channel: np.ndarray, mask: np.ndarray) -> int:
    return int(channel[np.argmax(mask)])


def _plural(count: int, word: str = "pixel") -> str:
    return f"{count} {word}" + ("" if count == 1 else "s")


class ChannelValidator:
    """Check decoded pixels against the LabPBR channel semantics."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.cfg = config or ValidationConfig()

    def validate_bytes(self, data: bytes,
                       kind: Union[TextureKind, str] = TextureKind.UNKNOWN,
                       max_pixels: int = 0) -> ValidationResult:
        """Decode and validate encoded image bytes."""
        try:
            buf = decode_image(data, max_pixels=max_pixels)
        except DecodeError as e:
            logger.warning("Validation decode failed: %s", e)
            return ValidationResult(
                issues=(ValidationIssue(
                    level=IssueLevel.ERROR,
                    message=f"Failed to validate texture: {e}",
                    suggestion="Check if the file is a valid image",
                ),),
                spec_version=SPEC_VERSION,
            )
        return self.validate_pixels(buf, kind)

    def validate_pixels(self, buf: PixelBuffer,
                        kind: Union[TextureKind, str] = TextureKind.UNKNOWN) -> ValidationResult:
        """Validate an already-decoded buffer."""
        kind = TextureKind(kind) if not isinstance(kind, TextureKind) else kind
        issues: List[ValidationIssue] = []

        if self.cfg.recommend_png and buf.source_format and buf.source_format.upper() != "PNG":
            issues.append(ValidationIssue(
                level=IssueLevel.WARNING,
                message="Texture should be in PNG format for best compatibility",
                suggestion="Convert to PNG format",
            ))

        if self.cfg.check_power_of_two and buf.width and buf.height:
            if not (is_power_of_two(buf.width) and is_power_of_two(buf.height)):
                issues.append(ValidationIssue(
                    level=IssueLevel.WARNING,
                    message=(
                        "Texture dimensions should be power of 2 for optimal performance "
                        f"(got {buf.width}x{buf.height})"
                    ),
                    suggestion="Consider resizing to nearest power of 2 dimensions",
                ))

        arr = buf.to_array()
        check_specular = kind == TextureKind.SPECULAR or (
            kind == TextureKind.UNKNOWN and self.cfg.unknown_kind_as_specular
        )
        if check_specular and buf.channels >= 3 and buf.pixel_count:
            issues.extend(self._check_specular(arr))
        if kind == TextureKind.NORMAL and buf.pixel_count:
            issues.extend(self._check_normal(arr))

        result = ValidationResult(issues=tuple(issues), spec_version=SPEC_VERSION)
        logger.debug(
            "Validated %dx%dx%d %s texture: %d issue(s), valid=%s",
            buf.width, buf.height, buf.channels, kind.value, len(issues), result.is_valid,
        )
        return result

    def _check_specular(self, arr: np.ndarray) -> List[ValidationIssue]:
        issues = []
        green = arr[:, :, 1].ravel()
        blue = arr[:, :, 2].ravel()

        # Green: 0-229 dielectric F0, 230-237 metal codes, 255 albedo F0.
        reserved = (green > _LAST_METAL_CODE) & (green < ALBEDO_METAL_CODE)
        count = int(np.count_nonzero(reserved))
        if count:
            value = _first_value(green, reserved)
            issues.append(ValidationIssue(
                level=IssueLevel.ERROR,
                message=(
                    f"Invalid F0 value range detected: {value} is reserved "
                    f"({_plural(count)} in 238-254)"
                ),
                channel="green",
                value=value,
                suggestion="F0 values should be 0-229 for dielectrics, 230-237 for "
                           "predefined metals or 255 for albedo-based metals",
            ))

        # Blue is reserved on metals.
        metal_blue = (green > DIELECTRIC_MAX) & (blue != 0)
        count = int(np.count_nonzero(metal_blue))
        if count:
            value = _first_value(blue, metal_blue)
            issues.append(ValidationIssue(
                level=IssueLevel.WARNING,
                message=(
                    "Blue channel should be 0 for metals in LabPBR v1.3 "
                    f"({_plural(count)} affected)"
                ),
                channel="blue",
                value=value,
                suggestion="Set blue channel to 0 for metal materials",
            ))

        if arr.shape[2] >= 4:
            alpha = arr[:, :, 3].ravel()
            count = int(np.count_nonzero(alpha == 255))
            if count:
                issues.append(ValidationIssue(
                    level=IssueLevel.ERROR,
                    message=f"Emission value of 255 will be ignored ({_plural(count)})",
                    channel="alpha",
                    value=255,
                    suggestion="Use emission values 0-254, where 254 is 100% emissive",
                ))
        return issues

    def _check_normal(self, arr: np.ndarray) -> List[ValidationIssue]:
        issues = []
        channels = arr.shape[2]
        sample = arr.reshape(-1, channels)[: self.cfg.normal_sample_size]

        if channels >= 2:
            nx = sample[:, 0].astype(np.float64) / 255.0 * 2.0 - 1.0
            ny = sample[:, 1].astype(np.float64) / 255.0 * 2.0 - 1.0
            nz = np.sqrt(np.maximum(0.0, 1.0 - nx * nx - ny * ny))
            length = np.sqrt(nx * nx + ny * ny + nz * nz)
            if np.any(np.abs(length - 1.0) > self.cfg.normal_length_tolerance):
                issues.append(ValidationIssue(
                    level=IssueLevel.WARNING,
                    message="Normal vectors may not be properly normalized",
                    suggestion="Ensure normal map is generated correctly",
                ))

        if channels >= 3 and sample.shape[0] > 0:
            if np.all(sample[:, 2] == sample[0, 2]):
                issues.append(ValidationIssue(
                    level=IssueLevel.INFO,
                    message="Blue channel appears to be unused",
                    channel="blue",
                    value=int(sample[0, 2]),
                    suggestion="Consider storing ambient occlusion in the blue channel",
                ))

        if channels >= 4:
            zero_height = sample[:, 3] == 0
            if np.any(zero_height):
                issues.append(ValidationIssue(
                    level=IssueLevel.WARNING,
                    message="Height map contains value 0 which may cause POM issues",
                    channel="alpha",
                    value=0,
                    suggestion="Use minimum value of 1 instead of 0 for height maps",
                ))
        return issues


def validate_texture(data: bytes, kind: Union[TextureKind, str] = TextureKind.UNKNOWN,
                     config: Optional[ValidationConfig] = None) -> ValidationResult:
    """Convenience wrapper around `ChannelValidator.validate_bytes`."""
    return ChannelValidator(config).validate_bytes(data, kind)
