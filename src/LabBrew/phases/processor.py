"""Derive LabPBR material maps from a single source image.

Produces base color, a packed LabPBR specular texture, height, normal, and
ambient occlusion. Every step is independent and side-effect free given its
inputs; maps whose generation flag is off come back as empty bytes.

**Important**: height, normal and AO are luminance-based approximations
unless a depth buffer is supplied (directly or through a depth estimator).
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np
from scipy.ndimage import gaussian_filter

from ..config import ConversionSettings, PipelineConfig
from ..core.buffers import PixelBuffer, decode_image, encode_png, luminance
from ..core.records import MaterialMapSet
from ..errors import DepthUnavailable, InvalidDimensions, LabBrewError, ProcessingError
from .depth import DepthEstimator, resize_depth
from .normal import NormalMapSynthesizer

logger = logging.getLogger("labpbr_pipeline.processor")


@dataclass(frozen=True)
class StageResult:
    """Outcome of one pipeline stage: a value or an error, never both."""

    value: Any = None
    error: Optional[LabBrewError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.value


def _to_uint8(arr: np.ndarray) -> np.ndarray:
    return np.clip(np.floor(arr + 0.5), 0, 255).astype(np.uint8)


class TextureProcessor:
    """Generate a `MaterialMapSet` from one source image and a settings record."""

    def __init__(self, config: Optional[PipelineConfig] = None,
                 depth_estimator: Optional[DepthEstimator] = None):
        self.config = config or PipelineConfig()
        self.depth_estimator = depth_estimator
        self.normals = NormalMapSynthesizer(self.config.normal)

    def process(self, source: Union[bytes, PixelBuffer],
                settings: ConversionSettings,
                depth: Optional[PixelBuffer] = None) -> StageResult:
        """Run `process_image` and capture the failure as a StageResult."""
        try:
            return StageResult(value=self.process_image(source, settings, depth))
        except LabBrewError as e:
            return StageResult(error=e)
        except Exception as e:
            logger.error("Texture processing failed: %s", e, exc_info=True)
            return StageResult(error=ProcessingError(str(e)))

    def process_image(self, source: Union[bytes, PixelBuffer],
                      settings: ConversionSettings,
                      depth: Optional[PixelBuffer] = None) -> MaterialMapSet:
        """Produce all requested maps for one source image.

        Raises DecodeError for undecodable bytes, InvalidDimensions for an
        image without width or height, and DepthUnavailable when the depth
        estimator fails.
        """
        if isinstance(source, PixelBuffer):
            buf = source
        else:
            buf = decode_image(source, max_pixels=self.config.max_image_pixels)
        if buf.width == 0 or buf.height == 0:
            raise InvalidDimensions(
                f"Source image has no usable dimensions ({buf.width}x{buf.height})"
            )

        arr = buf.to_array()
        gray = luminance(arr)

        needs_depth = settings.generate_height or settings.generate_normal
        if depth is None and needs_depth and self.depth_estimator is not None:
            depth = self._estimate_depth(buf)
        if depth is not None:
            depth = resize_depth(depth, buf.width, buf.height)

        maps = {}
        if settings.generate_base_color:
            maps["base_color"] = encode_png(self.base_color(arr, settings.base_color_contrast))
        if settings.generate_roughness:
            maps["specular"] = encode_png(self.specular(gray, settings))
        if settings.generate_height:
            maps["height"] = encode_png(self.height(gray, settings.height_depth, depth))
        if settings.generate_normal:
            source_height = depth if depth is not None else gray
            maps["normal"] = encode_png(
                self.normals.synthesize(source_height, settings.normal_strength)
            )
        if settings.generate_ao:
            maps["ao"] = encode_png(self.ao(gray, settings.ao_radius))

        result = MaterialMapSet(**maps)
        logger.debug(
            "Processed %dx%d source into %d map(s) (depth=%s)",
            buf.width, buf.height, result.count, depth is not None,
        )
        return result

    def _estimate_depth(self, buf: PixelBuffer) -> PixelBuffer:
        try:
            return self.depth_estimator.estimate(buf)
        except DepthUnavailable:
            raise
        except Exception as e:
            raise DepthUnavailable(f"Depth estimation failed: {e}") from e

    @staticmethod
    def base_color(arr: np.ndarray, contrast: float) -> np.ndarray:
        """Apply linear contrast around 128 to the color channels, keeping alpha."""
        out = arr.astype(np.float32)
        color = out.shape[2] if out.shape[2] in (1, 3) else out.shape[2] - 1
        out[:, :, :color] = (out[:, :, :color] - 128.0) * contrast + 128.0
        return _to_uint8(out)

    def specular(self, gray: np.ndarray, settings: ConversionSettings) -> np.ndarray:
        """Pack roughness into an RGBA LabPBR specular texture.

        R holds perceptual smoothness (255 - roughness); G, B and A take
        the configured dielectric F0, porosity and emission defaults.
        """
        roughness = 255.0 - gray if settings.roughness_invert else gray
        roughness = roughness * settings.roughness_intensity
        spec_cfg = self.config.specular
        h, w = gray.shape
        out = np.empty((h, w, 4), dtype=np.uint8)
        out[:, :, 0] = _to_uint8(255.0 - roughness)
        out[:, :, 1] = spec_cfg.default_f0
        out[:, :, 2] = spec_cfg.default_porosity
        out[:, :, 3] = spec_cfg.default_emission
        return out

    def height(self, gray: np.ndarray, height_depth: float,
               depth: Optional[PixelBuffer] = None) -> np.ndarray:
        """Return the depth buffer, or blurred luminance scaled by ``height_depth``."""
        if depth is not None:
            return depth.to_array()[:, :, 0]
        sigma = self.config.height.blur_sigma
        blurred = gaussian_filter(gray, sigma=sigma) if sigma > 0 else gray
        return _to_uint8(blurred * height_depth)

    def ao(self, gray: np.ndarray, ao_radius: float) -> np.ndarray:
        """Blur luminance by a radius derived from ``ao_radius`` and darken it."""
        radius = max(1, int(np.floor(ao_radius * self.config.ao.radius_scale + 0.5)))
        blurred = gaussian_filter(gray, sigma=radius)
        return _to_uint8(blurred * self.config.ao.brightness)
