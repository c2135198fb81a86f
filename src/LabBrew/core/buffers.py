"""Pixel buffers and in-memory image decode/encode helpers."""

import io
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image

from ..errors import DecodeError

# Pixel-count limits are enforced per call in decode_image() after the header
# is read, so Pillow's global decompression bomb check is disabled.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("labpbr_pipeline.buffers")


@dataclass(frozen=True)
class PixelBuffer:
    """Decoded 8-bit raster, row-major and channel-interleaved."""

    width: int
    height: int
    channels: int
    data: bytes
    source_format: Optional[str] = None

    def __post_init__(self) -> None:
        """Reject buffers whose byte length disagrees with their shape."""
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"PixelBuffer dimensions must be >= 0, got {self.width}x{self.height}"
            )
        if self.channels not in (1, 2, 3, 4):
            raise ValueError(f"PixelBuffer channels must be 1-4, got {self.channels}")
        expected = self.width * self.height * self.channels
        if len(self.data) != expected:
            raise ValueError(
                f"PixelBuffer byte length {len(self.data)} does not match "
                f"{self.width}x{self.height}x{self.channels} = {expected}"
            )

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def to_array(self) -> np.ndarray:
        """Return a read-only (H, W, C) uint8 view of the pixel data."""
        arr = np.frombuffer(self.data, dtype=np.uint8)
        return arr.reshape(self.height, self.width, self.channels)

    @classmethod
    def from_array(cls, arr: np.ndarray,
                   source_format: Optional[str] = None) -> "PixelBuffer":
        """Build a buffer from an (H, W) or (H, W, C) array in [0, 255]."""
        if arr.ndim == 2:
            arr = arr[:, :, None]
        if arr.ndim != 3:
            raise ValueError(f"Expected HxW or HxWxC array, got shape {arr.shape}")
        if arr.dtype != np.uint8:
            arr = np.clip(np.floor(arr.astype(np.float32) + 0.5), 0, 255).astype(np.uint8)
        h, w, c = arr.shape
        return cls(
            width=w, height=h, channels=c,
            data=np.ascontiguousarray(arr).tobytes(),
            source_format=source_format,
        )


def _normalize_mode(img: Image.Image) -> Image.Image:
    """Convert any Pillow mode into L, LA, RGB, or RGBA."""
    if img.mode in ("L", "LA", "RGB", "RGBA"):
        return img
    if img.mode in ("I;16", "I;16B", "I;16L", "I;16N", "I"):
        logger.debug("Reducing %s image to 8-bit grayscale", img.mode)
        arr = np.asarray(img, dtype=np.float64)
        max_value = 65535.0 if img.mode.startswith("I;16") or arr.max() > 255 else 255.0
        arr = np.clip(arr / max_value * 255.0 + 0.5, 0, 255).astype(np.uint8)
        return Image.fromarray(arr, mode="L")
    if img.mode == "F":
        arr = np.asarray(img, dtype=np.float32)
        scale = 255.0 if float(arr.max(initial=0.0)) <= 1.0 else 1.0
        arr = np.clip(arr * scale + 0.5, 0, 255).astype(np.uint8)
        return Image.fromarray(arr, mode="L")
    if img.mode == "P":
        has_alpha = "transparency" in img.info
        logger.debug("Converting palette image to %s", "RGBA" if has_alpha else "RGB")
        return img.convert("RGBA" if has_alpha else "RGB")
    if img.mode in ("PA", "RGBa", "La"):
        return img.convert("RGBA")
    logger.debug("Converting %s image to RGB", img.mode)
    return img.convert("RGB")


def decode_image(data: bytes, max_pixels: int = 0) -> PixelBuffer:
    """Decode encoded image bytes into a PixelBuffer.

    Raises DecodeError for anything Pillow cannot read, or when the image
    exceeds ``max_pixels`` (0 disables the limit).
    """
    if not data:
        raise DecodeError("Image data is empty")
    try:
        with Image.open(io.BytesIO(data)) as img:
            if max_pixels > 0 and img.width * img.height > max_pixels:
                raise DecodeError(
                    f"Image too large: {img.width}x{img.height} = "
                    f"{img.width * img.height:,} pixels (max {max_pixels:,})."
                )
            fmt = img.format
            img.load()
            img = _normalize_mode(img)
            arr = np.asarray(img, dtype=np.uint8)
    except DecodeError:
        raise
    except Exception as e:
        raise DecodeError(f"Failed to decode image: {e}") from e
    return PixelBuffer.from_array(arr, source_format=fmt)


def encode_png(image) -> bytes:
    """Encode a PixelBuffer or uint8 array as PNG bytes."""
    arr = image.to_array() if isinstance(image, PixelBuffer) else image
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.dtype != np.uint8:
        arr = np.clip(np.floor(arr.astype(np.float32) + 0.5), 0, 255).astype(np.uint8)
    out = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(arr)).save(out, format="PNG")
    return out.getvalue()


def luminance(arr: np.ndarray) -> np.ndarray:
    """Return BT.709 luminance in [0, 255] as float32 (alpha is ignored)."""
    if arr.ndim == 2:
        return arr.astype(np.float32, copy=False)
    channels = arr.shape[2]
    if channels <= 2:
        return arr[:, :, 0].astype(np.float32)
    rgb = arr[:, :, :3].astype(np.float32)
    return (
        0.2126 * rgb[:, :, 0] +
        0.7152 * rgb[:, :, 1] +
        0.0722 * rgb[:, :, 2]
    ).astype(np.float32, copy=False)


def to_rgba(arr: np.ndarray) -> np.ndarray:
    """Promote an (H, W, C) uint8 array to RGBA.

    Grayscale is replicated across RGB; a missing alpha channel is filled
    with 255.
    """
    h, w, c = arr.shape
    if c == 4:
        return arr
    out = np.empty((h, w, 4), dtype=np.uint8)
    if c in (1, 2):
        out[:, :, :3] = arr[:, :, :1]
    else:
        out[:, :, :3] = arr[:, :, :3]
    out[:, :, 3] = arr[:, :, 1] if c == 2 else 255
    return out
