"""Synthesize tangent-space normal maps from depth/height buffers.

Green-channel convention
------------------------
Output normals follow the DirectX (Y-) convention by default, which is what
LabPBR 1.3 expects: the vertical gradient is negated before encoding, so a
surface rising towards +y (down the image) produces a green value below 128.
Set ``normal.green_convention: opengl`` to keep the gradient sign as-is.

Encoding
--------
For every pixel, with ``s`` the (floor-clamped) strength::

    nx = clip(dx / 255 * s, -1, 1)
    ny = clip(dy / 255 * s, -1, 1)        # negated for DirectX
    nz = sqrt(max(0, 1 - nx^2 - ny^2))
    R, G, B = round((nx + 1) * 127.5), round((ny + 1) * 127.5), round(nz * 255)

Gradients sample with edge clamping (no wraparound). A perfectly flat
buffer therefore encodes to (128, 128, 255) everywhere.
"""

import logging
from typing import Optional, Union

import cv2
import numpy as np

from ..config import NormalConfig
from ..core.buffers import PixelBuffer, luminance

logger = logging.getLogger("labpbr_pipeline.normal_gen")

_CENTRAL_X = np.array([[-1.0, 0.0, 1.0]], dtype=np.float32)
_CENTRAL_Y = _CENTRAL_X.T.copy()


def _as_height_array(depth: Union[PixelBuffer, np.ndarray]) -> np.ndarray:
    """Reduce a depth input to a 2D float32 array on the 0-255 scale."""
    if isinstance(depth, PixelBuffer):
        depth = depth.to_array()
    if depth.ndim == 3:
        if depth.shape[2] == 1:
            depth = depth[:, :, 0]
        else:
            depth = luminance(depth)
    return np.ascontiguousarray(depth, dtype=np.float32)


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


class NormalMapSynthesizer:
    """Turn a single-channel depth buffer into an encoded RGB normal map."""

    def __init__(self, config: Optional[NormalConfig] = None):
        self.cfg = config or NormalConfig()

    def gradients(self, height: np.ndarray):
        """Return (dx, dy) using the configured kernel with clamped borders."""
        if self.cfg.kernel == "sobel":
            dx = cv2.Sobel(height, cv2.CV_32F, 1, 0, ksize=3,
                           borderType=cv2.BORDER_REPLICATE)
            dy = cv2.Sobel(height, cv2.CV_32F, 0, 1, ksize=3,
                           borderType=cv2.BORDER_REPLICATE)
        else:
            # filter2D correlates, so [-1, 0, 1] yields h[x+1] - h[x-1].
            dx = cv2.filter2D(height, cv2.CV_32F, _CENTRAL_X,
                              borderType=cv2.BORDER_REPLICATE)
            dy = cv2.filter2D(height, cv2.CV_32F, _CENTRAL_Y,
                              borderType=cv2.BORDER_REPLICATE)
        return dx, dy

    def synthesize(self, depth: Union[PixelBuffer, np.ndarray],
                   strength: float = 1.0) -> np.ndarray:
        """Return an (H, W, 3) uint8 normal map for ``depth``."""
        height = _as_height_array(depth)
        h, w = height.shape
        if h == 0 or w == 0:
            return np.zeros((h, w, 3), dtype=np.uint8)

        s = max(float(strength), self.cfg.min_strength)
        dx, dy = self.gradients(height)
        nx = np.clip(dx / 255.0 * s, -1.0, 1.0)
        ny = np.clip(dy / 255.0 * s, -1.0, 1.0)
        if self.cfg.green_convention == "directx":
            ny = -ny
        nz = np.sqrt(np.maximum(0.0, 1.0 - nx * nx - ny * ny))

        encoded = np.stack([(nx + 1.0) * 127.5, (ny + 1.0) * 127.5, nz * 255.0], axis=-1)
        if not np.all(np.isfinite(encoded)):
            logger.warning("Found NaN/Inf in normal map, replacing with flat normals")
            encoded = np.where(np.isfinite(encoded), encoded, [127.5, 127.5, 255.0])
        logger.debug(
            "Synthesized %dx%d normal map (kernel=%s, strength=%.2f, green=%s)",
            w, h, self.cfg.kernel, s, self.cfg.green_convention,
        )
        return _round_half_up(encoded)


def synthesize_normal_map(depth: Union[PixelBuffer, np.ndarray], strength: float = 1.0,
                          config: Optional[NormalConfig] = None) -> PixelBuffer:
    """Synthesize a normal map and return it as a 3-channel PixelBuffer."""
    arr = NormalMapSynthesizer(config).synthesize(depth, strength)
    return PixelBuffer.from_array(arr)
