"""Depth estimation through a hosted inference model.

The estimator posts a PNG of the source image and expects an image back.
Rate-limit and model-loading responses (HTTP 429/503) are retried after the
server-suggested ``estimated_time`` (capped); everything else that is not a
2xx image response fails with `DepthUnavailable`.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import cv2
import httpx
import numpy as np

from ..config import DepthConfig
from ..core.buffers import PixelBuffer, decode_image, encode_png, luminance
from ..errors import DecodeError, DepthUnavailable

logger = logging.getLogger("labpbr_pipeline.depth")

_RETRY_STATUSES = {429, 503}


class DepthEstimator(ABC):
    """Capability that turns an image into a single-channel depth buffer."""

    @abstractmethod
    def estimate(self, image: PixelBuffer) -> PixelBuffer:
        """Return a 1-channel depth buffer, or raise DepthUnavailable."""

    def close(self):
        """Release any resources held by the estimator."""


def to_single_channel(buf: PixelBuffer) -> PixelBuffer:
    """Reduce a depth buffer to one channel (luminance for RGB input)."""
    arr = buf.to_array()
    if buf.channels == 1:
        return buf
    if buf.channels == 2:
        return PixelBuffer.from_array(arr[:, :, 0])
    return PixelBuffer.from_array(luminance(arr))


class HuggingFaceDepthEstimator(DepthEstimator):
    """Depth estimator backed by the Hugging Face inference API."""

    def __init__(self, config: Optional[DepthConfig] = None, api_key: str = "",
                 client: Optional[httpx.Client] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.cfg = config or DepthConfig()
        self.api_key = (api_key or "").strip()
        self._owns_client = client is None
        if client is None:
            client = httpx.Client(timeout=httpx.Timeout(self.cfg.timeout_seconds))
        self._client = client
        self._sleep = sleep

    @property
    def url(self) -> str:
        return f"{self.cfg.endpoint.rstrip('/')}/{self.cfg.model}"

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def close(self):
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _wait_seconds(self, response: httpx.Response) -> float:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        estimated = payload.get("estimated_time") if isinstance(payload, dict) else None
        if isinstance(estimated, (int, float)) and not isinstance(estimated, bool) and estimated > 0:
            return min(float(estimated), self.cfg.max_wait_seconds)
        return self.cfg.default_wait_seconds

    def estimate(self, image: PixelBuffer) -> PixelBuffer:
        headers = {"Content-Type": "image/png", "Accept": "image/png"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = encode_png(image)

        for attempt in range(self.cfg.max_retries):
            try:
                response = self._client.post(self.url, content=body, headers=headers)
            except httpx.HTTPError as exc:
                raise DepthUnavailable(f"Depth request failed: {exc}") from exc

            if response.status_code in _RETRY_STATUSES:
                wait = self._wait_seconds(response)
                logger.warning(
                    "Depth model busy (HTTP %s), retrying in %.1fs (attempt %d/%d)",
                    response.status_code, wait, attempt + 1, self.cfg.max_retries,
                )
                self._sleep(wait)
                continue

            if not response.is_success:
                detail = response.text.strip()[:240] or response.reason_phrase
                raise DepthUnavailable(
                    f"Depth request failed ({response.status_code}): {detail}"
                )

            content_type = response.headers.get("content-type", "").lower()
            if "application/json" in content_type:
                try:
                    payload = response.json()
                except ValueError:
                    payload = {}
                message = payload.get("error") if isinstance(payload, dict) else None
                raise DepthUnavailable(
                    message or "Unexpected JSON response from depth model"
                )
            if not content_type.startswith("image/"):
                raise DepthUnavailable(
                    "Depth model returned unexpected content type: "
                    f"{content_type or 'unknown'}"
                )
            try:
                depth = decode_image(response.content)
            except DecodeError as exc:
                raise DepthUnavailable(f"Depth model returned an unreadable image: {exc}") from exc
            logger.debug("Depth estimated: %dx%d", depth.width, depth.height)
            return to_single_channel(depth)

        raise DepthUnavailable(
            f"Model {self.cfg.model} is busy, please try again later"
        )


def resize_depth(depth: PixelBuffer, width: int, height: int) -> PixelBuffer:
    """Resize a depth buffer to (width, height) as a single channel."""
    depth = to_single_channel(depth)
    if depth.width == width and depth.height == height:
        return depth
    arr = depth.to_array()[:, :, 0]
    resized = cv2.resize(arr, (width, height), interpolation=cv2.INTER_LINEAR)
    return PixelBuffer.from_array(np.asarray(resized, dtype=np.uint8))


def create_depth_estimator(config) -> Optional[DepthEstimator]:
    """Build the configured depth estimator, or None when it is disabled.

    ``config`` is a `PipelineConfig`. A missing API key disables the
    estimator with a warning rather than failing every job later.
    """
    if not config.height.use_depth_estimator:
        return None
    api_key = config.depth_api_key()
    if not api_key:
        logger.warning(
            "Depth estimator enabled but %s is not set; using luminance height.",
            config.depth.api_key_env,
        )
        return None
    return HuggingFaceDepthEstimator(config.depth, api_key=api_key)
