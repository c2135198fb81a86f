"""Tests for the hosted depth estimator client."""

import unittest

import httpx
import numpy as np

from helpers import png_bytes
from LabBrew.config import DepthConfig, PipelineConfig
from LabBrew.core.buffers import PixelBuffer
from LabBrew.errors import DepthUnavailable
from LabBrew.phases.depth import (
    HuggingFaceDepthEstimator, create_depth_estimator, resize_depth, to_single_channel,
)


def _source():
    return PixelBuffer.from_array(np.full((4, 4, 3), 50, dtype=np.uint8))


def _estimator(handler, **cfg):
    sleeps = []
    client = httpx.Client(transport=httpx.MockTransport(handler))
    est = HuggingFaceDepthEstimator(
        DepthConfig(**cfg), api_key="hf_test", client=client, sleep=sleeps.append,
    )
    return est, sleeps


class TestHuggingFaceDepthEstimator(unittest.TestCase):
    def test_image_response_becomes_single_channel_depth(self):
        seen = {}
        depth_png = png_bytes(np.full((4, 4, 3), 90, dtype=np.uint8))

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = request.content
            return httpx.Response(200, content=depth_png, headers={"content-type": "image/png"})

        est, sleeps = _estimator(handler)
        depth = est.estimate(_source())
        self.assertEqual(depth.channels, 1)
        self.assertEqual((depth.width, depth.height), (4, 4))
        self.assertTrue(np.all(depth.to_array() == 90))
        self.assertEqual(seen["auth"], "Bearer hf_test")
        self.assertTrue(seen["url"].endswith("/jingheya/lotus-depth-g-v1-0"))
        self.assertTrue(seen["body"].startswith(b"\x89PNG"))
        self.assertEqual(sleeps, [])

    def test_busy_model_is_retried_with_capped_wait(self):
        responses = [
            httpx.Response(503, json={"error": "loading", "estimated_time": 120.0}),
            httpx.Response(429, text="slow down"),
            httpx.Response(200, content=png_bytes(np.zeros((2, 2), dtype=np.uint8)),
                           headers={"content-type": "image/png"}),
        ]

        def handler(request):
            return responses.pop(0)

        est, sleeps = _estimator(handler)
        depth = est.estimate(_source())
        self.assertEqual(depth.channels, 1)
        self.assertEqual(sleeps, [30.0, 5.0])

    def test_retries_exhausted(self):
        def handler(request):
            return httpx.Response(503, json={"estimated_time": 1.5})

        est, sleeps = _estimator(handler, max_retries=3)
        with self.assertRaises(DepthUnavailable) as ctx:
            est.estimate(_source())
        self.assertIn("is busy, please try again later", str(ctx.exception))
        self.assertEqual(sleeps, [1.5, 1.5, 1.5])

    def test_non_success_status(self):
        est, _ = _estimator(lambda request: httpx.Response(401, text="bad token"))
        with self.assertRaises(DepthUnavailable) as ctx:
            est.estimate(_source())
        self.assertIn("(401)", str(ctx.exception))
        self.assertIn("bad token", str(ctx.exception))

    def test_json_payload_is_rejected(self):
        est, _ = _estimator(lambda request: httpx.Response(200, json={"error": "model crashed"}))
        with self.assertRaises(DepthUnavailable) as ctx:
            est.estimate(_source())
        self.assertEqual(str(ctx.exception), "model crashed")

    def test_wrong_content_type(self):
        est, _ = _estimator(
            lambda request: httpx.Response(200, text="hello", headers={"content-type": "text/plain"})
        )
        with self.assertRaises(DepthUnavailable):
            est.estimate(_source())

    def test_unreadable_image(self):
        est, _ = _estimator(
            lambda request: httpx.Response(200, content=b"nope", headers={"content-type": "image/png"})
        )
        with self.assertRaises(DepthUnavailable):
            est.estimate(_source())

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        est, _ = _estimator(handler)
        with self.assertRaises(DepthUnavailable):
            est.estimate(_source())

    def test_context_manager_keeps_injected_client_open(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(204)))
        with HuggingFaceDepthEstimator(client=client) as est:
            self.assertFalse(est.is_configured())
        self.assertFalse(client.is_closed)
        client.close()

    def test_owned_client_is_created_up_front_and_closed(self):
        est = HuggingFaceDepthEstimator(api_key="hf_test")
        client = est._client
        self.assertIsInstance(client, httpx.Client)
        self.assertFalse(client.is_closed)
        est.close()
        self.assertTrue(client.is_closed)


class TestDepthHelpers(unittest.TestCase):
    def test_resize_depth(self):
        depth = PixelBuffer.from_array(np.full((2, 2), 7, dtype=np.uint8))
        out = resize_depth(depth, 6, 4)
        self.assertEqual((out.width, out.height, out.channels), (6, 4, 1))
        self.assertTrue(np.all(out.to_array() == 7))
        self.assertIs(resize_depth(out, 6, 4), out)

    def test_resize_depth_reduces_color_to_luminance(self):
        depth = PixelBuffer.from_array(np.full((4, 4, 3), (255, 0, 0), dtype=np.uint8))
        same_size = resize_depth(depth, 4, 4)
        self.assertEqual(same_size.channels, 1)
        self.assertTrue(np.all(same_size.to_array() == 54))
        self.assertEqual(resize_depth(depth, 8, 8).channels, 1)

    def test_to_single_channel(self):
        gray = PixelBuffer.from_array(np.full((2, 2), 7, dtype=np.uint8))
        self.assertIs(to_single_channel(gray), gray)
        pair = PixelBuffer.from_array(np.full((2, 2, 2), (9, 200), dtype=np.uint8))
        self.assertTrue(np.all(to_single_channel(pair).to_array() == 9))

    def test_factory_disabled_by_default(self):
        self.assertIsNone(create_depth_estimator(PipelineConfig()))

    def test_factory_requires_api_key(self):
        config = PipelineConfig()
        config.height.use_depth_estimator = True
        config.depth.api_key_env = "LABBREW_TEST_UNSET_KEY"
        self.assertIsNone(create_depth_estimator(config))

    def test_factory_builds_estimator(self):
        from unittest import mock
        config = PipelineConfig()
        config.height.use_depth_estimator = True
        with mock.patch.dict("os.environ", {"HUGGING_FACE_API_KEY": "hf_x"}):
            est = create_depth_estimator(config)
        self.assertIsInstance(est, HuggingFaceDepthEstimator)
        self.assertTrue(est.is_configured())
        est.close()


if __name__ == "__main__":
    unittest.main(verbosity=2)
