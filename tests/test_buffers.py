"""Tests for pixel buffers and image decode/encode."""

import unittest

import numpy as np

from helpers import png_bytes
from LabBrew.core.buffers import PixelBuffer, decode_image, encode_png, luminance, to_rgba
from LabBrew.errors import DecodeError


class TestPixelBuffer(unittest.TestCase):
    def test_length_must_match_shape(self):
        with self.assertRaises(ValueError):
            PixelBuffer(2, 2, 3, b"\x00" * 11)
        with self.assertRaises(ValueError):
            PixelBuffer(1, 1, 5, b"\x00" * 5)
        with self.assertRaises(ValueError):
            PixelBuffer(-1, 1, 1, b"")
        self.assertEqual(PixelBuffer(0, 0, 4, b"").pixel_count, 0)

    def test_from_array_rounds_half_up(self):
        buf = PixelBuffer.from_array(np.array([[0.5, 1.49, 254.6, 300.0]], dtype=np.float32))
        self.assertEqual(list(buf.to_array()[0, :, 0]), [1, 1, 255, 255])
        self.assertEqual(buf.channels, 1)

    def test_to_array_shape(self):
        arr = np.arange(24, dtype=np.uint8).reshape(2, 3, 4)
        buf = PixelBuffer.from_array(arr)
        self.assertEqual((buf.width, buf.height, buf.channels), (3, 2, 4))
        np.testing.assert_array_equal(buf.to_array(), arr)


class TestDecodeEncode(unittest.TestCase):
    def test_decode_png(self):
        arr = np.full((3, 5, 4), (1, 2, 3, 4), dtype=np.uint8)
        buf = decode_image(png_bytes(arr))
        self.assertEqual(buf.source_format, "PNG")
        np.testing.assert_array_equal(buf.to_array(), arr)

    def test_decode_errors(self):
        with self.assertRaises(DecodeError):
            decode_image(b"")
        with self.assertRaises(DecodeError):
            decode_image(b"garbage")
        with self.assertRaises(DecodeError) as ctx:
            decode_image(png_bytes(np.zeros((4, 4), dtype=np.uint8)), max_pixels=15)
        self.assertIn("too large", str(ctx.exception))

    def test_encode_single_channel_as_grayscale(self):
        buf = PixelBuffer.from_array(np.full((2, 2), 42, dtype=np.uint8))
        decoded = decode_image(encode_png(buf))
        self.assertEqual(decoded.channels, 1)
        self.assertTrue(np.all(decoded.to_array() == 42))


class TestChannelHelpers(unittest.TestCase):
    def test_luminance_weights(self):
        arr = np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255]]], dtype=np.uint8)
        lum = luminance(arr)
        np.testing.assert_allclose(lum[0], [0.2126 * 255, 0.7152 * 255, 0.0722 * 255], rtol=1e-5)

    def test_luminance_ignores_alpha(self):
        arr = np.full((1, 1, 4), (10, 10, 10, 0), dtype=np.uint8)
        self.assertAlmostEqual(float(luminance(arr)[0, 0]), 10.0, places=4)

    def test_to_rgba(self):
        gray = np.full((1, 1, 1), 7, dtype=np.uint8)
        np.testing.assert_array_equal(to_rgba(gray)[0, 0], [7, 7, 7, 255])
        gray_alpha = np.array([[[7, 9]]], dtype=np.uint8)
        np.testing.assert_array_equal(to_rgba(gray_alpha)[0, 0], [7, 7, 7, 9])
        rgb = np.array([[[1, 2, 3]]], dtype=np.uint8)
        np.testing.assert_array_equal(to_rgba(rgb)[0, 0], [1, 2, 3, 255])


if __name__ == "__main__":
    unittest.main(verbosity=2)
