"""Tests for CLI argument handling."""

import contextlib
import importlib.util
import io
import json
import os
import sys
import tempfile
import unittest
from unittest import mock

import numpy as np

from helpers import gradient_png, png_bytes, read_zip

HAS_CV2 = importlib.util.find_spec("cv2") is not None
HAS_SCIPY = importlib.util.find_spec("scipy") is not None


def _run_cli(*argv):
    """Run the CLI and return (exit code, stdout)."""
    from LabBrew import cli

    out = io.StringIO()
    code = 0
    with mock.patch.object(sys, "argv", ["LabBrew", *argv]):
        with mock.patch("LabBrew.cli.setup_logging"):
            with contextlib.redirect_stdout(out):
                try:
                    cli.main()
                except SystemExit as e:
                    code = e.code
    return code, out.getvalue()


def _write(path, data):
    with open(path, "wb") as f:
        f.write(data)
    return path


class TestCLI(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def test_no_command_exits_with_help(self):
        code, out = _run_cli()
        self.assertEqual(code, 1)
        self.assertIn("usage:", out)

    def test_generate_config(self):
        dest = os.path.join(self.tmpdir, "labbrew.yaml")
        code, _ = _run_cli("--config", dest, "--generate-config")
        self.assertEqual(code, 0)
        self.assertTrue(os.path.isfile(dest))

    def test_missing_config_file(self):
        code, out = _run_cli("--config", os.path.join(self.tmpdir, "nope.yaml"),
                             "analyze", "x.png")
        self.assertEqual(code, 1)
        self.assertIn("Config file not found", out)

    def test_missing_input(self):
        code, out = _run_cli("analyze", os.path.join(self.tmpdir, "missing.png"))
        self.assertEqual(code, 1)
        self.assertIn("Input file not found", out)

    def test_validate_invalid_texture(self):
        arr = np.full((4, 4, 4), (200, 245, 0, 0), dtype=np.uint8)
        path = _write(os.path.join(self.tmpdir, "rock_s.png"), png_bytes(arr))
        code, out = _run_cli("validate", path)
        self.assertEqual(code, 1)
        self.assertIn("INVALID", out)
        self.assertIn("reserved", out)

    def test_validate_with_explicit_kind(self):
        arr = np.full((4, 4, 4), (200, 245, 0, 0), dtype=np.uint8)
        path = _write(os.path.join(self.tmpdir, "rock.png"), png_bytes(arr))
        code, out = _run_cli("validate", path, "--kind", "normal", "--json")
        self.assertEqual(code, 0)
        report = json.loads(out)
        self.assertTrue(report["isValid"])
        self.assertEqual(report["textureFiles"], 1)

    def test_analyze_json(self):
        arr = np.full((4, 4, 4), (255, 231, 0, 255), dtype=np.uint8)
        path = _write(os.path.join(self.tmpdir, "gold_s.png"), png_bytes(arr))
        code, out = _run_cli("analyze", path, "--json")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["topMetalName"], "Gold")

    def test_convert_rejects_bad_settings(self):
        path = _write(os.path.join(self.tmpdir, "stone.png"), b"png")
        code, out = _run_cli("convert", path, "--settings", '{"aoRadius": 4}')
        self.assertEqual(code, 1)
        self.assertIn("aoRadius", out)

    @unittest.skipUnless(HAS_CV2 and HAS_SCIPY, "cv2/scipy not installed")
    def test_convert_to_directory(self):
        path = _write(os.path.join(self.tmpdir, "stone.png"), gradient_png(8, 8))
        out_dir = os.path.join(self.tmpdir, "out")
        os.makedirs(out_dir)
        code, out = _run_cli("convert", path, "-o", out_dir, "-q",
                             "-s", '{"generateHeight": false}')
        self.assertEqual(code, 0)
        dest = os.path.join(out_dir, "stone_labpbr.zip")
        self.assertIn(dest, out)
        with open(dest, "rb") as f:
            files = read_zip(f.read())
        self.assertIn("stone_s.png", files)
        self.assertNotIn("stone_h.png", files)

    @unittest.skipUnless(HAS_CV2 and HAS_SCIPY, "cv2/scipy not installed")
    def test_convert_failure_exits_nonzero(self):
        path = _write(os.path.join(self.tmpdir, "broken.png"), b"not a png")
        code, out = _run_cli("convert", path, "-q", "-o", os.path.join(self.tmpdir, "x.zip"))
        self.assertEqual(code, 1)
        self.assertIn("Error:", out)
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, "x.zip")))


if __name__ == "__main__":
    unittest.main(verbosity=2)
