"""Tests for packaging and pyproject.toml correctness."""

import os
import tomllib
import unittest

_PYPROJECT = os.path.join(os.path.dirname(os.path.dirname(__file__)), "pyproject.toml")


def _load():
    with open(_PYPROJECT, "rb") as f:
        return tomllib.load(f)


class TestPyproject(unittest.TestCase):
    def test_runtime_dependencies(self):
        deps = _load()["project"]["dependencies"]
        for name in ("numpy", "Pillow", "opencv-python-headless", "scipy",
                     "PyYAML", "tqdm", "httpx", "Flask"):
            self.assertTrue(any(d.startswith(name) for d in deps), name)

    def test_no_gpu_or_desktop_stack(self):
        data = _load()["project"]
        everything = list(data["dependencies"])
        for extra in data.get("optional-dependencies", {}).values():
            everything.extend(extra)
        for name in ("torch", "onnxruntime", "PyQt6"):
            self.assertFalse(any(d.startswith(name) for d in everything), name)

    def test_test_extra_has_pytest(self):
        test_deps = _load()["project"]["optional-dependencies"]["test"]
        self.assertTrue(any(d.startswith("pytest") for d in test_deps))

    def test_console_script(self):
        self.assertEqual(_load()["project"]["scripts"]["LabBrew"], "LabBrew.cli:main")


if __name__ == "__main__":
    unittest.main(verbosity=2)
