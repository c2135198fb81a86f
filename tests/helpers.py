"""Image and archive builders shared by the test modules."""

import io
import zipfile

import numpy as np
from PIL import Image


def png_bytes(arr, fmt="PNG"):
    """Encode a uint8 array (H, W) or (H, W, C) as image bytes."""
    out = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(arr, dtype=np.uint8)).save(out, format=fmt)
    return out.getvalue()


def gradient_png(width=16, height=16):
    """Return PNG bytes of a horizontal RGB gradient."""
    row = np.linspace(0, 255, width, dtype=np.float32)
    gray = np.tile(row, (height, 1)).astype(np.uint8)
    return png_bytes(np.stack([gray, gray, gray], axis=-1))


def zip_bytes(entries):
    """Build an in-memory zip from {path: bytes}."""
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as zf:
        for path, data in entries.items():
            zf.writestr(path, data)
    return out.getvalue()


def read_zip(data):
    """Return {path: bytes} for every file in a zip."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}
