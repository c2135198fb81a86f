"""Texture classification by file extension and LabPBR filename suffix."""

import logging
from pathlib import PurePosixPath

from ..config import TextureRole, TextureKind, TEXTURE_PATTERNS, TEXTURE_EXTENSIONS

logger = logging.getLogger("labpbr_pipeline.classify")


def is_texture_file(filepath: str) -> bool:
    """Return whether the path carries one of the recognised texture extensions."""
    return PurePosixPath(filepath.replace("\\", "/")).suffix.lower() in TEXTURE_EXTENSIONS


def classify_texture(filepath: str) -> TextureRole:
    """Classify a texture's LabPBR role from its filename suffix.

    Uses longest-match suffix strategy; names without a recognised
    suffix are base (albedo) textures.
    """
    name = PurePosixPath(filepath.replace("\\", "/")).stem.lower()
    best_role = TextureRole.BASE
    best_len = 0
    for role, patterns in TEXTURE_PATTERNS.items():
        for pattern in patterns:
            if name.endswith(pattern) and len(pattern) > best_len:
                best_len = len(pattern)
                best_role = role
    logger.debug("Classified %s as %s", filepath, best_role.value)
    return best_role


def validation_kind_for(role: TextureRole) -> TextureKind:
    """Map a texture role onto the kind the channel validator understands."""
    if role == TextureRole.NORMAL:
        return TextureKind.NORMAL
    if role == TextureRole.SPECULAR:
        return TextureKind.SPECULAR
    return TextureKind.UNKNOWN
