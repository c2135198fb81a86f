"""Core utilities -- re-exports all public symbols for convenience."""

from .buffers import PixelBuffer, decode_image, encode_png, luminance, to_rgba
from .records import (
    ConversionJob,
    JobStatus,
    IssueLevel,
    MaterialMapSet,
    ProcessingLog,
    ProcessingStatus,
    TextureFileRecord,
    ValidationIssue,
    ValidationResult,
    utc_now_iso,
)
from .classify import classify_texture, is_texture_file, validation_kind_for
from .paths import normalize_entry_path, get_output_entry_path
from .logging import setup_logging

__all__ = [
    "PixelBuffer", "decode_image", "encode_png", "luminance", "to_rgba",
    "ConversionJob", "JobStatus", "IssueLevel", "MaterialMapSet",
    "ProcessingLog", "ProcessingStatus", "TextureFileRecord",
    "ValidationIssue", "ValidationResult", "utc_now_iso",
    "classify_texture", "is_texture_file", "validation_kind_for",
    "normalize_entry_path", "get_output_entry_path",
    "setup_logging",
]
