"""Read resource pack archives and assemble converted output packs."""

import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from ..config import ArchiveConfig, OUTPUT_SUFFIXES
from ..core.classify import is_texture_file
from ..core.paths import get_output_entry_path, normalize_entry_path
from ..core.records import MaterialMapSet
from ..errors import ProcessingError

logger = logging.getLogger("labpbr_pipeline.archive")


@dataclass(frozen=True)
class ArchiveEntry:
    """One file inside a resource pack."""

    name: str
    path: str
    data: bytes = field(repr=False)
    is_texture: bool = False


def _open_archive(zip_bytes: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(zip_bytes))
    except (zipfile.BadZipFile, ValueError) as e:
        raise ProcessingError(f"Invalid resource pack archive: {e}") from e


def list_entries(zip_bytes: bytes) -> List[ArchiveEntry]:
    """Return every file entry of the archive, classified by extension.

    Directory entries are skipped. Entries whose path escapes the archive
    root are skipped with a warning.
    """
    entries = []
    with _open_archive(zip_bytes) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            try:
                path = normalize_entry_path(info.filename)
            except ValueError as e:
                logger.warning("Skipping unsafe archive entry: %s", e)
                continue
            try:
                data = zf.read(info)
            except (zipfile.BadZipFile, RuntimeError, OSError) as e:
                raise ProcessingError(
                    f"Failed to read archive entry {info.filename}: {e}"
                ) from e
            entries.append(ArchiveEntry(
                name=path.rsplit("/", 1)[-1],
                path=path,
                data=data,
                is_texture=is_texture_file(path),
            ))
    logger.debug("Listed %d archive entries", len(entries))
    return entries


def extract_resource_pack(zip_bytes: bytes) -> List[ArchiveEntry]:
    """Return only the texture entries of a resource pack, in archive order."""
    return [e for e in list_entries(zip_bytes) if e.is_texture]


def pack_mcmeta(config: Optional[ArchiveConfig] = None) -> str:
    cfg = config or ArchiveConfig()
    return json.dumps(
        {"pack": {"pack_format": cfg.pack_format, "description": cfg.description}},
        indent=2,
    )


def build_output_archive(
    outputs: Iterable[Tuple[str, MaterialMapSet]],
    passthrough: Iterable[ArchiveEntry] = (),
    include_mcmeta: bool = True,
    config: Optional[ArchiveConfig] = None,
) -> bytes:
    """Assemble the converted pack.

    ``outputs`` pairs each source entry path with its generated maps; every
    populated map is written next to the source path using its LabPBR suffix.
    ``passthrough`` entries are copied verbatim unless a generated map
    already claimed the same path.
    """
    cfg = config or ArchiveConfig()
    written = set()
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        if include_mcmeta:
            zf.writestr("pack.mcmeta", pack_mcmeta(cfg))
            written.add("pack.mcmeta")

        for source_path, maps in outputs:
            for role, data in maps.populated():
                entry = get_output_entry_path(source_path, OUTPUT_SUFFIXES[role])
                if entry in written:
                    logger.warning("Duplicate output entry %s, keeping the first", entry)
                    continue
                zf.writestr(entry, data)
                written.add(entry)

        for item in passthrough:
            if item.path in written:
                continue
            if not item.is_texture and not cfg.copy_non_textures:
                continue
            zf.writestr(item.path, item.data)
            written.add(item.path)

    logger.debug("Built output archive with %d entries", len(written))
    return buf.getvalue()
