"""Archive entry path helpers."""

from pathlib import PurePosixPath


def normalize_entry_path(entry_path: str) -> str:
    """Normalize an archive entry path to a canonical, traversal-free form."""
    raw = str(entry_path).replace("\\", "/")
    p = PurePosixPath(raw)
    if p.is_absolute() or (len(raw) >= 2 and raw[1] == ":"):
        raise ValueError(f"Archive path must be relative, got absolute path: {entry_path}")

    parts = []
    for part in p.parts:
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            else:
                raise ValueError(
                    f"Archive path escapes root via '..': {entry_path}"
                )
            continue
        parts.append(part)

    if not parts:
        raise ValueError(f"Archive path is empty after normalization: {entry_path}")
    return "/".join(parts)


def get_output_entry_path(entry_path: str, suffix: str = "", ext: str = ".png") -> str:
    """Return the archive path for a generated map next to its source entry."""
    p = PurePosixPath(normalize_entry_path(entry_path))
    name = p.stem + suffix + ext
    return name if str(p.parent) == "." else f"{p.parent}/{name}"
