"""Output path helpers."""

import os
from pathlib import Path, PurePosixPath


def _normalize_rel_path(input_rel_path: str) -> Path:
    """Normalize a relative texture path to a canonical, traversal-free form."""
    raw = str(input_rel_path).replace("\\", "/")
    p = PurePosixPath(raw)
    if p.is_absolute():
        raise ValueError(f"Texture path must be relative, got absolute path: {input_rel_path}")

    parts = []
    for part in p.parts:
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            else:
                raise ValueError(
                    f"Texture path escapes root via '..': {input_rel_path}"
                )
            continue
        parts.append(part)

    if not parts:
        raise ValueError(f"Texture path is empty after normalization: {input_rel_path}")
    return Path(*parts)


def get_output_path(input_rel_path: str, output_dir: str,
                    ext: str = None, suffix: str = "") -> str:
    """Mirror ``input_rel_path`` under ``output_dir`` with a new extension."""
    p = _normalize_rel_path(input_rel_path)
    extension = ext or p.suffix
    if not extension.startswith("."):
        extension = "." + extension
    parent = "" if str(p.parent) == "." else str(p.parent)
    return os.path.join(output_dir, parent, p.stem + suffix + extension)


def mip_level_path(output_path: str, level: int, ext: str = ".png") -> str:
    """Sibling path for one mip level: ``<stem>_mip<level><ext>``.

    Level 0 keeps ``output_path`` itself when its extension matches ``ext``.
    """
    base, current_ext = os.path.splitext(output_path)
    if level == 0 and current_ext.lower() == ext.lower():
        return output_path
    return f"{base}_mip{level}{ext}"
