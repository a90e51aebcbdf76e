"""Recursive texture discovery."""

import logging
import os
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger("mipforge")

DEFAULT_SUPPORTED_FORMATS = (".png", ".jpg", ".jpeg", ".tga", ".bmp")


def scan_textures(input_dir: str,
                  supported_formats: Iterable[str] = DEFAULT_SUPPORTED_FORMATS) -> List[str]:
    """Return sorted paths (relative to ``input_dir``) of supported rasters.

    Files reached through symlinks that resolve outside ``input_dir`` are
    skipped. Decoding is left to the converter, so corrupt files are still
    listed and fail individually.
    """
    if not os.path.isdir(input_dir):
        raise FileNotFoundError(f"Input directory not found: {input_dir}")

    supported = {ext.lower() for ext in supported_formats}
    input_root_real = os.path.realpath(input_dir)
    found = []

    for root, dirs, files in os.walk(input_dir):
        dirs.sort()
        for fname in sorted(files):
            if Path(fname).suffix.lower() not in supported:
                continue
            fpath = os.path.join(root, fname)
            real_fpath = os.path.realpath(fpath)
            # Guard against symlink/path escapes outside input_dir.
            try:
                if os.path.commonpath([input_root_real, real_fpath]) != input_root_real:
                    logger.warning(
                        "Skipping file outside input root via symlink/path traversal: %s",
                        fpath,
                    )
                    continue
            except ValueError:
                logger.warning("Skipping file with incompatible path root: %s", fpath)
                continue
            found.append(os.path.relpath(fpath, input_dir))

    logger.info("Found %d texture(s) in %s", len(found), input_dir)
    return found
