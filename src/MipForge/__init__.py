"""Provide package metadata and shared paths for `MipForge`."""

import logging as _logging
import os as _os
from pathlib import Path as _Path

__version__ = "0.3.0"
_logger = _logging.getLogger("mipforge")


def _bin_dir_candidates():
    env = _os.environ.get("MipForge_BIN_DIR")
    if env:
        yield _Path(env).expanduser()

    pkg_dir = _Path(__file__).resolve().parent
    # Wheel/package-data layout (if bundled).
    yield pkg_dir / "bin"
    # Editable/repo layout: src/MipForge -> project_root/bin.
    yield pkg_dir.parent.parent / "bin"
    yield _Path.cwd() / "bin"


def _resolve_bin_dir() -> _Path:
    for candidate in _bin_dir_candidates():
        if candidate.is_dir():
            return candidate
    # Encoders also look on PATH, so a missing bin/ is only worth a debug line.
    fallback = _Path(__file__).resolve().parent / "bin"
    _logger.debug("No bundled tool directory found; using %s", fallback)
    return fallback


BIN_DIR = _resolve_bin_dir()

__all__ = ["__version__", "BIN_DIR"]
