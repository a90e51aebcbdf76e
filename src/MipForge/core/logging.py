"""Logging setup for MipForge."""

import logging
import logging.handlers
import os
import threading

logger = logging.getLogger("mipforge")

# 10 MB max per log file, keep 3 rotated backups
_LOG_MAX_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 3
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [T%(thread)d]: %(message)s"
_setup_lock = threading.Lock()


def _resolve_level(level: str) -> int:
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        logger.warning("Invalid log level '%s', defaulting to INFO", level)
        return logging.INFO
    return numeric_level


def setup_logging(level: str = "INFO", log_file: str = None, force: bool = False):
    """Configure logging without clobbering host-app handlers by default.

    When the root logger already has handlers (embedded use), only the
    ``mipforge`` logger level is changed and the optional file handler is
    attached to it.
    """
    with _setup_lock:
        numeric_level = _resolve_level(level)
        file_handler = None
        if log_file:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUP_COUNT,
                encoding="utf-8",
            )

        root = logging.getLogger()
        if force or not root.handlers:
            handlers = [logging.StreamHandler()]
            if file_handler is not None:
                handlers.append(file_handler)
            logging.basicConfig(
                level=numeric_level, format=_LOG_FORMAT, handlers=handlers, force=force,
            )
            logger.debug("Logging initialized (level=%s, file=%s)", level, log_file)
            return

        logger.setLevel(numeric_level)
        if file_handler is None:
            return
        existing_files = {
            getattr(h, "baseFilename", None)
            for h in logger.handlers
            if isinstance(h, logging.FileHandler)
        }
        if file_handler.baseFilename in existing_files:
            file_handler.close()
            return
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(file_handler)
        logger.info("Adding file handler: %s", file_handler.baseFilename)
