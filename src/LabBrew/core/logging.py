"""Logging setup for the conversion service."""

import logging
import logging.handlers
import os
import threading

logger = logging.getLogger("labpbr_pipeline")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [T%(thread)d]: %(message)s"
# 10 MB max per log file, keep 3 rotated backups
_LOG_MAX_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 3
_setup_lock = threading.Lock()


def _resolve_level(level: str) -> int:
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        logger.warning("Invalid log level '%s', defaulting to INFO", level)
        return logging.INFO
    return numeric_level


def _file_handler(log_file: str) -> logging.Handler:
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging(level: str = "INFO", log_file: str = None, force: bool = False) -> int:
    """Configure logging without clobbering host-app handlers by default.

    When the root logger already has handlers (embedded in a host app or a
    WSGI server), only the ``labpbr_pipeline`` hierarchy is touched.
    Returns the numeric level that was applied.
    """
    with _setup_lock:
        numeric_level = _resolve_level(level)
        root = logging.getLogger()
        if force or not root.handlers:
            handlers = [logging.StreamHandler()]
            if log_file:
                handlers.append(_file_handler(log_file))
            logging.basicConfig(
                level=numeric_level, format=LOG_FORMAT,
                handlers=handlers, force=force,
            )
            logger.debug("Logging initialised (force=%s, handlers=%d)", force, len(handlers))
            return numeric_level

        logger.setLevel(numeric_level)
        if log_file:
            target = os.path.abspath(log_file)
            existing = {
                getattr(h, "baseFilename", None)
                for h in logger.handlers
                if isinstance(h, logging.FileHandler)
            }
            if target not in existing:
                logger.info("Adding file handler: %s", target)
                logger.addHandler(_file_handler(log_file))
        return numeric_level
