"""Logging setup for the long-lived process and CLI commands."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from volumelink.config import LoggingSettings

_HANDLER_NAME = "volumelink-file"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(settings: LoggingSettings, *, log_path: Path | None = None) -> Path | None:
    """Attach a size-bounded rotating file handler to the ``volumelink`` logger.

    Calling this again replaces the handler installed by a previous call.

    Args:
        settings: Logging section of the configuration.
        log_path: Override for ``settings.path``.

    Returns:
        Path | None: Log file in use, or ``None`` if it could not be opened.
    """
    logger = logging.getLogger("volumelink")
    level = logging.getLevelName(settings.level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)

    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()

    path = (log_path or Path(settings.path)).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=max(1, int(settings.max_size_mb * 1024 * 1024)),
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
    except OSError as exc:
        logger.warning("Unable to open log file %s: %s", path, exc)
        return None

    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_FORMAT, _DATE_FORMAT))
    logger.addHandler(handler)
    return path


__all__ = ["configure_logging"]
