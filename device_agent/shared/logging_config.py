"""
Logging setup for the agent process.
"""

import logging
from pathlib import Path
from typing import Optional

from ..config import LoggingSettings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are noisy at DEBUG
_QUIET_LOGGERS = ("websockets", "asyncio")


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.strip().upper() or "INFO")
    if isinstance(value, int):
        return value
    if level.strip().lower() == "warn":
        return logging.WARNING
    raise ValueError(f"Unknown log level: {level!r}")


def configure_logging(settings: Optional[LoggingSettings] = None, debug: bool = False) -> None:
    """
    Configure root logging once at startup.

    Args:
        settings: Level and optional log file
        debug: Force DEBUG level regardless of settings
    """
    settings = settings or LoggingSettings()
    level = logging.DEBUG if debug else _parse_level(settings.level)

    handlers = [logging.StreamHandler()]
    if settings.file:
        path = Path(settings.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))


__all__ = ["LOG_FORMAT", "configure_logging"]
