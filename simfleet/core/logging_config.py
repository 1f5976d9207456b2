"""Root logging setup for the monitor process."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 500 * 1024
LOG_BACKUP_COUNT = 2
QUIET_LOGGERS = ("asyncio",)

_configured = False


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level '{level}'")
    return numeric


def _build_handlers(
    level: int,
    console: bool,
    log_file: Optional[Path],
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        )

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def _quiet(names: Iterable[str]) -> None:
    for name in names:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
    quiet_loggers: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """Install the stdout and rotating-file handlers on the root logger.

    A second call only adjusts the level unless ``force`` is set, in which
    case existing root handlers are closed and rebuilt.

    Raises:
        ValueError: ``level`` is not a known level name.
    """
    global _configured
    numeric_level = _coerce_level(level)
    root = logging.getLogger()
    quiet = tuple(quiet_loggers)

    if _configured and not force:
        root.setLevel(numeric_level)
        _quiet(quiet)
        return

    for handler in list(root.handlers):
        root.removeHandler(handler)
        try:
            handler.close()
        except (OSError, ValueError):
            pass

    path = Path(log_file).expanduser() if log_file else None
    for handler in _build_handlers(numeric_level, console, path, max_bytes, backup_count):
        root.addHandler(handler)

    if not root.handlers:
        root.addHandler(logging.NullHandler())

    root.setLevel(numeric_level)
    _quiet(quiet)
    _configured = True


__all__ = ["configure_logging", "LOG_FORMAT", "LOG_DATEFMT"]
