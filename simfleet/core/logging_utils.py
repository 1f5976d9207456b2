"""Component-tagged loggers for the simfleet namespace.

Every message logged through a ``StructuredLogger`` starts with the
component name in brackets, e.g. ``[FleetReconciler] Phase idle -> polling``,
so a single rotating log stays readable when several components interleave.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional, Tuple, Union

NAMESPACE = "simfleet"
DEFAULT_COMPONENT = "Core"


def _qualified_name(name: Optional[str]) -> str:
    if not name:
        return NAMESPACE
    if name == NAMESPACE or name.startswith(NAMESPACE + "."):
        return name
    return f"{NAMESPACE}.{name}"


def _component_for(logger_name: str) -> str:
    if logger_name == NAMESPACE:
        return DEFAULT_COMPONENT
    if logger_name.startswith(NAMESPACE + "."):
        return logger_name[len(NAMESPACE) + 1:] or DEFAULT_COMPONENT
    return logger_name or DEFAULT_COMPONENT


def _render(message: object, args: Tuple[Any, ...]) -> str:
    text = str(message)
    if not args:
        return text
    try:
        return text % args
    except (TypeError, ValueError):
        # Keep the message when the format string and arguments disagree
        return f"{text} | args={' '.join(str(arg) for arg in args)}"


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter that tags each message with ``[component]``.

    Formatting happens eagerly (only when the level is enabled) so that a
    bad format string degrades into a readable message instead of a
    logging error.
    """

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        super().__init__(logger, {})
        self.component = component or _component_for(logger.name)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"StructuredLogger({self.logger.name!r}, component={self.component!r})"

    def _tag(self, text: str) -> str:
        prefix = f"[{self.component}]"
        return text if text.startswith(prefix) else f"{prefix} {text}"

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return self._tag(str(msg)), kwargs

    def _emit(self, level: int, msg: object, args: Tuple[Any, ...], kwargs: MutableMapping[str, Any]) -> None:
        if not self.isEnabledFor(level):
            return
        # Two frames (public method + _emit) sit between the caller and Logger.log
        kwargs["stacklevel"] = kwargs.get("stacklevel", 1) + 2
        text, kwargs = self.process(_render(msg, args), kwargs)
        self.logger.log(level, text, **kwargs)

    def log(self, level: int, msg: object, *args: Any, **kwargs: Any) -> None:
        self._emit(level, msg, args, kwargs)

    def debug(self, msg: object, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: object, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.INFO, msg, args, kwargs)

    def warning(self, msg: object, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.WARNING, msg, args, kwargs)

    def error(self, msg: object, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: object, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self._emit(logging.ERROR, msg, args, kwargs)

    def critical(self, msg: object, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.CRITICAL, msg, args, kwargs)

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(self.logger.getChild(suffix), component=f"{self.component}.{suffix}")


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Wrap ``logger`` in a ``StructuredLogger``; ``None`` gets a namespaced one."""
    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.LoggerAdapter):
        return StructuredLogger(logger.logger, component=component)
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(_qualified_name(name)))


__all__ = [
    "LoggerLike",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
    "NAMESPACE",
]
