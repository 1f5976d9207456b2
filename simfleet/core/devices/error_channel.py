"""
User-visible error and notice state.

Both channels hold at most one message and clear it after a fixed display
window. A newer message replaces the older one and restarts the window.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, List, Optional, TypeVar

from simfleet.core.asyncio_utils import cancel_task, create_logged_task
from simfleet.core.logging_utils import get_module_logger
from .errors import (
    ControlError,
    ControlErrorKind,
    DeviceNotFoundError,
    PrivilegedOperationError,
    SimulatorError,
)

logger = get_module_logger("ErrorChannel")

DEFAULT_ERROR_DISPLAY_SECONDS = 3.0
DEFAULT_NOTICE_DISPLAY_SECONDS = 1.0

T = TypeVar("T")


class ErrorCategory(Enum):
    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    PARSE_FAILED = "parse_failed"
    DEVICE_NOT_FOUND = "device_not_found"
    PRIVILEGED_OPERATION_FAILED = "privileged_operation_failed"
    UNEXPECTED = "unexpected"


def categorize(error: BaseException) -> ErrorCategory:
    if isinstance(error, ControlError):
        if error.kind == ControlErrorKind.PARSE_FAILED:
            return ErrorCategory.PARSE_FAILED
        return ErrorCategory.TOOL_EXECUTION_FAILED
    if isinstance(error, DeviceNotFoundError):
        return ErrorCategory.DEVICE_NOT_FOUND
    if isinstance(error, PrivilegedOperationError):
        return ErrorCategory.PRIVILEGED_OPERATION_FAILED
    return ErrorCategory.UNEXPECTED


def describe_error(error: BaseException) -> str:
    if isinstance(error, SimulatorError):
        return error.description
    return f"Unexpected error: {error}"


@dataclass(frozen=True)
class ErrorEvent:
    """One surfaced failure."""
    category: ErrorCategory
    description: str
    operation: str = ""
    raised_at: float = field(default_factory=time.time)


class ExpiringMessage(Generic[T]):
    """
    A single message slot that empties itself after ``display_seconds``.

    Listeners are called with the new value (``None`` once cleared).
    Expiry needs a running event loop; without one the message stays until
    replaced or cleared.
    """

    def __init__(self, display_seconds: float, *, name: str = "message"):
        self.display_seconds = display_seconds
        self._name = name
        self._current: Optional[T] = None
        self._expiry_task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[Optional[T]], None]] = []

    @property
    def current(self) -> Optional[T]:
        return self._current

    def add_listener(self, callback: Callable[[Optional[T]], None]) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[Optional[T]], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self._current)
            except Exception:
                logger.exception("%s listener failed", self._name)

    def _cancel_expiry(self) -> None:
        if self._expiry_task is not None and not self._expiry_task.done():
            self._expiry_task.cancel()
        self._expiry_task = None

    def show(self, value: T) -> None:
        self._cancel_expiry()
        self._current = value
        self._notify()

        if self.display_seconds <= 0:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s will not auto-expire", self._name)
            return
        self._expiry_task = create_logged_task(
            self._expire_after(value, self.display_seconds),
            logger=logger,
            context=f"{self._name}_expiry",
        )

    async def _expire_after(self, value: T, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._current is value:
            self._expiry_task = None
            self._current = None
            self._notify()

    def clear(self) -> None:
        self._cancel_expiry()
        if self._current is not None:
            self._current = None
            self._notify()

    async def close(self) -> None:
        task = self._expiry_task
        self._expiry_task = None
        await cancel_task(task)


class ErrorChannel(ExpiringMessage[ErrorEvent]):
    """Classifies failures into ``ErrorEvent`` and shows the latest one."""

    def __init__(self, display_seconds: float = DEFAULT_ERROR_DISPLAY_SECONDS):
        super().__init__(display_seconds, name="error")

    @property
    def has_error(self) -> bool:
        return self._current is not None

    def report(self, error: BaseException, operation: str = "") -> ErrorEvent:
        event = ErrorEvent(
            category=categorize(error),
            description=describe_error(error),
            operation=operation,
        )
        label = operation or "Operation"
        if event.category == ErrorCategory.UNEXPECTED:
            logger.error("%s failed: %s", label, event.description, exc_info=error)
        else:
            logger.error("%s failed: %s", label, event.description)
        self.show(event)
        return event


class NoticeChannel(ExpiringMessage[str]):
    """Short confirmation notices for direct user actions."""

    def __init__(self, display_seconds: float = DEFAULT_NOTICE_DISPLAY_SECONDS):
        super().__init__(display_seconds, name="notice")

    def notify(self, message: str) -> None:
        logger.debug("Notice: %s", message)
        self.show(message)


__all__ = [
    "ErrorCategory",
    "ErrorEvent",
    "ErrorChannel",
    "NoticeChannel",
    "ExpiringMessage",
    "categorize",
    "describe_error",
    "DEFAULT_ERROR_DISPLAY_SECONDS",
    "DEFAULT_NOTICE_DISPLAY_SECONDS",
]
