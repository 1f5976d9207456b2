"""Operation timing - logs how long monitor operations take and flags slow ones."""

from __future__ import annotations

import contextlib
import itertools
import time
from typing import Dict, Iterator, Optional, Tuple

from .logging_utils import LoggerLike, ensure_structured_logger

DEFAULT_SLOW_THRESHOLD = 2.0


class OperationTimer:
    """
    Tracks operation durations.

    Usage:
        timer = OperationTimer()
        with timer.track("refresh devices"):
            ...

    ``start`` returns a token for ``end``, so two runs of the same operation
    may overlap. A finished operation is logged at DEBUG; one that exceeds
    ``slow_threshold`` seconds is logged as a warning.
    """

    def __init__(self, slow_threshold: float = DEFAULT_SLOW_THRESHOLD, logger: LoggerLike = None):
        self.slow_threshold = slow_threshold
        self.logger = ensure_structured_logger(logger, fallback_name="OperationTimer")
        self._tokens = itertools.count(1)
        self._started: Dict[int, Tuple[str, float]] = {}
        self.last_durations: Dict[str, float] = {}

    @property
    def active_count(self) -> int:
        return len(self._started)

    def start(self, name: str) -> int:
        token = next(self._tokens)
        self._started[token] = (name, time.monotonic())
        self.logger.debug("Operation started: %s", name)
        return token

    def end(self, token: int) -> Optional[float]:
        entry = self._started.pop(token, None)
        if entry is None:
            self.logger.warning("No start time recorded for operation token %s", token)
            return None

        name, started = entry
        duration = time.monotonic() - started
        self.last_durations[name] = duration
        self.logger.debug("Operation finished: %s in %.2fs", name, duration)

        if duration > self.slow_threshold:
            self.logger.warning("Slow operation: %s took %.2fs", name, duration)
        return duration

    @contextlib.contextmanager
    def track(self, name: str) -> Iterator[None]:
        token = self.start(name)
        try:
            yield
        finally:
            self.end(token)


__all__ = ["OperationTimer", "DEFAULT_SLOW_THRESHOLD"]
