"""Background task helpers.

Fire-and-forget tasks in the reconciler and executor go through
``create_logged_task`` so a failure is logged when it happens, not as a
"Task exception was never retrieved" warning at interpreter exit.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Coroutine, Optional, Set

from .logging_utils import LoggerLike, ensure_structured_logger


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[Set["asyncio.Task[Any]"]] = None,
) -> "asyncio.Task[Any]":
    """Schedule ``coro`` on the running loop and log any exception it raises.

    ``context`` names the task in log lines. When ``pending`` is given the
    task is added to it and removed again once done.
    """
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")
    task = asyncio.get_running_loop().create_task(coro, name=context)

    def _report(done: "asyncio.Task[Any]") -> None:
        if done.cancelled():
            return
        error = done.exception()
        if error is not None:
            task_logger.error(
                "Unhandled exception in %s", context or done.get_name(),
                exc_info=(type(error), error, error.__traceback__),
            )

    task.add_done_callback(_report)
    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)
    return task


async def cancel_task(task: Optional["asyncio.Task[Any]"]) -> None:
    """Cancel ``task`` and wait for it to unwind; ``None`` or finished tasks are ignored."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


__all__ = ["create_logged_task", "cancel_task"]
