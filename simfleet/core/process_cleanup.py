"""Cleanup helpers for control-tool processes that outlive their deadline.

``xcrun`` spawns the real tool as a child process, so killing only the
direct child on timeout can leave the tool running. These helpers
terminate the whole tree.
"""

from typing import List

import psutil

from simfleet.core.logging_utils import get_module_logger

logger = get_module_logger("ProcessCleanup")


def _collect_tree(pid: int) -> List[psutil.Process]:
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []

    try:
        children = root.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        children = []
    return children + [root]


def terminate_process_tree(pid: int, timeout: float = 1.0) -> int:
    """Terminate ``pid`` and all of its descendants.

    Processes get ``timeout`` seconds to exit after SIGTERM before they are
    force-killed.

    Returns:
        Number of processes signalled
    """
    procs = _collect_tree(pid)
    if not procs:
        return 0

    signalled = 0
    for proc in procs:
        try:
            proc.terminate()
            signalled += 1
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    gone, alive = psutil.wait_procs(procs, timeout=timeout)
    if gone:
        logger.debug("Terminated %d tool process(es)", len(gone))

    for proc in alive:
        try:
            logger.warning("Force killing unresponsive tool process: pid=%d", proc.pid)
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    if alive:
        psutil.wait_procs(alive, timeout=timeout)

    return signalled


__all__ = ["terminate_process_tree"]
