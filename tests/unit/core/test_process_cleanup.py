"""Tests for process tree termination."""

import subprocess
import sys
import time

import psutil
import pytest

from simfleet.core.process_cleanup import terminate_process_tree


SPAWN_CHILD = (
    "import subprocess, sys, time\n"
    "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
    "time.sleep(30)\n"
)


@pytest.mark.slow
def test_terminates_parent_and_children():
    parent = subprocess.Popen([sys.executable, "-c", SPAWN_CHILD])
    try:
        proc = psutil.Process(parent.pid)
        for _ in range(50):
            if proc.children():
                break
            time.sleep(0.1)
        children = proc.children(recursive=True)

        signalled = terminate_process_tree(parent.pid, timeout=2.0)

        assert signalled == len(children) + 1
        parent.wait(timeout=5)
        for child in children:
            assert not child.is_running() or child.status() == psutil.STATUS_ZOMBIE
    finally:
        if parent.poll() is None:
            parent.kill()
            parent.wait()


def test_missing_process_is_noop(monkeypatch):
    def gone(pid):
        raise psutil.NoSuchProcess(pid)

    monkeypatch.setattr("simfleet.core.process_cleanup.psutil.Process", gone)

    assert terminate_process_tree(999999) == 0
