"""Unit test fixtures for isolated, fast test execution.

Reconciler and executor fixtures use short delays and a controllable clock
so timing-dependent behaviour runs in milliseconds.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from simfleet.core.devices.error_channel import ErrorChannel, NoticeChannel
from simfleet.core.devices.operations import OperationExecutor
from simfleet.core.devices.reconciler import FleetReconciler


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_reconciler(fake_gateway, lookup, clock) -> Callable[..., FleetReconciler]:
    """Factory for reconcilers with test-friendly timings.

    Errors never auto-expire unless a test passes its own channel.
    """

    def _make(**overrides: Any) -> FleetReconciler:
        options = dict(
            poll_interval=60.0,
            debounce_delay=0.05,
            cache_ttl=2.0,
            manual_refresh_delay=0.0,
            manual_refresh_timeout=0.2,
            prune_on_start=False,
            probe_device_profiles=False,
            error_channel=ErrorChannel(display_seconds=0),
            notice_channel=NoticeChannel(display_seconds=0),
            clock=clock,
        )
        options.update(overrides)
        gateway = options.pop("gateway", fake_gateway)
        return FleetReconciler(gateway, lookup, **options)

    return _make


@pytest.fixture
def make_executor(fake_gateway) -> Callable[..., OperationExecutor]:
    def _make(reconciler: FleetReconciler, **overrides: Any) -> OperationExecutor:
        options = dict(
            boot_settle_delay=0.0,
            shutdown_settle_delay=0.0,
            delete_settle_delay=0.0,
            open_simulator_on_boot=False,
        )
        options.update(overrides)
        gateway = options.pop("gateway", fake_gateway)
        return OperationExecutor(reconciler, gateway, **options)

    return _make
