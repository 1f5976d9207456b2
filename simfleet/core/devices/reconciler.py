"""
Fleet reconciler - owns the published device state.

The reconciler polls the control tool on a fixed interval, suppresses
publications when nothing meaningful changed, and overlays optimistic
patches from in-flight user commands on top of the last confirmed snapshot.

It is the only writer of the confirmed snapshot, the pending patches and the
cache timestamp. Everything runs on one event loop; tool calls go to worker
threads through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    FrozenSet,
    List,
    Optional,
    Set,
    Tuple,
)

from simfleet.core.asyncio_utils import cancel_task, create_logged_task
from simfleet.core.logging_utils import get_module_logger
from simfleet.core.operation_timer import OperationTimer
from .error_channel import ErrorCategory, ErrorChannel, ErrorEvent, NoticeChannel
from .errors import DeviceNotFoundError
from .gateway import SimctlGateway
from .metadata import DeviceMetadataLookup
from .models import Device, DeviceGroup, FleetSnapshot, StateValue, state_label
from .snapshot import build_snapshot_from_devices, enrich_device, has_meaningful_change

logger = get_module_logger("FleetReconciler")


class ReconcilerPhase(Enum):
    INITIALIZING = "initializing"
    POLLING = "polling"
    IDLE = "idle"
    OPERATING = "operating"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PendingPatch:
    """An optimistic device state not yet confirmed by a refresh."""
    device_id: str
    state: StateValue
    issued_at: float
    settled_at: Optional[float] = None   # When the tool command finished

    def is_superseded_by(self, refresh_started_at: float) -> bool:
        return self.settled_at is not None and refresh_started_at >= self.settled_at


@dataclass(frozen=True)
class FleetState:
    """Everything an observer renders. Replaced wholesale on every publication."""
    snapshot: FleetSnapshot = field(default_factory=FleetSnapshot)
    is_loading: bool = True
    has_initial_load_completed: bool = False
    last_error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    notice: Optional[str] = None

    @property
    def device_groups(self) -> Tuple[DeviceGroup, ...]:
        return self.snapshot.groups

    @property
    def devices(self) -> Tuple[Device, ...]:
        return self.snapshot.devices

    @property
    def has_error(self) -> bool:
        return self.last_error is not None


FleetObserver = Callable[[FleetState], None]


def apply_patches(snapshot: FleetSnapshot, patches: Dict[str, PendingPatch]) -> FleetSnapshot:
    """Overlay patch states on the flat list and on every group copy."""
    if not patches:
        return snapshot

    def patched(device: Device) -> Device:
        patch = patches.get(device.id)
        if patch is None or device.state == patch.state:
            return device
        return replace(device, state=patch.state)

    groups = tuple(
        replace(group, devices=tuple(patched(d) for d in group.devices))
        for group in snapshot.groups
    )
    return FleetSnapshot(groups=groups, devices=tuple(patched(d) for d in snapshot.devices))


class FleetReconciler:
    """
    Polls the device-control tool and publishes ``FleetState``.

    Usage:
        reconciler = FleetReconciler(gateway, lookup, poll_interval=5.0)
        reconciler.add_observer(render)
        await reconciler.start()
        # ... later ...
        await reconciler.stop()
    """

    DEFAULT_POLL_INTERVAL = 5.0
    DEFAULT_DEBOUNCE_DELAY = 0.5
    DEFAULT_CACHE_TTL = 2.0
    DEFAULT_MANUAL_REFRESH_DELAY = 0.1
    DEFAULT_MANUAL_REFRESH_TIMEOUT = 2.0

    def __init__(
        self,
        gateway: SimctlGateway,
        lookup: DeviceMetadataLookup,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        manual_refresh_delay: float = DEFAULT_MANUAL_REFRESH_DELAY,
        manual_refresh_timeout: float = DEFAULT_MANUAL_REFRESH_TIMEOUT,
        show_all_runtimes: bool = False,
        prune_on_start: bool = True,
        probe_device_profiles: bool = True,
        error_channel: Optional[ErrorChannel] = None,
        notice_channel: Optional[NoticeChannel] = None,
        timer: Optional[OperationTimer] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._gateway = gateway
        self._lookup = lookup
        self._poll_interval = poll_interval
        self._debounce_delay = debounce_delay
        self._cache_ttl = cache_ttl
        self._manual_refresh_delay = manual_refresh_delay
        self._manual_refresh_timeout = manual_refresh_timeout
        self._show_all_runtimes = show_all_runtimes
        self._prune_on_start = prune_on_start
        self._probe_device_profiles = probe_device_profiles
        self._clock = clock
        self._timer = timer or OperationTimer(logger=logger)

        self._errors = error_channel or ErrorChannel()
        self._notices = notice_channel or NoticeChannel()
        self._errors.add_listener(self._on_error_changed)
        self._notices.add_listener(self._on_notice_changed)

        # Confirmed state: only refreshes write these
        self._confirmed = FleetSnapshot()
        self._cached_devices: Optional[Tuple[Device, ...]] = None
        self._installed_runtimes: FrozenSet[str] = frozenset()
        self._last_fetch: Optional[float] = None
        self._patches: Dict[str, PendingPatch] = {}

        self._is_loading = True
        self._has_initial_load_completed = False
        self._state = FleetState()
        self._observers: List[FleetObserver] = []

        self._phase = ReconcilerPhase.INITIALIZING
        self._operation_count = 0
        self._running = False
        self._refresh_lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._pending_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Published surface

    @property
    def state(self) -> FleetState:
        return self._state

    @property
    def snapshot(self) -> FleetSnapshot:
        return self._state.snapshot

    @property
    def device_groups(self) -> Tuple[DeviceGroup, ...]:
        return self._state.device_groups

    @property
    def devices(self) -> Tuple[Device, ...]:
        return self._state.devices

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def has_initial_load_completed(self) -> bool:
        return self._state.has_initial_load_completed

    @property
    def phase(self) -> ReconcilerPhase:
        return self._phase

    @property
    def is_operating(self) -> bool:
        return self._operation_count > 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def confirmed_snapshot(self) -> FleetSnapshot:
        return self._confirmed

    @property
    def pending_patches(self) -> Dict[str, PendingPatch]:
        return dict(self._patches)

    @property
    def last_fetch_at(self) -> Optional[float]:
        return self._last_fetch

    @property
    def error_channel(self) -> ErrorChannel:
        return self._errors

    @property
    def notice_channel(self) -> NoticeChannel:
        return self._notices

    @property
    def timer(self) -> OperationTimer:
        return self._timer

    def find_device(self, device_id: str) -> Optional[Device]:
        return self._state.snapshot.find_device(device_id)

    def find_group(self, runtime_key: str) -> Optional[DeviceGroup]:
        return self._state.snapshot.find_group(runtime_key)

    def add_observer(self, callback: FleetObserver) -> None:
        if callback not in self._observers:
            self._observers.append(callback)

    def remove_observer(self, callback: FleetObserver) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def report_error(self, error: BaseException, operation: str = "") -> ErrorEvent:
        return self._errors.report(error, operation)

    def notify(self, message: str) -> None:
        """Show a one-shot confirmation notice."""
        self._notices.notify(message)

    def _publish(self) -> None:
        error = self._errors.current
        notice = self._notices.current
        new_state = FleetState(
            snapshot=apply_patches(self._confirmed, self._patches),
            is_loading=self._is_loading,
            has_initial_load_completed=self._has_initial_load_completed,
            last_error=error.description if error else None,
            error_category=error.category if error else None,
            notice=notice,
        )
        if new_state == self._state:
            return
        self._state = new_state

        for callback in list(self._observers):
            try:
                callback(new_state)
            except Exception:
                logger.exception("Fleet observer failed")

    def _on_error_changed(self, _event: Optional[ErrorEvent]) -> None:
        self._publish()

    def _on_notice_changed(self, _notice: Optional[str]) -> None:
        self._publish()

    def _set_phase(self, phase: ReconcilerPhase) -> None:
        if phase != self._phase:
            logger.debug("Phase %s -> %s", self._phase.value, phase.value)
            self._phase = phase

    def _settle_phase(self) -> None:
        if self._phase == ReconcilerPhase.STOPPED:
            return
        self._set_phase(ReconcilerPhase.OPERATING if self.is_operating else ReconcilerPhase.IDLE)

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> None:
        """Prune stale devices, load the first snapshot and start polling."""
        if self._running:
            return
        self._running = True
        self._set_phase(ReconcilerPhase.INITIALIZING)

        if self._prune_on_start:
            try:
                await asyncio.to_thread(self._gateway.prune_unavailable)
                logger.info("Pruned unavailable devices")
            except Exception as exc:
                self._errors.report(exc, "Prune unavailable devices")

        if self._probe_device_profiles:
            try:
                await self._lookup.refresh(self._gateway)
            except Exception as exc:
                self._errors.report(exc, "Load device metadata")

        await self.refresh()

        self._poll_task = create_logged_task(
            self._poll_loop(),
            logger=logger,
            context="fleet_poll_loop",
        )
        logger.info("Fleet reconciler started (poll every %.1fs)", self._poll_interval)

    async def stop(self) -> None:
        self._running = False

        await cancel_task(self._poll_task)
        self._poll_task = None
        await cancel_task(self._debounce_task)
        self._debounce_task = None
        await cancel_task(self._watchdog_task)
        self._watchdog_task = None
        for task in list(self._pending_tasks):
            await cancel_task(task)

        await self._errors.close()
        await self._notices.close()
        self._set_phase(ReconcilerPhase.STOPPED)
        logger.info("Fleet reconciler stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._poll_interval)
            self._on_timer_tick()

    def _on_timer_tick(self) -> None:
        if self.is_operating:
            logger.debug("Skipping poll while a command is in flight")
            return
        self.request_poll()

    def request_poll(self) -> asyncio.Task:
        """Schedule a poll after the debounce delay, replacing any poll still waiting."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()

        self._debounce_task = create_logged_task(
            self._debounced_poll(),
            logger=logger,
            context="debounced_poll",
            pending=self._pending_tasks,
        )
        return self._debounce_task

    async def _debounced_poll(self) -> None:
        await asyncio.sleep(self._debounce_delay)
        # From here on the poll runs to completion; a new request schedules another
        self._debounce_task = None
        if self.is_operating:
            logger.debug("Dropping debounced poll while a command is in flight")
            return
        await self.refresh()

    # ------------------------------------------------------------------
    # Refresh

    def _cache_is_fresh(self) -> bool:
        if self._cached_devices is None or self._last_fetch is None:
            return False
        return self._clock() - self._last_fetch < self._cache_ttl

    def _finish_load(self) -> None:
        self._is_loading = False
        self._has_initial_load_completed = True
        self._publish()

    async def refresh(self, *, bypass_cache: bool = False) -> bool:
        """Fetch the fleet unless the cache is still fresh.

        Returns True when a changed snapshot was published.
        """
        if not bypass_cache and self._cache_is_fresh():
            self._finish_load()
            return False

        async with self._refresh_lock:
            if not bypass_cache and self._cache_is_fresh():
                self._finish_load()
                return False
            return await self._fetch_and_reconcile()

    async def force_refresh(self) -> bool:
        """Drop the cache and fetch unconditionally."""
        self._last_fetch = None
        self._cached_devices = None
        return await self.refresh(bypass_cache=True)

    async def manual_refresh(self) -> None:
        """User-triggered refresh: loading shows at once and clears within the timeout."""
        self._is_loading = True
        self._publish()

        if self._watchdog_task is not None and not self._watchdog_task.done():
            self._watchdog_task.cancel()
        self._watchdog_task = create_logged_task(
            self._loading_watchdog(self._manual_refresh_timeout),
            logger=logger,
            context="loading_watchdog",
        )

        await asyncio.sleep(self._manual_refresh_delay)
        await self.refresh()

    async def _loading_watchdog(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self._is_loading:
            logger.warning("Refresh still running after %.1fs; clearing loading state", timeout)
            self._is_loading = False
            self._publish()

    async def _fetch_installed_runtimes(self) -> FrozenSet[str]:
        if not self._show_all_runtimes:
            return frozenset()
        runtimes = await asyncio.to_thread(self._gateway.list_runtimes)
        return frozenset(r.identifier for r in runtimes if r.is_available)

    async def _fetch_and_reconcile(self) -> bool:
        started_at = self._clock()
        if self._phase in (ReconcilerPhase.IDLE, ReconcilerPhase.INITIALIZING):
            self._set_phase(ReconcilerPhase.POLLING)

        try:
            with self._timer.track("refresh devices"):
                raw_devices, installed = await asyncio.gather(
                    asyncio.to_thread(self._gateway.list_devices),
                    self._fetch_installed_runtimes(),
                )
        except Exception as exc:
            self._errors.report(exc, "Refresh devices")
            self._settle_phase()
            self._finish_load()
            return False

        candidates = [enrich_device(raw, self._lookup) for raw in raw_devices]
        changed = (
            self._cached_devices is None
            or installed != self._installed_runtimes
            or has_meaningful_change(self._cached_devices, candidates)
        )
        if changed:
            self._confirmed = build_snapshot_from_devices(candidates, installed)
            self._installed_runtimes = installed
            self._cached_devices = self._confirmed.devices
            logger.debug("Fleet changed: %d devices in %d groups", len(candidates), len(self._confirmed.groups))

        self._reconcile_patches(started_at)
        self._last_fetch = self._clock()
        self._settle_phase()
        self._finish_load()
        return changed

    # ------------------------------------------------------------------
    # Optimistic patches

    def apply_patch(self, device_id: str, state: StateValue) -> PendingPatch:
        """Show ``state`` for ``device_id`` immediately, before any tool call.

        Raises:
            DeviceNotFoundError: the device is not in the published fleet.
        """
        if self._confirmed.find_device(device_id) is None:
            raise DeviceNotFoundError(device_id)

        patch = PendingPatch(device_id=device_id, state=state, issued_at=self._clock())
        self._patches[device_id] = patch
        logger.debug("Optimistic %s for %s", state_label(state), device_id)
        self._publish()
        return patch

    def settle_patch(self, patch: PendingPatch) -> None:
        """Record that the tool command behind ``patch`` has finished."""
        current = self._patches.get(patch.device_id)
        if current is not patch:
            return
        self._patches[patch.device_id] = replace(patch, settled_at=self._clock())

    def _reconcile_patches(self, refresh_started_at: float) -> None:
        kept: Dict[str, PendingPatch] = {}
        for device_id, patch in self._patches.items():
            device = self._confirmed.find_device(device_id)
            if device is None:
                continue
            if device.state == patch.state:
                continue
            if patch.is_superseded_by(refresh_started_at):
                logger.debug(
                    "Refresh superseded optimistic %s for %s (now %s)",
                    state_label(patch.state), device_id, device.state_label,
                )
                continue
            kept[device_id] = patch
        self._patches = kept

    # ------------------------------------------------------------------
    # Command bracketing

    @contextlib.asynccontextmanager
    async def operation(self, name: str) -> AsyncIterator[None]:
        """Mark a user command in flight; timer polls are skipped meanwhile."""
        self._operation_count += 1
        self._set_phase(ReconcilerPhase.OPERATING)
        try:
            with self._timer.track(name):
                yield
        finally:
            self._operation_count -= 1
            self._settle_phase()


__all__ = [
    "ReconcilerPhase",
    "PendingPatch",
    "FleetState",
    "FleetObserver",
    "FleetReconciler",
    "apply_patches",
]
