"""
User commands against the fleet.

Boot and shutdown show their target state immediately through an
optimistic patch, run the tool command in the background and confirm with a
forced refresh after a settle delay. Group deletion and default-device
creation are multi-step sequences that tolerate partial failure.

Every failed tool call surfaces exactly one error event; nothing retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

from simfleet.core.asyncio_utils import cancel_task, create_logged_task
from simfleet.core.logging_utils import get_module_logger
from .errors import DeviceNotFoundError, PrivilegedOperationError
from .gateway import SimctlGateway
from .models import DeviceKind, DeviceState, classify_kind
from .reconciler import FleetReconciler, PendingPatch
from .snapshot import describe_device

logger = get_module_logger("OperationExecutor")

DEFAULT_KINDS = (DeviceKind.PHONE, DeviceKind.TABLET)
COPIED_NOTICE = "Copied"


@dataclass
class DeletionReport:
    """Outcome of deleting every device of one runtime."""
    runtime_key: str
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    runtime_image_deleted: Optional[bool] = None   # None: not attempted
    runtime_image_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.failed and self.runtime_image_deleted is not False


@dataclass
class CreationReport:
    """Outcome of creating the default devices for one runtime."""
    runtime_key: str
    created: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


class OperationExecutor:
    """
    Runs user commands through the gateway and keeps the reconciler in the loop.

    Usage:
        executor = OperationExecutor(reconciler, gateway)
        executor.request_boot(device_id)        # returns at once
        await executor.shutdown(device_id)      # waits for confirmation
    """

    DEFAULT_BOOT_SETTLE_DELAY = 2.0
    DEFAULT_SHUTDOWN_SETTLE_DELAY = 1.0
    DEFAULT_DELETE_SETTLE_DELAY = 0.5

    def __init__(
        self,
        reconciler: FleetReconciler,
        gateway: SimctlGateway,
        *,
        boot_settle_delay: float = DEFAULT_BOOT_SETTLE_DELAY,
        shutdown_settle_delay: float = DEFAULT_SHUTDOWN_SETTLE_DELAY,
        delete_settle_delay: float = DEFAULT_DELETE_SETTLE_DELAY,
        open_simulator_on_boot: bool = True,
    ):
        self._reconciler = reconciler
        self._gateway = gateway
        self._boot_settle_delay = boot_settle_delay
        self._shutdown_settle_delay = shutdown_settle_delay
        self._delete_settle_delay = delete_settle_delay
        self._open_simulator_on_boot = open_simulator_on_boot
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Boot / shutdown

    def request_boot(self, device_id: str) -> Optional[asyncio.Task]:
        """Show the device as booted now and boot it in the background.

        Returns the background task, or None if the device is unknown.
        """
        return self._request_state_change(
            device_id,
            DeviceState.BOOTED,
            "Boot",
            self._gateway.boot,
            self._boot_settle_delay,
        )

    def request_shutdown(self, device_id: str) -> Optional[asyncio.Task]:
        return self._request_state_change(
            device_id,
            DeviceState.SHUTDOWN,
            "Shutdown",
            self._gateway.shutdown,
            self._shutdown_settle_delay,
        )

    async def boot(self, device_id: str) -> bool:
        task = self.request_boot(device_id)
        return await task if task is not None else False

    async def shutdown(self, device_id: str) -> bool:
        task = self.request_shutdown(device_id)
        return await task if task is not None else False

    def _request_state_change(
        self,
        device_id: str,
        target: DeviceState,
        label: str,
        command: Callable[[str], None],
        settle_delay: float,
    ) -> Optional[asyncio.Task]:
        try:
            patch = self._reconciler.apply_patch(device_id, target)
        except DeviceNotFoundError as exc:
            self._reconciler.report_error(exc, f"{label} device")
            return None

        return create_logged_task(
            self._run_state_change(patch, label, command, settle_delay),
            logger=logger,
            context=f"{label.lower()}:{device_id}",
            pending=self._tasks,
        )

    async def _run_state_change(
        self,
        patch: PendingPatch,
        label: str,
        command: Callable[[str], None],
        settle_delay: float,
    ) -> bool:
        device_id = patch.device_id
        async with self._reconciler.operation(f"{label.lower()} {device_id}"):
            try:
                await asyncio.to_thread(command, device_id)
            except Exception as exc:
                self._reconciler.report_error(exc, f"{label} device")
                self._reconciler.settle_patch(patch)
                await self._reconciler.force_refresh()
                return False

            self._reconciler.settle_patch(patch)
            logger.info("%s issued for %s", label, device_id)

            if patch.state == DeviceState.BOOTED and self._open_simulator_on_boot:
                await asyncio.to_thread(self._gateway.open_simulator_app)

            await asyncio.sleep(settle_delay)
            await self._reconciler.force_refresh()
            return True

    # ------------------------------------------------------------------
    # Group deletion

    async def delete_devices_for_runtime(
        self,
        runtime_key: str,
        also_delete_runtime_image: bool = False,
    ) -> DeletionReport:
        """Delete every device of ``runtime_key``, shutting booted ones down first."""
        report = DeletionReport(runtime_key=runtime_key)

        async with self._reconciler.operation(f"delete group {runtime_key}"):
            group = self._reconciler.find_group(runtime_key)
            devices = group.devices if group else ()
            if not devices:
                logger.info("No devices to delete for %s", runtime_key)

            for device in devices:
                if device.is_booted:
                    try:
                        await asyncio.to_thread(self._gateway.shutdown, device.id)
                    except Exception as exc:
                        self._reconciler.report_error(exc, f"Shut down {device.name}")
                        report.failed.append(device.id)
                        continue
                    await asyncio.sleep(self._delete_settle_delay)

                try:
                    await asyncio.to_thread(self._gateway.delete, device.id)
                except Exception as exc:
                    self._reconciler.report_error(exc, f"Delete {device.name}")
                    report.failed.append(device.id)
                    continue
                report.deleted.append(device.id)

            if also_delete_runtime_image:
                await self._delete_runtime_image(runtime_key, report)

            await self._reconciler.force_refresh()

        logger.info(
            "Deleted %d device(s) for %s (%d failed)",
            len(report.deleted), runtime_key, len(report.failed),
        )
        return report

    async def _delete_runtime_image(self, runtime_key: str, report: DeletionReport) -> None:
        try:
            images = await asyncio.to_thread(self._gateway.list_runtime_images)
        except Exception as exc:
            event = self._reconciler.report_error(exc, "Find runtime image")
            report.runtime_image_deleted = False
            report.runtime_image_error = event.description
            return

        image = next((i for i in images if i.runtime_key == runtime_key), None)
        if image is None:
            error = PrivilegedOperationError(f"no runtime image installed for {runtime_key}")
            event = self._reconciler.report_error(error, "Delete runtime image")
            report.runtime_image_deleted = False
            report.runtime_image_error = event.description
            return

        try:
            await asyncio.to_thread(self._gateway.delete_runtime_image, image.uuid)
        except Exception as exc:
            event = self._reconciler.report_error(exc, "Delete runtime image")
            report.runtime_image_deleted = False
            report.runtime_image_error = event.description
            return

        report.runtime_image_deleted = True
        logger.info("Runtime image %s deleted for %s", image.uuid, runtime_key)

    # ------------------------------------------------------------------
    # Default devices

    async def create_default_devices(self, runtime_key: str) -> CreationReport:
        """Create every phone and tablet type the runtime supports that is not present yet."""
        report = CreationReport(runtime_key=runtime_key)

        async with self._reconciler.operation(f"create defaults {runtime_key}"):
            try:
                device_types = await asyncio.to_thread(
                    self._gateway.list_supported_device_types, runtime_key
                )
            except Exception as exc:
                self._reconciler.report_error(exc, "List supported device types")
                return report

            group = self._reconciler.find_group(runtime_key)
            existing = {device.name for device in group.devices} if group else set()

            for device_type in device_types:
                if classify_kind(device_type.name, device_type.product_family) not in DEFAULT_KINDS:
                    continue
                if device_type.name in existing:
                    report.skipped.append(device_type.name)
                    continue

                try:
                    await asyncio.to_thread(
                        self._gateway.create, device_type.name, device_type.identifier, runtime_key
                    )
                except Exception as exc:
                    self._reconciler.report_error(exc, f"Create {device_type.name}")
                    report.failed.append(device_type.name)
                    continue

                existing.add(device_type.name)
                report.created.append(device_type.name)

            await self._reconciler.force_refresh()

        logger.info(
            "Created %d default device(s) for %s (%d skipped, %d failed)",
            report.created_count, runtime_key, len(report.skipped), len(report.failed),
        )
        return report

    # ------------------------------------------------------------------
    # Device info

    def device_info(self, device_id: str) -> Optional[str]:
        """Summary text for copying, confirmed with a short notice."""
        device = self._reconciler.find_device(device_id)
        if device is None:
            self._reconciler.report_error(DeviceNotFoundError(device_id), "Copy device info")
            return None
        self._reconciler.notify(COPIED_NOTICE)
        return describe_device(device)

    async def wait_for_pending(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        for task in list(self._tasks):
            await cancel_task(task)


__all__ = [
    "OperationExecutor",
    "DeletionReport",
    "CreationReport",
    "DEFAULT_KINDS",
    "COPIED_NOTICE",
]
