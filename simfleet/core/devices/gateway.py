"""
Device-control gateway - the subprocess boundary to ``xcrun simctl``.

Every method is a synchronous, blocking call: callers on the event loop run
them with ``asyncio.to_thread``. Output is parsed from the tool's JSON mode.
Failures raise ``ControlError``; nothing here retries.
"""

from __future__ import annotations

import json
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from simfleet.core.logging_utils import get_module_logger
from simfleet.core.process_cleanup import terminate_process_tree
from .errors import ControlError, ControlErrorKind, PrivilegedOperationError
from .models import (
    DeviceTypeRecord,
    RawDeviceRecord,
    RuntimeImageRecord,
    RuntimeRecord,
)

logger = get_module_logger("SimctlGateway")

DEFAULT_TOOL_COMMAND = ("xcrun", "simctl")
DEFAULT_COMMAND_TIMEOUT = 30.0
SIMULATOR_APP_COMMAND = ("open", "-a", "Simulator")


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one tool invocation."""
    returncode: int
    stdout: str
    stderr: str


CommandRunner = Callable[[Sequence[str], Optional[float]], CommandResult]


def run_command(command: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
    """Run ``command`` to completion, capturing stdout and stderr.

    Raises:
        ControlError: TOOL_NOT_FOUND if the executable is missing,
            EXECUTION_FAILED if it cannot be launched, TIMED_OUT if it runs
            longer than ``timeout`` (the process tree is terminated).
    """
    try:
        process = subprocess.Popen(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as exc:
        raise ControlError(ControlErrorKind.TOOL_NOT_FOUND, f"{command[0]}: {exc}", command) from exc
    except OSError as exc:
        raise ControlError(ControlErrorKind.EXECUTION_FAILED, f"{command[0]}: {exc}", command) from exc

    try:
        stdout, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        logger.warning("Command exceeded %.1fs, terminating: %s", timeout, shlex.join(command))
        terminate_process_tree(process.pid)
        try:
            process.communicate(timeout=1.0)
        except subprocess.TimeoutExpired:
            process.kill()
        raise ControlError(
            ControlErrorKind.TIMED_OUT,
            f"{shlex.join(command)} did not finish within {timeout}s",
            command,
        ) from exc

    return CommandResult(process.returncode, stdout or "", stderr or "")


def _require(entry: Dict[str, Any], key: str, command: Sequence[str]) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value:
        raise ControlError(ControlErrorKind.PARSE_FAILED, f"missing '{key}' in tool output", command)
    return value


def _parse_device_type(entry: Any, command: Sequence[str]) -> DeviceTypeRecord:
    if not isinstance(entry, dict):
        raise ControlError(ControlErrorKind.PARSE_FAILED, "device type entry is not an object", command)
    return DeviceTypeRecord(
        identifier=_require(entry, "identifier", command),
        name=_require(entry, "name", command),
        product_family=str(entry.get("productFamily") or ""),
        bundle_path=entry.get("bundlePath") or None,
    )


class SimctlGateway:
    """
    Wraps the device-control tool.

    Usage:
        gateway = SimctlGateway(timeout=30.0)
        devices = await asyncio.to_thread(gateway.list_devices)
    """

    def __init__(
        self,
        tool_command: Sequence[str] = DEFAULT_TOOL_COMMAND,
        timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT,
        elevation_command: str = "osascript",
        runner: CommandRunner = run_command,
    ):
        self._tool_command = tuple(tool_command)
        self._timeout = timeout
        self._elevation_command = elevation_command
        self._runner = runner

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    # ------------------------------------------------------------------
    # Invocation helpers

    def _command(self, args: Sequence[str]) -> List[str]:
        return [*self._tool_command, *args]

    def _run(self, args: Sequence[str]) -> str:
        command = self._command(args)
        logger.debug("Running: %s", shlex.join(command))
        result = self._runner(command, self._timeout)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip() or f"exit status {result.returncode}"
            raise ControlError(ControlErrorKind.EXECUTION_FAILED, detail, command)
        return result.stdout

    def _run_json(self, args: Sequence[str], root_key: Optional[str] = None) -> Any:
        command = self._command(args)
        stdout = self._run(args)
        try:
            payload = json.loads(stdout)
        except ValueError as exc:
            raise ControlError(ControlErrorKind.PARSE_FAILED, f"invalid JSON: {exc}", command) from exc

        if root_key is None:
            return payload
        if not isinstance(payload, dict) or root_key not in payload:
            raise ControlError(ControlErrorKind.PARSE_FAILED, f"missing '{root_key}' in tool output", command)
        return payload[root_key]

    # ------------------------------------------------------------------
    # Queries

    def list_devices(self) -> List[RawDeviceRecord]:
        """All devices, one record per UDID, tagged with their runtime key."""
        args = ("list", "devices", "-j")
        command = self._command(args)
        by_runtime = self._run_json(args, "devices")
        if not isinstance(by_runtime, dict):
            raise ControlError(ControlErrorKind.PARSE_FAILED, "'devices' is not an object", command)

        records: List[RawDeviceRecord] = []
        seen: set[str] = set()
        for runtime_key, entries in by_runtime.items():
            if not isinstance(entries, list):
                raise ControlError(ControlErrorKind.PARSE_FAILED, f"devices for {runtime_key} is not a list", command)
            for entry in entries:
                if not isinstance(entry, dict):
                    raise ControlError(ControlErrorKind.PARSE_FAILED, "device entry is not an object", command)
                udid = _require(entry, "udid", command)
                if udid in seen:
                    continue
                seen.add(udid)
                records.append(RawDeviceRecord(
                    udid=udid,
                    name=_require(entry, "name", command),
                    state=_require(entry, "state", command),
                    runtime_key=runtime_key,
                    device_type_identifier=entry.get("deviceTypeIdentifier") or None,
                    is_available=bool(entry.get("isAvailable", True)),
                ))
        return records

    def list_runtimes(self) -> List[RuntimeRecord]:
        args = ("list", "runtimes", "-j")
        command = self._command(args)
        entries = self._run_json(args, "runtimes")
        if not isinstance(entries, list):
            raise ControlError(ControlErrorKind.PARSE_FAILED, "'runtimes' is not a list", command)

        runtimes: List[RuntimeRecord] = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise ControlError(ControlErrorKind.PARSE_FAILED, "runtime entry is not an object", command)
            supported = entry.get("supportedDeviceTypes") or []
            runtimes.append(RuntimeRecord(
                identifier=_require(entry, "identifier", command),
                name=str(entry.get("name") or ""),
                version=str(entry.get("version") or ""),
                is_available=bool(entry.get("isAvailable", True)),
                build_version=str(entry.get("buildversion") or ""),
                bundle_path=entry.get("bundlePath") or None,
                supported_device_types=tuple(_parse_device_type(t, command) for t in supported),
            ))
        return runtimes

    def list_device_types(self) -> List[DeviceTypeRecord]:
        args = ("list", "devicetypes", "-j")
        command = self._command(args)
        entries = self._run_json(args, "devicetypes")
        if not isinstance(entries, list):
            raise ControlError(ControlErrorKind.PARSE_FAILED, "'devicetypes' is not a list", command)
        return [_parse_device_type(entry, command) for entry in entries]

    def list_supported_device_types(self, runtime_key: str) -> List[DeviceTypeRecord]:
        """Device types the given runtime can host (empty if the runtime is unknown)."""
        for runtime in self.list_runtimes():
            if runtime.identifier == runtime_key:
                return list(runtime.supported_device_types)
        logger.warning("Runtime %s not installed; no supported device types", runtime_key)
        return []

    def list_runtime_images(self) -> List[RuntimeImageRecord]:
        args = ("runtime", "list", "-j")
        command = self._command(args)
        payload = self._run_json(args)
        if not isinstance(payload, dict):
            raise ControlError(ControlErrorKind.PARSE_FAILED, "runtime image list is not an object", command)

        images: List[RuntimeImageRecord] = []
        for uuid, entry in payload.items():
            if not isinstance(entry, dict):
                raise ControlError(ControlErrorKind.PARSE_FAILED, "runtime image entry is not an object", command)
            images.append(RuntimeImageRecord(
                uuid=str(entry.get("identifier") or uuid),
                runtime_key=str(entry.get("runtimeIdentifier") or ""),
                version=str(entry.get("version") or ""),
                state=str(entry.get("state") or ""),
            ))
        return images

    # ------------------------------------------------------------------
    # Commands

    def boot(self, udid: str) -> None:
        self._run(("boot", udid))

    def shutdown(self, udid: str) -> None:
        self._run(("shutdown", udid))

    def delete(self, udid: str) -> None:
        self._run(("delete", udid))

    def create(self, name: str, device_type_id: str, runtime_key: str) -> str:
        """Create a device and return the UDID the tool prints."""
        args = ("create", name, device_type_id, runtime_key)
        udid = self._run(args).strip()
        if not udid:
            raise ControlError(ControlErrorKind.PARSE_FAILED, "create printed no device id", self._command(args))
        return udid

    def prune_unavailable(self) -> None:
        self._run(("delete", "unavailable"))

    def _elevated(self, command: Sequence[str]) -> List[str]:
        if self._elevation_command == "osascript":
            script_command = shlex.join(command).replace("\\", "\\\\").replace('"', '\\"')
            return [
                "osascript", "-e",
                f'do shell script "{script_command}" with administrator privileges',
            ]
        if self._elevation_command == "sudo":
            return ["sudo", *command]
        return list(command)

    def delete_runtime_image(self, uuid: str) -> None:
        """Delete an installed runtime image through an elevation prompt.

        The prompt gives no confirmation beyond the exit status, so success
        here is best-effort.

        Raises:
            PrivilegedOperationError: the prompt was declined or the deletion failed.
        """
        command = self._command(("runtime", "delete", uuid))
        fallback = f"Run manually: sudo {shlex.join(command)}"
        elevated = self._elevated(command)
        logger.info("Requesting elevated deletion of runtime image %s", uuid)

        try:
            result = self._runner(elevated, self._timeout)
        except ControlError as exc:
            raise PrivilegedOperationError(exc.description, fallback) from exc

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip() or f"exit status {result.returncode}"
            raise PrivilegedOperationError(detail, fallback)

    def open_simulator_app(self) -> None:
        """Bring up the Simulator application without waiting for it."""
        try:
            subprocess.Popen(
                list(SIMULATOR_APP_COMMAND),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.error("Error opening Simulator app: %s", exc)


__all__ = [
    "CommandResult",
    "CommandRunner",
    "run_command",
    "SimctlGateway",
    "DEFAULT_TOOL_COMMAND",
    "DEFAULT_COMMAND_TIMEOUT",
]
