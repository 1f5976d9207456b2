"""
Error types raised by the device-control layer.

The gateway raises ``ControlError``; the executor raises
``DeviceNotFoundError`` and ``PrivilegedOperationError``. None of them cross
the publishing boundary: the reconciler and executor convert them into
``ErrorChannel`` events.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence


class ControlErrorKind(Enum):
    """Why a control-tool invocation failed."""
    EXECUTION_FAILED = "execution_failed"  # Launch failure or non-zero exit
    PARSE_FAILED = "parse_failed"          # Malformed structured output
    TOOL_NOT_FOUND = "tool_not_found"      # Executable missing
    TIMED_OUT = "timed_out"                # Exceeded command_timeout


class SimulatorError(Exception):
    """Base class for all simfleet device errors."""

    @property
    def description(self) -> str:
        return str(self)


class ControlError(SimulatorError):
    """A control-tool invocation failed."""

    def __init__(
        self,
        kind: ControlErrorKind,
        detail: str,
        command: Optional[Sequence[str]] = None,
    ):
        self.kind = kind
        self.detail = detail
        self.command = tuple(command) if command else ()
        super().__init__(detail)

    @property
    def description(self) -> str:
        if self.kind == ControlErrorKind.TOOL_NOT_FOUND:
            return f"Device-control tool not found: {self.detail}"
        if self.kind == ControlErrorKind.PARSE_FAILED:
            return f"Failed to parse device information: {self.detail}"
        if self.kind == ControlErrorKind.TIMED_OUT:
            return f"Command timed out: {self.detail}"
        return f"Command execution failed: {self.detail}"

    def __repr__(self) -> str:
        return f"ControlError({self.kind.value}, {self.detail!r})"


class DeviceNotFoundError(SimulatorError):
    """A command referenced a device id that is not in the fleet."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(device_id)

    @property
    def description(self) -> str:
        return f"Device not found: {self.device_id}"


class PrivilegedOperationError(SimulatorError):
    """An elevated operation was declined or failed."""

    def __init__(self, detail: str, fallback_instruction: str = ""):
        self.detail = detail
        self.fallback_instruction = fallback_instruction
        super().__init__(detail)

    @property
    def description(self) -> str:
        if self.fallback_instruction:
            return f"Privileged operation failed: {self.detail}. {self.fallback_instruction}"
        return f"Privileged operation failed: {self.detail}"


__all__ = [
    "ControlErrorKind",
    "SimulatorError",
    "ControlError",
    "DeviceNotFoundError",
    "PrivilegedOperationError",
]
