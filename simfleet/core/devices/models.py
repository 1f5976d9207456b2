"""
Device fleet data model.

Devices, groups and snapshots are immutable value records. A state change
produces a new ``Device`` replacing the old one by id, and a new snapshot
replaces the previous one wholesale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


class DeviceState(str, Enum):
    """Known device states. Any other tool value is kept as a raw string."""
    BOOTED = "Booted"
    SHUTDOWN = "Shutdown"


# ``DeviceState`` members compare equal to their plain string values, so a
# raw "Booted" from the tool and DeviceState.BOOTED are interchangeable.
StateValue = Union[DeviceState, str]


def parse_state(raw: str) -> StateValue:
    """Map a raw tool state onto ``DeviceState`` when known, else pass it through."""
    try:
        return DeviceState(raw)
    except ValueError:
        return raw


def state_label(state: StateValue) -> str:
    return state.value if isinstance(state, DeviceState) else str(state)


class DeviceKind(Enum):
    """Device class, ordered by display priority."""
    PHONE = "phone"
    TABLET = "tablet"
    OTHER = "other"

    @property
    def priority(self) -> int:
        return _KIND_PRIORITY[self]


_KIND_PRIORITY = {
    DeviceKind.PHONE: 0,
    DeviceKind.TABLET: 1,
    DeviceKind.OTHER: 2,
}


def classify_kind(name: str, classification: str = "") -> DeviceKind:
    """Derive the device class from a metadata classification, falling back to the name."""
    for text in (classification, name):
        lowered = (text or "").lower()
        if not lowered:
            continue
        if "iphone" in lowered or lowered == "phone":
            return DeviceKind.PHONE
        if "ipad" in lowered or lowered == "tablet":
            return DeviceKind.TABLET
    return DeviceKind.OTHER


@dataclass(frozen=True)
class Device:
    """A simulated device as shown to the user."""
    id: str                      # Tool UDID
    name: str
    state: StateValue
    runtime_key: str             # e.g. "com.apple.CoreSimulator.SimRuntime.iOS-17-5"
    kind: DeviceKind = DeviceKind.OTHER
    screen_size_inches: float = 0.0
    physical_resolution: str = ""    # "W*H" in pixels
    logical_resolution: str = ""     # "W*H" in points
    device_type_identifier: Optional[str] = None
    is_available: bool = True

    @property
    def is_booted(self) -> bool:
        return self.state == DeviceState.BOOTED

    @property
    def state_label(self) -> str:
        return state_label(self.state)


@dataclass(frozen=True)
class DeviceGroup:
    """All devices of one runtime, sorted for display."""
    runtime_key: str
    display_name: str
    devices: Tuple[Device, ...] = ()

    @property
    def id(self) -> str:
        return self.runtime_key

    def find(self, device_id: str) -> Optional[Device]:
        for device in self.devices:
            if device.id == device_id:
                return device
        return None


@dataclass(frozen=True)
class FleetSnapshot:
    """The full grouped and flat device model at one point in time."""
    groups: Tuple[DeviceGroup, ...] = ()
    devices: Tuple[Device, ...] = ()

    def find_device(self, device_id: str) -> Optional[Device]:
        for device in self.devices:
            if device.id == device_id:
                return device
        return None

    def find_group(self, runtime_key: str) -> Optional[DeviceGroup]:
        for group in self.groups:
            if group.runtime_key == runtime_key:
                return group
        return None

    @property
    def is_empty(self) -> bool:
        return not self.groups


# =========================================================================
# Raw records returned by the control tool
# =========================================================================

@dataclass(frozen=True)
class RawDeviceRecord:
    """One device entry from ``simctl list devices -j``."""
    udid: str
    name: str
    state: str
    runtime_key: str
    device_type_identifier: Optional[str] = None
    is_available: bool = True


@dataclass(frozen=True)
class DeviceTypeRecord:
    """One device type from ``simctl list devicetypes -j`` or a runtime's supported types."""
    identifier: str
    name: str
    product_family: str = ""
    bundle_path: Optional[str] = None


@dataclass(frozen=True)
class RuntimeRecord:
    """One runtime from ``simctl list runtimes -j``."""
    identifier: str
    name: str
    version: str = ""
    is_available: bool = True
    build_version: str = ""
    bundle_path: Optional[str] = None
    supported_device_types: Tuple[DeviceTypeRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RuntimeImageRecord:
    """One installed runtime disk image from ``simctl runtime list -j``."""
    uuid: str
    runtime_key: str
    version: str = ""
    state: str = ""


__all__ = [
    "DeviceState",
    "StateValue",
    "parse_state",
    "state_label",
    "DeviceKind",
    "classify_kind",
    "Device",
    "DeviceGroup",
    "FleetSnapshot",
    "RawDeviceRecord",
    "DeviceTypeRecord",
    "RuntimeRecord",
    "RuntimeImageRecord",
]
