"""
Snapshot building, ordering and change detection.

Pure functions only: the reconciler decides when to call them and what to do
with the result.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .metadata import DeviceMetadataLookup
from .models import (
    Device,
    DeviceGroup,
    FleetSnapshot,
    RawDeviceRecord,
    classify_kind,
    parse_state,
)

RUNTIME_PREFIX = "com.apple.CoreSimulator.SimRuntime."

_IOS_VERSION_RE = re.compile(r"iOS-(\d+)-(\d+)")
_FAMILY_VERSION_RE = re.compile(r"(iOS|tvOS|watchOS|visionOS|xrOS)-(\d+)-(\d+)")

DeviceSource = Union[FleetSnapshot, Sequence[Device]]


# =========================================================================
# Runtime keys
# =========================================================================

def extract_version(runtime_key: str) -> float:
    """``...iOS-17-5`` -> 17.5. Keys without an iOS version give 0.0 and sort last."""
    match = _IOS_VERSION_RE.search(runtime_key)
    if not match:
        return 0.0
    major, minor = int(match.group(1)), int(match.group(2))
    return major + minor / 10


def format_display_name(runtime_key: str) -> str:
    """``...iOS-17-5`` -> ``iOS 17.5``; unknown keys lose the runtime prefix only."""
    match = _FAMILY_VERSION_RE.search(runtime_key)
    if match:
        family, major, minor = match.groups()
        return f"{family} {major}.{minor}"
    if runtime_key.startswith(RUNTIME_PREFIX):
        return runtime_key[len(RUNTIME_PREFIX):]
    return runtime_key


# =========================================================================
# Enrichment and ordering
# =========================================================================

def enrich_device(raw: RawDeviceRecord, lookup: DeviceMetadataLookup) -> Device:
    metadata = lookup.resolve_device(raw.name, raw.device_type_identifier)
    classification = metadata.classification if metadata else ""
    screen = metadata.screen_size_inches if metadata else None

    return Device(
        id=raw.udid,
        name=raw.name,
        state=parse_state(raw.state),
        runtime_key=raw.runtime_key,
        kind=classify_kind(raw.name, classification),
        screen_size_inches=screen or 0.0,
        physical_resolution=metadata.physical_resolution if metadata else "",
        logical_resolution=metadata.logical_resolution if metadata else "",
        device_type_identifier=raw.device_type_identifier,
        is_available=raw.is_available,
    )


def device_sort_key(device: Device) -> Tuple[int, float, str]:
    """In-group order: phones, tablets, others; larger screens first; then name."""
    return (device.kind.priority, -device.screen_size_inches, device.name)


def flat_sort_key(device: Device) -> Tuple[float, int, float, str]:
    return (-extract_version(device.runtime_key),) + device_sort_key(device)


def _group_sort_key(group: DeviceGroup) -> Tuple[float, str]:
    return (-extract_version(group.runtime_key), group.display_name)


def build_snapshot_from_devices(
    devices: Iterable[Device],
    installed_runtime_keys: Iterable[str] = (),
) -> FleetSnapshot:
    """Sort and group already-enriched devices.

    Each installed runtime key gets a group even when it has no devices.
    """
    flat = sorted(devices, key=flat_sort_key)

    members: Dict[str, List[Device]] = {}
    for runtime_key in installed_runtime_keys:
        members.setdefault(runtime_key, [])
    for device in flat:
        members.setdefault(device.runtime_key, []).append(device)

    groups = [
        DeviceGroup(
            runtime_key=runtime_key,
            display_name=format_display_name(runtime_key),
            devices=tuple(sorted(group_devices, key=device_sort_key)),
        )
        for runtime_key, group_devices in members.items()
    ]
    groups.sort(key=_group_sort_key)

    return FleetSnapshot(groups=tuple(groups), devices=tuple(flat))


def build_snapshot(
    raw_devices: Iterable[RawDeviceRecord],
    lookup: DeviceMetadataLookup,
    installed_runtime_keys: Iterable[str] = (),
) -> FleetSnapshot:
    devices = [enrich_device(raw, lookup) for raw in raw_devices]
    return build_snapshot_from_devices(devices, installed_runtime_keys)


# =========================================================================
# Change detection
# =========================================================================

def _as_devices(source: Optional[DeviceSource]) -> Sequence[Device]:
    if source is None:
        return ()
    if isinstance(source, FleetSnapshot):
        return source.devices
    return source


def has_meaningful_change(old: Optional[DeviceSource], new: Optional[DeviceSource]) -> bool:
    """True when the device count differs, a device appeared, or a shared
    device changed its state, name or runtime.

    Screen metadata and ordering are not compared.
    """
    old_devices = _as_devices(old)
    new_devices = _as_devices(new)
    if len(old_devices) != len(new_devices):
        return True

    previous = {device.id: device for device in old_devices}
    for device in new_devices:
        before = previous.get(device.id)
        if before is None:
            return True
        if (
            before.state != device.state
            or before.name != device.name
            or before.runtime_key != device.runtime_key
        ):
            return True
    return False


def describe_device(device: Device) -> str:
    """Plain-text summary for copying a device's screen details."""
    lines = [f"Device: {device.name}"]
    if device.screen_size_inches > 0:
        lines.append(f'Size: {device.screen_size_inches:.1f}"')
    if device.physical_resolution:
        lines.append(f"Resolution: {device.physical_resolution}")
    if device.logical_resolution:
        lines.append(f"Points: {device.logical_resolution}")
    return "\n".join(lines)


__all__ = [
    "RUNTIME_PREFIX",
    "extract_version",
    "format_display_name",
    "enrich_device",
    "device_sort_key",
    "flat_sort_key",
    "build_snapshot",
    "build_snapshot_from_devices",
    "has_meaningful_change",
    "describe_device",
]
