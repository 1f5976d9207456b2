"""Unit tests for snapshot building, ordering and change detection."""

from dataclasses import replace

import pytest

from simfleet.core.devices.metadata import DeviceMetadataLookup
from simfleet.core.devices.models import Device, DeviceKind, DeviceState, FleetSnapshot
from simfleet.core.devices.snapshot import (
    build_snapshot,
    build_snapshot_from_devices,
    describe_device,
    enrich_device,
    extract_version,
    format_display_name,
    has_meaningful_change,
)
from tests.fakes import IOS_17, IOS_18, WATCH_11, make_raw, sample_fleet


@pytest.fixture
def snapshot(lookup) -> FleetSnapshot:
    return build_snapshot(sample_fleet(), lookup)


class TestRuntimeKeys:
    """Tests for version extraction and display names."""

    def test_extract_ios_version(self):
        assert extract_version("com.apple.CoreSimulator.SimRuntime.iOS-17-5") == 17.5

    def test_extract_non_ios_is_zero(self):
        assert extract_version("com.apple.CoreSimulator.SimRuntime.tvOS-17-0") == 0.0
        assert extract_version("garbage") == 0.0

    def test_display_name(self):
        assert format_display_name("com.vendor.SimRuntime.iOS-17-5") == "iOS 17.5"
        assert format_display_name(WATCH_11) == "watchOS 11.0"
        assert format_display_name("com.apple.CoreSimulator.SimRuntime.xrOS-2-0") == "xrOS 2.0"

    def test_display_name_strips_prefix_when_unparseable(self):
        assert format_display_name("com.apple.CoreSimulator.SimRuntime.Custom") == "Custom"
        assert format_display_name("opaque") == "opaque"


class TestEnrichment:
    """Tests for metadata enrichment."""

    def test_enrich_known_device(self, lookup):
        device = enrich_device(make_raw("A", "iPhone 16", "Booted"), lookup)
        assert device.kind is DeviceKind.PHONE
        assert device.state is DeviceState.BOOTED
        assert device.screen_size_inches == 6.1
        assert device.physical_resolution == "1179*2556"
        assert device.logical_resolution == "393*852"

    def test_enrich_unknown_device(self):
        device = enrich_device(make_raw("A", "Apple Watch Ultra 2 (49mm)"), DeviceMetadataLookup())
        assert device.kind is DeviceKind.OTHER
        assert device.screen_size_inches == 0.0
        assert device.physical_resolution == ""


class TestOrdering:
    """Tests for group and flat ordering."""

    def test_group_order_phones_first_larger_first(self):
        devices = [
            Device("1", "iPad Air", DeviceState.SHUTDOWN, IOS_18, DeviceKind.TABLET, 10.9),
            Device("2", "iPhone 16", DeviceState.SHUTDOWN, IOS_18, DeviceKind.PHONE, 6.1),
            Device("3", "iPhone SE", DeviceState.SHUTDOWN, IOS_18, DeviceKind.PHONE, 4.7),
        ]
        snapshot = build_snapshot_from_devices(devices)

        assert [d.name for d in snapshot.groups[0].devices] == ["iPhone 16", "iPhone SE", "iPad Air"]

    def test_name_breaks_ties(self):
        devices = [
            Device("1", "iPhone B", DeviceState.SHUTDOWN, IOS_18, DeviceKind.PHONE, 6.1),
            Device("2", "iPhone A", DeviceState.SHUTDOWN, IOS_18, DeviceKind.PHONE, 6.1),
        ]
        snapshot = build_snapshot_from_devices(devices)
        assert [d.name for d in snapshot.groups[0].devices] == ["iPhone A", "iPhone B"]

    def test_groups_sorted_by_version_descending(self, snapshot):
        assert [g.runtime_key for g in snapshot.groups] == [IOS_18, IOS_17]
        assert [g.display_name for g in snapshot.groups] == ["iOS 18.0", "iOS 17.5"]

    def test_flat_list_sorted_by_version_then_kind(self, snapshot):
        assert [d.id for d in snapshot.devices] == ["UDID-16", "UDID-SE", "UDID-AIR", "UDID-15"]

    def test_installed_runtimes_become_empty_groups(self, lookup):
        snapshot = build_snapshot(sample_fleet(), lookup, installed_runtime_keys=[WATCH_11, IOS_18])

        watch_group = snapshot.find_group(WATCH_11)
        assert watch_group is not None
        assert watch_group.devices == ()
        assert snapshot.groups[-1].runtime_key == WATCH_11

    def test_empty_fleet(self, lookup):
        snapshot = build_snapshot([], lookup)
        assert snapshot.is_empty
        assert snapshot.devices == ()


class TestChangeDetection:
    """Tests for has_meaningful_change."""

    def test_idempotent(self, snapshot):
        assert has_meaningful_change(snapshot, snapshot) is False

    def test_rebuilt_snapshot_is_unchanged(self, lookup, snapshot):
        assert has_meaningful_change(snapshot, build_snapshot(sample_fleet(), lookup)) is False

    def test_state_change_detected(self, snapshot):
        devices = list(snapshot.devices)
        devices[0] = replace(devices[0], state=DeviceState.BOOTED)
        assert has_meaningful_change(snapshot, devices) is True

    def test_name_change_detected(self, snapshot):
        devices = list(snapshot.devices)
        devices[1] = replace(devices[1], name="Renamed")
        assert has_meaningful_change(snapshot.devices, devices) is True

    def test_runtime_change_detected(self, snapshot):
        devices = list(snapshot.devices)
        devices[2] = replace(devices[2], runtime_key=IOS_17)
        assert has_meaningful_change(snapshot, devices) is True

    def test_count_change_detected(self, snapshot):
        assert has_meaningful_change(snapshot, snapshot.devices[:-1]) is True

    def test_replaced_device_detected(self, snapshot):
        devices = list(snapshot.devices)
        devices[0] = replace(devices[0], id="OTHER")
        assert has_meaningful_change(snapshot, devices) is True

    def test_order_and_metadata_ignored(self, snapshot):
        devices = [replace(d, screen_size_inches=99.0) for d in reversed(snapshot.devices)]
        assert has_meaningful_change(snapshot, devices) is False

    def test_none_treated_as_empty(self):
        assert has_meaningful_change(None, []) is False
        assert has_meaningful_change(None, [Device("A", "x", "Booted", IOS_18)]) is True


class TestDescribeDevice:
    """Tests for the copyable device summary."""

    def test_full_summary(self, lookup):
        device = enrich_device(make_raw("A", "iPhone 16"), lookup)
        assert describe_device(device) == (
            "Device: iPhone 16\n"
            'Size: 6.1"\n'
            "Resolution: 1179*2556\n"
            "Points: 393*852"
        )

    def test_unknown_fields_omitted(self):
        device = Device("A", "Mystery", DeviceState.SHUTDOWN, IOS_18)
        assert describe_device(device) == "Device: Mystery"
