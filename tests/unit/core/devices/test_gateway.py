"""Unit tests for the simctl gateway."""

import json
import sys
from unittest.mock import patch

import pytest

from simfleet.core.devices.errors import ControlError, ControlErrorKind, PrivilegedOperationError
from simfleet.core.devices.gateway import CommandResult, SimctlGateway, run_command


DEVICES_JSON = {
    "devices": {
        "com.apple.CoreSimulator.SimRuntime.iOS-18-0": [
            {
                "udid": "AAA",
                "name": "iPhone 16",
                "state": "Booted",
                "isAvailable": True,
                "deviceTypeIdentifier": "com.apple.CoreSimulator.SimDeviceType.iPhone-16",
            },
            {"udid": "BBB", "name": "iPad Air 11-inch (M2)", "state": "Shutdown"},
        ],
        "com.apple.CoreSimulator.SimRuntime.iOS-17-5": [
            {"udid": "AAA", "name": "iPhone 16", "state": "Booted"},
            {"udid": "CCC", "name": "iPhone 15", "state": "Shutdown", "isAvailable": False},
        ],
    }
}

RUNTIMES_JSON = {
    "runtimes": [
        {
            "identifier": "com.apple.CoreSimulator.SimRuntime.iOS-18-0",
            "name": "iOS 18.0",
            "version": "18.0",
            "isAvailable": True,
            "buildversion": "22A3351",
            "bundlePath": "/Library/Developer/CoreSimulator/Volumes/iOS_22A3351",
            "supportedDeviceTypes": [
                {
                    "identifier": "com.apple.CoreSimulator.SimDeviceType.iPhone-16",
                    "name": "iPhone 16",
                    "productFamily": "iPhone",
                    "bundlePath": "/types/iPhone 16.simdevicetype",
                },
                {
                    "identifier": "com.apple.CoreSimulator.SimDeviceType.iPad-Air-11-inch-M2",
                    "name": "iPad Air 11-inch (M2)",
                    "productFamily": "iPad",
                },
            ],
        }
    ]
}


class RecordingRunner:
    """Command runner returning canned results and recording every call."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, command, timeout):
        self.calls.append((list(command), timeout))
        result = self.results.pop(0) if self.results else CommandResult(0, "", "")
        if isinstance(result, BaseException):
            raise result
        return result


def ok(payload) -> CommandResult:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return CommandResult(0, text, "")


class TestListDevices:
    """Tests for device listing and parsing."""

    def test_parses_and_deduplicates(self):
        runner = RecordingRunner(ok(DEVICES_JSON))
        gateway = SimctlGateway(runner=runner, timeout=12.0)

        records = gateway.list_devices()

        assert runner.calls == [(["xcrun", "simctl", "list", "devices", "-j"], 12.0)]
        assert [r.udid for r in records] == ["AAA", "BBB", "CCC"]
        assert records[0].runtime_key.endswith("iOS-18-0")
        assert records[0].device_type_identifier.endswith("iPhone-16")
        assert records[2].is_available is False

    def test_invalid_json(self):
        gateway = SimctlGateway(runner=RecordingRunner(ok("not json")))
        with pytest.raises(ControlError) as exc_info:
            gateway.list_devices()
        assert exc_info.value.kind is ControlErrorKind.PARSE_FAILED
        assert exc_info.value.description.startswith("Failed to parse device information")

    def test_unexpected_shape(self):
        gateway = SimctlGateway(runner=RecordingRunner(ok({"runtimes": []})))
        with pytest.raises(ControlError) as exc_info:
            gateway.list_devices()
        assert exc_info.value.kind is ControlErrorKind.PARSE_FAILED

    def test_missing_required_field(self):
        payload = {"devices": {"rt": [{"udid": "AAA", "state": "Booted"}]}}
        gateway = SimctlGateway(runner=RecordingRunner(ok(payload)))
        with pytest.raises(ControlError) as exc_info:
            gateway.list_devices()
        assert exc_info.value.kind is ControlErrorKind.PARSE_FAILED

    def test_nonzero_exit(self):
        runner = RecordingRunner(CommandResult(72, "", "xcrun: error: unable to find utility \"simctl\"\n"))
        gateway = SimctlGateway(runner=runner)
        with pytest.raises(ControlError) as exc_info:
            gateway.list_devices()
        assert exc_info.value.kind is ControlErrorKind.EXECUTION_FAILED
        assert "unable to find utility" in exc_info.value.detail


class TestRuntimes:
    """Tests for runtime, device type and runtime image listing."""

    def test_list_runtimes(self):
        gateway = SimctlGateway(runner=RecordingRunner(ok(RUNTIMES_JSON)))

        runtimes = gateway.list_runtimes()

        assert len(runtimes) == 1
        runtime = runtimes[0]
        assert runtime.version == "18.0"
        assert runtime.build_version == "22A3351"
        assert [t.name for t in runtime.supported_device_types] == ["iPhone 16", "iPad Air 11-inch (M2)"]
        assert runtime.supported_device_types[0].product_family == "iPhone"

    def test_supported_device_types(self):
        gateway = SimctlGateway(runner=RecordingRunner(ok(RUNTIMES_JSON)))
        types = gateway.list_supported_device_types("com.apple.CoreSimulator.SimRuntime.iOS-18-0")
        assert len(types) == 2

    def test_supported_device_types_unknown_runtime(self):
        gateway = SimctlGateway(runner=RecordingRunner(ok(RUNTIMES_JSON)))
        assert gateway.list_supported_device_types("com.apple.CoreSimulator.SimRuntime.iOS-12-0") == []

    def test_list_device_types(self):
        payload = {"devicetypes": [{"identifier": "t1", "name": "iPhone 16", "bundlePath": "/b"}]}
        runner = RecordingRunner(ok(payload))
        gateway = SimctlGateway(runner=runner)

        types = gateway.list_device_types()

        assert runner.calls[0][0][-3:] == ["list", "devicetypes", "-j"]
        assert types[0].bundle_path == "/b"

    def test_list_runtime_images(self):
        payload = {
            "5C8C1F5B-0000-4A55-9C5E-1C2E29A8A0E1": {
                "identifier": "5C8C1F5B-0000-4A55-9C5E-1C2E29A8A0E1",
                "runtimeIdentifier": "com.apple.CoreSimulator.SimRuntime.iOS-18-0",
                "version": "18.0",
                "state": "Ready",
            }
        }
        runner = RecordingRunner(ok(payload))
        images = SimctlGateway(runner=runner).list_runtime_images()

        assert runner.calls[0][0][2:] == ["runtime", "list", "-j"]
        assert images[0].uuid.startswith("5C8C1F5B")
        assert images[0].runtime_key.endswith("iOS-18-0")


class TestCommands:
    """Tests for boot/shutdown/create/delete invocations."""

    def test_command_arguments(self):
        runner = RecordingRunner()
        gateway = SimctlGateway(tool_command=("simctl",), runner=runner, timeout=None)

        gateway.boot("AAA")
        gateway.shutdown("AAA")
        gateway.delete("AAA")
        gateway.prune_unavailable()

        assert [call[0] for call in runner.calls] == [
            ["simctl", "boot", "AAA"],
            ["simctl", "shutdown", "AAA"],
            ["simctl", "delete", "AAA"],
            ["simctl", "delete", "unavailable"],
        ]
        assert all(call[1] is None for call in runner.calls)

    def test_create_returns_udid(self):
        runner = RecordingRunner(ok("NEW-UDID\n"))
        gateway = SimctlGateway(runner=runner)

        udid = gateway.create("iPhone 16", "type.iPhone-16", "runtime.iOS-18-0")

        assert udid == "NEW-UDID"
        assert runner.calls[0][0][2:] == ["create", "iPhone 16", "type.iPhone-16", "runtime.iOS-18-0"]

    def test_create_without_output_fails(self):
        gateway = SimctlGateway(runner=RecordingRunner(ok("")))
        with pytest.raises(ControlError) as exc_info:
            gateway.create("iPhone 16", "type", "runtime")
        assert exc_info.value.kind is ControlErrorKind.PARSE_FAILED

    def test_boot_failure_carries_stderr(self):
        runner = RecordingRunner(CommandResult(149, "", "Unable to boot device in current state: Booted"))
        with pytest.raises(ControlError) as exc_info:
            SimctlGateway(runner=runner).boot("AAA")
        assert "current state: Booted" in exc_info.value.description


class TestRuntimeImageDeletion:
    """Tests for the privileged runtime image deletion."""

    def test_osascript_wrapper(self):
        runner = RecordingRunner()
        SimctlGateway(runner=runner).delete_runtime_image("UUID-1")

        command = runner.calls[0][0]
        assert command[:2] == ["osascript", "-e"]
        assert "xcrun simctl runtime delete UUID-1" in command[2]
        assert command[2].endswith("with administrator privileges")

    def test_sudo_wrapper(self):
        runner = RecordingRunner()
        SimctlGateway(runner=runner, elevation_command="sudo").delete_runtime_image("UUID-1")
        assert runner.calls[0][0] == ["sudo", "xcrun", "simctl", "runtime", "delete", "UUID-1"]

    def test_declined_prompt(self):
        runner = RecordingRunner(CommandResult(1, "", "execution error: User canceled. (-128)"))

        with pytest.raises(PrivilegedOperationError) as exc_info:
            SimctlGateway(runner=runner).delete_runtime_image("UUID-1")

        error = exc_info.value
        assert "User canceled" in error.detail
        assert "sudo xcrun simctl runtime delete UUID-1" in error.fallback_instruction
        assert error.fallback_instruction in error.description

    def test_launch_failure_becomes_privileged_error(self):
        runner = RecordingRunner(ControlError(ControlErrorKind.TOOL_NOT_FOUND, "osascript"))
        with pytest.raises(PrivilegedOperationError):
            SimctlGateway(runner=runner).delete_runtime_image("UUID-1")


class TestOpenSimulatorApp:
    """Tests for launching the Simulator application."""

    def test_launches_without_waiting(self):
        with patch("simfleet.core.devices.gateway.subprocess.Popen") as popen:
            SimctlGateway().open_simulator_app()
        assert popen.call_args[0][0] == ["open", "-a", "Simulator"]

    def test_launch_error_is_logged_not_raised(self):
        with patch("simfleet.core.devices.gateway.subprocess.Popen", side_effect=OSError("no open")):
            SimctlGateway().open_simulator_app()


class TestRunCommand:
    """Tests for the real subprocess runner."""

    def test_captures_output(self):
        result = run_command([sys.executable, "-c", "print('hello')"], timeout=10)
        assert result.returncode == 0
        assert result.stdout.strip() == "hello"

    def test_nonzero_exit_is_returned(self):
        result = run_command(
            [sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"],
            timeout=10,
        )
        assert result.returncode == 3
        assert result.stderr == "bad"

    def test_missing_tool(self):
        with pytest.raises(ControlError) as exc_info:
            run_command(["simfleet-definitely-missing-tool"], timeout=5)
        assert exc_info.value.kind is ControlErrorKind.TOOL_NOT_FOUND

    @pytest.mark.slow
    def test_timeout_kills_process(self):
        with pytest.raises(ControlError) as exc_info:
            run_command([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert exc_info.value.kind is ControlErrorKind.TIMED_OUT
