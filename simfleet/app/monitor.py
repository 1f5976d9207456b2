import argparse
import asyncio
import dataclasses
import signal
import sys
from pathlib import Path
from typing import List, Optional

from simfleet.core.devices import (
    DeviceMetadataLookup,
    ErrorChannel,
    FleetReconciler,
    FleetSnapshot,
    FleetState,
    NoticeChannel,
    OperationExecutor,
    SimctlGateway,
    load_static_specs_async,
)
from simfleet.core.logging_config import configure_logging
from simfleet.core.logging_utils import get_module_logger
from simfleet.core.monitor_config import MonitorConfig
from simfleet.core.operation_timer import OperationTimer
from simfleet.core.paths import CONFIG_PATH, MONITOR_LOG_FILE, ensure_directories


logger = get_module_logger("Monitor")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments. Unset options fall back to the config file."""
    parser = argparse.ArgumentParser(
        description="simfleet - simulated device fleet monitor"
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to the key = value config file (default: config.txt)"
    )

    parser.add_argument(
        "--log-level",
        choices=['debug', 'info', 'warning', 'error', 'critical'],
        default=None,
        help="Logging level (default: from config, else info)"
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Rotating log file (default: ~/.simfleet/logs/simfleet.log)"
    )

    parser.add_argument(
        "--show-all-runtimes",
        action="store_true",
        default=None,
        help="List installed runtimes that have no devices"
    )

    commands = parser.add_mutually_exclusive_group()
    commands.add_argument("--boot", metavar="DEVICE_ID", help="Boot a device, then exit")
    commands.add_argument("--shutdown", metavar="DEVICE_ID", help="Shut down a device, then exit")
    commands.add_argument(
        "--create-defaults",
        metavar="RUNTIME_KEY",
        help="Create the default phones and tablets for a runtime, then exit"
    )
    commands.add_argument(
        "--delete-group",
        metavar="RUNTIME_KEY",
        help="Delete every device of a runtime, then exit"
    )
    commands.add_argument(
        "--once",
        action="store_true",
        help="Print the fleet once and exit"
    )

    parser.add_argument(
        "--delete-runtime-image",
        action="store_true",
        help="With --delete-group, also delete the runtime image (asks for administrator rights)"
    )

    return parser.parse_args(argv)


def apply_cli_overrides(config: MonitorConfig, args: argparse.Namespace) -> MonitorConfig:
    overrides = {}
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if args.log_file is not None:
        overrides["log_file"] = args.log_file
    if args.show_all_runtimes is not None:
        overrides["show_all_runtimes"] = args.show_all_runtimes
    return dataclasses.replace(config, **overrides) if overrides else config


def format_fleet_summary(snapshot: FleetSnapshot) -> List[str]:
    """One line per group followed by one indented line per device."""
    if snapshot.is_empty:
        return ["No devices"]

    lines: List[str] = []
    for group in snapshot.groups:
        lines.append(f"{group.display_name} ({len(group.devices)} devices)")
        for device in group.devices:
            size = f' {device.screen_size_inches:.1f}"' if device.screen_size_inches > 0 else ""
            lines.append(f"  [{device.state_label}] {device.name}{size}  {device.id}")
    return lines


class FleetLogObserver:
    """Logs the fleet whenever the published snapshot changes."""

    def __init__(self):
        self._last_snapshot: Optional[FleetSnapshot] = None

    def __call__(self, state: FleetState) -> None:
        if state.notice:
            logger.info("%s", state.notice)
        if not state.has_initial_load_completed:
            return
        if state.snapshot == self._last_snapshot:
            return
        self._last_snapshot = state.snapshot
        for line in format_fleet_summary(state.snapshot):
            logger.info("%s", line)


async def run_command(args: argparse.Namespace, executor: OperationExecutor) -> bool:
    """Run the one-shot command selected on the command line."""
    if args.boot:
        return await executor.boot(args.boot)
    if args.shutdown:
        return await executor.shutdown(args.shutdown)
    if args.create_defaults:
        report = await executor.create_default_devices(args.create_defaults)
        logger.info(
            "Created: %s | skipped: %s | failed: %s",
            ", ".join(report.created) or "-",
            ", ".join(report.skipped) or "-",
            ", ".join(report.failed) or "-",
        )
        return not report.failed
    if args.delete_group:
        report = await executor.delete_devices_for_runtime(
            args.delete_group,
            also_delete_runtime_image=args.delete_runtime_image,
        )
        return report.succeeded
    return True


def _is_one_shot(args: argparse.Namespace) -> bool:
    return bool(args.once or args.boot or args.shutdown or args.create_defaults or args.delete_group)


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the headless fleet monitor.

    Without a command the monitor polls until SIGINT/SIGTERM. With a
    command it loads the fleet, runs the command, and exits.
    """
    args = parse_args(argv)

    ensure_directories()
    config = apply_cli_overrides(await MonitorConfig.load(args.config), args)

    configure_logging(
        config.log_level,
        force=True,
        console=True,
        log_file=config.log_file or MONITOR_LOG_FILE,
    )

    logger.info("=" * 60)
    logger.info("simfleet - Fleet Monitor Starting")
    logger.info("=" * 60)
    logger.info("Config: %s", args.config)
    logger.info("Tool: %s (timeout %s)", " ".join(config.tool_command), config.command_timeout or "none")
    logger.info("Poll interval: %.1fs", config.poll_interval)
    logger.info("=" * 60)

    lookup = DeviceMetadataLookup(await load_static_specs_async(config.specs_path))
    gateway = SimctlGateway(
        tool_command=config.tool_command,
        timeout=config.command_timeout,
        elevation_command=config.elevation_command,
    )
    reconciler = FleetReconciler(
        gateway,
        lookup,
        poll_interval=config.poll_interval,
        debounce_delay=config.debounce_delay,
        cache_ttl=config.cache_ttl,
        manual_refresh_delay=config.manual_refresh_delay,
        manual_refresh_timeout=config.manual_refresh_timeout,
        show_all_runtimes=config.show_all_runtimes,
        prune_on_start=config.prune_on_start,
        probe_device_profiles=config.probe_device_profiles,
        error_channel=ErrorChannel(config.error_display_seconds),
        notice_channel=NoticeChannel(config.notice_display_seconds),
        timer=OperationTimer(config.slow_operation_seconds),
    )
    executor = OperationExecutor(
        reconciler,
        gateway,
        boot_settle_delay=config.boot_settle_delay,
        shutdown_settle_delay=config.shutdown_settle_delay,
        delete_settle_delay=config.delete_settle_delay,
        open_simulator_on_boot=config.open_simulator_on_boot,
    )
    reconciler.add_observer(FleetLogObserver())

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown requested")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            pass  # Windows doesn't support add_signal_handler

    ok = True
    try:
        await reconciler.start()
        if args.once:
            ok = not reconciler.state.has_error
        elif _is_one_shot(args):
            ok = await run_command(args, executor)
        else:
            await stop_event.wait()
    finally:
        await executor.stop()
        await reconciler.stop()

    logger.info("=" * 60)
    logger.info("simfleet - Fleet Monitor Stopped")
    logger.info("=" * 60)
    return 0 if ok else 1


def run(argv: Optional[List[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as exc:  # pragma: no cover - fatal guard
        print(f"Fatal error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(run())
