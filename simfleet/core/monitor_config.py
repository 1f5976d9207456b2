"""
Monitor configuration - typed view over the ``key = value`` config file.

Every tunable of the reconciler, the executor and the gateway lives here so
the composition root can build all components from one object.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from .config_manager import ConfigManager, get_config_manager
from .paths import DEVICE_SPECS_PATH


DEFAULT_TOOL_COMMAND = "xcrun simctl"
DEFAULT_ELEVATION_COMMAND = "osascript"


@dataclass(frozen=True)
class MonitorConfig:
    """All monitor tunables, in seconds where a duration is meant."""

    tool_command: Tuple[str, ...] = ("xcrun", "simctl")
    command_timeout: Optional[float] = 30.0

    poll_interval: float = 5.0
    debounce_delay: float = 0.5
    cache_ttl: float = 2.0
    manual_refresh_delay: float = 0.1
    manual_refresh_timeout: float = 2.0

    error_display_seconds: float = 3.0
    notice_display_seconds: float = 1.0
    slow_operation_seconds: float = 2.0

    boot_settle_delay: float = 2.0
    shutdown_settle_delay: float = 1.0
    delete_settle_delay: float = 0.5

    show_all_runtimes: bool = False
    prune_on_start: bool = True
    open_simulator_on_boot: bool = True
    probe_device_profiles: bool = True
    elevation_command: str = DEFAULT_ELEVATION_COMMAND

    specs_path: Path = field(default=DEVICE_SPECS_PATH)
    log_level: str = "info"
    log_file: Optional[Path] = None

    @classmethod
    def from_mapping(
        cls,
        config: Dict[str, str],
        manager: Optional[ConfigManager] = None,
    ) -> "MonitorConfig":
        """Build a config from a raw ``key -> str`` mapping, keeping defaults for missing keys."""
        cm = manager or get_config_manager()
        defaults = cls()

        timeout = cm.get_float(config, "command_timeout", defaults.command_timeout or 0.0)
        tool_command = tuple(shlex.split(cm.get_str(config, "tool_command", DEFAULT_TOOL_COMMAND)))
        specs_path = cm.get_str(config, "specs_path", "")
        log_file = cm.get_str(config, "log_file", "")

        return cls(
            tool_command=tool_command or defaults.tool_command,
            command_timeout=timeout if timeout > 0 else None,
            poll_interval=cm.get_float(config, "poll_interval", defaults.poll_interval),
            debounce_delay=cm.get_float(config, "debounce_delay", defaults.debounce_delay),
            cache_ttl=cm.get_float(config, "cache_ttl", defaults.cache_ttl),
            manual_refresh_delay=cm.get_float(config, "manual_refresh_delay", defaults.manual_refresh_delay),
            manual_refresh_timeout=cm.get_float(config, "manual_refresh_timeout", defaults.manual_refresh_timeout),
            error_display_seconds=cm.get_float(config, "error_display_seconds", defaults.error_display_seconds),
            notice_display_seconds=cm.get_float(config, "notice_display_seconds", defaults.notice_display_seconds),
            slow_operation_seconds=cm.get_float(config, "slow_operation_seconds", defaults.slow_operation_seconds),
            boot_settle_delay=cm.get_float(config, "boot_settle_delay", defaults.boot_settle_delay),
            shutdown_settle_delay=cm.get_float(config, "shutdown_settle_delay", defaults.shutdown_settle_delay),
            delete_settle_delay=cm.get_float(config, "delete_settle_delay", defaults.delete_settle_delay),
            show_all_runtimes=cm.get_bool(config, "show_all_runtimes", defaults.show_all_runtimes),
            prune_on_start=cm.get_bool(config, "prune_on_start", defaults.prune_on_start),
            open_simulator_on_boot=cm.get_bool(config, "open_simulator_on_boot", defaults.open_simulator_on_boot),
            probe_device_profiles=cm.get_bool(config, "probe_device_profiles", defaults.probe_device_profiles),
            elevation_command=cm.get_str(config, "elevation_command", defaults.elevation_command),
            specs_path=Path(specs_path).expanduser() if specs_path else defaults.specs_path,
            log_level=cm.get_str(config, "log_level", defaults.log_level).lower(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )

    @classmethod
    async def load(cls, config_path: Path, manager: Optional[ConfigManager] = None) -> "MonitorConfig":
        """Read ``config_path`` (missing file means all defaults)."""
        cm = manager or get_config_manager()
        raw = await cm.read_config_async(config_path)
        return cls.from_mapping(raw, cm)


__all__ = ["MonitorConfig", "DEFAULT_TOOL_COMMAND", "DEFAULT_ELEVATION_COMMAND"]
