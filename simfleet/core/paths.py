"""Centralized path constants for simfleet."""

from __future__ import annotations

import os
from pathlib import Path

# Project/package roots
PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

# Configuration
CONFIG_PATH = PROJECT_ROOT / "config.txt"

# Bundled data
DATA_DIR = PACKAGE_ROOT / "data"
DEVICE_SPECS_PATH = DATA_DIR / "device_specs.json"

# User-specific state (allows running from read-only project directories)
_USER_STATE_ENV = os.environ.get("SIMFLEET_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".simfleet")
USER_CONFIG_OVERRIDES_DIR = USER_STATE_DIR / "config_overrides"

# Logging directories
LOGS_DIR = USER_STATE_DIR / "logs"
MONITOR_LOG_FILE = LOGS_DIR / "simfleet.log"


def ensure_directories() -> None:
    """Create necessary directories if they don't exist."""

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    USER_STATE_DIR.mkdir(parents=True, exist_ok=True)
    USER_CONFIG_OVERRIDES_DIR.mkdir(parents=True, exist_ok=True)


__all__ = [
    'PROJECT_ROOT',
    'PACKAGE_ROOT',
    'CONFIG_PATH',
    'DATA_DIR',
    'DEVICE_SPECS_PATH',
    'LOGS_DIR',
    'MONITOR_LOG_FILE',
    'USER_STATE_DIR',
    'USER_CONFIG_OVERRIDES_DIR',
    'ensure_directories',
]
