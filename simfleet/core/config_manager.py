"""
``key = value`` config files with per-user overrides.

The project config may live in a read-only checkout, so each user can place
an override file under ``USER_CONFIG_OVERRIDES_DIR``; its keys win over the
project file. Config files outside the project map to a hashed name under
``external/``.
"""

import asyncio
import hashlib
import re
from pathlib import Path
from typing import Dict, Iterable, List

import aiofiles

from .logging_utils import get_module_logger
from .paths import PROJECT_ROOT, USER_CONFIG_OVERRIDES_DIR


logger = get_module_logger("ConfigManager")

TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``key = value`` lines; ``#`` starts a comment, later keys win."""
    config: Dict[str, str] = {}
    for raw_line in lines:
        line = raw_line.split("#", 1)[0].strip()
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            continue
        config[key.strip()] = _strip_quotes(value.strip())
    return config


class ConfigManager:
    """Reads config files and merges the matching user override on top."""

    def __init__(self, overrides_dir: Path = USER_CONFIG_OVERRIDES_DIR):
        self._overrides_dir = overrides_dir
        self._project_root = PROJECT_ROOT.resolve()

    def _resolve_override_path(self, config_path: Path) -> Path:
        try:
            relative = config_path.resolve().relative_to(self._project_root)
        except ValueError:
            digest = hashlib.sha1(str(config_path).encode("utf-8")).hexdigest()[:10]
            stem = _UNSAFE_CHARS.sub("_", config_path.stem or "config")
            relative = Path("external") / f"{stem}_{digest}{config_path.suffix or '.txt'}"
        return self._overrides_dir / relative

    def _read_file(self, path: Path) -> Dict[str, str]:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return parse_config_lines(fh)
        except OSError as exc:
            logger.warning("Failed to read config %s: %s", path, exc)
            return {}

    def _read_override(self, config_path: Path) -> Dict[str, str]:
        override_path = self._resolve_override_path(config_path)
        if not override_path.exists():
            return {}
        return self._read_file(override_path)

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Read ``config_path`` and merge any user override on top.

        A missing or unreadable file contributes no keys.
        """
        config = self._read_file(config_path) if config_path.exists() else {}
        config.update(self._read_override(config_path))
        return config

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        config: Dict[str, str] = {}
        if await asyncio.to_thread(config_path.exists):
            try:
                async with aiofiles.open(config_path, "r", encoding="utf-8") as fh:
                    lines: List[str] = [line async for line in fh]
                config = parse_config_lines(lines)
            except OSError as exc:
                logger.warning("Failed to read config %s: %s", config_path, exc)

        config.update(await asyncio.to_thread(self._read_override, config_path))
        return config

    # ------------------------------------------------------------------
    # Typed getters: a missing key or an unparsable value gives the default

    def get_bool(self, config: Dict[str, str], key: str, default: bool = False) -> bool:
        if key not in config:
            return default
        return config[key].strip().lower() in TRUE_VALUES

    def get_int(self, config: Dict[str, str], key: str, default: int = 0) -> int:
        try:
            return int(config[key]) if key in config else default
        except ValueError:
            logger.warning("Invalid int for %s: %r, using %d", key, config[key], default)
            return default

    def get_float(self, config: Dict[str, str], key: str, default: float = 0.0) -> float:
        try:
            return float(config[key]) if key in config else default
        except ValueError:
            logger.warning("Invalid float for %s: %r, using %s", key, config[key], default)
            return default

    def get_str(self, config: Dict[str, str], key: str, default: str = "") -> str:
        return config.get(key, default)


_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _config_manager


__all__ = ["ConfigManager", "get_config_manager", "parse_config_lines"]
