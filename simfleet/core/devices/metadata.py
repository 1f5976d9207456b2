"""
Device metadata lookup - screen geometry per device model.

Two sources are merged:
- a bundled static mapping (display name -> metadata), loaded once;
- a dynamic set probed from each installed device type's display profile.

Dynamic entries win on key collision; fields a profile does not declare are
filled from the static entry of the same name. Lookups by display name fall
back to a most-specific-first substring match.
"""

from __future__ import annotations

import asyncio
import json
import math
import plistlib
from xml.parsers.expat import ExpatError
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol, Tuple

import aiofiles

from simfleet.core.logging_utils import get_module_logger
from .models import DeviceKind, DeviceTypeRecord, classify_kind

logger = get_module_logger("DeviceMetadata")

SOURCE_STATIC = "static"
SOURCE_PROFILE = "profile"

PROFILE_RELATIVE_PATH = Path("Contents") / "Resources" / "profile.plist"


@dataclass(frozen=True)
class DeviceMetadata:
    """Physical and logical screen information for one device model."""
    screen_size_inches: Optional[float] = None
    physical_resolution: str = ""
    logical_resolution: str = ""
    classification: str = ""
    scale: Optional[float] = None
    pixels_per_inch: Optional[float] = None
    pixel_width: Optional[int] = None
    pixel_height: Optional[int] = None
    point_width: Optional[float] = None
    point_height: Optional[float] = None
    source: str = SOURCE_STATIC

    @property
    def kind(self) -> DeviceKind:
        return classify_kind("", self.classification)


@dataclass(frozen=True)
class DisplayProfile:
    """Display geometry declared by a device type. Every field is optional."""
    pixel_width: Optional[int] = None
    pixel_height: Optional[int] = None
    scale: Optional[float] = None
    width_dpi: Optional[float] = None
    height_dpi: Optional[float] = None

    @classmethod
    def from_bag(cls, bag: Mapping[str, Any]) -> "DisplayProfile":
        width = _optional_float(bag.get("mainScreenWidth"))
        height = _optional_float(bag.get("mainScreenHeight"))
        return cls(
            pixel_width=int(width) if width else None,
            pixel_height=int(height) if height else None,
            scale=_optional_float(bag.get("mainScreenScale")) or None,
            width_dpi=_optional_float(bag.get("mainScreenWidthDPI")) or None,
            height_dpi=_optional_float(bag.get("mainScreenHeightDPI")) or None,
        )

    @property
    def pixels_per_inch(self) -> Optional[float]:
        return self.width_dpi or self.height_dpi


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or number < 0:
        return None
    return number


def _format_dimension(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"


def metadata_from_profile(
    device_type: DeviceTypeRecord,
    profile: DisplayProfile,
) -> Optional[DeviceMetadata]:
    """Derive metadata from a probed display profile.

    Returns None when the profile declares no pixel dimensions. A missing
    pixel density leaves the diagonal size as None rather than 0.
    """
    width, height = profile.pixel_width, profile.pixel_height
    if not width or not height:
        return None

    point_width = point_height = None
    logical = ""
    if profile.scale:
        point_width = width / profile.scale
        point_height = height / profile.scale
        logical = f"{_format_dimension(point_width)}*{_format_dimension(point_height)}"

    ppi = profile.pixels_per_inch
    diagonal = round(math.hypot(width, height) / ppi, 1) if ppi else None

    kind = classify_kind(device_type.name, device_type.product_family)
    classification = device_type.product_family or {
        DeviceKind.PHONE: "iPhone",
        DeviceKind.TABLET: "iPad",
    }.get(kind, "")

    return DeviceMetadata(
        screen_size_inches=diagonal,
        physical_resolution=f"{width}*{height}",
        logical_resolution=logical,
        classification=classification,
        scale=profile.scale,
        pixels_per_inch=ppi,
        pixel_width=width,
        pixel_height=height,
        point_width=point_width,
        point_height=point_height,
        source=SOURCE_PROFILE,
    )


def _fill_missing(primary: DeviceMetadata, fallback: Optional[DeviceMetadata]) -> DeviceMetadata:
    """Keep every field ``primary`` declares and take the rest from ``fallback``."""
    if fallback is None:
        return primary
    updates = {}
    for f in fields(DeviceMetadata):
        if f.name == "source":
            continue
        if getattr(primary, f.name) in (None, "") and getattr(fallback, f.name) not in (None, ""):
            updates[f.name] = getattr(fallback, f.name)
    return replace(primary, **updates) if updates else primary


# =========================================================================
# Static specs
# =========================================================================

def parse_static_specs(payload: Mapping[str, Any]) -> Dict[str, DeviceMetadata]:
    """Parse ``{"devices": {name: {screenSize, resolution, logicalResolution, deviceType}}}``."""
    devices = payload.get("devices") if isinstance(payload, Mapping) else None
    if not isinstance(devices, Mapping):
        raise ValueError("device specs must contain a 'devices' object")

    specs: Dict[str, DeviceMetadata] = {}
    for name, entry in devices.items():
        if not isinstance(entry, Mapping):
            logger.warning("Skipping malformed spec entry for %s", name)
            continue
        specs[str(name)] = DeviceMetadata(
            screen_size_inches=_optional_float(entry.get("screenSize")),
            physical_resolution=str(entry.get("resolution") or ""),
            logical_resolution=str(entry.get("logicalResolution") or ""),
            classification=str(entry.get("deviceType") or ""),
            source=SOURCE_STATIC,
        )
    return specs


def load_static_specs(path: Path) -> Dict[str, DeviceMetadata]:
    """Load the bundled spec file; an unreadable file yields an empty mapping."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return parse_static_specs(json.load(fh))
    except (OSError, ValueError) as exc:
        logger.error("Failed to load device specs from %s: %s", path, exc)
        return {}


async def load_static_specs_async(path: Path) -> Dict[str, DeviceMetadata]:
    """Async version of ``load_static_specs``."""
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as fh:
            text = await fh.read()
        return parse_static_specs(json.loads(text))
    except (OSError, ValueError) as exc:
        logger.error("Failed to load device specs from %s: %s", path, exc)
        return {}


# =========================================================================
# Dynamic profile probing
# =========================================================================

ProfileReader = Callable[[str], Optional[Mapping[str, Any]]]


class DeviceTypeSource(Protocol):
    def list_device_types(self) -> Iterable[DeviceTypeRecord]:
        ...


def read_device_profile(bundle_path: str) -> Optional[Mapping[str, Any]]:
    """Read the display profile of a device type bundle, or None if it has none.

    Raises:
        OSError: the profile exists but cannot be read.
        ValueError: the profile is not a valid plist.
    """
    profile_path = Path(bundle_path) / PROFILE_RELATIVE_PATH
    if not profile_path.exists():
        return None
    with open(profile_path, "rb") as fh:
        try:
            data = plistlib.load(fh)
        except ExpatError as exc:
            raise ValueError(f"malformed profile {profile_path}: {exc}") from exc
    return data if isinstance(data, dict) else None


class DeviceMetadataLookup:
    """
    Resolves device names and device-type identifiers to ``DeviceMetadata``.

    Constructed by the composition root and injected wherever devices are
    enriched, so tests can pass a fixture mapping.
    """

    def __init__(self, static_specs: Optional[Mapping[str, DeviceMetadata]] = None):
        self._static: Dict[str, DeviceMetadata] = dict(static_specs or {})
        self._dynamic_by_identifier: Dict[str, DeviceMetadata] = {}
        self._dynamic_by_name: Dict[str, DeviceMetadata] = {}
        self._by_name: Dict[str, DeviceMetadata] = {}
        self._fuzzy_keys: Tuple[str, ...] = ()
        self._rebuild()

    @classmethod
    def from_file(cls, path: Path) -> "DeviceMetadataLookup":
        return cls(load_static_specs(path))

    def _rebuild(self) -> None:
        merged = dict(self._static)
        for name, metadata in self._dynamic_by_name.items():
            merged[name] = _fill_missing(metadata, self._static.get(name))
        self._by_name = merged
        # sorted() is stable, so equal-length keys keep insertion order
        self._fuzzy_keys = tuple(sorted((k for k in merged if k), key=lambda k: -len(k)))

    # ------------------------------------------------------------------
    # Lookups

    def resolve(self, display_name: str) -> Optional[DeviceMetadata]:
        """Exact match first, then the longest key contained in ``display_name``."""
        exact = self._by_name.get(display_name)
        if exact is not None:
            return exact

        for key in self._fuzzy_keys:
            if key in display_name:
                return self._by_name[key]
        return None

    def resolve_type(self, identifier: str) -> Optional[DeviceMetadata]:
        """Exact lookup by device-type identifier (dynamic set only)."""
        return self._dynamic_by_identifier.get(identifier)

    def resolve_device(self, name: str, identifier: Optional[str] = None) -> Optional[DeviceMetadata]:
        if identifier:
            metadata = self.resolve_type(identifier)
            if metadata is not None:
                return metadata
        return self.resolve(name)

    def all_specs(self) -> Dict[str, DeviceMetadata]:
        return dict(self._by_name)

    @property
    def dynamic_count(self) -> int:
        return len(self._dynamic_by_identifier)

    # ------------------------------------------------------------------
    # Refresh

    async def refresh(
        self,
        source: DeviceTypeSource,
        profile_reader: ProfileReader = read_device_profile,
    ) -> int:
        """Re-probe every device type's display profile and merge over the static set.

        ``ControlError`` from listing device types propagates; a single
        unreadable profile is skipped. Returns the number of probed types.
        """
        device_types = await asyncio.to_thread(source.list_device_types)

        by_identifier: Dict[str, DeviceMetadata] = {}
        by_name: Dict[str, DeviceMetadata] = {}

        for device_type in device_types:
            if not device_type.bundle_path:
                continue
            try:
                bag = await asyncio.to_thread(profile_reader, device_type.bundle_path)
            except (OSError, ValueError) as exc:
                logger.debug("Could not read profile for %s: %s", device_type.identifier, exc)
                continue
            if not bag:
                continue

            metadata = metadata_from_profile(device_type, DisplayProfile.from_bag(bag))
            if metadata is None:
                continue

            by_identifier[device_type.identifier] = _fill_missing(metadata, self._static.get(device_type.name))
            by_name[device_type.name] = metadata

        self._dynamic_by_identifier = by_identifier
        self._dynamic_by_name = by_name
        self._rebuild()

        logger.info("Probed %d device type profiles (%d static specs)", len(by_identifier), len(self._static))
        return len(by_identifier)


__all__ = [
    "DeviceMetadata",
    "DisplayProfile",
    "DeviceMetadataLookup",
    "ProfileReader",
    "metadata_from_profile",
    "parse_static_specs",
    "load_static_specs",
    "load_static_specs_async",
    "read_device_profile",
    "SOURCE_STATIC",
    "SOURCE_PROFILE",
]
