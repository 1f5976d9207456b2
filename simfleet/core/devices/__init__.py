"""
Device fleet core.

Leaf to root: metadata lookup, control-tool gateway, snapshot building,
error channel, reconciler, operation executor.
"""

from .errors import (
    ControlError,
    ControlErrorKind,
    DeviceNotFoundError,
    PrivilegedOperationError,
    SimulatorError,
)
from .models import (
    Device,
    DeviceGroup,
    DeviceKind,
    DeviceState,
    DeviceTypeRecord,
    FleetSnapshot,
    RawDeviceRecord,
    RuntimeImageRecord,
    RuntimeRecord,
    classify_kind,
)
from .metadata import (
    DeviceMetadata,
    DeviceMetadataLookup,
    DisplayProfile,
    load_static_specs,
    load_static_specs_async,
)
from .gateway import CommandResult, SimctlGateway, run_command
from .snapshot import (
    build_snapshot,
    build_snapshot_from_devices,
    describe_device,
    enrich_device,
    extract_version,
    format_display_name,
    has_meaningful_change,
)
from .error_channel import (
    ErrorCategory,
    ErrorChannel,
    ErrorEvent,
    NoticeChannel,
)
from .reconciler import (
    FleetReconciler,
    FleetState,
    PendingPatch,
    ReconcilerPhase,
)
from .operations import CreationReport, DeletionReport, OperationExecutor

__all__ = [
    # Errors
    'ControlError',
    'ControlErrorKind',
    'DeviceNotFoundError',
    'PrivilegedOperationError',
    'SimulatorError',
    # Models
    'Device',
    'DeviceGroup',
    'DeviceKind',
    'DeviceState',
    'DeviceTypeRecord',
    'FleetSnapshot',
    'RawDeviceRecord',
    'RuntimeImageRecord',
    'RuntimeRecord',
    'classify_kind',
    # Metadata
    'DeviceMetadata',
    'DeviceMetadataLookup',
    'DisplayProfile',
    'load_static_specs',
    'load_static_specs_async',
    # Gateway
    'CommandResult',
    'SimctlGateway',
    'run_command',
    # Snapshot
    'build_snapshot',
    'build_snapshot_from_devices',
    'describe_device',
    'enrich_device',
    'extract_version',
    'format_display_name',
    'has_meaningful_change',
    # Errors surfaced to users
    'ErrorCategory',
    'ErrorChannel',
    'ErrorEvent',
    'NoticeChannel',
    # Reconciler
    'FleetReconciler',
    'FleetState',
    'PendingPatch',
    'ReconcilerPhase',
    # Operations
    'CreationReport',
    'DeletionReport',
    'OperationExecutor',
]
