"""transitpresence - live presence and location synchronization for transit maps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("transit-presence")
except PackageNotFoundError:
    __version__ = "0+local"

from transitpresence.client import PresenceClient
from transitpresence.config import MqttStoreConfig, PresenceConfig
from transitpresence.exceptions import (
    CapabilityDeniedError,
    ErrorKind,
    PermissionDeniedError,
    PositionError,
    PositionTimeoutError,
    PositionUnavailableError,
    PresenceConfigError,
    PresenceError,
    PresenceStoreError,
    StoreWriteFailedError,
    UnknownPositionError,
)
from transitpresence.merger import StreamMerger, default_demo_fleet, merge_streams
from transitpresence.models import (
    Capability,
    Coordinate,
    DriverProfile,
    EntityKind,
    FleetEntry,
    FleetStatus,
    FocusEvent,
    MergedEntity,
    MergedView,
    PermissionState,
    Position,
    PresenceRecord,
    Selection,
    SelectionKind,
    SessionStatus,
    SharingState,
)
from transitpresence.permission import PermissionGate
from transitpresence.position import PositionOptions, PositionSource, WatchHandle
from transitpresence.selection import SelectionCoordinator
from transitpresence.sharing import SharingSession
from transitpresence.store import SERVER_TIMESTAMP, MemoryPresenceStore, PresenceStore

__all__ = [
    "__version__",
    "SERVER_TIMESTAMP",
    "Capability",
    "CapabilityDeniedError",
    "Coordinate",
    "DriverProfile",
    "EntityKind",
    "ErrorKind",
    "FleetEntry",
    "FleetStatus",
    "FocusEvent",
    "MemoryPresenceStore",
    "MergedEntity",
    "MergedView",
    "MqttStoreConfig",
    "PermissionDeniedError",
    "PermissionGate",
    "PermissionState",
    "Position",
    "PositionError",
    "PositionOptions",
    "PositionSource",
    "PositionTimeoutError",
    "PositionUnavailableError",
    "PresenceClient",
    "PresenceConfig",
    "PresenceConfigError",
    "PresenceError",
    "PresenceRecord",
    "PresenceStore",
    "PresenceStoreError",
    "Selection",
    "SelectionCoordinator",
    "SelectionKind",
    "SessionStatus",
    "SharingSession",
    "SharingState",
    "StoreWriteFailedError",
    "StreamMerger",
    "UnknownPositionError",
    "WatchHandle",
    "default_demo_fleet",
    "merge_streams",
]
