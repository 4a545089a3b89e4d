"""Data models for transitpresence."""

from transitpresence.models._base import TransitBaseModel
from transitpresence.models.fleet import FleetEntry, FleetStatus
from transitpresence.models.position import Coordinate, Position
from transitpresence.models.presence import Capability, DriverProfile, PresenceRecord
from transitpresence.models.state import PermissionState, SessionStatus, SharingState
from transitpresence.models.view import (
    EntityKind,
    FocusEvent,
    MergedEntity,
    MergedView,
    Selection,
    SelectionKind,
)

__all__ = [
    "Capability",
    "Coordinate",
    "DriverProfile",
    "EntityKind",
    "FleetEntry",
    "FleetStatus",
    "FocusEvent",
    "MergedEntity",
    "MergedView",
    "PermissionState",
    "Position",
    "PresenceRecord",
    "Selection",
    "SelectionKind",
    "SessionStatus",
    "SharingState",
    "TransitBaseModel",
]
