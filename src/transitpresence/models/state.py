"""Consumer-facing state enums and the sharing status snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from transitpresence.exceptions import ErrorKind


class PermissionState(StrEnum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"


class SharingState(StrEnum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    ACQUIRING = "acquiring"
    ACTIVE = "active"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass(frozen=True)
class SessionStatus:
    """Snapshot of a sharing session for the view layer.

    ``error_kind``/``error_message`` describe the most recent reported
    error. They are set together with ``SharingState.ERROR`` but may also
    be set while ``ACTIVE`` (failed writes, transient position errors).
    """

    state: SharingState
    error_kind: ErrorKind | None = None
    error_message: str = ""

    @property
    def is_sharing(self) -> bool:
        return self.state == SharingState.ACTIVE

    @property
    def is_busy(self) -> bool:
        return self.state in (
            SharingState.REQUESTING_PERMISSION,
            SharingState.ACQUIRING,
            SharingState.STOPPING,
        )
