"""Custom exception hierarchy for transitpresence."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Stable error identifiers surfaced to consumers."""

    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"
    CAPABILITY_DENIED = "capability_denied"
    STORE_WRITE_FAILED = "store_write_failed"
    STORE = "store"
    CONFIG = "config"


class PresenceError(Exception):
    """Base exception for all transitpresence errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_message: str = "Unknown error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class PresenceConfigError(PresenceError):
    """Invalid or missing configuration."""

    kind = ErrorKind.CONFIG
    default_message = "Invalid configuration"


class PositionError(PresenceError):
    """Base for normalized position acquisition failures."""


class PermissionDeniedError(PositionError):
    """The user or the platform refused location access."""

    kind = ErrorKind.PERMISSION_DENIED
    default_message = "Location access denied by user"


class PositionUnavailableError(PositionError):
    """The device could not determine a position (or has no geolocation)."""

    kind = ErrorKind.POSITION_UNAVAILABLE
    default_message = "Location information unavailable"


class PositionTimeoutError(PositionError):
    """No position was produced within the requested timeout."""

    kind = ErrorKind.TIMEOUT
    default_message = "Location request timed out"


class UnknownPositionError(PositionError):
    """Any other position failure."""

    kind = ErrorKind.UNKNOWN
    default_message = "Unknown location error"


class CapabilityDeniedError(PresenceError):
    """The caller is not a verified driver."""

    kind = ErrorKind.CAPABILITY_DENIED
    default_message = "Only verified drivers can share location"


class PresenceStoreError(PresenceError):
    """Store-level failure that is not a document write (closed store, bad query)."""

    kind = ErrorKind.STORE
    default_message = "Presence store error"

    def __init__(
        self,
        message: str | None = None,
        *,
        collection: str = "",
        doc_id: str = "",
    ) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(message)


class StoreWriteFailedError(PresenceStoreError):
    """A create, merge-update or delete did not commit.

    Never changes the state of an active sharing session; the next
    position update issues a fresh write.
    """

    kind = ErrorKind.STORE_WRITE_FAILED
    default_message = "Failed to update location"
