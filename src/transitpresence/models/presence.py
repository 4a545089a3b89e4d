"""Driver identity and presence record models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from transitpresence.models._base import StoreTimestamp, TransitBaseModel
from transitpresence.models.position import Coordinate
from transitpresence.normalize import safe_float


@dataclass(frozen=True)
class Capability:
    """Role flags resolved outside the engine."""

    is_driver: bool
    is_verified: bool

    @property
    def can_share(self) -> bool:
        return self.is_driver is True and self.is_verified is True


@dataclass(frozen=True)
class DriverProfile:
    """Identity fields copied into a presence record on creation."""

    driver_id: str
    display_name: str | None = None
    bus_number: str | None = None
    route: str | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        if not self.driver_id or not self.driver_id.strip():
            raise ValueError("driver_id must be non-empty")

    def identity_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "driverId": self.driver_id,
            "displayName": self.display_name or "Driver",
            "busNumber": self.bus_number or "Unknown",
            "route": self.route or "Unknown Route",
        }
        if self.email:
            fields["email"] = self.email
        return fields


class PresenceRecord(TransitBaseModel):
    """Live, ephemeral per-driver document representing an active share.

    ``last_seen_at`` and ``created_at`` are assigned by the store at
    commit time and are ``None`` until a store has resolved them.
    """

    driver_id: str = Field(validation_alias=AliasChoices("driverId", "driver_id", "userId"))
    display_name: str = "Driver"
    bus_number: str = "Unknown"
    route: str = "Unknown Route"
    email: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    accuracy_meters: float | None = Field(
        default=None,
        validation_alias=AliasChoices("accuracyMeters", "accuracy_meters", "accuracy"),
    )
    heading_degrees: float | None = Field(
        default=None,
        validation_alias=AliasChoices("headingDegrees", "heading_degrees", "heading"),
    )
    speed_meters_per_second: float | None = Field(
        default=None,
        validation_alias=AliasChoices("speedMetersPerSecond", "speed_meters_per_second", "speed"),
    )
    captured_at: StoreTimestamp = None
    is_active: bool = True
    last_seen_at: StoreTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("lastSeenAt", "last_seen_at", "lastSeen"),
    )
    created_at: StoreTimestamp = None

    @field_validator(
        "latitude",
        "longitude",
        "accuracy_meters",
        "heading_degrees",
        "speed_meters_per_second",
        mode="before",
    )
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("driver_id", "display_name", "bus_number", "route", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> PresenceRecord:
        """Validate a store document, using the document id as fallback driver id."""
        values = dict(data)
        if not any(key in values for key in ("driverId", "driver_id", "userId")):
            values["driverId"] = doc_id
        return cls.model_validate(values)

    @property
    def coordinate(self) -> Coordinate | None:
        return Coordinate.from_values(self.latitude, self.longitude)

