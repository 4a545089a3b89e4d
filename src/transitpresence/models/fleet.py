"""Fleet entry model (externally owned, read-only to the engine)."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from transitpresence.models._base import StoreTimestamp, TransitBaseModel
from transitpresence.models.position import Coordinate
from transitpresence.normalize import safe_float


class FleetStatus(StrEnum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"

    @classmethod
    def _missing_(cls, value: object) -> FleetStatus:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return cls.INACTIVE


class FleetEntry(TransitBaseModel):
    """A bus record maintained by the dispatch process."""

    bus_id: str = Field(validation_alias=AliasChoices("busId", "bus_id", "id"))
    route: str = "Unknown Route"
    status: FleetStatus = FleetStatus.INACTIVE
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
    speed_kmh: float | None = Field(
        default=None,
        validation_alias=AliasChoices("speedKmh", "speed_kmh", "speed"),
    )
    last_updated_at: StoreTimestamp = Field(
        default=None,
        validation_alias=AliasChoices("lastUpdatedAt", "last_updated_at", "lastUpdated"),
    )

    @field_validator("latitude", "longitude", "accuracy_meters", "heading_degrees", "speed_kmh", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("bus_id", "route", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> FleetEntry:
        """Validate a store document, using the document id as fallback bus id."""
        values = dict(data)
        if not any(key in values for key in ("busId", "bus_id")):
            values["busId"] = doc_id
        return cls.model_validate(values)

    @property
    def coordinate(self) -> Coordinate | None:
        return Coordinate.from_values(self.latitude, self.longitude)
