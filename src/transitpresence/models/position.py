"""Position and coordinate models."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from transitpresence.models._base import StoreTimestamp, TransitBaseModel, utcnow
from transitpresence.normalize import safe_float


@dataclass(frozen=True)
class Coordinate:
    """A latitude/longitude pair in degrees."""

    latitude: float
    longitude: float

    @staticmethod
    def is_valid(latitude: Any, longitude: Any) -> bool:
        """Whether the pair is finite and inside the WGS84 ranges."""
        lat = safe_float(latitude)
        lng = safe_float(longitude)
        if lat is None or lng is None:
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

    @classmethod
    def from_values(cls, latitude: Any, longitude: Any) -> Coordinate | None:
        """Build a coordinate, or ``None`` when the pair is not valid."""
        if not cls.is_valid(latitude, longitude):
            return None
        return cls(float(latitude), float(longitude))


class Position(TransitBaseModel):
    """A single device position fix.

    Parameters
    ----------
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    accuracy_meters : float or None
        Horizontal accuracy radius.
    heading_degrees : float or None
        Direction of travel, clockwise from true north.
    speed_meters_per_second : float or None
        Ground speed.
    captured_at : datetime
        Device time of the fix.
    """

    latitude: float
    longitude: float
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
    captured_at: StoreTimestamp = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("capturedAt", "captured_at", "timestamp"),
    )

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _require_float(cls, value: Any) -> float:
        parsed = safe_float(value)
        if parsed is None:
            raise ValueError("coordinate must be a finite number")
        return parsed

    @field_validator("accuracy_meters", "heading_degrees", "speed_meters_per_second", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @property
    def coordinate(self) -> Coordinate | None:
        return Coordinate.from_values(self.latitude, self.longitude)

    def position_fields(self) -> dict[str, Any]:
        """Position fields as a camelCase document patch."""
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracyMeters": self.accuracy_meters,
            "headingDegrees": self.heading_degrees,
            "speedMetersPerSecond": self.speed_meters_per_second,
            "capturedAt": self.captured_at,
        }
