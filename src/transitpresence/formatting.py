"""Display helpers for merged entities."""

from __future__ import annotations

from datetime import datetime

from transitpresence.models._base import utcnow


def format_last_updated(timestamp: datetime | None, now: datetime | None = None) -> str:
    """Relative age: ``Just now``, ``5m ago``, ``2h ago``, else the date."""
    if timestamp is None:
        return "Unknown"
    current = now or utcnow()
    minutes = int((current - timestamp).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return timestamp.date().isoformat()


def format_speed(meters_per_second: float | None) -> str:
    if not meters_per_second:
        return "Stationary"
    return f"{round(meters_per_second * 3.6)} km/h"


def format_accuracy(meters: float | None) -> str:
    if not meters:
        return "Unknown"
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"
