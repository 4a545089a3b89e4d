"""Normalization helpers.

Centralizes defensive parsing of store documents and platform payloads.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

# Threshold to distinguish epoch seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce a store timestamp into a tz-aware UTC datetime.

    Accepts datetimes, epoch seconds or milliseconds, ISO-8601 strings and
    ``{"seconds": ..., "nanoseconds": ...}`` mappings. Returns ``None`` for
    anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, dict):
        seconds = safe_float(value.get("seconds"))
        if seconds is None:
            return None
        nanos = safe_float(value.get("nanoseconds")) or 0.0
        return datetime.fromtimestamp(seconds + nanos / 1e9, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            numeric = safe_float(text)
            return parse_timestamp(numeric) if numeric is not None else None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    number = safe_float(value)
    if number is None:
        return None
    if number >= _MS_THRESHOLD:
        number = number / 1000.0
    return datetime.fromtimestamp(number, tz=UTC)


def is_meaningful(value: Any) -> bool:
    """Return True if the value should be included in a store patch."""
    if value is None:
        return False
    if value == "":
        return False
    if value == {}:
        return False
    return bool(value != [])


def prune_patch(data: Any) -> Any:
    """Recursively drop non-meaningful values from a patch structure.

    Merge-updates overwrite every key they carry, so a missing key must mean
    "no update" rather than "set to null".
    """
    if isinstance(data, dict):
        pruned: dict[str, Any] = {}
        for key, value in data.items():
            cleaned = prune_patch(value)
            if is_meaningful(cleaned):
                pruned[key] = cleaned
        return pruned

    if isinstance(data, list):
        items: list[Any] = []
        for item in data:
            cleaned = prune_patch(item)
            if is_meaningful(cleaned):
                items.append(cleaned)
        return items

    return data
