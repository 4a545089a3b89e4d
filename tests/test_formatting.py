from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from transitpresence.formatting import format_accuracy, format_last_updated, format_speed

NOW = datetime(2026, 1, 10, 12, tzinfo=UTC)


@pytest.mark.parametrize(
    ("age", "expected"),
    [
        (timedelta(seconds=30), "Just now"),
        (timedelta(minutes=5), "5m ago"),
        (timedelta(hours=2, minutes=59), "2h ago"),
        (timedelta(days=3), "2026-01-07"),
    ],
)
def test_format_last_updated(age: timedelta, expected: str) -> None:
    assert format_last_updated(NOW - age, NOW) == expected


def test_format_last_updated_unknown() -> None:
    assert format_last_updated(None, NOW) == "Unknown"


def test_format_speed() -> None:
    assert format_speed(None) == "Stationary"
    assert format_speed(0.0) == "Stationary"
    assert format_speed(10.0) == "36 km/h"


def test_format_accuracy() -> None:
    assert format_accuracy(None) == "Unknown"
    assert format_accuracy(12.4) == "12m"
    assert format_accuracy(1500) == "1.5km"
