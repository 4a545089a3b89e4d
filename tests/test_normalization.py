from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from transitpresence.normalize import is_meaningful, parse_timestamp, prune_patch, safe_float


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("12.5", 12.5),
        (3, 3.0),
        ("--", None),
        ("", None),
        (None, None),
        (True, None),
        ("abc", None),
        (float("nan"), None),
        (float("inf"), None),
    ],
)
def test_safe_float(value: object, expected: float | None) -> None:
    assert safe_float(value) == expected


def test_parse_timestamp_variants() -> None:
    noon = datetime(2026, 1, 1, 12, tzinfo=UTC)

    assert parse_timestamp(noon) == noon
    assert parse_timestamp(datetime(2026, 1, 1, 12)) == noon
    assert parse_timestamp("2026-01-01T12:00:00Z") == noon
    assert parse_timestamp("2026-01-01T07:00:00-05:00") == noon
    assert parse_timestamp(1_767_268_800) == noon
    assert parse_timestamp(1_767_268_800_000) == noon
    assert parse_timestamp("1767268800") == noon
    assert parse_timestamp({"seconds": 1_767_268_800, "nanoseconds": 0}) == noon


def test_parse_timestamp_keeps_offset_aware_value() -> None:
    value = datetime(2026, 1, 1, 7, tzinfo=timezone(timedelta(hours=-5)))
    assert parse_timestamp(value) == datetime(2026, 1, 1, 12, tzinfo=UTC)


@pytest.mark.parametrize("value", [None, "", "soon", {"nanoseconds": 5}, [], object()])
def test_parse_timestamp_rejects_garbage(value: object) -> None:
    assert parse_timestamp(value) is None


def test_is_meaningful() -> None:
    assert is_meaningful(0)
    assert is_meaningful(False)
    assert not is_meaningful(None)
    assert not is_meaningful("")
    assert not is_meaningful({})
    assert not is_meaningful([])


def test_prune_patch_drops_empty_values_recursively() -> None:
    patch = {
        "latitude": 1.0,
        "accuracyMeters": None,
        "headingDegrees": 0.0,
        "meta": {"note": "", "tags": [None, "x"]},
        "empty": {"inner": None},
    }

    assert prune_patch(patch) == {
        "latitude": 1.0,
        "headingDegrees": 0.0,
        "meta": {"tags": ["x"]},
    }
