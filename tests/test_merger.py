from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from fakes import FakeClock, flush
from transitpresence.config import PresenceConfig
from transitpresence.merger import (
    StreamMerger,
    centroid,
    default_demo_fleet,
    is_stale,
    merge_streams,
)
from transitpresence.models import (
    Coordinate,
    EntityKind,
    FleetEntry,
    FleetStatus,
    MergedView,
    PresenceRecord,
    Selection,
    SelectionKind,
)
from transitpresence.store import MemoryPresenceStore

NOW = datetime(2026, 1, 1, 12, tzinfo=UTC)
WINDOW = timedelta(seconds=300)


def _record(driver_id: str, *, age: float | None, lat: float | None = 40.0, lng: float | None = -74.0) -> PresenceRecord:
    return PresenceRecord(
        driver_id=driver_id,
        latitude=lat,
        longitude=lng,
        last_seen_at=None if age is None else NOW - timedelta(seconds=age),
    )


def _bus(bus_id: str, *, age: float | None, lat: float | None = 40.0, lng: float | None = -74.0) -> FleetEntry:
    return FleetEntry(
        bus_id=bus_id,
        status=FleetStatus.ACTIVE,
        latitude=lat,
        longitude=lng,
        last_updated_at=None if age is None else NOW - timedelta(seconds=age),
    )


def test_demo_fleet_contents() -> None:
    demo = default_demo_fleet(NOW)

    assert [entry.bus_id for entry in demo] == ["B001", "B002", "B003"]
    assert demo[2].status == FleetStatus.MAINTENANCE
    assert demo[0].coordinate == Coordinate(40.7128, -74.0060)
    assert all(entry.last_updated_at == NOW for entry in demo)


@pytest.mark.parametrize(("age", "stale"), [(299, False), (300, True), (301, True), (None, True)])
def test_staleness_boundary(age: float | None, stale: bool) -> None:
    assert is_stale(_record("d", age=age), NOW, WINDOW) is stale


def test_centroid_is_mean_of_valid_coordinates() -> None:
    assert centroid([Coordinate(40, -74), None, Coordinate(42, -72)]) == Coordinate(41.0, -73.0)
    assert centroid([None]) is None
    assert centroid([]) is None


def test_empty_fleet_is_replaced_by_demo_fleet() -> None:
    view = merge_streams([], [_record("d1", age=10)], now=NOW, demo_fleet=lambda: default_demo_fleet(NOW))

    assert view.used_demo_fleet
    ids = {entity.entity_id for entity in view.entities}
    assert ids == {"B001", "B002", "B003", "d1"}


def test_demo_fleet_disabled() -> None:
    view = merge_streams([], [_record("d1", age=10)], now=NOW, demo_fleet=None)

    assert not view.used_demo_fleet
    assert [entity.entity_id for entity in view.entities] == ["d1"]


def test_real_fleet_suppresses_demo() -> None:
    view = merge_streams([_bus("B9", age=5)], [], now=NOW, demo_fleet=lambda: default_demo_fleet(NOW))

    assert not view.used_demo_fleet
    assert [entity.entity_id for entity in view.entities] == ["B9"]


def test_entities_are_ordered_newest_first_with_undated_last() -> None:
    view = merge_streams(
        [_bus("old-bus", age=600), _bus("undated-bus", age=None)],
        [_record("fresh", age=1), _record("undated", age=None), _record("mid", age=100)],
        now=NOW,
    )

    assert [entity.entity_id for entity in view.entities] == ["fresh", "mid", "old-bus", "undated-bus", "undated"]


def test_fleet_entries_are_never_stale_and_records_carry_staleness() -> None:
    view = merge_streams([_bus("B1", age=10_000)], [_record("live", age=10), _record("gone", age=900)], now=NOW)

    flags = {entity.entity_id: (entity.kind, entity.is_stale) for entity in view.entities}
    assert flags == {
        "B1": (EntityKind.FLEET, False),
        "live": (EntityKind.PRESENCE, False),
        "gone": (EntityKind.PRESENCE, True),
    }


def test_entities_without_coordinates_do_not_affect_centroid() -> None:
    view = merge_streams(
        [_bus("B1", age=1, lat=40.0, lng=-74.0)],
        [_record("d1", age=1, lat=42.0, lng=-72.0), _record("nowhere", age=1, lat=None, lng=None)],
        now=NOW,
    )

    assert view.centroid == Coordinate(41.0, -73.0)
    assert len(view.entities) == 3


@pytest.mark.asyncio
async def test_merger_tracks_both_streams(clock: FakeClock) -> None:
    config = PresenceConfig()
    async with MemoryPresenceStore(clock=clock) as store:
        merger = StreamMerger(store, config=config, demo_fleet=None, clock=clock)
        views: list[MergedView] = []
        merger.on_change(views.append)
        merger.start()
        await flush()

        await store.create("buses", "B1", {"route": "Route 1", "status": "active", "latitude": 1, "longitude": 1})
        await flush()
        await store.create("driverLocations", "d1", {"isActive": True, "latitude": 3, "longitude": 3, "lastSeenAt": clock.now})
        await store.create("driverLocations", "idle", {"isActive": False, "latitude": 5, "longitude": 5})
        await flush()

        ids = [entity.entity_id for entity in merger.view.entities]
        assert sorted(ids) == ["B1", "d1"]
        assert merger.view.centroid == Coordinate(2.0, 2.0)
        assert merger.locate(Selection(kind=SelectionKind.DRIVER, entity_id="d1")) == Coordinate(3.0, 3.0)

        await store.delete("driverLocations", "d1")
        await flush()
        assert [entity.entity_id for entity in merger.view.entities] == ["B1"]

        merger.stop()
        assert not merger.running
        await store.create("buses", "B2", {"latitude": 0, "longitude": 0})
        await flush()
        assert [entity.entity_id for entity in merger.view.entities] == ["B1"]

    assert len(views) >= 4


@pytest.mark.asyncio
async def test_refresh_recomputes_staleness_against_clock(clock: FakeClock) -> None:
    async with MemoryPresenceStore(clock=clock) as store:
        merger = StreamMerger(store, demo_fleet=None, clock=clock)
        merger.start()
        await store.create("driverLocations", "d1", {"isActive": True, "lastSeenAt": clock.now})
        await flush()
        assert merger.view.entities[0].is_stale is False

        clock.advance(301)
        view = merger.refresh()

    assert view.entities[0].is_stale is True
    assert view.computed_at == clock.now


@pytest.mark.asyncio
async def test_invalid_documents_are_skipped() -> None:
    async with MemoryPresenceStore() as store:
        merger = StreamMerger(store, demo_fleet=None)
        merger.start()
        await store.create("driverLocations", "ok", {"isActive": True, "latitude": 1, "longitude": 1})
        await store.create("driverLocations", "bad", {"isActive": True, "driverId": ["not", "text"]})
        await flush()

    assert [entity.entity_id for entity in merger.view.entities] == ["ok"]


@pytest.mark.asyncio
async def test_fleet_stream_error_falls_back_to_demo_fleet() -> None:
    async with MemoryPresenceStore() as store:
        await store.create("buses", "B1", {"latitude": 1, "longitude": 1})
        merger = StreamMerger(store)
        merger.start()
        await flush()
        assert not merger.view.used_demo_fleet

        store.fail_subscriptions("buses", RuntimeError("permission-denied"))

    assert merger.view.used_demo_fleet
    assert {entity.entity_id for entity in merger.view.entities} == {"B001", "B002", "B003"}


@pytest.mark.asyncio
async def test_presence_stream_error_keeps_last_snapshot() -> None:
    async with MemoryPresenceStore() as store:
        merger = StreamMerger(store, demo_fleet=None)
        merger.start()
        await store.create("driverLocations", "d1", {"isActive": True})
        await flush()

        store.fail_subscriptions("driverLocations", RuntimeError("unavailable"))

        assert [entity.entity_id for entity in merger.view.entities] == ["d1"]


@pytest.mark.asyncio
async def test_viewpoint_prefers_selection_then_centroid_then_default() -> None:
    async with MemoryPresenceStore() as store:
        merger = StreamMerger(store, demo_fleet=None)
        assert merger.viewpoint() == Coordinate(40.7128, -74.0060)

        merger.start()
        await store.create("buses", "B1", {"latitude": 10, "longitude": 20})
        await store.create("buses", "B2", {"latitude": 20, "longitude": 30})
        await flush()

        assert merger.viewpoint() == Coordinate(15.0, 25.0)
        assert merger.viewpoint(Selection(kind=SelectionKind.BUS, entity_id="B2")) == Coordinate(20.0, 30.0)
        assert merger.viewpoint(Selection(kind=SelectionKind.BUS, entity_id="missing")) == Coordinate(15.0, 25.0)
