from __future__ import annotations

import pytest

from transitpresence.models import Coordinate, FocusEvent, Selection, SelectionKind
from transitpresence.selection import SelectionCoordinator

LOCATIONS = {
    (SelectionKind.BUS, "B001"): Coordinate(40.7128, -74.0060),
    (SelectionKind.DRIVER, "d1"): Coordinate(41.0, -73.0),
}


def _locate(selection: Selection) -> Coordinate | None:
    return LOCATIONS.get((selection.kind, selection.entity_id or ""))


@pytest.fixture
def coordinator() -> SelectionCoordinator:
    return SelectionCoordinator(_locate, zoom_hint=15)


def test_starts_with_no_selection(coordinator: SelectionCoordinator) -> None:
    assert coordinator.selection == Selection.none()


def test_selecting_emits_focus_event(coordinator: SelectionCoordinator) -> None:
    events: list[FocusEvent] = []
    coordinator.on_focus(events.append)

    coordinator.select(SelectionKind.BUS, "B001")

    assert events == [
        FocusEvent(
            coordinate=Coordinate(40.7128, -74.0060),
            zoom_hint=15,
            selection=Selection(kind=SelectionKind.BUS, entity_id="B001"),
        )
    ]


def test_selection_is_exclusive(coordinator: SelectionCoordinator) -> None:
    changes: list[Selection] = []
    coordinator.on_change(changes.append)

    coordinator.select("bus", "B001")
    coordinator.select("driver", "d1")

    assert coordinator.selection == Selection(kind=SelectionKind.DRIVER, entity_id="d1")
    assert [selection.kind for selection in changes] == [SelectionKind.BUS, SelectionKind.DRIVER]


def test_reselecting_same_entity_is_silent(coordinator: SelectionCoordinator) -> None:
    events: list[FocusEvent] = []
    coordinator.on_focus(events.append)

    coordinator.select(SelectionKind.DRIVER, "d1")
    coordinator.select(SelectionKind.DRIVER, "d1")

    assert len(events) == 1


def test_unlocated_selection_emits_no_focus(coordinator: SelectionCoordinator) -> None:
    events: list[FocusEvent] = []
    coordinator.on_focus(events.append)

    selection = coordinator.select(SelectionKind.BUS, "B404")

    assert selection.entity_id == "B404"
    assert events == []


def test_clear(coordinator: SelectionCoordinator) -> None:
    events: list[FocusEvent] = []
    changes: list[Selection] = []
    coordinator.on_focus(events.append)
    coordinator.on_change(changes.append)
    coordinator.select(SelectionKind.BUS, "B001")

    coordinator.clear()

    assert not coordinator.selection.is_active
    assert changes[-1] == Selection.none()
    assert len(events) == 1


def test_unsubscribe_focus(coordinator: SelectionCoordinator) -> None:
    events: list[FocusEvent] = []
    unsubscribe = coordinator.on_focus(events.append)
    unsubscribe()
    unsubscribe()

    coordinator.select(SelectionKind.BUS, "B001")

    assert events == []


def test_invalid_kind_is_rejected(coordinator: SelectionCoordinator) -> None:
    with pytest.raises(ValueError):
        coordinator.select("tram", "T1")
    with pytest.raises(ValueError):
        coordinator.select(SelectionKind.BUS)
