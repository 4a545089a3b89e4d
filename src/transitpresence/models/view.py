"""Merged view, selection and focus models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from transitpresence.models.fleet import FleetEntry
from transitpresence.models.position import Coordinate
from transitpresence.models.presence import PresenceRecord


class EntityKind(StrEnum):
    FLEET = "fleet"
    PRESENCE = "presence"


class SelectionKind(StrEnum):
    NONE = "none"
    BUS = "bus"
    DRIVER = "driver"


@dataclass(frozen=True)
class MergedEntity:
    """A fleet entry or presence record plus its derived staleness.

    Recomputed on every merge pass and never persisted.
    """

    kind: EntityKind
    entity: FleetEntry | PresenceRecord
    is_stale: bool = False

    @classmethod
    def fleet(cls, entry: FleetEntry) -> MergedEntity:
        return cls(kind=EntityKind.FLEET, entity=entry, is_stale=False)

    @classmethod
    def presence(cls, record: PresenceRecord, *, is_stale: bool) -> MergedEntity:
        return cls(kind=EntityKind.PRESENCE, entity=record, is_stale=is_stale)

    @property
    def entity_id(self) -> str:
        if isinstance(self.entity, FleetEntry):
            return self.entity.bus_id
        return self.entity.driver_id

    @property
    def selection_kind(self) -> SelectionKind:
        return SelectionKind.BUS if self.kind == EntityKind.FLEET else SelectionKind.DRIVER

    @property
    def coordinate(self) -> Coordinate | None:
        return self.entity.coordinate

    @property
    def timestamp(self) -> datetime | None:
        """Most-recent timestamp used for ordering."""
        if isinstance(self.entity, FleetEntry):
            return self.entity.last_updated_at
        return self.entity.last_seen_at


@dataclass(frozen=True)
class Selection:
    """Exclusive focus pointer; at most one non-none value at a time."""

    kind: SelectionKind = SelectionKind.NONE
    entity_id: str | None = None

    def __post_init__(self) -> None:
        if self.kind == SelectionKind.NONE:
            object.__setattr__(self, "entity_id", None)
        elif not self.entity_id:
            raise ValueError(f"{self.kind} selection requires an entity id")

    @classmethod
    def none(cls) -> Selection:
        return cls()

    @property
    def is_active(self) -> bool:
        return self.kind != SelectionKind.NONE

    def matches(self, entity: MergedEntity) -> bool:
        return self.is_active and entity.selection_kind == self.kind and entity.entity_id == self.entity_id


@dataclass(frozen=True)
class FocusEvent:
    """Request for the external viewport to center on a coordinate."""

    coordinate: Coordinate
    zoom_hint: int
    selection: Selection


@dataclass(frozen=True)
class MergedView:
    """Output of one merge pass."""

    entities: tuple[MergedEntity, ...] = ()
    centroid: Coordinate | None = None
    used_demo_fleet: bool = False
    computed_at: datetime | None = None

    def find(self, selection: Selection) -> MergedEntity | None:
        for entity in self.entities:
            if selection.matches(entity):
                return entity
        return None
