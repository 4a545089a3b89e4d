"""Fleet + presence stream merge.

The merger keeps the latest snapshot of each stream and rebuilds the whole
view whenever either one fires. :func:`merge_streams` is the pure part and
is usable on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from pydantic import ValidationError

from transitpresence.config import PresenceConfig
from transitpresence.models._base import utcnow
from transitpresence.models.fleet import FleetEntry, FleetStatus
from transitpresence.models.position import Coordinate
from transitpresence.models.presence import PresenceRecord
from transitpresence.models.view import MergedEntity, MergedView, Selection
from transitpresence.store.base import Document, PresenceStore, Subscription

_logger = logging.getLogger(__name__)

DemoFleetProvider = Callable[[], Sequence[FleetEntry]]
ViewListener = Callable[[MergedView], None]
TModel = TypeVar("TModel", FleetEntry, PresenceRecord)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def default_demo_fleet(now: datetime | None = None) -> list[FleetEntry]:
    """Three fixed buses shown while the fleet collection is empty."""
    stamp = now or utcnow()
    return [
        FleetEntry(
            bus_id="B001",
            route="Route 1 - Downtown",
            status=FleetStatus.ACTIVE,
            latitude=40.7128,
            longitude=-74.0060,
            heading_degrees=90.0,
            speed_kmh=25.0,
            last_updated_at=stamp,
        ),
        FleetEntry(
            bus_id="B002",
            route="Route 2 - Uptown",
            status=FleetStatus.ACTIVE,
            latitude=40.7589,
            longitude=-73.9851,
            heading_degrees=180.0,
            speed_kmh=30.0,
            last_updated_at=stamp,
        ),
        FleetEntry(
            bus_id="B003",
            route="Route 3 - Crosstown",
            status=FleetStatus.MAINTENANCE,
            latitude=40.7505,
            longitude=-73.9934,
            heading_degrees=0.0,
            speed_kmh=0.0,
            last_updated_at=stamp,
        ),
    ]


def is_stale(record: PresenceRecord, now: datetime, window: timedelta) -> bool:
    """A record is live iff ``now - last_seen_at < window``.

    Records the store has not stamped yet count as stale.
    """
    if record.last_seen_at is None:
        return True
    return now - record.last_seen_at >= window


def centroid(coordinates: Iterable[Coordinate | None]) -> Coordinate | None:
    """Arithmetic mean of latitudes and of longitudes, ignoring ``None``."""
    valid = [coord for coord in coordinates if coord is not None]
    if not valid:
        return None
    latitude = sum(coord.latitude for coord in valid) / len(valid)
    longitude = sum(coord.longitude for coord in valid) / len(valid)
    return Coordinate(latitude, longitude)


def order_entities(entities: Iterable[MergedEntity]) -> list[MergedEntity]:
    """Most recent first, entities without a timestamp last; stable."""
    items = list(entities)
    dated = [entity for entity in items if entity.timestamp is not None]
    undated = [entity for entity in items if entity.timestamp is None]
    dated.sort(key=lambda entity: entity.timestamp or _EPOCH, reverse=True)
    return dated + undated


def merge_streams(
    fleet: Sequence[FleetEntry],
    presence: Sequence[PresenceRecord],
    *,
    now: datetime,
    staleness_window: timedelta = timedelta(seconds=300),
    demo_fleet: DemoFleetProvider | None = None,
) -> MergedView:
    """Build one merged view from the latest fleet and presence snapshots."""
    used_demo = False
    fleet_entries: Sequence[FleetEntry] = fleet
    if not fleet_entries and demo_fleet is not None:
        fleet_entries = demo_fleet()
        used_demo = True

    merged = [MergedEntity.fleet(entry) for entry in fleet_entries]
    merged.extend(
        MergedEntity.presence(record, is_stale=is_stale(record, now, staleness_window)) for record in presence
    )
    ordered = order_entities(merged)
    return MergedView(
        entities=tuple(ordered),
        centroid=centroid(entity.coordinate for entity in ordered),
        used_demo_fleet=used_demo,
        computed_at=now,
    )


def _parse_documents(
    documents: Iterable[Document],
    parse: Callable[[str, dict[str, Any]], TModel],
) -> list[TModel]:
    parsed: list[TModel] = []
    for document in documents:
        try:
            parsed.append(parse(document.doc_id, document.data))
        except ValidationError as exc:
            _logger.warning(
                "Skipping invalid %s document %s: %s",
                document.collection,
                document.doc_id,
                exc.errors(include_url=False),
            )
    return parsed


class StreamMerger:
    """Subscribes to the fleet and presence collections and keeps a merged view.

    Either stream firing triggers a full recompute from the latest known
    snapshot of both.
    """

    def __init__(
        self,
        store: PresenceStore,
        *,
        config: PresenceConfig | None = None,
        demo_fleet: DemoFleetProvider | None = default_demo_fleet,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._config = config or PresenceConfig()
        self._demo_fleet = demo_fleet
        self._clock = clock
        self._fleet: list[FleetEntry] = []
        self._presence: list[PresenceRecord] = []
        self._view = MergedView()
        self._listeners: list[ViewListener] = []
        self._subscriptions: list[Subscription] = []

    @property
    def view(self) -> MergedView:
        return self._view

    @property
    def running(self) -> bool:
        return bool(self._subscriptions)

    def on_change(self, callback: ViewListener) -> Callable[[], None]:
        """Subscribe to merged-view updates. Returns an unsubscribe callable."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def start(self) -> None:
        """Open both realtime subscriptions."""
        if self._subscriptions:
            return
        self._subscriptions = [
            self._store.subscribe(
                self._config.fleet_collection,
                self._on_fleet,
                on_error=self._on_fleet_error,
            ),
            self._store.subscribe(
                self._config.presence_collection,
                self._on_presence,
                where={"isActive": True},
                on_error=self._on_presence_error,
            ),
        ]
        _logger.debug("Stream merger subscribed")

    def stop(self) -> None:
        subscriptions = self._subscriptions
        self._subscriptions = []
        for subscription in subscriptions:
            subscription.unsubscribe()

    def _on_fleet(self, documents: tuple[Document, ...]) -> None:
        self._fleet = _parse_documents(documents, FleetEntry.from_document)
        self.refresh()

    def _on_presence(self, documents: tuple[Document, ...]) -> None:
        self._presence = _parse_documents(documents, PresenceRecord.from_document)
        self.refresh()

    def _on_fleet_error(self, exc: Exception) -> None:
        _logger.warning("Fleet stream error, falling back to empty fleet: %s", exc)
        self._fleet = []
        self.refresh()

    def _on_presence_error(self, exc: Exception) -> None:
        # Keep the last presence snapshot; records only disappear when deleted.
        _logger.warning("Presence stream error: %s", exc)

    def refresh(self) -> MergedView:
        """Recompute the view against the current clock."""
        self._view = merge_streams(
            self._fleet,
            self._presence,
            now=self._clock(),
            staleness_window=timedelta(seconds=self._config.staleness_window),
            demo_fleet=self._demo_fleet,
        )
        if self._view.used_demo_fleet:
            _logger.debug("Fleet snapshot empty, showing demo fleet")
        for listener in list(self._listeners):
            listener(self._view)
        return self._view

    def default_coordinate(self) -> Coordinate:
        return Coordinate(self._config.default_latitude, self._config.default_longitude)

    def locate(self, selection: Selection) -> Coordinate | None:
        """Coordinate of the selected entity, if it is in the view and located."""
        entity = self._view.find(selection)
        return entity.coordinate if entity is not None else None

    def viewpoint(self, selection: Selection | None = None) -> Coordinate:
        """Map center: the selected entity, else the centroid, else the default."""
        if selection is not None and selection.is_active:
            located = self.locate(selection)
            if located is not None:
                return located
        return self._view.centroid or self.default_coordinate()
