"""Test doubles for the device and store sides."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from transitpresence.exceptions import StoreWriteFailedError
from transitpresence.models.position import Position
from transitpresence.position import PositionOptions
from transitpresence.store.base import Document
from transitpresence.store.memory import MemoryPresenceStore


def make_position(latitude: float = 40.0, longitude: float = -74.0, *, accuracy: float = 5.0) -> Position:
    return Position(
        latitude=latitude,
        longitude=longitude,
        accuracy_meters=accuracy,
        heading_degrees=90.0,
        speed_meters_per_second=3.0,
        captured_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


async def flush(turns: int = 20) -> None:
    """Let call_soon callbacks and short-lived tasks run."""
    for _ in range(turns):
        await asyncio.sleep(0)


class GeoError(Exception):
    """Platform error carrying a W3C geolocation error code."""

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or f"geolocation error {code}")
        self.code = code
        self.message = message


class FakeGeolocation:
    """Scriptable geolocation provider."""

    def __init__(self, position: Position | None = None, *, error: Exception | None = None) -> None:
        self.position = position or make_position()
        self.error = error
        self.calls = 0
        self.options: list[PositionOptions] = []
        self.hold: asyncio.Event | None = None
        self.watches: dict[int, tuple[Callable[[Position], None], Callable[[Exception], None]]] = {}
        self.cleared: list[int] = []
        self._next_token = 0

    async def current_position(self, options: PositionOptions) -> Position:
        self.calls += 1
        self.options.append(options)
        if self.hold is not None:
            await self.hold.wait()
        if self.error is not None:
            raise self.error
        return self.position

    def watch_position(
        self,
        on_update: Callable[[Position], None],
        on_error: Callable[[Exception], None],
        options: PositionOptions,
    ) -> int:
        self._next_token += 1
        self.watches[self._next_token] = (on_update, on_error)
        return self._next_token

    def clear_watch(self, token: int) -> None:
        self.watches.pop(token, None)
        self.cleared.append(token)

    def emit(self, position: Position) -> None:
        for on_update, _ in list(self.watches.values()):
            on_update(position)

    def emit_error(self, exc: Exception) -> None:
        for _, on_error in list(self.watches.values()):
            on_error(exc)


class FakePermissionPlatform:
    def __init__(self, state: str = "granted") -> None:
        self.state = state
        self.listeners: list[Callable[[str], None]] = []

    async def query(self) -> str:
        return self.state

    def add_change_listener(self, callback: Callable[[str], None]) -> Callable[[], None]:
        self.listeners.append(callback)
        return lambda: self.listeners.remove(callback)

    def change(self, state: str) -> None:
        self.state = state
        for listener in list(self.listeners):
            listener(state)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FlakyStore(MemoryPresenceStore):
    """Memory store whose writes can be slowed down or made to fail."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.fail_merges = 0
        self.fail_deletes = 0
        self.fail_creates = 0
        # One-shot non-store exceptions by operation: "create", "merge" or "delete".
        self.errors: dict[str, Exception] = {}
        self.write_delay_turns = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def _delay(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            for _ in range(self.write_delay_turns):
                await asyncio.sleep(0)
        finally:
            self.in_flight -= 1

    async def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        await self._delay()
        if self.fail_creates:
            self.fail_creates -= 1
            raise StoreWriteFailedError("create rejected", collection=collection, doc_id=doc_id)
        if "create" in self.errors:
            raise self.errors.pop("create")
        return await super().create(collection, doc_id, data)

    async def merge_update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        await self._delay()
        if self.fail_merges:
            self.fail_merges -= 1
            raise StoreWriteFailedError("network unreachable", collection=collection, doc_id=doc_id)
        if "merge" in self.errors:
            raise self.errors.pop("merge")
        return await super().merge_update(collection, doc_id, data)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._delay()
        if self.fail_deletes:
            self.fail_deletes -= 1
            raise StoreWriteFailedError("delete rejected", collection=collection, doc_id=doc_id)
        if "delete" in self.errors:
            raise self.errors.pop("delete")
        await super().delete(collection, doc_id)

    def merge_latitudes(self, collection: str = "driverLocations") -> list[float]:
        return [data["latitude"] for op, coll, _doc, data in self.writes if op == "merge" and coll == collection]
