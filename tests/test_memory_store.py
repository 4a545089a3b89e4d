from __future__ import annotations

import copy
from datetime import UTC, datetime

import pytest

from fakes import FakeClock, flush
from transitpresence.exceptions import PresenceStoreError
from transitpresence.store import SERVER_TIMESTAMP, Document, MemoryPresenceStore, resolve_server_timestamps


def test_server_timestamp_is_a_singleton_that_survives_copies() -> None:
    payload = {"lastSeenAt": SERVER_TIMESTAMP}
    assert copy.deepcopy(payload)["lastSeenAt"] is SERVER_TIMESTAMP
    assert repr(SERVER_TIMESTAMP) == "SERVER_TIMESTAMP"


def test_resolve_server_timestamps_is_recursive() -> None:
    when = datetime(2026, 1, 1, tzinfo=UTC)
    data = {"a": SERVER_TIMESTAMP, "nested": {"b": SERVER_TIMESTAMP}, "items": [SERVER_TIMESTAMP, 1]}

    resolved = resolve_server_timestamps(data, when)

    assert resolved == {"a": when, "nested": {"b": when}, "items": [when, 1]}
    assert data["a"] is SERVER_TIMESTAMP


@pytest.mark.asyncio
async def test_operations_require_open_store() -> None:
    store = MemoryPresenceStore()

    with pytest.raises(PresenceStoreError) as excinfo:
        await store.create("c", "d", {})

    assert excinfo.value.collection == "c"
    assert excinfo.value.doc_id == "d"


@pytest.mark.asyncio
async def test_create_merge_delete(clock: FakeClock) -> None:
    created = clock.now
    async with MemoryPresenceStore(clock=clock) as store:
        await store.create("c", "d", {"a": 1, "b": 2, "createdAt": SERVER_TIMESTAMP})
        clock.advance(10)
        merged = await store.merge_update("c", "d", {"b": 3, "seenAt": SERVER_TIMESTAMP})

        assert merged.data == {"a": 1, "b": 3, "createdAt": created, "seenAt": clock.now}

        await store.delete("c", "d")
        await store.delete("c", "d")

        assert await store.get("c", "d") is None
        assert [op for op, *_ in store.writes] == ["create", "merge", "delete", "delete"]


@pytest.mark.asyncio
async def test_merge_update_creates_missing_document() -> None:
    async with MemoryPresenceStore() as store:
        document = await store.merge_update("c", "new", {"x": 1})

    assert document == Document(collection="c", doc_id="new", data={"x": 1})


@pytest.mark.asyncio
async def test_subscription_delivers_initial_and_filtered_snapshots() -> None:
    async with MemoryPresenceStore() as store:
        await store.create("c", "on", {"isActive": True})
        await store.create("c", "off", {"isActive": False})
        snapshots: list[list[str]] = []
        subscription = store.subscribe(
            "c",
            lambda docs: snapshots.append(sorted(doc.doc_id for doc in docs)),
            where={"isActive": True},
        )
        await flush()

        await store.create("c", "also", {"isActive": True})
        await flush()
        await store.delete("c", "on")
        await flush()

        subscription.unsubscribe()
        await store.create("c", "late", {"isActive": True})
        await flush()

    assert snapshots == [["on"], ["also", "on"], ["also"]]


@pytest.mark.asyncio
async def test_listener_is_not_called_inside_the_write() -> None:
    async with MemoryPresenceStore() as store:
        calls: list[int] = []
        store.subscribe("c", lambda docs: calls.append(len(docs)))
        await flush()

        await store.create("c", "d", {})
        assert calls == [0]
        await flush()

    assert calls == [0, 1]


@pytest.mark.asyncio
async def test_stream_errors_reach_error_listener() -> None:
    errors: list[Exception] = []
    async with MemoryPresenceStore() as store:
        store.subscribe("c", lambda docs: None, on_error=errors.append)
        store.fail_subscriptions("c", RuntimeError("stream broke"))

    assert [str(exc) for exc in errors] == ["stream broke"]


@pytest.mark.asyncio
async def test_close_unsubscribes_everything() -> None:
    store = MemoryPresenceStore()
    await store.open()
    subscription = store.subscribe("c", lambda docs: None)

    await store.close()

    assert not subscription.active
    assert not store.is_open
