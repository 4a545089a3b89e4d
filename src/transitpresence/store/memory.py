"""In-process presence store.

Snapshots are delivered on the running event loop with ``call_soon`` so a
listener never runs inside the write that triggered it.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from transitpresence.models._base import utcnow
from transitpresence.store.base import (
    Document,
    ErrorListener,
    PresenceStore,
    SnapshotListener,
    Subscription,
    resolve_server_timestamps,
)

_logger = logging.getLogger(__name__)


class MemoryPresenceStore(PresenceStore):
    """Dict-backed store with realtime subscriptions.

    ``writes`` records every committed operation as
    ``(operation, collection, doc_id, data)`` in commit order.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        super().__init__(clock=clock)
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self.writes: list[tuple[str, str, str, dict[str, Any]]] = []

    async def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        await super().open()

    async def close(self) -> None:
        await super().close()
        self._loop = None

    def _snapshot(self, collection: str) -> tuple[Document, ...]:
        docs = self._collections.get(collection, {})
        return tuple(
            Document(collection=collection, doc_id=doc_id, data=copy.deepcopy(data)) for doc_id, data in docs.items()
        )

    def _notify(self, collection: str) -> None:
        subscriptions = self._subscriptions_for(collection)
        if not subscriptions or self._loop is None:
            return
        snapshot = self._snapshot(collection)
        for subscription in subscriptions:
            self._loop.call_soon(subscription.deliver, snapshot)

    def _commit(self, operation: str, collection: str, doc_id: str, data: dict[str, Any]) -> Document:
        self._collections.setdefault(collection, {})[doc_id] = data
        self.writes.append((operation, collection, doc_id, copy.deepcopy(data)))
        _logger.debug("Committed %s %s/%s", operation, collection, doc_id)
        self._notify(collection)
        return Document(collection=collection, doc_id=doc_id, data=copy.deepcopy(data))

    async def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        self._ensure_open(collection, doc_id)
        resolved = resolve_server_timestamps(data, self._clock())
        return self._commit("create", collection, doc_id, resolved)

    async def merge_update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        self._ensure_open(collection, doc_id)
        resolved = resolve_server_timestamps(data, self._clock())
        merged = copy.deepcopy(self._collections.get(collection, {}).get(doc_id, {}))
        merged.update(resolved)
        return self._commit("merge", collection, doc_id, merged)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._ensure_open(collection, doc_id)
        existed = self._collections.get(collection, {}).pop(doc_id, None) is not None
        self.writes.append(("delete", collection, doc_id, {}))
        if existed:
            self._notify(collection)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        self._ensure_open(collection, doc_id)
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return Document(collection=collection, doc_id=doc_id, data=copy.deepcopy(data))

    def subscribe(
        self,
        collection: str,
        listener: SnapshotListener,
        *,
        where: Mapping[str, Any] | None = None,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        self._ensure_open(collection)
        subscription = Subscription(
            collection,
            listener,
            where=where,
            on_error=on_error,
            on_unsubscribe=self._forget,
        )
        self._register(subscription)
        assert self._loop is not None
        self._loop.call_soon(subscription.deliver, self._snapshot(collection))
        return subscription

    def fail_subscriptions(self, collection: str, exc: Exception) -> None:
        """Report a stream error to every subscriber of *collection*."""
        for subscription in self._subscriptions_for(collection):
            subscription.fail(exc)
