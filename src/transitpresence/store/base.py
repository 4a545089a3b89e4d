"""Presence store contract.

A store is an explicitly constructed handle with an ``open``/``close``
lifecycle, injected into every component that reads or writes documents.
Documents are keyed by ``(collection, doc_id)``.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from transitpresence.exceptions import PresenceStoreError
from transitpresence.models._base import utcnow

_logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Placeholder resolved to the store's commit time."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo: dict[int, Any]) -> _ServerTimestamp:
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


def resolve_server_timestamps(data: Mapping[str, Any], committed_at: datetime) -> dict[str, Any]:
    """Return a copy of *data* with every ``SERVER_TIMESTAMP`` replaced by *committed_at*."""

    def _resolve(value: Any) -> Any:
        if value is SERVER_TIMESTAMP:
            return committed_at
        if isinstance(value, Mapping):
            return {key: _resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [_resolve(item) for item in value]
        return copy.deepcopy(value)

    return {key: _resolve(value) for key, value in data.items()}


@dataclass(frozen=True)
class Document:
    """A committed document."""

    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)


SnapshotListener = Callable[[tuple[Document, ...]], None]
ErrorListener = Callable[[Exception], None]


class Subscription:
    """A realtime query registration.

    Every delivery carries the complete filtered collection, not a diff.
    """

    def __init__(
        self,
        collection: str,
        listener: SnapshotListener,
        *,
        where: Mapping[str, Any] | None = None,
        on_error: ErrorListener | None = None,
        on_unsubscribe: Callable[[Subscription], None] | None = None,
    ) -> None:
        self.collection = collection
        self.where = dict(where or {})
        self._listener = listener
        self._on_error = on_error
        self._on_unsubscribe = on_unsubscribe
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, document: Document) -> bool:
        return all(document.data.get(key) == value for key, value in self.where.items())

    def deliver(self, documents: tuple[Document, ...]) -> None:
        if not self._active:
            return
        self._listener(tuple(doc for doc in documents if self.matches(doc)))

    def fail(self, exc: Exception) -> None:
        if not self._active:
            return
        if self._on_error is None:
            _logger.warning("Unhandled error on %s subscription: %s", self.collection, exc)
            return
        self._on_error(exc)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_unsubscribe is not None:
            self._on_unsubscribe(self)


class PresenceStore(ABC):
    """Realtime key/value document store.

    Implementations resolve ``SERVER_TIMESTAMP`` values with their own
    clock at commit time. ``merge_update`` creates the document when it
    does not exist yet. ``delete`` of an absent document succeeds.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._open = False
        self._subscriptions: list[Subscription] = []

    @property
    def is_open(self) -> bool:
        return self._open

    async def __aenter__(self) -> PresenceStore:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._open = False

    def _ensure_open(self, collection: str = "", doc_id: str = "") -> None:
        if not self._open:
            raise PresenceStoreError("Presence store is not open", collection=collection, doc_id=doc_id)

    def _register(self, subscription: Subscription) -> None:
        self._subscriptions.append(subscription)

    def _forget(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _subscriptions_for(self, collection: str) -> list[Subscription]:
        return [sub for sub in self._subscriptions if sub.collection == collection and sub.active]

    @abstractmethod
    async def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        """Write a full document, replacing any existing one."""

    @abstractmethod
    async def merge_update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        """Overwrite the supplied keys, keeping all others."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document. Deleting an absent document is not an error."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Return the current document, or ``None``."""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        listener: SnapshotListener,
        *,
        where: Mapping[str, Any] | None = None,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        """Register a realtime query. The current snapshot is delivered first."""
