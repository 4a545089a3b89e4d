"""Presence store layer.

The engine reads and writes documents only through a :class:`PresenceStore`
handle passed in by the caller.
"""

from transitpresence.store.base import (
    SERVER_TIMESTAMP,
    Document,
    PresenceStore,
    Subscription,
    resolve_server_timestamps,
)
from transitpresence.store.memory import MemoryPresenceStore

__all__ = [
    "SERVER_TIMESTAMP",
    "Document",
    "MemoryPresenceStore",
    "PresenceStore",
    "Subscription",
    "resolve_server_timestamps",
]
