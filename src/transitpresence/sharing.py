"""Driver location-sharing lifecycle.

:class:`SharingSession` owns exactly one presence record: it creates the
record on the first successful fix, merge-updates it from the continuous
watch and deletes it on stop or teardown. The record exists in the store
iff the session last reached ``ACTIVE`` and has not since finished
stopping.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from transitpresence.config import PresenceConfig
from transitpresence.exceptions import (
    CapabilityDeniedError,
    PermissionDeniedError,
    PositionError,
    PositionUnavailableError,
    PresenceError,
    PresenceStoreError,
    StoreWriteFailedError,
)
from transitpresence.models.position import Position
from transitpresence.models.presence import Capability, DriverProfile
from transitpresence.models.state import PermissionState, SessionStatus, SharingState
from transitpresence.normalize import prune_patch
from transitpresence.permission import PermissionGate
from transitpresence.position import PositionOptions, PositionSource, WatchHandle
from transitpresence.store.base import SERVER_TIMESTAMP, PresenceStore

_logger = logging.getLogger(__name__)

StatusListener = Callable[[SessionStatus], None]

_BUSY_STATES = frozenset(
    {
        SharingState.REQUESTING_PERMISSION,
        SharingState.ACQUIRING,
        SharingState.STOPPING,
    }
)


def _as_write_failure(exc: Exception, *, collection: str, doc_id: str) -> StoreWriteFailedError:
    if isinstance(exc, StoreWriteFailedError):
        return exc
    message = exc.message if isinstance(exc, PresenceStoreError) else str(exc)
    return StoreWriteFailedError(message or None, collection=collection, doc_id=doc_id)


def _consume_result(task: asyncio.Task[None]) -> None:
    # Failures were already recorded on the session by _fail().
    if not task.cancelled():
        task.exception()


class SharingSession:
    """State machine for one driver's location share.

    Usage::

        async with SharingSession(store, source, gate, profile=profile, capability=capability) as session:
            await session.start()
            ...

    Leaving the context stops the session, which cancels the watch and
    deletes the presence record.
    """

    def __init__(
        self,
        store: PresenceStore,
        source: PositionSource,
        gate: PermissionGate,
        *,
        profile: DriverProfile,
        capability: Capability,
        config: PresenceConfig | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._gate = gate
        self._profile = profile
        self._capability = capability
        self._config = config or PresenceConfig()
        self._state = SharingState.IDLE
        self._last_error: PresenceError | None = None
        self._current_position: Position | None = None
        self._listeners: list[StatusListener] = []

        self._watch: WatchHandle | None = None
        self._writes: asyncio.Queue[Position] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._pending_start: asyncio.Future[None] | None = None
        self._shutdown: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SharingSession:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Owning-context teardown; equivalent to :meth:`stop`."""
        await self.stop()

    # ------------------------------------------------------------------
    # Consumer-facing state
    # ------------------------------------------------------------------

    @property
    def driver_id(self) -> str:
        return self._profile.driver_id

    @property
    def state(self) -> SharingState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        error = self._last_error
        return SessionStatus(
            state=self._state,
            error_kind=error.kind if error is not None else None,
            error_message=error.message if error is not None else "",
        )

    @property
    def last_error(self) -> PresenceError | None:
        return self._last_error

    @property
    def current_position(self) -> Position | None:
        return self._current_position

    @property
    def accuracy_meters(self) -> float | None:
        position = self._current_position
        return position.accuracy_meters if position is not None else None

    @property
    def can_start(self) -> bool:
        return self._capability.can_share and self._state not in _BUSY_STATES

    @property
    def needs_permission(self) -> bool:
        return self._gate.state == PermissionState.DENIED

    def on_change(self, callback: StatusListener) -> Callable[[], None]:
        """Subscribe to status changes. Returns an unsubscribe callable."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def clear_error(self) -> None:
        """Drop a reported error. Has no effect in ``ERROR``; use start/stop there."""
        if self._state == SharingState.ERROR or self._last_error is None:
            return
        self._last_error = None
        self._emit()

    def _emit(self) -> None:
        status = self.status
        for listener in list(self._listeners):
            listener(status)

    def _transition(self, state: SharingState) -> None:
        if state == self._state:
            return
        _logger.debug("Sharing session %s: %s -> %s", self.driver_id, self._state, state)
        self._state = state
        self._emit()

    def _fail(self, error: PresenceError) -> None:
        self._last_error = error
        if self._state == SharingState.ERROR:
            self._emit()
            return
        self._transition(SharingState.ERROR)

    def _report(self, error: PresenceError) -> None:
        """Record a non-terminal error without changing state."""
        self._last_error = error
        self._emit()

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self) -> SessionStatus:
        """Begin sharing.

        Raises
        ------
        CapabilityDeniedError
            The caller is not a verified driver. No position is requested.
        PermissionDeniedError, PositionUnavailableError, PositionTimeoutError, UnknownPositionError
            Permission or the first fix failed.
        StoreWriteFailedError
            The presence record could not be created.
        """
        pending = self._pending_start
        if self._state not in (SharingState.IDLE, SharingState.ERROR) or (pending is not None and not pending.done()):
            _logger.debug("start() ignored in state %s", self._state)
            return self.status

        if not self._capability.can_share:
            error = CapabilityDeniedError()
            self._fail(error)
            raise error

        self._last_error = None
        task = asyncio.ensure_future(self._run_start())
        self._pending_start = task
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            # Cancelled by stop(); the caller's own cancellation still propagates.
            if task.cancelled() and (current is None or current.cancelling() == 0):
                return self.status
            raise
        finally:
            if self._pending_start is task:
                self._pending_start = None
        return self.status

    async def _run_start(self) -> None:
        permission = await self._gate.query()
        if permission != PermissionState.GRANTED:
            self._transition(SharingState.REQUESTING_PERMISSION)
            permission = await self._gate.request()
            if permission == PermissionState.DENIED:
                error: PresenceError = PermissionDeniedError()
                self._fail(error)
                raise error
            if permission == PermissionState.UNAVAILABLE:
                error = PositionUnavailableError()
                self._fail(error)
                raise error

        self._transition(SharingState.ACQUIRING)
        try:
            position = await self._source.get_once(PositionOptions.for_acquire(self._config))
        except PositionError as exc:
            self._fail(exc)
            raise

        collection = self._config.presence_collection
        record: dict[str, Any] = {
            **prune_patch(self._profile.identity_fields()),
            **position.position_fields(),
            "isActive": True,
            "lastSeenAt": SERVER_TIMESTAMP,
            "createdAt": SERVER_TIMESTAMP,
        }
        try:
            await self._store.create(collection, self.driver_id, record)
        except Exception as exc:
            error = _as_write_failure(exc, collection=collection, doc_id=self.driver_id)
            self._fail(error)
            raise error from exc

        self._current_position = position
        self._transition(SharingState.ACTIVE)
        self._open_watch()
        _logger.debug("Sharing started for %s", self.driver_id)

    # ------------------------------------------------------------------
    # Active: watch + serialized writes
    # ------------------------------------------------------------------

    def _open_watch(self) -> None:
        queue: asyncio.Queue[Position] = asyncio.Queue()
        self._writes = queue
        self._writer = asyncio.create_task(self._write_loop(queue))
        self._watch = self._source.watch(
            self._on_position,
            self._on_watch_error,
            PositionOptions.for_watch(self._config),
        )

    def _on_position(self, position: Position) -> None:
        if self._state != SharingState.ACTIVE or self._writes is None:
            return
        self._current_position = position
        self._writes.put_nowait(position)

    async def _write_loop(self, queue: asyncio.Queue[Position]) -> None:
        collection = self._config.presence_collection
        while True:
            position = await queue.get()
            # Every position field is written so a fix without motion clears the previous one.
            patch = {
                **position.position_fields(),
                "lastSeenAt": SERVER_TIMESTAMP,
            }
            try:
                await self._store.merge_update(collection, self.driver_id, patch)
            except Exception as exc:
                # The next watch callback issues a fresh write.
                _logger.warning("Presence update for %s failed: %s", self.driver_id, exc, exc_info=True)
                self._report(_as_write_failure(exc, collection=collection, doc_id=self.driver_id))
            finally:
                queue.task_done()

    def _on_watch_error(self, error: PositionError) -> None:
        if self._state != SharingState.ACTIVE:
            return
        _logger.debug("Watch error for %s kind=%s: %s", self.driver_id, error.kind, error.message)
        if isinstance(error, PermissionDeniedError):
            self._begin_shutdown(error)
            return
        self._report(error)

    async def _stop_writer(self) -> None:
        writer = self._writer
        self._writer = None
        self._writes = None
        if writer is None:
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        except Exception:
            _logger.warning("Presence writer for %s ended with an error", self.driver_id, exc_info=True)

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def _begin_shutdown(self, error: PresenceError | None) -> asyncio.Task[None]:
        if self._shutdown is None or self._shutdown.done():
            self._shutdown = asyncio.create_task(self._run_shutdown(error))
            self._shutdown.add_done_callback(_consume_result)
        return self._shutdown

    async def _run_shutdown(self, error: PresenceError | None) -> None:
        self._transition(SharingState.STOPPING)
        watch = self._watch
        self._watch = None
        if watch is not None:
            watch.cancel()
        await self._stop_writer()

        collection = self._config.presence_collection
        try:
            await self._store.delete(collection, self.driver_id)
        except Exception as exc:
            failure = _as_write_failure(exc, collection=collection, doc_id=self.driver_id)
            _logger.warning("Presence delete for %s failed: %s", self.driver_id, failure.message)
            self._fail(error or failure)
            raise failure from exc

        self._current_position = None
        if error is not None:
            self._fail(error)
        else:
            self._transition(SharingState.IDLE)
        _logger.debug("Sharing stopped for %s", self.driver_id)

    async def stop(self) -> SessionStatus:
        """Cancel the watch and delete the presence record.

        Returns once the delete has committed.

        Raises
        ------
        StoreWriteFailedError
            The delete did not commit; the session is left in ``ERROR``.
        """
        pending = self._pending_start
        if pending is not None and not pending.done():
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, PresenceError):
                await pending

        shutdown = self._shutdown
        if shutdown is not None and not shutdown.done():
            await asyncio.shield(shutdown)
            return self.status

        if self._state == SharingState.IDLE and pending is None:
            return self.status

        self._last_error = None
        await self._begin_shutdown(None)
        return self.status

    async def toggle(self) -> SessionStatus:
        """Stop when active, otherwise start."""
        if self._state == SharingState.ACTIVE:
            return await self.stop()
        return await self.start()
