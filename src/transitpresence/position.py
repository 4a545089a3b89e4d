"""Device position acquisition.

:class:`PositionSource` wraps a platform :class:`GeolocationProvider` and
normalizes every failure into one of the :class:`PositionError` subclasses.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from transitpresence.config import PresenceConfig
from transitpresence.exceptions import (
    PermissionDeniedError,
    PositionError,
    PositionTimeoutError,
    PositionUnavailableError,
    UnknownPositionError,
)
from transitpresence.models.position import Position

_logger = logging.getLogger(__name__)

_MOBILE_UA = re.compile(r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)

# W3C GeolocationPositionError codes.
_CODE_PERMISSION_DENIED = 1
_CODE_POSITION_UNAVAILABLE = 2
_CODE_TIMEOUT = 3

PositionCallback = Callable[[Position], None]
ErrorCallback = Callable[[PositionError], None]


def is_mobile_user_agent(user_agent: str | None) -> bool:
    """Whether a user-agent string belongs to a mobile device."""
    return bool(user_agent) and _MOBILE_UA.search(user_agent or "") is not None


@dataclass(frozen=True)
class PositionOptions:
    """Acquisition options.

    Parameters
    ----------
    high_accuracy : bool
        Ask the platform for GPS-grade accuracy.
    timeout : float
        Seconds to wait for a fix.
    maximum_age : float
        Oldest cached fix (seconds) the platform may return. ``0`` forces
        a fresh fix.
    """

    high_accuracy: bool = True
    timeout: float = 15.0
    maximum_age: float = 30.0

    @classmethod
    def for_device(cls, *, mobile: bool, maximum_age: float = 30.0) -> PositionOptions:
        """Mobile devices get a longer timeout for GPS cold starts over cellular."""
        return cls(timeout=15.0 if mobile else 10.0, maximum_age=maximum_age)

    @classmethod
    def for_acquire(cls, config: PresenceConfig) -> PositionOptions:
        return cls(timeout=config.position_timeout, maximum_age=config.acquire_maximum_age)

    @classmethod
    def for_watch(cls, config: PresenceConfig) -> PositionOptions:
        return cls(timeout=config.watch_timeout, maximum_age=config.watch_maximum_age)

    @classmethod
    def for_permission_probe(cls, config: PresenceConfig) -> PositionOptions:
        return cls(timeout=config.position_timeout, maximum_age=0.0)


class GeolocationProvider(Protocol):
    """Platform geolocation facility.

    Implementations may raise any exception; errors carrying a W3C
    ``code`` attribute are mapped by code, everything else becomes
    :class:`UnknownPositionError`.
    """

    async def current_position(self, options: PositionOptions) -> Position: ...

    def watch_position(
        self,
        on_update: Callable[[Position], None],
        on_error: Callable[[Exception], None],
        options: PositionOptions,
    ) -> Any: ...

    def clear_watch(self, token: Any) -> None: ...


def normalize_position_error(exc: BaseException) -> PositionError:
    """Map a platform failure to a normalized :class:`PositionError`."""
    if isinstance(exc, PositionError):
        return exc
    if isinstance(exc, TimeoutError):
        return PositionTimeoutError()
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None)
    text = message if isinstance(message, str) and message else None
    if code == _CODE_PERMISSION_DENIED:
        return PermissionDeniedError(text)
    if code == _CODE_POSITION_UNAVAILABLE:
        return PositionUnavailableError(text)
    if code == _CODE_TIMEOUT:
        return PositionTimeoutError(text)
    return UnknownPositionError(str(exc) or None)


class WatchHandle:
    """Cancellation handle for one watch registration."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self._active = True

    def bind(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop the watch. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._cancel()


class PositionStream:
    """A watch exposed as an async iterator of ``Position`` or ``PositionError`` events.

    Single-owner and non-restartable: once :meth:`aclose` has been called
    the iterator is exhausted for good.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Position | PositionError | None] = asyncio.Queue()
        self._handle: WatchHandle | None = None
        self._closed = False

    def _attach(self, handle: WatchHandle) -> None:
        self._handle = handle

    def _push(self, event: Position | PositionError) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def __aiter__(self) -> AsyncIterator[Position | PositionError]:
        return self

    async def __anext__(self) -> Position | PositionError:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.cancel()
        self._queue.put_nowait(None)


class PositionSource:
    """One-shot and continuous position acquisition.

    At most one watch registration is open per source; :meth:`watch`
    cancels the previous registration before opening a new one.
    """

    def __init__(self, provider: GeolocationProvider | None) -> None:
        self._provider = provider
        self._watch: WatchHandle | None = None

    @property
    def is_available(self) -> bool:
        return self._provider is not None

    @property
    def watching(self) -> bool:
        return self._watch is not None and self._watch.active

    async def get_once(self, options: PositionOptions | None = None) -> Position:
        """Fetch a single fix, bounded by ``options.timeout``."""
        opts = options or PositionOptions()
        if self._provider is None:
            raise PositionUnavailableError("Geolocation is not supported on this device")
        _logger.debug("Requesting position timeout=%.1fs maximum_age=%.1fs", opts.timeout, opts.maximum_age)
        try:
            position = await asyncio.wait_for(self._provider.current_position(opts), opts.timeout)
        except Exception as exc:
            error = normalize_position_error(exc)
            _logger.debug("Position request failed kind=%s: %s", error.kind, error.message)
            if error is exc:
                raise
            raise error from exc
        return position

    def watch(
        self,
        on_update: PositionCallback,
        on_error: ErrorCallback,
        options: PositionOptions | None = None,
    ) -> WatchHandle:
        """Open a continuous watch, replacing any open registration.

        Errors (including permission denial) are forwarded to *on_error*;
        the watch stays open until the returned handle is cancelled.
        """
        opts = options or PositionOptions(timeout=10.0, maximum_age=5.0)
        self.cancel_watch()

        provider = self._provider
        if provider is None:
            handle = WatchHandle(lambda: None)
            on_error(PositionUnavailableError("Geolocation is not supported on this device"))
            self._watch = handle
            return handle

        def _deliver(position: Position) -> None:
            if handle.active:
                on_update(position)

        def _fail(exc: Exception) -> None:
            if handle.active:
                on_error(normalize_position_error(exc))

        handle = WatchHandle(lambda: None)
        token = provider.watch_position(_deliver, _fail, opts)
        handle.bind(lambda: provider.clear_watch(token))
        self._watch = handle
        _logger.debug("Position watch opened")
        return handle

    def cancel_watch(self) -> None:
        handle = self._watch
        self._watch = None
        if handle is not None and handle.active:
            handle.cancel()
            _logger.debug("Position watch cancelled")

    def stream(self, options: PositionOptions | None = None) -> PositionStream:
        """Open a watch and expose it as a :class:`PositionStream`."""
        stream = PositionStream()
        stream._attach(self.watch(stream._push, stream._push, options))  # noqa: SLF001
        return stream
