"""Location-permission tracking."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from transitpresence.config import PresenceConfig
from transitpresence.exceptions import PositionError, PositionUnavailableError
from transitpresence.models.state import PermissionState
from transitpresence.position import PositionOptions, PositionSource

_logger = logging.getLogger(__name__)

PermissionListener = Callable[[PermissionState], None]

_PLATFORM_STATES: dict[str, PermissionState] = {
    "granted": PermissionState.GRANTED,
    "denied": PermissionState.DENIED,
    "prompt": PermissionState.UNKNOWN,
    "unavailable": PermissionState.UNAVAILABLE,
}


class PermissionPlatform(Protocol):
    """Optional platform permission facility.

    ``query`` returns ``"granted"``, ``"denied"`` or ``"prompt"``.
    Platforms that can push changes additionally implement
    ``add_change_listener(callback) -> unsubscribe``.
    """

    async def query(self) -> str: ...


def map_platform_state(value: str | None) -> PermissionState:
    if not isinstance(value, str):
        return PermissionState.UNKNOWN
    return _PLATFORM_STATES.get(value.strip().lower(), PermissionState.UNKNOWN)


class PermissionGate:
    """Tracks the device's location-permission state.

    The platform facility is optional; without one the state stays
    ``unknown`` until :meth:`request` settles it.
    """

    def __init__(
        self,
        source: PositionSource,
        *,
        platform: PermissionPlatform | None = None,
        config: PresenceConfig | None = None,
    ) -> None:
        self._source = source
        self._platform = platform
        self._config = config or PresenceConfig()
        self._state = PermissionState.UNKNOWN
        self._listeners: list[PermissionListener] = []
        self._platform_unsubscribe: Callable[[], None] | None = None

    @property
    def state(self) -> PermissionState:
        """Last known state, without touching the platform."""
        return self._state

    def _set_state(self, state: PermissionState) -> None:
        if state == self._state:
            return
        _logger.debug("Location permission %s -> %s", self._state, state)
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    async def query(self) -> PermissionState:
        """Read the current state from the platform."""
        if not self._source.is_available:
            self._set_state(PermissionState.UNAVAILABLE)
            return self._state
        if self._platform is None:
            return self._state
        try:
            raw = await self._platform.query()
        except Exception:
            _logger.debug("Permission query not supported", exc_info=True)
            self._set_state(PermissionState.UNKNOWN)
            return self._state
        self._set_state(map_platform_state(raw))
        return self._state

    def on_change(self, callback: PermissionListener) -> Callable[[], None]:
        """Subscribe to permission changes. Returns an unsubscribe callable."""
        self._listeners.append(callback)
        self._hook_platform()

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _hook_platform(self) -> None:
        if self._platform_unsubscribe is not None or self._platform is None:
            return
        add_listener = getattr(self._platform, "add_change_listener", None)
        if add_listener is None:
            return

        def _on_platform_change(raw: str) -> None:
            self._set_state(map_platform_state(raw))

        unsubscribe = add_listener(_on_platform_change)
        self._platform_unsubscribe = unsubscribe if callable(unsubscribe) else (lambda: None)

    async def request(self) -> PermissionState:
        """Surface the OS prompt with a fresh one-shot fix.

        Always settles on granted, denied or unavailable.
        """
        options = PositionOptions.for_permission_probe(self._config)
        try:
            await self._source.get_once(options)
        except PositionUnavailableError as exc:
            _logger.debug("Permission probe: position unavailable: %s", exc.message)
            self._set_state(PermissionState.UNAVAILABLE)
        except PositionError as exc:
            _logger.debug("Permission probe failed kind=%s: %s", exc.kind, exc.message)
            self._set_state(PermissionState.DENIED)
        else:
            self._set_state(PermissionState.GRANTED)
        return self._state

    def close(self) -> None:
        unsubscribe = self._platform_unsubscribe
        self._platform_unsubscribe = None
        self._listeners.clear()
        if unsubscribe is not None:
            unsubscribe()
