"""High-level entry point wiring the store, merger and selection together."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from transitpresence.config import PresenceConfig
from transitpresence.merger import DemoFleetProvider, StreamMerger, default_demo_fleet
from transitpresence.models._base import utcnow
from transitpresence.models.presence import Capability, DriverProfile
from transitpresence.permission import PermissionGate, PermissionPlatform
from transitpresence.position import GeolocationProvider, PositionSource
from transitpresence.selection import SelectionCoordinator
from transitpresence.sharing import SharingSession
from transitpresence.store.base import PresenceStore

_logger = logging.getLogger(__name__)


class PresenceClient:
    """Rider/driver view over one presence store.

    Usage::

        async with PresenceClient(store) as client:
            client.merger.on_change(render)
            session = client.sharing_session(profile, capability, provider)
            await session.start()

    The client opens the store if it is not open yet and closes it again on
    exit only in that case. Sharing sessions created through the client are
    stopped on exit.
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
        self._owns_store = False
        self.merger = StreamMerger(store, config=self._config, demo_fleet=demo_fleet, clock=clock)
        self.selection = SelectionCoordinator(self.merger.locate, zoom_hint=self._config.focus_zoom)
        self._sessions: list[SharingSession] = []

    @property
    def config(self) -> PresenceConfig:
        return self._config

    async def __aenter__(self) -> PresenceClient:
        if not self._store.is_open:
            await self._store.open()
            self._owns_store = True
        self.merger.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        for session in list(self._sessions):
            try:
                await session.close()
            except Exception:
                _logger.warning("Failed to stop sharing for %s", session.driver_id, exc_info=True)
        self._sessions.clear()
        self.merger.stop()
        if self._owns_store:
            await self._store.close()
            self._owns_store = False

    def sharing_session(
        self,
        profile: DriverProfile,
        capability: Capability,
        provider: GeolocationProvider | None,
        *,
        platform: PermissionPlatform | None = None,
    ) -> SharingSession:
        """Build a sharing session for this device."""
        source = PositionSource(provider)
        gate = PermissionGate(source, platform=platform, config=self._config)
        session = SharingSession(
            self._store,
            source,
            gate,
            profile=profile,
            capability=capability,
            config=self._config,
        )
        self._sessions.append(session)
        return session
