"""Engine configuration for transitpresence."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from transitpresence.exceptions import PresenceConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(env_key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise PresenceConfigError(f"{env_key} must be numeric, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class PresenceConfig:
    """Engine configuration.

    Parameters
    ----------
    presence_collection : str
        Store collection holding one presence record per sharing driver.
    fleet_collection : str
        Store collection holding the externally owned fleet entries.
    staleness_window : float
        Seconds after ``lastSeenAt`` at which a presence entry turns stale.
    desktop_timeout : float
        One-shot position timeout (seconds) on desktop devices.
    mobile_timeout : float
        One-shot position timeout (seconds) on mobile devices. Longer to
        accommodate GPS cold starts over cellular.
    acquire_maximum_age : float
        Maximum cached position age (seconds) accepted for the first fix.
    watch_timeout : float
        Per-update timeout (seconds) for the continuous watch.
    watch_maximum_age : float
        Maximum cached position age (seconds) accepted by the watch.
    default_latitude, default_longitude : float
        Viewpoint used when no entity has valid coordinates.
    focus_zoom : int
        Zoom hint attached to focus events.
    mobile : bool
        Whether the device is a mobile device.
    """

    presence_collection: str = "driverLocations"
    fleet_collection: str = "buses"
    staleness_window: float = 300.0
    desktop_timeout: float = 10.0
    mobile_timeout: float = 15.0
    acquire_maximum_age: float = 10.0
    watch_timeout: float = 10.0
    watch_maximum_age: float = 5.0
    default_latitude: float = 40.7128
    default_longitude: float = -74.0060
    focus_zoom: int = 15
    mobile: bool = False

    def __post_init__(self) -> None:
        if self.staleness_window <= 0:
            raise PresenceConfigError("staleness_window must be positive")
        if self.desktop_timeout <= 0 or self.mobile_timeout <= 0:
            raise PresenceConfigError("position timeouts must be positive")
        if not self.presence_collection or not self.fleet_collection:
            raise PresenceConfigError("collection names must be non-empty")

    @property
    def position_timeout(self) -> float:
        """One-shot timeout for this device class."""
        return self.mobile_timeout if self.mobile else self.desktop_timeout

    @classmethod
    def from_env(cls, **overrides: Any) -> PresenceConfig:
        """Create configuration from ``TRANSIT_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "TRANSIT_PRESENCE_COLLECTION": "presence_collection",
            "TRANSIT_FLEET_COLLECTION": "fleet_collection",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "TRANSIT_STALENESS_WINDOW": "staleness_window",
            "TRANSIT_DESKTOP_TIMEOUT": "desktop_timeout",
            "TRANSIT_MOBILE_TIMEOUT": "mobile_timeout",
            "TRANSIT_DEFAULT_LATITUDE": "default_latitude",
            "TRANSIT_DEFAULT_LONGITUDE": "default_longitude",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = _env_float(env_key, val)

        zoom_env = env.get("TRANSIT_FOCUS_ZOOM")
        if zoom_env is not None:
            config_kwargs["focus_zoom"] = int(_env_float("TRANSIT_FOCUS_ZOOM", zoom_env))

        config_kwargs["mobile"] = _env_bool(env.get("TRANSIT_MOBILE"), False)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class MqttStoreConfig:
    """Connection settings for :class:`~transitpresence.store.mqtt.MqttPresenceStore`.

    Documents live as retained messages under
    ``<topic_prefix>/<collection>/<doc_id>``.
    """

    host: str = "localhost"
    port: int = 1883
    topic_prefix: str = "transit"
    client_id: str = ""
    username: str | None = None
    password: str | None = None
    tls: bool = False
    keepalive: int = 60
    connect_timeout: float = 10.0
    publish_timeout: float = 10.0

    @classmethod
    def from_env(cls, **overrides: Any) -> MqttStoreConfig:
        """Create MQTT settings from ``TRANSIT_MQTT_*`` environment variables."""
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "TRANSIT_MQTT_HOST": "host",
            "TRANSIT_MQTT_TOPIC_PREFIX": "topic_prefix",
            "TRANSIT_MQTT_CLIENT_ID": "client_id",
            "TRANSIT_MQTT_USERNAME": "username",
            "TRANSIT_MQTT_PASSWORD": "password",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        port_env = env.get("TRANSIT_MQTT_PORT")
        if port_env is not None:
            config_kwargs["port"] = int(_env_float("TRANSIT_MQTT_PORT", port_env))

        keepalive_env = env.get("TRANSIT_MQTT_KEEPALIVE")
        if keepalive_env is not None:
            config_kwargs["keepalive"] = int(_env_float("TRANSIT_MQTT_KEEPALIVE", keepalive_env))

        timeout_env = env.get("TRANSIT_MQTT_PUBLISH_TIMEOUT")
        if timeout_env is not None:
            config_kwargs["publish_timeout"] = _env_float("TRANSIT_MQTT_PUBLISH_TIMEOUT", timeout_env)

        config_kwargs["tls"] = _env_bool(env.get("TRANSIT_MQTT_TLS"), False)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
