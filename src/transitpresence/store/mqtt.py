"""MQTT-backed presence store.

Each document is a retained JSON message on
``<topic_prefix>/<collection>/<doc_id>``; deleting publishes an empty
retained payload, which clears the topic on the broker. Subscribing to
``<topic_prefix>/<collection>/+`` replays the retained documents and then
streams changes, which gives the realtime snapshot semantics of the store
contract.

paho runs its network loop on a background thread; every inbound message
is handed to the asyncio loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, cast

import paho.mqtt.client as mqtt

from transitpresence.config import MqttStoreConfig
from transitpresence.exceptions import PresenceStoreError, StoreWriteFailedError
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

_FORBIDDEN_TOPIC_CHARS = frozenset("/+#")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_document(data: Mapping[str, Any]) -> bytes:
    return json.dumps(dict(data), default=_json_default, separators=(",", ":")).encode("utf-8")


def decode_document(payload: bytes) -> dict[str, Any] | None:
    """Decode a retained payload. Empty payloads (deletions) return ``None``."""
    if not payload:
        return None
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("document payload is not a JSON object")
    return parsed


def _check_segment(value: str, *, what: str) -> None:
    if not value or any(char in _FORBIDDEN_TOPIC_CHARS for char in value):
        raise PresenceStoreError(f"Invalid {what} for MQTT topic: {value!r}")


class MqttPresenceStore(PresenceStore):
    """Presence store over an MQTT broker with retained messages."""

    def __init__(
        self,
        config: MqttStoreConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
        client_factory: Callable[[str], mqtt.Client] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(clock=clock)
        self._config = config
        self._client_factory = client_factory
        self._logger = logger or _logger
        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._cache: dict[str, dict[str, dict[str, Any]]] = {}
        self._topics: set[str] = set()

    def _topic(self, collection: str, doc_id: str | None = None) -> str:
        _check_segment(collection, what="collection")
        if doc_id is None:
            return f"{self._config.topic_prefix}/{collection}/+"
        _check_segment(doc_id, what="document id")
        return f"{self._config.topic_prefix}/{collection}/{doc_id}"

    def _split_topic(self, topic: str) -> tuple[str, str] | None:
        prefix = f"{self._config.topic_prefix}/"
        if not topic.startswith(prefix):
            return None
        parts = topic[len(prefix) :].split("/")
        if len(parts) != 2 or not all(parts):
            return None
        return parts[0], parts[1]

    def _build_client(self) -> mqtt.Client:
        client_id = self._config.client_id or f"transitpresence-{uuid.uuid4().hex[:12]}"
        if self._client_factory is not None:
            return self._client_factory(client_id)
        return mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )

    async def open(self) -> None:
        """Connect to the broker and start the network loop."""
        if self._open:
            return
        loop = asyncio.get_running_loop()
        self._loop = loop
        connected = asyncio.Event()
        failure: list[str] = []

        client = self._build_client()
        client.enable_logger(self._logger)
        if self._config.username is not None:
            client.username_pw_set(self._config.username, self._config.password)
        if self._config.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                failure.append(str(reason_code))
            else:
                self._logger.debug("MQTT connected reason=%s", reason_code)
                # Re-subscribe after reconnects; retained documents are replayed.
                for topic in sorted(self._topics):
                    c.subscribe(topic, qos=1)
            loop.call_soon_threadsafe(connected.set)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            loop.call_soon_threadsafe(self._handle_message, msg.topic, bytes(msg.payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._open:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            await loop.run_in_executor(
                None,
                client.connect,
                self._config.host,
                self._config.port,
                self._config.keepalive,
            )
        except OSError as exc:
            raise PresenceStoreError(
                f"MQTT connect to {self._config.host}:{self._config.port} failed: {exc}"
            ) from exc
        client.loop_start()

        try:
            await asyncio.wait_for(connected.wait(), self._config.connect_timeout)
        except TimeoutError as exc:
            client.loop_stop()
            raise PresenceStoreError("MQTT connect timed out") from exc
        if failure:
            client.loop_stop()
            raise PresenceStoreError(f"MQTT connect refused: {failure[0]}")

        self._client = client
        await super().open()
        self._logger.debug("MQTT presence store open host=%s port=%s", self._config.host, self._config.port)

    async def close(self) -> None:
        await super().close()
        client = self._client
        self._client = None
        self._topics.clear()
        self._cache.clear()
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            loop = self._loop or asyncio.get_running_loop()
            await loop.run_in_executor(None, client.loop_stop)
            self._logger.debug("MQTT network loop stopped")

    def _handle_message(self, topic: str, payload: bytes) -> None:
        target = self._split_topic(topic)
        if target is None:
            return
        collection, doc_id = target
        try:
            data = decode_document(payload)
        except (UnicodeDecodeError, ValueError):
            self._logger.debug("Ignoring undecodable document on %s", topic, exc_info=True)
            return
        documents = self._cache.setdefault(collection, {})
        if data is None:
            if documents.pop(doc_id, None) is None:
                return
        else:
            documents[doc_id] = data
        self._notify(collection)

    def _snapshot(self, collection: str) -> tuple[Document, ...]:
        docs = self._cache.get(collection, {})
        return tuple(
            Document(collection=collection, doc_id=doc_id, data=copy.deepcopy(data)) for doc_id, data in docs.items()
        )

    def _notify(self, collection: str) -> None:
        snapshot = self._snapshot(collection)
        for subscription in self._subscriptions_for(collection):
            subscription.deliver(snapshot)

    async def _publish(self, collection: str, doc_id: str, payload: bytes) -> None:
        self._ensure_open(collection, doc_id)
        client = self._client
        if client is None:
            raise StoreWriteFailedError("MQTT client is not connected", collection=collection, doc_id=doc_id)
        topic = self._topic(collection, doc_id)
        info = client.publish(topic, payload, qos=1, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise StoreWriteFailedError(
                f"MQTT publish to {topic} failed: rc={info.rc}",
                collection=collection,
                doc_id=doc_id,
            )
        loop = self._loop or asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, info.wait_for_publish, self._config.publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise StoreWriteFailedError(
                f"MQTT publish to {topic} failed: {exc}",
                collection=collection,
                doc_id=doc_id,
            ) from exc
        if not info.is_published():
            raise StoreWriteFailedError(
                f"MQTT publish to {topic} was not acknowledged",
                collection=collection,
                doc_id=doc_id,
            )

    async def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        resolved = resolve_server_timestamps(data, self._clock())
        await self._publish(collection, doc_id, encode_document(resolved))
        self._cache.setdefault(collection, {})[doc_id] = resolved
        return Document(collection=collection, doc_id=doc_id, data=copy.deepcopy(resolved))

    async def merge_update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> Document:
        resolved = resolve_server_timestamps(data, self._clock())
        merged = copy.deepcopy(self._cache.get(collection, {}).get(doc_id, {}))
        merged.update(resolved)
        await self._publish(collection, doc_id, encode_document(merged))
        self._cache.setdefault(collection, {})[doc_id] = merged
        return Document(collection=collection, doc_id=doc_id, data=copy.deepcopy(merged))

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._publish(collection, doc_id, b"")
        self._cache.get(collection, {}).pop(doc_id, None)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        self._ensure_open(collection, doc_id)
        data = self._cache.get(collection, {}).get(doc_id)
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
        topic = self._topic(collection)
        subscription = Subscription(
            collection,
            listener,
            where=where,
            on_error=on_error,
            on_unsubscribe=self._forget,
        )
        self._register(subscription)
        if topic not in self._topics:
            self._topics.add(topic)
            assert self._client is not None
            result, _mid = self._client.subscribe(topic, qos=1)
            if result != mqtt.MQTT_ERR_SUCCESS:
                subscription.unsubscribe()
                raise PresenceStoreError(f"MQTT subscribe to {topic} failed: rc={result}", collection=collection)
        assert self._loop is not None
        # Snapshot at delivery time so retained replays queued above are included.
        self._loop.call_soon(self._deliver_current, subscription)
        return subscription

    def _deliver_current(self, subscription: Subscription) -> None:
        subscription.deliver(self._snapshot(subscription.collection))

    def _forget(self, subscription: Subscription) -> None:
        super()._forget(subscription)
        if self._subscriptions_for(subscription.collection):
            return
        topic = self._topic(subscription.collection)
        if topic in self._topics:
            self._topics.discard(topic)
            if self._client is not None:
                self._client.unsubscribe(topic)
