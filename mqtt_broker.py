#!/usr/bin/env python3
"""paho-mqtt client wrapper used by the bridge.

* Manual connect: ``connect()`` only starts the background network loop;
  paho keeps reconnecting on its own (1-5 s back-off).
* Last will registered before the first connect.
* Subscriptions are remembered and replayed after every (re)connect since
  the session is clean.
* paho callbacks run on the network thread; they are handed over to the
  asyncio loop with ``call_soon_threadsafe`` so listeners never run
  concurrently with the rest of the bridge.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Union
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from config import MqttConfig

LOGGER = logging.getLogger("mqtt_broker")

CONNECT_TIMEOUT = 4.0
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 5
KEEPALIVE = 60

_TLS_SCHEMES = ("mqtts", "ssl")
_PLAIN_SCHEMES = ("mqtt", "tcp")


@dataclass(frozen=True)
class Will:
    topic: str
    payload: str
    qos: int = 1
    retain: bool = True


class BrokerListener(Protocol):
    def on_broker_connect(self) -> None: ...

    def on_broker_disconnect(self, reason: str) -> None: ...

    def on_broker_message(self, topic: str, payload: bytes) -> None: ...


class MqttBroker:
    def __init__(self, config: MqttConfig, will: Optional[Will] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.config = config
        self.listener: Optional[BrokerListener] = None
        self._loop = loop
        self._subscriptions: Dict[str, int] = {}
        parts = urlsplit(config.uri if "://" in config.uri else f"mqtt://{config.uri}")
        self._host, self._port, use_tls = self._parse_uri(parts, config.tls is not None)
        self._client = self._build_client(will, use_tls, parts.username, parts.password)

    @staticmethod
    def _parse_uri(parts, tls_configured: bool = False):
        scheme = parts.scheme.lower()
        if scheme not in _TLS_SCHEMES + _PLAIN_SCHEMES:
            raise ValueError(f"Unsupported MQTT URI scheme '{parts.scheme}'")
        # A tls block upgrades a plain URI, including its default port
        use_tls = scheme in _TLS_SCHEMES or tls_configured
        port = parts.port or (8883 if use_tls else 1883)
        return parts.hostname or "localhost", port, use_tls

    def _build_client(self, will: Optional[Will], use_tls: bool,
                      uri_username: Optional[str], uri_password: Optional[str]) -> mqtt.Client:
        cfg = self.config
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=cfg.client_id, clean_session=True
        )
        username = cfg.username or uri_username
        if username:
            client.username_pw_set(username, cfg.password or uri_password or "")
        if will is not None:
            client.will_set(will.topic, will.payload, qos=will.qos, retain=will.retain)
        if use_tls:
            tls = cfg.tls
            client.tls_set(
                ca_certs=tls.ca_cert if tls else None,
                certfile=tls.certfile if tls else None,
                keyfile=tls.keyfile if tls else None,
            )
            LOGGER.info("MQTT TLS enabled")
        client.connect_timeout = CONNECT_TIMEOUT
        client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    # Lifecycle -----------------------------------------------------------
    @property
    def is_connected(self) -> bool:
        return self._client.is_connected()

    def connect(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        LOGGER.info("Connecting to MQTT broker at %s:%s", self._host, self._port)
        self._client.connect_async(self._host, self._port, keepalive=KEEPALIVE)
        self._client.loop_start()

    def disconnect(self) -> None:
        rc = self._client.disconnect()
        if rc != mqtt.MQTT_ERR_SUCCESS:
            LOGGER.debug("MQTT disconnect returned %s", mqtt.error_string(rc))
        self._client.loop_stop()

    # Topics --------------------------------------------------------------
    def subscribe(self, topic: str, qos: int = 1) -> None:
        self._subscriptions[topic] = qos
        if self.is_connected:
            self._subscribe(topic, qos)

    def unsubscribe(self, topic: str) -> None:
        if self._subscriptions.pop(topic, None) is None:
            return
        if self.is_connected:
            rc, _mid = self._client.unsubscribe(topic)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                LOGGER.error("Error unsubscribing from %s: %s", topic, mqtt.error_string(rc))

    def _subscribe(self, topic: str, qos: int) -> None:
        rc, _mid = self._client.subscribe(topic, qos)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            LOGGER.error("Error subscribing to %s: %s", topic, mqtt.error_string(rc))

    def publish(self, topic: str, payload: Union[str, bytes], qos: int = 1, retain: bool = False) -> bool:
        try:
            info = self._client.publish(topic, payload, qos=qos, retain=retain)
        except (ValueError, TypeError) as exc:
            LOGGER.error("Error publishing %s %s: %s", topic, payload, exc)
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            LOGGER.error("Error publishing %s %s: %s", topic, payload, mqtt.error_string(info.rc))
            return False
        return True

    # paho callbacks (network thread) --------------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):  # noqa: ANN001
        if reason_code.is_failure:
            LOGGER.error("MQTT client failed to connect: %s", reason_code)
            return
        for topic, qos in list(self._subscriptions.items()):
            self._subscribe(topic, qos)
        self._notify("on_broker_connect")

    def _on_connect_fail(self, client, userdata):  # noqa: ANN001
        LOGGER.error("MQTT client could not reach %s:%s, retrying", self._host, self._port)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):  # noqa: ANN001
        self._notify("on_broker_disconnect", str(reason_code))

    def _on_message(self, client, userdata, msg):  # noqa: ANN001
        self._notify("on_broker_message", msg.topic, msg.payload)

    def _notify(self, name: str, *args) -> None:
        if self._loop is None or self.listener is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._dispatch, name, args)
        except RuntimeError:
            # Loop already closed during shutdown
            LOGGER.debug("Dropping %s, event loop is closed", name)

    def _dispatch(self, name: str, args: tuple) -> None:
        if self.listener is None:
            return
        try:
            getattr(self.listener, name)(*args)
        except Exception:
            LOGGER.exception("MQTT listener %s failed", name)


__all__ = ["BrokerListener", "MqttBroker", "Will"]
