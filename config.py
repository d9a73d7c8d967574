#!/usr/bin/env python3
"""Configuration loading for the LifeSOS MQTT bridge.

The YAML file has three sections:

* ``lifesos`` - base unit host/port, optional password and the import path
  (``module:callable``) of the panel client factory, lifesospy by default.
* ``mqtt``    - broker URI, client id, optional credentials and TLS files.
* ``adapter`` - Home Assistant discovery prefix, birth topic/payload, the base
  unit topic/metadata and one entry per enrolled device.

Everything is parsed into frozen dataclasses once at startup and never
mutated afterwards. Device ids are normalized to six lowercase hex digits so
they match the fixed-width rendering of the numeric id reported by the panel.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_CONFIGFILE = "config.yaml"
DEFAULT_CLIENT_ID = "lifesos_mqtt"
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
DEFAULT_BIRTH_TOPIC = "homeassistant/status"
DEFAULT_BIRTH_PAYLOAD = "online"
DEFAULT_PANEL_CLIENT = "lifesos_client:create_client"

_WILDCARDS = ("+", "#")


class ConfigError(Exception):
    """Raised when the configuration file is missing or malformed."""


@dataclass(frozen=True)
class TLSConfig:
    ca_cert: Optional[str] = None
    certfile: Optional[str] = None
    keyfile: Optional[str] = None


@dataclass(frozen=True)
class LifeSOSConfig:
    port: int
    host: Optional[str] = None
    password: Optional[str] = None
    client: Optional[str] = DEFAULT_PANEL_CLIENT


@dataclass(frozen=True)
class MqttConfig:
    uri: str
    client_id: str = DEFAULT_CLIENT_ID
    username: Optional[str] = None
    password: Optional[str] = None
    tls: Optional[TLSConfig] = None


@dataclass(frozen=True)
class BaseUnitConfig:
    topic: str
    name: str = "LifeSOS"
    manufacturer: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class DeviceConfig:
    id: str
    topic: str
    name: str
    manufacturer: Optional[str] = None
    model: Optional[str] = None

    @property
    def device_id(self) -> int:
        return int(self.id, 16)


@dataclass(frozen=True)
class AdapterConfig:
    baseunit: BaseUnitConfig
    discovery_prefix: str = DEFAULT_DISCOVERY_PREFIX
    birth_topic: str = DEFAULT_BIRTH_TOPIC
    birth_payload: str = DEFAULT_BIRTH_PAYLOAD
    devices: Tuple[DeviceConfig, ...] = field(default_factory=tuple)

    def find_device(self, device_id: int) -> Optional[DeviceConfig]:
        key = format_device_id(device_id)
        for device in self.devices:
            if device.id == key:
                return device
        return None


@dataclass(frozen=True)
class Config:
    lifesos: LifeSOSConfig
    mqtt: MqttConfig
    adapter: AdapterConfig


def format_device_id(device_id: int) -> str:
    """Render a numeric device id the way config entries are keyed."""
    return f"{device_id:06x}"


def normalize_device_id(value: Any) -> str:
    text = str(value).strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    try:
        return format_device_id(int(text, 16))
    except ValueError:
        raise ConfigError(f"Device id '{value}' is not a hexadecimal number") from None


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"Missing or invalid '{key}' section")
    return value


def _required(raw: Dict[str, Any], key: str, where: str) -> Any:
    value = raw.get(key)
    if value is None or value == "":
        raise ConfigError(f"Missing required key '{where}.{key}'")
    return value


def _topic(value: Any, where: str) -> str:
    topic = str(value).rstrip("/")
    if any(w in topic for w in _WILDCARDS):
        raise ConfigError(f"Topic '{topic}' for {where} must not contain MQTT wildcards")
    return topic


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def parse_config(raw: Dict[str, Any]) -> Config:
    if not isinstance(raw, dict):
        raise ConfigError("Configuration must be a mapping")

    lifesos_raw = _section(raw, "lifesos")
    try:
        port = int(_required(lifesos_raw, "port", "lifesos"))
    except (TypeError, ValueError):
        raise ConfigError("'lifesos.port' must be an integer") from None
    lifesos = LifeSOSConfig(
        port=port,
        host=_optional_str(lifesos_raw.get("host")),
        password=_optional_str(lifesos_raw.get("password")) or None,
        client=_optional_str(lifesos_raw.get("client")) or DEFAULT_PANEL_CLIENT,
    )

    mqtt_raw = _section(raw, "mqtt")
    tls_raw = mqtt_raw.get("tls") or None
    tls = None
    if isinstance(tls_raw, dict):
        tls = TLSConfig(
            ca_cert=_optional_str(tls_raw.get("ca_cert")),
            certfile=_optional_str(tls_raw.get("certfile")),
            keyfile=_optional_str(tls_raw.get("keyfile")),
        )
    mqtt = MqttConfig(
        uri=str(_required(mqtt_raw, "uri", "mqtt")),
        client_id=str(mqtt_raw.get("client_id") or DEFAULT_CLIENT_ID),
        username=_optional_str(mqtt_raw.get("username")),
        password=_optional_str(mqtt_raw.get("password")),
        tls=tls,
    )

    adapter_raw = _section(raw, "adapter")
    baseunit_raw = _section(adapter_raw, "baseunit")
    baseunit = BaseUnitConfig(
        topic=_topic(_required(baseunit_raw, "topic", "adapter.baseunit"), "the base unit"),
        name=str(baseunit_raw.get("name") or "LifeSOS"),
        manufacturer=_optional_str(baseunit_raw.get("manufacturer")),
        model=_optional_str(baseunit_raw.get("model")),
    )

    devices = []
    seen = set()
    for index, entry in enumerate(adapter_raw.get("devices") or []):
        where = f"adapter.devices[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"'{where}' must be a mapping")
        device_id = normalize_device_id(_required(entry, "id", where))
        if device_id in seen:
            raise ConfigError(f"Device id '{device_id}' is listed more than once")
        seen.add(device_id)
        devices.append(DeviceConfig(
            id=device_id,
            topic=_topic(_required(entry, "topic", where), f"device {device_id}"),
            name=str(entry.get("name") or device_id),
            manufacturer=_optional_str(entry.get("manufacturer")),
            model=_optional_str(entry.get("model")),
        ))

    adapter = AdapterConfig(
        baseunit=baseunit,
        discovery_prefix=str(adapter_raw.get("discovery_prefix") or DEFAULT_DISCOVERY_PREFIX).rstrip("/"),
        birth_topic=_topic(adapter_raw.get("birth_topic") or DEFAULT_BIRTH_TOPIC, "the birth message"),
        birth_payload=str(adapter_raw.get("birth_payload") or DEFAULT_BIRTH_PAYLOAD),
        devices=tuple(devices),
    )
    return Config(lifesos=lifesos, mqtt=mqtt, adapter=adapter)


def load_config(path: str) -> Config:
    if not os.path.exists(path):
        raise ConfigError(f"No configuration file found at '{path}'")
    with open(path, "r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Could not parse '{path}': {exc}") from exc
    return parse_config(raw or {})


__all__ = [
    "AdapterConfig",
    "BaseUnitConfig",
    "Config",
    "ConfigError",
    "DeviceConfig",
    "LifeSOSConfig",
    "MqttConfig",
    "TLSConfig",
    "format_device_id",
    "load_config",
    "parse_config",
]
