"""Broker topic names for the base unit and enrolled devices.

Plain concatenation; configured segments are checked for wildcards when the
config is loaded.
"""
from __future__ import annotations

from config import BaseUnitConfig, DeviceConfig
from panel import ESFlags


def baseunit_topic(config: BaseUnitConfig) -> str:
    return config.topic


def is_connected_topic(config: BaseUnitConfig) -> str:
    return f"{config.topic}/is_connected"


def ha_state_topic(config: BaseUnitConfig) -> str:
    return f"{config.topic}/ha_state"


def operation_mode_set_topic(config: BaseUnitConfig) -> str:
    return f"{config.topic}/operation_mode/set"


def clear_status_topic(config: BaseUnitConfig) -> str:
    return f"{config.topic}/clear_status"


def device_topic(config: DeviceConfig) -> str:
    return config.topic


def attributes_topic(config: DeviceConfig) -> str:
    return f"{config.topic}/attributes"


def battery_topic(config: DeviceConfig) -> str:
    return f"{config.topic}/battery"


def rssi_topic(config: DeviceConfig) -> str:
    return f"{config.topic}/rssiDb"


def enabled_status_topic(config: DeviceConfig, flag: ESFlags) -> str:
    return f"{config.topic}/enabled_status/{flag.name}"


def enabled_status_set_topic(config: DeviceConfig, flag: ESFlags) -> str:
    return f"{enabled_status_topic(config, flag)}/set"


def discovery_topic(prefix: str, platform: str, unique_id: str) -> str:
    return f"{prefix}/{platform}/{unique_id}/config"
