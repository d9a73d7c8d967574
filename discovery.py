#!/usr/bin/env python3
"""Home Assistant MQTT discovery payloads for the base unit and its devices.

Entities produced:

* base unit       -> ``alarm_control_panel`` (arm home / arm away / disarm)
* clear alarms    -> ``button`` publishing to ``<base>/clear_status``
* device state    -> ``binary_sensor`` (door, motion or smoke)
* device RSSI     -> diagnostic ``sensor``
* device battery  -> diagnostic ``binary_sensor``
* enabled status  -> one config ``switch`` per flag of the device category

Every entity is bound to the base unit connectivity topic for availability.
Devices whose type has no Home Assistant shape are skipped (logged).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

import topics
from config import BaseUnitConfig, Config, DeviceConfig
from panel import Device, DeviceCategory, DeviceType, ESFlags

LOGGER = logging.getLogger("discovery")

BASEUNIT_ID = "lifesos_baseunit"
CLEAR_EVENTS_ID = "lifesos_clear_events"

# Flags exposed per device category, in publish order.
ENABLED_STATUSES: Dict[DeviceCategory, Tuple[ESFlags, ...]] = {
    DeviceCategory.Controller: (ESFlags.Delay, ESFlags.AlarmSiren, ESFlags.Latchkey),
    DeviceCategory.Burglar: (
        ESFlags.Bypass,
        ESFlags.Delay,
        ESFlags.Hour24,
        ESFlags.HomeGuard,
        ESFlags.PreWarning,
        ESFlags.AlarmSiren,
        ESFlags.Bell,
        ESFlags.Inactivity,
        ESFlags.HomeAuto,
    ),
    DeviceCategory.Fire: (ESFlags.Bypass, ESFlags.WarningBeepDelay, ESFlags.AlarmSiren),
    DeviceCategory.Medical: (ESFlags.Bypass, ESFlags.WarningBeepDelay, ESFlags.AlarmSiren),
}

# device_class, payload_on, payload_off
DEVICE_SHAPES: Dict[DeviceType, Tuple[str, str, str]] = {
    DeviceType.DoorMagnet: ("door", "Open", "Closed"),
    DeviceType.PIRSensor: ("motion", "On", "Off"),
    DeviceType.SmokeDetector: ("smoke", "On", "Off"),
}


class DiscoveryMessage(NamedTuple):
    topic: str
    payload: Dict[str, Any]


def enabled_statuses(category: DeviceCategory) -> Tuple[ESFlags, ...]:
    return ENABLED_STATUSES.get(category, ())


def device_unique_id(device_id: int, suffix: Optional[str] = None) -> str:
    uniq = f"lifesos_{device_id:06x}"
    return f"{uniq}_{suffix}" if suffix else uniq


def availability_info(baseunit: BaseUnitConfig) -> Dict[str, str]:
    return {
        "availability_topic": topics.is_connected_topic(baseunit),
        "payload_available": "true",
        "payload_not_available": "false",
    }


def device_info(identifier: str, config: Union[BaseUnitConfig, DeviceConfig]) -> Dict[str, Any]:
    info = {
        "identifiers": identifier,
        "name": config.name,
        "manufacturer": config.manufacturer,
        "model": config.model,
    }
    return {"device": {k: v for k, v in info.items() if v is not None}}


class DiscoveryBuilder:
    def __init__(self, config: Config) -> None:
        self.config = config
        self.prefix = config.adapter.discovery_prefix
        self.baseunit = config.adapter.baseunit

    def _message(self, platform: str, payload: Dict[str, Any]) -> DiscoveryMessage:
        return DiscoveryMessage(topics.discovery_topic(self.prefix, platform, payload["unique_id"]), payload)

    # Base unit ----------------------------------------------------------
    def baseunit_panel(self) -> DiscoveryMessage:
        base = self.baseunit
        payload = {
            "object_id": BASEUNIT_ID,
            "unique_id": BASEUNIT_ID,
            "state_topic": topics.ha_state_topic(base),
            "command_topic": topics.operation_mode_set_topic(base),
            "payload_disarm": "Disarm",
            "payload_arm_home": "Home",
            "payload_arm_away": "Away",
            "code_arm_required": "false",
            "code_disarm_required": "false",
            "code_trigger_required": "false",
            **availability_info(base),
            "supported_features": ["trigger", "arm_home", "arm_away"],
            **device_info(BASEUNIT_ID, base),
        }
        return self._message("alarm_control_panel", payload)

    def clear_alarm_button(self) -> DiscoveryMessage:
        base = self.baseunit
        payload: Dict[str, Any] = {
            "name": "Clear alarm events",
            "object_id": CLEAR_EVENTS_ID,
            "unique_id": CLEAR_EVENTS_ID,
            "icon": "mdi:notification-clear-all",
            "command_topic": topics.clear_status_topic(base),
            **availability_info(base),
            **device_info(BASEUNIT_ID, base),
        }
        # The base unit wants the password to clear its status
        if self.config.lifesos.password:
            payload["payload_press"] = self.config.lifesos.password
        return self._message("button", payload)

    # Devices -------------------------------------------------------------
    def device_state(self, device: Device, config: DeviceConfig) -> Optional[DiscoveryMessage]:
        shape = DEVICE_SHAPES.get(device.device_type) if device.device_type is not None else None
        if shape is None:
            LOGGER.warning(
                "Device type '%s' cannot be represented in Home Assistant and will be skipped",
                device.type_name,
            )
            return None
        device_class, payload_on, payload_off = shape
        uniq = device_unique_id(device.device_id)
        payload = {
            "object_id": uniq,
            "unique_id": uniq,
            "state_topic": topics.device_topic(config),
            **availability_info(self.baseunit),
            "json_attributes_topic": topics.attributes_topic(config),
            **device_info(uniq, config),
            "device_class": device_class,
            "payload_on": payload_on,
            "payload_off": payload_off,
        }
        return self._message("binary_sensor", payload)

    def device_rssi(self, device: Device, config: DeviceConfig) -> DiscoveryMessage:
        uniq = device_unique_id(device.device_id, "rssi")
        payload = {
            "object_id": uniq,
            "unique_id": uniq,
            "icon": "mdi:wifi",
            "state_topic": topics.rssi_topic(config),
            "device_class": "signal_strength",
            "unit_of_measurement": "dB",
            **availability_info(self.baseunit),
            "entity_category": "diagnostic",
            **device_info(device_unique_id(device.device_id), config),
        }
        return self._message("sensor", payload)

    def device_battery(self, device: Device, config: DeviceConfig) -> DiscoveryMessage:
        uniq = device_unique_id(device.device_id, "battery")
        payload = {
            "object_id": uniq,
            "unique_id": uniq,
            "device_class": "battery",
            "payload_on": "BatteryLow",
            "payload_off": "PowerOnReset",
            "state_topic": topics.battery_topic(config),
            **availability_info(self.baseunit),
            "entity_category": "diagnostic",
            **device_info(device_unique_id(device.device_id), config),
        }
        return self._message("binary_sensor", payload)

    def device_enabled_statuses(self, device: Device, config: DeviceConfig) -> List[DiscoveryMessage]:
        messages = []
        for flag in enabled_statuses(device.category):
            uniq = device_unique_id(device.device_id, f"es_{flag.name.lower()}")
            payload = {
                "name": flag.name,
                "object_id": uniq,
                "unique_id": uniq,
                "state_topic": topics.enabled_status_topic(config, flag),
                "command_topic": topics.enabled_status_set_topic(config, flag),
                "payload_on": "true",
                "payload_off": "false",
                **availability_info(self.baseunit),
                "entity_category": "config",
                **device_info(device_unique_id(device.device_id), config),
            }
            messages.append(self._message("switch", payload))
        return messages

    def device_messages(self, device: Device, config: DeviceConfig) -> List[DiscoveryMessage]:
        messages = []
        state = self.device_state(device, config)
        if state is not None:
            messages.append(state)
        messages.append(self.device_rssi(device, config))
        messages.append(self.device_battery(device, config))
        messages.extend(self.device_enabled_statuses(device, config))
        return messages

    def all_messages(self, devices: Mapping[int, Device]) -> List[DiscoveryMessage]:
        """Base unit entities plus every configured device the panel knows about."""
        messages = [self.baseunit_panel(), self.clear_alarm_button()]
        for config in self.config.adapter.devices:
            device = devices.get(config.device_id)
            if device is not None:
                messages.extend(self.device_messages(device, config))
        return messages


__all__ = [
    "BASEUNIT_ID",
    "CLEAR_EVENTS_ID",
    "DEVICE_SHAPES",
    "ENABLED_STATUSES",
    "DiscoveryBuilder",
    "DiscoveryMessage",
    "availability_info",
    "device_info",
    "device_unique_id",
    "enabled_statuses",
]
