#!/usr/bin/env python3
"""Panel client for the LifeSOS base unit, built on lifesospy.

:class:`LifeSOSClient` drives a lifesospy ``BaseUnit`` and hands its
notifications to the bridge through :class:`panel.PanelListener`. The device
listing uses a separate lifesospy ``Client`` connection, opened on first use
and closed by :meth:`LifeSOSClient.stop`.

lifesospy values are translated to the :mod:`panel` vocabulary by member
name in both directions; values with no counterpart are dropped (logged at
debug level).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from lifesospy.baseunit import BaseUnit
from lifesospy.client import Client
from lifesospy.command import GetDeviceByIndexCommand
from lifesospy.devicecategory import DC_ALL
from lifesospy.enums import ESFlags as LibESFlags
from lifesospy.enums import OperationMode as LibOperationMode
from lifesospy.response import DeviceNotFoundResponse

from panel import (
    BaseUnitState,
    ContactId,
    ContactIDEventCategory,
    ContactIDEventQualifier,
    Device,
    DeviceCategory,
    DeviceEventCode,
    DeviceType,
    ESFlags,
    OperationMode,
    PanelListener,
    PropertyChangedInfo,
)

LOGGER = logging.getLogger("lifesos_client")


def translate_enum(target, value):
    """Member of ``target`` with the same name as ``value``, or None."""
    if value is None:
        return None
    name = getattr(value, "name", None)
    if name not in target.__members__:
        LOGGER.debug("No %s for %r", target.__name__, value)
        return None
    return target[name]


def translate_flags(target, value):
    """Rebuild a flag set in ``target`` from the named members set in ``value``."""
    result = target(0)
    if value is None:
        return result
    for name in flag_names(value):
        if name in target.__members__:
            result |= target[name]
        else:
            LOGGER.debug("No %s flag for %s", target.__name__, name)
    return result


def flag_names(value) -> Tuple[str, ...]:
    if value is None:
        return ()
    bits = int(value)
    return tuple(m.name for m in type(value) if int(m) and bits & int(m) == int(m))


def _library_category(category: DeviceCategory):
    for lib_category in DC_ALL:
        if lib_category.code == category.code:
            return lib_category
    raise ValueError(f"lifesospy has no device category '{category.code}'")


def _device_property(name: str, value: Any) -> Any:
    if name == "enable_status":
        return translate_flags(ESFlags, value)
    if name == "characteristics":
        return flag_names(value)
    return value


def _baseunit_property(name: str, value: Any) -> Any:
    if name == "state":
        return translate_enum(BaseUnitState, value)
    return value


def device_from_library(lib_device) -> Optional[Device]:
    category = DeviceCategory.from_code(lib_device.category.code)
    if category is None:
        return None
    return Device(
        device_id=lib_device.device_id,
        category=category,
        device_type=translate_enum(DeviceType, lib_device.type),
        zone=lib_device.zone or "",
        characteristics=flag_names(lib_device.characteristics),
        is_closed=bool(lib_device.is_closed),
        rssi_db=lib_device.rssi_db or 0,
        enable_status=translate_flags(ESFlags, lib_device.enable_status),
        group_number=lib_device.group_number,
        unit_number=lib_device.unit_number,
    )


class LifeSOSClient:
    def __init__(self, host: Optional[str], port: int, password: Optional[str] = None) -> None:
        self.listener: Optional[PanelListener] = None
        self._host = host
        self._port = port
        self._password = password or ""
        self._devices: Dict[int, Device] = {}
        self._library_devices: Dict[int, Any] = {}
        self._client = None
        self._started = False

        self._baseunit = BaseUnit(host, port)
        if password:
            self._baseunit.password = password
        self._baseunit.on_device_added = self._baseunit_device_added
        self._baseunit.on_device_deleted = self._baseunit_device_deleted
        self._baseunit.on_event = self._baseunit_event
        self._baseunit.on_properties_changed = self._baseunit_properties_changed

    @property
    def devices(self) -> Dict[int, Device]:
        return self._devices

    @property
    def is_connected(self) -> bool:
        return bool(self._baseunit.is_connected)

    # Lifecycle -----------------------------------------------------------
    async def start(self) -> None:
        # BaseUnit connects in the background and keeps reconnecting; the
        # connection shows up as an is_connected property change
        self._baseunit.start()
        self._started = True

    async def stop(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        if self._started:
            self._started = False
            await self._baseunit.async_close()

    # Commands ------------------------------------------------------------
    async def set_operation_mode(self, mode: OperationMode) -> None:
        await self._baseunit.async_set_operation_mode(translate_enum(LibOperationMode, mode), self._password)

    async def clear_status(self, password: str) -> None:
        await self._baseunit.async_clear_status(password)

    async def change_device_enabled_flags(self, device_id: int, group_number: int, unit_number: int,
                                          enable_status: ESFlags) -> None:
        lib_device = self._library_devices.get(device_id)
        if lib_device is None:
            raise KeyError(f"Unknown device {device_id:06x}")
        await self._baseunit.async_change_device(
            device_id, group_number, unit_number, translate_flags(LibESFlags, enable_status), lib_device.switches
        )

    async def get_device_by_index(self, category: DeviceCategory, index: int) -> Optional[Device]:
        client = await self._command_client()
        response = await client.async_execute(
            GetDeviceByIndexCommand(_library_category(category), index), self._password
        )
        if response is None or isinstance(response, DeviceNotFoundResponse):
            return None
        return Device(
            device_id=response.device_id,
            category=category,
            device_type=translate_enum(DeviceType, response.device_type),
            zone=response.zone or "",
        )

    async def _command_client(self):
        if self._client is None:
            client = Client(self._host, self._port)
            await client.async_open()
            self._client = client
        return self._client

    # lifesospy callbacks ---------------------------------------------------
    def _baseunit_device_added(self, baseunit, lib_device) -> None:
        device = device_from_library(lib_device)
        if device is None:
            LOGGER.warning("Ignoring device %06x of unsupported category %s",
                           lib_device.device_id, lib_device.category.description)
            return
        self._devices[device.device_id] = device
        self._library_devices[device.device_id] = lib_device
        lib_device.on_event = self._device_event
        lib_device.on_properties_changed = self._device_properties_changed
        if self.listener is not None:
            self.listener.on_device_added(device)

    def _baseunit_device_deleted(self, baseunit, lib_device) -> None:
        device = self._devices.pop(lib_device.device_id, None)
        self._library_devices.pop(lib_device.device_id, None)
        lib_device.on_event = None
        lib_device.on_properties_changed = None
        if device is not None and self.listener is not None:
            self.listener.on_device_deleted(device)

    def _baseunit_event(self, baseunit, contact_id) -> None:
        if self.listener is None:
            return
        self.listener.on_event(ContactId(
            event_qualifier=translate_enum(ContactIDEventQualifier, contact_id.event_qualifier),
            event_category=translate_enum(ContactIDEventCategory, contact_id.event_category),
            event_code=int(contact_id.event_code or 0),
            group_partition=int(contact_id.group_partition or 0),
            zone_user=int(contact_id.zone_user or 0),
        ))

    def _baseunit_properties_changed(self, baseunit, changes: Iterable[Any]) -> None:
        if self.listener is None:
            return
        for change in changes:
            self.listener.on_properties_changed(PropertyChangedInfo(
                change.name,
                _baseunit_property(change.name, change.old_value),
                _baseunit_property(change.name, change.new_value),
            ))

    def _device_event(self, lib_device, event_code) -> None:
        device = self._devices.get(lib_device.device_id)
        code = translate_enum(DeviceEventCode, event_code)
        if device is None or code is None or self.listener is None:
            return
        self.listener.on_device_event(device, code)

    def _device_properties_changed(self, lib_device, changes: Iterable[Any]) -> None:
        device = self._devices.get(lib_device.device_id)
        if device is None:
            return
        for change in changes:
            new_value = _device_property(change.name, change.new_value)
            if change.name in Device.__dataclass_fields__:
                setattr(device, change.name, new_value)
            if self.listener is not None:
                self.listener.on_device_properties_changed(device, PropertyChangedInfo(
                    change.name, _device_property(change.name, change.old_value), new_value,
                ))


def create_client(host: Optional[str], port: int, password: Optional[str] = None) -> LifeSOSClient:
    return LifeSOSClient(host, port, password)


__all__ = ["LifeSOSClient", "create_client", "device_from_library", "translate_enum", "translate_flags"]
