#!/usr/bin/env python3
"""LifeSOS panel vocabulary and the capability interface of the panel client.

The wire protocol (framing, command encoding, the TCP connection to the base
unit) lives in a separate client library. The bridge only talks to it through
:class:`PanelClient` and receives every notification through a single
:class:`PanelListener`: base unit level and device level events alike.

A concrete client is selected in the config with ``lifesos.client`` as
``module:callable``; the callable receives ``host``, ``port`` and ``password``
keyword arguments and returns an object implementing :class:`PanelClient`.
The default is :func:`lifesos_client.create_client`, built on lifesospy.

Member names below follow lifesospy. The client adapter translates between
the two by name, so the numbers on the wire always come from the library.
"""
from __future__ import annotations

import importlib
from dataclasses import dataclass
from enum import Enum, IntEnum, IntFlag
from typing import Any, List, Mapping, Optional, Protocol, Tuple

from config import ConfigError, LifeSOSConfig, format_device_id


class DeviceCategory(Enum):
    """Device categories that can be enrolled on the base unit."""

    Controller = ("c", "Remote Controller", 32)
    Burglar = ("b", "Burglar Sensor", 64)
    Fire = ("f", "Fire Sensor", 16)
    Medical = ("m", "Medical Button", 16)

    def __init__(self, code: str, description: str, max_devices: int) -> None:
        self.code = code
        self.description = description
        self.max_devices = max_devices

    @classmethod
    def from_code(cls, code: str) -> Optional["DeviceCategory"]:
        for category in cls:
            if category.code == code:
                return category
        return None


class DeviceType(IntEnum):
    RemoteController = 0x01
    KeyPad = 0x02
    PanicButton = 0x03
    DoorMagnet = 0x10
    PIRSensor = 0x11
    VibrationSensor = 0x12
    GlassBreakDetector = 0x13
    SmokeDetector = 0x20
    GasDetector = 0x21
    FloodDetector = 0x22
    MedicalButton = 0x30


class DeviceEventCode(IntEnum):
    Trigger = 0x0A
    Tamper = 0x0B
    Panic = 0x0C
    Away = 0x10
    Home = 0x11
    Disarm = 0x12
    BatteryLow = 0x20
    PowerOnReset = 0x21
    Inactivity = 0x22


class OperationMode(IntEnum):
    """Modes that may be requested from the base unit."""

    Disarm = 0x0
    Home = 0x1
    Away = 0x2
    Monitor = 0x8


class BaseUnitState(IntEnum):
    """Modes reported by the base unit, including the transitional ones."""

    Disarm = 0x0
    Home = 0x1
    Away = 0x2
    Monitor = 0x8
    AwayExitDelay = 0x9
    AwayEntryDelay = 0xA


class ESFlags(IntFlag):
    """Enabled status flags of an enrolled device."""

    Bypass = 0x0001
    Delay = 0x0002
    Hour24 = 0x0004
    HomeGuard = 0x0008
    WarningBeepDelay = 0x0010
    AlarmSiren = 0x0020
    Bell = 0x0040
    Latchkey = 0x0080
    Inactivity = 0x0100
    HomeAuto = 0x0200
    PreWarning = 0x0400
    Supervisory = 0x0800


class ContactIDEventQualifier(IntEnum):
    Event = 1
    Restore = 3
    Repeat = 6


class ContactIDEventCategory(IntEnum):
    Alarm = 1
    Supervisory = 2
    Trouble = 3
    OpenClose = 4
    Bypass = 5
    TestMisc = 6


@dataclass(frozen=True)
class ContactId:
    """A Contact ID report raised by the base unit."""

    event_qualifier: ContactIDEventQualifier
    event_category: ContactIDEventCategory
    event_code: int = 0
    group_partition: int = 0
    zone_user: int = 0


@dataclass(frozen=True)
class PropertyChangedInfo:
    name: str
    old_value: Any
    new_value: Any


@dataclass
class Device:
    """An enrolled device, owned and kept up to date by the panel client."""

    device_id: int
    category: DeviceCategory
    device_type: Optional[DeviceType]
    zone: str = ""
    characteristics: Tuple[str, ...] = ()
    is_closed: bool = False
    rssi_db: int = 0
    enable_status: ESFlags = ESFlags(0)
    group_number: int = 0
    unit_number: int = 0

    @property
    def hex_id(self) -> str:
        return format_device_id(self.device_id)

    @property
    def type_name(self) -> str:
        return self.device_type.name if self.device_type is not None else "Unknown"


class PanelListener(Protocol):
    """Receives every notification raised by a :class:`PanelClient`."""

    def on_device_added(self, device: Device) -> None: ...

    def on_device_deleted(self, device: Device) -> None: ...

    def on_event(self, contact_id: ContactId) -> None: ...

    def on_properties_changed(self, change: PropertyChangedInfo) -> None: ...

    def on_device_event(self, device: Device, event_code: DeviceEventCode) -> None: ...

    def on_device_properties_changed(self, device: Device, change: PropertyChangedInfo) -> None: ...


class PanelClient(Protocol):
    """Capability interface of the LifeSOS base unit client."""

    listener: Optional[PanelListener]

    @property
    def devices(self) -> Mapping[int, Device]: ...

    @property
    def is_connected(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def set_operation_mode(self, mode: OperationMode) -> None: ...

    async def clear_status(self, password: str) -> None: ...

    async def change_device_enabled_flags(
        self, device_id: int, group_number: int, unit_number: int, enable_status: ESFlags
    ) -> None: ...

    async def get_device_by_index(self, category: DeviceCategory, index: int) -> Optional[Device]:
        """Ask the base unit for the device in a category slot; None when the slot is empty."""


def load_panel_client(config: LifeSOSConfig) -> PanelClient:
    """Build the panel client named by ``lifesos.client``."""
    if not config.client or ":" not in config.client:
        raise ConfigError("'lifesos.client' must name the panel client factory as 'module:callable'")
    module_name, _, attr = config.client.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import panel client module '{module_name}': {exc}") from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"'{config.client}' is not a callable panel client factory")
    return factory(host=config.host, port=config.port, password=config.password)


async def enumerate_devices(panel: PanelClient) -> List[Device]:
    """Walk every category slot by slot, up to its capacity.

    A category ends at the first empty slot, the base unit keeps them packed.
    """
    devices: List[Device] = []
    for category in DeviceCategory:
        for index in range(category.max_devices):
            device = await panel.get_device_by_index(category, index)
            if device is None:
                break
            devices.append(device)
    return devices


__all__ = [
    "BaseUnitState",
    "ContactId",
    "ContactIDEventCategory",
    "ContactIDEventQualifier",
    "Device",
    "DeviceCategory",
    "DeviceEventCode",
    "DeviceType",
    "ESFlags",
    "OperationMode",
    "PanelClient",
    "PanelListener",
    "PropertyChangedInfo",
    "enumerate_devices",
    "load_panel_client",
]
