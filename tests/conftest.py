from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from auto_reset import AutoResetScheduler
from config import Config, parse_config
from lifesos_bridge import LifeSOSBridge
from panel import Device, DeviceCategory, DeviceType, ESFlags, OperationMode

RAW_CONFIG: Dict[str, Any] = {
    "lifesos": {"host": "192.168.1.100", "port": 1680, "password": "1234", "client": "fake:client"},
    "mqtt": {"uri": "mqtt://localhost:1883", "client_id": "lifesos_test"},
    "adapter": {
        "discovery_prefix": "homeassistant",
        "birth_topic": "homeassistant/status",
        "birth_payload": "online",
        "baseunit": {"topic": "home/alarm", "name": "Base unit", "manufacturer": "LifeSOS", "model": "LS-30"},
        "devices": [
            {"id": "123456", "topic": "home/alarm/door", "name": "Front door", "manufacturer": "LifeSOS"},
            {"id": "abcdef", "topic": "home/alarm/motion", "name": "Hallway"},
            {"id": "c0de", "topic": "home/alarm/remote", "name": "Keyfob"},
            {"id": "0f00f0", "topic": "home/alarm/smoke", "name": "Kitchen smoke"},
        ],
    },
}

DOOR_ID = 0x123456
MOTION_ID = 0xABCDEF
REMOTE_ID = 0x00C0DE
SMOKE_ID = 0x0F00F0
UNCONFIGURED_ID = 0x777777


class FakeTimer:
    def __init__(self, when: float, callback: Callable, args: tuple) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Just enough of an event loop for call_later based timers."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[FakeTimer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable, *args) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = target

    @property
    def active(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class FakeBroker:
    def __init__(self, connected: bool = True) -> None:
        self.listener = None
        self.is_connected = connected
        self.auto_connect = True
        self.published: List[Tuple[str, str, int, bool]] = []
        self.subscribed: Dict[str, int] = {}
        self.unsubscribed: List[str] = []
        self.connects = 0
        self.disconnects = 0

    def connect(self) -> None:
        self.connects += 1
        if self.auto_connect:
            self.is_connected = True
            asyncio.get_running_loop().call_soon(self.listener.on_broker_connect)

    def disconnect(self) -> None:
        self.disconnects += 1
        self.is_connected = False

    def subscribe(self, topic: str, qos: int = 1) -> None:
        self.subscribed[topic] = qos

    def unsubscribe(self, topic: str) -> None:
        self.subscribed.pop(topic, None)
        self.unsubscribed.append(topic)

    def publish(self, topic: str, payload: str, qos: int = 1, retain: bool = False) -> bool:
        self.published.append((topic, payload, qos, retain))
        return True

    def payloads(self, topic: str) -> List[str]:
        return [p[1] for p in self.published if p[0] == topic]

    def topics(self) -> List[str]:
        return [p[0] for p in self.published]

    def clear(self) -> None:
        self.published.clear()


class FakePanel:
    def __init__(self) -> None:
        self.listener = None
        self.devices: Dict[int, Device] = {}
        self.is_connected = False
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        # What the base unit answers slot by slot, independent of the reported cache
        self.enrolled: Dict[int, Device] = {}
        self.index_requests: List[Tuple[str, int]] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    async def start(self) -> None:
        self._record("start")
        self.is_connected = True

    async def stop(self) -> None:
        self._record("stop")
        self.is_connected = False

    async def set_operation_mode(self, mode: OperationMode) -> None:
        self._record("set_operation_mode", mode)

    async def clear_status(self, password: str) -> None:
        self._record("clear_status", password)

    async def change_device_enabled_flags(self, device_id, group_number, unit_number, enable_status) -> None:
        self._record("change_device_enabled_flags", device_id, group_number, unit_number, enable_status)
        device = self.devices.get(device_id)
        if device is not None:
            device.enable_status = enable_status

    async def get_device_by_index(self, category: DeviceCategory, index: int) -> Optional[Device]:
        self.index_requests.append((category.code, index))
        if "get_device_by_index" in self.failures:
            raise self.failures["get_device_by_index"]
        slots = sorted((d for d in self.enrolled.values() if d.category is category), key=lambda d: d.device_id)
        return slots[index] if index < len(slots) else None

    def add(self, device: Device) -> Device:
        self.devices[device.device_id] = device
        if self.listener is not None:
            self.listener.on_device_added(device)
        return device

    def delete(self, device: Device) -> None:
        self.devices.pop(device.device_id, None)
        if self.listener is not None:
            self.listener.on_device_deleted(device)


@pytest.fixture
def config() -> Config:
    return parse_config(RAW_CONFIG)


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def panel() -> FakePanel:
    return FakePanel()


@pytest.fixture
def bridge(config, panel, broker, fake_loop) -> LifeSOSBridge:
    return LifeSOSBridge(config, panel, broker, auto_reset=AutoResetScheduler(loop=fake_loop))


@pytest.fixture
def make_device() -> Callable[..., Device]:
    defaults = {
        DOOR_ID: (DeviceCategory.Burglar, DeviceType.DoorMagnet, "01-01"),
        MOTION_ID: (DeviceCategory.Burglar, DeviceType.PIRSensor, "01-02"),
        REMOTE_ID: (DeviceCategory.Controller, DeviceType.RemoteController, "00-01"),
        SMOKE_ID: (DeviceCategory.Fire, DeviceType.SmokeDetector, "02-01"),
        UNCONFIGURED_ID: (DeviceCategory.Burglar, DeviceType.DoorMagnet, "01-09"),
    }

    def _make(device_id: int = DOOR_ID, *, enable_status: ESFlags = ESFlags(0),
              category: Optional[DeviceCategory] = None, device_type: Optional[DeviceType] = None,
              **kwargs) -> Device:
        default_category, default_type, zone = defaults[device_id]
        return Device(
            device_id=device_id,
            category=category or default_category,
            device_type=device_type or default_type,
            zone=kwargs.pop("zone", zone),
            enable_status=enable_status,
            **kwargs,
        )

    return _make


async def drain() -> None:
    for _ in range(3):
        await asyncio.sleep(0)
