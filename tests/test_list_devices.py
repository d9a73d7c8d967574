from __future__ import annotations

import pytest

import list_devices
from conftest import DOOR_ID, REMOTE_ID, SMOKE_ID, UNCONFIGURED_ID
from panel import Device, DeviceCategory, DeviceType, enumerate_devices


@pytest.fixture
def listing_panel(panel, monkeypatch):
    monkeypatch.setattr(list_devices, "load_panel_client", lambda cfg: panel)
    return panel


@pytest.mark.asyncio
async def test_lists_devices_and_stops_panel(config, listing_panel, make_device, caplog):
    caplog.set_level("INFO")
    for device_id in (DOOR_ID, UNCONFIGURED_ID):
        listing_panel.enrolled[device_id] = make_device(device_id)

    assert await list_devices.run(config) == 0

    assert listing_panel.calls == [("stop",)]
    assert 'DeviceID "123456" for Burglar Sensor zone 01-01, a DoorMagnet.' in caplog.text
    assert "777777" in caplog.text and "(not in config)" in caplog.text
    assert "2 devices were found." in caplog.text


@pytest.mark.asyncio
async def test_devices_come_from_the_base_unit_not_the_cache(config, listing_panel, make_device, caplog):
    caplog.set_level("INFO")
    # Nothing reported yet, the slots are still answered
    assert listing_panel.devices == {}
    listing_panel.enrolled[SMOKE_ID] = make_device(SMOKE_ID)

    assert await list_devices.run(config) == 0

    assert "1 devices were found." in caplog.text


@pytest.mark.asyncio
async def test_returns_error_when_panel_unreachable(config, listing_panel):
    listing_panel.failures["get_device_by_index"] = ConnectionError("refused")

    assert await list_devices.run(config) == 1
    assert listing_panel.calls == [("stop",)]


@pytest.mark.asyncio
async def test_walk_stops_at_first_empty_slot_of_each_category(panel, make_device):
    panel.enrolled[DOOR_ID] = make_device(DOOR_ID)
    panel.enrolled[REMOTE_ID] = make_device(REMOTE_ID)

    devices = await enumerate_devices(panel)

    assert [d.device_id for d in devices] == [REMOTE_ID, DOOR_ID]
    assert panel.index_requests == [("c", 0), ("c", 1), ("b", 0), ("b", 1), ("f", 0), ("m", 0)]


@pytest.mark.asyncio
async def test_walk_never_asks_beyond_category_capacity(panel):
    for index in range(DeviceCategory.Fire.max_devices + 5):
        device_id = 0x100000 + index
        panel.enrolled[device_id] = Device(device_id, DeviceCategory.Fire, DeviceType.SmokeDetector)

    devices = await enumerate_devices(panel)

    assert len(devices) == DeviceCategory.Fire.max_devices
    fire_requests = [index for code, index in panel.index_requests if code == "f"]
    assert fire_requests == list(range(DeviceCategory.Fire.max_devices))
