#!/usr/bin/env python3
"""List the devices enrolled on the LifeSOS base unit.

Asks the base unit for every slot of every device category, in order, and
logs each device with its id, category, zone and type. Use it to collect
device ids before adding them to `config.yaml`.

Usage:
  python lifesos_bridge.py list-devices [-c config.yaml]
"""
from __future__ import annotations

import logging

from config import Config
from panel import enumerate_devices, load_panel_client

LOGGER = logging.getLogger("list_devices")


async def run(cfg: Config) -> int:
    panel = load_panel_client(cfg.lifesos)
    try:
        LOGGER.info("Listing devices....")
        try:
            devices = await enumerate_devices(panel)
        except Exception as exc:
            LOGGER.error("Could not connect to the base unit: %s", exc)
            return 1

        for device in devices:
            configured = cfg.adapter.find_device(device.device_id) is not None
            LOGGER.info(
                'DeviceID "%s" for %s zone %s, a %s.%s',
                device.hex_id,
                device.category.description,
                device.zone,
                device.type_name,
                "" if configured else " (not in config)",
            )
        LOGGER.info("%d devices were found.", len(devices))
    finally:
        try:
            await panel.stop()
        except Exception as exc:
            LOGGER.error("Error stopping base unit: %s", exc)
    return 0
