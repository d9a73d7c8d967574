#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""LifeSOS security panel <-> MQTT bridge.

Features:
* Base unit mode mirrored as a Home Assistant alarm panel state
  (disarmed / armed_home / armed_away / pending / triggered)
* Arm / disarm and clear-status commands forwarded to the base unit
* Per-device state, RSSI, battery and enabled-status topics
* Enabled-status switches toggled from MQTT
* Trigger-only sensors held "On" for a fixed window, then reset to "Off"
* Home Assistant discovery republished on broker (re)connect, on panel
  connect and whenever Home Assistant announces its birth message
* Availability through a retained connectivity topic and a last will

Panel calls and publishes are fire-and-forget: failures are logged, never
retried and never reported back over MQTT.
"""

from __future__ import annotations
import argparse
import asyncio
import functools
import json
import logging
import signal
import sys
from typing import Any, Awaitable, Dict, NamedTuple, Optional, Set

import topics
from auto_reset import AutoResetScheduler
from config import DEFAULT_CONFIGFILE, Config, ConfigError, DeviceConfig, load_config
from discovery import DiscoveryBuilder, DiscoveryMessage, enabled_statuses
from list_devices import run as list_devices
from mqtt_broker import MqttBroker, Will
from panel import (
    BaseUnitState,
    ContactId,
    ContactIDEventCategory,
    ContactIDEventQualifier,
    Device,
    DeviceEventCode,
    DeviceType,
    ESFlags,
    OperationMode,
    PanelClient,
    PropertyChangedInfo,
    load_panel_client,
)
from subscriptions import Subscription, SubscriptionTable

NAME = "lifesos_mqtt"
VERSION = "2.0.0"
DESCRIPTION = "MQTT client to report state of LifeSOS security system and devices."

LOGGER = logging.getLogger("lifesos_bridge")

HA_STATES: Dict[BaseUnitState, str] = {
    BaseUnitState.Disarm: "disarmed",
    BaseUnitState.Monitor: "disarmed",
    BaseUnitState.Home: "armed_home",
    BaseUnitState.Away: "armed_away",
    BaseUnitState.AwayExitDelay: "pending",
    BaseUnitState.AwayEntryDelay: "pending",
}
HA_TRIGGERED = "triggered"
HA_DISARMED = "disarmed"

QOS = 1


class EnabledStatusArgs(NamedTuple):
    device_id: int
    flag: ESFlags


def _bool_text(value: Any) -> str:
    return "true" if value else "false"


def _callback(func):
    """Panel and broker callbacks must never raise back into the collaborator."""
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception:
            LOGGER.exception("Unhandled error in %s", func.__name__)
    return wrapper


class LifeSOSBridge:
    def __init__(self, config: Config, panel: PanelClient, broker,
                 auto_reset: Optional[AutoResetScheduler] = None) -> None:
        self.config = config
        self.panel = panel
        self.broker = broker
        self.discovery = DiscoveryBuilder(config)
        self.auto_reset = auto_reset if auto_reset is not None else AutoResetScheduler()
        self.baseunit = config.adapter.baseunit

        # Control topics are fixed; device topics come and go with devices
        self.subscriptions = SubscriptionTable()
        self.device_subscriptions = SubscriptionTable()

        # Soft state, only used for the redundant-disarm reset
        self.ha_state: Optional[str] = None
        self.state: Optional[int] = None

        self._attached: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._first_connect: Optional[asyncio.Future] = None

        self.subscriptions.add(topics.clear_status_topic(self.baseunit), self._on_clear_status_message)
        self.subscriptions.add(topics.operation_mode_set_topic(self.baseunit), self._on_operation_mode_message)
        self.subscriptions.add(config.adapter.birth_topic, self._on_birth_message)

        panel.listener = self
        broker.listener = self

    # Lifecycle -------------------------------------------------------------
    async def start(self) -> None:
        """Connect to the broker, then start the panel once the broker is up.

        Broker connection problems are retried by the broker client; a panel
        start failure is raised to the caller.
        """
        self._first_connect = asyncio.get_running_loop().create_future()
        for subscription in self.subscriptions:
            self.broker.subscribe(subscription.topic, subscription.qos)
        self.broker.connect()
        await self._first_connect
        LOGGER.info("Starting base unit connection")
        await self.panel.start()
        LOGGER.info("Base unit started")

    async def stop(self) -> None:
        self.auto_reset.cancel_all()
        try:
            await self.panel.stop()
        except Exception as exc:
            LOGGER.error("Error stopping base unit: %s", exc)
        else:
            LOGGER.info("Base unit stopped")

        if self.broker.is_connected:
            self._publish(topics.is_connected_topic(self.baseunit), _bool_text(False), retain=True)
        try:
            self.broker.disconnect()
        except Exception as exc:
            LOGGER.error("Error ending MQTT client: %s", exc)
        else:
            LOGGER.info("MQTT client stopped")

    # Publishing ------------------------------------------------------------
    def _publish(self, topic: str, payload: str, retain: bool) -> bool:
        if not self.broker.is_connected:
            LOGGER.error("Publish called but there is no MQTT connection: %s %s", topic, payload)
            return False
        return self.broker.publish(topic, payload, qos=QOS, retain=retain)

    def _publish_json(self, topic: str, payload: Any, retain: bool) -> bool:
        return self._publish(topic, json.dumps(payload, separators=(",", ":")), retain)

    def _publish_discovery(self, message: DiscoveryMessage) -> None:
        self._publish_json(message.topic, message.payload, retain=False)

    def _set_ha_state(self, ha_state: str) -> None:
        self.ha_state = ha_state
        self._publish(topics.ha_state_topic(self.baseunit), ha_state, retain=True)

    def publish_discovery_messages(self) -> None:
        for message in self.discovery.all_messages(self.panel.devices):
            self._publish_discovery(message)

    # Panel tasks -----------------------------------------------------------
    def _spawn(self, call: Awaitable[Any], description: str) -> None:
        task = asyncio.ensure_future(self._run_panel_task(call, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_panel_task(self, call: Awaitable[Any], description: str) -> None:
        try:
            await call
        except Exception as exc:
            LOGGER.error("Error %s: %s", description, exc)
            return
        LOGGER.info("Task: %s executed successfully", description)

    # Broker listener -------------------------------------------------------
    @_callback
    def on_broker_connect(self) -> None:
        LOGGER.info("MQTT client connected to broker")
        if self._first_connect is not None and not self._first_connect.done():
            self._first_connect.set_result(None)
        # Announce availability on every (re)connect
        self._publish(topics.is_connected_topic(self.baseunit), _bool_text(self.panel.is_connected), retain=True)
        if self.panel.is_connected:
            self.publish_discovery_messages()

    @_callback
    def on_broker_disconnect(self, reason: str) -> None:
        LOGGER.info("MQTT client disconnected from broker (%s), reconnecting....", reason)

    @_callback
    def on_broker_message(self, topic: str, payload: bytes) -> None:
        try:
            message = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
        except UnicodeDecodeError:
            LOGGER.warning("Ignoring non UTF-8 message on %s", topic)
            return
        LOGGER.debug("MQTT client got message %s %s", topic, message)
        # A topic may be registered in both tables; both handlers run
        self.subscriptions.dispatch(topic, message)
        self.device_subscriptions.dispatch(topic, message)

    # Inbound commands ------------------------------------------------------
    def _on_operation_mode_message(self, subscription: Subscription, message: str) -> None:
        try:
            mode = OperationMode[message]
        except KeyError:
            LOGGER.warning("Cannot set operation_mode to '%s'", message)
            return

        # Setting Disarm while already disarmed produces no state change from
        # the base unit, so an alarm raised in Disarm mode (panic, tamper)
        # would leave Home Assistant stuck in 'triggered'.
        if mode is OperationMode.Disarm and self.ha_state == HA_TRIGGERED and self.state == BaseUnitState.Disarm:
            LOGGER.debug("Resetting triggered ha_state in disarmed mode")
            self._set_ha_state(HA_DISARMED)

        LOGGER.debug("Set operation mode to '%s' (%s)", message, int(mode))
        self._spawn(self.panel.set_operation_mode(mode), f"SetOperationMode -> '{message}' ({int(mode)})")

    def _on_clear_status_message(self, subscription: Subscription, message: str) -> None:
        self._spawn(self.panel.clear_status(message), "ClearStatus")

    def _on_birth_message(self, subscription: Subscription, message: str) -> None:
        if message == self.config.adapter.birth_payload:
            LOGGER.info("Home Assistant came online, publishing discovery")
            self.publish_discovery_messages()

    def _on_enabled_status_message(self, subscription: Subscription, message: str) -> None:
        """Toggle one enabled-status flag of a device.

        The payload only has to be ``true`` or ``false``; its value does not pick
        the direction. The flag is always flipped against the device's current
        ``enable_status``.
        """
        if message.strip().lower() not in ("true", "false"):
            LOGGER.warning("Ignoring enabled status command '%s' on %s", message, subscription.topic)
            return
        args: EnabledStatusArgs = subscription.args
        device = self.panel.devices.get(args.device_id)
        if device is None:
            LOGGER.warning("Enabled status command for unknown device %06x", args.device_id)
            return
        new_status = ESFlags(int(device.enable_status) ^ int(args.flag))
        self._spawn(
            self.panel.change_device_enabled_flags(
                device.device_id, device.group_number, device.unit_number, new_status
            ),
            f"ChangeDevice {device.hex_id} {args.flag.name}",
        )

    # Panel listener: base unit ---------------------------------------------
    @_callback
    def on_event(self, contact_id: ContactId) -> None:
        if (contact_id.event_qualifier == ContactIDEventQualifier.Event
                and contact_id.event_category == ContactIDEventCategory.Alarm):
            self._set_ha_state(HA_TRIGGERED)

    @_callback
    def on_properties_changed(self, change: PropertyChangedInfo) -> None:
        LOGGER.debug("Base unit prop change: %s - %s -> %s", change.name, change.old_value, change.new_value)
        self._publish_baseunit_property(change.name, change.new_value)
        if change.name == "is_connected" and change.new_value:
            self.publish_discovery_messages()

    def _publish_baseunit_property(self, name: str, value: Any) -> None:
        if name == "state":
            self.state = value
            ha_state = HA_STATES.get(value)
            if ha_state is not None:
                self._set_ha_state(ha_state)
        elif name == "is_connected":
            self._publish(topics.is_connected_topic(self.baseunit), _bool_text(value), retain=True)

    # Panel listener: devices -----------------------------------------------
    def _device_config(self, device: Device) -> Optional[DeviceConfig]:
        return self.config.adapter.find_device(device.device_id)

    @_callback
    def on_device_added(self, device: Device) -> None:
        self._attached.add(device.device_id)

        config = self._device_config(device)
        if config is None:
            LOGGER.info(
                "Ignoring device as it was not listed in the config file: %s %s",
                device.hex_id, device.type_name,
            )
            return

        self._publish_device_property(config, device, "is_closed", device.is_closed)
        self._publish_device_property(config, device, "rssi_db", device.rssi_db)
        self._publish_device_property(config, device, "enable_status", device.enable_status)

        for flag in enabled_statuses(device.category):
            topic = topics.enabled_status_set_topic(config, flag)
            subscription = self.device_subscriptions.add(
                topic, self._on_enabled_status_message, EnabledStatusArgs(device.device_id, flag)
            )
            self.broker.subscribe(topic, subscription.qos)

        self._publish_json(topics.attributes_topic(config), {
            "ID": device.hex_id,
            "Category": device.category.description,
            "Characteristics": " | ".join(device.characteristics),
            "Type": device.type_name,
            "Zone": device.zone,
        }, retain=False)

        for message in self.discovery.device_messages(device, config):
            self._publish_discovery(message)

    @_callback
    def on_device_deleted(self, device: Device) -> None:
        self._attached.discard(device.device_id)
        if self.auto_reset.cancel(device.device_id):
            LOGGER.debug("Cancelled auto reset for deleted device %s", device.hex_id)
        for subscription in self.device_subscriptions:
            if subscription.args.device_id == device.device_id:
                self.device_subscriptions.remove(subscription.topic)
                self.broker.unsubscribe(subscription.topic)
        LOGGER.info("Device %s was deleted", device.hex_id)

    @_callback
    def on_device_event(self, device: Device, event_code: DeviceEventCode) -> None:
        if device.device_id not in self._attached:
            return
        config = self._device_config(device)
        if config is None:
            return

        if event_code in (DeviceEventCode.BatteryLow, DeviceEventCode.PowerOnReset):
            self._publish(topics.battery_topic(config), DeviceEventCode(event_code).name, retain=True)

        # Trigger events only say "it happened"; hold the state On for a
        # while and reset it automatically
        if event_code == DeviceEventCode.Trigger:
            topic = topics.device_topic(config)
            self._publish(topic, "On", retain=True)
            self.auto_reset.trigger(device.device_id, functools.partial(self._publish, topic, "Off", True))

    @_callback
    def on_device_properties_changed(self, device: Device, change: PropertyChangedInfo) -> None:
        if device.device_id not in self._attached:
            return
        config = self._device_config(device)
        if config is None:
            return
        LOGGER.debug("Device prop change: %s %s %s -> %s", device.hex_id, change.name,
                     change.old_value, change.new_value)
        self._publish_device_property(config, device, change.name, change.new_value)

    def _publish_device_property(self, config: DeviceConfig, device: Device, name: str, value: Any) -> None:
        if name == "is_closed":
            # Only magnet sensors report open/closed; the rest are trigger based
            if device.device_type == DeviceType.DoorMagnet:
                self._publish(topics.device_topic(config), "Closed" if value else "Open", retain=True)
            else:
                self._publish(topics.device_topic(config), "Off", retain=True)
        elif name == "rssi_db":
            self._publish(topics.rssi_topic(config), str(value), retain=True)
        elif name == "enable_status":
            for flag in enabled_statuses(device.category):
                self._publish(topics.enabled_status_topic(config, flag), _bool_text(int(value) & flag), retain=True)


def create_bridge(config: Config, panel: PanelClient) -> LifeSOSBridge:
    will = Will(topics.is_connected_topic(config.adapter.baseunit), _bool_text(False), qos=QOS, retain=True)
    broker = MqttBroker(config.mqtt, will=will)
    return LifeSOSBridge(config, panel, broker)


async def run(config: Config) -> int:
    panel = load_panel_client(config.lifesos)
    bridge = create_bridge(config, panel)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    start_task = asyncio.ensure_future(bridge.start())
    stop_task = asyncio.ensure_future(stop.wait())
    await asyncio.wait({start_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    if start_task.done() and start_task.exception() is not None:
        LOGGER.error("Could not connect to the base unit: %s", start_task.exception())
        stop_task.cancel()
        await bridge.stop()
        return 1

    await stop_task
    LOGGER.info("Shutting down....")
    start_task.cancel()
    await bridge.stop()
    return 0


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser(prog=NAME, description=DESCRIPTION)
    ap.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    sub = ap.add_subparsers(dest="command", required=True)
    for command, help_text in (("start", "start a client"), ("list-devices", "list devices enrolled on base unit")):
        p = sub.add_parser(command, help=help_text)
        p.add_argument("-v", "--verbose", action="store_true", help="display all logging output")
        p.add_argument("-c", "--configfile", default=DEFAULT_CONFIGFILE, help="configuration file name")
    args = ap.parse_args(argv)

    print(f"LifeSOS_MQTT {VERSION} - {DESCRIPTION}\n")
    configure_logging(args.verbose)
    try:
        cfg = load_config(args.configfile)
        if args.command == "list-devices":
            return asyncio.run(list_devices(cfg))
        return asyncio.run(run(cfg))
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        return 0


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
