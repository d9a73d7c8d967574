from __future__ import annotations

import copy

import pytest

from config import ConfigError, format_device_id, load_config, parse_config
from conftest import RAW_CONFIG

YAML = """
lifesos:
  host: 10.0.0.5
  port: 1680
mqtt:
  uri: mqtts://user:pw@broker.local
adapter:
  baseunit:
    topic: lifesos/
  devices:
    - id: "0x1A2B3"
      topic: lifesos/door
      name: Door
"""


def test_load_yaml_with_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(YAML, encoding="utf-8")

    cfg = load_config(str(path))

    assert cfg.lifesos.host == "10.0.0.5"
    assert cfg.lifesos.password is None
    assert cfg.lifesos.client == "lifesos_client:create_client"
    assert cfg.mqtt.client_id == "lifesos_mqtt"
    assert cfg.adapter.discovery_prefix == "homeassistant"
    assert cfg.adapter.birth_topic == "homeassistant/status"
    assert cfg.adapter.birth_payload == "online"
    assert cfg.adapter.baseunit.topic == "lifesos"
    assert cfg.adapter.devices[0].id == "01a2b3"
    assert cfg.adapter.find_device(0x01A2B3).name == "Door"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="No configuration file found"):
        load_config(str(tmp_path / "missing.yaml"))


def test_format_device_id():
    assert format_device_id(0xC0DE) == "00c0de"


def test_config_is_immutable(config):
    with pytest.raises(Exception):
        config.adapter.birth_payload = "x"


@pytest.mark.parametrize("mutate, message", [
    (lambda raw: raw.pop("mqtt"), "'mqtt'"),
    (lambda raw: raw["lifesos"].pop("port"), "lifesos.port"),
    (lambda raw: raw["adapter"]["baseunit"].pop("topic"), "adapter.baseunit.topic"),
    (lambda raw: raw["adapter"]["devices"][0].update(id="xyz"), "not a hexadecimal"),
    (lambda raw: raw["adapter"]["devices"][1].update(id="123456"), "more than once"),
    (lambda raw: raw["adapter"]["devices"][0].update(topic="home/+/door"), "wildcards"),
])
def test_invalid_configs(mutate, message):
    raw = copy.deepcopy(RAW_CONFIG)
    mutate(raw)

    with pytest.raises(ConfigError, match=message):
        parse_config(raw)
