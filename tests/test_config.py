from __future__ import annotations

import json
from pathlib import Path

import pytest

from supplybridge.config import BridgeSettings, LabelSet, load_settings, parse_labels
from supplybridge.errors import ConfigError


def test_defaults() -> None:
    settings = load_settings()
    assert settings == BridgeSettings()
    assert settings.port == "/dev/ttyACM0"
    assert settings.baudrate == 115200
    assert settings.delay == 5.0
    assert settings.initial_delay == 2.0
    assert settings.labels.render() == ""


def test_parse_labels_keeps_order_and_splits_once() -> None:
    labels = parse_labels(["foo=bar", "baz=qux", "expr=a=b"])
    assert labels.pairs == (("foo", "bar"), ("baz", "qux"), ("expr", "a=b"))
    assert labels.render() == '{foo="bar",baz="qux",expr="a=b"}'


@pytest.mark.parametrize("item", ["novalue", "=value"])
def test_parse_labels_rejects_bad_items(item: str) -> None:
    with pytest.raises(ConfigError):
        parse_labels([item])


def test_empty_label_set_is_falsy() -> None:
    assert not LabelSet()
    assert parse_labels(["a=1"])


def test_load_settings_file_and_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "bridge.json"
    cfg_path.write_text(
        json.dumps(
            {
                "port": "/dev/ttyUSB1",
                "url": "https://vm.example/api/v1/import/prometheus",
                "labels": {"host": "bench", "psu": "ch1"},
            }
        ),
        encoding="utf-8",
    )
    settings = load_settings(
        cfg_path,
        overrides=["min_idle=0.2", "baudrate=9600", "verbose=true"],
        base={"port": "/dev/ttyACM0", "delay": 10.0},
    )
    assert settings.port == "/dev/ttyUSB1"
    assert settings.delay == 10.0
    assert settings.min_idle == 0.2
    assert settings.baudrate == 9600
    assert settings.verbose is True
    assert settings.labels.render() == '{host="bench",psu="ch1"}'


def test_label_override_as_json_list() -> None:
    settings = load_settings(overrides=['labels=["a=1","b=2"]'])
    assert settings.labels.pairs == (("a", "1"), ("b", "2"))


@pytest.mark.parametrize(
    "override",
    ["delay=0", "min_idle=-1", "baudrate=0", "url=ftp://x", "unknown=1", "noequals"],
)
def test_invalid_settings_rejected(override: str) -> None:
    with pytest.raises(ConfigError):
        load_settings(overrides=[override])


def test_non_numeric_value_rejected() -> None:
    with pytest.raises(ConfigError):
        load_settings(overrides=["baudrate=fast"])


def test_malformed_config_file_rejected(tmp_path: Path) -> None:
    cfg_path = tmp_path / "bridge.json"
    cfg_path.write_text('{"port": "/dev/ttyUSB0",', encoding="utf-8")
    with pytest.raises(ConfigError, match="not valid JSON"):
        load_settings(cfg_path)


def test_missing_config_file_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "absent.json")


@pytest.mark.parametrize("override", ["labels=[bad", 'labels={"a": ', "url=http://[bad", "verbose=maybe"])
def test_malformed_override_values_rejected(override: str) -> None:
    with pytest.raises(ConfigError):
        load_settings(overrides=[override])


def test_override_values_follow_field_types() -> None:
    settings = load_settings(
        overrides=["port=1e3", "verbose=off", "http_timeout=2.5", "labels=psu=ch1"],
        base={"verbose": True},
    )
    assert settings.port == "1e3"
    assert settings.verbose is False
    assert settings.http_timeout == 2.5
    assert settings.labels.pairs == (("psu", "ch1"),)
