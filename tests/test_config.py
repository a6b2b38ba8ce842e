import json
from pathlib import Path

import pytest

from wifi_provision.config import DEFAULT_CONFIG, ProvisioningConfig, load_config


def test_defaults() -> None:
    config = load_config(None, environ={})

    assert config == DEFAULT_CONFIG
    assert config.hotspot_ssid == "WiFi-Provision"
    assert config.hotspot_address == "192.168.100.1"
    assert config.hotspot_gateway == "192.168.100.1"
    assert config.max_retries == 1
    assert config.grace_delay == 2.0
    assert config.connect_timeout is None


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path / "missing.json", environ={}) == DEFAULT_CONFIG


def test_file_values_are_applied(tmp_path: Path) -> None:
    path = tmp_path / "provision.json"
    path.write_text(
        json.dumps({"hotspot_ssid": "Setup", "max_retries": 5, "unknown": True}),
        encoding="utf-8",
    )

    config = load_config(path, environ={})

    assert config.hotspot_ssid == "Setup"
    assert config.max_retries == 5
    assert config.hotspot_channel == 1


def test_environment_overrides_file(tmp_path: Path) -> None:
    path = tmp_path / "provision.json"
    path.write_text(json.dumps({"max_retries": 5, "connect_timeout": 10}), encoding="utf-8")

    config = load_config(
        path,
        environ={
            "PROVISION_MAX_RETRIES": "3",
            "PROVISION_GRACE_DELAY": "0.5",
            "PROVISION_CONNECT_TIMEOUT": "",
            "PROVISION_INTERFACE": "wlan1",
        },
    )

    assert config.max_retries == 3
    assert config.grace_delay == 0.5
    assert config.connect_timeout is None
    assert config.interface == "wlan1"


@pytest.mark.parametrize("contents", ["{broken", "[1, 2]"])
def test_invalid_file_raises(tmp_path: Path, contents: str) -> None:
    path = tmp_path / "provision.json"
    path.write_text(contents, encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(path, environ={})


@pytest.mark.parametrize(
    "overrides",
    [
        {"hotspot_password": "short"},
        {"hotspot_channel": 15},
        {"hotspot_address": "not-an-ip"},
        {"hotspot_netmask": "255.0.255.0"},
        {"max_retries": -1},
        {"grace_delay": -1},
        {"hotspot_ssid": "x" * 33},
    ],
)
def test_invalid_values_are_rejected(overrides: dict) -> None:
    with pytest.raises(ValueError):
        ProvisioningConfig(**overrides)


def test_open_hotspot_and_masked_password() -> None:
    assert ProvisioningConfig(hotspot_password="").hotspot_password == ""
    assert DEFAULT_CONFIG.to_dict()["hotspot_password"] == "********"
