"""Configuration for the provisioning service."""
from __future__ import annotations

import ipaddress
import json
import math
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

ENV_PREFIX = "PROVISION_"

DEFAULT_HOTSPOT_SSID = "WiFi-Provision"
DEFAULT_HOTSPOT_PASSWORD = "12345678"


def _ipv4(value: object, field_name: str) -> str:
    try:
        return str(ipaddress.IPv4Address(str(value).strip()))
    except (ipaddress.AddressValueError, ValueError) as exc:
        raise ValueError(f"{field_name} must be a valid IPv4 address") from exc


def _integer(value: object, field_name: str, minimum: int, maximum: int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer")
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be an integer") from exc
    if not minimum <= number <= maximum:
        raise ValueError(f"{field_name} must be between {minimum} and {maximum}")
    return number


def _seconds(value: object, field_name: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be a number of seconds") from exc
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"{field_name} must be a non-negative number of seconds")
    return number


@dataclass(frozen=True, slots=True)
class ProvisioningConfig:
    """Tunable settings for the hotspot, retry policy and HTTP surface."""

    hotspot_ssid: str = DEFAULT_HOTSPOT_SSID
    hotspot_password: str = DEFAULT_HOTSPOT_PASSWORD
    hotspot_channel: int = 1
    hotspot_max_peers: int = 4
    hotspot_address: str = "192.168.100.1"
    hotspot_netmask: str = "255.255.255.0"
    max_retries: int = 1
    grace_delay: float = 2.0
    connect_timeout: float | None = None
    interface: str | None = None
    hostname: str = "wifi-provision"
    http_port: int = 80

    def __post_init__(self) -> None:
        ssid = str(self.hotspot_ssid).strip()
        if not ssid or len(ssid.encode("utf-8")) > 32:
            raise ValueError("hotspot_ssid must be 1-32 bytes")
        password = str(self.hotspot_password or "")
        if password and not 8 <= len(password) <= 63:
            raise ValueError("hotspot_password must be empty or 8-63 characters")
        object.__setattr__(self, "hotspot_ssid", ssid)
        object.__setattr__(self, "hotspot_password", password)
        object.__setattr__(
            self, "hotspot_channel", _integer(self.hotspot_channel, "hotspot_channel", 1, 14)
        )
        object.__setattr__(
            self,
            "hotspot_max_peers",
            _integer(self.hotspot_max_peers, "hotspot_max_peers", 1, 10),
        )
        object.__setattr__(
            self, "hotspot_address", _ipv4(self.hotspot_address, "hotspot_address")
        )
        netmask = _ipv4(self.hotspot_netmask, "hotspot_netmask")
        try:
            ipaddress.IPv4Network(f"0.0.0.0/{netmask}")
        except ValueError as exc:
            raise ValueError("hotspot_netmask must be a contiguous netmask") from exc
        object.__setattr__(self, "hotspot_netmask", netmask)
        object.__setattr__(
            self, "max_retries", _integer(self.max_retries, "max_retries", 0, 100)
        )
        object.__setattr__(self, "grace_delay", _seconds(self.grace_delay, "grace_delay"))
        if self.connect_timeout is not None:
            timeout = _seconds(self.connect_timeout, "connect_timeout")
            object.__setattr__(self, "connect_timeout", timeout if timeout > 0 else None)
        interface = self.interface.strip() if isinstance(self.interface, str) else ""
        object.__setattr__(self, "interface", interface or None)
        hostname = str(self.hostname).strip()
        if not hostname:
            raise ValueError("hostname must be a non-empty string")
        object.__setattr__(self, "hostname", hostname)
        object.__setattr__(self, "http_port", _integer(self.http_port, "http_port", 1, 65535))

    @property
    def hotspot_gateway(self) -> str:
        return self.hotspot_address

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["hotspot_password"] = "********" if self.hotspot_password else ""
        return payload


DEFAULT_CONFIG = ProvisioningConfig()

_FIELD_NAMES = tuple(field.name for field in fields(ProvisioningConfig))


def _from_mapping(payload: Mapping[str, Any], base: ProvisioningConfig) -> ProvisioningConfig:
    updates = {key: value for key, value in payload.items() if key in _FIELD_NAMES}
    if not updates:
        return base
    return replace(base, **updates)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in _FIELD_NAMES:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        value: Any = raw.strip()
        if name in {"connect_timeout", "interface"} and value == "":
            value = None
        overrides[name] = value
    return overrides


def load_config(
    path: Path | str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> ProvisioningConfig:
    """Load configuration from ``path`` and ``PROVISION_*`` environment variables.

    A missing file yields the defaults; an unreadable or invalid one raises
    :class:`ValueError`.
    """

    config = DEFAULT_CONFIG
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            try:
                payload = json.loads(config_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                raise ValueError(f"Unable to read configuration {config_path}: {exc}") from exc
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
            config = _from_mapping(payload, config)
    overrides = _env_overrides(os.environ if environ is None else environ)
    if overrides:
        config = _from_mapping(overrides, config)
    return config


__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_HOTSPOT_PASSWORD",
    "DEFAULT_HOTSPOT_SSID",
    "ENV_PREFIX",
    "ProvisioningConfig",
    "load_config",
]
