"""JSON messages exchanged with the provisioning page."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Literal

from pydantic import BaseModel

from .models import DiscoveredNetwork


@dataclass(frozen=True, slots=True)
class ScanRequest:
    pass


@dataclass(frozen=True, slots=True)
class CredentialSubmission:
    ssid: str
    password: str


InboundCommand = ScanRequest | CredentialSubmission


def parse_inbound(text: str | bytes) -> list[InboundCommand]:
    """Decode a browser message into the commands it carries.

    ``{"scan": "start"}`` requests discovery and ``{"ssid": .., "password": ..}``
    submits credentials; one message may carry both. Unparsable payloads and
    incomplete fields yield no commands.
    """

    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        logging.getLogger(__name__).debug("Ignoring unparsable message")
        return []
    if not isinstance(payload, dict):
        return []
    commands: list[InboundCommand] = []
    if payload.get("scan") == "start":
        commands.append(ScanRequest())
    ssid = payload.get("ssid")
    password = payload.get("password")
    if isinstance(ssid, str) and ssid and isinstance(password, str):
        commands.append(CredentialSubmission(ssid=ssid, password=password))
    elif "ssid" in payload or "password" in payload:
        logging.getLogger(__name__).debug("Ignoring incomplete credential submission")
    return commands


class NetworkEntry(BaseModel):
    ssid: str
    rssi: int
    encrypted: bool


class WiFiListMessage(BaseModel):
    wifi_list: list[NetworkEntry]


class StatusMessage(BaseModel):
    status: Literal["connected", "failed"]
    ssid: str
    ip: str | None = None


def encode_wifi_list(networks: Iterable[DiscoveredNetwork]) -> str:
    message = WiFiListMessage(
        wifi_list=[NetworkEntry(**network.to_dict()) for network in networks]
    )
    return message.model_dump_json()


def encode_status(status: Literal["connected", "failed"], ssid: str, ip: str | None = None) -> str:
    message = StatusMessage(status=status, ssid=ssid, ip=ip if status == "connected" else None)
    return message.model_dump_json(exclude_none=True)


__all__ = [
    "CredentialSubmission",
    "InboundCommand",
    "ScanRequest",
    "StatusMessage",
    "WiFiListMessage",
    "encode_status",
    "encode_wifi_list",
    "parse_inbound",
]
