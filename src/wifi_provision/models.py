"""Shared value types for the connectivity and provisioning layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

MAX_SSID_BYTES = 32
MAX_PASSPHRASE_BYTES = 64


def truncate_utf8(value: str, limit: int) -> str:
    """Return ``value`` cut to at most ``limit`` UTF-8 bytes.

    The cut never splits a multi-byte character.
    """

    encoded = value.encode("utf-8")
    if len(encoded) <= limit:
        return value
    return encoded[:limit].decode("utf-8", errors="ignore")


class OperatingMode(str, Enum):
    """Which radio roles are active."""

    CLIENT_ONLY = "client"
    HOTSPOT_ONLY = "hotspot"
    COMBINED = "combined"

    @property
    def has_client(self) -> bool:
        return self is not OperatingMode.HOTSPOT_ONLY

    @property
    def has_hotspot(self) -> bool:
        return self is not OperatingMode.CLIENT_ONLY

    def with_client(self) -> "OperatingMode":
        if self is OperatingMode.HOTSPOT_ONLY:
            return OperatingMode.COMBINED
        return self

    def with_hotspot(self) -> "OperatingMode":
        if self is OperatingMode.CLIENT_ONLY:
            return OperatingMode.COMBINED
        return self


class RadioRole(str, Enum):
    CLIENT = "client"
    HOTSPOT = "hotspot"


class LinkState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class DriverEventKind(str, Enum):
    ROLE_STARTED = "role_started"
    LINK_CONNECTED = "link_connected"
    LINK_DISCONNECTED = "link_disconnected"
    ADDRESS_ACQUIRED = "address_acquired"
    PEER_JOINED_HOTSPOT = "peer_joined_hotspot"


@dataclass(frozen=True, slots=True)
class DriverEvent:
    """A notification raised by the radio driver."""

    kind: DriverEventKind
    role: RadioRole = RadioRole.CLIENT
    address: str | None = None

    @classmethod
    def role_started(cls, role: RadioRole = RadioRole.CLIENT) -> "DriverEvent":
        return cls(DriverEventKind.ROLE_STARTED, role=role)

    @classmethod
    def link_connected(cls) -> "DriverEvent":
        return cls(DriverEventKind.LINK_CONNECTED)

    @classmethod
    def link_disconnected(cls) -> "DriverEvent":
        return cls(DriverEventKind.LINK_DISCONNECTED)

    @classmethod
    def address_acquired(cls, address: str) -> "DriverEvent":
        return cls(DriverEventKind.ADDRESS_ACQUIRED, address=address)

    @classmethod
    def peer_joined(cls) -> "DriverEvent":
        return cls(DriverEventKind.PEER_JOINED_HOTSPOT, role=RadioRole.HOTSPOT)


class LinkStatusKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECT_FAILED = "connect_failed"


@dataclass(frozen=True, slots=True)
class LinkStatus:
    """Outward notification describing a client link change."""

    kind: LinkStatusKind
    address: str | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {"kind": self.kind.value, "address": self.address}


class ScanOutcome(str, Enum):
    ACCEPTED = "accepted"
    BUSY = "busy"


@dataclass(slots=True)
class DiscoveredNetwork:
    """Represents a network found during a scan."""

    ssid: str
    rssi: int
    encrypted: bool

    def to_dict(self) -> dict[str, object]:
        return {"ssid": self.ssid, "rssi": self.rssi, "encrypted": self.encrypted}


@dataclass(slots=True)
class ConnectionAttempt:
    """Retry bookkeeping for the network the client role is joining."""

    ssid: str
    passphrase: str
    max_retries: int
    retry_count: int = 0
    exhausted: bool = False
    abandoned: bool = False

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries


class SessionPhase(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    CONNECTING = "connecting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class ProvisioningSession:
    """State of one interactive provisioning episode."""

    active: bool = True
    phase: SessionPhase = SessionPhase.AWAITING_INPUT
    pending_credentials: tuple[str, str] | None = None
    attempt_id: int = 0

    @property
    def ssid(self) -> str | None:
        if self.pending_credentials is None:
            return None
        return self.pending_credentials[0]

    def to_dict(self) -> dict[str, object | None]:
        return {
            "active": self.active,
            "phase": self.phase.value,
            "ssid": self.ssid,
        }


__all__ = [
    "ConnectionAttempt",
    "DiscoveredNetwork",
    "DriverEvent",
    "DriverEventKind",
    "LinkState",
    "LinkStatus",
    "LinkStatusKind",
    "MAX_PASSPHRASE_BYTES",
    "MAX_SSID_BYTES",
    "OperatingMode",
    "ProvisioningSession",
    "RadioRole",
    "ScanOutcome",
    "SessionPhase",
    "truncate_utf8",
]
