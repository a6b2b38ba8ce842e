"""Radio driver backed by NetworkManager's ``nmcli``."""

from __future__ import annotations

import ipaddress
import logging
import subprocess
import threading
import time
from typing import Sequence

from .driver import RadioDriver, WiFiError
from .models import DiscoveredNetwork, DriverEvent, OperatingMode, RadioRole

HOTSPOT_CONNECTION = "Provision Hotspot"


def _split_terse(line: str) -> list[str]:
    """Split an ``nmcli -t`` line on unescaped colons."""

    fields: list[str] = []
    current: list[str] = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def quality_to_rssi(quality: int) -> int:
    """Approximate dBm from NetworkManager's 0-100 signal quality."""

    bounded = max(0, min(100, quality))
    return bounded // 2 - 100


def _is_not_authorized(message: str) -> bool:
    lowered = message.lower()
    return "not authorized" in lowered or "not authorised" in lowered


class NMCLIDriver(RadioDriver):
    """Drive the Wi-Fi interface through nmcli commands.

    ``connect`` hands the blocking join to a worker thread which reports
    ``LINK_CONNECTED`` once NetworkManager accepts the network and then polls
    for an IPv4 lease, reporting ``ADDRESS_ACQUIRED`` or ``LINK_DISCONNECTED``.
    """

    def __init__(
        self,
        interface: str | None = None,
        *,
        timeout: float = 30.0,
        lease_timeout: float = 20.0,
        poll_interval: float = 1.0,
    ) -> None:
        super().__init__()
        self._preferred_interface = interface
        self._detected_interface: str | None = None
        self._timeout = timeout
        self._lease_timeout = max(0.0, lease_timeout)
        self._poll_interval = max(0.01, poll_interval)
        self._mode = OperatingMode.CLIENT_ONLY
        self._client_profile: str | None = None
        self._generation = 0
        self._generation_lock = threading.Lock()

    # ------------------------------- helpers -------------------------------
    def _run(self, args: Sequence[str]) -> str:
        try:
            completed = subprocess.run(
                list(args),
                check=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment specific
            raise WiFiError("nmcli command unavailable") from exc
        except subprocess.TimeoutExpired as exc:  # pragma: no cover - environment specific
            raise WiFiError("nmcli command timed out") from exc
        except subprocess.CalledProcessError as exc:
            error_output = exc.stderr.strip() or exc.stdout.strip() or str(exc)
            raise WiFiError(error_output)
        return completed.stdout

    def _get_interface(self) -> str:
        if self._preferred_interface:
            return self._preferred_interface
        if self._detected_interface:
            return self._detected_interface
        output = self._run(["nmcli", "-t", "-f", "DEVICE,TYPE,STATE", "device"])
        for line in output.splitlines():
            parts = _split_terse(line)
            if len(parts) < 3:
                continue
            device, dev_type, state = (part.strip() for part in parts[:3])
            if dev_type == "wifi" and state != "unavailable":
                self._detected_interface = device
                return device
        raise WiFiError("No Wi-Fi interface detected")

    def _next_generation(self) -> int:
        with self._generation_lock:
            self._generation += 1
            return self._generation

    def _is_current(self, generation: int) -> bool:
        with self._generation_lock:
            return generation == self._generation

    def _read_address(self, interface: str) -> str | None:
        output = self._run(["nmcli", "-t", "-f", "IP4.ADDRESS", "device", "show", interface])
        for line in output.splitlines():
            if ":" not in line:
                continue
            key, value = line.split(":", 1)
            if key.startswith("IP4.ADDRESS") and value.strip():
                return value.split("/")[0].strip()
        return None

    # ------------------------------- commands ------------------------------
    def start(self) -> None:
        interface = self._get_interface()
        logging.getLogger(__name__).info("Using Wi-Fi interface %s", interface)
        self.emit(DriverEvent.role_started(RadioRole.CLIENT))

    def set_mode(self, mode: OperatingMode) -> None:
        previous = self._mode
        self._mode = mode
        if previous.has_hotspot and not mode.has_hotspot:
            try:
                self._run(["nmcli", "connection", "down", HOTSPOT_CONNECTION])
            except WiFiError:
                # The hotspot may never have been brought up.
                pass

    def connect(self, ssid: str, passphrase: str) -> None:
        generation = self._next_generation()
        self._client_profile = ssid
        thread = threading.Thread(
            target=self._connect_worker,
            args=(generation, ssid, passphrase),
            name="wifi-connect",
            daemon=True,
        )
        thread.start()

    def _connect_worker(self, generation: int, ssid: str, passphrase: str) -> None:
        logger = logging.getLogger(__name__)
        try:
            interface = self._get_interface()
            args = ["nmcli", "device", "wifi", "connect", ssid]
            if passphrase:
                args.extend(["password", passphrase])
            args.extend(["ifname", interface])
            self._run(args)
        except WiFiError as exc:
            logger.info("Joining %s failed: %s", ssid, exc)
            if self._is_current(generation):
                self.emit(DriverEvent.link_disconnected())
            return
        if not self._is_current(generation):
            return
        self.emit(DriverEvent.link_connected())
        deadline = time.monotonic() + self._lease_timeout
        while True:
            try:
                address = self._read_address(interface)
            except WiFiError as exc:
                logger.debug("Unable to read address for %s: %s", interface, exc)
                address = None
            if not self._is_current(generation):
                return
            if address:
                self.emit(DriverEvent.address_acquired(address))
                return
            if time.monotonic() >= deadline:
                break
            time.sleep(self._poll_interval)
        logger.info("No address assigned on %s within %.0fs", ssid, self._lease_timeout)
        self.emit(DriverEvent.link_disconnected())

    def disconnect(self) -> None:
        self._next_generation()
        interface = self._get_interface()
        try:
            self._run(["nmcli", "device", "disconnect", interface])
        except WiFiError as exc:
            message = str(exc)
            if _is_not_authorized(message):
                raise WiFiError(
                    "Unable to disconnect from Wi-Fi: not authorized to control networking."
                ) from exc
            lowered = message.lower()
            if "is not active" in lowered or "already disconnected" in lowered or "not connected" in lowered:
                return
            raise

    def configure_hotspot(self, ssid: str, passphrase: str, channel: int, max_peers: int) -> None:
        interface = self._get_interface()
        try:
            self._run(["nmcli", "connection", "delete", HOTSPOT_CONNECTION])
        except WiFiError:
            # No previous profile to replace.
            pass
        args = [
            "nmcli",
            "connection",
            "add",
            "type",
            "wifi",
            "ifname",
            interface,
            "con-name",
            HOTSPOT_CONNECTION,
            "autoconnect",
            "no",
            "ssid",
            ssid,
            "802-11-wireless.mode",
            "ap",
            "802-11-wireless.band",
            "bg",
            "802-11-wireless.channel",
            str(channel),
            "ipv4.method",
            "shared",
        ]
        if passphrase:
            args.extend(["wifi-sec.key-mgmt", "wpa-psk", "wifi-sec.psk", passphrase])
        try:
            self._run(args)
            self._run(["nmcli", "connection", "up", HOTSPOT_CONNECTION])
        except WiFiError as exc:
            if _is_not_authorized(str(exc)):
                raise WiFiError(
                    "Unable to enable hotspot: not authorized to control networking."
                ) from exc
            raise WiFiError(f"Unable to configure hotspot: {exc}") from exc
        logging.getLogger(__name__).debug(
            "NetworkManager does not limit hotspot peers; ignoring max_peers=%d", max_peers
        )
        self.emit(DriverEvent.role_started(RadioRole.HOTSPOT))

    def set_static_address(
        self, role: RadioRole, address: str, gateway: str, netmask: str
    ) -> None:
        try:
            prefix = ipaddress.IPv4Network(f"0.0.0.0/{netmask}").prefixlen
        except ValueError as exc:
            raise WiFiError(f"Invalid netmask {netmask}") from exc
        if role is RadioRole.HOTSPOT:
            # A shared connection is its own gateway.
            self._run(
                [
                    "nmcli",
                    "connection",
                    "modify",
                    HOTSPOT_CONNECTION,
                    "ipv4.method",
                    "shared",
                    "ipv4.addresses",
                    f"{address}/{prefix}",
                ]
            )
            self._run(["nmcli", "connection", "up", HOTSPOT_CONNECTION])
            return
        if not self._client_profile:
            raise WiFiError("No client connection to assign an address to")
        self._run(
            [
                "nmcli",
                "connection",
                "modify",
                self._client_profile,
                "ipv4.method",
                "manual",
                "ipv4.addresses",
                f"{address}/{prefix}",
                "ipv4.gateway",
                gateway,
            ]
        )

    def scan(self) -> Sequence[DiscoveredNetwork]:
        interface = self._get_interface()
        try:
            self._run(["nmcli", "device", "wifi", "rescan", "ifname", interface])
        except WiFiError as exc:
            if _is_not_authorized(str(exc)):
                raise
            # Some drivers refuse to rescan while scanning or serving as an
            # access point; the cached list is still useful.
        output = self._run(
            ["nmcli", "-t", "-f", "SSID,SIGNAL,SECURITY", "device", "wifi", "list", "ifname", interface]
        )
        strongest: dict[str, DiscoveredNetwork] = {}
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = _split_terse(line)
            while len(parts) < 3:
                parts.append("")
            ssid, signal_raw, security_raw = parts[:3]
            if not ssid.strip():
                continue
            try:
                quality = int(float(signal_raw.strip()))
            except ValueError:
                quality = 0
            security = security_raw.strip()
            network = DiscoveredNetwork(
                ssid=ssid,
                rssi=quality_to_rssi(quality),
                encrypted=security not in {"", "--"},
            )
            existing = strongest.get(ssid)
            if existing is None or network.rssi > existing.rssi:
                strongest[ssid] = network
        return sorted(strongest.values(), key=lambda item: item.rssi, reverse=True)

    def close(self) -> None:
        self._next_generation()


__all__ = ["HOTSPOT_CONNECTION", "NMCLIDriver", "quality_to_rssi"]
