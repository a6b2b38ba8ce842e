"""mDNS advertisement of the device once it has joined a network."""
from __future__ import annotations

import ipaddress
import logging
import threading

from zeroconf import IPVersion, ServiceInfo, Zeroconf

from .models import LinkStatus, LinkStatusKind

logger = logging.getLogger(__name__)


class MDNSAdvertiser:
    """Advertise ``<hostname>.local`` and an HTTP service via zeroconf.

    Methods block on network I/O and must not be called from the event loop
    thread; the application dispatches them to a worker thread.
    """

    def __init__(
        self,
        hostname: str = "wifi-provision",
        *,
        service_type: str = "_http._tcp.local.",
        port: int = 80,
        zeroconf_factory=None,
    ) -> None:
        self._hostname = hostname
        self._service_type = service_type
        self._port = port
        self._zeroconf_factory = zeroconf_factory or (lambda: Zeroconf(ip_version=IPVersion.V4Only))
        self._zeroconf: Zeroconf | None = None
        self._info: ServiceInfo | None = None
        self._current_ip: str | None = None
        self._lock = threading.Lock()

    @property
    def current_ip(self) -> str | None:
        return self._current_ip

    def update(self, status: LinkStatus) -> None:
        """Follow the client link: advertise on connect, withdraw otherwise."""

        if status.kind is LinkStatusKind.CONNECTED:
            self.advertise(status.address)
        else:
            self.clear()

    def advertise(self, ip_address: str | None) -> None:
        if ip_address is None:
            self.clear()
            return
        try:
            parsed = ipaddress.IPv4Address(ip_address)
        except ValueError:
            logger.warning("Ignoring invalid IP address for mDNS: %s", ip_address)
            return
        with self._lock:
            if ip_address == self._current_ip:
                return
            self._unregister_locked()
            if self._zeroconf is None:
                try:
                    self._zeroconf = self._zeroconf_factory()
                except OSError as exc:  # pragma: no cover - environment specific
                    logger.warning("Unable to start mDNS announcer: %s", exc)
                    return
            info = ServiceInfo(
                type_=self._service_type,
                name=f"{self._hostname}.{self._service_type}",
                addresses=[parsed.packed],
                port=self._port,
                server=f"{self._hostname}.local.",
                properties={"path": "/"},
            )
            try:
                self._zeroconf.register_service(info, allow_name_change=True)
            except Exception as exc:  # pragma: no cover - zeroconf runtime issues
                logger.warning("Failed to register mDNS service: %s", exc)
                return
            self._info = info
            self._current_ip = ip_address
            logger.info("Advertising %s.local at %s", self._hostname, ip_address)

    def clear(self) -> None:
        with self._lock:
            self._unregister_locked()

    def close(self) -> None:
        with self._lock:
            self._unregister_locked()
            if self._zeroconf is not None:
                try:
                    self._zeroconf.close()
                finally:
                    self._zeroconf = None

    def _unregister_locked(self) -> None:
        if self._info is not None and self._zeroconf is not None:
            try:
                self._zeroconf.unregister_service(self._info)
            except Exception as exc:  # pragma: no cover - best effort cleanup
                logger.debug("Ignoring mDNS unregister failure: %s", exc)
        self._info = None
        self._current_ip = None


__all__ = ["MDNSAdvertiser"]
