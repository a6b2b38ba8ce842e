"""Radio driver interface consumed by the connectivity manager."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Sequence

from .models import DiscoveredNetwork, DriverEvent, OperatingMode, RadioRole


class WiFiError(RuntimeError):
    """Raised when a radio command fails."""


DriverListener = Callable[[DriverEvent], None]


class RadioDriver:
    """Abstract interface for the radio hardware.

    Commands may block and are always called from a worker thread. Outcomes of
    ``connect`` are reported asynchronously through :meth:`emit`; listeners may
    be invoked from any thread. A ``disconnect`` requested by the caller tears
    the link down silently, without a ``LINK_DISCONNECTED`` notification.
    """

    def __init__(self) -> None:
        self._listeners: list[DriverListener] = []
        self._listeners_lock = threading.Lock()

    # ---------------------------- subscriptions ----------------------------
    def subscribe(self, listener: DriverListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: DriverListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, event: DriverEvent) -> None:
        """Deliver ``event`` to every subscriber."""

        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # pragma: no cover - defensive logging
                logging.getLogger(__name__).debug(
                    "Driver listener failed for %s", event.kind.value, exc_info=True
                )

    # ------------------------------- commands ------------------------------
    def start(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def set_mode(self, mode: OperatingMode) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def connect(self, ssid: str, passphrase: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def disconnect(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def configure_hotspot(
        self, ssid: str, passphrase: str, channel: int, max_peers: int
    ) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def set_static_address(
        self, role: RadioRole, address: str, gateway: str, netmask: str
    ) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def scan(self) -> Sequence[DiscoveredNetwork]:  # pragma: no cover - interface only
        raise NotImplementedError

    def close(self) -> None:
        """Release driver resources."""


__all__ = ["DriverListener", "RadioDriver", "WiFiError"]
