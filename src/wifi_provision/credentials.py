"""Persistence for provisioned Wi-Fi credentials."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path


class CredentialStore:
    """Persist network credentials to disk for reuse across restarts."""

    def __init__(self, path: Path | str = Path("data/wifi_credentials.json")) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._networks: dict[str, str] = {}
        self._last_ssid: str | None = None
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logging.getLogger(__name__).warning("Unable to load Wi-Fi credentials: %s", exc)
            return
        if not isinstance(payload, dict):
            return
        networks = payload.get("networks")
        if isinstance(networks, dict):
            self._networks = {
                ssid: passphrase
                for ssid, passphrase in networks.items()
                if isinstance(ssid, str) and ssid and isinstance(passphrase, str)
            }
        last_ssid = payload.get("last_ssid")
        if isinstance(last_ssid, str) and last_ssid in self._networks:
            self._last_ssid = last_ssid

    def _save_locked(self) -> None:
        payload = {"last_ssid": self._last_ssid, "networks": dict(self._networks)}
        try:
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            logging.getLogger(__name__).warning("Unable to persist Wi-Fi credentials: %s", exc)

    def save(self, ssid: str, passphrase: str) -> None:
        """Remember ``ssid`` and make it the network joined at startup."""

        if not isinstance(ssid, str) or not ssid:
            raise ValueError("SSID must be a non-empty string")
        with self._lock:
            self._networks[ssid] = passphrase or ""
            self._last_ssid = ssid
            self._save_locked()

    def last_network(self) -> tuple[str, str] | None:
        """Return the most recently provisioned ``(ssid, passphrase)``."""

        with self._lock:
            if self._last_ssid is None:
                return None
            return self._last_ssid, self._networks[self._last_ssid]

    def list_networks(self) -> list[str]:
        with self._lock:
            return sorted(self._networks)

    def forget(self, ssid: str) -> bool:
        """Drop a saved network. Returns ``False`` if it was not saved."""

        with self._lock:
            if ssid not in self._networks:
                return False
            self._networks.pop(ssid)
            if self._last_ssid == ssid:
                self._last_ssid = None
            self._save_locked()
        return True


__all__ = ["CredentialStore"]
