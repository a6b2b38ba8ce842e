import json
from pathlib import Path

import pytest

pytest.importorskip("httpx")

from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from wifi_provision.app import create_app
from wifi_provision.credentials import CredentialStore
from wifi_provision.driver import RadioDriver, WiFiError
from wifi_provision.models import (
    DiscoveredNetwork,
    DriverEvent,
    LinkStatus,
    LinkStatusKind,
    OperatingMode,
    RadioRole,
)
from wifi_provision.transport import CLOSE_TRY_AGAIN_LATER


class FakeRadioDriver(RadioDriver):
    def __init__(self) -> None:
        super().__init__()
        self.addresses = {"Home": "192.168.1.50"}
        self.networks = [
            DiscoveredNetwork("Home", -48, True),
            DiscoveredNetwork("Guest", -71, False),
        ]
        self.connect_calls: list[tuple[str, str]] = []
        self.hotspot_error: WiFiError | None = None
        self.closed = False

    def start(self) -> None:
        self.emit(DriverEvent.role_started(RadioRole.CLIENT))

    def set_mode(self, mode: OperatingMode) -> None:
        pass

    def connect(self, ssid: str, passphrase: str) -> None:
        self.connect_calls.append((ssid, passphrase))
        address = self.addresses.get(ssid)
        if address is not None:
            self.emit(DriverEvent.link_connected())
            self.emit(DriverEvent.address_acquired(address))
        else:
            self.emit(DriverEvent.link_disconnected())

    def disconnect(self) -> None:
        pass

    def configure_hotspot(self, ssid: str, passphrase: str, channel: int, max_peers: int) -> None:
        if self.hotspot_error is not None:
            raise self.hotspot_error

    def set_static_address(self, role: RadioRole, address: str, gateway: str, netmask: str) -> None:
        pass

    def scan(self) -> list[DiscoveredNetwork]:
        return list(self.networks)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "provision.json"
    path.write_text(json.dumps({"grace_delay": 0.05}), encoding="utf-8")
    return path


def test_index_serves_setup_page(config_path: Path) -> None:
    app = create_app(config_path, driver=FakeRadioDriver(), enable_mdns=False)

    with TestClient(app) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert "/ws" in response.text


def test_status_reports_client_mode_after_startup(config_path: Path) -> None:
    driver = FakeRadioDriver()
    app = create_app(config_path, driver=driver, enable_mdns=False)

    with TestClient(app) as client:
        payload = client.get("/api/wifi/status").json()
        entries = client.get("/api/wifi/log").json()["entries"]

    assert payload["mode"] == "client"
    assert payload["link"] == "idle"
    assert payload["hotspot_active"] is False
    assert entries[-1]["event"] == "startup"
    assert driver.closed is True


def test_saved_network_is_joined_on_startup(config_path: Path, tmp_path: Path) -> None:
    driver = FakeRadioDriver()
    store = CredentialStore(tmp_path / "wifi_credentials.json")
    store.save("Home", "pw1234")
    app = create_app(config_path, driver=driver, credential_store=store, enable_mdns=False)

    with TestClient(app) as client:
        client.get("/api/wifi/status")

    assert driver.connect_calls == [("Home", "pw1234")]


def test_websocket_refused_without_session(config_path: Path) -> None:
    app = create_app(config_path, driver=FakeRadioDriver(), enable_mdns=False)

    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/ws"):
                pass

    assert excinfo.value.code == CLOSE_TRY_AGAIN_LATER


def test_browser_provisioning_flow(config_path: Path) -> None:
    driver = FakeRadioDriver()
    statuses: list[LinkStatus] = []
    app = create_app(
        config_path, driver=driver, enable_mdns=False, status_callback=statuses.append
    )

    with TestClient(app) as client:
        started = client.post("/api/provisioning/start").json()
        again = client.post("/api/provisioning/start").json()
        assert client.get("/api/wifi/status").json()["hotspot_active"] is True

        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"scan": "start"})
            assert websocket.receive_json() == {
                "wifi_list": [
                    {"ssid": "Home", "rssi": -48, "encrypted": True},
                    {"ssid": "Guest", "rssi": -71, "encrypted": False},
                ]
            }
            websocket.send_json({"ssid": "Home", "password": "pw1234"})
            assert websocket.receive_json() == {
                "status": "connected",
                "ssid": "Home",
                "ip": "192.168.1.50",
            }
            with pytest.raises(WebSocketDisconnect):
                websocket.receive_json()

        session = client.get("/api/provisioning").json()

    assert started == {"started": True, "active": True, "phase": "awaiting_input", "ssid": None}
    assert again["started"] is False
    assert session == {"active": False, "phase": None, "ssid": None}
    assert driver.connect_calls == [("Home", "pw1234")]
    assert statuses == [LinkStatus(LinkStatusKind.CONNECTED, "192.168.1.50")]


def test_failed_join_reports_failure_to_browser(config_path: Path) -> None:
    config_path.write_text(json.dumps({"grace_delay": 0.05, "max_retries": 0}), encoding="utf-8")
    driver = FakeRadioDriver()
    app = create_app(config_path, driver=driver, enable_mdns=False)

    with TestClient(app) as client:
        client.post("/api/provisioning/start")
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"ssid": "Guest", "password": "wrong"})
            assert websocket.receive_json() == {"status": "failed", "ssid": "Guest"}
        session = client.get("/api/provisioning").json()

    assert session["active"] is True
    assert session["ssid"] == "Guest"
    assert driver.connect_calls == [("Guest", "wrong")]


def test_start_reports_hotspot_failure(config_path: Path) -> None:
    driver = FakeRadioDriver()
    driver.hotspot_error = WiFiError("no AP support")
    app = create_app(config_path, driver=driver, enable_mdns=False)

    with TestClient(app) as client:
        response = client.post("/api/provisioning/start")
        session = client.get("/api/provisioning").json()

    assert response.status_code == 503
    assert "no AP support" in response.json()["detail"]
    assert session["active"] is False


def test_cancel_provisioning(config_path: Path) -> None:
    app = create_app(config_path, driver=FakeRadioDriver(), enable_mdns=False)

    with TestClient(app) as client:
        client.post("/api/provisioning/start")
        first = client.delete("/api/provisioning").json()
        second = client.delete("/api/provisioning").json()
        status = client.get("/api/wifi/status").json()

    assert first == {"cancelled": True}
    assert second == {"cancelled": False}
    assert status["mode"] == "client"


def test_saved_networks_can_be_listed_and_forgotten(config_path: Path, tmp_path: Path) -> None:
    store = CredentialStore(tmp_path / "wifi_credentials.json")
    store.save("Office", "secret99")
    store.save("Home", "pw1234")
    app = create_app(config_path, driver=FakeRadioDriver(), credential_store=store, enable_mdns=False)

    with TestClient(app) as client:
        listed = client.get("/api/wifi/networks").json()
        forgotten = client.delete("/api/wifi/networks/Home")
        missing = client.delete("/api/wifi/networks/Home")
        after = client.get("/api/wifi/networks").json()
        entries = client.get("/api/wifi/log", params={"event": "network_forgotten"}).json()["entries"]

    assert listed == {"networks": ["Home", "Office"], "last": "Home"}
    assert forgotten.json() == {"forgotten": "Home"}
    assert missing.status_code == 404
    assert after == {"networks": ["Office"], "last": None}
    assert [entry["metadata"]["ssid"] for entry in entries] == ["Home"]
    assert store.last_network() is None


def test_log_can_be_filtered_by_category(config_path: Path) -> None:
    app = create_app(config_path, driver=FakeRadioDriver(), enable_mdns=False)

    with TestClient(app) as client:
        system = client.get("/api/wifi/log", params={"category": "system"}).json()["entries"]
        network = client.get("/api/wifi/log", params={"category": "network"}).json()["entries"]
        invalid = client.get("/api/wifi/log", params={"category": "bogus"})

    assert [entry["event"] for entry in system] == ["startup"]
    assert network and all(entry["category"] == "network" for entry in network)
    assert invalid.status_code == 422
