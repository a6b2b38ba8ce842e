"""FastAPI application wiring the radio, session orchestrator and browser."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse

from .config import load_config
from .connectivity import ConnectivityManager
from .credentials import CredentialStore
from .driver import RadioDriver, WiFiError
from .event_log import EventCategory, EventLog
from .mdns import MDNSAdvertiser
from .models import LinkStatus
from .nmcli import NMCLIDriver
from .provisioning import ProvisioningOrchestrator
from .transport import WebSocketHub
from .version import APP_VERSION

STATIC_DIR = Path(__file__).resolve().parent / "static"

StatusCallback = Callable[[LinkStatus], Awaitable[None] | None]


def _load_static(name: str) -> str:
    path = STATIC_DIR / name
    if not path.exists():  # pragma: no cover - sanity check
        raise FileNotFoundError(f"Static asset {name!r} missing")
    return path.read_text(encoding="utf-8")


def create_app(
    config_path: Path | str = Path("data/provision.json"),
    *,
    driver: RadioDriver | None = None,
    credential_store: CredentialStore | None = None,
    event_log: EventLog | None = None,
    mdns_advertiser: MDNSAdvertiser | None = None,
    enable_mdns: bool = True,
    status_callback: StatusCallback | None = None,
) -> FastAPI:
    app = FastAPI(title="wifi-provision", version=APP_VERSION)

    logger = logging.getLogger(__name__)

    config_path = Path(config_path)
    config = load_config(config_path)
    if event_log is None:
        event_log = EventLog(config_path.with_name("provision_log.jsonl"))
    if credential_store is None:
        credential_store = CredentialStore(config_path.with_name("wifi_credentials.json"))
    if driver is None:
        driver = NMCLIDriver(config.interface)
    advertiser = mdns_advertiser
    if advertiser is None and enable_mdns:
        advertiser = MDNSAdvertiser(config.hostname, port=config.http_port)

    connectivity = ConnectivityManager(driver, config, event_log=event_log)
    hub = WebSocketHub()
    orchestrator = ProvisioningOrchestrator(
        connectivity,
        hub,
        grace_delay=config.grace_delay,
        connect_timeout=config.connect_timeout,
        credential_store=credential_store,
        event_log=event_log,
    )

    app.state.config = config
    app.state.connectivity = connectivity
    app.state.orchestrator = orchestrator
    app.state.transport = hub
    app.state.event_log = event_log

    async def _on_link_status(status: LinkStatus) -> None:
        try:
            if advertiser is not None:
                await run_in_threadpool(advertiser.update, status)
            if status_callback is not None:
                result = status_callback(status)
                if asyncio.iscoroutine(result):
                    await result
        except Exception:  # pragma: no cover - defensive logging
            logger.exception("Link status handling failed for %s", status.kind.value)

    @app.on_event("startup")
    async def startup() -> None:
        event_log.record(EventCategory.SYSTEM, "startup", "Provisioning service starting up.")
        try:
            await connectivity.initialize(
                _on_link_status, network=credential_store.last_network()
            )
        except WiFiError as exc:
            logger.warning("Radio initialisation failed: %s", exc)
        await orchestrator.start()

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await orchestrator.aclose()
        await connectivity.aclose()
        if advertiser is not None:
            await run_in_threadpool(advertiser.close)
        await run_in_threadpool(driver.close)
        event_log.record(EventCategory.SYSTEM, "shutdown", "Provisioning service shut down.")

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return _load_static("provision.html")

    @app.websocket("/ws")
    async def provisioning_socket(websocket: WebSocket) -> None:
        await hub.serve(websocket)

    @app.get("/api/wifi/status")
    async def get_wifi_status() -> dict[str, object | None]:
        return connectivity.snapshot()

    @app.get("/api/wifi/log")
    async def get_wifi_log(
        limit: int = 50,
        category: EventCategory | None = None,
        event: str | None = None,
    ) -> dict[str, object]:
        entries = event_log.tail(limit, category=category, event=event)
        return {"entries": [entry.to_dict() for entry in reversed(entries)]}

    @app.get("/api/wifi/networks")
    async def list_saved_networks() -> dict[str, object | None]:
        last = credential_store.last_network()
        return {
            "networks": credential_store.list_networks(),
            "last": last[0] if last else None,
        }

    @app.delete("/api/wifi/networks/{ssid}")
    async def forget_saved_network(ssid: str) -> dict[str, object]:
        if not credential_store.forget(ssid):
            raise HTTPException(status_code=404, detail=f"Unknown network {ssid!r}")
        event_log.record(
            EventCategory.SYSTEM,
            "network_forgotten",
            f"Forgot saved network {ssid}.",
            metadata={"ssid": ssid},
        )
        return {"forgotten": ssid}

    @app.get("/api/provisioning")
    async def get_provisioning() -> dict[str, object | None]:
        return orchestrator.snapshot()

    @app.post("/api/provisioning/start")
    async def start_provisioning() -> dict[str, object | None]:
        try:
            started = await orchestrator.start_session()
        except WiFiError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"started": started, **orchestrator.snapshot()}

    @app.delete("/api/provisioning")
    async def cancel_provisioning() -> dict[str, object]:
        cancelled = await orchestrator.cancel_session()
        return {"cancelled": cancelled}

    return app


__all__ = ["create_app"]
