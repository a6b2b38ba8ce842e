"""Connectivity state machine driving the radio's client and hotspot roles."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable

from .config import DEFAULT_CONFIG, ProvisioningConfig
from .driver import RadioDriver, WiFiError
from .event_log import EventCategory, EventLog
from .models import (
    MAX_PASSPHRASE_BYTES,
    MAX_SSID_BYTES,
    ConnectionAttempt,
    DriverEvent,
    DriverEventKind,
    LinkState,
    LinkStatus,
    LinkStatusKind,
    OperatingMode,
    RadioRole,
    ScanOutcome,
    truncate_utf8,
)
from .scanner import DiscoverySingleFlighter, ScanCallback

StatusListener = Callable[[LinkStatus], Awaitable[None] | None]

_ATTEMPT_EVENTS = frozenset(
    {
        DriverEventKind.LINK_CONNECTED,
        DriverEventKind.LINK_DISCONNECTED,
        DriverEventKind.ADDRESS_ACQUIRED,
    }
)


class ConnectivityManager:
    """Own the operating mode and client link of a single radio.

    Driver notifications are funnelled into one queue and handled by a single
    consumer task, so link state is only ever mutated from that task and from
    the command coroutines running on the same event loop.
    """

    def __init__(
        self,
        driver: RadioDriver,
        config: ProvisioningConfig | None = None,
        *,
        event_log: EventLog | None = None,
    ) -> None:
        self._driver = driver
        self._config = config or DEFAULT_CONFIG
        self._event_log = event_log
        self._mode = OperatingMode.CLIENT_ONLY
        self._link_state = LinkState.IDLE
        self._address: str | None = None
        self._attempt: ConnectionAttempt | None = None
        self._hotspot_configured = False
        self._listeners: list[StatusListener] = []
        self._listener_tasks: set[asyncio.Task[Any]] = set()
        self._scanner = DiscoverySingleFlighter(driver.scan)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._events: asyncio.Queue[tuple[int, DriverEvent]] | None = None
        self._epoch = 0
        self._consumer: asyncio.Task[None] | None = None
        self._mode_lock: asyncio.Lock | None = None
        self._initialized = False

    # ------------------------------ properties -----------------------------
    @property
    def mode(self) -> OperatingMode:
        return self._mode

    @property
    def link_state(self) -> LinkState:
        return self._link_state

    @property
    def retry_count(self) -> int:
        return self._attempt.retry_count if self._attempt is not None else 0

    @property
    def max_retries(self) -> int:
        return self._config.max_retries

    @property
    def hotspot_active(self) -> bool:
        return self._mode.has_hotspot and self._hotspot_configured

    @property
    def scanner(self) -> DiscoverySingleFlighter:
        return self._scanner

    def current_address(self) -> str | None:
        """Return the client address, or ``None`` unless the link is connected."""

        if self._link_state is LinkState.CONNECTED:
            return self._address
        return None

    def snapshot(self) -> dict[str, object | None]:
        attempt = self._attempt
        return {
            "mode": self._mode.value,
            "link": self._link_state.value,
            "address": self.current_address(),
            "ssid": attempt.ssid if attempt is not None else None,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "hotspot_active": self.hotspot_active,
            "scan_in_flight": self._scanner.in_flight,
        }

    # ------------------------------ listeners ------------------------------
    def add_listener(self, listener: StatusListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------ operations -----------------------------
    async def initialize(
        self,
        notification_sink: StatusListener | None = None,
        *,
        network: tuple[str, str] | None = None,
    ) -> None:
        """Start the client role and begin consuming driver notifications.

        ``network`` seeds the credentials joined automatically once the client
        role reports that it has started.
        """

        if self._initialized:
            raise RuntimeError("ConnectivityManager is already initialized")
        self._initialized = True
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._mode_lock = asyncio.Lock()
        if notification_sink is not None:
            self.add_listener(notification_sink)
        if network is not None:
            ssid, passphrase = self._clean_credentials(*network)
            self._attempt = ConnectionAttempt(ssid, passphrase, self.max_retries)
        self._driver.subscribe(self._on_driver_event)
        self._consumer = self._loop.create_task(self._consume())
        await self._call(self._driver.set_mode, OperatingMode.CLIENT_ONLY)
        self._mode = OperatingMode.CLIENT_ONLY
        self._record_log(
            "initialized",
            "Radio initialized in client mode.",
            metadata={"network": network[0] if network else None},
        )
        await self._call(self._driver.start)
        await self.drain()

    async def connect(self, ssid: str, passphrase: str | None) -> None:
        """Begin joining ``ssid``; the outcome is reported through listeners."""

        self._require_initialized()
        cleaned_ssid, cleaned_passphrase = self._clean_credentials(ssid, passphrase or "")
        attempt = ConnectionAttempt(cleaned_ssid, cleaned_passphrase, self.max_retries)
        self._attempt = attempt
        # Notifications raised before this point belong to the previous attempt.
        self._epoch += 1
        was_connected = self._link_state is LinkState.CONNECTED
        self._link_state = LinkState.CONNECTING
        self._address = None
        if not self._mode.has_client:
            await self._switch_mode(self._mode.with_client())
        await self._disconnect_quietly()
        if was_connected:
            self._notify(LinkStatus(LinkStatusKind.DISCONNECTED))
        self._record_log(
            "connect_attempt",
            f"Attempting to connect to {cleaned_ssid}.",
            metadata={
                "target": cleaned_ssid,
                "password_provided": bool(cleaned_passphrase),
                "max_retries": self.max_retries,
            },
        )
        await self._issue_connect(attempt)

    async def start_hotspot(self) -> None:
        """Enable the hotspot role alongside the client role."""

        self._require_initialized()
        assert self._mode_lock is not None
        async with self._mode_lock:
            if self._mode.has_hotspot and self._hotspot_configured:
                return
            config = self._config
            self._record_log(
                "hotspot_enable_attempt",
                f"Enabling hotspot {config.hotspot_ssid}.",
                metadata={
                    "target": config.hotspot_ssid,
                    "channel": config.hotspot_channel,
                    "address": config.hotspot_address,
                },
            )
            await self._switch_mode_locked(self._mode.with_hotspot())
            try:
                await self._call(
                    self._driver.configure_hotspot,
                    config.hotspot_ssid,
                    config.hotspot_password,
                    config.hotspot_channel,
                    config.hotspot_max_peers,
                )
                await self._call(
                    self._driver.set_static_address,
                    RadioRole.HOTSPOT,
                    config.hotspot_address,
                    config.hotspot_gateway,
                    config.hotspot_netmask,
                )
            except WiFiError as exc:
                self._hotspot_configured = False
                self._record_log(
                    "hotspot_enable_error",
                    f"Unable to enable hotspot {config.hotspot_ssid}: {exc}.",
                )
                raise
            self._hotspot_configured = True
            self._record_log("hotspot_enabled", f"Hotspot {config.hotspot_ssid} enabled.")

    async def stop_hotspot(self) -> None:
        """Return to client-only operation."""

        self._require_initialized()
        assert self._mode_lock is not None
        async with self._mode_lock:
            if self._mode is OperatingMode.CLIENT_ONLY and not self._hotspot_configured:
                return
            await self._switch_mode_locked(OperatingMode.CLIENT_ONLY)
            self._hotspot_configured = False
            self._record_log("hotspot_disabled", "Hotspot disabled.")

    async def abandon(self) -> None:
        """Give up on the current attempt and tear the client link down.

        Notifications still in flight for the attempt are discarded, and an
        address reported for it afterwards is refused rather than announced.
        """

        self._require_initialized()
        attempt = self._attempt
        self._epoch += 1
        if attempt is None or attempt.abandoned:
            return
        attempt.exhausted = True
        attempt.abandoned = True
        was_connected = self._link_state is LinkState.CONNECTED
        self._link_state = LinkState.IDLE
        self._address = None
        self._record_log(
            "connect_abandoned",
            f"Abandoned connection to {attempt.ssid}.",
            metadata={"target": attempt.ssid, "retry": attempt.retry_count},
        )
        await self._disconnect_quietly()
        if was_connected:
            self._notify(LinkStatus(LinkStatusKind.DISCONNECTED))

    def scan(self, callback: ScanCallback) -> ScanOutcome:
        return self._scanner.scan(callback)

    async def drain(self) -> None:
        """Wait until every queued driver notification has been handled."""

        if self._events is None:
            return
        await asyncio.sleep(0)
        await self._events.join()

    async def aclose(self) -> None:
        self._driver.unsubscribe(self._on_driver_event)
        consumer = self._consumer
        self._consumer = None
        if consumer is not None:
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
        await self._scanner.aclose()
        for task in list(self._listener_tasks):
            task.cancel()

    # ---------------------------- event handling ---------------------------
    def _on_driver_event(self, event: DriverEvent) -> None:
        loop = self._loop
        queue = self._events
        if loop is None or queue is None:
            return
        # Stamp on arrival: the driver raised it for the attempt current now.
        item = (self._epoch, event)
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            logging.getLogger(__name__).debug(
                "Dropping driver event %s; event loop closed", event.kind.value
            )

    async def _consume(self) -> None:
        assert self._events is not None
        queue = self._events
        while True:
            epoch, event = await queue.get()
            try:
                if epoch != self._epoch and event.kind in _ATTEMPT_EVENTS:
                    logging.getLogger(__name__).debug(
                        "Discarding %s raised for a superseded attempt", event.kind.value
                    )
                    continue
                await self._dispatch(event)
            except Exception:
                logging.getLogger(__name__).exception(
                    "Failed to handle driver event %s", event.kind.value
                )
            finally:
                queue.task_done()

    async def _dispatch(self, event: DriverEvent) -> None:
        kind = event.kind
        if kind is DriverEventKind.ROLE_STARTED:
            await self._handle_role_started(event.role)
        elif kind is DriverEventKind.LINK_CONNECTED:
            logging.getLogger(__name__).info("Client link established; awaiting address")
        elif kind is DriverEventKind.LINK_DISCONNECTED:
            await self._handle_link_disconnected()
        elif kind is DriverEventKind.ADDRESS_ACQUIRED:
            await self._handle_address_acquired(event.address)
        elif kind is DriverEventKind.PEER_JOINED_HOTSPOT:
            self._record_log("hotspot_peer_joined", "A client joined the hotspot.")

    async def _handle_role_started(self, role: RadioRole) -> None:
        if role is not RadioRole.CLIENT:
            logging.getLogger(__name__).info("Hotspot role started")
            return
        if not self._mode.has_client or self._link_state in (
            LinkState.CONNECTING,
            LinkState.CONNECTED,
        ):
            return
        attempt = self._attempt
        if attempt is None or attempt.exhausted:
            logging.getLogger(__name__).info("Client role started; no network configured")
            return
        self._link_state = LinkState.CONNECTING
        self._record_log(
            "auto_connect",
            f"Client role started; connecting to {attempt.ssid}.",
            metadata={"target": attempt.ssid},
        )
        await self._issue_connect(attempt)

    async def _handle_link_disconnected(self) -> None:
        if self._link_state is LinkState.CONNECTED:
            self._link_state = LinkState.IDLE
            self._address = None
            self._record_log("disconnected", "Client link lost.")
            self._notify(LinkStatus(LinkStatusKind.DISCONNECTED))
        attempt = self._attempt
        if attempt is None or attempt.exhausted or not self._mode.has_client:
            logging.getLogger(__name__).debug("Ignoring disconnect; no connection in progress")
            return
        if attempt.can_retry:
            attempt.retry_count += 1
            self._link_state = LinkState.CONNECTING
            self._record_log(
                "connect_retry",
                f"Retrying connection to {attempt.ssid} ({attempt.retry_count}/{attempt.max_retries}).",
                metadata={"target": attempt.ssid, "retry": attempt.retry_count},
            )
            await self._issue_connect(attempt)
            return
        attempt.exhausted = True
        self._link_state = LinkState.FAILED
        self._record_log(
            "connect_failed",
            f"Unable to connect to {attempt.ssid} after {attempt.retry_count} retries.",
            metadata={"target": attempt.ssid, "retry": attempt.retry_count},
        )
        self._notify(LinkStatus(LinkStatusKind.CONNECT_FAILED))

    async def _handle_address_acquired(self, address: str | None) -> None:
        if not address:
            logging.getLogger(__name__).warning("Address notification without an address")
            return
        if self._attempt is not None and self._attempt.abandoned:
            self._record_log(
                "late_address_refused",
                f"Address {address} arrived for an abandoned attempt; disconnecting.",
                metadata={"target": self._attempt.ssid, "address": address},
            )
            await self._disconnect_quietly()
            return
        self._link_state = LinkState.CONNECTED
        self._address = address
        attempt = self._attempt
        if attempt is not None:
            attempt.retry_count = 0
            attempt.exhausted = False
        self._record_log(
            "connected",
            f"Connected with address {address}.",
            metadata={"target": attempt.ssid if attempt else None, "address": address},
        )
        self._notify(LinkStatus(LinkStatusKind.CONNECTED, address))

    # ------------------------------- helpers -------------------------------
    async def _issue_connect(self, attempt: ConnectionAttempt) -> None:
        try:
            await self._call(self._driver.connect, attempt.ssid, attempt.passphrase)
        except WiFiError as exc:
            self._record_log(
                "connect_error",
                f"Connect command for {attempt.ssid} rejected: {exc}.",
                metadata={"target": attempt.ssid},
            )
            if self._events is not None:
                self._events.put_nowait((self._epoch, DriverEvent.link_disconnected()))

    async def _disconnect_quietly(self) -> None:
        try:
            await self._call(self._driver.disconnect)
        except WiFiError as exc:
            logging.getLogger(__name__).debug("Client disconnect failed: %s", exc)

    async def _switch_mode(self, mode: OperatingMode) -> None:
        assert self._mode_lock is not None
        async with self._mode_lock:
            await self._switch_mode_locked(mode)

    async def _switch_mode_locked(self, mode: OperatingMode) -> None:
        if mode is self._mode:
            return
        previous = self._mode
        await self._call(self._driver.set_mode, mode)
        self._mode = mode
        self._record_log(
            "mode_changed",
            f"Operating mode changed from {previous.value} to {mode.value}.",
        )

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = self._loop or asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _notify(self, status: LinkStatus) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(status)
            except Exception:
                logging.getLogger(__name__).debug("Link status listener failed", exc_info=True)
                continue
            if asyncio.iscoroutine(result) and self._loop is not None:
                task = self._loop.create_task(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_tasks.discard)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("ConnectivityManager.initialize() has not been called")

    @staticmethod
    def _clean_credentials(ssid: str, passphrase: str) -> tuple[str, str]:
        if not isinstance(ssid, str) or not ssid:
            raise WiFiError("SSID must be a non-empty string")
        cleaned_ssid = truncate_utf8(ssid, MAX_SSID_BYTES)
        cleaned_passphrase = truncate_utf8(passphrase, MAX_PASSPHRASE_BYTES)
        if cleaned_ssid != ssid or cleaned_passphrase != passphrase:
            logging.getLogger(__name__).warning(
                "Credentials for %s exceeded field limits and were truncated", cleaned_ssid
            )
        return cleaned_ssid, cleaned_passphrase

    def _record_log(
        self,
        event: str,
        message: str,
        *,
        metadata: dict[str, object | None] | None = None,
    ) -> None:
        """Store a troubleshooting entry and mirror it to the logger."""

        entry_metadata = None
        if metadata:
            entry_metadata = {key: value for key, value in metadata.items() if value is not None}
        if self._event_log is not None:
            self._event_log.record(EventCategory.NETWORK, event, message, metadata=entry_metadata)
        logger = logging.getLogger(__name__)
        if entry_metadata:
            logger.info("Wi-Fi event %s: %s | metadata=%s", event, message, entry_metadata)
        else:
            logger.info("Wi-Fi event %s: %s", event, message)


__all__ = ["ConnectivityManager", "StatusListener"]
