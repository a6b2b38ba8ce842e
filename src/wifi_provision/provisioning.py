"""Provisioning session state machine.

A session is started by a trigger (a button press or the HTTP API). It turns
the hotspot on, opens the browser transport and waits for the user to pick a
network. Submitted credentials are handed to the connectivity manager and the
outcome is reported back to the browser. A failed attempt leaves the session
open for another try; a successful one closes it after a short grace delay so
the final status message can reach the browser.

All session state is written by a single loop task. Transport handlers and
link status listeners only post :class:`Signal` objects to its queue; every
wake drains the queue and handles the pending signals in a fixed order
(submitted, failed, timed out, succeeded), with duplicates collapsed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import IntEnum

from .connectivity import ConnectivityManager
from .credentials import CredentialStore
from .driver import WiFiError
from .event_log import EventCategory, EventLog
from .models import (
    DiscoveredNetwork,
    LinkStatus,
    LinkStatusKind,
    ProvisioningSession,
    ScanOutcome,
    SessionPhase,
)
from .protocol import CredentialSubmission, ScanRequest, encode_status, encode_wifi_list, parse_inbound
from .transport import TransportSession


class SignalKind(IntEnum):
    """Session loop wake reasons, valued in processing order."""

    CREDENTIALS_SUBMITTED = 0
    CONNECT_FAILED = 1
    CONNECT_TIMEOUT = 2
    CONNECT_SUCCEEDED = 3


@dataclass(frozen=True, slots=True)
class Signal:
    kind: SignalKind
    credentials: tuple[str, str] | None = None
    address: str | None = None
    attempt_id: int = 0


class ProvisioningOrchestrator:
    """Drive one provisioning session at a time for a device."""

    def __init__(
        self,
        connectivity: ConnectivityManager,
        transport: TransportSession,
        *,
        grace_delay: float = 2.0,
        connect_timeout: float | None = None,
        credential_store: CredentialStore | None = None,
        event_log: EventLog | None = None,
    ) -> None:
        self._connectivity = connectivity
        self._transport = transport
        self._grace_delay = max(0.0, grace_delay)
        self._connect_timeout = connect_timeout if connect_timeout and connect_timeout > 0 else None
        self._credentials = credential_store
        self._event_log = event_log
        self._session: ProvisioningSession | None = None
        self._signals: asyncio.Queue[Signal] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._loop_task: asyncio.Task[None] | None = None
        self._teardown_task: asyncio.Task[None] | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None
        self._logger = logging.getLogger(__name__)

    # ------------------------------ properties -----------------------------
    @property
    def session(self) -> ProvisioningSession | None:
        return self._session

    @property
    def phase(self) -> SessionPhase | None:
        return self._session.phase if self._session is not None else None

    def snapshot(self) -> dict[str, object | None]:
        session = self._session
        if session is None:
            return {"active": False, "phase": None, "ssid": None}
        return session.to_dict()

    # ------------------------------ lifecycle ------------------------------
    async def start(self) -> None:
        """Start the session loop and subscribe to link notifications."""

        if self._loop_task is not None:
            return
        self._connectivity.add_listener(self._on_link_status)
        self._loop_task = asyncio.get_running_loop().create_task(self._run())

    async def aclose(self) -> None:
        self._connectivity.remove_listener(self._on_link_status)
        self._cancel_timeout()
        tasks = [task for task in (self._loop_task, self._teardown_task) if task is not None]
        self._loop_task = None
        self._teardown_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until every posted signal has been processed."""

        await asyncio.sleep(0)
        await self._signals.join()

    async def wait_closed(self) -> None:
        """Wait for a scheduled teardown to finish."""

        task = self._teardown_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------ operations -----------------------------
    async def start_session(self) -> bool:
        """Open a provisioning session; returns ``False`` if one is active."""

        async with self._lock:
            if self._session is not None:
                self._logger.info("Provisioning session already active")
                return False
            session = ProvisioningSession()
            self._session = session
            self._record_log("session_start", "Starting provisioning session.")
            try:
                await self._connectivity.start_hotspot()
                await self._transport.open(self.handle_message)
            except Exception as exc:
                self._session = None
                self._record_log(
                    "session_start_error", f"Unable to start provisioning session: {exc}."
                )
                await self._close_transport()
                await self._stop_hotspot()
                raise
            self._record_log(
                "session_ready",
                "Provisioning session awaiting input.",
                metadata={"phase": session.phase.value},
            )
            return True

    async def cancel_session(self) -> bool:
        """Abandon the active session; returns ``False`` if none is active."""

        async with self._lock:
            if self._session is None:
                return False
            await self._end_session("session_cancelled", "Provisioning session abandoned.")
        teardown = self._teardown_task
        if teardown is not None and teardown is not asyncio.current_task():
            teardown.cancel()
            self._teardown_task = None
        return True

    def handle_message(self, text: str) -> None:
        """Dispatch one inbound transport message."""

        for command in parse_inbound(text):
            if isinstance(command, ScanRequest):
                self.on_scan_request()
            elif isinstance(command, CredentialSubmission):
                self.on_credential_submission(command.ssid, command.password)

    def on_scan_request(self) -> ScanOutcome:
        outcome = self._connectivity.scan(self._send_wifi_list)
        if outcome is ScanOutcome.BUSY:
            self._logger.info("Scan request dropped; a scan is already running")
        return outcome

    def on_credential_submission(self, ssid: str | None, password: str | None) -> bool:
        if not ssid or password is None:
            self._logger.debug("Ignoring credential submission with missing fields")
            return False
        self._post(Signal(SignalKind.CREDENTIALS_SUBMITTED, credentials=(ssid, password)))
        return True

    # ------------------------------ signalling -----------------------------
    def _on_link_status(self, status: LinkStatus) -> None:
        if status.kind is LinkStatusKind.CONNECTED:
            self._post(Signal(SignalKind.CONNECT_SUCCEEDED, address=status.address))
        elif status.kind is LinkStatusKind.CONNECT_FAILED:
            self._post(Signal(SignalKind.CONNECT_FAILED))

    def _post(self, signal: Signal) -> None:
        self._signals.put_nowait(signal)

    async def _run(self) -> None:
        queue = self._signals
        while True:
            batch = [await queue.get()]
            while True:
                try:
                    batch.append(queue.get_nowait())
                except asyncio.QueueEmpty:
                    break
            pending: dict[SignalKind, Signal] = {}
            for signal in batch:
                pending[signal.kind] = signal
            if SignalKind.CONNECT_SUCCEEDED in pending:
                # A success in the same wake supersedes stale failures.
                pending.pop(SignalKind.CONNECT_FAILED, None)
                pending.pop(SignalKind.CONNECT_TIMEOUT, None)
            try:
                async with self._lock:
                    for kind in sorted(pending):
                        await self._handle(pending[kind])
            except Exception:
                self._logger.exception("Provisioning signal handling failed")
            finally:
                for _ in batch:
                    queue.task_done()

    async def _handle(self, signal: Signal) -> None:
        session = self._session
        if session is None:
            self._logger.debug("No provisioning session; ignoring %s", signal.kind.name)
            return
        if signal.kind is SignalKind.CREDENTIALS_SUBMITTED:
            await self._handle_submission(session, signal)
            return
        if session.phase is not SessionPhase.CONNECTING:
            self._logger.debug(
                "Ignoring %s in phase %s", signal.kind.name, session.phase.value
            )
            return
        if signal.kind is SignalKind.CONNECT_SUCCEEDED:
            await self._handle_success(session, signal.address)
        elif signal.kind is SignalKind.CONNECT_TIMEOUT:
            if signal.attempt_id != session.attempt_id:
                self._logger.debug("Ignoring timeout of superseded attempt %d", signal.attempt_id)
                return
            # A timed-out attempt must not join afterwards.
            await self._connectivity.abandon()
            await self._handle_failure(session, timed_out=True)
        else:
            await self._handle_failure(session, timed_out=False)

    async def _handle_submission(self, session: ProvisioningSession, signal: Signal) -> None:
        if session.phase is SessionPhase.SUCCEEDED:
            self._logger.info("Provisioning already succeeded; ignoring submission")
            return
        assert signal.credentials is not None
        ssid, password = signal.credentials
        session.pending_credentials = (ssid, password)
        session.attempt_id += 1
        self._set_phase(session, SessionPhase.CONNECTING)
        self._cancel_timeout()
        try:
            await self._connectivity.connect(ssid, password)
        except WiFiError as exc:
            self._record_log(
                "connect_error",
                f"Unable to start connection to {ssid}: {exc}.",
                metadata={"target": ssid},
            )
            await self._handle_failure(session, timed_out=False)
            return
        if self._connect_timeout is not None:
            self._timeout_handle = asyncio.get_running_loop().call_later(
                self._connect_timeout,
                self._post,
                Signal(SignalKind.CONNECT_TIMEOUT, attempt_id=session.attempt_id),
            )

    async def _handle_failure(self, session: ProvisioningSession, *, timed_out: bool) -> None:
        self._cancel_timeout()
        ssid = session.ssid or ""
        await self._send(encode_status("failed", ssid))
        self._set_phase(session, SessionPhase.FAILED)
        self._record_log(
            "provisioning_failed",
            f"Connection to {ssid} {'timed out' if timed_out else 'failed'}; awaiting new input.",
            metadata={"target": ssid, "timed_out": timed_out},
        )
        self._set_phase(session, SessionPhase.AWAITING_INPUT)

    async def _handle_success(self, session: ProvisioningSession, address: str | None) -> None:
        self._cancel_timeout()
        ssid = session.ssid or ""
        await self._send(encode_status("connected", ssid, address))
        self._set_phase(session, SessionPhase.SUCCEEDED)
        self._record_log(
            "provisioning_succeeded",
            f"Connected to {ssid} with address {address}.",
            metadata={"target": ssid, "address": address},
        )
        if self._credentials is not None and session.pending_credentials is not None:
            try:
                self._credentials.save(*session.pending_credentials)
            except (OSError, ValueError) as exc:
                self._logger.warning("Unable to store credentials for %s: %s", ssid, exc)
        self._teardown_task = asyncio.get_running_loop().create_task(
            self._teardown_after_grace(session)
        )

    async def _teardown_after_grace(self, session: ProvisioningSession) -> None:
        await asyncio.sleep(self._grace_delay)
        async with self._lock:
            if self._session is not session:
                return
            await self._end_session("session_complete", "Provisioning complete; hotspot closed.")

    # ------------------------------- helpers -------------------------------
    async def _end_session(self, event: str, message: str) -> None:
        self._cancel_timeout()
        self._session = None
        await self._close_transport()
        await self._stop_hotspot()
        self._record_log(event, message)

    async def _stop_hotspot(self) -> None:
        try:
            await self._connectivity.stop_hotspot()
        except WiFiError as exc:
            self._logger.warning("Unable to stop hotspot: %s", exc)

    async def _close_transport(self) -> None:
        try:
            await self._transport.close()
        except Exception:
            self._logger.debug("Transport close failed", exc_info=True)

    async def _send(self, text: str) -> None:
        try:
            await self._transport.send(text)
        except Exception:
            self._logger.debug("Transport send failed", exc_info=True)

    async def _send_wifi_list(self, networks: list[DiscoveredNetwork]) -> None:
        await self._send(encode_wifi_list(networks))

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _set_phase(self, session: ProvisioningSession, phase: SessionPhase) -> None:
        previous = session.phase
        if previous is SessionPhase.SUCCEEDED:
            raise RuntimeError("A succeeded session cannot change phase")
        session.phase = phase
        self._record_log(
            "phase_changed",
            f"Session phase {previous.value} -> {phase.value}.",
            metadata={"from": previous.value, "to": phase.value},
        )

    def _record_log(
        self,
        event: str,
        message: str,
        *,
        metadata: dict[str, object | None] | None = None,
    ) -> None:
        if self._event_log is not None:
            self._event_log.record(EventCategory.PROVISIONING, event, message, metadata=metadata)
        self._logger.info("Provisioning event %s: %s", event, message)


__all__ = ["ProvisioningOrchestrator", "Signal", "SignalKind"]
