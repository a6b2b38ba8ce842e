"""Transport sessions carrying provisioning messages to the browser."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

MessageHandler = Callable[[str], Awaitable[None] | None]

# RFC 6455 "try again later": no provisioning session is accepting clients.
CLOSE_TRY_AGAIN_LATER = 1013


class TransportSession:
    """Bidirectional text channel opened for the duration of a session."""

    @property
    def is_open(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    async def open(self, handler: MessageHandler) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    async def send(self, text: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class WebSocketHub(TransportSession):
    """Fan provisioning messages out to every attached browser socket."""

    def __init__(self) -> None:
        self._handler: MessageHandler | None = None
        self._clients: set[WebSocket] = set()
        self._logger = logging.getLogger(__name__)

    @property
    def is_open(self) -> bool:
        return self._handler is not None

    async def open(self, handler: MessageHandler) -> None:
        self._handler = handler
        self._logger.info("Provisioning transport opened")

    async def send(self, text: str) -> None:
        if not self._clients:
            self._logger.debug("No browser attached; dropping message")
            return
        for websocket in list(self._clients):
            try:
                await websocket.send_text(text)
            except (RuntimeError, WebSocketDisconnect) as exc:
                self._logger.debug("Dropping unreachable browser socket: %s", exc)
                self._clients.discard(websocket)

    async def close(self) -> None:
        self._handler = None
        clients = list(self._clients)
        self._clients.clear()
        for websocket in clients:
            try:
                await websocket.close(code=1000)
            except RuntimeError:
                continue
        self._logger.info("Provisioning transport closed")

    async def serve(self, websocket: WebSocket) -> None:
        """Attach ``websocket`` and pump its inbound messages to the handler."""

        if self._handler is None:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return
        await websocket.accept()
        self._clients.add(websocket)
        try:
            while True:
                text = await websocket.receive_text()
                handler = self._handler
                if handler is None:
                    break
                result = handler(text)
                if asyncio.iscoroutine(result):
                    await result
        except (WebSocketDisconnect, RuntimeError):
            pass
        finally:
            self._clients.discard(websocket)


__all__ = ["CLOSE_TRY_AGAIN_LATER", "MessageHandler", "TransportSession", "WebSocketHub"]
