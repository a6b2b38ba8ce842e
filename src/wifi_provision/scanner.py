"""Single-flight wrapper around the radio scan."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Sequence

from .models import DiscoveredNetwork, ScanOutcome

ScanCallback = Callable[[list[DiscoveredNetwork]], Awaitable[None] | None]


class DiscoverySingleFlighter:
    """Run at most one scan at a time; concurrent requests are rejected.

    The scan itself blocks, so it runs in the loop's default executor. The
    result callback is invoked exactly once per accepted request, with an
    empty list when the underlying scan fails, and the in-flight flag is
    released only after the callback has returned.
    """

    def __init__(
        self,
        scan: Callable[[], Sequence[DiscoveredNetwork]],
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._scan = scan
        self._flag = threading.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def in_flight(self) -> bool:
        return self._flag.locked()

    def scan(self, callback: ScanCallback) -> ScanOutcome:
        if not self._flag.acquire(blocking=False):
            self._logger.info("Scan already in progress; request rejected")
            return ScanOutcome.BUSY
        try:
            loop = asyncio.get_running_loop()
            task = loop.create_task(self._run(callback))
        except BaseException:
            self._flag.release()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return ScanOutcome.ACCEPTED

    async def wait_idle(self) -> None:
        """Wait for the scan currently in flight, if any."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, callback: ScanCallback) -> None:
        try:
            loop = asyncio.get_running_loop()
            try:
                networks = list(await loop.run_in_executor(None, self._scan))
            except Exception as exc:
                self._logger.warning("Wi-Fi scan failed: %s", exc)
                networks = []
            self._logger.info("Wi-Fi scan found %d network(s)", len(networks))
            try:
                result = callback(networks)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                self._logger.exception("Scan result callback failed")
        finally:
            self._flag.release()


__all__ = ["DiscoverySingleFlighter", "ScanCallback"]
