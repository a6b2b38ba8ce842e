import asyncio
import threading

from wifi_provision.models import DiscoveredNetwork, ScanOutcome
from wifi_provision.scanner import DiscoverySingleFlighter


class BlockingScan:
    def __init__(self, networks: list[DiscoveredNetwork]) -> None:
        self.networks = networks
        self.release = threading.Event()
        self.calls = 0

    def __call__(self) -> list[DiscoveredNetwork]:
        self.calls += 1
        self.release.wait(timeout=5)
        return list(self.networks)


def test_concurrent_scan_is_rejected_while_in_flight() -> None:
    scan = BlockingScan([DiscoveredNetwork("Home", -40, True)])
    results: list[list[DiscoveredNetwork]] = []

    async def scenario() -> tuple[ScanOutcome, ScanOutcome, bool]:
        flighter = DiscoverySingleFlighter(scan)
        first = flighter.scan(results.append)
        second = flighter.scan(results.append)
        busy = flighter.in_flight
        scan.release.set()
        await flighter.wait_idle()
        assert flighter.in_flight is False
        return first, second, busy

    first, second, busy = asyncio.run(scenario())

    assert first is ScanOutcome.ACCEPTED
    assert second is ScanOutcome.BUSY
    assert busy is True
    assert scan.calls == 1
    assert results == [[DiscoveredNetwork("Home", -40, True)]]


def test_failed_scan_reports_empty_list() -> None:
    results: list[list[DiscoveredNetwork]] = []

    def failing_scan() -> list[DiscoveredNetwork]:
        raise RuntimeError("radio busy")

    async def scenario() -> None:
        flighter = DiscoverySingleFlighter(failing_scan)
        assert flighter.scan(results.append) is ScanOutcome.ACCEPTED
        await flighter.wait_idle()

    asyncio.run(scenario())

    assert results == [[]]


def test_flag_is_held_until_callback_returns() -> None:
    observed: list[bool] = []

    async def scenario() -> ScanOutcome:
        flighter = DiscoverySingleFlighter(lambda: [])

        async def callback(networks: list[DiscoveredNetwork]) -> None:
            observed.append(flighter.in_flight)
            observed.append(flighter.scan(lambda _: None) is ScanOutcome.BUSY)

        flighter.scan(callback)
        await flighter.wait_idle()
        outcome = flighter.scan(lambda _: None)
        await flighter.wait_idle()
        return outcome

    outcome = asyncio.run(scenario())

    assert observed == [True, True]
    assert outcome is ScanOutcome.ACCEPTED


def test_callback_error_still_releases_flag() -> None:
    def callback(networks: list[DiscoveredNetwork]) -> None:
        raise ValueError("browser went away")

    async def scenario() -> bool:
        flighter = DiscoverySingleFlighter(lambda: [])
        flighter.scan(callback)
        await flighter.wait_idle()
        return flighter.in_flight

    assert asyncio.run(scenario()) is False
