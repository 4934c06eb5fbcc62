import asyncio

import pytest

from eta_exporter.invoice_sync.watcher import DebouncedRescan


class _FakeSource:
    def __init__(self) -> None:
        self.callback = None
        self.unsubscribed = False

    async def subscribe(self, callback) -> None:
        self.callback = callback

    async def unsubscribe(self) -> None:
        self.unsubscribed = True
        self.callback = None


@pytest.mark.asyncio
async def test_burst_of_changes_triggers_one_rescan(logger) -> None:
    source = _FakeSource()
    calls: list[int] = []

    async def rescan() -> None:
        calls.append(1)

    watcher = DebouncedRescan(source, rescan, quiet_ms=50, logger=logger)
    await watcher.start()
    for _ in range(5):
        source.callback()
        await asyncio.sleep(0.002)
    await watcher.flush()

    assert calls == [1]
    assert watcher.runs == 1


@pytest.mark.asyncio
async def test_rescan_is_skipped_while_busy(logger, events) -> None:
    source = _FakeSource()
    calls: list[int] = []

    async def rescan() -> None:
        calls.append(1)

    watcher = DebouncedRescan(source, rescan, quiet_ms=5, is_busy=lambda: True, logger=logger)
    await watcher.start()
    source.callback()
    await watcher.flush()

    assert calls == []
    assert watcher.skipped == 1
    assert any(event["message"] == "Re-scan skipped; view is busy" for event in events())


@pytest.mark.asyncio
async def test_stop_cancels_pending_rescan_and_unsubscribes(logger) -> None:
    source = _FakeSource()
    calls: list[int] = []

    async def rescan() -> None:
        calls.append(1)

    watcher = DebouncedRescan(source, rescan, quiet_ms=1000, logger=logger)
    await watcher.start()
    source.callback()
    assert watcher.pending

    await watcher.stop()
    watcher.notify()

    assert calls == []
    assert source.unsubscribed is True
    assert not watcher.pending


@pytest.mark.asyncio
async def test_failing_rescan_is_logged(logger, events) -> None:
    source = _FakeSource()

    async def rescan() -> None:
        raise RuntimeError("view detached")

    watcher = DebouncedRescan(source, rescan, quiet_ms=1, logger=logger)
    await watcher.start()
    source.callback()
    await watcher.flush()

    assert events()[-1]["status"] == "warn"
    assert events()[-1]["error"] == "view detached"
