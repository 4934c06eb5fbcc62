"""Debounced structural-change watcher.

Child-list mutations and URL changes on the page are coalesced: a re-scan
runs only after the view has been quiet for ``quiet_ms``, and never while
a traversal or enrichment owns the view.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Optional, Protocol

from playwright.async_api import Frame, Page

from eta_exporter.json_logger import JsonLogger, log_event

BINDING_NAME = "__etaStructureChanged"

OBSERVER_SCRIPT = """
() => {
  if (window.__etaObserver) {
    return;
  }
  const notify = () => {
    if (typeof window.__etaStructureChanged === "function") {
      window.__etaStructureChanged();
    }
  };
  const observer = new MutationObserver((mutations) => {
    for (const m of mutations) {
      if (m.type === "childList" && (m.addedNodes.length || m.removedNodes.length)) {
        notify();
        return;
      }
    }
  });
  const start = () => observer.observe(document.body || document.documentElement, { childList: true, subtree: true });
  if (document.body) {
    start();
  } else {
    document.addEventListener("DOMContentLoaded", start);
  }
  window.__etaObserver = observer;
}
"""
DISCONNECT_SCRIPT = """
() => {
  if (window.__etaObserver) {
    window.__etaObserver.disconnect();
    window.__etaObserver = undefined;
  }
}
"""


class ChangeSource(Protocol):
    async def subscribe(self, callback: Callable[[], None]) -> None: ...

    async def unsubscribe(self) -> None: ...


class PlaywrightChangeSource:
    def __init__(self, page: Page) -> None:
        self.page = page
        self._callback: Optional[Callable[[], None]] = None
        self._bound = False

    def _on_binding(self, _source: Any) -> None:
        if self._callback is not None:
            self._callback()

    def _on_navigated(self, frame: Frame) -> None:
        if frame == self.page.main_frame and self._callback is not None:
            self._callback()

    async def subscribe(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        if not self._bound:
            # Bindings cannot be removed; the callback slot is cleared instead.
            await self.page.expose_binding(BINDING_NAME, self._on_binding)
            await self.page.add_init_script(f"({OBSERVER_SCRIPT})()")
            self._bound = True
        await self.page.evaluate(OBSERVER_SCRIPT)
        self.page.on("framenavigated", self._on_navigated)

    async def unsubscribe(self) -> None:
        self._callback = None
        self.page.remove_listener("framenavigated", self._on_navigated)
        with contextlib.suppress(Exception):
            await self.page.evaluate(DISCONNECT_SCRIPT)


class DebouncedRescan:
    def __init__(
        self,
        source: ChangeSource,
        rescan: Callable[[], Awaitable[Any]],
        *,
        quiet_ms: int = 800,
        is_busy: Callable[[], bool] = lambda: False,
        logger: JsonLogger | None = None,
    ) -> None:
        self.source = source
        self.rescan = rescan
        self.quiet_ms = quiet_ms
        self.is_busy = is_busy
        self.logger = logger
        self.runs = 0
        self.skipped = 0
        self._timer: Optional[asyncio.Task[None]] = None
        self._running = False

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def start(self) -> None:
        await self.source.subscribe(self.notify)
        self._running = True
        self._log("Change watcher started", quiet_ms=self.quiet_ms)

    async def stop(self) -> None:
        self._running = False
        await self.source.unsubscribe()
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        self._log("Change watcher stopped", runs=self.runs, skipped=self.skipped)

    def notify(self) -> None:
        """Record a change; restarts the quiet-period timer."""

        if not self._running:
            return
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire_after_quiet())

    async def flush(self) -> None:
        timer = self._timer
        if timer is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await timer

    async def _fire_after_quiet(self) -> None:
        await asyncio.sleep(self.quiet_ms / 1000)
        if self.is_busy():
            self.skipped += 1
            self._log("Re-scan skipped; view is busy")
            return
        self.runs += 1
        try:
            await self.rescan()
        except Exception as exc:
            self._log("Re-scan failed", status="warn", error=str(exc))

    def _log(self, message: str, *, status: str = "ok", **fields: Any) -> None:
        if self.logger is not None:
            log_event(logger=self.logger, phase="watcher", status=status, message=message, **fields)
