"""Live view adapter over a Playwright page.

The engine only talks to a view through this small surface, which keeps
every extraction step testable against scripted HTML.
"""

from __future__ import annotations

from typing import Protocol

from bs4 import Tag
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, TimeoutError

from eta_exporter.invoice_sync.snapshot import CAPTURE_SCRIPT, SNAP_ATTR, Snapshot, snap_id

NAV_TIMEOUT_MS = 30_000
CLICK_TIMEOUT_MS = 5_000


class NavigationError(RuntimeError):
    """Raised when a navigation primitive cannot be completed."""


class ListView(Protocol):
    @property
    def url(self) -> str: ...

    async def snapshot(self) -> Snapshot: ...

    async def click(self, element: Tag) -> bool: ...

    async def goto(self, url: str) -> None: ...

    async def go_back(self) -> bool: ...

    async def wait(self, timeout_ms: int) -> None: ...


class PlaywrightView:
    def __init__(self, page: Page, *, nav_timeout_ms: int = NAV_TIMEOUT_MS) -> None:
        self.page = page
        self.nav_timeout_ms = nav_timeout_ms

    @property
    def url(self) -> str:
        return self.page.url

    async def snapshot(self) -> Snapshot:
        try:
            payload = await self.page.evaluate(CAPTURE_SCRIPT)
        except PlaywrightError:
            # Context torn down mid-navigation; reads as an empty, not-ready view.
            return Snapshot(url=self.page.url, html="")
        return Snapshot.from_capture(payload or {"url": self.page.url})

    async def click(self, element: Tag) -> bool:
        handle = snap_id(element)
        if handle is None:
            return False
        locator = self.page.locator(f'[{SNAP_ATTR}="{handle}"]').first
        try:
            if not await locator.count():
                # The node was re-rendered since the snapshot was taken.
                return False
            await locator.scroll_into_view_if_needed(timeout=CLICK_TIMEOUT_MS)
            await locator.click(timeout=CLICK_TIMEOUT_MS)
        except (TimeoutError, PlaywrightError):
            return False
        return True

    async def goto(self, url: str) -> None:
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
        except (TimeoutError, PlaywrightError) as exc:
            raise NavigationError(f"Navigation to {url} failed: {exc}") from exc

    async def go_back(self) -> bool:
        try:
            await self.page.go_back(wait_until="domcontentloaded", timeout=self.nav_timeout_ms)
        except (TimeoutError, PlaywrightError):
            return False
        return True

    async def wait(self, timeout_ms: int) -> None:
        if timeout_ms > 0:
            await self.page.wait_for_timeout(timeout_ms)
