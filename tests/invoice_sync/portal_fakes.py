"""Scripted stand-ins for the portal used across the invoice_sync tests."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from bs4 import Tag

from eta_exporter.invoice_sync.settings import EngineSettings
from eta_exporter.invoice_sync.snapshot import Snapshot
from eta_exporter.invoice_sync.view import NavigationError

BASE = "https://invoicing.eta.gov.eg"
LIST_URL = f"{BASE}/documents/recent"

FAST_SETTINGS = EngineSettings(
    load_timeout_ms=5,
    detail_timeout_ms=5,
    settle_delay_ms=0,
    poll_interval_ms=1,
    rescan_quiet_ms=10,
)


def page_url(number: int) -> str:
    return f"{LIST_URL}?page={number}"


def uuid_for(number: int) -> str:
    return f"UUID{number:04d}ABCDEFGHJKLMN{number:02d}"


def keyed_row(number: int, *, total: str = "EGP 114.00", status: str = "Valid") -> str:
    uuid = uuid_for(number)
    return (
        f'<div role="row" data-list-index="{number}">'
        f'<div role="gridcell" data-automation-key="uuid">'
        f'<a href="/documents/{uuid}/share/SUB{number:04d}XYZ">{uuid}</a><span>INV-{number:03d}</span></div>'
        f'<div role="gridcell" data-automation-key="dateTimeIssued"><span>12/05/2024</span><span>10:30 AM</span></div>'
        f'<div role="gridcell" data-automation-key="typeName"><span>فاتورة</span><span>v1.0</span></div>'
        f'<div role="gridcell" data-automation-key="total">{total}</div>'
        f'<div role="gridcell" data-automation-key="issuerName"><span>شركة البائع</span><span>123-456-789</span></div>'
        f'<div role="gridcell" data-automation-key="receiverName"><span>شركة المشتري</span><span>987654321</span></div>'
        f'<div role="gridcell" data-automation-key="status"><span>{status}</span></div>'
        f"</div>"
    )


HEADER_ROW = (
    '<div role="row"><div role="columnheader">الرقم الإلكتروني</div>'
    '<div role="columnheader">الإجمالي</div></div>'
)


def pager(current: int, total_pages: int, *, next_enabled: Optional[bool] = None, next_href: bool = True) -> str:
    if next_enabled is None:
        next_enabled = current < total_pages
    items: List[str] = []
    if current > 1:
        items.append(f'<li><a href="{page_url(current - 1)}" aria-label="Previous">‹</a></li>')
    else:
        items.append('<li class="disabled"><a aria-label="Previous" aria-disabled="true">‹</a></li>')
    for number in range(1, total_pages + 1):
        css = "active" if number == current else ""
        items.append(f'<li class="{css}"><a href="{page_url(number)}" aria-label="Page {number}">{number}</a></li>')
    if next_enabled:
        href = f' href="{page_url(current + 1)}"' if next_href else ""
        items.append(f'<li><a{href} aria-label="Next">›</a></li>')
    else:
        items.append('<li class="disabled"><a aria-label="Next" aria-disabled="true">›</a></li>')
    return f'<nav aria-label="pagination"><ul>{"".join(items)}</ul></nav>'


def list_page(rows: Iterable[str], *, pager_html: str = "", results: Optional[int] = None) -> str:
    summary = f'<div class="summary">Results: {results}</div>' if results is not None else ""
    return (
        "<html><body><main>"
        f'{summary}<div role="grid">{HEADER_ROW}{"".join(rows)}</div>{pager_html}'
        "</main></body></html>"
    )


def paged_portal(per_page: List[List[int]], *, results: Optional[int] = None, next_href: bool = True) -> Dict[str, str]:
    total_pages = len(per_page)
    pages: Dict[str, str] = {}
    for index, numbers in enumerate(per_page, start=1):
        pages[page_url(index)] = list_page(
            [keyed_row(n) for n in numbers],
            pager_html=pager(index, total_pages, next_href=next_href),
            results=results,
        )
    return pages


def detail_page(*, seller: str = "", buyer: str = "", extra: str = "") -> str:
    return (
        "<html><body>"
        f'<div class="issuer"><label for="TextField49">Address</label><textarea id="TextField49">{seller}</textarea></div>'
        f'<div class="receiver"><label for="TextField64">Address</label><textarea id="TextField64">{buyer}</textarea></div>'
        f"{extra}"
        "</body></html>"
    )


class FakeView:
    """In-memory documents portal driven by scripted HTML pages.

    Clicking an element follows its ``href`` when it has one; anything else
    is accepted but changes nothing, like a paginator that fails to advance.
    """

    def __init__(
        self,
        pages: Dict[str, str],
        *,
        start: str,
        fail_urls: Iterable[str] = (),
        back_works: bool = True,
    ) -> None:
        self.pages = dict(pages)
        self._url = start
        self.history: List[str] = []
        self.fail_urls = set(fail_urls)
        self.back_works = back_works
        self.clicks: List[str] = []
        self.visited: List[str] = [start]
        self.waited_ms = 0
        self.snapshots = 0

    @property
    def url(self) -> str:
        return self._url

    def _navigate(self, url: str) -> None:
        self.history.append(self._url)
        self._url = url
        self.visited.append(url)

    async def snapshot(self) -> Snapshot:
        self.snapshots += 1
        return Snapshot(url=self._url, html=self.pages.get(self._url, "<html><body></body></html>"), can_go_back=bool(self.history))

    async def click(self, element: Tag) -> bool:
        self.clicks.append(element.get("aria-label") or element.get_text(strip=True))
        href = element.get("href")
        if href:
            target = href if href.startswith("http") else BASE + href
            self._navigate(target)
        return True

    async def goto(self, url: str) -> None:
        if url in self.fail_urls:
            raise NavigationError(f"Navigation to {url} failed")
        self._navigate(url)

    async def go_back(self) -> bool:
        if not self.back_works or not self.history:
            return False
        self._url = self.history.pop()
        self.visited.append(self._url)
        return True

    async def wait(self, timeout_ms: int) -> None:
        self.waited_ms += timeout_ms
