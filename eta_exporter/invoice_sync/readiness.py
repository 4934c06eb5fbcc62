from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass
from typing import Callable

from eta_exporter.invoice_sync.rows import discover_rows
from eta_exporter.invoice_sync.settings import EngineSettings
from eta_exporter.invoice_sync.snapshot import Snapshot, is_visible, text_of
from eta_exporter.invoice_sync.view import ListView
from eta_exporter.json_logger import JsonLogger, log_event

SPINNER_CSS_SELECTORS = [
    ".spinner",
    ".loading",
    ".loader",
    ".k-loading-mask",
    ".ms-Spinner",
    ".ms-Shimmer-shimmerWrapper",
    '[role="progressbar"]',
    '[aria-busy="true"]',
]
SPINNER_TEXT_RE = re.compile(r"^(?:loading|جاري التحميل|جار التحميل)", re.I)
DETAIL_MARKER_SELECTORS = [
    ".issuer",
    ".receiver",
    '[id*="TextField49"]',
    '[id*="TextField64"]',
    '[class*="issuer" i]',
    '[class*="receiver" i]',
]


@dataclass
class Readiness:
    ready: bool
    snapshot: Snapshot
    polls: int


def spinner_visible(snapshot: Snapshot) -> bool:
    for element in snapshot.select_many(SPINNER_CSS_SELECTORS):
        if is_visible(element):
            return True
    for element in snapshot.select_many(['[class*="spinner" i]', '[class*="loading" i]', '[class*="loader" i]']):
        if is_visible(element) and SPINNER_TEXT_RE.match(text_of(element)):
            return True
    return False


def list_ready(snapshot: Snapshot) -> bool:
    return not spinner_visible(snapshot) and bool(discover_rows(snapshot).rows)


def detail_ready(snapshot: Snapshot) -> bool:
    if spinner_visible(snapshot):
        return False
    return any(is_visible(element) for element in snapshot.select_many(DETAIL_MARKER_SELECTORS))


async def _poll_until(
    view: ListView,
    predicate: Callable[[Snapshot], bool],
    *,
    timeout_ms: int,
    poll_interval_ms: int,
) -> tuple[bool, Snapshot, int]:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + (timeout_ms / 1000)
    max_polls = max(1, math.ceil(timeout_ms / max(poll_interval_ms, 1)))
    polls = 0
    snapshot = await view.snapshot()
    while True:
        polls += 1
        if predicate(snapshot):
            return True, snapshot, polls
        if polls >= max_polls or loop.time() >= deadline:
            return False, snapshot, polls
        await view.wait(poll_interval_ms)
        snapshot = await view.snapshot()


async def wait_for_list_ready(
    view: ListView,
    *,
    settings: EngineSettings,
    logger: JsonLogger,
    phase: str = "navigation",
) -> Readiness:
    """Wait until no spinner shows and at least one extractable row exists.

    A timeout is logged and the caller proceeds with whatever is rendered.
    """

    ready, snapshot, polls = await _poll_until(
        view,
        list_ready,
        timeout_ms=settings.load_timeout_ms,
        poll_interval_ms=settings.poll_interval_ms,
    )
    if not ready:
        log_event(
            logger=logger,
            phase=phase,
            status="warn",
            message="List did not become ready before timeout; continuing with current view",
            url=snapshot.url,
            timeout_ms=settings.load_timeout_ms,
            polls=polls,
        )
    if settings.settle_delay_ms:
        await view.wait(settings.settle_delay_ms)
        snapshot = await view.snapshot()
    return Readiness(ready=ready, snapshot=snapshot, polls=polls)


async def wait_for_detail_ready(
    view: ListView,
    *,
    settings: EngineSettings,
    logger: JsonLogger,
) -> Readiness:
    ready, snapshot, polls = await _poll_until(
        view,
        detail_ready,
        timeout_ms=settings.detail_timeout_ms,
        poll_interval_ms=settings.poll_interval_ms,
    )
    if not ready:
        log_event(
            logger=logger,
            phase="enrichment",
            status="warn",
            message="Detail view did not become ready before timeout; reading what is present",
            url=snapshot.url,
            timeout_ms=settings.detail_timeout_ms,
            polls=polls,
        )
    if settings.settle_delay_ms:
        await view.wait(settings.settle_delay_ms)
        snapshot = await view.snapshot()
    return Readiness(ready=ready, snapshot=snapshot, polls=polls)
