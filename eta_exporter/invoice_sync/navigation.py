"""Paging-control lookup and the primitives that move the list between pages."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from bs4 import Tag

from eta_exporter.invoice_sync.amounts import normalize_digits
from eta_exporter.invoice_sync.models import PaginationState
from eta_exporter.invoice_sync.pagination import (
    inside_dropdown,
    inside_row,
    estimate,
    find_navigation_regions,
    find_paging_controls,
)
from eta_exporter.invoice_sync.readiness import Readiness, wait_for_list_ready
from eta_exporter.invoice_sync.settings import EngineSettings
from eta_exporter.invoice_sync.signals import Signal, first_signal
from eta_exporter.invoice_sync.snapshot import Snapshot, class_list, is_visible, iter_ancestors, label_of
from eta_exporter.invoice_sync.view import ListView
from eta_exporter.json_logger import JsonLogger, log_event

NEXT_LABEL_RE = re.compile(
    r"^(?:next|next page|go to next page|التالي|التالى|الصفحة التالية|الانتقال إلى الصفحة التالية)$",
    re.I,
)
NEXT_LOOSE_RE = re.compile(r"next|التالي|التالى|^[›»>→]$", re.I)
PREVIOUS_LABEL_RE = re.compile(
    r"^(?:prev|previous|previous page|go to previous page|السابق|الصفحة السابقة|الانتقال إلى الصفحة السابقة)$",
    re.I,
)
PREVIOUS_LOOSE_RE = re.compile(r"prev|السابق|^[‹«<←]$", re.I)
NEXT_CLASS_RE = re.compile(r"(?:^|[-_])next(?:$|[-_])", re.I)
PREVIOUS_CLASS_RE = re.compile(r"(?:^|[-_])prev(?:ious)?(?:$|[-_])", re.I)
DISABLED_CLASS_RE = re.compile(r"disabled", re.I)
CLICKABLE_SELECTORS = ["button", "a", '[role="button"]', '[role="link"]', "li", "span", "i"]
MAX_PREVIOUS_STEPS = 50


@dataclass
class ControlHit:
    strategy: str
    element: Tag


def is_disabled(element: Tag) -> bool:
    for node in list(iter_ancestors(element))[:2]:
        if node.has_attr("disabled") or str(node.get("aria-disabled", "")).lower() == "true":
            return True
        if any(DISABLED_CLASS_RE.search(name) for name in class_list(node)):
            return True
    return False


def _clickable_candidates(snapshot: Snapshot) -> List[Tag]:
    regions = find_navigation_regions(snapshot)
    found: List[Tag] = []
    seen: set[int] = set()
    scopes = regions or [snapshot.root]
    for scope in scopes:
        for selector in CLICKABLE_SELECTORS if regions else ["button", "a", '[role="button"]']:
            for element in scope.select(selector):
                if id(element) in seen:
                    continue
                seen.add(id(element))
                if not regions and inside_row(element):
                    continue
                if inside_dropdown(element) or not is_visible(element):
                    continue
                found.append(element)
    return found


def _innermost_clickable(element: Tag) -> Tag:
    # A label on an icon or span is resolved to the button that owns it.
    for node in iter_ancestors(element):
        if node.name in {"button", "a"} or node.get("role") in {"button", "link"}:
            return node
        if node.name in {"body", "html"}:
            break
    return element


def _labelled(snapshot: Snapshot, pattern: re.Pattern[str], class_pattern: re.Pattern[str]) -> Optional[Tag]:
    for element in _clickable_candidates(snapshot):
        label = normalize_digits(label_of(element))
        rel = element.get("rel") or []
        if pattern.search(label) or (pattern is NEXT_LABEL_RE and "next" in rel):
            return _innermost_clickable(element)
        if any(class_pattern.search(name) for name in class_list(element)):
            return _innermost_clickable(element)
    return None


def _enabled(element: Optional[Tag]) -> Optional[Tag]:
    if element is None or is_disabled(element):
        return None
    return element


def _explicit_next(snapshot: Snapshot, state: PaginationState) -> Optional[Tag]:
    return _enabled(_labelled(snapshot, NEXT_LABEL_RE, NEXT_CLASS_RE))


def _numeric_next(snapshot: Snapshot, state: PaginationState) -> Optional[Tag]:
    return find_page_control(snapshot, state.current_page + 1)


def _loose_next(snapshot: Snapshot, state: PaginationState) -> Optional[Tag]:
    for element in _clickable_candidates(snapshot):
        if NEXT_LOOSE_RE.search(normalize_digits(label_of(element))):
            target = _innermost_clickable(element)
            if not is_disabled(target):
                return target
    return None


NEXT_CONTROL_SIGNALS: List[Signal[Tag]] = [
    Signal("explicit_next", _explicit_next),
    Signal("numeric_next", _numeric_next),
    Signal("loose_next", _loose_next, weak=True),
]


def _explicit_previous(snapshot: Snapshot) -> Optional[Tag]:
    return _enabled(_labelled(snapshot, PREVIOUS_LABEL_RE, PREVIOUS_CLASS_RE))


def _loose_previous(snapshot: Snapshot) -> Optional[Tag]:
    for element in _clickable_candidates(snapshot):
        if PREVIOUS_LOOSE_RE.search(normalize_digits(label_of(element))):
            target = _innermost_clickable(element)
            if not is_disabled(target):
                return target
    return None


PREVIOUS_CONTROL_SIGNALS: List[Signal[Tag]] = [
    Signal("explicit_previous", _explicit_previous),
    Signal("loose_previous", _loose_previous, weak=True),
]


def find_page_control(snapshot: Snapshot, number: int) -> Optional[Tag]:
    for control in find_paging_controls(snapshot):
        if control.number == number and is_visible(control.element) and not is_disabled(control.element):
            return _innermost_clickable(control.element)
    return None


def find_next_control(snapshot: Snapshot, state: PaginationState) -> Optional[ControlHit]:
    hit = first_signal(NEXT_CONTROL_SIGNALS, snapshot, state)
    return ControlHit(strategy=hit.name, element=hit.value) if hit else None


def find_previous_control(snapshot: Snapshot) -> Optional[ControlHit]:
    hit = first_signal(PREVIOUS_CONTROL_SIGNALS, snapshot)
    return ControlHit(strategy=hit.name, element=hit.value) if hit else None


async def _click_located(
    view: ListView,
    locate: Callable[[Snapshot], Optional[ControlHit]],
    snapshot: Snapshot,
) -> Optional[ControlHit]:
    """Click the located control, retrying once on a fresh snapshot if it went stale."""

    hit = locate(snapshot)
    if hit is None:
        return None
    if await view.click(hit.element):
        return hit
    hit = locate(await view.snapshot())
    if hit is not None and await view.click(hit.element):
        return hit
    return None


async def advance_page(
    view: ListView,
    state: PaginationState,
    *,
    settings: EngineSettings,
    logger: JsonLogger,
    snapshot: Snapshot | None = None,
) -> Optional[Readiness]:
    """Move to the next page; ``None`` when no usable next control exists."""

    snapshot = snapshot or await view.snapshot()
    hit = await _click_located(view, lambda snap: find_next_control(snap, state), snapshot)
    if hit is None:
        log_event(
            logger=logger,
            phase="navigation",
            message="No enabled next-page control found",
            current_page=state.current_page,
            total_pages=state.total_pages,
        )
        return None
    log_event(
        logger=logger,
        phase="navigation",
        message="Advanced to next page",
        strategy=hit.strategy,
        from_page=state.current_page,
    )
    return await wait_for_list_ready(view, settings=settings, logger=logger)


async def go_to_page(
    view: ListView,
    number: int,
    *,
    settings: EngineSettings,
    logger: JsonLogger,
    snapshot: Snapshot | None = None,
) -> Optional[Readiness]:
    snapshot = snapshot or await view.snapshot()

    def locate(snap: Snapshot) -> Optional[ControlHit]:
        element = find_page_control(snap, number)
        return ControlHit(strategy="numeric", element=element) if element is not None else None

    hit = await _click_located(view, locate, snapshot)
    if hit is None:
        log_event(logger=logger, phase="navigation", status="warn", message="Page control not found", page=number)
        return None
    return await wait_for_list_ready(view, settings=settings, logger=logger)


async def ensure_first_page(
    view: ListView,
    *,
    settings: EngineSettings,
    logger: JsonLogger,
    prior: PaginationState | None = None,
) -> Readiness:
    """Bring the list to page 1.

    Clicks the page-1 control when one is present, otherwise steps back with
    the previous-page control until the estimator reports page 1 or no
    previous control is left.
    """

    readiness = await wait_for_list_ready(view, settings=settings, logger=logger)
    state = estimate(readiness.snapshot, prior)
    if state.current_page <= 1:
        return readiness

    moved = await go_to_page(view, 1, settings=settings, logger=logger, snapshot=readiness.snapshot)
    if moved is not None:
        log_event(logger=logger, phase="navigation", message="Returned to first page", method="page_control")
        return moved

    steps = 0
    while state.current_page > 1 and steps < MAX_PREVIOUS_STEPS:
        hit = await _click_located(view, find_previous_control, readiness.snapshot)
        if hit is None:
            break
        steps += 1
        readiness = await wait_for_list_ready(view, settings=settings, logger=logger)
        state = estimate(readiness.snapshot, PaginationState(current_page=state.current_page - 1))
    log_event(
        logger=logger,
        phase="navigation",
        status="ok" if state.current_page <= 1 else "warn",
        message="Stepped back towards first page",
        method="previous_control",
        steps=steps,
        current_page=state.current_page,
    )
    return readiness
