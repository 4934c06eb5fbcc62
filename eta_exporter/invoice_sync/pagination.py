"""Pagination state estimation from weak, possibly localized signals.

No single marker on the documents list is reliable, so every quantity is
resolved through an ordered chain of independent signals. ``estimate``
never raises: if nothing at all is found it returns the prior state with a
default page size.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from bs4 import Tag

from eta_exporter.invoice_sync.amounts import normalize_digits
from eta_exporter.invoice_sync.models import DEFAULT_PAGE_SIZE, PaginationState
from eta_exporter.invoice_sync.rows import discover_rows
from eta_exporter.invoice_sync.signals import Signal, SignalHit, first_signal, positive_int
from eta_exporter.invoice_sync.snapshot import (
    Snapshot,
    class_list,
    is_emphasized,
    is_visible,
    iter_ancestors,
    label_of,
    text_of,
    value_of,
)
from eta_exporter.json_logger import JsonLogger, log_event

COMMON_PAGE_SIZES = (10, 20, 25, 30, 50, 100)
PAGE_SIZE_TOLERANCE = 2
MAX_DIRECT_PAGE_SIZE = 200

NAVIGATION_REGION_SELECTORS = [
    '[role="navigation"]',
    "nav",
    '[class*="pagination" i]',
    '[class*="paging" i]',
    '[class*="pager" i]',
    '[aria-label*="pagination" i]',
    '[aria-label*="الصفحات"]',
]
PAGING_CONTROL_SELECTORS = ["button", "a", "li", "span", '[role="button"]', '[role="tab"]', '[role="link"]']
PAGE_SIZE_CONTROL_SELECTORS = ["select", '[role="combobox"]', ".ms-Dropdown", ".ms-Dropdown-title"]
PAGE_QUERY_KEYS = ("page", "pageNumber", "pageNo", "PageNo", "currentPage", "p")

_NUM = r"\d[\d,]*"
RESULTS_RE = re.compile(rf"(?:Results|Total results|عدد النتائج|النتائج)\s*[:：]\s*({_NUM})", re.I)
RANGE_PATTERNS: List[tuple[re.Pattern[str], tuple[int, int, int]]] = [
    # "1 - 50 of 304", "1–50 من 304"
    (re.compile(rf"(\d+)\s*[-–—]\s*(\d+)\s*(?:of|من|out of)\s*({_NUM})", re.I), (0, 1, 2)),
    # "Showing 1 to 50 of 304", "عرض 1 إلى 50 من 304"
    (re.compile(rf"(\d+)\s*(?:to|إلى|الى)\s*(\d+)\s*(?:of|من)\s*({_NUM})", re.I), (0, 1, 2)),
    # Right-to-left rendering: "304 من 50 - 1"
    (re.compile(rf"({_NUM})\s*من\s*(\d+)\s*[-–—]\s*(\d+)"), (2, 1, 0)),
]
LABELED_TOTAL_RE = re.compile(rf"(?:total|records|إجمالي|الإجمالي|المجموع)\D{{0,20}}?({_NUM})", re.I)
PAGE_SIZE_PHRASE_RE = re.compile(r"per\s*page|page\s*size|rows\s*per|في الصفحة|لكل صفحة|حجم الصفحة|بالصفحة", re.I)
PAGE_OF_RE = re.compile(r"(?:page|صفحة|الصفحة)\s*(\d+)\s*(?:of|من|/)\s*(\d+)", re.I)
PAGE_LABEL_RE = re.compile(r"^(?:go to\s+)?(?:page|صفحة|الصفحة|انتقل إلى الصفحة)?\s*(\d{1,4})$", re.I)
PAGE_SIZE_LABEL_RE = re.compile(r"page\s*size|per\s*page|pagesize|rows|items|عدد|حجم", re.I)
ACTIVE_CLASS_RE = re.compile(r"active|selected|current|is-checked|is-active", re.I)


def _to_int(raw: str | None) -> Optional[int]:
    if raw is None:
        return None
    digits = normalize_digits(str(raw)).replace(",", "").strip()
    if not digits.isdigit():
        return None
    return int(digits)


@dataclass
class PagingControl:
    number: int
    element: Tag


@dataclass
class PaginationSignals:
    """Raw per-snapshot inputs shared by every signal function."""

    snapshot: Snapshot
    text: str
    regions: List[Tag]
    controls: List[PagingControl]
    row_count: int
    prior: PaginationState
    current_page: int = 1
    preliminary_total_pages: int = 1
    range_marker: Optional[tuple[int, int, int]] = None
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def max_control_number(self) -> int:
        visible = [control.number for control in self.controls if is_visible(control.element)]
        return max(visible) if visible else 0

    @property
    def is_interior_page(self) -> bool:
        if self.range_marker is not None:
            _, end, total = self.range_marker
            return end < total
        return self.current_page < self.preliminary_total_pages


@dataclass
class PaginationEstimate:
    state: PaginationState
    sources: Dict[str, str] = field(default_factory=dict)
    weak_total: bool = False
    fallback: bool = False


# ── Shared scanning helpers ─────────────────────────────────────────────────


def find_navigation_regions(snapshot: Snapshot) -> List[Tag]:
    regions = snapshot.select_many(NAVIGATION_REGION_SELECTORS)
    members = {id(region) for region in regions}
    return [
        region
        for region in regions
        if not any(id(node) in members for node in iter_ancestors(region, include_self=False))
    ]


def inside_row(element: Tag) -> bool:
    for node in iter_ancestors(element, include_self=False):
        if node.name == "tr" or node.get("role") == "row":
            return True
    return False


def inside_dropdown(element: Tag) -> bool:
    for node in iter_ancestors(element):
        if node.name == "select" or node.get("role") in {"combobox", "listbox", "option"}:
            return True
        if any(name.startswith("ms-Dropdown") for name in class_list(node)):
            return True
    return False


def find_paging_controls(snapshot: Snapshot, regions: List[Tag] | None = None) -> List[PagingControl]:
    """Numeric paging controls, innermost element per number and position."""

    regions = find_navigation_regions(snapshot) if regions is None else regions
    scopes: List[Tag] = list(regions)
    candidates: List[Tag] = []
    if scopes:
        for scope in scopes:
            for selector in PAGING_CONTROL_SELECTORS:
                candidates.extend(scope.select(selector))
    else:
        candidates = [
            element
            for element in snapshot.select_many(["button", '[role="button"]'])
            if not inside_row(element)
        ]

    controls: List[PagingControl] = []
    seen: set[int] = set()
    for element in candidates:
        if id(element) in seen:
            continue
        seen.add(id(element))
        if inside_dropdown(element):
            continue
        match = PAGE_LABEL_RE.match(normalize_digits(label_of(element)))
        if not match:
            continue
        controls.append(PagingControl(number=int(match.group(1)), element=element))

    # Drop wrappers (li > a > span all reading "3"); keep the innermost node.
    members = {id(control.element) for control in controls}
    return [
        control
        for control in controls
        if not any(
            id(descendant) in members
            for descendant in control.element.find_all(True)
        )
    ]


def parse_range_marker(text: str) -> Optional[tuple[int, int, int]]:
    normalized = normalize_digits(text)
    for pattern, (start_idx, end_idx, total_idx) in RANGE_PATTERNS:
        for match in pattern.finditer(normalized):
            groups = match.groups()
            start = _to_int(groups[start_idx])
            end = _to_int(groups[end_idx])
            total = _to_int(groups[total_idx])
            if start is None or end is None or total is None:
                continue
            start, end = min(start, end), max(start, end)
            if 0 < start <= end <= total:
                return start, end, total
    return None


# ── Total-count signals ─────────────────────────────────────────────────────


def _results_marker(ctx: PaginationSignals) -> Optional[int]:
    match = RESULTS_RE.search(ctx.text)
    return _to_int(match.group(1)) if match else None


def _range_total(ctx: PaginationSignals) -> Optional[int]:
    return ctx.range_marker[2] if ctx.range_marker else None


def _region_label_text(region: Tag) -> str:
    # Option lists of a page-size selector are not part of any label.
    parts = [
        str(node)
        for node in region.find_all(string=True)
        if isinstance(node.parent, Tag) and not inside_dropdown(node.parent)
    ]
    return normalize_digits(" ".join(" ".join(parts).split()))


def _labeled_total(ctx: PaginationSignals) -> Optional[int]:
    # Counts below the rows the visible controls imply are page sizes, not totals.
    floor = (ctx.max_control_number - 1) * ctx.page_size if ctx.max_control_number > 1 else 0
    for region in ctx.regions:
        text = _region_label_text(region)
        for match in LABELED_TOTAL_RE.finditer(text):
            lead = re.split(r"\d", text[: match.start()])[-1]
            if PAGE_SIZE_PHRASE_RE.search(lead + match.group(0)):
                continue
            value = _to_int(match.group(1))
            if value and value >= floor:
                return value
    return None


def _max_page_times_size(ctx: PaginationSignals) -> Optional[int]:
    highest = ctx.max_control_number
    return highest * ctx.page_size if highest else None


def _single_page_rows(ctx: PaginationSignals) -> Optional[int]:
    if ctx.controls or ctx.current_page != 1:
        return None
    return ctx.row_count or None


TOTAL_COUNT_SIGNALS: List[Signal[int]] = [
    Signal("results_marker", _results_marker),
    Signal("range_marker", _range_total),
    Signal("labeled_total", _labeled_total),
    Signal("max_page_times_size", _max_page_times_size, weak=True),
    Signal("single_page_rows", _single_page_rows, weak=True),
]


# ── Current-page signals ────────────────────────────────────────────────────


def _has_active_marker(element: Tag) -> bool:
    current = element.get("aria-current")
    if current is not None and str(current).lower() not in {"false", ""}:
        return True
    for attr in ("aria-selected", "aria-pressed", "aria-checked", "data-selected", "data-active"):
        if str(element.get(attr, "")).lower() == "true":
            return True
    return any(ACTIVE_CLASS_RE.search(name) for name in class_list(element))


def _marked_control(ctx: PaginationSignals) -> Optional[int]:
    for control in ctx.controls:
        # The marker may sit on the control or on its list-item wrapper.
        for node in list(iter_ancestors(control.element))[:3]:
            if _has_active_marker(node):
                return control.number
    return None


def _styled_control(ctx: PaginationSignals) -> Optional[int]:
    styled = {
        control.number
        for control in ctx.controls
        if any(is_emphasized(node) for node in list(iter_ancestors(control.element))[:2])
    }
    if len(styled) == 1:
        return styled.pop()
    return None


def _query_parameter(ctx: PaginationSignals) -> Optional[int]:
    params = ctx.snapshot.query_params()
    for key in PAGE_QUERY_KEYS:
        for raw in params.get(key, []):
            value = _to_int(raw)
            if value:
                return value
    return None


def _page_of_current(ctx: PaginationSignals) -> Optional[int]:
    match = PAGE_OF_RE.search(ctx.text)
    if not match:
        return None
    current, total = int(match.group(1)), int(match.group(2))
    return current if 0 < current <= total else None


CURRENT_PAGE_SIGNALS: List[Signal[int]] = [
    Signal("marked_control", _marked_control),
    Signal("styled_control", _styled_control),
    Signal("query_parameter", _query_parameter),
    Signal("page_of_marker", _page_of_current),
]


# ── Page-size signals ───────────────────────────────────────────────────────


def _observed_rows(ctx: PaginationSignals) -> Optional[int]:
    if not ctx.is_interior_page or ctx.row_count <= 0:
        return None
    for size in COMMON_PAGE_SIZES:
        if abs(ctx.row_count - size) <= PAGE_SIZE_TOLERANCE:
            return size
    if ctx.row_count <= MAX_DIRECT_PAGE_SIZE:
        return ctx.row_count
    return None


def _size_selector(ctx: PaginationSignals) -> Optional[int]:
    for element in ctx.snapshot.select_many(PAGE_SIZE_CONTROL_SELECTORS):
        label = " ".join(
            str(element.get(attr) or "") for attr in ("aria-label", "name", "id", "title")
        )
        in_region = any(
            id(node) in {id(region) for region in ctx.regions} for node in iter_ancestors(element)
        )
        if not in_region and not PAGE_SIZE_LABEL_RE.search(label):
            continue
        raw = value_of(element)
        if element.name == "select":
            selected = element.find("option", selected=True)
            if selected is not None and not element.get("data-eta-value"):
                raw = selected.get("value") or text_of(selected)
        value = _to_int(raw.split()[0] if raw.split() else raw)
        if value and 0 < value <= 500:
            return value
    return None


def _range_size(ctx: PaginationSignals) -> Optional[int]:
    if ctx.range_marker is None:
        return None
    start, end, total = ctx.range_marker
    if end < total or start == 1:
        return end - start + 1
    return None


PAGE_SIZE_SIGNALS: List[Signal[int]] = [
    Signal("observed_rows", _observed_rows),
    Signal("size_selector", _size_selector),
    Signal("range_size", _range_size),
]


# ── Estimation ──────────────────────────────────────────────────────────────


def _page_of_marker(text: str) -> Optional[tuple[int, int]]:
    match = PAGE_OF_RE.search(normalize_digits(text))
    if not match:
        return None
    current, total = int(match.group(1)), int(match.group(2))
    if 0 < current <= total:
        return current, total
    return None


def estimate_with_sources(
    snapshot: Snapshot,
    prior: PaginationState | None = None,
    *,
    observed_page_size: int | None = None,
    row_count: int | None = None,
) -> PaginationEstimate:
    prior = prior or PaginationState()
    text = normalize_digits(snapshot.body_text())
    regions = find_navigation_regions(snapshot)
    controls = find_paging_controls(snapshot, regions)
    if row_count is None:
        row_count = len(discover_rows(snapshot).rows)

    ctx = PaginationSignals(
        snapshot=snapshot,
        text=text,
        regions=regions,
        controls=controls,
        row_count=row_count,
        prior=prior,
        range_marker=parse_range_marker(text),
    )
    sources: Dict[str, str] = {}

    current_hit = first_signal(CURRENT_PAGE_SIGNALS, ctx, accept=positive_int)
    ctx.current_page = current_hit.value if current_hit else (prior.current_page or 1)
    sources["current_page"] = current_hit.name if current_hit else "prior"

    page_of = _page_of_marker(text)
    ctx.preliminary_total_pages = max(
        page_of[1] if page_of else 0,
        ctx.max_control_number,
        ctx.current_page,
    )

    size_hit: Optional[SignalHit[int]]
    if observed_page_size:
        size_hit = SignalHit(name="observed_page_size", value=observed_page_size)
    else:
        size_hit = first_signal(PAGE_SIZE_SIGNALS, ctx, accept=positive_int)
    ctx.page_size = size_hit.value if size_hit else DEFAULT_PAGE_SIZE
    sources["page_size"] = size_hit.name if size_hit else "default"

    total_hit = first_signal(TOTAL_COUNT_SIGNALS, ctx, accept=positive_int)
    sources["total_count"] = total_hit.name if total_hit else "prior"

    if current_hit is None and size_hit is None and total_hit is None and not controls and page_of is None:
        return PaginationEstimate(
            state=PaginationState.fallback(prior), sources={"all": "fallback"}, weak_total=True, fallback=True
        )

    total_count = total_hit.value if total_hit else (prior.total_count or 0)
    if page_of:
        total_pages = page_of[1]
        sources["total_pages"] = "page_of_marker"
    else:
        derived = math.ceil(total_count / ctx.page_size) if total_count else 0
        total_pages = max(ctx.max_control_number, derived, ctx.current_page, 1)
        sources["total_pages"] = "derived"
    total_pages = max(total_pages, ctx.current_page)

    state = PaginationState(
        current_page=ctx.current_page,
        total_pages=total_pages,
        total_count=total_count,
        page_size=ctx.page_size,
    )
    return PaginationEstimate(
        state=state,
        sources=sources,
        weak_total=total_hit is None or total_hit.weak,
    )


def estimate(
    snapshot: Snapshot,
    prior: PaginationState | None = None,
    *,
    observed_page_size: int | None = None,
    logger: JsonLogger | None = None,
) -> PaginationState:
    return estimate_detailed(snapshot, prior, observed_page_size=observed_page_size, logger=logger).state


def estimate_detailed(
    snapshot: Snapshot,
    prior: PaginationState | None = None,
    *,
    observed_page_size: int | None = None,
    logger: JsonLogger | None = None,
) -> PaginationEstimate:
    try:
        result = estimate_with_sources(snapshot, prior, observed_page_size=observed_page_size)
    except Exception as exc:
        if logger is not None:
            log_event(
                logger=logger,
                phase="pagination",
                status="warn",
                message="Pagination estimate failed; using fallback state",
                error=str(exc),
            )
        return PaginationEstimate(state=PaginationState.fallback(prior), weak_total=True, fallback=True)
    if logger is not None:
        log_event(
            logger=logger,
            phase="pagination",
            message="Pagination state estimated",
            **result.state.to_payload(),
            sources=result.sources,
        )
    return result
