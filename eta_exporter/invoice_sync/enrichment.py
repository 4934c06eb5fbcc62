"""Detail-view enrichment: party addresses and line items for one invoice.

Every visit to a detail view ends with a return to the documents list, and
the return is checked rather than assumed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from bs4 import Tag

from eta_exporter.invoice_sync.amounts import normalize_digits
from eta_exporter.invoice_sync.models import ADDRESS_SENTINEL, AddressOptions, AddressResult, LineItem
from eta_exporter.invoice_sync.pagination import find_navigation_regions
from eta_exporter.invoice_sync.readiness import wait_for_detail_ready, wait_for_list_ready
from eta_exporter.invoice_sync.rows import discover_rows
from eta_exporter.invoice_sync.settings import EngineSettings
from eta_exporter.invoice_sync.snapshot import Snapshot, is_visible, label_of, text_of, value_of
from eta_exporter.invoice_sync.view import ListView
from eta_exporter.json_logger import JsonLogger, log_event

ADDRESS_WORD_RE = re.compile(r"العنوان|عنوان|address", re.I)
DETAIL_PATH_RE = re.compile(r"/documents/[A-Za-z0-9]{8,}")
BACK_TO_LIST_RE = re.compile(
    r"^(?:back|back to (?:list|documents)|العودة|رجوع|العودة إلى القائمة|العودة للمستندات|المستندات|documents)$",
    re.I,
)
SUMMARY_LINE_DESCRIPTION = "إجمالي قيمة الفاتورة"


@dataclass(frozen=True)
class AddressSide:
    name: str
    field_ids: Sequence[str]
    markers: Sequence[str]
    section_selectors: Sequence[str]


SELLER_SIDE = AddressSide(
    name="seller",
    field_ids=("TextField49",),
    markers=("البائع", "المصدر", "المُصدر", "Issuer", "Seller"),
    section_selectors=(
        ".issuer textarea",
        ".issuer .ms-TextField-field",
        ".issuerAddress textarea",
        '[class*="issuer" i] textarea',
    ),
)
BUYER_SIDE = AddressSide(
    name="buyer",
    field_ids=("TextField64",),
    markers=("المشتري", "المستلم", "المُستلم", "Receiver", "Buyer"),
    section_selectors=(
        ".receiver textarea",
        ".receiverAddress textarea",
        ".receiver .ms-TextField-field",
        '[class*="receiver" i] textarea',
    ),
)


def normalize_address(raw: str | None) -> str:
    cleaned = " ".join((raw or "").split())
    return cleaned or ADDRESS_SENTINEL


def _usable(raw: str | None) -> Optional[str]:
    cleaned = " ".join((raw or "").split())
    if not cleaned or cleaned == ADDRESS_SENTINEL:
        return None
    return cleaned


def _marker_re(side: AddressSide) -> re.Pattern[str]:
    return re.compile("|".join(re.escape(marker) for marker in side.markers), re.I)


# ── Address tiers ───────────────────────────────────────────────────────────


def _by_field_id(snapshot: Snapshot, side: AddressSide) -> Optional[str]:
    for field_id in side.field_ids:
        for element in snapshot.select_many(
            [f"#{field_id}", f'textarea[id*="{field_id}"]', f'input[id*="{field_id}"]']
        ):
            value = _usable(value_of(element))
            if value:
                return value
    return None


def _by_label(snapshot: Snapshot, side: AddressSide) -> Optional[str]:
    markers = _marker_re(side)
    for label in snapshot.select_many(["label", ".ms-Label", '[class*="label" i]']):
        text = text_of(label)
        if len(text) > 80 or not markers.search(text) or not ADDRESS_WORD_RE.search(text):
            continue
        target = label.get("for")
        if target:
            bound = snapshot.select(f'[id="{target}"]')
            if bound:
                value = _usable(value_of(bound[0]))
                if value:
                    return value
        container: Optional[Tag] = label.parent
        for _ in range(3):
            if container is None:
                break
            field = container.find(["textarea", "input"])
            if field is not None and field.get("type") != "hidden":
                value = _usable(value_of(field))
                if value:
                    return value
            container = container.parent
    return None


def _by_section(snapshot: Snapshot, side: AddressSide) -> Optional[str]:
    for element in snapshot.select_many(side.section_selectors):
        value = _usable(value_of(element))
        if value:
            return value
    return None


def _by_body_text(snapshot: Snapshot, side: AddressSide) -> Optional[str]:
    text = snapshot.body_text()
    pattern = re.compile(
        rf"(?:{_marker_re(side).pattern})[\s\S]{{0,300}}?(?:العنوان|عنوان|Address)\s*[:：]?\s*\n?([^\n]{{4,300}})",
        re.I,
    )
    match = pattern.search(text)
    return _usable(match.group(1)) if match else None


ADDRESS_TIERS = [
    ("field_id", _by_field_id),
    ("label", _by_label),
    ("section", _by_section),
    ("body_text", _by_body_text),
]


def lookup_address(snapshot: Snapshot, side: AddressSide) -> tuple[str, Optional[str]]:
    """Return the address for one party and the tier that found it."""

    for tier, lookup in ADDRESS_TIERS:
        try:
            value = lookup(snapshot, side)
        except Exception:
            continue
        if value:
            return value, tier
    return ADDRESS_SENTINEL, None


def lookup_addresses(snapshot: Snapshot, options: AddressOptions) -> Dict[str, tuple[str, Optional[str]]]:
    found: Dict[str, tuple[str, Optional[str]]] = {
        "seller": (ADDRESS_SENTINEL, None),
        "buyer": (ADDRESS_SENTINEL, None),
    }
    if options.seller_address:
        found["seller"] = lookup_address(snapshot, SELLER_SIDE)
    if options.buyer_address:
        found["buyer"] = lookup_address(snapshot, BUYER_SIDE)
    return found


# ── Main-list check ─────────────────────────────────────────────────────────


def is_detail_path(path: str) -> bool:
    return bool(DETAIL_PATH_RE.search(path))


def looks_like_main_list(snapshot: Snapshot, settings: EngineSettings) -> bool:
    """At least two of: list URL, a populated grid, a pagination region."""

    path = snapshot.path
    url_ok = settings.documents_path in path and not is_detail_path(path)
    grid_ok = len(discover_rows(snapshot).rows) >= 2 or bool(snapshot.select('[role="grid"]'))
    paging_ok = bool(find_navigation_regions(snapshot))
    return sum((url_ok, grid_ok, paging_ok)) >= 2


def _back_to_list_control(snapshot: Snapshot) -> Optional[Tag]:
    for element in snapshot.select_many(["a", "button", '[role="button"]', '[role="link"]']):
        if not is_visible(element):
            continue
        if BACK_TO_LIST_RE.match(label_of(element)):
            return element
        href = str(element.get("href") or "")
        if href.rstrip("/").endswith("/documents"):
            return element
    return None


# ── Line items ──────────────────────────────────────────────────────────────

ITEM_KEYS: Dict[str, str] = {
    "itemcode": "item_code",
    "internalcode": "item_code",
    "description": "description",
    "unittype": "unit_code",
    "unitcode": "unit_code",
    "unitname": "unit_name",
    "quantity": "quantity",
    "unitvalue": "unit_price",
    "unitprice": "unit_price",
    "salestotal": "total_value",
    "totalvalue": "total_value",
    "nettotal": "total_value",
    "taxamount": "tax_amount",
    "totaltaxablefees": "tax_amount",
    "vatamount": "vat_amount",
    "t1amount": "vat_amount",
    "totalwithvat": "total_with_vat",
    "total": "total_with_vat",
}
POSITIONAL_ITEM_FIELDS = (
    "item_code",
    "description",
    "unit_code",
    "unit_name",
    "quantity",
    "unit_price",
    "total_value",
    "tax_amount",
    "vat_amount",
    "total_with_vat",
)
_KEY_ATTRS = ("data-automation-key", "data-field", "data-column-key", "col-id", "data-key")


def _item_from_keyed(row: Tag) -> Optional[LineItem]:
    values: Dict[str, str] = {}
    for cell in row.find_all(True):
        for attr in _KEY_ATTRS:
            raw = cell.get(attr)
            if not raw:
                continue
            field_name = ITEM_KEYS.get(re.sub(r"[^a-z0-9]", "", str(raw).lower()))
            if field_name and field_name not in values:
                values[field_name] = text_of(cell)
    if len(values) < 2:
        return None
    return LineItem(**values)


def _item_from_cells(row: Tag) -> Optional[LineItem]:
    cells = row.find_all("td", recursive=False) or row.find_all(attrs={"role": "gridcell"})
    if len(cells) < 6:
        return None
    texts = [text_of(cell) for cell in cells]
    quantity = normalize_digits(texts[4]).replace(",", "")
    try:
        float(quantity)
    except ValueError:
        return None
    return LineItem(**dict(zip(POSITIONAL_ITEM_FIELDS, texts)))


def extract_line_items(snapshot: Snapshot, invoice_id: str) -> List[LineItem]:
    items: List[LineItem] = []
    rows = [row for row in snapshot.select_many(['[role="row"]', "tbody > tr", "tr"]) if is_visible(row)]
    seen: set[int] = set()
    for row in rows:
        if id(row) in seen or row.find("th") is not None or row.find(attrs={"role": "columnheader"}):
            continue
        seen.add(id(row))
        item = _item_from_keyed(row) or _item_from_cells(row)
        if item is not None:
            items.append(item)
    if items:
        return items
    return [summary_line(invoice_id)]


def summary_line(invoice_id: str) -> LineItem:
    return LineItem(
        item_code=invoice_id,
        description=SUMMARY_LINE_DESCRIPTION,
        unit_code="EA",
        unit_name="فاتورة",
        quantity="1",
        unit_price="0",
        total_value="0",
        tax_amount="0",
        vat_amount="0",
        total_with_vat="0",
    )


# ── Sub-flow ────────────────────────────────────────────────────────────────


class DetailEnricher:
    def __init__(self, view: ListView, *, settings: EngineSettings, logger: JsonLogger) -> None:
        self.view = view
        self.settings = settings
        self.logger = logger.bind(component="enrichment")

    async def _open_detail(self, invoice_id: str) -> Snapshot:
        await self.view.goto(self.settings.detail_url(invoice_id))
        readiness = await wait_for_detail_ready(self.view, settings=self.settings, logger=self.logger)
        return readiness.snapshot

    async def extract_addresses(self, invoice_id: str, options: AddressOptions) -> AddressResult:
        original_url = self.view.url
        try:
            snapshot = await self._open_detail(invoice_id)
            found = lookup_addresses(snapshot, options)
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="enrichment",
                status="warn",
                message="Detail view could not be read",
                invoice_id=invoice_id,
                error=str(exc),
                exc_type=type(exc).__name__,
            )
            returned = await self.return_to_list(original_url)
            return AddressResult(success=False, returned_to_list=returned, error=str(exc))

        seller, seller_tier = found["seller"]
        buyer, buyer_tier = found["buyer"]
        log_event(
            logger=self.logger,
            phase="enrichment",
            message="Addresses extracted",
            invoice_id=invoice_id,
            seller_tier=seller_tier,
            buyer_tier=buyer_tier,
        )
        returned = await self.return_to_list(original_url)
        return AddressResult(
            success=True,
            seller_address=seller,
            buyer_address=buyer,
            returned_to_list=returned,
        )

    async def extract_details(self, invoice_id: str) -> Dict[str, object]:
        original_url = self.view.url
        try:
            snapshot = await self._open_detail(invoice_id)
            items = extract_line_items(snapshot, invoice_id)
            found = lookup_addresses(snapshot, AddressOptions())
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="details",
                status="warn",
                message="Detail view could not be read",
                invoice_id=invoice_id,
                error=str(exc),
                exc_type=type(exc).__name__,
            )
            returned = await self.return_to_list(original_url)
            return {"success": False, "error": str(exc), "returnedToList": returned}

        log_event(
            logger=self.logger,
            phase="details",
            message="Invoice details extracted",
            invoice_id=invoice_id,
            items=len(items),
        )
        returned = await self.return_to_list(original_url)
        return {
            "success": True,
            "data": [item.to_payload() for item in items],
            "addresses": {
                "sellerAddress": found["seller"][0],
                "buyerAddress": found["buyer"][0],
            },
            "returnedToList": returned,
        }

    async def return_to_list(self, original_url: str) -> bool:
        """History back, then direct navigation, then a back-to-list control."""

        snapshot = await self._current_snapshot()
        if snapshot is not None and looks_like_main_list(snapshot, self.settings):
            return True

        attempts = []
        # An unreadable view still gets a history step.
        if snapshot is None or snapshot.can_go_back:
            attempts.append(("history_back", self._history_back))
        attempts.append(("direct", lambda: self._direct(original_url)))
        attempts.append(("back_control", self._back_control))

        for method, attempt in attempts:
            try:
                performed = await attempt()
            except Exception as exc:
                log_event(
                    logger=self.logger,
                    phase="enrichment",
                    status="warn",
                    message="Return step failed",
                    method=method,
                    error=str(exc),
                )
                continue
            if not performed:
                continue
            readiness = await wait_for_list_ready(self.view, settings=self.settings, logger=self.logger, phase="enrichment")
            if looks_like_main_list(readiness.snapshot, self.settings):
                log_event(logger=self.logger, phase="enrichment", message="Returned to documents list", method=method)
                return True

        log_event(
            logger=self.logger,
            phase="enrichment",
            status="error",
            message="Could not return to documents list",
            url=self.view.url,
        )
        return False

    async def _current_snapshot(self) -> Optional[Snapshot]:
        try:
            return await self.view.snapshot()
        except Exception as exc:
            log_event(
                logger=self.logger,
                phase="enrichment",
                status="warn",
                message="View could not be read before returning to list",
                error=str(exc),
            )
            return None

    async def _history_back(self) -> bool:
        return await self.view.go_back()

    async def _direct(self, original_url: str) -> bool:
        target = original_url
        if not target or is_detail_path(target):
            target = self.settings.portal_url.rstrip("/") + self.settings.documents_path
        await self.view.goto(target)
        return True

    async def _back_control(self) -> bool:
        control = _back_to_list_control(await self.view.snapshot())
        if control is None:
            return False
        return await self.view.click(control)
