"""Row discovery and per-row record extraction for the documents list."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from bs4 import Tag

from eta_exporter.invoice_sync.amounts import (
    AMOUNT_TEXT_RE,
    format_amount,
    has_currency,
    normalize_digits,
    parse_amount,
    split_vat,
)
from eta_exporter.invoice_sync.models import RECORD_DEFAULTS, Record
from eta_exporter.invoice_sync.settings import EngineSettings
from eta_exporter.invoice_sync.snapshot import (
    Snapshot,
    class_list,
    is_visible,
    iter_ancestors,
    text_of,
    text_parts,
)

# Strict pass: the first family with a visible, data-bearing row wins.
ROW_SELECTOR_FAMILIES: List[tuple[str, List[str]]] = [
    ("role", ['[role="row"]']),
    ("list_cell", [".ms-List-cell", ".ms-DetailsRow", '[role="listitem"]', "tbody > tr"]),
    ("index_attribute", ["[data-list-index]", "[data-item-index]", "[data-selection-index]", "[aria-rowindex]"]),
]

# Loose pass: broader matches mapped back to their enclosing row.
LOOSE_SELECTOR_FAMILIES: List[tuple[str, List[str]]] = [
    ("table_row", ["tr"]),
    ("grid_cell", ['[role="gridcell"]', '[data-automationid="DetailsRowCell"]', "[data-automation-key]"]),
    ("class_row", ['div[class*="row" i]', 'div[class*="item" i]']),
    ("list_item", ["li"]),
]

CELL_SELECTORS = ['[role="gridcell"]', '[data-automationid="DetailsRowCell"]', "td"]
KEYED_CELL_ATTRS = ("data-automation-key", "data-field", "data-column-key", "col-id", "data-key")

IDENTIFIER_TOKEN_RE = re.compile(r"\b(?=[A-Za-z0-9]*\d)(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{16,40}\b")
INTERNAL_NUMBER_RE = re.compile(r"\b[A-Za-z]{2,10}[-/_]?\d{2,}[A-Za-z0-9-]*\b")
DATE_RE = re.compile(r"\b(\d{1,2}/\d{1,2}/\d{4}|\d{4}/\d{1,2}/\d{1,2})\b")
TIME_RE = re.compile(r"\b(\d{1,2}:\d{2}(?::\d{2})?(?:\s*(?:AM|PM|ص|م))?)", re.I)
DECIMAL_AMOUNT_RE = re.compile(r"\d[\d,]*\.\d{2}\b")
CURRENCY_AMOUNT_RE = re.compile(
    r"(?:(EGP|USD|EUR|ج\.م\.?|جنيه)\s*(\d[\d,]*(?:\.\d+)?))|(?:(\d[\d,]*(?:\.\d+)?)\s*(EGP|USD|EUR|ج\.م\.?|جنيه))",
    re.I,
)
TAX_ID_RE = re.compile(r"^\d[\d-]{6,}$")
VERSION_RE = re.compile(r"(\d+(?:\.\d+)?)")
DOCUMENT_LINK_RE = re.compile(r"/documents/([A-Za-z0-9]+)(?:/share/([A-Za-z0-9]+))?")
STATUS_ARROW = " → "

# Column order of the classic 24-column documents table.
LEGACY_TABLE_COLUMNS: Dict[int, str] = {
    2: "document_type",
    3: "document_version",
    4: "status",
    5: "issue_date",
    6: "submission_date",
    7: "invoice_currency",
    8: "invoice_value",
    9: "vat_amount",
    10: "tax_discount",
    11: "total_amount",
    12: "internal_number",
    13: "electronic_number",
    14: "seller_tax_number",
    15: "seller_name",
    16: "buyer_tax_number",
    17: "buyer_name",
    18: "purchase_order_ref",
    19: "purchase_order_desc",
    20: "sales_order_ref",
    21: "electronic_signature",
    22: "food_drug_guide",
    23: "external_link",
}
LEGACY_AMOUNT_FIELDS = {"invoice_value", "vat_amount", "total_amount"}


@dataclass
class RowDiscovery:
    family: str | None
    rows: List[Tag] = field(default_factory=list)
    loose: bool = False


FieldMap = Dict[str, str]


def _put(fields: FieldMap, key: str, value: str | None) -> None:
    # First writer wins.
    if key in fields:
        return
    cleaned = " ".join((value or "").split())
    if cleaned:
        fields[key] = cleaned


def _put_total(fields: FieldMap, raw: str) -> None:
    if "total_amount" in fields:
        return
    amount = parse_amount(raw)
    if amount is None:
        return
    net, vat = split_vat(amount)
    _put(fields, "total_amount", format_amount(amount))
    _put(fields, "vat_amount", format_amount(vat))
    _put(fields, "invoice_value", format_amount(net))
    currency = CURRENCY_AMOUNT_RE.search(raw or "")
    if currency:
        _put(fields, "invoice_currency", currency.group(1) or currency.group(4))


# ── Row discovery ───────────────────────────────────────────────────────────


def _is_header_row(row: Tag) -> bool:
    if row.find(attrs={"role": "columnheader"}) is not None or row.find("th") is not None:
        return True
    return any(node.name == "thead" for node in iter_ancestors(row, include_self=False))


def is_data_bearing(row: Tag) -> bool:
    text = normalize_digits(text_of(row))
    if IDENTIFIER_TOKEN_RE.search(text):
        return True
    if INTERNAL_NUMBER_RE.search(text):
        return True
    if row.find("a", href=DOCUMENT_LINK_RE) is not None:
        return True
    if DECIMAL_AMOUNT_RE.search(text) or CURRENCY_AMOUNT_RE.search(text):
        return True
    return False


def _qualifies(row: Tag) -> bool:
    return is_visible(row) and not _is_header_row(row) and is_data_bearing(row)


def _outermost(elements: Sequence[Tag]) -> List[Tag]:
    members = {id(element) for element in elements}
    return [
        element
        for element in elements
        if not any(id(node) in members for node in iter_ancestors(element, include_self=False))
    ]


def _enclosing_row(element: Tag) -> Tag:
    for node in iter_ancestors(element):
        if node.name in {"body", "html"}:
            break
        if _matches_row_like(node):
            return node
    return element


def _matches_row_like(node: Tag) -> bool:
    if node.name == "tr" or node.get("role") in {"row", "listitem"}:
        return True
    if any(node.has_attr(attr) for attr in ("data-list-index", "data-item-index", "data-selection-index", "aria-rowindex")):
        return True
    classes = class_list(node)
    return "ms-DetailsRow" in classes or "ms-List-cell" in classes


def discover_rows(snapshot: Snapshot) -> RowDiscovery:
    for family, selectors in ROW_SELECTOR_FAMILIES:
        candidates = _outermost(snapshot.select_many(selectors))
        rows = [row for row in candidates if _qualifies(row)]
        if rows:
            return RowDiscovery(family=family, rows=rows)

    seen: set[int] = set()
    rows: List[Tag] = []
    family_hit: str | None = None
    for family, selectors in LOOSE_SELECTOR_FAMILIES:
        for element in snapshot.select_many(selectors):
            row = _enclosing_row(element)
            if id(row) in seen:
                continue
            seen.add(id(row))
            if _qualifies(row):
                rows.append(row)
                family_hit = family_hit or family
    rows = _outermost(rows)
    return RowDiscovery(family=family_hit, rows=rows, loose=True)


# ── Strategy 1: attribute-keyed cells ───────────────────────────────────────


def _cell_key(cell: Tag) -> str:
    for attr in KEYED_CELL_ATTRS:
        raw = cell.get(attr)
        if raw:
            return re.sub(r"[^a-z0-9]", "", str(raw).lower())
    return ""


def _keyed_cells(row: Tag) -> Dict[str, Tag]:
    cells: Dict[str, Tag] = {}
    for attr in KEYED_CELL_ATTRS:
        for cell in row.find_all(attrs={attr: True}):
            key = _cell_key(cell)
            if key and key not in cells:
                cells[key] = cell
    return cells


def _first_key(cells: Dict[str, Tag], keys: Sequence[str]) -> Optional[Tag]:
    for key in keys:
        if key in cells:
            return cells[key]
    return None


def _identifier_from_cell(fields: FieldMap, cell: Tag) -> None:
    link = cell.find("a")
    parts = text_parts(cell)
    if link is not None:
        _put(fields, "electronic_number", text_of(link))
        href = link.get("href") or ""
        match = DOCUMENT_LINK_RE.search(str(href))
        if match:
            _put(fields, "electronic_number", match.group(1))
            _put(fields, "submission_id", match.group(2))
    elif parts:
        _put(fields, "electronic_number", parts[0])
    leftover = [part for part in parts if part != fields.get("electronic_number")]
    if leftover:
        _put(fields, "internal_number", leftover[0])


def _pair(cell: Tag) -> tuple[str, str]:
    parts = text_parts(cell)
    first = parts[0] if parts else ""
    second = parts[1] if len(parts) > 1 else ""
    return first, second


def _party_from_cell(fields: FieldMap, cell: Tag, *, prefix: str) -> None:
    parts = text_parts(cell)
    tax_ids = [part for part in parts if TAX_ID_RE.match(normalize_digits(part))]
    names = [part for part in parts if part not in tax_ids]
    if names:
        _put(fields, f"{prefix}_name", names[0])
    if tax_ids:
        _put(fields, f"{prefix}_tax_number", normalize_digits(tax_ids[0]))


def _date_time_from_cell(fields: FieldMap, cell: Tag, *, date_key: str, time_key: str | None) -> None:
    text = normalize_digits(text_of(cell))
    date_match = DATE_RE.search(text)
    first, second = _pair(cell)
    _put(fields, date_key, date_match.group(1) if date_match else first)
    if time_key:
        time_match = TIME_RE.search(text)
        _put(fields, time_key, time_match.group(1) if time_match else second)


def _status_from_cell(fields: FieldMap, cell: Tag) -> None:
    parts = text_parts(cell)
    if len(parts) >= 2 and parts[0] != parts[1]:
        _put(fields, "status", f"{parts[0]}{STATUS_ARROW}{parts[1]}")
    elif parts:
        _put(fields, "status", parts[0])


def _keyed_strategy(row: Tag, fields: FieldMap) -> None:
    cells = _keyed_cells(row)
    if not cells:
        return

    cell = _first_key(cells, ("uuid", "documentuuid", "electronicnumber", "id"))
    if cell is not None:
        _identifier_from_cell(fields, cell)
    cell = _first_key(cells, ("internalid", "internalnumber"))
    if cell is not None:
        _put(fields, "internal_number", text_of(cell))
    cell = _first_key(cells, ("datetimeissued", "issuedate", "dateissued", "date"))
    if cell is not None:
        _date_time_from_cell(fields, cell, date_key="issue_date", time_key="issue_time")
    cell = _first_key(cells, ("datetimereceived", "submissiondate", "datereceived"))
    if cell is not None:
        _date_time_from_cell(fields, cell, date_key="submission_date", time_key=None)
        _date_time_from_cell(fields, cell, date_key="issue_date", time_key="issue_time")
    cell = _first_key(cells, ("typename", "documenttype", "type"))
    if cell is not None:
        doc_type, version = _pair(cell)
        _put(fields, "document_type", doc_type)
        version_match = VERSION_RE.search(version)
        _put(fields, "document_version", version_match.group(1) if version_match else version)
    cell = _first_key(cells, ("total", "totalamount", "totalsales"))
    if cell is not None:
        _put_total(fields, text_of(cell))
    cell = _first_key(cells, ("issuername", "issuer", "sellername"))
    if cell is not None:
        _party_from_cell(fields, cell, prefix="seller")
    cell = _first_key(cells, ("issuerid", "sellerid"))
    if cell is not None:
        _put(fields, "seller_tax_number", normalize_digits(text_of(cell)))
    cell = _first_key(cells, ("receivername", "receiver", "buyername"))
    if cell is not None:
        _party_from_cell(fields, cell, prefix="buyer")
    cell = _first_key(cells, ("receiverid", "buyerid"))
    if cell is not None:
        _put(fields, "buyer_tax_number", normalize_digits(text_of(cell)))
    cell = _first_key(cells, ("status", "documentstatus"))
    if cell is not None:
        _status_from_cell(fields, cell)


# ── Strategy 2: positional cells ────────────────────────────────────────────


def _row_cells(row: Tag) -> List[Tag]:
    for selector in CELL_SELECTORS:
        try:
            cells = _outermost(list(row.select(selector)))
        except Exception:
            continue
        if cells:
            return cells
    return [child for child in row.children if isinstance(child, Tag)]


def _legacy_table(row: Tag, fields: FieldMap) -> bool:
    if row.name != "tr":
        return False
    cells = row.find_all("td", recursive=False)
    if len(cells) < 24:
        return False
    for index, key in LEGACY_TABLE_COLUMNS.items():
        value = text_of(cells[index])
        if key == "total_amount":
            _put_total(fields, value)
        elif key in LEGACY_AMOUNT_FIELDS:
            amount = parse_amount(value)
            _put(fields, key, format_amount(amount) if amount is not None else value)
        else:
            _put(fields, key, value)
    return True


def _positional_strategy(row: Tag, fields: FieldMap) -> None:
    if _legacy_table(row, fields):
        return
    cells = _row_cells(row)
    if not cells:
        return

    early = cells[: min(len(cells), 4)]
    for cell in early:
        link = cell.find("a")
        if link is not None and text_of(link):
            _identifier_from_cell(fields, cell)
            break

    middle = cells[1:-1] if len(cells) > 2 else cells
    amount_cell = next((cell for cell in middle if has_currency(text_of(cell)) and parse_amount(text_of(cell)) is not None), None)
    if amount_cell is None:
        amount_cell = next(
            (
                cell
                for cell in middle
                if AMOUNT_TEXT_RE.match(normalize_digits(text_of(cell))) and DECIMAL_AMOUNT_RE.search(normalize_digits(text_of(cell)))
            ),
            None,
        )
    if amount_cell is not None:
        _put_total(fields, text_of(amount_cell))

    for cell in cells:
        text = normalize_digits(text_of(cell))
        date_match = DATE_RE.search(text)
        if date_match:
            _put(fields, "issue_date", date_match.group(1))
            time_match = TIME_RE.search(text)
            if time_match:
                _put(fields, "issue_time", time_match.group(1))
            break


# ── Strategy 3: free text ───────────────────────────────────────────────────


def _free_text_strategy(row: Tag, fields: FieldMap) -> None:
    text = normalize_digits(text_of(row))
    token = IDENTIFIER_TOKEN_RE.search(text)
    if token:
        _put(fields, "electronic_number", token.group(0))
    if "electronic_number" not in fields and "internal_number" not in fields:
        internal = INTERNAL_NUMBER_RE.search(text)
        if internal:
            _put(fields, "internal_number", internal.group(0))
    date_match = DATE_RE.search(text)
    if date_match:
        _put(fields, "issue_date", date_match.group(1))
    amount = CURRENCY_AMOUNT_RE.search(text)
    if amount:
        _put_total(fields, amount.group(0))


FIELD_STRATEGIES: List[tuple[str, Callable[[Tag, FieldMap], None]]] = [
    ("keyed", _keyed_strategy),
    ("positional", _positional_strategy),
    ("free_text", _free_text_strategy),
]


def extract_row(row: Tag, *, settings: EngineSettings | None = None) -> Record | None:
    """Build a record from one row, or ``None`` when it fails validation."""

    fields: FieldMap = {}
    for _name, strategy in FIELD_STRATEGIES:
        try:
            strategy(row, fields)
        except Exception:
            # A failing strategy contributes nothing; the next one still runs.
            continue

    for key, default in RECORD_DEFAULTS.items():
        fields.setdefault(key, default)
    record = Record(**fields)
    if not record.is_valid():
        return None
    if not record.external_link:
        record.external_link = (settings or EngineSettings()).share_link(
            record.electronic_number, record.submission_id
        )
    return record


def extract_records(snapshot: Snapshot, *, settings: EngineSettings | None = None) -> List[Record]:
    discovery = discover_rows(snapshot)
    records: List[Record] = []
    for row in discovery.rows:
        record = extract_row(row, settings=settings)
        if record is None:
            continue
        record.serial_number = len(records) + 1
        records.append(record)
    return records
