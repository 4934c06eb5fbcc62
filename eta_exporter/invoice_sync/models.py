from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List

ADDRESS_SENTINEL = "غير محدد"
DEFAULT_DOCUMENT_TYPE = "فاتورة"
DEFAULT_DOCUMENT_VERSION = "1.0"
DEFAULT_CURRENCY = "EGP"
DEFAULT_TAX_DISCOUNT = "0"
DEFAULT_SIGNATURE = "موقع إلكترونياً"
DEFAULT_PAGE_SIZE = 50

# Fields whose value is filled in by the record extractor when no strategy
# produced one.
RECORD_DEFAULTS: Dict[str, str] = {
    "document_type": DEFAULT_DOCUMENT_TYPE,
    "document_version": DEFAULT_DOCUMENT_VERSION,
    "invoice_currency": DEFAULT_CURRENCY,
    "tax_discount": DEFAULT_TAX_DISCOUNT,
    "electronic_signature": DEFAULT_SIGNATURE,
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass
class Record:
    """One invoice row harvested from the documents list."""

    serial_number: int = 0
    electronic_number: str = ""
    internal_number: str = ""
    submission_id: str = ""
    document_type: str = ""
    document_version: str = ""
    status: str = ""
    issue_date: str = ""
    issue_time: str = ""
    submission_date: str = ""
    invoice_currency: str = ""
    invoice_value: str = ""
    vat_amount: str = ""
    tax_discount: str = ""
    total_amount: str = ""
    seller_tax_number: str = ""
    seller_name: str = ""
    seller_address: str = ADDRESS_SENTINEL
    buyer_tax_number: str = ""
    buyer_name: str = ""
    buyer_address: str = ADDRESS_SENTINEL
    purchase_order_ref: str = ""
    purchase_order_desc: str = ""
    sales_order_ref: str = ""
    electronic_signature: str = ""
    food_drug_guide: str = ""
    external_link: str = ""

    def is_valid(self) -> bool:
        return bool(self.electronic_number or self.internal_number or self.total_amount)

    def identity(self) -> str:
        """Stable key across pages; empty when the row has no electronic number."""

        return f"uuid:{self.electronic_number}" if self.electronic_number else ""

    def fingerprint(self) -> str:
        return "|".join(str(getattr(self, f.name)) for f in fields(self) if f.name != "serial_number")

    def needs_addresses(self) -> bool:
        return self.seller_address == ADDRESS_SENTINEL or self.buyer_address == ADDRESS_SENTINEL

    def to_payload(self) -> Dict[str, Any]:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class PaginationState:
    current_page: int = 1
    total_pages: int = 1
    total_count: int = 0
    page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def fallback(cls, prior: "PaginationState | None" = None) -> "PaginationState":
        if prior is None:
            return cls()
        return cls(
            current_page=prior.current_page or 1,
            total_pages=max(prior.total_pages, 1),
            total_count=prior.total_count or 0,
            page_size=DEFAULT_PAGE_SIZE,
        )

    def to_payload(self) -> Dict[str, int]:
        return {
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "totalCount": self.total_count,
            "pageSize": self.page_size,
        }


@dataclass
class AddressOptions:
    seller_address: bool = True
    buyer_address: bool = True

    @property
    def any(self) -> bool:
        return self.seller_address or self.buyer_address


@dataclass
class AddressResult:
    success: bool
    seller_address: str = ADDRESS_SENTINEL
    buyer_address: str = ADDRESS_SENTINEL
    returned_to_list: bool = False
    error: str | None = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "addresses": {
                "sellerAddress": self.seller_address,
                "buyerAddress": self.buyer_address,
            },
            "returnedToList": self.returned_to_list,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class LineItem:
    item_code: str = ""
    description: str = ""
    unit_code: str = ""
    unit_name: str = ""
    quantity: str = ""
    unit_price: str = ""
    total_value: str = ""
    tax_amount: str = ""
    vat_amount: str = ""
    total_with_vat: str = ""

    def to_payload(self) -> Dict[str, str]:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}


@dataclass
class TraversalSession:
    """Ephemeral state of one "fetch all pages" run.

    Owned by a single traversal; never shared across invocations.
    """

    expected_total: int = 0
    records: List[Record] = field(default_factory=list)
    attempts: int = 0
    current_page: int = 1
    pages_visited: int = 0
    observed_page_size: int | None = None
    aborted: bool = False
    seen: set[str] = field(default_factory=set)

    @property
    def processed_count(self) -> int:
        return len(self.records)

    def accept(self, records: List[Record], *, page: int = 0) -> List[Record]:
        """Append unseen records, numbering them after what is already held.

        Records without an electronic number are only duplicates of the same
        row read again from the same page.
        """

        accepted: List[Record] = []
        for position, record in enumerate(records):
            key = record.identity() or f"page:{page}|row:{position}|{record.fingerprint()}"
            if key in self.seen:
                continue
            self.seen.add(key)
            record.serial_number = len(self.records) + 1
            self.records.append(record)
            accepted.append(record)
        return accepted

    def observe_page_size(self, row_count: int) -> None:
        # First interior page wins; later estimates never override it.
        if self.observed_page_size is None and row_count > 0:
            self.observed_page_size = row_count

    def abort(self) -> None:
        self.aborted = True


@dataclass
class TraversalResult:
    success: bool
    data: List[Record]
    total_processed: int
    expected_total: int
    pages_visited: int = 0
    stop_reason: str = "complete"
    error: str | None = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "data": [record.to_payload() for record in self.data],
            "totalProcessed": self.total_processed,
            "expectedTotal": self.expected_total,
            "pagesVisited": self.pages_visited,
            "stopReason": self.stop_reason,
        }
        if self.error:
            payload["error"] = self.error
        return payload
