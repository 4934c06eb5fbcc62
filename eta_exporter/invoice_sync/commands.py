"""Command surface consumed by the external controller.

Requests are plain dicts ``{"action": ..., ...}`` and every response is a
dict carrying ``success``. Commands run one at a time; while a traversal or
an enrichment owns the view the handler reports itself busy.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from eta_exporter.invoice_sync.enrichment import DetailEnricher, is_detail_path
from eta_exporter.invoice_sync.models import AddressOptions, PaginationState
from eta_exporter.invoice_sync.readiness import wait_for_list_ready
from eta_exporter.invoice_sync.settings import EngineSettings
from eta_exporter.invoice_sync.traversal import ProgressSink, TraversalController, scan_page
from eta_exporter.invoice_sync.view import ListView
from eta_exporter.json_logger import JsonLogger, log_event

NOT_ON_DOCUMENTS_ERROR = "يرجى الانتقال إلى صفحة المستندات أولاً"
NO_TABLE_ERROR = "لم يتم العثور على جدول البيانات"
MISSING_INVOICE_ID_ERROR = "invoiceId is required"
UNKNOWN_ACTION_ERROR = "Unknown action"


class AllPagesOptions(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    download_details: bool = Field(False, alias="downloadDetails")
    seller_address: bool = Field(False, alias="sellerAddress")
    buyer_address: bool = Field(False, alias="buyerAddress")
    # Any truthy value, a callable handle included, means "report progress".
    progress_callback: Any = Field(None, alias="progressCallback")

    @property
    def wants_progress(self) -> bool:
        return bool(self.progress_callback)

    def address_options(self) -> Optional[AddressOptions]:
        if self.download_details:
            return AddressOptions(seller_address=True, buyer_address=True)
        if self.seller_address or self.buyer_address:
            return AddressOptions(seller_address=self.seller_address, buyer_address=self.buyer_address)
        return None


class AddressRequestOptions(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    seller_address: Optional[bool] = Field(None, alias="sellerAddress")
    buyer_address: Optional[bool] = Field(None, alias="buyerAddress")

    def address_options(self) -> AddressOptions:
        if self.seller_address is None and self.buyer_address is None:
            return AddressOptions()
        return AddressOptions(
            seller_address=bool(self.seller_address),
            buyer_address=bool(self.buyer_address),
        )


class InvoiceCommandHandler:
    def __init__(
        self,
        view: ListView,
        *,
        settings: EngineSettings,
        logger: JsonLogger,
        progress: ProgressSink | None = None,
    ) -> None:
        self.view = view
        self.settings = settings
        self.logger = logger.bind(component="commands")
        self.progress = progress
        self.enricher = DetailEnricher(view, settings=settings, logger=logger)
        self.last_state: Optional[PaginationState] = None
        self.last_scan: Optional[Dict[str, Any]] = None
        self._lock = asyncio.Lock()
        self._busy = False
        self._actions: Dict[str, Callable[[Mapping[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "ping": self._ping,
            "getInvoiceData": self._get_invoice_data,
            "getAllPagesData": self._get_all_pages_data,
            "getInvoiceDetails": self._get_invoice_details,
            "extractAddressesForInvoice": self._extract_addresses,
            "rescanPage": self._rescan_page,
        }

    @property
    def busy(self) -> bool:
        return self._busy

    async def handle(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        action = str(message.get("action") or "")
        handler = self._actions.get(action)
        if handler is None:
            log_event(logger=self.logger, phase="commands", status="warn", message="Unknown action", action=action)
            return {"success": False, "error": UNKNOWN_ACTION_ERROR}
        if action == "ping":
            return await handler(message)
        async with self._lock:
            try:
                response = await handler(message)
            except ValidationError as exc:
                log_event(logger=self.logger, phase="commands", status="warn", message="Invalid options", action=action)
                return {"success": False, "error": str(exc)}
            except Exception as exc:
                log_event(
                    logger=self.logger,
                    phase="commands",
                    status="error",
                    message="Command failed",
                    action=action,
                    error=str(exc),
                )
                return {"success": False, "error": str(exc)}
        log_event(
            logger=self.logger,
            phase="commands",
            status="ok" if response.get("success") else "warn",
            message="Command handled",
            action=action,
        )
        return response

    async def background_rescan(self) -> Optional[Dict[str, Any]]:
        """Watcher entry point; skipped while another command holds the view."""

        if self._busy or self._lock.locked():
            return None
        async with self._lock:
            return await self._scan_current()

    # ── Actions ─────────────────────────────────────────────────────────────

    async def _ping(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        return {"success": True, "message": "Content script ready"}

    def _on_documents_list(self) -> bool:
        url = self.view.url
        return self.settings.documents_path in url and not is_detail_path(url)

    async def _scan_current(self) -> Dict[str, Any]:
        readiness = await wait_for_list_ready(self.view, settings=self.settings, logger=self.logger, phase="rows")
        state, records, row_count = scan_page(
            readiness.snapshot, self.last_state, settings=self.settings, logger=self.logger
        )
        for serial, record in enumerate(records, start=1):
            record.serial_number = serial
        self.last_state = state
        if not readiness.ready and row_count == 0:
            return {"success": False, "error": NO_TABLE_ERROR}
        log_event(
            logger=self.logger,
            phase="rows",
            message="Current page scanned",
            rows=row_count,
            records=len(records),
            current_page=state.current_page,
        )
        self.last_scan = {
            "success": True,
            "data": {
                "invoices": [record.to_payload() for record in records],
                "totalCount": state.total_count,
                "currentPage": state.current_page,
                "totalPages": state.total_pages,
            },
        }
        return self.last_scan

    async def _get_invoice_data(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        if not self._on_documents_list():
            return {"success": False, "error": NOT_ON_DOCUMENTS_ERROR}
        return await self._scan_current()

    async def _rescan_page(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._get_invoice_data(message)

    async def _get_all_pages_data(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        options = AllPagesOptions.model_validate(message.get("options") or {})
        if not self._on_documents_list():
            return {"success": False, "error": NOT_ON_DOCUMENTS_ERROR}
        controller = TraversalController(
            self.view,
            settings=self.settings,
            logger=self.logger,
            enricher=self.enricher,
            progress=self.progress if options.wants_progress else None,
        )
        self._busy = True
        try:
            result = await controller.run(address_options=options.address_options(), prior=self.last_state)
        finally:
            self._busy = False
        return result.to_payload()

    async def _get_invoice_details(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        invoice_id = str(message.get("invoiceId") or "").strip()
        if not invoice_id:
            return {"success": False, "error": MISSING_INVOICE_ID_ERROR}
        self._busy = True
        try:
            return await self.enricher.extract_details(invoice_id)
        finally:
            self._busy = False

    async def _extract_addresses(self, message: Mapping[str, Any]) -> Dict[str, Any]:
        invoice_id = str(message.get("invoiceId") or "").strip()
        if not invoice_id:
            return {"success": False, "error": MISSING_INVOICE_ID_ERROR}
        options = AddressRequestOptions.model_validate(message.get("options") or {})
        self._busy = True
        try:
            result = await self.enricher.extract_addresses(invoice_id, options.address_options())
        finally:
            self._busy = False
        return result.to_payload()
