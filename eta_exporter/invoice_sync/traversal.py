"""Multi-page traversal of the documents list.

The controller walks Init -> ScanPage -> [ExtractAddresses] -> AdvancePage
until the estimated total is reached, the attempt bound is hit or no next
page control is left. Records accumulate in a fresh ``TraversalSession``
per run.
"""

from __future__ import annotations

import inspect
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from eta_exporter.invoice_sync.models import (
    AddressOptions,
    AddressResult,
    PaginationState,
    Record,
    TraversalResult,
    TraversalSession,
)
from eta_exporter.invoice_sync.navigation import advance_page, ensure_first_page, go_to_page
from eta_exporter.invoice_sync.pagination import estimate_detailed
from eta_exporter.invoice_sync.readiness import wait_for_list_ready
from eta_exporter.invoice_sync.rows import discover_rows, extract_row
from eta_exporter.invoice_sync.settings import EngineSettings
from eta_exporter.invoice_sync.snapshot import Snapshot
from eta_exporter.invoice_sync.view import ListView
from eta_exporter.json_logger import JsonLogger, log_event

ProgressSink = Callable[[Dict[str, Any]], Union[Awaitable[None], None]]

STOP_COMPLETE = "complete"
STOP_NO_NEXT = "no_next_control"
STOP_ATTEMPT_LIMIT = "attempt_limit"
STOP_ABORTED = "aborted"
STOP_ERROR = "error"


class AddressEnricher(Protocol):
    async def extract_addresses(self, invoice_id: str, options: AddressOptions) -> AddressResult: ...


async def emit_progress(sink: ProgressSink | None, payload: Dict[str, Any], *, logger: JsonLogger) -> None:
    """Deliver a progress event; a failing sink never stops the caller."""

    if sink is None:
        return
    try:
        result = sink(payload)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        log_event(logger=logger, phase="traversal", status="warn", message="Progress sink failed", error=str(exc))


def page_progress(current_page: int, total_pages: int) -> Dict[str, Any]:
    percentage = round(current_page / total_pages * 100) if total_pages else 0
    return {
        "currentPage": current_page,
        "totalPages": total_pages,
        "message": f"جاري تحميل الصفحة {current_page} من {total_pages}...",
        "percentage": min(percentage, 100),
    }


def scan_page(
    snapshot: Snapshot,
    prior: PaginationState | None,
    *,
    settings: EngineSettings,
    observed_page_size: int | None = None,
    logger: JsonLogger | None = None,
) -> tuple[PaginationState, List[Record], int]:
    """Estimate pagination and extract the visible rows of one snapshot.

    Returns the state, the valid records in view order and the raw row count.
    """

    discovery = discover_rows(snapshot)
    records: List[Record] = []
    for row in discovery.rows:
        record = extract_row(row, settings=settings)
        if record is not None:
            records.append(record)
    estimate = estimate_detailed(snapshot, prior, observed_page_size=observed_page_size, logger=logger)
    return estimate.state, records, len(discovery.rows)


class TraversalController:
    def __init__(
        self,
        view: ListView,
        *,
        settings: EngineSettings,
        logger: JsonLogger,
        enricher: AddressEnricher | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.view = view
        self.settings = settings
        self.logger = logger.bind(component="traversal")
        self.enricher = enricher
        self.progress = progress
        self.session: Optional[TraversalSession] = None

    def cancel(self) -> None:
        if self.session is not None:
            self.session.abort()

    async def run(
        self,
        *,
        address_options: AddressOptions | None = None,
        prior: PaginationState | None = None,
    ) -> TraversalResult:
        session = TraversalSession()
        self.session = session
        enrich = address_options is not None and address_options.any and self.enricher is not None

        try:
            readiness = await ensure_first_page(self.view, settings=self.settings, logger=self.logger, prior=prior)
        except Exception as exc:
            log_event(logger=self.logger, phase="traversal", status="error", message="Initialisation failed", error=str(exc))
            return self._result(session, success=False, stop_reason=STOP_ERROR, error=str(exc))

        state, _, _ = scan_page(readiness.snapshot, None, settings=self.settings)
        session.expected_total = state.total_count
        session.current_page = state.current_page
        log_event(
            logger=self.logger,
            phase="traversal",
            message="Traversal started",
            expected_total=session.expected_total,
            total_pages=state.total_pages,
            enrich=enrich,
        )

        snapshot: Optional[Snapshot] = readiness.snapshot
        stop_reason = STOP_COMPLETE
        last_error: Optional[str] = None
        page_errors = 0

        while True:
            if session.aborted:
                stop_reason = STOP_ABORTED
                break
            if session.attempts >= state.total_pages + self.settings.attempt_slack:
                stop_reason = STOP_ATTEMPT_LIMIT
                break
            if session.processed_count >= session.expected_total or session.current_page > state.total_pages:
                stop_reason = STOP_COMPLETE
                break
            session.attempts += 1

            try:
                if snapshot is None:
                    snapshot = await self.view.snapshot()
                state, records, row_count = scan_page(
                    snapshot,
                    state,
                    settings=self.settings,
                    observed_page_size=session.observed_page_size,
                    logger=self.logger,
                )
                session.current_page = state.current_page
                if state.current_page < state.total_pages:
                    session.observe_page_size(row_count)
                accepted = session.accept(records, page=state.current_page)
                session.pages_visited += 1
                # Estimates only grow the target; the processed count is the floor.
                session.expected_total = max(session.expected_total, state.total_count, session.processed_count)
                log_event(
                    logger=self.logger,
                    phase="traversal",
                    message="Page scanned",
                    page=state.current_page,
                    total_pages=state.total_pages,
                    rows=row_count,
                    accepted=len(accepted),
                    processed=session.processed_count,
                    expected_total=session.expected_total,
                )
                await emit_progress(
                    self.progress, page_progress(state.current_page, state.total_pages), logger=self.logger
                )

                if enrich and accepted:
                    await self._enrich_page(accepted, state, address_options)

                if session.processed_count >= session.expected_total or state.current_page >= state.total_pages:
                    stop_reason = STOP_COMPLETE
                    break

                advanced = await advance_page(self.view, state, settings=self.settings, logger=self.logger)
                if advanced is None:
                    stop_reason = STOP_NO_NEXT
                    break
                snapshot = advanced.snapshot
                state = replace(state, current_page=state.current_page + 1)
                session.current_page = state.current_page
            except Exception as exc:
                page_errors += 1
                last_error = str(exc)
                log_event(
                    logger=self.logger,
                    phase="traversal",
                    status="error",
                    message="Page processing failed; attempting to advance",
                    page=session.current_page,
                    error=last_error,
                )
                try:
                    advanced = await advance_page(self.view, state, settings=self.settings, logger=self.logger)
                except Exception as nav_exc:
                    log_event(
                        logger=self.logger,
                        phase="traversal",
                        status="error",
                        message="Recovery advance failed",
                        error=str(nav_exc),
                    )
                    advanced = None
                if advanced is None:
                    return self._result(
                        session,
                        success=False,
                        stop_reason=STOP_ERROR,
                        error=last_error,
                        page_errors=page_errors,
                    )
                snapshot = advanced.snapshot
                state = replace(state, current_page=state.current_page + 1)
                session.current_page = state.current_page

        return self._result(session, success=True, stop_reason=stop_reason, page_errors=page_errors)

    async def _enrich_page(
        self,
        records: List[Record],
        state: PaginationState,
        options: AddressOptions,
    ) -> None:
        assert self.enricher is not None
        pending = [record for record in records if record.electronic_number and record.needs_addresses()]
        for index, record in enumerate(pending, start=1):
            if self.session is not None and self.session.aborted:
                return
            await emit_progress(
                self.progress,
                {
                    "type": "detail",
                    "current": index,
                    "total": len(pending),
                    "page": state.current_page,
                    "totalPages": state.total_pages,
                },
                logger=self.logger,
            )
            try:
                result = await self.enricher.extract_addresses(record.electronic_number, options)
            except Exception as exc:
                log_event(
                    logger=self.logger,
                    phase="enrichment",
                    status="warn",
                    message="Address enrichment failed for record",
                    electronic_number=record.electronic_number,
                    error=str(exc),
                )
                continue
            if result.success:
                if options.seller_address:
                    record.seller_address = result.seller_address
                if options.buyer_address:
                    record.buyer_address = result.buyer_address
        if pending:
            await self._realign(state)

    async def _realign(self, state: PaginationState) -> None:
        """Return the list to the page that was scanned before enrichment."""

        readiness = await wait_for_list_ready(self.view, settings=self.settings, logger=self.logger)
        current = estimate_detailed(readiness.snapshot, state).state
        if current.current_page == state.current_page:
            return
        log_event(
            logger=self.logger,
            phase="traversal",
            status="warn",
            message="List drifted during enrichment; realigning",
            expected_page=state.current_page,
            observed_page=current.current_page,
        )
        if current.current_page != 1:
            readiness = await ensure_first_page(self.view, settings=self.settings, logger=self.logger)
        if state.current_page <= 1:
            return
        moved = await go_to_page(
            self.view, state.current_page, settings=self.settings, logger=self.logger, snapshot=readiness.snapshot
        )
        if moved is not None:
            return
        # Target page outside the visible control window: step forward.
        position = PaginationState(current_page=1, total_pages=state.total_pages)
        while position.current_page < state.current_page:
            if await advance_page(self.view, position, settings=self.settings, logger=self.logger) is None:
                break
            position = replace(position, current_page=position.current_page + 1)

    def _result(
        self,
        session: TraversalSession,
        *,
        success: bool,
        stop_reason: str,
        error: str | None = None,
        page_errors: int = 0,
    ) -> TraversalResult:
        log_event(
            logger=self.logger,
            phase="traversal",
            status="ok" if success else "error",
            message="Traversal finished",
            stop_reason=stop_reason,
            total_processed=session.processed_count,
            expected_total=session.expected_total,
            pages_visited=session.pages_visited,
            attempts=session.attempts,
            page_errors=page_errors,
        )
        return TraversalResult(
            success=success,
            data=list(session.records),
            total_processed=session.processed_count,
            expected_total=session.expected_total,
            pages_visited=session.pages_visited,
            stop_reason=stop_reason,
            error=error,
        )
