import pytest

from eta_exporter.invoice_sync.models import PaginationState
from eta_exporter.invoice_sync.navigation import advance_page, ensure_first_page, find_next_control
from eta_exporter.invoice_sync.snapshot import Snapshot
from portal_fakes import FAST_SETTINGS, FakeView, keyed_row, list_page, page_url, paged_portal, pager


def test_explicit_next_control_is_preferred() -> None:
    snap = Snapshot(url=page_url(1), html=list_page([keyed_row(1)], pager_html=pager(1, 3)))

    hit = find_next_control(snap, PaginationState(current_page=1, total_pages=3))

    assert hit is not None
    assert hit.strategy == "explicit_next"
    assert hit.element.get("href") == page_url(2)


def test_numeric_control_is_used_without_a_next_label() -> None:
    nav = (
        '<nav><ul><li class="active"><a href="' + page_url(1) + '">1</a></li>'
        '<li><a href="' + page_url(2) + '">2</a></li></ul></nav>'
    )
    snap = Snapshot(url=page_url(1), html=list_page([keyed_row(1)], pager_html=nav))

    hit = find_next_control(snap, PaginationState(current_page=1, total_pages=2))

    assert hit is not None
    assert hit.strategy == "numeric_next"
    assert hit.element.get("href") == page_url(2)


def test_disabled_next_on_last_page_is_not_a_control() -> None:
    snap = Snapshot(url=page_url(3), html=list_page([keyed_row(1)], pager_html=pager(3, 3)))

    assert find_next_control(snap, PaginationState(current_page=3, total_pages=3)) is None


@pytest.mark.asyncio
async def test_advance_page_moves_to_next_page(logger, events) -> None:
    view = FakeView(paged_portal([[1, 2], [3, 4]]), start=page_url(1))

    readiness = await advance_page(view, PaginationState(current_page=1, total_pages=2), settings=FAST_SETTINGS, logger=logger)

    assert readiness is not None
    assert view.url == page_url(2)
    assert readiness.snapshot.url == page_url(2)
    assert any(event["message"] == "Advanced to next page" for event in events())


@pytest.mark.asyncio
async def test_advance_page_reports_missing_control(logger) -> None:
    view = FakeView(paged_portal([[1, 2], [3, 4]]), start=page_url(2))

    readiness = await advance_page(view, PaginationState(current_page=2, total_pages=2), settings=FAST_SETTINGS, logger=logger)

    assert readiness is None
    assert view.url == page_url(2)


@pytest.mark.asyncio
async def test_ensure_first_page_clicks_page_one(logger) -> None:
    view = FakeView(paged_portal([[1], [2], [3]]), start=page_url(3))

    readiness = await ensure_first_page(view, settings=FAST_SETTINGS, logger=logger)

    assert view.url == page_url(1)
    assert view.clicks == ["Page 1"]
    assert readiness.snapshot.url == page_url(1)


@pytest.mark.asyncio
async def test_ensure_first_page_steps_back_when_page_one_control_is_hidden(logger, events) -> None:
    windowed = (
        '<nav aria-label="pagination"><ul>'
        f'<li><a href="{page_url(1)}" aria-label="Previous">‹</a></li>'
        f'<li class="active"><a href="{page_url(2)}" aria-label="Page 2">2</a></li>'
        f'<li><a href="{page_url(3)}" aria-label="Page 3">3</a></li>'
        "</ul></nav>"
    )
    pages = paged_portal([[1], [2], [3]])
    pages[page_url(2)] = list_page([keyed_row(2)], pager_html=windowed)
    view = FakeView(pages, start=page_url(2))

    await ensure_first_page(view, settings=FAST_SETTINGS, logger=logger)

    assert view.url == page_url(1)
    assert view.clicks == ["Previous"]
    assert events()[-1]["method"] == "previous_control"


@pytest.mark.asyncio
async def test_ensure_first_page_is_a_no_op_on_page_one(logger) -> None:
    view = FakeView(paged_portal([[1], [2]]), start=page_url(1))

    await ensure_first_page(view, settings=FAST_SETTINGS, logger=logger)

    assert view.clicks == []
