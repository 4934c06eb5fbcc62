import pytest

from eta_exporter.invoice_sync import pagination
from eta_exporter.invoice_sync.models import PaginationState
from eta_exporter.invoice_sync.pagination import estimate, estimate_detailed, estimate_with_sources, find_paging_controls
from eta_exporter.invoice_sync.snapshot import Snapshot
from portal_fakes import LIST_URL, keyed_row, list_page, page_url, pager


def _snapshot(html: str, url: str = LIST_URL) -> Snapshot:
    return Snapshot(url=url, html=html)


def test_results_marker_gives_total_count() -> None:
    snap = _snapshot(list_page([keyed_row(1), keyed_row(2)], pager_html=pager(1, 3), results=304))

    result = estimate_with_sources(snap)

    assert result.state.total_count == 304
    assert result.state.current_page == 1
    assert result.sources["total_count"] == "results_marker"
    assert result.sources["current_page"] == "marked_control"


def test_range_marker_gives_total_and_page_size() -> None:
    snap = _snapshot("<html><body><div class='footer'>1 - 50 of 304</div></body></html>")

    state = estimate_with_sources(snap, row_count=50).state

    assert state == PaginationState(current_page=1, total_pages=7, total_count=304, page_size=50)


def test_page_of_marker_with_arabic_indic_digits() -> None:
    snap = _snapshot("<html><body><span>صفحة ٣ من ١٢</span></body></html>")

    state = estimate(snap)

    assert state.current_page == 3
    assert state.total_pages == 12


def test_estimate_is_idempotent_on_the_same_snapshot() -> None:
    snap = _snapshot(list_page([keyed_row(3), keyed_row(4)], pager_html=pager(2, 3), results=5))

    first = estimate(snap)
    second = estimate(snap, first)

    assert first == second
    assert first == PaginationState(current_page=2, total_pages=3, total_count=5, page_size=2)


def test_observed_page_size_overrides_every_estimate() -> None:
    snap = _snapshot(list_page([keyed_row(5)], pager_html=pager(3, 3), results=5))

    state = estimate(snap, observed_page_size=2)

    assert state.page_size == 2
    assert state.total_pages == 3


def test_no_signals_fall_back_to_prior_with_default_page_size() -> None:
    prior = PaginationState(current_page=4, total_pages=9, total_count=400, page_size=25)

    result = estimate_with_sources(_snapshot("<html><body></body></html>"), prior)

    assert result.fallback is True
    assert result.state == PaginationState(current_page=4, total_pages=9, total_count=400, page_size=50)


def test_single_emphasised_control_marks_current_page() -> None:
    html = (
        "<html><body><div class='pagination'>"
        "<button>1</button><button style='font-weight: bold'>2</button><button>3</button>"
        "</div></body></html>"
    )

    result = estimate_with_sources(_snapshot(html))

    assert result.state.current_page == 2
    assert result.sources["current_page"] == "styled_control"


def test_aria_current_marks_current_page() -> None:
    html = (
        "<html><body><nav><button>1</button><button>2</button>"
        "<button aria-current='page'>3</button><button>4</button></nav></body></html>"
    )

    assert estimate(_snapshot(html)).current_page == 3


def test_page_size_dropdown_is_not_mistaken_for_paging_controls() -> None:
    html = (
        "<html><body><nav>"
        "<button class='is-active'>1</button><button>2</button>"
        "<select aria-label='page size'><option>10</option><option selected>50</option></select>"
        "</nav></body></html>"
    )
    snap = _snapshot(html)

    controls = find_paging_controls(snap)
    state = estimate(snap)

    assert sorted(control.number for control in controls) == [1, 2]
    assert state.page_size == 50
    assert state.total_pages == 2


def test_unexpected_failure_logs_warning_and_returns_fallback(monkeypatch: pytest.MonkeyPatch, logger, events) -> None:
    def _boom(*_args, **_kwargs):
        raise ValueError("broken tree")

    monkeypatch.setattr(pagination, "estimate_with_sources", _boom)
    prior = PaginationState(current_page=2, total_pages=5, total_count=90, page_size=20)

    result = estimate_detailed(_snapshot("<html></html>"), prior, logger=logger)

    assert result.fallback is True
    assert result.state.current_page == 2
    assert result.state.page_size == 50
    logged = events()
    assert logged[-1]["phase"] == "pagination"
    assert logged[-1]["status"] == "warn"
    assert logged[-1]["error"] == "broken tree"


def _pager_with_label(current: int, total_pages: int, label: str) -> str:
    return pager(current, total_pages).replace("</ul>", f"</ul><span>{label}</span>")


@pytest.mark.parametrize(
    "label",
    ["Items per page: 2", "Records per page: 2", "عدد العناصر في الصفحة 2"],
)
def test_page_size_label_is_not_read_as_total(label: str) -> None:
    snap = _snapshot(list_page([keyed_row(1), keyed_row(2)], pager_html=_pager_with_label(1, 3, label)))

    result = estimate_with_sources(snap)

    assert result.sources["total_count"] == "max_page_times_size"
    assert result.state == PaginationState(current_page=1, total_pages=3, total_count=6, page_size=2)


def test_labeled_total_inside_navigation_region() -> None:
    snap = _snapshot(list_page([keyed_row(1), keyed_row(2)], pager_html=_pager_with_label(1, 3, "Total records: 5")))

    result = estimate_with_sources(snap)

    assert result.sources["total_count"] == "labeled_total"
    assert result.state.total_count == 5
    assert result.weak_total is False


def test_labeled_total_outside_navigation_region_is_ignored() -> None:
    html = list_page([keyed_row(1), keyed_row(2)], pager_html=pager(1, 3)).replace(
        "<main>", "<main><p>Total: 999</p>"
    )

    result = estimate_with_sources(_snapshot(html))

    assert result.sources["total_count"] == "max_page_times_size"
    assert result.state.total_count == 6


def test_labeled_total_below_visible_pages_is_rejected() -> None:
    snap = _snapshot(list_page([keyed_row(1), keyed_row(2)], pager_html=_pager_with_label(1, 3, "Total: 3")))

    result = estimate_with_sources(snap)

    assert result.sources["total_count"] == "max_page_times_size"
    assert result.state.total_count == 6


@pytest.mark.parametrize(
    "marker",
    ["304 من 50 - 1", "عرض 1 إلى 50 من 304", "عرض ١ إلى ٥٠ من ٣٠٤"],
)
def test_localized_range_markers(marker: str) -> None:
    snap = _snapshot(f"<html><body><div class='footer'>{marker}</div></body></html>")

    result = estimate_with_sources(snap, row_count=50)

    assert result.state == PaginationState(current_page=1, total_pages=7, total_count=304, page_size=50)
    assert result.sources["total_count"] == "range_marker"


def test_current_page_from_query_parameter() -> None:
    html = (
        "<html><body><nav><button>1</button><button>2</button>"
        "<button>3</button><button>4</button></nav></body></html>"
    )

    result = estimate_with_sources(_snapshot(html, url=page_url(3)))

    assert result.state.current_page == 3
    assert result.sources["current_page"] == "query_parameter"


def test_highest_page_times_page_size_is_the_last_resort() -> None:
    html = (
        "<html><body><nav>"
        "<button class='is-active'>1</button><button>2</button><button>3</button><button>4</button>"
        "<select aria-label='page size'><option>10</option><option selected>25</option></select>"
        "</nav></body></html>"
    )

    result = estimate_with_sources(_snapshot(html))

    assert result.sources["total_count"] == "max_page_times_size"
    assert result.weak_total is True
    assert result.state == PaginationState(current_page=1, total_pages=4, total_count=100, page_size=25)
