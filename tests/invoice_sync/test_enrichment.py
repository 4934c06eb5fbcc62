import pytest

from eta_exporter.invoice_sync.enrichment import (
    BUYER_SIDE,
    SELLER_SIDE,
    DetailEnricher,
    extract_line_items,
    looks_like_main_list,
    lookup_address,
    lookup_addresses,
)
from eta_exporter.invoice_sync.models import ADDRESS_SENTINEL, AddressOptions
from eta_exporter.invoice_sync.snapshot import Snapshot
from portal_fakes import (
    BASE,
    FAST_SETTINGS,
    FakeView,
    detail_page,
    page_url,
    paged_portal,
    uuid_for,
)

INVOICE_ID = uuid_for(1)
DETAIL_URL = f"{BASE}/documents/{INVOICE_ID}"


def _detail(html: str) -> Snapshot:
    return Snapshot(url=DETAIL_URL, html=html)


def _portal(detail_html: str) -> dict:
    pages = paged_portal([[1, 2], [3]], results=3)
    pages[DETAIL_URL] = detail_html
    return pages


class _TornDownDetailView(FakeView):
    """Detail view whose document is destroyed while it is being read."""

    async def snapshot(self) -> Snapshot:
        if self.url == DETAIL_URL:
            raise RuntimeError("Execution context was destroyed")
        return await super().snapshot()


def test_field_id_tier_reads_and_normalises_whitespace() -> None:
    snap = _detail(detail_page(seller="  12 شارع   التحرير\n القاهرة "))

    value, tier = lookup_address(snap, SELLER_SIDE)

    assert value == "12 شارع التحرير القاهرة"
    assert tier == "field_id"


def test_missing_address_yields_sentinel() -> None:
    snap = _detail(detail_page(seller="Cairo"))

    assert lookup_address(snap, BUYER_SIDE) == (ADDRESS_SENTINEL, None)


def test_label_tier_finds_sibling_field() -> None:
    html = (
        "<html><body><div class='form'><div class='group'>"
        "<label>عنوان المشتري</label><div><textarea id='addr-b'>5 Nile St, Giza</textarea></div>"
        "</div></div></body></html>"
    )

    assert lookup_address(_detail(html), BUYER_SIDE) == ("5 Nile St, Giza", "label")


def test_section_tier_reads_issuer_block() -> None:
    html = "<html><body><div class='issuer'><textarea>Alexandria Port</textarea></div></body></html>"

    assert lookup_address(_detail(html), SELLER_SIDE) == ("Alexandria Port", "section")


def test_body_text_tier_is_last_resort() -> None:
    html = "<html><body><h3>Receiver</h3><p>Name: ACME</p><p>Address: 9 Tahrir Square</p></body></html>"

    assert lookup_address(_detail(html), BUYER_SIDE) == ("9 Tahrir Square", "body_text")


def test_disabled_side_is_not_looked_up() -> None:
    snap = _detail(detail_page(seller="Cairo", buyer="Giza"))

    found = lookup_addresses(snap, AddressOptions(seller_address=False, buyer_address=True))

    assert found["seller"] == (ADDRESS_SENTINEL, None)
    assert found["buyer"] == ("Giza", "field_id")


def test_main_list_check_needs_two_signals() -> None:
    pages = paged_portal([[1, 2], [3]], results=3)
    assert looks_like_main_list(Snapshot(url=page_url(1), html=pages[page_url(1)]), FAST_SETTINGS)
    assert not looks_like_main_list(_detail(detail_page(seller="x")), FAST_SETTINGS)
    # List markup under a detail URL still counts: grid and pager agree.
    assert looks_like_main_list(Snapshot(url=DETAIL_URL, html=pages[page_url(1)]), FAST_SETTINGS)


def test_line_items_keyed_cells() -> None:
    row = (
        '<div role="row">'
        '<div data-automation-key="itemCode">EG-100</div>'
        '<div data-automation-key="description">Widget</div>'
        '<div data-automation-key="quantity">3</div>'
        '<div data-automation-key="unitValue">10.00</div>'
        '<div data-automation-key="total">34.20</div>'
        "</div>"
    )
    items = extract_line_items(_detail(f"<html><body>{row}</body></html>"), INVOICE_ID)

    assert len(items) == 1
    assert items[0].item_code == "EG-100"
    assert items[0].quantity == "3"
    assert items[0].unit_price == "10.00"
    assert items[0].total_with_vat == "34.20"


def test_line_items_fall_back_to_summary_line() -> None:
    items = extract_line_items(_detail(detail_page(seller="x")), INVOICE_ID)

    assert [item.to_payload() for item in items] == [
        {
            "itemCode": INVOICE_ID,
            "description": "إجمالي قيمة الفاتورة",
            "unitCode": "EA",
            "unitName": "فاتورة",
            "quantity": "1",
            "unitPrice": "0",
            "totalValue": "0",
            "taxAmount": "0",
            "vatAmount": "0",
            "totalWithVat": "0",
        }
    ]


@pytest.mark.asyncio
async def test_extract_addresses_returns_to_list_via_history(logger) -> None:
    view = FakeView(_portal(detail_page(seller="Cairo", buyer="Giza")), start=page_url(1))

    result = await DetailEnricher(view, settings=FAST_SETTINGS, logger=logger).extract_addresses(
        INVOICE_ID, AddressOptions()
    )

    assert result.success is True
    assert result.seller_address == "Cairo"
    assert result.buyer_address == "Giza"
    assert result.returned_to_list is True
    assert view.url == page_url(1)
    assert DETAIL_URL in view.visited


@pytest.mark.asyncio
async def test_return_falls_back_to_direct_navigation(logger, events) -> None:
    view = FakeView(_portal(detail_page(seller="Cairo")), start=page_url(2), back_works=False)

    result = await DetailEnricher(view, settings=FAST_SETTINGS, logger=logger).extract_addresses(
        INVOICE_ID, AddressOptions()
    )

    assert result.returned_to_list is True
    assert result.buyer_address == ADDRESS_SENTINEL
    assert view.url == page_url(2)
    assert any(event.get("method") == "direct" for event in events())


@pytest.mark.asyncio
async def test_navigation_failure_keeps_sentinels_and_list(logger) -> None:
    view = FakeView(_portal(detail_page(seller="Cairo")), start=page_url(1), fail_urls=[DETAIL_URL])

    result = await DetailEnricher(view, settings=FAST_SETTINGS, logger=logger).extract_addresses(
        INVOICE_ID, AddressOptions()
    )

    assert result.success is False
    assert result.seller_address == ADDRESS_SENTINEL
    assert result.buyer_address == ADDRESS_SENTINEL
    assert result.returned_to_list is True
    assert result.to_payload()["addresses"] == {"sellerAddress": ADDRESS_SENTINEL, "buyerAddress": ADDRESS_SENTINEL}


@pytest.mark.asyncio
async def test_unreachable_list_is_reported(logger, events) -> None:
    pages = {DETAIL_URL: detail_page(seller="Cairo")}
    view = FakeView(pages, start=page_url(1), back_works=False)

    result = await DetailEnricher(view, settings=FAST_SETTINGS, logger=logger).extract_addresses(
        INVOICE_ID, AddressOptions()
    )

    assert result.success is True
    assert result.returned_to_list is False
    assert events()[-1]["message"] == "Could not return to documents list"


@pytest.mark.asyncio
async def test_extract_details_returns_items_and_addresses(logger) -> None:
    line = (
        '<table><tbody><tr><td>EG-1</td><td>Service</td><td>EA</td><td>Each</td>'
        "<td>2</td><td>50.00</td><td>100.00</td><td>0.00</td><td>14.00</td><td>114.00</td></tr></tbody></table>"
    )
    view = FakeView(_portal(detail_page(seller="Cairo", buyer="Giza", extra=line)), start=page_url(1))

    response = await DetailEnricher(view, settings=FAST_SETTINGS, logger=logger).extract_details(INVOICE_ID)

    assert response["success"] is True
    assert response["data"][0]["itemCode"] == "EG-1"
    assert response["data"][0]["totalWithVat"] == "114.00"
    assert response["addresses"] == {"sellerAddress": "Cairo", "buyerAddress": "Giza"}
    assert response["returnedToList"] is True
    assert view.url == page_url(1)


@pytest.mark.asyncio
async def test_unreadable_detail_view_still_returns_to_list(logger, events) -> None:
    view = _TornDownDetailView(_portal(detail_page(seller="Cairo")), start=page_url(2))

    result = await DetailEnricher(view, settings=FAST_SETTINGS, logger=logger).extract_addresses(
        INVOICE_ID, AddressOptions()
    )

    assert result.success is False
    assert result.error == "Execution context was destroyed"
    assert result.seller_address == ADDRESS_SENTINEL
    assert result.returned_to_list is True
    assert view.url == page_url(2)
    assert any(event.get("method") == "history_back" for event in events())


@pytest.mark.asyncio
async def test_unreadable_detail_view_during_details_returns_to_list(logger) -> None:
    view = _TornDownDetailView(_portal(detail_page(seller="Cairo")), start=page_url(1))

    response = await DetailEnricher(view, settings=FAST_SETTINGS, logger=logger).extract_details(INVOICE_ID)

    assert response == {"success": False, "error": "Execution context was destroyed", "returnedToList": True}
    assert view.url == page_url(1)
