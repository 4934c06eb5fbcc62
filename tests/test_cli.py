import io
import json

from eta_exporter.cli import build_message, build_parser, exit_code_for, print_response


def _message(argv: list[str]) -> dict:
    return build_message(build_parser().parse_args(argv))


def test_fetch_all_flags_become_options() -> None:
    message = _message(["fetch-all", "--seller-address", "--progress"])

    assert message == {
        "action": "getAllPagesData",
        "options": {
            "downloadDetails": False,
            "sellerAddress": True,
            "buyerAddress": False,
            "progressCallback": True,
        },
    }


def test_single_invoice_commands() -> None:
    assert _message(["details", "ABC123"]) == {"action": "getInvoiceDetails", "invoiceId": "ABC123"}
    assert _message(["addresses", "ABC123"]) == {
        "action": "extractAddressesForInvoice",
        "invoiceId": "ABC123",
        "options": {},
    }
    assert _message(["addresses", "ABC123", "--buyer"])["options"] == {"sellerAddress": False, "buyerAddress": True}


def test_scan_ping_and_watch() -> None:
    assert _message(["ping"]) == {"action": "ping"}
    assert _message(["scan"]) == {"action": "getInvoiceData"}
    args = build_parser().parse_args(["--run-id", "r1", "watch", "--seconds", "2.5"])
    assert args.run_id == "r1"
    assert args.seconds == 2.5
    assert build_message(args) == {"action": "rescanPage"}


def test_response_printing_and_exit_codes() -> None:
    out = io.StringIO()

    print_response({"success": False, "error": "يرجى الانتقال إلى صفحة المستندات أولاً"}, stream=out)

    assert json.loads(out.getvalue())["error"] == "يرجى الانتقال إلى صفحة المستندات أولاً"
    assert exit_code_for({"success": True}) == 0
    assert exit_code_for({"success": False}) == 1
