from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, List, Optional, TextIO

from eta_exporter.json_logger import JsonLogger, get_logger, log_event, new_run_id


def build_message(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate parsed CLI arguments into a command request."""

    if args.command == "ping":
        return {"action": "ping"}
    if args.command == "scan":
        return {"action": "getInvoiceData"}
    if args.command == "fetch-all":
        return {
            "action": "getAllPagesData",
            "options": {
                "downloadDetails": args.details,
                "sellerAddress": args.seller_address,
                "buyerAddress": args.buyer_address,
                "progressCallback": args.progress,
            },
        }
    if args.command == "details":
        return {"action": "getInvoiceDetails", "invoiceId": args.invoice_id}
    if args.command == "addresses":
        options: Dict[str, Any] = {}
        if args.seller or args.buyer:
            options = {"sellerAddress": args.seller, "buyerAddress": args.buyer}
        return {"action": "extractAddressesForInvoice", "invoiceId": args.invoice_id, "options": options}
    if args.command == "watch":
        return {"action": "rescanPage"}
    raise ValueError(f"Unsupported command: {args.command}")


def print_response(response: Dict[str, Any], *, stream: Optional[TextIO] = None) -> None:
    out = stream or sys.stdout
    out.write(json.dumps(response, ensure_ascii=False, indent=2, default=str) + "\n")
    out.flush()


def exit_code_for(response: Dict[str, Any]) -> int:
    return 0 if response.get("success") else 1


async def _watch(handler: Any, page: Any, *, seconds: Optional[float], quiet_ms: int, logger: JsonLogger) -> None:
    from eta_exporter.invoice_sync.watcher import DebouncedRescan, PlaywrightChangeSource

    async def rescan() -> None:
        response = await handler.background_rescan()
        if response is not None:
            print_response(response)

    watcher = DebouncedRescan(
        PlaywrightChangeSource(page),
        rescan,
        quiet_ms=quiet_ms,
        is_busy=lambda: handler.busy,
        logger=logger,
    )
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Some environments (e.g. Windows) do not support custom signal handlers.
            pass

    await watcher.start()
    try:
        if seconds:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        else:
            await stop_event.wait()
    finally:
        await watcher.stop()


async def _run_async(args: argparse.Namespace) -> int:
    from playwright.async_api import async_playwright

    from eta_exporter.browser import launch_browser, open_portal_context
    from eta_exporter.config import ConfigError
    from eta_exporter.invoice_sync.commands import InvoiceCommandHandler
    from eta_exporter.invoice_sync.settings import EngineSettings
    from eta_exporter.invoice_sync.view import PlaywrightView

    run_id = args.run_id or new_run_id()
    try:
        from eta_exporter.config import config as runtime_config

        logger = get_logger(run_id=run_id)
    except ConfigError as exc:
        print(f"[eta_exporter] configuration error: {exc}", file=sys.stderr)
        return 2

    settings = EngineSettings.from_config(runtime_config)
    message = build_message(args)

    def progress(event: Dict[str, Any]) -> None:
        log_event(logger=logger, phase="traversal", message="Progress", **event)

    try:
        async with async_playwright() as playwright:
            browser = await launch_browser(playwright=playwright, app_config=runtime_config, logger=logger)
            try:
                context = await open_portal_context(browser=browser, app_config=runtime_config, logger=logger)
                page = await context.new_page()
                view = PlaywrightView(page)
                await view.goto(runtime_config.documents_url)
                handler = InvoiceCommandHandler(view, settings=settings, logger=logger, progress=progress)

                response = await handler.handle(message)
                print_response(response)
                if args.command == "watch":
                    await _watch(
                        handler,
                        page,
                        seconds=args.seconds,
                        quiet_ms=settings.rescan_quiet_ms,
                        logger=logger,
                    )
                return exit_code_for(response)
            finally:
                await browser.close()
    except Exception as exc:
        log_event(
            logger=logger,
            phase="commands",
            status="error",
            message="run failed with unexpected error",
            error=str(exc),
            exc_type=type(exc).__name__,
        )
        return 1
    finally:
        logger.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eta_exporter", description="ETA documents-list extraction")
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("ping", help="Check that the engine is ready")
    subparsers.add_parser("scan", help="Scan the current documents page")

    fetch_parser = subparsers.add_parser("fetch-all", help="Traverse every page of the documents list")
    fetch_parser.add_argument("--details", action="store_true", help="Enrich every record with both addresses")
    fetch_parser.add_argument("--seller-address", dest="seller_address", action="store_true")
    fetch_parser.add_argument("--buyer-address", dest="buyer_address", action="store_true")
    fetch_parser.add_argument("--progress", action="store_true", help="Log progress events")

    details_parser = subparsers.add_parser("details", help="Line items and addresses of one invoice")
    details_parser.add_argument("invoice_id")

    addresses_parser = subparsers.add_parser("addresses", help="Addresses of one invoice")
    addresses_parser.add_argument("invoice_id")
    addresses_parser.add_argument("--seller", action="store_true")
    addresses_parser.add_argument("--buyer", action="store_true")

    watch_parser = subparsers.add_parser("watch", help="Re-scan the list whenever it changes")
    watch_parser.add_argument("--seconds", type=float, default=None, help="Stop after this many seconds")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return asyncio.run(_run_async(args))
