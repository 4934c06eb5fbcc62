from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from playwright.async_api import Browser, BrowserContext

from eta_exporter.config import Config
from eta_exporter.json_logger import JsonLogger, log_event


async def launch_browser(*, playwright: Any, app_config: Config, logger: JsonLogger) -> Browser:
    chrome_exec = (app_config.chrome_executable or "").strip() or None
    headless = app_config.headless
    launch_kwargs: Dict[str, Any] = {"headless": headless}

    if chrome_exec and Path(chrome_exec).is_file():
        launch_kwargs["executable_path"] = chrome_exec
        log_event(
            logger=logger,
            phase="init",
            message="Launching Playwright with local Chrome executable",
            executable_path=chrome_exec,
            headless=headless,
        )
    elif chrome_exec:
        log_event(
            logger=logger,
            phase="init",
            status="warn",
            message="Configured Chrome executable missing; falling back to bundled Chromium",
            executable_path=chrome_exec,
            headless=headless,
        )
    else:
        log_event(
            logger=logger,
            phase="init",
            message="Launching Playwright with bundled Chromium",
            headless=headless,
        )

    try:
        return await playwright.chromium.launch(**launch_kwargs)
    except Exception as exc:
        if launch_kwargs.pop("executable_path", None) is not None:
            log_event(
                logger=logger,
                phase="init",
                status="warn",
                message="Local Chrome launch failed; retrying with bundled Chromium",
                executable_path=chrome_exec,
                headless=headless,
                error=str(exc),
            )
            return await playwright.chromium.launch(**launch_kwargs)
        raise


async def open_portal_context(*, browser: Browser, app_config: Config, logger: JsonLogger) -> BrowserContext:
    """New context carrying the stored, already-authenticated portal session."""

    storage_state = Path(app_config.storage_state).expanduser()
    if storage_state.is_file():
        log_event(logger=logger, phase="init", message="Using stored session state", storage_state=str(storage_state))
        return await browser.new_context(storage_state=str(storage_state), locale="ar-EG")
    log_event(
        logger=logger,
        phase="init",
        status="warn",
        message="Stored session state not found; opening an unauthenticated context",
        storage_state=str(storage_state),
    )
    return await browser.new_context(locale="ar-EG")
