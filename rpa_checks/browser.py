from __future__ import annotations

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable
from urllib.parse import quote

import structlog
from playwright.async_api import BrowserContext, async_playwright

from .config import Settings

logger = structlog.get_logger(__name__)

ContextFactory = Callable[[Settings], Any]

_CHROMIUM_CANDIDATES = [
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
]


def find_chromium_executable(configured: str | None = None) -> str | None:
    if configured and Path(configured).exists():
        return configured
    for path in _CHROMIUM_CANDIDATES:
        if Path(path).exists():
            return path
    return None


def screenshot_filename(prefix: str, url: str, *, now_ms: int | None = None, max_len: int = 40) -> str:
    """``{prefix}-{epoch_ms}-{percent-encoded url[:max_len]}.png``

    The URL is percent-encoded like ``encodeURIComponent``: only
    ``A-Z a-z 0-9 - _ . ! ~ * ' ( )`` survive unescaped.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    encoded = quote(url or "", safe="!*'()")[:max_len]
    parts = [p for p in (prefix, str(now_ms), encoded) if p]
    return "-".join(parts) + ".png"


async def capture_screenshot(page: Any, directory: Path, filename: str) -> str:
    directory.mkdir(parents=True, exist_ok=True)
    await page.screenshot(path=str(directory / filename), full_page=False)
    return filename


async def try_capture_screenshot(page: Any, directory: Path, filename: str) -> str | None:
    """Best-effort variant used while handling another error."""
    if page is None:
        return None
    try:
        return await capture_screenshot(page, directory, filename)
    except Exception:
        return None


async def close_quietly(obj: Any) -> None:
    if obj is None:
        return
    try:
        await obj.close()
    except Exception:
        pass


@asynccontextmanager
async def open_browser_context(settings: Settings) -> AsyncIterator[BrowserContext]:
    """Launch Chromium and yield one context configured for the run."""
    launch_kwargs: dict[str, Any] = {
        "headless": settings.headless,
        "args": ["--no-sandbox", "--disable-dev-shm-usage"],
    }
    executable = find_chromium_executable(settings.chromium_path)
    if executable:
        launch_kwargs["executable_path"] = executable

    async with async_playwright() as p:
        logger.info("Launching browser", headless=settings.headless, executable=executable or "bundled")
        browser = await p.chromium.launch(**launch_kwargs)
        context = None
        try:
            context = await browser.new_context(
                locale=settings.locale,
                timezone_id=settings.timezone,
                viewport={"width": 1280, "height": 720},
            )
            context.set_default_timeout(settings.navigation_timeout_ms)
            context.set_default_navigation_timeout(settings.navigation_timeout_ms)
            yield context
        finally:
            await close_quietly(context)
            await browser.close()
