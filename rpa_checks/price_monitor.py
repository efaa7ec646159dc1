"""Price monitor: product name and price per URL, appended to ``prices.csv``."""

from __future__ import annotations

import functools
import re
from pathlib import Path
from typing import Any

import httpx
import structlog

from .browser import ContextFactory, capture_screenshot, open_browser_context, screenshot_filename
from .checker import run_checks
from .config import DEFAULT_NAME_SELECTOR, DEFAULT_PRICE_SELECTOR, Settings, format_timestamp, now_in
from .models import (
    STATUS_ALERT,
    STATUS_ERROR,
    STATUS_OK,
    CheckResult,
    CheckStatus,
    NotifyPayload,
    Target,
    exit_code_for,
)
from .notify import WebhookConfig, notify
from .reporting import PriceCsvSink, format_number

logger = structlog.get_logger(__name__)

DEMO_URLS = ["https://books.toscrape.com/catalogue/a-light-in-the-attic_1000/index.html"]
SCREENSHOT_PREFIX = "price"
UNKNOWN_NAME = "Unknown"

_NON_NUMERIC_RE = re.compile(r"[^\d.]")
_LEADING_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def parse_price(raw: str | None) -> float | None:
    """Extract a number from price text, e.g. ``"¥1,980"`` -> ``1980.0``."""
    cleaned = _NON_NUMERIC_RE.sub("", raw or "")
    match = _LEADING_NUMBER_RE.match(cleaned)
    if match is None:
        return None
    return float(match.group(0))


def classify_price(price: float | None, threshold: float | None) -> CheckStatus:
    # Inclusive: a price equal to the threshold alerts.
    if price is not None and threshold is not None and price <= threshold:
        return STATUS_ALERT
    return STATUS_OK


async def _text_of(page: Any, selector: str) -> str | None:
    element = await page.query_selector(selector)
    if element is None:
        return None
    return (await element.text_content()) or ""


async def check_price(
    page: Any,
    target: Target,
    *,
    screenshots_dir: Path,
    timeout_ms: int,
    checked_at: str,
) -> CheckResult:
    await page.goto(target.url, wait_until="domcontentloaded", timeout=timeout_ms)

    raw_name = await _text_of(page, target.selector("name", DEFAULT_NAME_SELECTOR))
    name = raw_name.strip() if raw_name is not None else UNKNOWN_NAME

    # First match wins when the selector hits several elements.
    raw_price = (await _text_of(page, target.selector("price", DEFAULT_PRICE_SELECTOR)) or "").strip()
    price = parse_price(raw_price)
    logger.info("Price extracted", url=target.url, name=name, price=price)

    shot = await capture_screenshot(
        page,
        screenshots_dir,
        screenshot_filename(SCREENSHOT_PREFIX, target.url, max_len=50),
    )

    status = classify_price(price, target.threshold)
    return CheckResult(
        url=target.url,
        status=status,
        checked_at=checked_at,
        price=price,
        name=name,
        screenshot_file=shot,
        details={"raw_price": raw_price, "threshold": target.threshold},
    )


def summarize_prices(results: list[CheckResult], *, checked_at: str) -> NotifyPayload:
    alerts = [r for r in results if r.status == STATUS_ALERT]
    errors = [r for r in results if r.status == STATUS_ERROR]

    details: dict[str, str | int | float] = {}
    for r in alerts:
        label = r.name or r.url
        if label in details:
            label = f"{label} [{r.url}]"
        threshold = r.details.get("threshold")
        details[label] = f"{format_number(r.price)} <= {format_number(threshold)} ({r.url})"

    if errors:
        for r in errors:
            details[f"❌ {r.url}"] = r.error or "error"
        return NotifyPayload(
            title="Price check failed",
            message=f"{len(errors)} of {len(results)} URL(s) could not be checked; {len(alerts)} price alert(s).",
            severity="failure",
            details=details,
        )

    if alerts:
        return NotifyPayload(
            title="🛒 Price alert!",
            message=f"{len(alerts)} item(s) at or below the price threshold.",
            severity="warning",
            details=details,
        )

    return NotifyPayload(
        title="Price check completed",
        message=f"Checked {len(results)} URL(s). No threshold alerts.",
        severity="success",
        details={"Run at": checked_at, "Targets": len(results)},
    )


async def run_price_monitor(
    settings: Settings,
    webhook: WebhookConfig,
    *,
    context_factory: ContextFactory = open_browser_context,
    client: httpx.AsyncClient | None = None,
) -> int:
    cfg = settings.price
    targets = cfg.targets()
    if not targets:
        logger.info("WATCH_URLS not set; using demo targets", urls=DEMO_URLS)
        targets = [
            Target(
                url=u,
                selectors={"price": cfg.price_selector, "name": cfg.name_selector},
                threshold=cfg.price_threshold,
            )
            for u in DEMO_URLS
        ]
    logger.info("Starting price monitor", targets=len(targets))

    screenshots_dir = settings.screenshots_path
    screenshots_dir.mkdir(parents=True, exist_ok=True)
    checked_at = format_timestamp(now_in(settings))
    sink = PriceCsvSink(settings.results_path / cfg.csv_filename)

    check = functools.partial(
        check_price,
        screenshots_dir=screenshots_dir,
        timeout_ms=settings.navigation_timeout_ms,
        checked_at=checked_at,
    )
    async with context_factory(settings) as context:
        results = await run_checks(
            targets,
            context,
            check,
            screenshots_dir=screenshots_dir,
            checked_at=checked_at,
            prefix=SCREENSHOT_PREFIX,
            filename_len=50,
            on_result=sink.append_result,
        )

    await notify(summarize_prices(results, checked_at=checked_at), webhook, client=client)
    return exit_code_for(results)
