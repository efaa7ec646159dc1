"""Site health check: status code, response time and a screenshot per URL.

Writes ``health-report.json`` (overwritten each run) and exits 1 when any
site is in error.
"""

from __future__ import annotations

import functools
import time
from pathlib import Path
from typing import Any, Callable

import httpx
import structlog

from .browser import ContextFactory, capture_screenshot, open_browser_context, screenshot_filename
from .checker import describe_error, run_checks
from .config import Settings, format_timestamp, now_in
from .errors import TargetCheckError
from .models import (
    STATUS_ERROR,
    STATUS_OK,
    STATUS_SLOW,
    CheckResult,
    CheckStatus,
    NotifyPayload,
    Target,
    count_statuses,
    exit_code_for,
)
from .notify import WebhookConfig, notify
from .reporting import write_json_report

logger = structlog.get_logger(__name__)

DEMO_URLS = [
    "https://example.com",
    "https://playwright.dev",
]
SCREENSHOT_PREFIX = "health"

_STATUS_ICONS = {STATUS_OK: "✅", STATUS_SLOW: "⚠️", STATUS_ERROR: "❌"}


def classify_health(http_status: int | None, response_time_ms: float, threshold_ms: float) -> CheckStatus:
    if http_status is None or not 200 <= http_status < 400:
        return STATUS_ERROR
    # Strictly greater: a response exactly at the threshold is still ok.
    if response_time_ms > threshold_ms:
        return STATUS_SLOW
    return STATUS_OK


async def check_site(
    page: Any,
    target: Target,
    *,
    screenshots_dir: Path,
    timeout_ms: int,
    checked_at: str,
    default_threshold_ms: float,
    clock: Callable[[], float] = time.perf_counter,
) -> CheckResult:
    started = clock()
    response = await page.goto(target.url, wait_until="domcontentloaded", timeout=timeout_ms)
    elapsed_ms = round((clock() - started) * 1000.0, 3)
    http_status = response.status if response is not None else None
    logger.info("Page loaded", url=target.url, http_status=http_status, response_time_ms=elapsed_ms)

    try:
        shot = await capture_screenshot(page, screenshots_dir, screenshot_filename(SCREENSHOT_PREFIX, target.url))
    except Exception as e:
        raise TargetCheckError(
            f"screenshot_error: {describe_error(e)}",
            http_status=http_status,
            response_time_ms=elapsed_ms,
        ) from e

    threshold = target.threshold if target.threshold is not None else default_threshold_ms
    status = classify_health(http_status, elapsed_ms, threshold)
    error = None
    if status == STATUS_ERROR:
        error = f"unexpected_http_status: {http_status if http_status is not None else 'none'}"

    return CheckResult(
        url=target.url,
        status=status,
        checked_at=checked_at,
        http_status=http_status,
        response_time_ms=elapsed_ms,
        screenshot_file=shot,
        error=error,
        details={"threshold_ms": threshold},
    )


def _format_ms(value: float | None) -> str:
    if value is None:
        return "N/A"
    return f"{int(round(value))}ms"


def summarize_health(results: list[CheckResult]) -> NotifyPayload:
    counts = count_statuses(results)
    ok, slow, errors = counts[STATUS_OK], counts[STATUS_SLOW], counts[STATUS_ERROR]

    details: dict[str, str | int | float] = {}
    for r in results:
        icon = _STATUS_ICONS.get(r.status, "❌")
        status = f"HTTP {r.http_status}" if r.http_status is not None else "connection failed"
        details[f"{icon} {r.url}"] = f"{status} / {_format_ms(r.response_time_ms)}"

    if errors:
        severity = "failure"
    elif slow:
        severity = "warning"
    else:
        severity = "success"

    return NotifyPayload(
        title="🚨 Site issues detected" if (slow or errors) else "🟢 All sites healthy",
        message=f"{len(results)} checks completed | OK: {ok} / Slow: {slow} / Error: {errors}",
        severity=severity,
        details=details,
    )


async def run_health_check(
    settings: Settings,
    webhook: WebhookConfig,
    *,
    context_factory: ContextFactory = open_browser_context,
    client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.perf_counter,
) -> int:
    targets = settings.health.targets()
    if not targets:
        logger.info("MONITOR_URLS not set; using demo targets", urls=DEMO_URLS)
        targets = [Target(url=u) for u in DEMO_URLS]
    logger.info("Starting health check", targets=len(targets))

    screenshots_dir = settings.screenshots_path
    screenshots_dir.mkdir(parents=True, exist_ok=True)
    checked_at = format_timestamp(now_in(settings))

    check = functools.partial(
        check_site,
        screenshots_dir=screenshots_dir,
        timeout_ms=settings.navigation_timeout_ms,
        checked_at=checked_at,
        default_threshold_ms=settings.health.response_time_threshold_ms,
        clock=clock,
    )
    async with context_factory(settings) as context:
        results = await run_checks(
            targets,
            context,
            check,
            screenshots_dir=screenshots_dir,
            checked_at=checked_at,
            prefix=SCREENSHOT_PREFIX,
        )

    report_path = settings.results_path / settings.health.report_filename
    write_json_report(report_path, results)
    logger.info("Report written", path=str(report_path))

    counts = count_statuses(results)
    logger.info(
        "Health check summary",
        ok=counts[STATUS_OK],
        slow=counts[STATUS_SLOW],
        error=counts[STATUS_ERROR],
    )

    await notify(summarize_health(results), webhook, client=client)
    return exit_code_for(results)
