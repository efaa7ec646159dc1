"""Form auto-fill: open a form, fill it and (unless dry-run) submit it.

Field values may reference secrets as ``${VAR}``. A missing variable is a
precondition failure: the run is reported as skipped instead of failed.
"""

from __future__ import annotations

import functools
import re
from pathlib import Path
from typing import Any, Mapping

import httpx
import structlog

from .browser import ContextFactory, capture_screenshot, open_browser_context
from .checker import run_checks
from .config import FormConfig, Settings, format_timestamp, now_in
from .errors import PreconditionError
from .models import STATUS_ERROR, STATUS_OK, CheckResult, NotifyPayload, Target
from .notify import WebhookConfig, notify

logger = structlog.get_logger(__name__)

SCREENSHOT_PREFIX = "form"

_ENV_REF_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]{0,63})\}")


def resolve_inputs(values: Mapping[str, str], environ: Mapping[str, str]) -> dict[str, str]:
    """Replace ``${VAR}`` placeholders; raise PreconditionError listing every missing VAR."""
    missing: set[str] = set()

    def _repl(m: re.Match[str]) -> str:
        key = m.group(1)
        val = environ.get(key)
        if val is None or val == "":
            missing.add(key)
            return ""
        return val

    resolved = {selector: _ENV_REF_RE.sub(_repl, str(value)) for selector, value in values.items()}
    if missing:
        raise PreconditionError(f"missing form inputs: {', '.join(sorted(missing))}")
    return resolved


async def fill_form(
    page: Any,
    target: Target,
    *,
    form: FormConfig,
    values: Mapping[str, str],
    dry_run: bool,
    screenshots_dir: Path,
    timeout_ms: int,
    checked_at: str,
) -> CheckResult:
    logger.info("Opening form", url=target.url)
    await page.goto(target.url, wait_until="domcontentloaded", timeout=timeout_ms)
    screenshots = [await capture_screenshot(page, screenshots_dir, "form-before.png")]

    for selector, value in values.items():
        await page.fill(selector, value, timeout=timeout_ms)
    for selector, option in form.selects.items():
        await page.select_option(selector, option, timeout=timeout_ms)
    screenshots.append(await capture_screenshot(page, screenshots_dir, "form-filled.png"))
    logger.info("Form filled", fields=len(values), selects=len(form.selects))

    submitted = False
    if dry_run:
        logger.info("Dry run; skipping submit")
    else:
        await page.click(form.submit_selector, timeout=timeout_ms)
        await page.wait_for_url(
            re.compile(form.success_url_pattern),
            timeout=int(form.submit_timeout_seconds * 1000),
        )
        screenshots.append(await capture_screenshot(page, screenshots_dir, "form-after.png"))
        submitted = True
        logger.info("Form submitted", url=target.url)

    return CheckResult(
        url=target.url,
        status=STATUS_OK,
        checked_at=checked_at,
        screenshot_file=screenshots[-1],
        details={
            "screenshots": screenshots,
            # Selectors only; values can hold secrets.
            "filled": sorted([*values.keys(), *form.selects.keys()]),
            "submitted": submitted,
            "dry_run": dry_run,
        },
    )


def summarize_form(result: CheckResult, *, dry_run: bool) -> NotifyPayload:
    if result.status == STATUS_ERROR:
        return NotifyPayload(
            title="📝 Form automation failed",
            message=result.error or "unknown error",
            severity="failure",
        )
    if dry_run:
        return NotifyPayload(
            title="📝 Form automation (DRY RUN)",
            message="The form was filled in; submission was skipped.",
            severity="success",
            details={"Mode": "dry run (not submitted)"},
        )
    return NotifyPayload(
        title="📝 Form automation completed",
        message="The form was filled in and submitted.",
        severity="success",
        details={"Mode": "submitted"},
    )


async def run_form_automation(
    settings: Settings,
    webhook: WebhookConfig,
    *,
    environ: Mapping[str, str] | None = None,
    context_factory: ContextFactory = open_browser_context,
    client: httpx.AsyncClient | None = None,
) -> int:
    form = settings.form
    if not form.target_url.strip():
        raise PreconditionError("TARGET_URL is empty")
    values = resolve_inputs(form.inputs, environ or {})
    dry_run = form.dry_run
    logger.info("Starting form automation", url=form.target_url, dry_run=dry_run)

    screenshots_dir = settings.screenshots_path
    screenshots_dir.mkdir(parents=True, exist_ok=True)
    checked_at = format_timestamp(now_in(settings))

    check = functools.partial(
        fill_form,
        form=form,
        values=values,
        dry_run=dry_run,
        screenshots_dir=screenshots_dir,
        timeout_ms=settings.navigation_timeout_ms,
        checked_at=checked_at,
    )
    async with context_factory(settings) as context:
        results = await run_checks(
            [Target(url=form.target_url.strip())],
            context,
            check,
            screenshots_dir=screenshots_dir,
            checked_at=checked_at,
            prefix=SCREENSHOT_PREFIX,
        )

    result = results[0]
    await notify(summarize_form(result, dry_run=dry_run), webhook, client=client)
    return 1 if result.status == STATUS_ERROR else 0
