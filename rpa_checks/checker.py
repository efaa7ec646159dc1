"""Sequential per-target check loop.

Each target is visited once, in order, on a fresh page. Whatever a check
raises is turned into an ``error`` CheckResult for that target and the loop
moves on, so ``len(results) == len(targets)`` always holds.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

import structlog

from .browser import close_quietly, screenshot_filename, try_capture_screenshot
from .errors import TargetCheckError
from .models import CheckResult, Target

logger = structlog.get_logger(__name__)

CheckFn = Callable[[Any, Target], Awaitable[CheckResult]]
ResultSink = Callable[[CheckResult], None]


def describe_error(exc: BaseException) -> str:
    msg = str(exc).strip()
    if not msg:
        return type(exc).__name__
    # Playwright appends a multi-line call log; the first line carries the cause.
    return msg.splitlines()[0]


async def run_checks(
    targets: Sequence[Target],
    context: Any,
    check: CheckFn,
    *,
    screenshots_dir: Path,
    checked_at: str,
    prefix: str = "",
    filename_len: int = 40,
    on_result: ResultSink | None = None,
) -> list[CheckResult]:
    results: list[CheckResult] = []
    total = len(targets)

    for idx, target in enumerate(targets, start=1):
        logger.info("Checking target", url=target.url, index=idx, total=total)
        page = None
        try:
            page = await context.new_page()
            result = await check(page, target)
        except Exception as e:
            error = describe_error(e)
            logger.error("Target check failed", url=target.url, error=error, error_type=type(e).__name__)
            error_prefix = f"{prefix}-error" if prefix else "error"
            shot = await try_capture_screenshot(
                page,
                screenshots_dir,
                screenshot_filename(error_prefix, target.url, max_len=filename_len),
            )
            partial = e.partial if isinstance(e, TargetCheckError) else {}
            result = CheckResult.failed(
                target,
                error=error,
                checked_at=checked_at,
                screenshot_file=shot,
                **partial,
            )
        finally:
            await close_quietly(page)

        results.append(result)
        if on_result is not None:
            try:
                on_result(result)
            except Exception:
                logger.exception("Result sink failed", url=target.url)

    return results
