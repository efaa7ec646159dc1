"""Command line entry point: ``playwright-rpa {price,health,form}``."""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import os
from typing import Any, Awaitable, Callable, Mapping

import httpx
import structlog

from .config import Settings, load_settings
from .errors import ConfigError, PreconditionError
from .form_automation import run_form_automation
from .health_check import run_health_check
from .models import NotifyPayload
from .notify import WebhookConfig, notify
from .price_monitor import run_price_monitor

logger = structlog.get_logger(__name__)

ScriptFn = Callable[..., Awaitable[int]]

SCRIPT_TITLES = {
    "price": "Price monitor",
    "health": "Site health check",
    "form": "Form automation",
}


def configure_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # Webhook URLs are secrets and httpx logs request URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run_script(
    name: str,
    script: ScriptFn,
    settings: Settings,
    *,
    client: httpx.AsyncClient | None = None,
    **kwargs: Any,
) -> int:
    """Run one script with the top-level error policy applied.

    PreconditionError -> warning notification, exit 0 (skipped).
    Any other uncaught exception -> failure notification, exit 1.
    """
    webhook = WebhookConfig.from_settings(settings)
    title = SCRIPT_TITLES.get(name, name)
    try:
        code = await script(settings, webhook, client=client, **kwargs)
    except PreconditionError as e:
        logger.warning("Preconditions not met; skipping", script=name, reason=str(e))
        await notify(
            NotifyPayload(title=f"{title} skipped", message=str(e), severity="warning"),
            webhook,
            client=client,
        )
        return 0
    except Exception as e:
        logger.exception("Unrecoverable run error", script=name)
        await notify(
            NotifyPayload(
                title=f"{title} crashed",
                message=f"{type(e).__name__}: {e}",
                severity="failure",
            ),
            webhook,
            client=client,
        )
        return 1

    logger.info("Run finished", script=name, exit_code=code)
    return code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="playwright-rpa",
        description="Scheduled browser automation: price monitor, site health check, form auto-fill",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $RPA_CONFIG or ./rpa.yaml)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("price", help="Record product prices and alert on thresholds")
    sub.add_parser("health", help="Check HTTP status and response time of sites")
    form = sub.add_parser("form", help="Fill in (and submit) a web form")
    form.add_argument("--dry-run", action="store_true", help="Fill the form but do not submit it")
    return parser


def _select_script(command: str, environ: Mapping[str, str]) -> ScriptFn:
    if command == "price":
        return run_price_monitor
    if command == "health":
        return run_health_check
    return functools.partial(run_form_automation, environ=environ)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    environ = dict(os.environ)
    try:
        settings = load_settings(environ, config_path=args.config)
    except ConfigError as e:
        logger.error("Invalid configuration", error=str(e))
        return 2

    if getattr(args, "dry_run", False):
        settings = settings.model_copy(update={"form": settings.form.model_copy(update={"dry_run": True})})

    script = _select_script(args.command, environ)
    return asyncio.run(run_script(args.command, script, settings))


if __name__ == "__main__":
    raise SystemExit(main())
