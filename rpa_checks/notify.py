"""Slack / Discord webhook notifications.

Each configured backend gets one POST. Posts run concurrently and every
outcome is collected; a failing backend is logged and never raised to the
caller. With no backend configured the summary is only logged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
import structlog

from .config import Settings, format_timestamp, load_timezone
from .errors import NotificationError
from .models import NotifyPayload

logger = structlog.get_logger(__name__)

FOOTER_LABEL = "playwright-rpa"

SEVERITY_COLORS = {
    "success": "#36a64f",
    "warning": "#ffa500",
    "failure": "#ff0000",
}

SEVERITY_GLYPHS = {
    "success": "✅",
    "warning": "⚠️",
    "failure": "❌",
}

# Discord rejects embeds above these sizes.
DISCORD_TITLE_MAX = 256
DISCORD_DESCRIPTION_MAX = 4096


@dataclass(frozen=True)
class WebhookConfig:
    slack_url: str | None = None
    discord_url: str | None = None
    timeout_seconds: float = 15.0
    timezone: str = "Asia/Tokyo"

    @classmethod
    def from_settings(cls, settings: Settings) -> WebhookConfig:
        return cls(
            slack_url=settings.slack_webhook_url,
            discord_url=settings.discord_webhook_url,
            timeout_seconds=settings.webhook_timeout_seconds,
            timezone=settings.timezone,
        )

    def backends(self) -> list[tuple[str, str]]:
        out: list[tuple[str, str]] = []
        if self.slack_url:
            out.append(("slack", self.slack_url))
        if self.discord_url:
            out.append(("discord", self.discord_url))
        return out


def render_message(payload: NotifyPayload) -> str:
    if not payload.details:
        return payload.message
    lines = [f"• {label}: {value}" for label, value in payload.details.items()]
    return payload.message + "\n" + "\n".join(lines)


def render_title(payload: NotifyPayload) -> str:
    return f"{SEVERITY_GLYPHS[payload.severity]} {payload.title}"


def footer_text(now: datetime) -> str:
    return f"{FOOTER_LABEL} • {format_timestamp(now)}"


def discord_color(hex_color: str) -> int:
    return int(hex_color.lstrip("#"), 16)


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def build_slack_body(payload: NotifyPayload, *, footer: str) -> dict[str, Any]:
    return {
        "attachments": [
            {
                "color": SEVERITY_COLORS[payload.severity],
                "title": render_title(payload),
                "text": render_message(payload),
                "footer": footer,
            }
        ]
    }


def build_discord_body(payload: NotifyPayload, *, footer: str) -> dict[str, Any]:
    return {
        "embeds": [
            {
                "title": _truncate(render_title(payload), DISCORD_TITLE_MAX),
                "description": _truncate(render_message(payload), DISCORD_DESCRIPTION_MAX),
                "color": discord_color(SEVERITY_COLORS[payload.severity]),
                "footer": {"text": footer},
            }
        ]
    }


_BODY_BUILDERS = {
    "slack": build_slack_body,
    "discord": build_discord_body,
}


def _redact(text: str, url: str) -> str:
    # Webhook URLs are credentials.
    return text.replace(url, "<redacted>") if url else text


async def post_webhook(client: httpx.AsyncClient, url: str, body: dict[str, Any], *, timeout: float) -> int:
    try:
        resp = await client.post(url, json=body, timeout=timeout)
    except httpx.HTTPError as e:
        raise NotificationError(_redact(f"{type(e).__name__}: {e}", url)) from e
    if not 200 <= resp.status_code < 300:
        raise NotificationError(f"webhook returned HTTP {resp.status_code}")
    return resp.status_code


async def notify(
    payload: NotifyPayload,
    config: WebhookConfig,
    *,
    client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> dict[str, bool]:
    """Send ``payload`` to every configured backend; returns backend -> delivered."""
    backends = config.backends()
    if not backends:
        logger.info("Webhook URL not configured; skipping notification")
        logger.info("Notification summary", title=render_title(payload), message=payload.message, severity=payload.severity)
        return {}

    if now is None:
        now = datetime.now(load_timezone(config.timezone))
    footer = footer_text(now)

    owns_client = client is None
    http_client = client if client is not None else httpx.AsyncClient()
    try:
        outcomes = await asyncio.gather(
            *(
                post_webhook(
                    http_client,
                    url,
                    _BODY_BUILDERS[name](payload, footer=footer),
                    timeout=config.timeout_seconds,
                )
                for name, url in backends
            ),
            return_exceptions=True,
        )
    finally:
        if owns_client:
            await http_client.aclose()

    delivered: dict[str, bool] = {}
    for (name, url), outcome in zip(backends, outcomes):
        if isinstance(outcome, BaseException):
            delivered[name] = False
            logger.warning(
                "Webhook delivery failed",
                backend=name,
                error=_redact(str(outcome), url),
                error_type=type(outcome).__name__,
            )
        else:
            delivered[name] = True
            logger.info("Notification sent", backend=name, http_status=outcome)
    return delivered
