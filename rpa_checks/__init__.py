"""Scheduled browser automation scripts with webhook notifications."""

from .checker import run_checks
from .config import Settings, load_settings
from .models import CheckResult, NotifyPayload, Target
from .notify import WebhookConfig, notify

__all__ = [
    "CheckResult",
    "NotifyPayload",
    "Settings",
    "Target",
    "WebhookConfig",
    "load_settings",
    "notify",
    "run_checks",
]
