"""Exception hierarchy for the RPA scripts."""

from __future__ import annotations

from typing import Any


class RpaError(Exception):
    """Base class for every error raised by rpa_checks."""


class ConfigError(RpaError):
    """Configuration file or values could not be parsed."""


class PreconditionError(RpaError):
    """Required inputs for an interactive flow are missing.

    Scripts treat this as "skipped": a warning notification is sent and the
    process exits 0.
    """


class NotificationError(RpaError):
    """A webhook post failed (network error or non-2xx response)."""


class TargetCheckError(RpaError):
    """A single target failed after some metrics were already measured.

    ``partial`` holds CheckResult field values (e.g. ``http_status``) that the
    checker loop copies onto the error record.
    """

    def __init__(self, message: str, **partial: Any) -> None:
        super().__init__(message)
        self.partial = partial

