from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


CheckStatus = Literal["ok", "slow", "alert", "error"]
Severity = Literal["success", "warning", "failure"]

STATUS_OK: CheckStatus = "ok"
STATUS_SLOW: CheckStatus = "slow"
STATUS_ALERT: CheckStatus = "alert"
STATUS_ERROR: CheckStatus = "error"

# "slow" and "alert" are threshold classifications, not failures.
DEGRADED_STATUSES = frozenset({STATUS_SLOW, STATUS_ALERT})


@dataclass(frozen=True)
class Target:
    url: str
    # e.g. {"price": '[class*="price"]', "name": "h1"}
    selectors: dict[str, str] = field(default_factory=dict)
    threshold: float | None = None

    def selector(self, key: str, default: str | None = None) -> str | None:
        value = self.selectors.get(key)
        return value if value else default


@dataclass(frozen=True)
class CheckResult:
    url: str
    status: CheckStatus
    checked_at: str
    http_status: int | None = None
    response_time_ms: float | None = None
    price: float | None = None
    name: str | None = None
    screenshot_file: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def severity(self) -> str:
        """Tri-state view of ``status``: ok / degraded / error."""
        if self.status == STATUS_ERROR:
            return "error"
        if self.status in DEGRADED_STATUSES:
            return "degraded"
        return "ok"

    @classmethod
    def failed(
        cls,
        target: Target,
        *,
        error: str,
        checked_at: str,
        screenshot_file: str | None = None,
        **partial: Any,
    ) -> CheckResult:
        known = {k: v for k, v in partial.items() if k in _PARTIAL_FIELDS}
        return cls(
            url=target.url,
            status=STATUS_ERROR,
            checked_at=checked_at,
            screenshot_file=screenshot_file,
            error=error,
            **known,
        )

    def to_report_dict(self) -> dict[str, Any]:
        """Health report entry, keyed the way CI readers of ``health-report.json`` expect."""
        return {
            "url": self.url,
            "status": self.status,
            "httpStatus": self.http_status,
            "responseTimeMs": self.response_time_ms,
            "error": self.error,
            "screenshotFile": self.screenshot_file,
            "checkedAt": self.checked_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckResult:
        status = str(data.get("status") or STATUS_ERROR)
        if status not in (STATUS_OK, STATUS_SLOW, STATUS_ALERT, STATUS_ERROR):
            raise ValueError(f"Invalid check status: {status!r}")

        http_status = _pick(data, "http_status", "httpStatus")
        response_time_ms = _pick(data, "response_time_ms", "responseTimeMs")
        price = data.get("price")
        details = data.get("details")
        return cls(
            url=str(data["url"]),
            status=status,  # type: ignore[arg-type]
            checked_at=str(_pick(data, "checked_at", "checkedAt") or ""),
            http_status=int(http_status) if http_status is not None else None,
            response_time_ms=float(response_time_ms) if response_time_ms is not None else None,
            price=float(price) if price is not None else None,
            name=data.get("name"),
            screenshot_file=_pick(data, "screenshot_file", "screenshotFile"),
            error=data.get("error"),
            details=details if isinstance(details, dict) else {},
        )


_PARTIAL_FIELDS = frozenset({"http_status", "response_time_ms", "price", "name", "details"})


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class NotifyPayload:
    title: str
    message: str
    severity: Severity
    # Insertion order is preserved when rendered as bullet lines.
    details: dict[str, str | int | float] = field(default_factory=dict)


def count_statuses(results: list[CheckResult]) -> dict[str, int]:
    counts = {STATUS_OK: 0, STATUS_SLOW: 0, STATUS_ALERT: 0, STATUS_ERROR: 0}
    for r in results:
        counts[r.status] = counts.get(r.status, 0) + 1
    return counts


def exit_code_for(results: list[CheckResult]) -> int:
    """0 unless at least one target ended in a hard error."""
    return 1 if any(r.severity == "error" for r in results) else 0
