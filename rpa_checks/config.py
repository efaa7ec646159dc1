"""Run configuration for the RPA scripts.

Settings are built once per process by :func:`load_settings` from an optional
YAML file overlaid with environment variables, then passed explicitly to each
script. Nothing below the CLI reads ``os.environ``.
"""

from __future__ import annotations

import math
import os
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigError
from .models import Target

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_FILE = "rpa.yaml"
DEFAULT_RESPONSE_TIME_THRESHOLD_MS = 5000.0
DEFAULT_PRICE_SELECTOR = '[class*="price"]'
DEFAULT_NAME_SELECTOR = "h1"
DEFAULT_FORM_URL = "https://maru0014.github.io/playwright-rpa/form.html"


def parse_url_list(raw: Optional[str]) -> list[str]:
    """Split a comma-separated value into trimmed, non-empty entries."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_threshold(raw: Optional[str], default: Optional[float], *, name: str = "threshold") -> Optional[float]:
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        logger.warning("Invalid numeric value; using default", option=name, value=raw, default=default)
        return default
    if not math.isfinite(value):
        logger.warning("Non-finite numeric value; using default", option=name, value=raw, default=default)
        return default
    return value


def parse_flag(raw: Optional[str]) -> bool:
    """Only the exact string ``"true"`` enables a flag."""
    return raw == "true"


def _coerce_entries(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        value = parse_url_list(value)
    if not isinstance(value, list):
        return value
    out: list[Any] = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                out.append({"url": item.strip()})
        else:
            out.append(item)
    return out


class TargetEntry(BaseModel):
    """One configured URL plus optional per-target overrides."""
    url: str
    price_selector: Optional[str] = None
    name_selector: Optional[str] = None
    threshold: Optional[float] = None


class PriceMonitorConfig(BaseModel):
    urls: list[TargetEntry] = Field(default_factory=list, description="Product pages to watch")
    price_selector: str = Field(default=DEFAULT_PRICE_SELECTOR, description="CSS selector of the price element")
    name_selector: str = Field(default=DEFAULT_NAME_SELECTOR, description="CSS selector of the product name")
    price_threshold: Optional[float] = Field(default=None, description="Alert when price is at or below this")
    csv_filename: str = "prices.csv"

    @field_validator("urls", mode="before")
    @classmethod
    def split_urls(cls, value: Any) -> Any:
        return _coerce_entries(value)

    def targets(self) -> list[Target]:
        return [
            Target(
                url=entry.url,
                selectors={
                    "price": entry.price_selector or self.price_selector,
                    "name": entry.name_selector or self.name_selector,
                },
                threshold=entry.threshold if entry.threshold is not None else self.price_threshold,
            )
            for entry in self.urls
        ]


class HealthCheckConfig(BaseModel):
    urls: list[TargetEntry] = Field(default_factory=list, description="Sites to check")
    response_time_threshold_ms: float = Field(
        default=DEFAULT_RESPONSE_TIME_THRESHOLD_MS, description="Responses slower than this are 'slow'"
    )
    report_filename: str = "health-report.json"

    @field_validator("urls", mode="before")
    @classmethod
    def split_urls(cls, value: Any) -> Any:
        return _coerce_entries(value)

    def targets(self) -> list[Target]:
        return [
            Target(
                url=entry.url,
                threshold=entry.threshold if entry.threshold is not None else self.response_time_threshold_ms,
            )
            for entry in self.urls
        ]


class FormConfig(BaseModel):
    target_url: str = DEFAULT_FORM_URL
    dry_run: bool = False
    # selector -> value; values may contain ${ENV_VAR} placeholders
    inputs: dict[str, str] = Field(
        default_factory=lambda: {
            "#company": "Playwright RPA Inc.",
            "#name": "RPA Bot",
            "#email": "bot@example.com",
            "#message": "This is an automated test.\nSent from a scheduled CI run.",
        }
    )
    selects: dict[str, str] = Field(default_factory=lambda: {"#category": "support"})
    submit_selector: str = "#submit-button"
    success_url_pattern: str = r"form\.html#success"
    submit_timeout_seconds: float = 10.0


class Settings(BaseModel):
    """Process-wide, immutable-for-the-run configuration."""

    results_dir: str = Field(default="results", description="Directory for reports and screenshots")
    timezone: str = Field(default="Asia/Tokyo", description="Timezone for timestamps and notification footers")
    locale: str = "ja-JP"
    navigation_timeout_seconds: float = Field(default=30.0, description="Bound for each browser operation")
    headless: bool = True
    chromium_path: Optional[str] = None

    slack_webhook_url: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    webhook_timeout_seconds: float = 15.0

    price: PriceMonitorConfig = Field(default_factory=PriceMonitorConfig)
    health: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    form: FormConfig = Field(default_factory=FormConfig)

    @property
    def results_path(self) -> Path:
        return Path(self.results_dir)

    @property
    def screenshots_path(self) -> Path:
        return self.results_path / "screenshots"

    @property
    def navigation_timeout_ms(self) -> int:
        return int(self.navigation_timeout_seconds * 1000)


def load_timezone(name: str) -> tzinfo:
    cleaned = (name or "").strip()
    if not cleaned or cleaned.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(cleaned)
    except ZoneInfoNotFoundError:
        logger.warning("Timezone not found; falling back to UTC", tz=cleaned)
        return timezone.utc


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y/%m/%d %H:%M:%S")


def now_in(settings: Settings) -> datetime:
    return datetime.now(load_timezone(settings.timezone))


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")
    return data


def _env(environ: Mapping[str, str], key: str) -> Optional[str]:
    # CI systems export unset secrets as empty strings.
    value = environ.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[str] = None,
) -> Settings:
    """Load settings from an optional YAML file, overridden by environment variables."""
    env = os.environ if environ is None else environ

    data: dict[str, Any] = {}
    explicit = config_path or _env(env, "RPA_CONFIG")
    path = Path(explicit or DEFAULT_CONFIG_FILE)
    if path.exists():
        data = _load_yaml(path)
    elif explicit:
        raise ConfigError(f"Config file not found: {path}")

    for section in ("price", "health", "form"):
        raw = data.get(section)
        if raw is None:
            data[section] = {}
        elif not isinstance(raw, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")

    top_level = {
        "results_dir": _env(env, "RPA_RESULTS_DIR"),
        "timezone": _env(env, "RPA_TIMEZONE"),
        "chromium_path": _env(env, "CHROMIUM_PATH"),
        "slack_webhook_url": _env(env, "SLACK_WEBHOOK_URL"),
        "discord_webhook_url": _env(env, "DISCORD_WEBHOOK_URL"),
    }
    for key, value in top_level.items():
        if value is not None:
            data[key] = value

    timeout = parse_threshold(_env(env, "RPA_NAVIGATION_TIMEOUT"), None, name="RPA_NAVIGATION_TIMEOUT")
    if timeout is not None and timeout > 0:
        data["navigation_timeout_seconds"] = timeout

    headless = _env(env, "BROWSER_HEADLESS")
    if headless is not None:
        data["headless"] = parse_flag(headless)

    price = data["price"]
    watch_urls = parse_url_list(_env(env, "WATCH_URLS"))
    if watch_urls:
        price["urls"] = watch_urls
    for env_key, cfg_key in (("PRICE_SELECTOR", "price_selector"), ("NAME_SELECTOR", "name_selector")):
        value = _env(env, env_key)
        if value is not None:
            price[cfg_key] = value
    price_threshold = parse_threshold(_env(env, "PRICE_THRESHOLD"), None, name="PRICE_THRESHOLD")
    if price_threshold is not None:
        price["price_threshold"] = price_threshold

    health = data["health"]
    monitor_urls = parse_url_list(_env(env, "MONITOR_URLS"))
    if monitor_urls:
        health["urls"] = monitor_urls
    response_threshold = parse_threshold(
        _env(env, "RESPONSE_TIME_THRESHOLD"),
        None,
        name="RESPONSE_TIME_THRESHOLD",
    )
    if response_threshold is not None:
        health["response_time_threshold_ms"] = response_threshold

    form = data["form"]
    target_url = _env(env, "TARGET_URL")
    if target_url is not None:
        form["target_url"] = target_url
    if "DRY_RUN" in env:
        form["dry_run"] = parse_flag(env.get("DRY_RUN"))
    submit_selector = _env(env, "FORM_SUBMIT_SELECTOR")
    if submit_selector is not None:
        form["submit_selector"] = submit_selector

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
