from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rpa_checks.browser import find_chromium_executable, open_browser_context
from rpa_checks.config import Settings
from rpa_checks.health_check import DEMO_URLS, classify_health, run_health_check, summarize_health
from rpa_checks.models import CheckResult
from rpa_checks.notify import WebhookConfig
from rpa_checks.reporting import read_json_report
from tests.fakes import FakeClock, FakeContext, FakeSite, context_factory_for


def _settings(tmp_path: Path, urls: list[str], threshold_ms: float = 5000.0) -> Settings:
    return Settings(
        results_dir=str(tmp_path / "results"),
        health={"urls": urls, "response_time_threshold_ms": threshold_ms},
    )


def test_classify_threshold_boundary_is_strict() -> None:
    assert classify_health(200, 5000.0, 5000.0) == "ok"
    assert classify_health(200, 5001.0, 5000.0) == "slow"


@pytest.mark.parametrize(
    ("status", "expected"),
    [(200, "ok"), (301, "ok"), (399, "ok"), (400, "error"), (503, "error"), (None, "error"), (199, "error")],
)
def test_classify_status_ranges(status: int | None, expected: str) -> None:
    assert classify_health(status, 10.0, 5000.0) == expected


@pytest.mark.asyncio
async def test_example_scenario_ok_and_timeout(tmp_path: Path, webhook_server) -> None:
    sites = {
        "https://a.test": FakeSite(status=200, latency_ms=120),
        "https://b.test": FakeSite(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded.")),
    }
    clock = FakeClock()
    ctx = FakeContext(sites, clock=clock)
    settings = _settings(tmp_path, list(sites))
    webhook = WebhookConfig(slack_url=webhook_server.url("/slack"))

    code = await run_health_check(settings, webhook, context_factory=context_factory_for(ctx), clock=clock)

    assert code == 1
    results = read_json_report(tmp_path / "results" / "health-report.json")
    assert [r.url for r in results] == list(sites)
    ok, failed = results
    assert ok.status == "ok"
    assert ok.http_status == 200
    assert ok.response_time_ms == pytest.approx(120.0)
    assert ok.error is None
    assert failed.status == "error"
    assert failed.http_status is None
    assert failed.error is not None and failed.error.startswith("Timeout")

    (body,) = webhook_server.bodies("/slack")
    assert body["attachments"][0]["color"] == "#ff0000"
    assert "Error: 1" in body["attachments"][0]["text"]


@pytest.mark.asyncio
async def test_slow_only_is_warning_and_exit_zero(tmp_path: Path, webhook_server) -> None:
    sites = {"https://slow.test": FakeSite(status=200, latency_ms=800)}
    clock = FakeClock()
    ctx = FakeContext(sites, clock=clock)
    webhook = WebhookConfig(discord_url=webhook_server.url("/discord"))

    code = await run_health_check(
        _settings(tmp_path, list(sites), threshold_ms=500.0),
        webhook,
        context_factory=context_factory_for(ctx),
        clock=clock,
    )

    assert code == 0
    (result,) = read_json_report(tmp_path / "results" / "health-report.json")
    assert result.status == "slow"
    (body,) = webhook_server.bodies("/discord")
    assert body["embeds"][0]["color"] == 0xFFA500


@pytest.mark.asyncio
async def test_bad_status_is_error_with_screenshot(tmp_path: Path) -> None:
    sites = {"https://down.test": FakeSite(status=502)}
    ctx = FakeContext(sites, clock=FakeClock())

    code = await run_health_check(_settings(tmp_path, list(sites)), WebhookConfig(), context_factory=context_factory_for(ctx))

    assert code == 1
    (result,) = read_json_report(tmp_path / "results" / "health-report.json")
    assert result.status == "error"
    assert result.http_status == 502
    assert result.error == "unexpected_http_status: 502"
    assert result.screenshot_file and result.screenshot_file.startswith("health-")


@pytest.mark.asyncio
async def test_empty_targets_fall_back_to_demo_list(tmp_path: Path) -> None:
    ctx = FakeContext(clock=FakeClock())
    code = await run_health_check(_settings(tmp_path, []), WebhookConfig(), context_factory=context_factory_for(ctx))
    assert code == 0
    assert ctx.visited == DEMO_URLS


@pytest.mark.asyncio
async def test_report_is_overwritten_each_run(tmp_path: Path) -> None:
    settings = _settings(tmp_path, ["https://a.test", "https://b.test"])
    await run_health_check(settings, WebhookConfig(), context_factory=context_factory_for(FakeContext(clock=FakeClock())))
    settings = _settings(tmp_path, ["https://c.test"])
    await run_health_check(settings, WebhookConfig(), context_factory=context_factory_for(FakeContext(clock=FakeClock())))

    raw = json.loads((tmp_path / "results" / "health-report.json").read_text(encoding="utf-8"))
    assert [item["url"] for item in raw] == ["https://c.test"]


@pytest.mark.asyncio
async def test_report_uses_health_report_keys(tmp_path: Path) -> None:
    sites = {"https://a.test": FakeSite(status=200, latency_ms=120)}
    clock = FakeClock()
    ctx = FakeContext(sites, clock=clock)

    await run_health_check(_settings(tmp_path, list(sites)), WebhookConfig(), context_factory=context_factory_for(ctx), clock=clock)

    (entry,) = json.loads((tmp_path / "results" / "health-report.json").read_text(encoding="utf-8"))
    assert set(entry) == {"url", "status", "httpStatus", "responseTimeMs", "error", "screenshotFile", "checkedAt"}
    assert entry["httpStatus"] == 200
    assert entry["responseTimeMs"] == pytest.approx(120.0)
    assert entry["error"] is None


def test_summary_severity_and_details() -> None:
    results = [
        CheckResult(url="https://a.test", status="ok", checked_at="t", http_status=200, response_time_ms=120.0),
        CheckResult(url="https://b.test", status="error", checked_at="t", error="timeout"),
    ]
    payload = summarize_health(results)
    assert payload.severity == "failure"
    assert payload.message == "2 checks completed | OK: 1 / Slow: 0 / Error: 1"
    assert payload.details == {
        "✅ https://a.test": "HTTP 200 / 120ms",
        "❌ https://b.test": "connection failed / N/A",
    }

    healthy = summarize_health(results[:1])
    assert healthy.severity == "success"
    assert healthy.title == "🟢 All sites healthy"


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_GET(self) -> None:  # noqa: N802
        status = 200 if self.path == "/ok" else 503
        body = b"<!doctype html><html><head><title>OK</title></head><body><h1>fine</h1></body></html>"
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


@pytest.fixture(scope="module")
def local_site_base_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.mark.asyncio
async def test_real_browser_against_local_server(tmp_path: Path, local_site_base_url: str) -> None:
    chromium_path = find_chromium_executable()
    if not chromium_path:
        pytest.skip("No chromium/chrome available for Playwright")

    settings = Settings(
        results_dir=str(tmp_path / "results"),
        chromium_path=chromium_path,
        navigation_timeout_seconds=10.0,
        timezone="UTC",
        health={"urls": [f"{local_site_base_url}/ok", f"{local_site_base_url}/down"]},
    )
    code = await run_health_check(settings, WebhookConfig(), context_factory=open_browser_context)

    assert code == 1
    ok, down = read_json_report(tmp_path / "results" / "health-report.json")
    assert ok.status == "ok"
    assert ok.http_status == 200
    assert down.status == "error"
    assert down.http_status == 503
    assert (settings.screenshots_path / str(ok.screenshot_file)).exists()
