from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

import pytest


@dataclass
class WebhookRecorder:
    base_url: str = ""
    # path -> HTTP status to answer with (default 200)
    statuses: dict[str, int] = field(default_factory=dict)
    requests: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def bodies(self, path: str) -> list[dict[str, Any]]:
        return [body for p, body in self.requests if p == path]


def _make_handler(recorder: WebhookRecorder) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args) -> None:  # noqa: A002
            return

        def do_POST(self) -> None:  # noqa: N802
            n = int(self.headers.get("Content-Length") or "0")
            raw = self.rfile.read(n) if n > 0 else b"{}"
            recorder.requests.append((self.path, json.loads(raw.decode("utf-8"))))
            status = recorder.statuses.get(self.path, 200)
            body = b"ok" if status < 300 else b"error"
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

    return _Handler


@pytest.fixture
def webhook_server():
    recorder = WebhookRecorder()
    httpd = HTTPServer(("127.0.0.1", 0), _make_handler(recorder))
    host, port = httpd.server_address
    recorder.base_url = f"http://{host}:{port}"
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield recorder
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()
