from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Sequence

from .models import CheckResult

PRICE_CSV_HEADER = "timestamp,url,name,price"
MISSING_VALUE = "N/A"


class PriceCsvSink:
    """Append-only price log. One row per processed target, written immediately."""

    def __init__(self, path: Path, *, header: str = PRICE_CSV_HEADER) -> None:
        self.path = path
        self.header = header

    def _ensure_header(self) -> None:
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8", newline="") as f:
            f.write(self.header + "\n")

    def append_row(self, row: Sequence[str]) -> None:
        self._ensure_header()
        with open(self.path, "a", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
            writer.writerow([str(v) for v in row])

    def append_result(self, result: CheckResult) -> None:
        self.append_row(price_row(result))


def format_number(value: float | None) -> str:
    if value is None:
        return MISSING_VALUE
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def price_row(result: CheckResult) -> list[str]:
    if result.status == "error":
        return [result.checked_at, result.url, "ERROR", MISSING_VALUE]
    return [result.checked_at, result.url, result.name or "", format_number(result.price)]


def read_csv_rows(path: Path) -> list[dict[str, str]]:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return list(csv.DictReader(f))


def write_json_report(path: Path, results: Sequence[CheckResult]) -> None:
    """Overwrite ``path`` with a pretty-printed JSON array of results."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [r.to_report_dict() for r in results]
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def read_json_report(path: Path) -> list[CheckResult]:
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"Report must be a JSON array: {path}")
    return [CheckResult.from_dict(item) for item in raw if isinstance(item, dict)]
