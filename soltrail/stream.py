"""Scan drivers: JSONL streaming and collect-then-render.

`run_scan_stream` emits one JSON object per line to stdout as the scan
progresses, designed for agent/pipe consumers. `run_scan` collects the same
matches into a single result dict for json/table output.

Event types emitted:
  scan_start  — scan begins
  log_match   — a log line contains the marker
  scan_error  — the scan aborted (index listing failed, cancelled)
  scan_end    — scan finished; carries the scan stats

stdout is flushed after each write (critical for pipe consumers).
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from typing import Any

from soltrail.exceptions import SoltrailError
from soltrail.history import TransactionScanner
from soltrail.logfilter import find_marker


def emit_event(event: dict[str, Any]) -> None:
    """
    Write a single JSONL event to stdout and flush.

    Never use print() — buffered output breaks pipe consumers.
    """
    sys.stdout.write(json.dumps(event) + "\n")
    sys.stdout.flush()


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


async def run_scan_stream(
    scanner: TransactionScanner,
    address: str,
    marker: str,
) -> dict[str, int]:
    """
    Scan `address` and stream every marker match as a log_match event.

    Returns the final scan stats. A scan-level failure is emitted as
    scan_error and then re-raised so the CLI can exit with its code.
    """
    emit_event({
        "type": "scan_start",
        "timestamp": _now_iso(),
        "address": address,
        "marker": marker,
    })

    try:
        async for match in find_marker(scanner.records(address), marker):
            scanner.stats.matches += 1
            emit_event({"type": "log_match", "timestamp": _now_iso(), **match.to_dict()})
    except SoltrailError as e:
        emit_event({
            "type": "scan_error",
            "timestamp": _now_iso(),
            "error_code": e.error_code,
            "message": e.message,
            "stats": scanner.stats.to_dict(),
        })
        raise

    stats = scanner.stats.to_dict()
    emit_event({"type": "scan_end", "timestamp": _now_iso(), "stats": stats})
    return stats


async def run_scan(
    scanner: TransactionScanner,
    address: str,
    marker: str,
) -> dict[str, Any]:
    """Scan `address` and return all matches plus stats as one result dict."""
    scan_time = _now_iso()
    matches = []
    async for match in find_marker(scanner.records(address), marker):
        scanner.stats.matches += 1
        matches.append(match.to_dict())

    return {
        "address": address,
        "marker": marker,
        "scan_time": scan_time,
        "matches": matches,
        "stats": scanner.stats.to_dict(),
    }
