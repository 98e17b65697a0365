"""Output format routing for soltrail.

Converts result dicts to the requested format: json, jsonl, table.

Design rules:
- JSON: 2-space indent, utf-8
- JSONL: one JSON object per line, no trailing whitespace
- Table: Rich-formatted; failed transactions in red

All functions return strings. The caller writes to stdout.
"""

from __future__ import annotations

import io
import json
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

VALID_FORMATS = {"json", "jsonl", "table"}


def format_output(data: Any, fmt: str) -> str:
    """
    Format data for stdout output.

    Args:
        data: Result dict, list, or any JSON-serialisable value.
        fmt: "json" | "jsonl" | "table"

    Returns:
        Formatted string ready to write to stdout.

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")

    if fmt == "jsonl":
        return format_jsonl(data)
    if fmt == "table":
        return format_table(data)
    return format_json(data)


# ── JSON ─────────────────────────────────────────────────────────────────────


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent)."""
    return json.dumps(data, indent=2, ensure_ascii=False)


# ── JSONL ────────────────────────────────────────────────────────────────────


def format_jsonl(data: Any) -> str:
    """Format as JSONL: one compact object per line, one line per list item."""
    items = data if isinstance(data, list) else [data]
    return "\n".join(json.dumps(item, ensure_ascii=False) for item in items)


# ── Table ────────────────────────────────────────────────────────────────────


def format_table(data: Any) -> str:
    """
    Format as a Rich terminal table.

    Handles:
    - Scan results (dict with 'matches')
    - A single transaction (dict with 'signature' and 'logs')
    - Generic dict fallback
    """
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=160)

    if isinstance(data, dict) and "matches" in data:
        _render_scan_table(console, data)
    elif isinstance(data, dict) and "signature" in data and "logs" in data:
        _render_transaction_table(console, data)
    else:
        console.print_json(json.dumps(data))

    return buf.getvalue()


def _short(value: str, head: int = 8, tail: int = 6) -> str:
    return f"{value[:head]}…{value[-tail:]}" if len(value) > head + tail + 2 else value


def _render_scan_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(
        title=f"Log scan — {data.get('address', '')} | marker {data.get('marker', '')!r}",
        show_header=True,
        header_style="bold blue",
    )
    table.add_column("Signature", style="cyan", no_wrap=True)
    table.add_column("Slot", justify="right")
    table.add_column("#", justify="right")
    table.add_column("Log")

    for m in data.get("matches", []):
        table.add_row(
            _short(m.get("signature", "")),
            str(m.get("slot", "")),
            str(m.get("index", "")),
            m.get("log", ""),
        )

    console.print(table)
    stats = data.get("stats", {})
    console.print(
        f"Matches: [bold]{len(data.get('matches', []))}[/bold]"
        f" | fetched {stats.get('fetched', 0)}"
        f" | absent {stats.get('absent', 0)}"
        f" | failed {stats.get('failed', 0)}"
    )


def _render_transaction_table(console: Console, data: dict[str, Any]) -> None:
    status = str(data.get("status", ""))
    status_text = Text(status, style="green" if status == "ok" else "red")

    summary = Table(title=f"Transaction {data.get('signature', '')}", show_header=False)
    summary.add_column("Field", style="bold")
    summary.add_column("Value")
    summary.add_row("Slot", str(data.get("slot", "")))
    summary.add_row("Status", status_text)
    summary.add_row("Fee", f"{data.get('fee', 0)} lamports")
    summary.add_row("Version", str(data.get("version", "")))
    console.print(summary)

    logs = data.get("logs", [])
    if logs:
        log_table = Table(title="Logs", header_style="bold blue")
        log_table.add_column("#", justify="right")
        log_table.add_column("Line")
        for i, line in enumerate(logs):
            log_table.add_row(str(i), line)
        console.print(log_table)


# ── Utility ──────────────────────────────────────────────────────────────────


def mask_secret(key: str) -> str:
    """
    Mask a secret (private key) for safe display.

    '5Kd3NBUAdUnhyzenEwVLy9pBKxSwXvE9FMPyR4UKZvpe' → '5Kd3****'
    '' → '****'
    """
    if not key:
        return "****"
    if len(key) <= 4:
        return "****"
    return key[:4] + "****"
