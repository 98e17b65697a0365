"""Marker search over program log lines."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator

from soltrail.models import LogMatch, TransactionRecord


def filter_logs(record: TransactionRecord, marker: str) -> list[LogMatch]:
    """
    Return every log line of `record` that contains `marker`, in log order.

    Pure: the record is not modified and repeated calls give equal results.
    """
    if not marker:
        raise ValueError("marker must be a non-empty string")
    return [
        LogMatch(signature=record.signature, slot=record.slot, line=line, index=i)
        for i, line in enumerate(record.logs)
        if marker in line
    ]


async def find_marker(
    records: AsyncIterable[TransactionRecord],
    marker: str,
) -> AsyncIterator[LogMatch]:
    """Yield matches from a record stream as the records arrive."""
    if not marker:
        raise ValueError("marker must be a non-empty string")
    async for record in records:
        for match in filter_logs(record, marker):
            yield match
