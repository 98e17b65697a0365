"""
Transaction-history retrieval: signature pagination and per-record fetch.

Read pipeline:
  next_page / iter_signatures  — walk the signature index newest → oldest
  fetch_transaction            — resolve one signature to a TransactionRecord
  TransactionScanner.records   — lazy async sequence of fetched records

Failure policy:
- A broken index listing aborts the scan (the exception propagates).
- A failed or absent record is skipped; the scan continues with the next
  signature. Absent records are counted, failures are logged and counted.

Everything runs in one task and awaits each remote call in turn, so records
are yielded in exactly the order the node listed them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import aclosing

from soltrail.config import MAX_PAGE_SIZE, SoltrailConfig
from soltrail.exceptions import (
    MalformedResponseError,
    OperationCancelledError,
    SoltrailError,
)
from soltrail.logger import get_logger
from soltrail.models import ScanStats, SignatureListEntry, SignaturePage, TransactionRecord
from soltrail.rpc.base import LedgerClient

logger = get_logger(__name__)


class RequestPacer:
    """
    Enforce a minimum interval between successive calls.

    The first call never waits.
    """

    def __init__(self, min_interval: float) -> None:
        self._min_interval = max(min_interval, 0.0)
        self._last: float | None = None

    async def wait(self) -> None:
        if self._last is not None and self._min_interval > 0:
            remaining = self._min_interval - (time.monotonic() - self._last)
            if remaining > 0:
                await asyncio.sleep(remaining)
        self._last = time.monotonic()


def check_cancelled(cancel: asyncio.Event | None, operation: str) -> None:
    """Raise OperationCancelledError if `cancel` has been set."""
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(
            f"Cancelled before {operation}", details={"operation": operation}
        )


async def next_page(
    client: LedgerClient,
    address: str,
    cursor: str | None,
    page_size: int,
    commitment: str = "confirmed",
) -> SignaturePage:
    """
    Fetch one page of signatures older than `cursor` (newest page if None).

    A page with fewer than `page_size` entries (including zero) is the last one.

    Raises:
        ValueError: page_size outside 1..1000
        NetworkError / APIError: propagated from the client, never retried here
    """
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be 1–{MAX_PAGE_SIZE}, got {page_size}")

    entries = await client.get_signatures_for_address(
        address, limit=page_size, before=cursor, commitment=commitment
    )
    if len(entries) > page_size:
        raise MalformedResponseError(
            f"Node returned {len(entries)} signatures for limit {page_size}",
            details={"address": address},
        )

    done = len(entries) < page_size
    new_cursor = entries[-1].signature if entries else cursor
    logger.debug(
        "signature_page_fetched",
        address=address,
        before=cursor,
        entries=len(entries),
        done=done,
    )
    return SignaturePage(entries=entries, cursor=new_cursor, done=done)


async def iter_signatures(
    client: LedgerClient,
    address: str,
    *,
    page_size: int = MAX_PAGE_SIZE,
    commitment: str = "confirmed",
    cancel: asyncio.Event | None = None,
    stats: ScanStats | None = None,
) -> AsyncIterator[SignatureListEntry]:
    """
    Yield every signature for `address`, newest first, across all pages.

    The cursor must move strictly backwards; a page that hands back the
    cursor it was requested with aborts the scan.
    """
    cursor: str | None = None
    while True:
        check_cancelled(cancel, "getSignaturesForAddress")
        page = await next_page(client, address, cursor, page_size, commitment)
        if stats is not None:
            stats.pages += 1
            stats.listed += len(page.entries)

        for entry in page.entries:
            yield entry

        if page.done:
            return
        if page.cursor == cursor:
            raise MalformedResponseError(
                "Signature cursor did not advance",
                details={"address": address, "cursor": cursor},
            )
        cursor = page.cursor


async def fetch_transaction(
    client: LedgerClient,
    signature: str,
    commitment: str = "confirmed",
) -> TransactionRecord | None:
    """
    Fetch the full record for `signature`, accepting legacy and v0 formats.

    Returns None when the node does not have the record. Transport and
    protocol errors propagate; TransactionScanner decides to skip them.
    """
    return await client.get_transaction(
        signature, commitment=commitment, max_supported_transaction_version=0
    )


class TransactionScanner:
    """
    Lazy, pull-based scan over an account's transaction history.

    Usage:
        scanner = TransactionScanner(client, page_size=1000)
        async for record in scanner.records(address):
            ...
        print(scanner.stats.to_dict())

    Each call to `records()` starts a fresh scan from the newest signature
    with fresh stats; a generator, once consumed, cannot be restarted.
    """

    def __init__(
        self,
        client: LedgerClient,
        *,
        page_size: int = MAX_PAGE_SIZE,
        commitment: str = "confirmed",
        fetch_delay: float = 0.01,
        max_records: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> None:
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be 1–{MAX_PAGE_SIZE}, got {page_size}")
        self._client = client
        self._page_size = page_size
        self._commitment = commitment
        self._fetch_delay = fetch_delay
        self._max_records = max_records or None
        self._cancel = cancel
        self.stats = ScanStats()

    @classmethod
    def from_config(
        cls,
        client: LedgerClient,
        config: SoltrailConfig,
        cancel: asyncio.Event | None = None,
    ) -> TransactionScanner:
        return cls(
            client,
            page_size=config.scan.page_size,
            commitment=config.scan.commitment,
            fetch_delay=config.scan.fetch_delay_ms / 1000,
            max_records=config.scan.max_records,
            cancel=cancel,
        )

    async def records(self, address: str) -> AsyncIterator[TransactionRecord]:
        """Yield each successfully fetched record, newest to oldest."""
        self.stats = ScanStats()
        pacer = RequestPacer(self._fetch_delay)
        yielded = 0

        entries = iter_signatures(
            self._client,
            address,
            page_size=self._page_size,
            commitment=self._commitment,
            cancel=self._cancel,
            stats=self.stats,
        )
        async with aclosing(entries):
            async for entry in entries:
                await pacer.wait()
                check_cancelled(self._cancel, "getTransaction")
                try:
                    record = await fetch_transaction(
                        self._client, entry.signature, self._commitment
                    )
                except SoltrailError as e:
                    self.stats.failed += 1
                    logger.warning(
                        "transaction_fetch_failed",
                        signature=entry.signature,
                        slot=entry.slot,
                        error_code=e.error_code,
                        error=e.message,
                    )
                    continue

                if record is None:
                    self.stats.absent += 1
                    logger.info("transaction_absent", signature=entry.signature, slot=entry.slot)
                    continue

                self.stats.fetched += 1
                yielded += 1
                yield record
                if self._max_records is not None and yielded >= self._max_records:
                    break

        logger.info("scan_finished", address=address, **self.stats.to_dict())
