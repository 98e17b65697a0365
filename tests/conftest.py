"""Pytest fixtures shared across all soltrail tests."""

from __future__ import annotations

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from soltrail.config import (
    OutputConfig,
    RPCConfig,
    ScanConfig,
    SoltrailConfig,
    TransferConfig,
)
from soltrail.exceptions import APIError
from soltrail.models import RecentAnchor, SignatureListEntry, TransactionRecord

TEST_RPC_URL = "https://rpc.soltrail.test"


# ── Config fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def sample_config() -> SoltrailConfig:
    """Minimal valid SoltrailConfig for tests."""
    return SoltrailConfig(
        rpc=RPCConfig(url=TEST_RPC_URL, timeout_seconds=5.0),
        scan=ScanConfig(
            address=str(Pubkey.new_unique()),
            page_size=1000,
            commitment="confirmed",
            fetch_delay_ms=0,
            log_marker="InitializeMint2",
        ),
        transfer=TransferConfig(amount=1_000_000),
        output=OutputConfig(default_format="json"),
    )


# ── Model helpers ─────────────────────────────────────────────────────────────


def make_record(
    signature: str,
    logs: list[str] | None = None,
    slot: int = 250_000_000,
    err: object = None,
) -> TransactionRecord:
    return TransactionRecord(
        signature=signature,
        slot=slot,
        err=err,
        fee=5000,
        logs=tuple(logs or ()),
        block_time=1_700_000_000,
        version=0,
    )


# ── Fake ledger client ────────────────────────────────────────────────────────


class FakeLedgerClient:
    """
    In-memory LedgerClient.

    `signatures` is the account's index, newest first. `records` maps a
    signature to its TransactionRecord; a signature missing from `records`
    (or mapped to None) is reported absent. Every call is appended to `calls`.
    """

    def __init__(
        self,
        signatures: list[str] | None = None,
        records: dict[str, TransactionRecord | None] | None = None,
        failing: set[str] | None = None,
        listing_error: Exception | None = None,
        fail_listing_after: int | None = None,
        send_error: Exception | None = None,
    ) -> None:
        self.signatures = list(signatures or [])
        self.records = dict(records or {})
        self.failing = set(failing or ())
        self.listing_error = listing_error
        self.fail_listing_after = fail_listing_after
        self.send_error = send_error
        self.anchor = RecentAnchor(blockhash=Hash.new_unique(), last_valid_block_height=300)
        self.calls: list[tuple] = []
        self.sent: list[bytes] = []
        self.closed = False

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int,
        before: str | None = None,
        commitment: str = "confirmed",
    ) -> list[SignatureListEntry]:
        self.calls.append(("getSignaturesForAddress", address, limit, before, commitment))
        listing_calls = sum(1 for c in self.calls if c[0] == "getSignaturesForAddress")
        if self.listing_error is not None and (
            self.fail_listing_after is None or listing_calls > self.fail_listing_after
        ):
            raise self.listing_error

        start = self.signatures.index(before) + 1 if before else 0
        return [
            SignatureListEntry(signature=sig, slot=1_000_000 - i)
            for i, sig in enumerate(self.signatures[start:start + limit], start=start)
        ]

    async def get_transaction(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        max_supported_transaction_version: int = 0,
    ) -> TransactionRecord | None:
        self.calls.append(("getTransaction", signature, commitment, max_supported_transaction_version))
        if signature in self.failing:
            raise APIError("RPC node error on getTransaction: HTTP 500")
        return self.records.get(signature)

    async def get_transaction_json(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        encoding: str = "jsonParsed",
        max_supported_transaction_version: int = 0,
    ) -> dict | None:
        self.calls.append(("getTransactionJson", signature, commitment, encoding))
        record = self.records.get(signature)
        if record is None:
            return None
        return {"slot": record.slot, "meta": {"err": record.err, "logMessages": list(record.logs)}}

    async def get_latest_blockhash(self, commitment: str = "finalized") -> RecentAnchor:
        self.calls.append(("getLatestBlockhash", commitment))
        return self.anchor

    async def send_transaction(
        self,
        raw_transaction: bytes,
        *,
        skip_preflight: bool = False,
        preflight_commitment: str = "finalized",
    ) -> str:
        self.calls.append(("sendTransaction", skip_preflight, preflight_commitment))
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(raw_transaction)
        return "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self) -> FakeLedgerClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def method_calls(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]


@pytest.fixture
def sender() -> Keypair:
    """Random sender keypair."""
    return Keypair()


@pytest.fixture
def fake_client() -> FakeLedgerClient:
    """Empty fake client; tests fill in signatures and records."""
    return FakeLedgerClient()
