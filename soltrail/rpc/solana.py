"""
Solana JSON-RPC client.

Implements the LedgerClient protocol against a Solana RPC node over
HTTP JSON-RPC 2.0.

RPC docs: https://solana.com/docs/rpc/http

Design decisions:
- Uses async httpx for all HTTP calls; one AsyncClient per instance.
- Optional token bucket rate limiting (max_requests_per_second; 0 disables).
- No retries: callers decide whether an error is worth retrying, and the
  exception type tells them whether the node answered at all.
- getTransaction is requested with encoding=json and
  maxSupportedTransactionVersion=0 so legacy and v0 transactions decode
  the same way.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from typing import Any

import httpx
from solders.hash import Hash

from soltrail.exceptions import (
    APIError,
    ConnectionFailedError,
    MalformedResponseError,
    NetworkError,
    NetworkTimeoutError,
    RateLimitError,
    RPCError,
    TransactionRejectedError,
)
from soltrail.logger import get_logger
from soltrail.models import (
    DecodedInstruction,
    RecentAnchor,
    SignatureListEntry,
    TransactionRecord,
)
from soltrail.rpc.base import rpc_request

logger = get_logger(__name__)

# JSON-RPC error codes meaning "the node does not have this record", not a failure
#   -32004 block not available for slot
#   -32007 slot skipped or missing due to ledger jump to recent snapshot
#   -32009 slot skipped or missing in long-term storage
#   -32011 transaction history not available from this node
NOT_FOUND_ERROR_CODES = frozenset({-32004, -32007, -32009, -32011})

# sendTransaction preflight simulation failure
PREFLIGHT_FAILURE_CODE = -32002

DEFAULT_TIMEOUT = 30.0


class _TokenBucket:
    """Simple token bucket rate limiter."""

    def __init__(self, calls: float, period: float = 1.0) -> None:
        self._calls = calls
        self._period = period
        self._tokens: float = float(calls)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            # Refill tokens proportional to elapsed time
            refill = (elapsed / self._period) * self._calls
            self._tokens = min(self._calls, self._tokens + refill)
            self._last_refill = now

            if self._tokens < 1:
                wait = (1 - self._tokens) * (self._period / self._calls)
                await asyncio.sleep(wait)
                self._tokens = 0
                self._last_refill = time.monotonic()
            else:
                self._tokens -= 1


class SolanaRPCClient:
    """
    Async Solana RPC client.

    Usage:
        async with SolanaRPCClient("https://api.devnet.solana.com") as client:
            entries = await client.get_signatures_for_address(addr, limit=1000)
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_requests_per_second: float = 0.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = (
            _TokenBucket(max_requests_per_second) if max_requests_per_second > 0 else None
        )
        self._request_id = 0

    @property
    def url(self) -> str:
        return self._url

    async def __aenter__(self) -> SolanaRPCClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ──────────────────────────────────────────────────────────────
    # Read pipeline
    # ──────────────────────────────────────────────────────────────

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int,
        before: str | None = None,
        commitment: str = "confirmed",
    ) -> list[SignatureListEntry]:
        """Fetch one page of the address's signature index, newest first."""
        opts: dict[str, Any] = {"limit": limit, "commitment": commitment}
        if before:
            opts["before"] = before

        result = await self._call("getSignaturesForAddress", [address, opts])
        if not isinstance(result, list):
            raise MalformedResponseError(
                "getSignaturesForAddress returned a non-list result",
                details={"address": address},
            )

        try:
            return [
                SignatureListEntry(
                    signature=item["signature"],
                    slot=int(item["slot"]),
                    err=item.get("err"),
                    block_time=item.get("blockTime"),
                    memo=item.get("memo"),
                    confirmation_status=item.get("confirmationStatus"),
                )
                for item in result
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(
                f"Unexpected signature entry shape: {e}", details={"address": address}
            ) from e

    async def get_transaction(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        max_supported_transaction_version: int = 0,
    ) -> TransactionRecord | None:
        """Fetch a transaction; None when the node reports it as not found."""
        result = await self.get_transaction_json(
            signature,
            commitment=commitment,
            encoding="json",
            max_supported_transaction_version=max_supported_transaction_version,
        )
        if result is None:
            return None
        return parse_transaction(signature, result)

    async def get_transaction_json(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        encoding: str = "jsonParsed",
        max_supported_transaction_version: int = 0,
    ) -> dict[str, Any] | None:
        """Raw getTransaction payload (e.g. jsonParsed for human inspection)."""
        opts = {
            "encoding": encoding,
            "commitment": commitment,
            "maxSupportedTransactionVersion": max_supported_transaction_version,
        }
        try:
            result = await self._call("getTransaction", [signature, opts])
        except RPCError as e:
            if e.code in NOT_FOUND_ERROR_CODES:
                logger.debug("transaction_not_available", signature=signature, rpc_code=e.code)
                return None
            raise

        if result is None:
            return None
        if not isinstance(result, dict):
            raise MalformedResponseError(
                "getTransaction returned a non-object result",
                details={"signature": signature},
            )
        return result

    # ──────────────────────────────────────────────────────────────
    # Write pipeline
    # ──────────────────────────────────────────────────────────────

    async def get_latest_blockhash(self, commitment: str = "finalized") -> RecentAnchor:
        """Fetch a recent blockhash usable as a transaction anchor."""
        result = await self._call("getLatestBlockhash", [{"commitment": commitment}])
        try:
            value = result["value"]
            return RecentAnchor(
                blockhash=Hash.from_string(value["blockhash"]),
                last_valid_block_height=int(value["lastValidBlockHeight"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"Unexpected getLatestBlockhash result: {e}") from e

    async def send_transaction(
        self,
        raw_transaction: bytes,
        *,
        skip_preflight: bool = False,
        preflight_commitment: str = "finalized",
    ) -> str:
        """Submit a serialized transaction; returns the signature the node reports."""
        opts = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": preflight_commitment,
        }
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        try:
            result = await self._call("sendTransaction", [encoded, opts])
        except RPCError as e:
            raise TransactionRejectedError(
                e.message,
                code=e.code,
                data=e.data,
                reason=classify_rejection(e.message, e.code, e.data),
            ) from e

        if not isinstance(result, str):
            raise MalformedResponseError("sendTransaction returned a non-string result")
        return result

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    async def _call(self, method: str, params: list[Any]) -> Any:
        """POST one JSON-RPC request and return its `result`."""
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        self._request_id += 1
        try:
            resp = await self._client.post(
                self._url, json=rpc_request(method, params, self._request_id)
            )
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(
                f"RPC timeout on {method}: {e}", details={"method": method}
            ) from e
        except httpx.ConnectError as e:
            raise ConnectionFailedError(
                f"Cannot connect to RPC node {self._url}: {e}", details={"method": method}
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Transport error on {method}: {e}", details={"method": method}
            ) from e

        if resp.status_code == 429:
            raise RateLimitError(
                f"RPC node rate limit exceeded on {method}",
                retry_after=_retry_after(resp),
            )
        if resp.status_code != 200:
            raise APIError(
                f"RPC node error on {method}: HTTP {resp.status_code}",
                details={"method": method, "status_code": resp.status_code},
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"RPC node returned non-JSON body for {method}", details={"method": method}
            ) from e
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"RPC node returned a non-object body for {method}", details={"method": method}
            )

        error = data.get("error")
        if error is not None:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise RPCError(
                str(error.get("message", "RPC error")),
                code=error.get("code"),
                data=error.get("data"),
                details={"method": method},
            )

        if "result" not in data:
            raise MalformedResponseError(
                f"RPC response for {method} has neither result nor error",
                details={"method": method},
            )
        return data["result"]


def parse_transaction(signature: str, result: dict[str, Any]) -> TransactionRecord:
    """Decode a getTransaction (encoding=json) result into a TransactionRecord."""
    try:
        meta = result.get("meta") or {}
        message = result["transaction"]["message"]

        account_keys: list[str] = list(message.get("accountKeys", []))
        # v0 transactions: lookup-table addresses follow the static keys
        loaded = meta.get("loadedAddresses") or {}
        account_keys += list(loaded.get("writable", [])) + list(loaded.get("readonly", []))

        instructions = tuple(
            DecodedInstruction(
                program_id=account_keys[ix["programIdIndex"]],
                accounts=tuple(account_keys[i] for i in ix.get("accounts", [])),
                data=ix.get("data", ""),
            )
            for ix in message.get("instructions", [])
        )

        return TransactionRecord(
            signature=signature,
            slot=int(result["slot"]),
            err=meta.get("err"),
            fee=int(meta.get("fee", 0)),
            logs=tuple(meta.get("logMessages") or ()),
            instructions=instructions,
            block_time=result.get("blockTime"),
            version=result.get("version"),
        )
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise MalformedResponseError(
            f"Unexpected getTransaction result shape: {e}",
            details={"signature": signature},
        ) from e


def classify_rejection(message: str, code: int | None, data: Any) -> str:
    """Map a sendTransaction error onto a coarse rejection reason."""
    text = (message + " " + json.dumps(data, default=str)).lower()
    if "blockhash not found" in text or "blockhashnotfound" in text:
        return "blockhash_not_found"
    if "insufficient" in text:
        return "insufficient_funds"
    if code == PREFLIGHT_FAILURE_CODE:
        return "simulation_failed"
    return "rejected"


def _retry_after(resp: httpx.Response) -> int:
    try:
        return int(resp.headers.get("Retry-After", "10"))
    except ValueError:
        return 10
