"""Ledger client protocol shared by the read and write pipelines."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from soltrail.models import RecentAnchor, SignatureListEntry, TransactionRecord


@runtime_checkable
class LedgerClient(Protocol):
    """
    Protocol that every ledger client must implement.

    Clients are responsible for:
    - Making the JSON-RPC calls to the node
    - Mapping transport failures and node errors onto the soltrail exception tree
    - Decoding responses into soltrail models

    Clients are NOT responsible for:
    - Pagination or cursor handling (that's history.py)
    - Pacing between fetches or retry policy (caller concerns)
    - Building or signing transactions (that's transfer.py)
    """

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int,
        before: str | None = None,
        commitment: str = "confirmed",
    ) -> list[SignatureListEntry]:
        """
        Return up to `limit` signatures for `address`, newest first.

        When `before` is set, only signatures older than it are returned.

        Raises:
            NetworkError: No response from the node
            APIError: The node answered with an error
        """
        ...

    async def get_transaction(
        self,
        signature: str,
        *,
        commitment: str = "confirmed",
        max_supported_transaction_version: int = 0,
    ) -> TransactionRecord | None:
        """
        Return the full record for `signature`, or None when the node does not
        have it (pruned, or not yet visible at `commitment`). None is not an error.
        """
        ...

    async def get_latest_blockhash(self, commitment: str = "finalized") -> RecentAnchor:
        """Return a recent blockhash and its last valid block height."""
        ...

    async def send_transaction(
        self,
        raw_transaction: bytes,
        *,
        skip_preflight: bool = False,
        preflight_commitment: str = "finalized",
    ) -> str:
        """
        Submit a signed, serialized transaction and return its signature.

        Raises:
            TransactionRejectedError: The node rejected the transaction
            NetworkError: No response from the node
        """
        ...

    async def close(self) -> None:
        ...


def rpc_request(method: str, params: list[Any], request_id: int = 1) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 request body."""
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
