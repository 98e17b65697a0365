"""
Remote ledger client layer for soltrail.

Provides `get_client()` which builds the Solana RPC client from config.
All clients implement LedgerClient.

Usage:
    from soltrail.rpc import get_client
    async with get_client(config) as client:
        entries = await client.get_signatures_for_address(addr, limit=1000)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from soltrail.rpc.base import LedgerClient
from soltrail.rpc.solana import SolanaRPCClient

if TYPE_CHECKING:
    from soltrail.config import SoltrailConfig

__all__ = ["LedgerClient", "SolanaRPCClient", "get_client"]


def get_client(config: SoltrailConfig) -> SolanaRPCClient:
    """
    Factory: return an RPC client configured from `config.rpc`.

    Args:
        config: SoltrailConfig with the endpoint URL and limits

    Returns:
        SolanaRPCClient (a LedgerClient)
    """
    return SolanaRPCClient(
        url=config.rpc.url,
        timeout=config.rpc.timeout_seconds,
        max_requests_per_second=config.rpc.max_requests_per_second,
    )
