"""
Shared data models for soltrail.

These dataclasses are the canonical data shapes used across all modules:
the RPC client produces them, history/logfilter consume them, output renders
them. Fetched records are frozen; a record never changes once it is part of
a scan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction


@dataclass(frozen=True)
class SignatureListEntry:
    """One row of an account's signature index (getSignaturesForAddress)."""

    signature: str
    slot: int
    err: Any = None                     # None on success, node error object otherwise
    block_time: int | None = None       # Unix seconds; None when the node has no estimate
    memo: str | None = None
    confirmation_status: str | None = None  # "processed" | "confirmed" | "finalized"


@dataclass(frozen=True)
class DecodedInstruction:
    """A top-level instruction with its account indexes resolved to addresses."""

    program_id: str
    accounts: tuple[str, ...]
    data: str                           # base58, as returned by the node


@dataclass(frozen=True)
class TransactionRecord:
    """A confirmed transaction as returned by getTransaction."""

    signature: str
    slot: int
    err: Any
    fee: int                            # lamports
    logs: tuple[str, ...] = ()
    instructions: tuple[DecodedInstruction, ...] | None = None
    block_time: int | None = None
    version: str | int | None = None    # "legacy" | 0

    @property
    def succeeded(self) -> bool:
        return self.err is None

    @property
    def status(self) -> str:
        return "ok" if self.err is None else f"err:{self.err}"

    def to_dict(self) -> dict:
        """Serialize for JSON output."""
        d: dict[str, Any] = {
            "signature": self.signature,
            "slot": self.slot,
            "block_time": self.block_time,
            "status": self.status,
            "fee": self.fee,
            "version": self.version,
            "logs": list(self.logs),
        }
        if self.instructions is not None:
            d["instructions"] = [
                {
                    "program_id": ix.program_id,
                    "accounts": list(ix.accounts),
                    "data": ix.data,
                }
                for ix in self.instructions
            ]
        return d


@dataclass(frozen=True)
class SignaturePage:
    """
    One page of the signature index.

    `cursor` is the signature of the oldest entry on the page; pass it as
    `before` to get the next (older) page. When `done` is True there is no
    more history and the cursor is irrelevant.
    """

    entries: list[SignatureListEntry]
    cursor: str | None
    done: bool


@dataclass(frozen=True)
class LogMatch:
    """A log line that contains the scan marker."""

    signature: str
    slot: int
    line: str
    index: int          # position of the line in the record's log messages

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "index": self.index,
            "log": self.line,
        }


@dataclass
class ScanStats:
    """Counters for one scan; owned by the scanner for its duration."""

    pages: int = 0
    listed: int = 0
    fetched: int = 0
    absent: int = 0
    failed: int = 0
    matches: int = 0

    def to_dict(self) -> dict:
        return {
            "pages": self.pages,
            "listed": self.listed,
            "fetched": self.fetched,
            "absent": self.absent,
            "failed": self.failed,
            "matches": self.matches,
        }


@dataclass(frozen=True)
class RecentAnchor:
    """A recent blockhash and the last block height at which it is valid."""

    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class TransferIntent:
    """Move `amount` (smallest token unit) of `mint` from owner to destination."""

    owner: Pubkey
    destination: Pubkey
    mint: Pubkey
    amount: int

    def to_dict(self) -> dict:
        return {
            "owner": str(self.owner),
            "destination": str(self.destination),
            "mint": str(self.mint),
            "amount": self.amount,
        }


@dataclass(frozen=True)
class UnsignedTransfer:
    """A compiled transfer message waiting for signatures."""

    intent: TransferIntent
    message: Message
    anchor: RecentAnchor
    source_account: Pubkey
    destination_account: Pubkey

    @property
    def required_signers(self) -> list[Pubkey]:
        n = self.message.header.num_required_signatures
        return list(self.message.account_keys[:n])

    @property
    def fee_payer(self) -> Pubkey:
        return self.message.account_keys[0]


@dataclass(frozen=True)
class SignedTransfer:
    """A fully signed transfer, ready to submit."""

    transaction: Transaction
    anchor: RecentAnchor
    signatures: tuple[str, ...] = field(default_factory=tuple)

    @property
    def signature(self) -> str:
        """Transaction id: the fee payer's signature."""
        return self.signatures[0]

    def to_bytes(self) -> bytes:
        return bytes(self.transaction)
