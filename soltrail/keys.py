"""Local validation of addresses, signatures and private keys. No network calls."""

from __future__ import annotations

import json

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from soltrail.exceptions import (
    InvalidAddressError,
    InvalidKeypairError,
    InvalidSignatureError,
)

KEYPAIR_LENGTH = 64


def parse_address(address: str) -> Pubkey:
    """Parse a base58 Solana address, rejecting Ethereum-style 0x input."""
    address = address.strip()
    if address[:2].lower() == "0x":
        raise InvalidAddressError(
            f"Address looks like Ethereum: {address!r}. Use a Solana base58 address.",
            details={"address": address},
        )
    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError) as e:
        raise InvalidAddressError(
            f"Invalid Solana address: {address!r}", details={"address": address}
        ) from e


def is_valid_address(address: str) -> bool:
    try:
        parse_address(address)
    except InvalidAddressError:
        return False
    return True


def parse_signature(signature: str) -> Signature:
    """Parse a base58 transaction signature."""
    signature = signature.strip()
    try:
        return Signature.from_string(signature)
    except (ValueError, TypeError) as e:
        raise InvalidSignatureError(
            f"Invalid transaction signature: {signature!r}",
            details={"signature": signature},
        ) from e


def load_keypair(private_key: str) -> Keypair:
    """
    Load a keypair from a base58 secret or a JSON array of 64 bytes.

    The JSON form is what `solana-keygen` writes to id.json files.
    """
    raw = private_key.strip()
    if not raw:
        raise InvalidKeypairError("Private key is empty")

    if raw.startswith("["):
        try:
            secret = bytes(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise InvalidKeypairError("Private key JSON must be an array of bytes") from e
    else:
        try:
            secret = base58.b58decode(raw)
        except ValueError as e:
            raise InvalidKeypairError("Private key is not valid base58") from e

    if len(secret) != KEYPAIR_LENGTH:
        raise InvalidKeypairError(
            f"Private key must decode to {KEYPAIR_LENGTH} bytes, got {len(secret)}"
        )
    try:
        return Keypair.from_bytes(secret)
    except ValueError as e:
        raise InvalidKeypairError(f"Private key rejected: {e}") from e
