"""
SPL token transfer: build → sign → submit.

The write pipeline is fail-fast. Nothing reaches the node until every
required signer has produced a verified signature, and any failure before
`send_transaction` guarantees nothing was sent.

Token accounts are the owners' associated token accounts (ATAs), derived
locally; no account lookups are made.
"""

from __future__ import annotations

import asyncio
import struct
from collections.abc import Callable

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from soltrail.config import SoltrailConfig, require_transfer_settings
from soltrail.exceptions import SigningError, TransactionRejectedError, TransferBuildError
from soltrail.history import check_cancelled
from soltrail.keys import load_keypair, parse_address
from soltrail.logger import get_logger
from soltrail.models import SignedTransfer, TransferIntent, UnsignedTransfer
from soltrail.rpc.base import LedgerClient

logger = get_logger(__name__)

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# SPL Token instruction tag for Transfer; data = tag (u8) + amount (u64 LE)
TRANSFER_INSTRUCTION_TAG = 3
U64_MAX = 2**64 - 1

# Anchors must be fetched at finalized: a confirmed blockhash can be dropped
ANCHOR_COMMITMENT = "finalized"

KeyResolver = Callable[[Pubkey], Keypair | None]


def derive_associated_account(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """Associated token account for (owner, mint): PDA of [owner, token_program, mint]."""
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def transfer_instruction(
    source: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
) -> Instruction:
    """SPL Token `Transfer` moving `amount` base units from source to destination."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TransferBuildError(f"amount must be an integer, got {amount!r}")
    if not 0 < amount <= U64_MAX:
        raise TransferBuildError(
            f"amount must be between 1 and {U64_MAX}, got {amount}",
            details={"amount": amount},
        )

    data = struct.pack("<BQ", TRANSFER_INSTRUCTION_TAG, amount)
    accounts = [
        AccountMeta(pubkey=source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]
    return Instruction(program_id=TOKEN_PROGRAM_ID, data=data, accounts=accounts)


async def build_transfer(
    client: LedgerClient,
    intent: TransferIntent,
    payer: Pubkey,
    *,
    cancel: asyncio.Event | None = None,
) -> UnsignedTransfer:
    """
    Assemble an unsigned transfer for `intent` with `payer` as fee payer.

    The instruction is validated before any remote call; the anchor is
    fetched right before the message is compiled.

    Raises:
        TransferBuildError: Invalid amount or message compilation failure
        NetworkError / APIError: Anchor retrieval failed
        OperationCancelledError: `cancel` was set
    """
    source = derive_associated_account(intent.owner, intent.mint)
    destination = derive_associated_account(intent.destination, intent.mint)
    ix = transfer_instruction(source, destination, intent.owner, intent.amount)

    check_cancelled(cancel, "getLatestBlockhash")
    anchor = await client.get_latest_blockhash(ANCHOR_COMMITMENT)
    logger.debug(
        "anchor_fetched",
        blockhash=str(anchor.blockhash),
        last_valid_block_height=anchor.last_valid_block_height,
    )

    try:
        message = Message.new_with_blockhash([ix], payer, anchor.blockhash)
    except (ValueError, TypeError) as e:
        raise TransferBuildError(f"Could not compile transfer message: {e}") from e

    return UnsignedTransfer(
        intent=intent,
        message=message,
        anchor=anchor,
        source_account=source,
        destination_account=destination,
    )


def keypair_resolver(*keypairs: Keypair) -> KeyResolver:
    """Resolver that answers for the given keypairs and nothing else."""
    by_pubkey = {kp.pubkey(): kp for kp in keypairs}
    return by_pubkey.get


def sign_transfer(unsigned: UnsignedTransfer, key_resolver: KeyResolver) -> SignedTransfer:
    """
    Sign `unsigned` with a credential for every required signer.

    Raises:
        SigningError: A required signer has no credential, the credential
            belongs to a different key, or its signature does not verify.
    """
    message = unsigned.message
    message_bytes = bytes(message)
    signatures = []

    for identity in unsigned.required_signers:
        keypair = key_resolver(identity)
        if keypair is None:
            raise SigningError(
                f"No credential for required signer {identity}",
                details={"signer": str(identity)},
            )
        if keypair.pubkey() != identity:
            raise SigningError(
                f"Credential for {identity} belongs to {keypair.pubkey()}",
                details={"signer": str(identity), "credential": str(keypair.pubkey())},
            )
        signature = keypair.sign_message(message_bytes)
        if not signature.verify(identity, message_bytes):
            raise SigningError(
                f"Signature for {identity} does not verify",
                details={"signer": str(identity)},
            )
        signatures.append(signature)

    transaction = Transaction.populate(message, signatures)
    return SignedTransfer(
        transaction=transaction,
        anchor=unsigned.anchor,
        signatures=tuple(str(s) for s in signatures),
    )


async def submit_transfer(
    client: LedgerClient,
    signed: SignedTransfer,
    *,
    skip_preflight: bool = False,
    preflight_commitment: str = "finalized",
    cancel: asyncio.Event | None = None,
) -> str:
    """
    Send a signed transfer and return the node-reported transaction signature.

    Node rejections raise TransactionRejectedError (never retried); a missing
    response raises NetworkError, so callers can tell the two apart.
    """
    check_cancelled(cancel, "sendTransaction")
    try:
        signature = await client.send_transaction(
            signed.to_bytes(),
            skip_preflight=skip_preflight,
            preflight_commitment=preflight_commitment,
        )
    except TransactionRejectedError as e:
        logger.warning(
            "transfer_rejected",
            signature=signed.signature,
            reason=e.reason,
            rpc_code=e.code,
            error=e.message,
        )
        raise

    logger.info("transfer_submitted", signature=signature)
    return signature


async def transfer_tokens(
    client: LedgerClient,
    intent: TransferIntent,
    sender: Keypair,
    *,
    skip_preflight: bool = False,
    preflight_commitment: str = "finalized",
    cancel: asyncio.Event | None = None,
) -> str:
    """Build, sign and submit `intent` with `sender` as fee payer and signer."""
    unsigned = await build_transfer(client, intent, sender.pubkey(), cancel=cancel)
    signed = sign_transfer(unsigned, keypair_resolver(sender))
    return await submit_transfer(
        client,
        signed,
        skip_preflight=skip_preflight,
        preflight_commitment=preflight_commitment,
        cancel=cancel,
    )


def intent_from_config(config: SoltrailConfig) -> tuple[TransferIntent, Keypair]:
    """
    Resolve the configured sender, destination, mint and amount.

    Fails fast (ConfigMissingError / DataError) before any remote call.
    """
    require_transfer_settings(config)
    sender = load_keypair(config.transfer.sender_private_key)
    intent = TransferIntent(
        owner=sender.pubkey(),
        destination=parse_address(config.transfer.destination),
        mint=parse_address(config.transfer.mint),
        amount=config.transfer.amount,
    )
    return intent, sender
