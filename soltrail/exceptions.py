"""
Custom exception hierarchy for soltrail.

Each exception maps to a specific CLI exit code and JSON error_code field.
cli.py catches all SoltrailError subclasses and formats them as JSON output.

Exit code mapping:
  1 — SoltrailError (generic CLI error)
  2 — APIError (node rejected the request, rate limit, malformed response)
  3 — NetworkError (timeout, connection refused; no response from the node)
  4 — DataError (invalid address/signature/key, transaction not found)
  5 — ConfigError (missing/malformed config)
  6 — SigningError (missing or mismatched credential for a required signer)
  130 — OperationCancelledError (cooperative cancellation)
"""

from __future__ import annotations

from typing import Any


class SoltrailError(Exception):
    """Base exception for all soltrail errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class APIError(SoltrailError):
    """The RPC node answered, but with an error."""

    exit_code = 2
    error_code = "api_error"


class RateLimitError(APIError):
    """Node returned HTTP 429."""

    error_code = "rate_limited"

    def __init__(self, message: str, retry_after: int = 10, **kwargs) -> None:
        super().__init__(message, details={"retry_after_seconds": retry_after})
        self.retry_after = retry_after


class MalformedResponseError(APIError):
    """Node response could not be decoded into the expected shape."""

    error_code = "malformed_response"


class RPCError(APIError):
    """JSON-RPC error object returned by the node."""

    error_code = "rpc_error"

    def __init__(
        self,
        message: str,
        code: int | None = None,
        data: Any = None,
        details: dict | None = None,
    ) -> None:
        merged = {"rpc_code": code, "rpc_data": data}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.code = code
        self.data = data


class TransactionRejectedError(RPCError):
    """
    sendTransaction was rejected by the node.

    `reason` is one of: blockhash_not_found, insufficient_funds,
    simulation_failed, rejected. The node's diagnostic payload (including
    simulation logs when present) is kept verbatim in `data`.
    """

    error_code = "transaction_rejected"

    def __init__(
        self,
        message: str,
        code: int | None = None,
        data: Any = None,
        reason: str = "rejected",
    ) -> None:
        super().__init__(message, code=code, data=data, details={"reason": reason})
        self.reason = reason

    @property
    def logs(self) -> list[str]:
        if isinstance(self.data, dict):
            return list(self.data.get("logs") or [])
        return []


class NetworkError(SoltrailError):
    """Network connectivity issue — timeout or connection failure."""

    exit_code = 3
    error_code = "network_error"


class NetworkTimeoutError(NetworkError):
    """Request timed out."""

    error_code = "network_timeout"


class ConnectionFailedError(NetworkError):
    """Could not connect to the RPC endpoint."""

    error_code = "connection_failed"


class DataError(SoltrailError):
    """Data validation or not-found error."""

    exit_code = 4
    error_code = "data_error"


class InvalidAddressError(DataError):
    """Address is not a valid base58 Solana public key."""

    error_code = "invalid_address"


class InvalidSignatureError(DataError):
    """Transaction signature is not valid base58 of the right length."""

    error_code = "invalid_signature"


class InvalidKeypairError(DataError):
    """Private key could not be decoded into an ed25519 keypair."""

    error_code = "invalid_keypair"


class TransactionNotFoundError(DataError):
    """Transaction is unknown to the node (pruned or not yet visible)."""

    error_code = "transaction_not_found"


class TransferBuildError(DataError):
    """Transfer instruction or message could not be assembled."""

    error_code = "transfer_build_error"


class ConfigError(SoltrailError):
    """Config file is missing or malformed."""

    exit_code = 5
    error_code = "config_error"


class ConfigMissingError(ConfigError):
    """A required setting is not configured."""

    error_code = "config_missing"


class ConfigInvalidError(ConfigError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"


class SigningError(SoltrailError):
    """A required signer could not be satisfied; nothing was submitted."""

    exit_code = 6
    error_code = "signing_error"


class OperationCancelledError(SoltrailError):
    """Cancellation was requested before the next remote call."""

    exit_code = 130
    error_code = "cancelled"
