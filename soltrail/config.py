"""
Config loading for soltrail.

Sources (in precedence order, highest first):
  1. Environment variables (SOLTRAIL_*)
  2. ~/.soltrail/config.toml
  3. Built-in defaults

The resulting SoltrailConfig is built once and passed explicitly into the
scan and transfer pipelines; nothing below the CLI reads the environment.

Usage:
    from soltrail.config import load_config
    config = load_config()
    print(config.rpc.url)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import toml

from soltrail.exceptions import ConfigInvalidError, ConfigMissingError

# Default config directory and file
DEFAULT_CONFIG_DIR = Path.home() / ".soltrail"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

# getSignaturesForAddress rejects limits above 1000
MAX_PAGE_SIZE = 1000

# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
_ENV_OVERRIDES: list[tuple[str, str, type]] = [
    ("SOLTRAIL_RPC_URL", "rpc.url", str),
    ("SOLTRAIL_RPC_TIMEOUT", "rpc.timeout_seconds", float),
    ("SOLTRAIL_MAX_RPS", "rpc.max_requests_per_second", float),
    ("SOLTRAIL_ADDRESS", "scan.address", str),
    ("SOLTRAIL_PAGE_SIZE", "scan.page_size", int),
    ("SOLTRAIL_COMMITMENT", "scan.commitment", str),
    ("SOLTRAIL_FETCH_DELAY_MS", "scan.fetch_delay_ms", int),
    ("SOLTRAIL_LOG_MARKER", "scan.log_marker", str),
    ("SOLTRAIL_MAX_RECORDS", "scan.max_records", int),
    ("SOLTRAIL_SENDER_PRIVATE_KEY", "transfer.sender_private_key", str),
    ("SOLTRAIL_DESTINATION", "transfer.destination", str),
    ("SOLTRAIL_MINT", "transfer.mint", str),
    ("SOLTRAIL_AMOUNT", "transfer.amount", int),
    ("SOLTRAIL_PREFLIGHT_COMMITMENT", "transfer.preflight_commitment", str),
    ("SOLTRAIL_OUTPUT_FORMAT", "output.default_format", str),
]

VALID_FORMATS = {"json", "jsonl", "table"}
VALID_COMMITMENTS = {"processed", "confirmed", "finalized"}
# Signature listing and getTransaction do not serve "processed"
VALID_SCAN_COMMITMENTS = {"confirmed", "finalized"}


@dataclass
class RPCConfig:
    """Remote node endpoint."""

    url: str = DEFAULT_RPC_URL
    timeout_seconds: float = 30.0
    max_requests_per_second: float = 0.0    # 0 = no client-side bucket


@dataclass
class ScanConfig:
    """Transaction-history scan settings."""

    address: str = ""
    page_size: int = MAX_PAGE_SIZE
    commitment: str = "confirmed"
    fetch_delay_ms: int = 10                # min spacing between getTransaction calls
    log_marker: str = "InitializeMint2"
    max_records: int = 0                    # 0 = scan the whole history


@dataclass
class TransferConfig:
    """SPL token transfer settings."""

    sender_private_key: str = ""
    destination: str = ""
    mint: str = ""
    amount: int = 1_000_000                 # 1 token at 6 decimals
    skip_preflight: bool = False
    preflight_commitment: str = "finalized"


@dataclass
class OutputConfig:
    """Output formatting defaults."""

    default_format: str = "json"            # json | jsonl | table


@dataclass
class SoltrailConfig:
    """Full configuration object. Passed via Click context to all commands."""

    rpc: RPCConfig = field(default_factory=RPCConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def load_config(path: str | None = None) -> SoltrailConfig:
    """
    Load configuration from TOML file + environment variable overrides.

    Args:
        path: Override config file path. If None, uses SOLTRAIL_CONFIG_PATH
              env var or default (~/.soltrail/config.toml).

    Returns:
        SoltrailConfig with all values resolved.

    Raises:
        ConfigInvalidError: Config file exists but is invalid TOML or values.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    config = _dict_to_config(raw)
    _apply_env_overrides(config)
    validate_config(config)

    return config


def save_config(config: SoltrailConfig, path: str | None = None) -> Path:
    """
    Serialize SoltrailConfig to TOML and write to disk.

    Returns the path where config was written.
    """
    config_path = _resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "rpc": {
            "url": config.rpc.url,
            "timeout_seconds": config.rpc.timeout_seconds,
            "max_requests_per_second": config.rpc.max_requests_per_second,
        },
        "scan": {
            "address": config.scan.address,
            "page_size": config.scan.page_size,
            "commitment": config.scan.commitment,
            "fetch_delay_ms": config.scan.fetch_delay_ms,
            "log_marker": config.scan.log_marker,
            "max_records": config.scan.max_records,
        },
        "transfer": {
            "sender_private_key": config.transfer.sender_private_key,
            "destination": config.transfer.destination,
            "mint": config.transfer.mint,
            "amount": config.transfer.amount,
            "skip_preflight": config.transfer.skip_preflight,
            "preflight_commitment": config.transfer.preflight_commitment,
        },
        "output": {
            "default_format": config.output.default_format,
        },
    }

    with open(config_path, "w") as f:
        toml.dump(data, f)

    return config_path


def get_default_config_path() -> Path:
    """Return the default config file path."""
    return DEFAULT_CONFIG_PATH


def require_transfer_settings(config: SoltrailConfig) -> None:
    """
    Fail fast before any remote call when transfer settings are incomplete.

    Raises:
        ConfigMissingError: Lists every missing key in details["missing"].
    """
    required = {
        "rpc.url": config.rpc.url,
        "transfer.sender_private_key": config.transfer.sender_private_key,
        "transfer.destination": config.transfer.destination,
        "transfer.mint": config.transfer.mint,
    }
    missing = [key for key, value in required.items() if not value]
    if missing:
        raise ConfigMissingError(
            f"Missing required transfer settings: {', '.join(missing)}",
            details={"missing": missing},
        )


def validate_config(config: SoltrailConfig) -> None:
    """Validate config values. Raises ConfigInvalidError on invalid values."""
    if not config.rpc.url.startswith(("http://", "https://")):
        raise ConfigInvalidError(f"rpc.url must be an http(s) URL, got {config.rpc.url!r}")
    if config.rpc.timeout_seconds <= 0:
        raise ConfigInvalidError(
            f"rpc.timeout_seconds must be positive, got {config.rpc.timeout_seconds}"
        )
    if config.rpc.max_requests_per_second < 0:
        raise ConfigInvalidError(
            "rpc.max_requests_per_second must be non-negative, "
            f"got {config.rpc.max_requests_per_second}"
        )
    if not 1 <= config.scan.page_size <= MAX_PAGE_SIZE:
        raise ConfigInvalidError(
            f"scan.page_size must be 1–{MAX_PAGE_SIZE}, got {config.scan.page_size}"
        )
    if config.scan.commitment not in VALID_SCAN_COMMITMENTS:
        raise ConfigInvalidError(
            f"scan.commitment must be one of {sorted(VALID_SCAN_COMMITMENTS)}, "
            f"got {config.scan.commitment!r}"
        )
    if config.scan.fetch_delay_ms < 0:
        raise ConfigInvalidError(
            f"scan.fetch_delay_ms must be non-negative, got {config.scan.fetch_delay_ms}"
        )
    if config.scan.max_records < 0:
        raise ConfigInvalidError(
            f"scan.max_records must be non-negative, got {config.scan.max_records}"
        )
    if config.transfer.amount <= 0:
        raise ConfigInvalidError(
            f"transfer.amount must be positive, got {config.transfer.amount}"
        )
    if config.transfer.preflight_commitment not in VALID_COMMITMENTS:
        raise ConfigInvalidError(
            f"transfer.preflight_commitment must be one of {sorted(VALID_COMMITMENTS)}, "
            f"got {config.transfer.preflight_commitment!r}"
        )
    if config.output.default_format not in VALID_FORMATS:
        raise ConfigInvalidError(
            f"output.default_format must be one of {sorted(VALID_FORMATS)}, "
            f"got {config.output.default_format!r}"
        )


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("SOLTRAIL_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name, {})
    if not isinstance(section, dict):
        raise ConfigInvalidError(
            f"Config section [{name}] must be a table, got {type(section).__name__}",
            details={"section": name},
        )
    return section


def _dict_to_config(raw: dict) -> SoltrailConfig:
    """Build SoltrailConfig from raw TOML dict, applying defaults for missing keys."""
    config = SoltrailConfig()

    try:
        rpc = _section(raw, "rpc")
        config.rpc.url = rpc.get("url", DEFAULT_RPC_URL)
        config.rpc.timeout_seconds = float(rpc.get("timeout_seconds", 30.0))
        config.rpc.max_requests_per_second = float(rpc.get("max_requests_per_second", 0.0))

        scan = _section(raw, "scan")
        config.scan.address = scan.get("address", "")
        config.scan.page_size = int(scan.get("page_size", MAX_PAGE_SIZE))
        config.scan.commitment = scan.get("commitment", "confirmed")
        config.scan.fetch_delay_ms = int(scan.get("fetch_delay_ms", 10))
        config.scan.log_marker = scan.get("log_marker", "InitializeMint2")
        config.scan.max_records = int(scan.get("max_records", 0))

        transfer = _section(raw, "transfer")
        config.transfer.sender_private_key = transfer.get("sender_private_key", "")
        config.transfer.destination = transfer.get("destination", "")
        config.transfer.mint = transfer.get("mint", "")
        config.transfer.amount = int(transfer.get("amount", 1_000_000))
        config.transfer.skip_preflight = bool(transfer.get("skip_preflight", False))
        config.transfer.preflight_commitment = transfer.get("preflight_commitment", "finalized")

        output = _section(raw, "output")
        config.output.default_format = output.get("default_format", "json")
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid config value: {e}") from e

    return config


def _apply_env_overrides(config: SoltrailConfig) -> None:
    """Apply environment variable overrides to a loaded config."""
    # Bool from string
    skip_preflight = os.environ.get("SOLTRAIL_SKIP_PREFLIGHT")
    if skip_preflight is not None:
        config.transfer.skip_preflight = skip_preflight.lower() in ("1", "true", "yes")

    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None:
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e
