"""Click CLI entry point for soltrail.

All commands are thin orchestration wrappers — business logic lives in
config, rpc, history, logfilter, transfer, output, and stream modules.

Exit codes:
  0 — success (including a scan with no matches)
  1 — generic error
  2 — node error (RPC error, rejection, rate limit)
  3 — network error (no response from the node)
  4 — data error (invalid address/signature/key, transaction not found)
  5 — config error
  6 — signing error
  130 — interrupted
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click

from soltrail import __version__
from soltrail.config import (
    MAX_PAGE_SIZE,
    SoltrailConfig,
    get_default_config_path,
    load_config,
    save_config,
    validate_config,
)
from soltrail.exceptions import (
    ConfigError,
    ConfigInvalidError,
    ConfigMissingError,
    SoltrailError,
    TransactionNotFoundError,
)
from soltrail.history import TransactionScanner, fetch_transaction
from soltrail.keys import parse_address, parse_signature
from soltrail.logger import configure_logging
from soltrail.output import format_output, mask_secret
from soltrail.rpc import get_client
from soltrail.stream import run_scan, run_scan_stream
from soltrail.transfer import (
    derive_associated_account,
    intent_from_config,
    transfer_tokens,
)

OUTPUT_FORMATS = ["json", "jsonl", "table"]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: SoltrailError | Exception) -> None:
    """Write error JSON to stderr."""
    if isinstance(err, SoltrailError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "unknown_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload, default=str) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


def _config_from_ctx(ctx: click.Context) -> SoltrailConfig:
    """Return the loaded config, or surface the load error for commands that need it."""
    error: ConfigError | None = ctx.obj.get("config_error")
    if error is not None:
        _output_error(error)
    return ctx.obj["config"]


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="SOLTRAIL_CONFIG",
    default=None,
    help="Config file path (default: ~/.soltrail/config.toml)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default=None,
    help="Output format (overrides config default)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Log level for stderr diagnostics",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    output_format: str | None,
    log_level: str | None,
) -> None:
    """soltrail — Solana transaction-history scanner and SPL token sender."""
    ctx.ensure_object(dict)
    if log_level:
        configure_logging(level=log_level)

    try:
        config = load_config(config_path)
        ctx.obj["config_error"] = None
    except ConfigError as e:
        # Fall back to defaults so `config init` / `config set` still work
        config = SoltrailConfig()
        ctx.obj["config_error"] = e

    ctx.obj["config"] = config
    ctx.obj["format"] = output_format or config.output.default_format
    ctx.obj["config_path"] = config_path


# ── Scan command ──────────────────────────────────────────────────────────────


@cli.command("scan")
@click.argument("address", required=False)
@click.option("--marker", default=None, help="Substring to look for in program logs")
@click.option("--page-size", type=click.IntRange(1, MAX_PAGE_SIZE), default=None)
@click.option("--commitment", type=click.Choice(["confirmed", "finalized"]), default=None)
@click.option("--delay-ms", type=click.IntRange(min=0), default=None,
              help="Minimum delay between transaction fetches")
@click.option("--limit", type=click.IntRange(min=0), default=None,
              help="Stop after N fetched transactions (0 = whole history)")
@click.option("--format", "fmt", type=click.Choice(OUTPUT_FORMATS), default=None)
@click.pass_context
def scan_command(
    ctx: click.Context,
    address: str | None,
    marker: str | None,
    page_size: int | None,
    commitment: str | None,
    delay_ms: int | None,
    limit: int | None,
    fmt: str | None,
) -> None:
    """Scan an account's transaction history for log lines containing a marker."""
    config = _config_from_ctx(ctx)
    fmt = fmt or ctx.obj.get("format", "json")

    if page_size is not None:
        config.scan.page_size = page_size
    if commitment is not None:
        config.scan.commitment = commitment
    if delay_ms is not None:
        config.scan.fetch_delay_ms = delay_ms
    if limit is not None:
        config.scan.max_records = limit
    marker = marker or config.scan.log_marker
    address = address or config.scan.address

    async def _run() -> dict[str, Any] | None:
        if not address:
            raise ConfigMissingError(
                "No address given; pass ADDRESS or set scan.address",
                details={"missing": ["scan.address"]},
            )
        if not marker:
            raise ConfigInvalidError("scan.log_marker must not be empty")
        parse_address(address)

        async with get_client(config) as client:
            scanner = TransactionScanner.from_config(client, config)
            if fmt == "jsonl":
                await run_scan_stream(scanner, address, marker)
                return None
            return await run_scan(scanner, address, marker)

    try:
        result = asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except SoltrailError as e:
        _output_error(e)
        return

    if result is not None:
        click.echo(format_output(result, fmt))


# ── Single transaction lookup ─────────────────────────────────────────────────


@cli.command("tx")
@click.argument("signature")
@click.option("--parsed", is_flag=True, help="Print the node's raw jsonParsed payload")
@click.option("--commitment", type=click.Choice(["confirmed", "finalized"]), default=None)
@click.option("--format", "fmt", type=click.Choice(OUTPUT_FORMATS), default=None)
@click.pass_context
def tx_command(
    ctx: click.Context,
    signature: str,
    parsed: bool,
    commitment: str | None,
    fmt: str | None,
) -> None:
    """Show one transaction: slot, status, fee and logs."""
    config = _config_from_ctx(ctx)
    fmt = fmt or ctx.obj.get("format", "json")
    commitment = commitment or config.scan.commitment

    async def _run() -> dict[str, Any]:
        parse_signature(signature)
        async with get_client(config) as client:
            if parsed:
                raw = await client.get_transaction_json(
                    signature, commitment=commitment, encoding="jsonParsed"
                )
                result = raw
            else:
                record = await fetch_transaction(client, signature, commitment)
                result = record.to_dict() if record is not None else None

        if result is None:
            raise TransactionNotFoundError(
                "Transaction not found (maybe too old or pruned)",
                details={"signature": signature, "commitment": commitment},
            )
        return result

    try:
        result = asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except SoltrailError as e:
        _output_error(e)
        return

    click.echo(format_output(result, "json" if parsed else fmt))


# ── Transfer command ──────────────────────────────────────────────────────────


@cli.command("transfer")
@click.option("--to", "destination", default=None, help="Destination wallet (owner) address")
@click.option("--mint", default=None, help="Token mint address")
@click.option("--amount", type=click.IntRange(min=1), default=None,
              help="Amount in the token's smallest unit")
@click.option("--skip-preflight/--preflight", default=None,
              help="Skip node-side simulation before submission")
@click.pass_context
def transfer_command(
    ctx: click.Context,
    destination: str | None,
    mint: str | None,
    amount: int | None,
    skip_preflight: bool | None,
) -> None:
    """Send SPL tokens from the configured sender to a destination wallet."""
    config = _config_from_ctx(ctx)

    if destination is not None:
        config.transfer.destination = destination
    if mint is not None:
        config.transfer.mint = mint
    if amount is not None:
        config.transfer.amount = amount
    if skip_preflight is not None:
        config.transfer.skip_preflight = skip_preflight

    async def _run() -> dict[str, Any]:
        intent, sender = intent_from_config(config)
        async with get_client(config) as client:
            signature = await transfer_tokens(
                client,
                intent,
                sender,
                skip_preflight=config.transfer.skip_preflight,
                preflight_commitment=config.transfer.preflight_commitment,
            )

        return {
            "status": "submitted",
            "signature": signature,
            **intent.to_dict(),
            "source_account": str(derive_associated_account(intent.owner, intent.mint)),
            "destination_account": str(derive_associated_account(intent.destination, intent.mint)),
        }


    try:
        result = asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except SoltrailError as e:
        _output_error(e)
        return

    click.echo(format_output(result, "json"))


# ── Associated account ────────────────────────────────────────────────────────


@cli.command("ata")
@click.argument("owner")
@click.argument("mint")
def ata_command(owner: str, mint: str) -> None:
    """Print the associated token account for OWNER and MINT (no network)."""
    try:
        owner_key = parse_address(owner)
        mint_key = parse_address(mint)
    except SoltrailError as e:
        _output_error(e)
        return

    account = derive_associated_account(owner_key, mint_key)
    click.echo(
        json.dumps({"owner": owner, "mint": mint, "associated_account": str(account)})
    )


# ── Config commands ───────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Manage soltrail configuration."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Initialize default config at ~/.soltrail/config.toml."""
    provided = ctx.obj.get("config_path")
    config_path = Path(provided) if provided else get_default_config_path()

    if config_path.exists() and not force:
        click.echo(
            json.dumps(
                {
                    "status": "already_exists",
                    "config_path": str(config_path),
                    "hint": "Use --force to reinitialize",
                }
            )
        )
        return

    status = "initialized"
    backup = None

    if config_path.exists() and force:
        backup = str(config_path) + ".bak"
        import shutil

        shutil.copy2(config_path, backup)
        status = "reinitialized"

    save_config(SoltrailConfig(), str(config_path))

    result: dict[str, Any] = {
        "status": status,
        "config_path": str(config_path),
    }
    if backup:
        result["backup"] = backup
    click.echo(json.dumps(result))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a config value by dotted key path (e.g. scan.page_size)."""
    config_path = ctx.obj.get("config_path")
    config: SoltrailConfig = ctx.obj["config"]

    parts = key.split(".", 1)
    if len(parts) != 2:
        sys.stderr.write(
            json.dumps(
                {
                    "error": "cli_error",
                    "message": f"Key must be in form section.key, got: {key!r}",
                }
            )
            + "\n"
        )
        sys.exit(1)

    section_name, field_name = parts
    section = getattr(config, section_name, None)
    if section is None or not hasattr(section, field_name):
        _output_error(ConfigInvalidError(f"Unknown config key: {key!r}"))
        return

    # Type-coerce
    current = getattr(section, field_name)
    try:
        if isinstance(current, bool):
            typed_value: Any = value.lower() in ("1", "true", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        else:
            typed_value = value
        setattr(section, field_name, typed_value)
        validate_config(config)
    except (ValueError, TypeError) as e:
        _output_error(ConfigInvalidError(str(e)))
        return
    except ConfigInvalidError as e:
        _output_error(e)
        return

    save_config(config, config_path)

    display_value = mask_secret(str(typed_value)) if "private_key" in field_name else typed_value
    click.echo(json.dumps({"status": "updated", "key": key, "value": display_value}))


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (private key masked)."""
    config: SoltrailConfig = ctx.obj["config"]
    provided = ctx.obj.get("config_path")
    config_path = Path(provided) if provided else get_default_config_path()

    result = {
        "config_path": str(config_path),
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
            "sender_private_key": mask_secret(config.transfer.sender_private_key),
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

    click.echo(format_output(result, "json"))


if __name__ == "__main__":
    cli()
