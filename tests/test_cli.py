"""Tests for soltrail/cli.py — Click CLI entry point."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import AsyncMock, patch

import base58
import pytest
from click.testing import CliRunner
from conftest import FakeLedgerClient, make_record
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from soltrail.cli import cli
from soltrail.exceptions import NetworkTimeoutError, TransactionRejectedError
from soltrail.transfer import derive_associated_account

ADDRESS = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Strip SOLTRAIL_* variables so the host environment cannot leak in."""
    for key in list(os.environ):
        if key.startswith("SOLTRAIL_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config_path(tmp_path: Path) -> str:
    return str(tmp_path / "config.toml")


@pytest.fixture
def scan_client() -> FakeLedgerClient:
    return FakeLedgerClient(
        signatures=["s3", "s2", "s1"],
        records={
            "s3": make_record("s3", ["Program log: Instruction: Transfer"]),
            "s2": make_record("s2", ["Program log: Instruction: InitializeMint2"]),
            "s1": make_record("s1", ["Program log: Instruction: InitializeMint2"]),
        },
    )


def error_payload(output: str) -> dict:
    """Last JSON line of the output (the error written to stderr)."""
    return json.loads(output.strip().splitlines()[-1])


# ── version / help ────────────────────────────────────────────────────────────


def test_cli_version(runner: CliRunner) -> None:
    """--version flag should output version string."""
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_cli_help(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("scan", "tx", "transfer", "ata", "config"):
        assert command in result.output


# ── config commands ───────────────────────────────────────────────────────────


def test_config_init(runner: CliRunner, config_path: str) -> None:
    """config init should create config file."""
    result = runner.invoke(cli, ["--config", config_path, "config", "init"])
    assert result.exit_code == 0
    assert json.loads(result.output)["status"] == "initialized"
    assert Path(config_path).exists()


def test_config_init_already_exists(runner: CliRunner, config_path: str) -> None:
    """A second init without --force leaves the file alone."""
    runner.invoke(cli, ["--config", config_path, "config", "init"])
    result = runner.invoke(cli, ["--config", config_path, "config", "init"])
    assert result.exit_code == 0
    assert json.loads(result.output)["status"] == "already_exists"


def test_config_init_force_backs_up(runner: CliRunner, config_path: str) -> None:
    runner.invoke(cli, ["--config", config_path, "config", "init"])
    result = runner.invoke(cli, ["--config", config_path, "config", "init", "--force"])
    output = json.loads(result.output)
    assert output["status"] == "reinitialized"
    assert Path(output["backup"]).exists()


def test_config_set_and_show(runner: CliRunner, config_path: str) -> None:
    """config set persists a typed value that config show reports."""
    result = runner.invoke(cli, ["--config", config_path, "config", "set", "scan.page_size", "250"])
    assert result.exit_code == 0
    assert json.loads(result.output) == {"status": "updated", "key": "scan.page_size", "value": 250}

    result = runner.invoke(cli, ["--config", config_path, "config", "show"])
    assert result.exit_code == 0
    assert json.loads(result.output)["scan"]["page_size"] == 250


def test_config_set_masks_private_key(runner: CliRunner, config_path: str) -> None:
    """Secrets are never echoed back."""
    secret = base58.b58encode(bytes(Keypair())).decode()
    result = runner.invoke(
        cli, ["--config", config_path, "config", "set", "transfer.sender_private_key", secret]
    )
    assert result.exit_code == 0
    assert secret not in result.output
    assert json.loads(result.output)["value"].endswith("****")

    shown = runner.invoke(cli, ["--config", config_path, "config", "show"])
    assert secret not in shown.output


def test_config_set_unknown_key(runner: CliRunner, config_path: str) -> None:
    result = runner.invoke(cli, ["--config", config_path, "config", "set", "scan.nope", "1"])
    assert result.exit_code == 5
    assert error_payload(result.output)["error"] == "config_invalid"


def test_config_set_invalid_value(runner: CliRunner, config_path: str) -> None:
    """Values are validated before they are written."""
    result = runner.invoke(cli, ["--config", config_path, "config", "set", "scan.page_size", "5000"])
    assert result.exit_code == 5
    assert not Path(config_path).exists()


def test_config_set_bad_key_shape(runner: CliRunner, config_path: str) -> None:
    result = runner.invoke(cli, ["--config", config_path, "config", "set", "page_size", "5"])
    assert result.exit_code == 1


# ── ata ───────────────────────────────────────────────────────────────────────


def test_ata(runner: CliRunner) -> None:
    """ata prints the derived associated token account."""
    owner, mint = Pubkey.new_unique(), Pubkey.new_unique()
    result = runner.invoke(cli, ["ata", str(owner), str(mint)])
    assert result.exit_code == 0
    assert json.loads(result.output)["associated_account"] == str(
        derive_associated_account(owner, mint)
    )


def test_ata_invalid_owner(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["ata", "0xd8da6bf26964af9d7eed9e03e53415d37aa96045", ADDRESS])
    assert result.exit_code == 4
    assert error_payload(result.output)["error"] == "invalid_address"


# ── scan ──────────────────────────────────────────────────────────────────────


def test_scan_json(runner: CliRunner, config_path: str, scan_client: FakeLedgerClient) -> None:
    """A json scan reports every match in history order plus stats."""
    with patch("soltrail.cli.get_client", return_value=scan_client):
        result = runner.invoke(
            cli, ["--config", config_path, "scan", ADDRESS, "--delay-ms", "0", "--format", "json"]
        )
    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert [m["signature"] for m in output["matches"]] == ["s2", "s1"]
    assert output["stats"]["fetched"] == 3
    assert output["marker"] == "InitializeMint2"
    assert scan_client.closed


def test_scan_jsonl(runner: CliRunner, config_path: str, scan_client: FakeLedgerClient) -> None:
    """jsonl streams one event per line."""
    with patch("soltrail.cli.get_client", return_value=scan_client):
        result = runner.invoke(
            cli,
            ["--config", config_path, "scan", ADDRESS, "--delay-ms", "0", "--format", "jsonl",
             "--marker", "Instruction: Transfer"],
        )
    assert result.exit_code == 0, result.output
    lines = [json.loads(line) for line in result.output.splitlines()]
    assert [line["type"] for line in lines] == ["scan_start", "log_match", "scan_end"]
    assert lines[1]["signature"] == "s3"


def test_scan_limit(runner: CliRunner, config_path: str, scan_client: FakeLedgerClient) -> None:
    """--limit stops after N fetched records."""
    with patch("soltrail.cli.get_client", return_value=scan_client):
        result = runner.invoke(
            cli, ["--config", config_path, "scan", ADDRESS, "--delay-ms", "0", "--limit", "2"]
        )
    assert result.exit_code == 0, result.output
    assert [m["signature"] for m in json.loads(result.output)["matches"]] == ["s2"]
    assert len(scan_client.method_calls("getTransaction")) == 2


def test_scan_table(runner: CliRunner, config_path: str, scan_client: FakeLedgerClient) -> None:
    with patch("soltrail.cli.get_client", return_value=scan_client):
        result = runner.invoke(
            cli, ["--config", config_path, "--format", "table", "scan", ADDRESS, "--delay-ms", "0"]
        )
    assert result.exit_code == 0, result.output
    assert "Matches: 2" in result.output


def test_scan_no_address(runner: CliRunner, config_path: str) -> None:
    """Without an address argument or scan.address the scan fails fast."""
    result = runner.invoke(cli, ["--config", config_path, "scan"])
    assert result.exit_code == 5
    assert error_payload(result.output)["error"] == "config_missing"


def test_scan_address_from_env(
    runner: CliRunner,
    config_path: str,
    scan_client: FakeLedgerClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("SOLTRAIL_ADDRESS", ADDRESS)
    with patch("soltrail.cli.get_client", return_value=scan_client):
        result = runner.invoke(cli, ["--config", config_path, "scan", "--delay-ms", "0"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["address"] == ADDRESS


def test_scan_invalid_address(runner: CliRunner, config_path: str) -> None:
    result = runner.invoke(cli, ["--config", config_path, "scan", "not-an-address"])
    assert result.exit_code == 4
    assert error_payload(result.output)["error"] == "invalid_address"


def test_scan_listing_failure(runner: CliRunner, config_path: str) -> None:
    """A broken listing exits with the network error code."""
    client = FakeLedgerClient(listing_error=NetworkTimeoutError("RPC timeout on getSignaturesForAddress"))
    with patch("soltrail.cli.get_client", return_value=client):
        result = runner.invoke(cli, ["--config", config_path, "scan", ADDRESS])
    assert result.exit_code == 3
    assert error_payload(result.output)["error"] == "network_timeout"


def test_scan_invalid_config_file(runner: CliRunner, config_path: str) -> None:
    """A malformed config file is reported instead of silently ignored."""
    Path(config_path).write_text("[scan]\npage_size = 0\n")
    result = runner.invoke(cli, ["--config", config_path, "scan", ADDRESS])
    assert result.exit_code == 5
    assert error_payload(result.output)["error"] == "config_invalid"


# ── tx ────────────────────────────────────────────────────────────────────────


@pytest.fixture
def signature() -> str:
    return str(Keypair().sign_message(b"soltrail"))


def test_tx_found(runner: CliRunner, config_path: str, signature: str) -> None:
    client = FakeLedgerClient(records={signature: make_record(signature, ["Program log: hi"])})
    with patch("soltrail.cli.get_client", return_value=client):
        result = runner.invoke(cli, ["--config", config_path, "tx", signature])
    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert output["signature"] == signature
    assert output["status"] == "ok"
    assert output["logs"] == ["Program log: hi"]


def test_tx_jsonl(runner: CliRunner, config_path: str, signature: str) -> None:
    """jsonl prints the transaction as one compact line."""
    client = FakeLedgerClient(records={signature: make_record(signature, ["Program log: hi"])})
    with patch("soltrail.cli.get_client", return_value=client):
        result = runner.invoke(cli, ["--config", config_path, "tx", signature, "--format", "jsonl"])
    assert result.exit_code == 0, result.output
    lines = result.output.strip().splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["signature"] == signature


def test_tx_parsed(runner: CliRunner, config_path: str, signature: str) -> None:
    """--parsed prints the node's raw payload."""
    client = FakeLedgerClient(records={signature: make_record(signature, ["Program log: hi"])})
    with patch("soltrail.cli.get_client", return_value=client):
        result = runner.invoke(cli, ["--config", config_path, "tx", signature, "--parsed"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["meta"]["logMessages"] == ["Program log: hi"]
    assert client.calls[0][3] == "jsonParsed"


def test_tx_not_found(runner: CliRunner, config_path: str, signature: str) -> None:
    with patch("soltrail.cli.get_client", return_value=FakeLedgerClient()):
        result = runner.invoke(cli, ["--config", config_path, "tx", signature])
    assert result.exit_code == 4
    assert error_payload(result.output)["error"] == "transaction_not_found"


def test_tx_invalid_signature(runner: CliRunner, config_path: str) -> None:
    result = runner.invoke(cli, ["--config", config_path, "tx", "abc"])
    assert result.exit_code == 4
    assert error_payload(result.output)["error"] == "invalid_signature"


# ── transfer ──────────────────────────────────────────────────────────────────


@pytest.fixture
def transfer_env(monkeypatch: pytest.MonkeyPatch) -> Keypair:
    sender = Keypair()
    monkeypatch.setenv("SOLTRAIL_SENDER_PRIVATE_KEY", base58.b58encode(bytes(sender)).decode())
    return sender


def test_transfer(runner: CliRunner, config_path: str, transfer_env: Keypair) -> None:
    """transfer builds, signs and submits one transaction."""
    destination, mint = Pubkey.new_unique(), Pubkey.new_unique()
    client = FakeLedgerClient()
    with patch("soltrail.cli.get_client", return_value=client):
        result = runner.invoke(
            cli,
            ["--config", config_path, "transfer", "--to", str(destination), "--mint", str(mint),
             "--amount", "25"],
        )
    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert output["status"] == "submitted"
    assert output["owner"] == str(transfer_env.pubkey())
    assert output["amount"] == 25
    assert output["destination_account"] == str(derive_associated_account(destination, mint))
    assert len(client.sent) == 1
    assert client.method_calls("sendTransaction") == [("sendTransaction", False, "finalized")]


def test_transfer_uses_transfer_tokens(runner: CliRunner, config_path: str, transfer_env: Keypair) -> None:
    """The command hands the intent, sender and preflight settings to transfer_tokens."""
    destination, mint = Pubkey.new_unique(), Pubkey.new_unique()
    client = FakeLedgerClient()
    pipeline = AsyncMock(return_value="sig-from-pipeline")
    with patch("soltrail.cli.get_client", return_value=client), \
            patch("soltrail.cli.transfer_tokens", pipeline):
        result = runner.invoke(
            cli,
            ["--config", config_path, "transfer", "--to", str(destination), "--mint", str(mint),
             "--skip-preflight"],
        )
    assert result.exit_code == 0, result.output
    pipeline.assert_awaited_once()
    args, kwargs = pipeline.await_args
    assert args[0] is client
    assert args[1].destination == destination
    assert args[2].pubkey() == transfer_env.pubkey()
    assert kwargs == {"skip_preflight": True, "preflight_commitment": "finalized"}

    output = json.loads(result.output)
    assert output["signature"] == "sig-from-pipeline"
    assert output["source_account"] == str(derive_associated_account(transfer_env.pubkey(), mint))


def test_transfer_missing_settings(runner: CliRunner, config_path: str) -> None:
    """Missing sender/destination/mint fail before any remote call."""
    client = FakeLedgerClient()
    with patch("soltrail.cli.get_client", return_value=client):
        result = runner.invoke(cli, ["--config", config_path, "transfer"])
    assert result.exit_code == 5
    payload = error_payload(result.output)
    assert payload["error"] == "config_missing"
    assert "transfer.sender_private_key" in payload["details"]["missing"]
    assert client.calls == []


def test_transfer_rejected(runner: CliRunner, config_path: str, transfer_env: Keypair) -> None:
    """A node rejection exits with the API error code and the reason."""
    client = FakeLedgerClient(
        send_error=TransactionRejectedError(
            "Transaction simulation failed: Blockhash not found",
            code=-32002,
            reason="blockhash_not_found",
        )
    )
    with patch("soltrail.cli.get_client", return_value=client):
        result = runner.invoke(
            cli,
            ["--config", config_path, "transfer", "--to", str(Pubkey.new_unique()),
             "--mint", str(Pubkey.new_unique()), "--skip-preflight"],
        )
    assert result.exit_code == 2
    payload = error_payload(result.output)
    assert payload["error"] == "transaction_rejected"
    assert payload["details"]["reason"] == "blockhash_not_found"
    assert client.method_calls("sendTransaction") == [("sendTransaction", True, "finalized")]
