"""Unit tests for environment-backed ledger configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from captable.config import (
    LedgerConfig,
    load_ledger_config,
    sqlalchemy_database_url,
    validate_rename_target,
    validate_split_ratio,
)

from tests.utils.ledger_helpers import ADMIN

_ENV_KEYS = (
    "RPC_URL",
    "LEDGER_DATABASE_URL",
    "GATED_TOKEN_ADDRESS",
    "GATED_TOKEN_ABI_PATH",
    "ADMIN_WALLET",
    "SEPOLIA_PRIVATE_KEY",
    "CONFIRMATIONS",
    "INDEXER_POLL_INTERVAL_MS",
    "INDEXER_BATCH_SIZE",
    "INDEXER_MAX_CONSECUTIVE_FAILURES",
    "LOG_LEVEL",
)
_TOKEN = "0x" + "5a" * 20


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def _set_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEDGER_DATABASE_URL", "sqlite:///ledger.db")
    monkeypatch.setenv("GATED_TOKEN_ADDRESS", _TOKEN.upper().replace("0X", "0x"))


def test_load_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    _set_required(monkeypatch)
    cfg = load_ledger_config()
    assert cfg.rpc_url == "http://127.0.0.1:8545"
    assert cfg.token_address == _TOKEN
    assert cfg.confirmations == 5
    assert cfg.poll_interval_ms == 5000
    assert cfg.poll_interval_seconds == 5.0
    assert cfg.batch_size == 500
    assert cfg.max_consecutive_failures == 0
    assert cfg.token_artifact_path is None
    assert cfg.admin_wallet is None
    assert cfg.private_key is None
    assert cfg.log_level == "INFO"


def test_load_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _set_required(monkeypatch)
    monkeypatch.setenv("RPC_URL", "https://sepolia.example")
    monkeypatch.setenv("GATED_TOKEN_ABI_PATH", str(tmp_path / "GatedToken.json"))
    monkeypatch.setenv("ADMIN_WALLET", ADMIN)
    monkeypatch.setenv("SEPOLIA_PRIVATE_KEY", "ab" * 32)
    monkeypatch.setenv("CONFIRMATIONS", "0")
    monkeypatch.setenv("INDEXER_POLL_INTERVAL_MS", "250")
    monkeypatch.setenv("INDEXER_BATCH_SIZE", "50")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    cfg = load_ledger_config()
    assert cfg.rpc_url == "https://sepolia.example"
    assert cfg.token_artifact_path == (tmp_path / "GatedToken.json").resolve()
    assert cfg.admin_wallet == ADMIN
    assert cfg.private_key == "0x" + "ab" * 32
    assert cfg.confirmations == 0
    assert cfg.poll_interval_seconds == 0.25
    assert cfg.batch_size == 50
    assert cfg.log_level == "DEBUG"


@pytest.mark.parametrize("missing", ["LEDGER_DATABASE_URL", "GATED_TOKEN_ADDRESS"])
def test_missing_required_env_names_variable(monkeypatch: pytest.MonkeyPatch, missing: str) -> None:
    _set_required(monkeypatch)
    monkeypatch.delenv(missing)
    with pytest.raises(RuntimeError, match=missing):
        load_ledger_config()


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("CONFIRMATIONS", "five", "Invalid integer value for CONFIRMATIONS"),
        ("CONFIRMATIONS", "-1", "confirmations must be >= 0"),
        ("INDEXER_POLL_INTERVAL_MS", "0", "poll_interval_ms must be > 0"),
        ("INDEXER_BATCH_SIZE", "0", "batch_size must be > 0"),
        ("ADMIN_WALLET", "not-an-address", "Invalid address value for ADMIN_WALLET"),
    ],
)
def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch, key: str, value: str, message: str) -> None:
    _set_required(monkeypatch)
    monkeypatch.setenv(key, value)
    with pytest.raises(RuntimeError, match=message):
        load_ledger_config()


def test_config_dataclass_validates_directly() -> None:
    with pytest.raises(RuntimeError, match="max_consecutive_failures"):
        LedgerConfig(
            rpc_url="http://localhost:8545",
            database_url="sqlite://",
            token_address=_TOKEN,
            token_artifact_path=None,
            admin_wallet=None,
            private_key=None,
            max_consecutive_failures=-1,
        )


def test_split_ratio_contract() -> None:
    assert validate_split_ratio(2) == 2
    for bad in (1, 0, -3, 2.5, "3", True):
        with pytest.raises(ValueError):
            validate_split_ratio(bad)  # type: ignore[arg-type]


def test_rename_target_contract() -> None:
    assert validate_rename_target(" CEQX ") == ("CEQX", None)
    assert validate_rename_target("CEQX", " ChainEquity X ") == ("CEQX", "ChainEquity X")
    with pytest.raises(ValueError, match="newSymbol is required"):
        validate_rename_target("")
    with pytest.raises(ValueError, match="newName must not be blank"):
        validate_rename_target("CEQX", "  ")


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgres://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql+psycopg://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("sqlite:///ledger.db", "sqlite:///ledger.db"),
    ],
)
def test_sqlalchemy_database_url_selects_psycopg_driver(url: str, expected: str) -> None:
    assert sqlalchemy_database_url(url) == expected
