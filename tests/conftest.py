"""Pytest fixtures shared across ledger, ingestion, snapshot and migration tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator

import pytest
from sqlalchemy.engine import Engine

from captable.chain_contract import TokenArtifact
from captable.chain_simulator import SimulatedChain
from captable.config import LedgerConfig
from captable.db_adapter import SqlAlchemyLedgerDB, create_ledger_engine, create_schema

from tests.utils.ledger_helpers import ADMIN


@pytest.fixture
def ledger_engine() -> Iterator[Engine]:
    """Fresh in-memory SQLite database with the ledger schema."""
    engine = create_ledger_engine("sqlite://")
    create_schema(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def ledger_db(ledger_engine: Engine) -> Iterator[SqlAlchemyLedgerDB]:
    """Ledger DB adapter fixture."""
    db = SqlAlchemyLedgerDB.connect(ledger_engine)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def chain() -> SimulatedChain:
    return SimulatedChain()


@pytest.fixture
def token(chain: SimulatedChain) -> str:
    """Gated token deployed with the default ChainEquity metadata."""
    return chain.deploy_token("ChainEquity", "CEQ", ADMIN)


@pytest.fixture
def artifact() -> TokenArtifact:
    return TokenArtifact(abi=({"type": "constructor"},), bytecode="0x6080")


@pytest.fixture
def make_config(token: str, tmp_path: Path) -> Any:
    """Factory for a LedgerConfig bound to the fixture token."""

    def _make(**overrides: Any) -> LedgerConfig:
        values: dict[str, Any] = {
            "rpc_url": "http://127.0.0.1:8545",
            "database_url": "sqlite://",
            "token_address": token,
            "token_artifact_path": tmp_path / "GatedToken.json",
            "admin_wallet": ADMIN,
            "private_key": None,
            "confirmations": 0,
            "poll_interval_ms": 10,
            "batch_size": 500,
        }
        values.update(overrides)
        return LedgerConfig(**values)

    return _make
