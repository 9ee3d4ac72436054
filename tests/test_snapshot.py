"""Unit tests for replayed snapshots, reconciliation and CSV export."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from captable.chain_simulator import SimulatedChain
from captable.common import UINT256_MAX
from captable.db_adapter import SqlAlchemyLedgerDB
from captable.errors import ExternalCallFailed, InvalidRange, NotIndexed
from captable.ingestion import run_ingestion_cycle
from captable.snapshot import (
    CSV_HEADER,
    Snapshot,
    SnapshotRow,
    generate_snapshot,
    ownership_pct,
    resolve_snapshot_block,
    snapshot_summary,
    snapshot_to_csv,
    write_snapshot_csv,
)

from tests.utils.ledger_helpers import ALICE, BOB, CAROL, seed_holder


def _ingest(ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, make_config: Any) -> None:
    run_ingestion_cycle(db=ledger_db, chain=chain, config=make_config())


def test_resolve_snapshot_block_clamps_to_watermark() -> None:
    assert resolve_snapshot_block(10, None) == 10
    assert resolve_snapshot_block(10, 4) == 4
    assert resolve_snapshot_block(10, 10_000) == 10
    with pytest.raises(NotIndexed):
        resolve_snapshot_block(None, 3)
    with pytest.raises(InvalidRange):
        resolve_snapshot_block(10, -1)


def test_ownership_pct_truncates_to_basis_points() -> None:
    assert ownership_pct(700, 1000) == Decimal("70.0000")
    assert ownership_pct(1, 3) == Decimal("33.3300")
    assert ownership_pct(2, 3) == Decimal("66.6600")
    assert ownership_pct(0, 0) == Decimal("0.0000")


def test_snapshot_not_indexed_before_first_cycle(
    ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, token: str
) -> None:
    with pytest.raises(NotIndexed, match="has not processed any blocks"):
        generate_snapshot(db=ledger_db, chain=chain, token_address=token)


def test_snapshot_rows_sorted_and_reconciled(
    ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, token: str, make_config: Any
) -> None:
    seed_holder(chain, token, ALICE, 250)
    seed_holder(chain, token, BOB, 500)
    seed_holder(chain, token, CAROL, 250)
    _ingest(ledger_db, chain, make_config)

    snapshot = generate_snapshot(db=ledger_db, chain=chain, token_address=token)
    assert snapshot.block == chain.get_chain_head()
    assert snapshot.total_supply == 1000
    assert [(row.address, row.ledger_balance) for row in snapshot.rows] == [
        (BOB, 500),
        (ALICE, 250),
        (CAROL, 250),
    ]
    assert [str(row.ownership_pct) for row in snapshot.rows] == ["50.0000", "25.0000", "25.0000"]
    assert snapshot.is_reconciled
    assert snapshot.holder_count == 3


def test_snapshot_never_exceeds_ingested_block(
    ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, token: str, make_config: Any
) -> None:
    seed_holder(chain, token, ALICE, 10)
    _ingest(ledger_db, chain, make_config)
    watermark = chain.get_chain_head()
    seed_holder(chain, token, BOB, 10)

    snapshot = generate_snapshot(db=ledger_db, chain=chain, token_address=token, requested_block=watermark + 50)
    assert snapshot.block == watermark
    assert [row.address for row in snapshot.rows] == [ALICE]


def test_historical_snapshot_is_reproducible(
    ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, token: str, make_config: Any
) -> None:
    seed_holder(chain, token, ALICE, 100)
    historical_block = chain.get_chain_head()
    chain.submit_transaction(token, "setAllowlistStatus", [BOB, True])
    chain.submit_transaction(token, "transfer", [ALICE, BOB, 40])
    _ingest(ledger_db, chain, make_config)

    first = generate_snapshot(db=ledger_db, chain=chain, token_address=token, requested_block=historical_block)
    second = generate_snapshot(db=ledger_db, chain=chain, token_address=token, requested_block=historical_block)
    assert first == second
    assert [(row.address, row.ledger_balance, row.authoritative_balance) for row in first.rows] == [
        (ALICE, 100, 100)
    ]

    latest = generate_snapshot(db=ledger_db, chain=chain, token_address=token)
    assert [(row.address, row.ledger_balance) for row in latest.rows] == [(ALICE, 60), (BOB, 40)]


def test_zero_supply_snapshot_has_no_rows(
    ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, token: str, make_config: Any
) -> None:
    _ingest(ledger_db, chain, make_config)
    snapshot = generate_snapshot(db=ledger_db, chain=chain, token_address=token)
    assert snapshot.rows == ()
    assert snapshot.discrepancies == ()
    assert snapshot.total_supply == 0
    assert snapshot_to_csv(snapshot) == CSV_HEADER


def test_drift_is_reported_not_raised(
    ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, token: str, make_config: Any
) -> None:
    seed_holder(chain, token, ALICE, 10)
    seed_holder(chain, token, BOB, 20)
    _ingest(ledger_db, chain, make_config)
    chain.force_balance(token, BOB, 25)

    snapshot = generate_snapshot(db=ledger_db, chain=chain, token_address=token)
    assert not snapshot.is_reconciled
    (discrepancy,) = snapshot.discrepancies
    assert (discrepancy.address, discrepancy.ledger_balance, discrepancy.authoritative_balance) == (BOB, 20, 25)
    assert snapshot.total_supply == 30


def test_chain_read_failure_is_wrapped(
    ledger_db: SqlAlchemyLedgerDB, chain: SimulatedChain, token: str, make_config: Any
) -> None:
    seed_holder(chain, token, ALICE, 10)
    _ingest(ledger_db, chain, make_config)
    chain.inject_failure("balanceOf", ConnectionError("archive node unavailable"))
    with pytest.raises(ExternalCallFailed, match="archive node unavailable"):
        generate_snapshot(db=ledger_db, chain=chain, token_address=token)


def test_csv_export_single_row() -> None:
    snapshot = Snapshot(
        block=5,
        total_supply=1000,
        rows=(SnapshotRow(address="0xA", ledger_balance=700, authoritative_balance=700, ownership_pct=Decimal("70")),),
        discrepancies=(),
    )
    assert snapshot_to_csv(snapshot).split("\n") == [
        "wallet,balance,ownership_pct,on_chain_balance",
        "0xA,700,70.0000,700",
    ]


def test_csv_export_keeps_uint256_as_plain_text(tmp_path: Path) -> None:
    snapshot = Snapshot(
        block=1,
        total_supply=UINT256_MAX,
        rows=(
            SnapshotRow(
                address=ALICE,
                ledger_balance=UINT256_MAX,
                authoritative_balance=UINT256_MAX,
                ownership_pct=Decimal("100"),
            ),
        ),
        discrepancies=(),
    )
    target = write_snapshot_csv(snapshot, tmp_path / "exports" / "snapshot.csv")
    line = target.read_text(encoding="utf-8").split("\n")[1]
    assert line == f"{ALICE},{UINT256_MAX},100.0000,{UINT256_MAX}"
    assert "e+" not in line

    summary = snapshot_summary(snapshot)
    assert summary["total_supply"] == str(UINT256_MAX)
    assert summary["rows"][0]["ownership_pct"] == "100.0000"
