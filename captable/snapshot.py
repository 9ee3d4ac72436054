"""Point-in-time holder snapshots replayed from the event log and reconciled on-chain."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging
from pathlib import Path
from typing import Any, Optional

from captable.balances import replay
from captable.chain_contract import ChainClient, call_chain
from captable.common import LedgerDatabase, normalize_address
from captable.errors import InvalidRange, NotIndexed
from captable.event_store import EventStore
from captable.ledger_meta import LedgerMeta

logger = logging.getLogger(__name__)

CSV_HEADER = "wallet,balance,ownership_pct,on_chain_balance"
OWNERSHIP_DISPLAY_SCALE = Decimal("0.0001")


@dataclass(frozen=True)
class SnapshotRow:
    """One holder line of a snapshot."""

    address: str
    ledger_balance: int
    authoritative_balance: int
    ownership_pct: Decimal


@dataclass(frozen=True)
class Discrepancy:
    """Holder whose replayed balance differs from the same-block on-chain read."""

    address: str
    ledger_balance: int
    authoritative_balance: int


@dataclass(frozen=True)
class Snapshot:
    """Replayed cap table at a confirmed block."""

    block: int
    total_supply: int
    rows: tuple[SnapshotRow, ...]
    discrepancies: tuple[Discrepancy, ...]

    @property
    def holder_count(self) -> int:
        return len(self.rows)

    @property
    def is_reconciled(self) -> bool:
        return not self.discrepancies


def ownership_pct(balance: int, total_supply: int) -> Decimal:
    """Share of supply truncated to two decimals, carried at four-decimal display scale."""
    if total_supply <= 0:
        return Decimal("0").quantize(OWNERSHIP_DISPLAY_SCALE)
    basis_points = (balance * 10000) // total_supply
    return (Decimal(basis_points) / Decimal(100)).quantize(OWNERSHIP_DISPLAY_SCALE)


def resolve_snapshot_block(last_processed: Optional[int], requested_block: Optional[int]) -> int:
    """Clamp a requested block to what has been ingested."""
    if last_processed is None:
        raise NotIndexed("Indexer has not processed any blocks yet")
    if requested_block is None:
        return last_processed
    if requested_block < 0:
        raise InvalidRange(f"Snapshot block must be non-negative, got {requested_block}")
    return min(requested_block, last_processed)


def generate_snapshot(
    *,
    db: LedgerDatabase,
    chain: ChainClient,
    token_address: str,
    requested_block: Optional[int] = None,
) -> Snapshot:
    """Replay the event log up to a block and cross-check each holder against the chain."""
    block = resolve_snapshot_block(LedgerMeta(db).last_processed_block(), requested_block)
    token = normalize_address(token_address)
    arena = replay(EventStore(db).read_through(block))

    total_supply = arena.total()
    collected: list[tuple[str, int, int]] = []
    discrepancies: list[Discrepancy] = []
    for address, balance in arena.items():
        on_chain = int(
            call_chain(
                f"balanceOf({address})@{block}",
                chain.read_contract,
                token,
                "balanceOf",
                [address],
                at_block=block,
            )
        )
        collected.append((address, balance, on_chain))
        if on_chain != balance:
            discrepancies.append(Discrepancy(address=address, ledger_balance=balance, authoritative_balance=on_chain))

    collected.sort(key=lambda item: (-item[1], item[0]))
    rows = tuple(
        SnapshotRow(
            address=address,
            ledger_balance=balance,
            authoritative_balance=on_chain,
            ownership_pct=ownership_pct(balance, total_supply),
        )
        for address, balance, on_chain in collected
    )

    if discrepancies:
        logger.warning(
            "snapshot discrepancies token=%s block=%s count=%s",
            token,
            block,
            len(discrepancies),
        )
    logger.info(
        "snapshot generated token=%s block=%s holders=%s total_supply=%s",
        token,
        block,
        len(rows),
        total_supply,
    )
    return Snapshot(
        block=block,
        total_supply=total_supply,
        rows=rows,
        discrepancies=tuple(discrepancies),
    )


def _format_pct(value: Decimal) -> str:
    return format(value.quantize(OWNERSHIP_DISPLAY_SCALE), "f")


def snapshot_to_csv(snapshot: Snapshot) -> str:
    """Render the fixed-header CSV export; integers are plain decimal text."""
    lines = [CSV_HEADER]
    for row in snapshot.rows:
        lines.append(
            ",".join(
                (
                    row.address,
                    str(row.ledger_balance),
                    _format_pct(row.ownership_pct),
                    str(row.authoritative_balance),
                )
            )
        )
    return "\n".join(lines)


def write_snapshot_csv(snapshot: Snapshot, path: Path | str) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(snapshot_to_csv(snapshot), encoding="utf-8")
    return target


def snapshot_summary(snapshot: Snapshot) -> dict[str, Any]:
    """JSON-ready view with every amount rendered as decimal text."""
    return {
        "block": snapshot.block,
        "total_supply": str(snapshot.total_supply),
        "holder_count": snapshot.holder_count,
        "rows": [
            {
                "address": row.address,
                "balance": str(row.ledger_balance),
                "ownership_pct": _format_pct(row.ownership_pct),
                "on_chain_balance": str(row.authoritative_balance),
            }
            for row in snapshot.rows
        ],
        "discrepancies": [
            {
                "address": item.address,
                "indexed": str(item.ledger_balance),
                "on_chain": str(item.authoritative_balance),
            }
            for item in snapshot.discrepancies
        ],
    }
