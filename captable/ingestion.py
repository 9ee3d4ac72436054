"""Confirmed-range ingestion cycle: chain logs -> event store -> balance ledger."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Sequence

from captable.chain_contract import ChainClient, RawTransferLog, call_chain
from captable.common import LedgerDatabase, LedgerWriteLock
from captable.config import LedgerConfig
from captable.event_store import EventStore
from captable.events import TRANSFER_EVENT_SIGNATURE, TransferEvent
from captable.ledger import BalanceLedger
from captable.ledger_meta import LedgerMeta

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionCycleResult:
    """Summary payload for one ingestion cycle."""

    status: str
    token_address: str
    chain_head: int
    target_block: int
    from_block: Optional[int]
    to_block: Optional[int]
    batches_committed: int
    events_applied: int


def confirmed_target(chain_head: int, confirmations: int) -> int:
    """Highest block considered safe from reorganization."""
    return max(chain_head - confirmations, 0)


def batch_ranges(start_block: int, end_block: int, batch_size: int) -> tuple[tuple[int, int], ...]:
    """Split [start_block, end_block] into inclusive windows of at most batch_size blocks."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    ranges: list[tuple[int, int]] = []
    lower = start_block
    while lower <= end_block:
        upper = min(lower + batch_size - 1, end_block)
        ranges.append((lower, upper))
        lower = upper + 1
    return tuple(ranges)


def resolve_authoritative_address(meta: LedgerMeta, config: LedgerConfig) -> str:
    """The migrated pointer in meta wins over the bootstrap address from config."""
    return meta.current_authoritative_address() or config.token_address


def _to_events(logs: Sequence[RawTransferLog]) -> tuple[TransferEvent, ...]:
    events = [
        TransferEvent(
            block_number=log.block_number,
            log_index=log.log_index,
            transaction_hash=log.transaction_hash,
            from_address=log.from_address,
            to_address=log.to_address,
            value=log.value,
            topic0=log.topic0,
            data=log.data,
        )
        for log in logs
    ]
    return tuple(sorted(events, key=lambda event: event.sequence_key))


def ingest_batch(
    *,
    db: LedgerDatabase,
    chain: ChainClient,
    token_address: str,
    from_block: int,
    to_block: int,
) -> int:
    """Fetch, append, apply and commit one block window as a single unit.

    The commit is a compare-and-set: under the writer guard the token pointer
    must still name `token_address` and the watermark must still sit right
    below `from_block`, otherwise `ConcurrentLedgerWrite` is raised. On any
    failure the transaction is rolled back so none of the batch's event rows,
    balance updates or watermark advance become visible.
    """
    store = EventStore(db)
    ledger = BalanceLedger(db)
    meta = LedgerMeta(db)
    expected_previous = from_block - 1 if from_block > 0 else None
    try:
        logs = call_chain(
            f"get_logs[{from_block}..{to_block}]",
            chain.get_logs,
            token_address,
            TRANSFER_EVENT_SIGNATURE,
            from_block,
            to_block,
        )
        events = _to_events(logs)
        meta.claim_writer("ingestion")
        meta.expect_authoritative_address(token_address)
        meta.expect_last_processed_block(expected_previous)
        store.append(events)
        for event in events:
            ledger.apply(event)
        meta.set_last_processed_block(to_block, expected_previous=expected_previous)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return len(events)


def run_ingestion_cycle(
    *,
    db: LedgerDatabase,
    chain: ChainClient,
    config: LedgerConfig,
    write_lock: LedgerWriteLock | None = None,
) -> IngestionCycleResult:
    """Run one ingestion cycle over the newly confirmed block range."""
    lock = write_lock or LedgerWriteLock()
    with lock:
        meta = LedgerMeta(db)
        token_address = resolve_authoritative_address(meta, config)
        chain_head = int(call_chain("get_chain_head", chain.get_chain_head))
        target = confirmed_target(chain_head, config.confirmations)
        last_processed = meta.last_processed_block()
        last = -1 if last_processed is None else last_processed

        if target <= last:
            db.commit()
            logger.debug("ingestion noop token=%s head=%s target=%s last=%s", token_address, chain_head, target, last)
            return IngestionCycleResult(
                status="NOOP",
                token_address=token_address,
                chain_head=chain_head,
                target_block=target,
                from_block=None,
                to_block=None,
                batches_committed=0,
                events_applied=0,
            )

        batches_committed = 0
        events_applied = 0
        for lower, upper in batch_ranges(last + 1, target, config.batch_size):
            applied = ingest_batch(
                db=db,
                chain=chain,
                token_address=token_address,
                from_block=lower,
                to_block=upper,
            )
            batches_committed += 1
            events_applied += applied
            logger.info(
                "ingested batch token=%s from_block=%s to_block=%s events=%s",
                token_address,
                lower,
                upper,
                applied,
            )

        return IngestionCycleResult(
            status="SYNCED",
            token_address=token_address,
            chain_head=chain_head,
            target_block=target,
            from_block=last + 1,
            to_block=target,
            batches_committed=batches_committed,
            events_applied=events_applied,
        )
