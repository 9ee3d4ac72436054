"""Append-only, strictly ordered store of observed transfer events."""

from __future__ import annotations

from typing import Sequence

from captable.common import LedgerDatabase
from captable.errors import DuplicateSequence, InvalidRange
from captable.events import TransferEvent

_EVENT_COLUMNS = "block, log_index, txhash, from_address, to_address, value, topic0, data"


class EventStore:
    """Event log persisted in the `events` table.

    The store never commits; the surrounding ingestion batch or migration cutover
    owns the transaction so that an acknowledged range is always durable.
    """

    def __init__(self, db: LedgerDatabase) -> None:
        self._db = db

    def _exists(self, block_number: int, log_index: int) -> bool:
        row = self._db.fetch_one(
            """
            SELECT 1 AS present
            FROM events
            WHERE block = :block
              AND log_index = :log_index
            """,
            {"block": block_number, "log_index": log_index},
        )
        return row is not None

    def append(self, events: Sequence[TransferEvent]) -> int:
        """Append events in total order; rejects any already-recorded sequence key."""
        previous: tuple[int, int] | None = None
        for event in events:
            key = event.sequence_key
            if previous is not None:
                if key == previous:
                    raise DuplicateSequence(*key)
                if key < previous:
                    raise InvalidRange(f"Events out of order: {key} follows {previous}")
            previous = key

        for event in events:
            if self._exists(event.block_number, event.log_index):
                raise DuplicateSequence(event.block_number, event.log_index)
            self._db.execute(
                f"""
                INSERT INTO events ({_EVENT_COLUMNS})
                VALUES (
                    :block, :log_index, :txhash, :from_address,
                    :to_address, :value, :topic0, :data
                )
                """,
                event.to_row(),
            )
        return len(events)

    def read_range(self, from_block: int, to_block: int) -> tuple[TransferEvent, ...]:
        """Events with from_block <= block <= to_block in (block, log_index) order."""
        if from_block > to_block:
            raise InvalidRange(f"from_block {from_block} is greater than to_block {to_block}")
        rows = self._db.fetch_all(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM events
            WHERE block >= :from_block
              AND block <= :to_block
            ORDER BY block ASC, log_index ASC
            """,
            {"from_block": from_block, "to_block": to_block},
        )
        return tuple(TransferEvent.from_row(row) for row in rows)

    def read_through(self, block: int) -> tuple[TransferEvent, ...]:
        """Every event at or below `block`, in total order."""
        rows = self._db.fetch_all(
            f"""
            SELECT {_EVENT_COLUMNS}
            FROM events
            WHERE block <= :block
            ORDER BY block ASC, log_index ASC
            """,
            {"block": block},
        )
        return tuple(TransferEvent.from_row(row) for row in rows)

    def count(self) -> int:
        row = self._db.fetch_one("SELECT COUNT(*) AS n FROM events", {})
        return int(row["n"]) if row is not None else 0

    def clear(self) -> None:
        """Remove all events; reserved for migration cutover."""
        self._db.execute("DELETE FROM events", {})
