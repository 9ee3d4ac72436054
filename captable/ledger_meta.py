"""Persisted process-wide pointers: ingestion watermark and authoritative token address."""

from __future__ import annotations

from typing import Any

from captable.common import LedgerDatabase, normalize_address
from captable.errors import ConcurrentLedgerWrite, InvalidRange

LAST_PROCESSED_BLOCK_KEY = "last_processed_block"
CURRENT_TOKEN_ADDRESS_KEY = "current_token_address"
WRITER_GUARD_KEY = "writer_guard"
MIGRATION_LEASE_KEY = "migration_in_progress"

_UNCHECKED: Any = object()


class LedgerMeta:
    """Accessor for the `meta` key/value table."""

    def __init__(self, db: LedgerDatabase) -> None:
        self._db = db

    def _get(self, key: str) -> str | None:
        row = self._db.fetch_one(
            """
            SELECT value
            FROM meta
            WHERE key = :key
            """,
            {"key": key},
        )
        if row is None or row["value"] is None:
            return None
        return str(row["value"])

    def _put(self, key: str, value: str) -> None:
        self._db.execute(
            """
            INSERT INTO meta (key, value)
            VALUES (:key, :value)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            {"key": key, "value": value},
        )

    def _delete(self, key: str) -> None:
        self._db.execute("DELETE FROM meta WHERE key = :key", {"key": key})

    def claim_writer(self, writer: str) -> None:
        """Serialize ledger writers across connections until the caller commits or rolls back.

        The upsert takes the row lock on PostgreSQL and the database write lock on
        SQLite, so reads issued after it see every previously committed writer.
        """
        self._put(WRITER_GUARD_KEY, writer)

    def last_processed_block(self) -> int | None:
        raw = self._get(LAST_PROCESSED_BLOCK_KEY)
        return int(raw) if raw is not None else None

    def expect_last_processed_block(self, expected: int | None) -> None:
        current = self.last_processed_block()
        if current != expected:
            raise ConcurrentLedgerWrite(
                f"last_processed_block changed under this writer (expected {expected}, found {current})"
            )

    def set_last_processed_block(self, block: int, *, expected_previous: int | None = _UNCHECKED) -> None:
        """Advance the ingestion watermark; it never moves backwards.

        With `expected_previous` the write is a compare-and-set against the
        watermark the caller started from.
        """
        if block < 0:
            raise InvalidRange(f"last_processed_block must be non-negative, got {block}")
        if expected_previous is not _UNCHECKED:
            self.expect_last_processed_block(expected_previous)
        current = self.last_processed_block()
        if current is not None and block < current:
            raise InvalidRange(f"last_processed_block cannot move backwards ({current} -> {block})")
        self._put(LAST_PROCESSED_BLOCK_KEY, str(block))

    def clear_last_processed_block(self) -> None:
        self._delete(LAST_PROCESSED_BLOCK_KEY)

    def current_authoritative_address(self) -> str | None:
        raw = self._get(CURRENT_TOKEN_ADDRESS_KEY)
        return normalize_address(raw) if raw is not None else None

    def set_current_authoritative_address(self, address: str) -> None:
        self._put(CURRENT_TOKEN_ADDRESS_KEY, normalize_address(address))

    def expect_authoritative_address(self, token_address: str) -> None:
        """Reject writes for a token the ledger has been cut over away from."""
        current = self.current_authoritative_address()
        if current is not None and current != normalize_address(token_address):
            raise ConcurrentLedgerWrite(
                f"Ledger was cut over to {current} while ingesting {normalize_address(token_address)}"
            )

    def migration_lease(self) -> str | None:
        return self._get(MIGRATION_LEASE_KEY)

    def try_acquire_migration_lease(self, owner: str) -> bool:
        """Insert the migration lease unless another run holds it; caller commits."""
        self._db.execute(
            """
            INSERT INTO meta (key, value)
            VALUES (:key, :value)
            ON CONFLICT (key) DO NOTHING
            """,
            {"key": MIGRATION_LEASE_KEY, "value": owner},
        )
        return self.migration_lease() == owner

    def release_migration_lease(self) -> None:
        self._delete(MIGRATION_LEASE_KEY)
