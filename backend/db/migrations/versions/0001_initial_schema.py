"""Initial schema for the cap-table ledger: meta pointers, transfer events, holder balances."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE meta (
        key TEXT NOT NULL,
        value TEXT,
        CONSTRAINT pk_meta PRIMARY KEY (key)
    );
    """,
    """
    CREATE TABLE events (
        block BIGINT NOT NULL,
        log_index INTEGER NOT NULL,
        txhash TEXT NOT NULL,
        from_address TEXT NOT NULL,
        to_address TEXT NOT NULL,
        value TEXT NOT NULL,
        topic0 TEXT NOT NULL,
        data BYTEA NOT NULL,
        CONSTRAINT pk_events PRIMARY KEY (block, log_index),
        CONSTRAINT ck_events_block_nonneg CHECK (block >= 0),
        CONSTRAINT ck_events_log_index_nonneg CHECK (log_index >= 0)
    );
    """,
    """
    CREATE TABLE holders (
        address TEXT NOT NULL,
        balance TEXT NOT NULL,
        CONSTRAINT pk_holders PRIMARY KEY (address)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX ix_events_block ON events (block);",
    "CREATE INDEX ix_events_txhash ON events (txhash);",
)

# Events may only be inserted or cleared wholesale by a migration cutover; rows are never rewritten.
APPEND_ONLY_DDL: tuple[str, ...] = (
    """
    CREATE OR REPLACE FUNCTION fn_enforce_event_immutability()
    RETURNS trigger
    LANGUAGE plpgsql
    AS $$
    BEGIN
        RAISE EXCEPTION 'immutability violation on table %, operation % is not allowed', TG_TABLE_NAME, TG_OP;
    END;
    $$;
    """,
    """
    CREATE TRIGGER trg_events_immutable
    BEFORE UPDATE ON events
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_event_immutability();
    """,
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial schema migration."""

    logger.info("Starting initial schema migration upgrade.")
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    _execute_all(APPEND_ONLY_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial schema migration."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(
        (
            "DROP TRIGGER IF EXISTS trg_events_immutable ON events;",
            "DROP FUNCTION IF EXISTS fn_enforce_event_immutability();",
            "DROP INDEX IF EXISTS ix_events_txhash;",
            "DROP INDEX IF EXISTS ix_events_block;",
            "DROP TABLE IF EXISTS holders;",
            "DROP TABLE IF EXISTS events;",
            "DROP TABLE IF EXISTS meta;",
        )
    )
    logger.info("Completed initial schema migration downgrade.")
