"""SQLAlchemy-backed implementation of the ledger database protocol."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from backend.db.base import Base
import backend.db.models  # noqa: F401  # Ensure all mapped classes are registered.
from captable.config import sqlalchemy_database_url


def create_ledger_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across the process."""
    if database_url == "sqlite://" or (database_url.startswith("sqlite") and ":memory:" in database_url):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(sqlalchemy_database_url(database_url))


def create_schema(engine: Engine) -> None:
    """Create the meta/events/holders tables from ORM metadata (tests and local runs)."""
    Base.metadata.create_all(engine)


class SqlAlchemyLedgerDB:
    """Adapter implementing the ledger read/write protocol on a SQLAlchemy connection."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @classmethod
    def connect(cls, engine: Engine) -> "SqlAlchemyLedgerDB":
        return cls(engine.connect())

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        result = self.conn.execute(text(sql), dict(params))
        return [dict(row) for row in result.mappings().all()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        self.conn.execute(text(sql), dict(params))

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def close(self) -> None:
        self.conn.close()
