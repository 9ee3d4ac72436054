"""Schema contract alignment checks between ORM metadata and the initial migration DDL."""

from __future__ import annotations

import importlib.util
from pathlib import Path
import re
import sys
import types

import pytest

import backend.db.models  # noqa: F401  # Ensure all mapped classes are registered.
from backend.db.base import Base

MIGRATION_PATH = Path(__file__).resolve().parents[1] / "backend" / "db" / "migrations" / "versions" / "0001_initial_schema.py"


def _migration_columns(monkeypatch: pytest.MonkeyPatch) -> dict[str, set[str]]:
    fake_alembic = types.ModuleType("alembic")
    fake_alembic.op = types.SimpleNamespace(execute=lambda statement: None)
    monkeypatch.setitem(sys.modules, "alembic", fake_alembic)
    spec = importlib.util.spec_from_file_location("migration_0001_contract", MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    pattern = re.compile(r"CREATE TABLE (\w+) \((.*?)\);", re.S)
    tables: dict[str, set[str]] = {}
    for statement in module.TABLE_DDL:
        for table_name, body in pattern.findall(statement):
            columns: set[str] = set()
            for raw_line in body.splitlines():
                line = raw_line.strip()
                if not line or line.startswith("CONSTRAINT"):
                    continue
                columns.add(line.split()[0].rstrip(","))
            tables[table_name] = columns
    return tables


def test_orm_tables_and_columns_match_migration(monkeypatch: pytest.MonkeyPatch) -> None:
    """ORM models must cover the migrated tables and columns exactly."""

    ddl = _migration_columns(monkeypatch)
    mapped_tables = Base.metadata.tables

    assert sorted(ddl) == sorted(mapped_tables) == ["events", "holders", "meta"]
    for table_name in sorted(mapped_tables):
        orm_columns = {column.name for column in mapped_tables[table_name].columns}
        assert orm_columns == ddl[table_name], table_name


def test_events_identity_and_indexes() -> None:
    events = Base.metadata.tables["events"]
    assert [column.name for column in events.primary_key.columns] == ["block", "log_index"]
    assert {index.name for index in events.indexes} == {"ix_events_block", "ix_events_txhash"}
    assert Base.metadata.tables["meta"].primary_key.name == "pk_meta"
    assert Base.metadata.tables["holders"].primary_key.name == "pk_holders"
