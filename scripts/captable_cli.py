#!/usr/bin/env python3
"""Cap-table ledger operator CLI: indexing daemon, snapshots and token migrations."""

from __future__ import annotations

import argparse
from dataclasses import asdict
import json
from pathlib import Path
import re
import signal
import sys
from typing import Any, Mapping, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from captable.chain_contract import load_token_artifact
from captable.config import LedgerConfig, load_ledger_config
from captable.db_adapter import SqlAlchemyLedgerDB, create_ledger_engine, create_schema
from captable.errors import user_message
from captable.event_store import EventStore
from captable.ingestion import resolve_authoritative_address, run_ingestion_cycle
from captable.ledger import BalanceLedger
from captable.ledger_meta import LedgerMeta
from captable.logging_setup import configure_logging
from captable.migration import MigrationOrchestrator, MigrationResult, clear_migration_lease
from captable.scheduler import IngestionScheduler
from captable.snapshot import generate_snapshot, snapshot_summary, snapshot_to_csv, write_snapshot_csv
from captable.web3_client import Web3ChainClient


_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")
_POSTGRES_PREFIXES = ("postgresql://", "postgres://", "postgresql+psycopg://")


def _convert_named_params(sql: str) -> str:
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


class PsycopgLedgerDB:
    """Ledger DB adapter over a raw psycopg connection."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(converted, dict(params))
            return [dict(row) for row in cur.fetchall()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        converted = _convert_named_params(sql)
        with self.conn.cursor() as cur:
            cur.execute(converted, dict(params))

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def close(self) -> None:
        self.conn.close()


def _is_postgres(url: str) -> bool:
    return url.startswith(_POSTGRES_PREFIXES)


def _open_db(database_url: str) -> PsycopgLedgerDB | SqlAlchemyLedgerDB:
    if _is_postgres(database_url):
        dsn = database_url.replace("postgresql+psycopg://", "postgresql://", 1)
        return PsycopgLedgerDB(psycopg.connect(dsn, autocommit=False))
    return SqlAlchemyLedgerDB.connect(create_ledger_engine(database_url))


def _init_db(config: LedgerConfig) -> None:
    if _is_postgres(config.database_url):
        from alembic import command
        from alembic.config import Config

        command.upgrade(Config(str(ROOT_DIR / "alembic.ini")), "head")
        return
    create_schema(create_ledger_engine(config.database_url))


def _build_chain(config: LedgerConfig) -> Web3ChainClient:
    abi = None
    if config.token_artifact_path is not None and config.token_artifact_path.is_file():
        abi = load_token_artifact(config.token_artifact_path).abi
    return Web3ChainClient(rpc_url=config.rpc_url, private_key=config.private_key, abi=abi)


def _migration_payload(result: MigrationResult) -> dict[str, Any]:
    return {
        "old_token_address": result.old_authoritative_address,
        "new_token_address": result.new_authoritative_address,
        "ratio": result.ratio.numerator,
        "holder_count": result.holder_count,
        "minted_total": result.minted_total,
        "timestamp": result.timestamp,
        "new_name": result.new_name,
        "new_symbol": result.new_symbol,
        "snapshot_block": result.snapshot_block,
    }


def _status_payload(db: Any, config: LedgerConfig) -> dict[str, Any]:
    meta = LedgerMeta(db)
    ledger = BalanceLedger(db)
    return {
        "token_address": resolve_authoritative_address(meta, config),
        "last_processed_block": meta.last_processed_block(),
        "migration_lease": meta.migration_lease(),
        "event_count": EventStore(db).count(),
        "holder_count": len(ledger.all()),
        "total_supply": str(ledger.total()),
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cap-table ledger CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create or upgrade the ledger schema")

    daemon_cmd = subparsers.add_parser("daemon", help="Start the ingestion loop")
    daemon_cmd.add_argument("--max-cycles", type=int, default=None)

    subparsers.add_parser("sync-now", help="Run one ingestion cycle")
    subparsers.add_parser("status", help="Show ledger status")

    snapshot_cmd = subparsers.add_parser("snapshot", help="Export a holder snapshot")
    snapshot_cmd.add_argument("--block", type=int, default=None)
    snapshot_cmd.add_argument("--out", type=Path, default=None, help="CSV output path (stdout when omitted)")
    snapshot_cmd.add_argument("--json", action="store_true", help="Print a JSON summary instead of CSV")

    split_cmd = subparsers.add_parser("split", help="Migrate to a new token with balances multiplied by ratio")
    split_cmd.add_argument("--ratio", type=int, required=True)

    rename_cmd = subparsers.add_parser("rename", help="Migrate to a new token with a new symbol")
    rename_cmd.add_argument("--symbol", required=True)
    rename_cmd.add_argument("--name", default=None)

    subparsers.add_parser("clear-migration-lease", help="Release the lease a failed migration left behind")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = load_ledger_config()
    configure_logging(config.log_level)

    if args.command == "init-db":
        _init_db(config)
        return 0

    db = _open_db(config.database_url)
    try:
        if args.command == "status":
            print(json.dumps(_status_payload(db, config), sort_keys=True))
            db.commit()
            return 0

        if args.command == "clear-migration-lease":
            print(json.dumps({"cleared_lease": clear_migration_lease(db)}, sort_keys=True))
            return 0

        chain = _build_chain(config)

        if args.command == "sync-now":
            result = run_ingestion_cycle(db=db, chain=chain, config=config)
            print(json.dumps(asdict(result), sort_keys=True))
            return 0

        if args.command == "daemon":
            scheduler = IngestionScheduler(db=db, chain=chain, config=config)
            signal.signal(signal.SIGTERM, lambda *_: scheduler.stop())
            try:
                scheduler.run_forever(max_cycles=args.max_cycles)
            except KeyboardInterrupt:
                scheduler.stop()
            return 0

        if args.command == "snapshot":
            token = resolve_authoritative_address(LedgerMeta(db), config)
            snapshot = generate_snapshot(db=db, chain=chain, token_address=token, requested_block=args.block)
            db.commit()
            if args.json:
                print(json.dumps(snapshot_summary(snapshot), sort_keys=True))
            elif args.out is not None:
                print(str(write_snapshot_csv(snapshot, args.out)))
            else:
                print(snapshot_to_csv(snapshot))
            return 0

        orchestrator = MigrationOrchestrator(
            db=db, chain=chain, config=config, admin_address=config.admin_wallet or chain.signer_address
        )
        if args.command == "split":
            print(json.dumps(_migration_payload(orchestrator.split(args.ratio)), sort_keys=True))
            return 0
        if args.command == "rename":
            print(json.dumps(_migration_payload(orchestrator.rename(args.symbol, args.name)), sort_keys=True))
            return 0

        raise SystemExit(f"Unknown command: {args.command}")
    except Exception as exc:
        db.rollback()
        print(f"error: {user_message(exc)}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
