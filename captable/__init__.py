"""Event-sourced cap-table ledger for an allow-listed token."""

from captable.balances import BalanceArena, replay
from captable.config import LedgerConfig, load_ledger_config
from captable.errors import LedgerError, user_message
from captable.event_store import EventStore
from captable.events import TransferEvent
from captable.ingestion import IngestionCycleResult, run_ingestion_cycle
from captable.ledger import BalanceLedger
from captable.ledger_meta import LedgerMeta
from captable.migration import MigrationOrchestrator, MigrationResult, MigrationState
from captable.scheduler import IngestionScheduler, SchedulerState
from captable.snapshot import Snapshot, generate_snapshot, snapshot_to_csv

__all__ = [
    "BalanceArena",
    "BalanceLedger",
    "EventStore",
    "IngestionCycleResult",
    "IngestionScheduler",
    "LedgerConfig",
    "LedgerError",
    "LedgerMeta",
    "MigrationOrchestrator",
    "MigrationResult",
    "MigrationState",
    "SchedulerState",
    "Snapshot",
    "TransferEvent",
    "generate_snapshot",
    "load_ledger_config",
    "replay",
    "run_ingestion_cycle",
    "snapshot_to_csv",
    "user_message",
]
