"""Token migrations (splits and renames) with holder-set replication and ledger cutover."""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
import logging
from typing import Optional
import uuid

from captable.chain_contract import (
    ChainClient,
    TokenArtifact,
    call_chain,
    load_token_artifact,
    transact_and_confirm,
)
from captable.common import LedgerClock, LedgerDatabase, LedgerWriteLock, normalize_address
from captable.config import LedgerConfig, validate_rename_target, validate_split_ratio
from captable.errors import DeploymentFailed, MigrationFailed, MigrationInProgress
from captable.event_store import EventStore
from captable.ingestion import resolve_authoritative_address
from captable.ledger import BalanceLedger
from captable.ledger_meta import LedgerMeta
from captable.snapshot import Snapshot, generate_snapshot

logger = logging.getLogger(__name__)


class MigrationState(str, enum.Enum):
    """Migration protocol state; CUT_OVER and FAILED are terminal."""

    IDLE = "IDLE"
    PAUSED = "PAUSED"
    SNAPSHOTTED = "SNAPSHOTTED"
    DEPLOYED = "DEPLOYED"
    REPLICATED = "REPLICATED"
    CUT_OVER = "CUT_OVER"
    FAILED = "FAILED"


@dataclass(frozen=True)
class MigrationRatio:
    """Balance scaling applied to every holder."""

    numerator: int
    denominator: int = 1


@dataclass(frozen=True)
class HolderReplication:
    """Confirmed per-holder replication unit on the new instance."""

    address: str
    source_balance: int
    minted_amount: int
    allowlist_tx_hash: str
    mint_tx_hash: Optional[str]


@dataclass
class MigrationProgress:
    """Mutable record of how far a migration got; surfaced on failure for manual recovery."""

    old_authoritative_address: str
    state: MigrationState = MigrationState.IDLE
    paused_by_migration: bool = False
    snapshot_block: Optional[int] = None
    holder_count: int = 0
    new_authoritative_address: Optional[str] = None
    replications: list[HolderReplication] = field(default_factory=list)
    minted_total: int = 0
    failed_holder: Optional[str] = None

    @property
    def replicated_addresses(self) -> tuple[str, ...]:
        return tuple(item.address for item in self.replications)


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of a completed migration."""

    old_authoritative_address: str
    new_authoritative_address: str
    ratio: MigrationRatio
    holder_count: int
    minted_total: str
    timestamp: int
    new_name: str
    new_symbol: str
    snapshot_block: int
    replications: tuple[HolderReplication, ...]


@dataclass(frozen=True)
class _MigrationPlan:
    ratio: int
    new_name: Optional[str] = None
    new_symbol: Optional[str] = None


class MigrationOrchestrator:
    """Pause -> snapshot -> deploy -> replicate -> cutover, strictly in order.

    There is no rollback. Any failure after a step has issued a transaction is
    raised as ``MigrationFailed`` with the partial progress attached; a paused
    source token or an orphaned new token may remain and needs an operator.
    Only one migration may run at a time per ledger database: a lease row in
    `meta` is taken before the pause and released by the cutover commit. A
    failed run leaves the lease in place until an operator clears it.
    """

    def __init__(
        self,
        *,
        db: LedgerDatabase,
        chain: ChainClient,
        config: LedgerConfig,
        artifact: TokenArtifact | None = None,
        admin_address: str | None = None,
        write_lock: LedgerWriteLock | None = None,
        clock: LedgerClock | None = None,
    ) -> None:
        self._db = db
        self._chain = chain
        self._config = config
        self._artifact = artifact
        self._admin_address = admin_address or config.admin_wallet
        self._write_lock = write_lock or LedgerWriteLock()
        self._clock = clock or LedgerClock()
        self._state = MigrationState.IDLE
        self._last_progress: Optional[MigrationProgress] = None

    @property
    def state(self) -> MigrationState:
        return self._state

    @property
    def last_progress(self) -> Optional[MigrationProgress]:
        return self._last_progress

    def split(self, ratio: int) -> MigrationResult:
        """Replace the token with one where every balance is multiplied by `ratio`."""
        return self._execute(_MigrationPlan(ratio=validate_split_ratio(ratio)))

    def rename(self, new_symbol: str, new_name: str | None = None) -> MigrationResult:
        """Replace the token with one carrying a new symbol (and optionally name)."""
        symbol, name = validate_rename_target(new_symbol, new_name)
        return self._execute(_MigrationPlan(ratio=1, new_name=name, new_symbol=symbol))

    def _advance(self, progress: MigrationProgress, state: MigrationState) -> None:
        progress.state = state
        self._state = state
        logger.info("migration state=%s token=%s", state.value, progress.old_authoritative_address)

    def _execute(self, plan: _MigrationPlan) -> MigrationResult:
        self._acquire_lease()
        return self._run(plan)

    def _acquire_lease(self) -> None:
        meta = LedgerMeta(self._db)
        owner = uuid.uuid4().hex
        try:
            acquired = meta.try_acquire_migration_lease(owner)
            holder = meta.migration_lease()
        except Exception:
            self._db.rollback()
            raise
        if not acquired:
            self._db.rollback()
            raise MigrationInProgress(f"A migration is already in progress (lease {holder})")
        self._db.commit()
        logger.info("migration lease acquired lease=%s", owner)

    def _run(self, plan: _MigrationPlan) -> MigrationResult:
        timestamp = int(self._clock.now_utc().timestamp())
        old_token = resolve_authoritative_address(LedgerMeta(self._db), self._config)
        progress = MigrationProgress(old_authoritative_address=old_token)
        self._last_progress = progress
        self._advance(progress, MigrationState.IDLE)

        try:
            progress.paused_by_migration = self._ensure_paused(old_token)
            self._advance(progress, MigrationState.PAUSED)

            snapshot = self._take_snapshot(old_token)
            progress.snapshot_block = snapshot.block
            progress.holder_count = snapshot.holder_count
            self._advance(progress, MigrationState.SNAPSHOTTED)

            name, symbol = self._resolve_metadata(old_token, plan)
            new_token = self._deploy(name, symbol)
            progress.new_authoritative_address = new_token
            self._advance(progress, MigrationState.DEPLOYED)

            self._replicate(new_token, snapshot, plan.ratio, progress)
            self._advance(progress, MigrationState.REPLICATED)

            self._cut_over(new_token)
            self._advance(progress, MigrationState.CUT_OVER)
        except Exception as exc:
            reached = progress.state
            progress.state = MigrationState.FAILED
            self._state = MigrationState.FAILED
            logger.error(
                "migration failed reached=%s token=%s new_token=%s replicated=%s error=%s",
                reached.value,
                old_token,
                progress.new_authoritative_address,
                len(progress.replications),
                exc,
            )
            raise MigrationFailed(reached, progress, exc) from exc

        return MigrationResult(
            old_authoritative_address=old_token,
            new_authoritative_address=new_token,
            ratio=MigrationRatio(numerator=plan.ratio, denominator=1),
            holder_count=snapshot.holder_count,
            minted_total=str(progress.minted_total),
            timestamp=timestamp,
            new_name=name,
            new_symbol=symbol,
            snapshot_block=snapshot.block,
            replications=tuple(progress.replications),
        )

    def _ensure_paused(self, token: str) -> bool:
        paused = call_chain("paused()", self._chain.read_contract, token, "paused", [])
        if bool(paused):
            return False
        receipt = transact_and_confirm(self._chain, token, "pause", [])
        logger.info("paused original token token=%s tx=%s", token, receipt.transaction_hash)
        return True

    def _take_snapshot(self, token: str) -> Snapshot:
        snapshot = generate_snapshot(db=self._db, chain=self._chain, token_address=token)
        if snapshot.discrepancies:
            logger.warning(
                "migrating despite snapshot discrepancies token=%s block=%s discrepancies=%s",
                token,
                snapshot.block,
                len(snapshot.discrepancies),
            )
        logger.info("snapshot holders retrieved token=%s holders=%s", token, snapshot.holder_count)
        return snapshot

    def _resolve_metadata(self, token: str, plan: _MigrationPlan) -> tuple[str, str]:
        name = str(call_chain("name()", self._chain.read_contract, token, "name", []))
        symbol = str(call_chain("symbol()", self._chain.read_contract, token, "symbol", []))
        return (plan.new_name or name, plan.new_symbol or symbol)

    def _load_artifact(self) -> TokenArtifact:
        if self._artifact is not None:
            return self._artifact
        if self._config.token_artifact_path is None:
            raise DeploymentFailed("Missing GATED_TOKEN_ABI_PATH")
        self._artifact = load_token_artifact(self._config.token_artifact_path)
        return self._artifact

    def _deploy(self, name: str, symbol: str) -> str:
        if not self._admin_address:
            raise DeploymentFailed("Missing admin address for new token deployment")
        artifact = self._load_artifact()
        receipt = call_chain(
            "deploy_contract",
            self._chain.deploy_contract,
            artifact.bytecode,
            list(artifact.abi),
            [name, symbol, self._admin_address],
        )
        if not receipt.success or not receipt.created_address:
            raise DeploymentFailed("Failed to retrieve new token address from deployment receipt")
        new_token = normalize_address(receipt.created_address)
        logger.info("deployed new token token=%s tx=%s", new_token, receipt.transaction_hash)
        return new_token

    def _replicate(self, new_token: str, snapshot: Snapshot, ratio: int, progress: MigrationProgress) -> None:
        for row in snapshot.rows:
            progress.failed_holder = row.address
            allow = transact_and_confirm(self._chain, new_token, "setAllowlistStatus", [row.address, True])
            minted = row.ledger_balance * ratio
            mint_tx: Optional[str] = None
            if minted > 0:
                mint_tx = transact_and_confirm(self._chain, new_token, "mint", [row.address, minted]).transaction_hash
                progress.minted_total += minted
            progress.replications.append(
                HolderReplication(
                    address=row.address,
                    source_balance=row.ledger_balance,
                    minted_amount=minted,
                    allowlist_tx_hash=allow.transaction_hash,
                    mint_tx_hash=mint_tx,
                )
            )
            progress.failed_holder = None
        logger.info(
            "replicated holders token=%s holders=%s minted_total=%s",
            new_token,
            len(progress.replications),
            progress.minted_total,
        )

    def _cut_over(self, new_token: str) -> None:
        with self._write_lock:
            try:
                meta = LedgerMeta(self._db)
                meta.claim_writer("cutover")
                EventStore(self._db).clear()
                BalanceLedger(self._db).clear()
                meta.clear_last_processed_block()
                meta.set_current_authoritative_address(new_token)
                meta.release_migration_lease()
                self._db.commit()
            except Exception:
                self._db.rollback()
                raise
        logger.info("cutover complete current_token=%s", new_token)


def clear_migration_lease(db: LedgerDatabase) -> str | None:
    """Drop the lease a failed migration left behind; returns the cleared lease id."""
    meta = LedgerMeta(db)
    try:
        lease = meta.migration_lease()
        meta.release_migration_lease()
        db.commit()
    except Exception:
        db.rollback()
        raise
    if lease is not None:
        logger.warning("migration lease cleared by operator lease=%s", lease)
    return lease
