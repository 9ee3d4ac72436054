"""Periodic ingestion loop with an owned cancellation signal."""

from __future__ import annotations

import enum
import logging
import threading
from typing import Optional

from captable.chain_contract import ChainClient
from captable.common import LedgerDatabase, LedgerWriteLock
from captable.config import LedgerConfig
from captable.errors import LedgerInvariantViolation, NegativeBalance, user_message
from captable.ingestion import IngestionCycleResult, run_ingestion_cycle

logger = logging.getLogger(__name__)

_FATAL_ERRORS = (NegativeBalance, LedgerInvariantViolation)


class SchedulerState(str, enum.Enum):
    """Ingestion scheduler lifecycle state."""

    IDLE = "IDLE"
    SYNCING = "SYNCING"


class IngestionScheduler:
    """Drives `run_ingestion_cycle` on a fixed interval until stopped.

    Failures are caught at the cycle boundary and retried on the next tick; the
    watermark in meta only reflects fully committed batches, so a retried cycle
    resumes exactly after the last committed batch. Ledger corruption
    (`NegativeBalance`, `LedgerInvariantViolation`) is not retried: it is
    logged at CRITICAL, the stop event is set and the error propagates.
    """

    def __init__(
        self,
        *,
        db: LedgerDatabase,
        chain: ChainClient,
        config: LedgerConfig,
        write_lock: LedgerWriteLock | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._db = db
        self._chain = chain
        self._config = config
        self._write_lock = write_lock or LedgerWriteLock()
        self._stop_event = stop_event or threading.Event()
        self._state = SchedulerState.IDLE
        self._consecutive_failures = 0
        self._last_error: Optional[str] = None
        self._last_result: Optional[IngestionCycleResult] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def last_result(self) -> Optional[IngestionCycleResult]:
        return self._last_result

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def stop(self) -> None:
        """Request the loop to exit after the current cycle."""
        self._stop_event.set()

    def run_cycle(self) -> Optional[IngestionCycleResult]:
        """Run one Idle -> Syncing -> Idle transition; returns None on a retryable failure."""
        self._state = SchedulerState.SYNCING
        try:
            result = run_ingestion_cycle(
                db=self._db,
                chain=self._chain,
                config=self._config,
                write_lock=self._write_lock,
            )
        except _FATAL_ERRORS as exc:
            self._consecutive_failures += 1
            self._last_error = user_message(exc)
            self._stop_event.set()
            logger.critical("ingestion halted on ledger corruption error=%s", self._last_error)
            raise
        except Exception as exc:
            self._consecutive_failures += 1
            self._last_error = user_message(exc)
            logger.exception(
                "ingestion cycle failed failure_count=%s error=%s",
                self._consecutive_failures,
                self._last_error,
            )
            return None
        finally:
            self._state = SchedulerState.IDLE

        self._consecutive_failures = 0
        self._last_error = None
        self._last_result = result
        return result

    def run_forever(self, *, max_cycles: int | None = None) -> int:
        """Run cycles until stopped or max_cycles reached; returns completed cycle count."""
        logger.info(
            "ingestion scheduler started interval_ms=%s confirmations=%s batch_size=%s",
            self._config.poll_interval_ms,
            self._config.confirmations,
            self._config.batch_size,
        )
        cycles = 0
        try:
            while not self._stop_event.is_set():
                self.run_cycle()
                cycles += 1
                limit = self._config.max_consecutive_failures
                if limit and self._consecutive_failures >= limit:
                    raise RuntimeError(
                        f"Ingestion exceeded max consecutive failures ({limit}): {self._last_error}"
                    )
                if max_cycles is not None and cycles >= max_cycles:
                    break
                if self._stop_event.wait(self._config.poll_interval_seconds):
                    break
        finally:
            logger.info("ingestion scheduler stopped completed_cycles=%s", cycles)
        return cycles
