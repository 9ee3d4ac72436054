"""Error taxonomy for the cap-table ledger engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from captable.migration import MigrationProgress, MigrationState


class LedgerError(RuntimeError):
    """Base class for all ledger engine failures."""


class InvalidEvent(LedgerError, ValueError):
    """Raised when a transfer event payload is malformed."""


class InvalidRange(LedgerError):
    """Raised when a block range or ordering precondition is violated."""


class DuplicateSequence(LedgerError):
    """Raised when an event (block, log_index) is already recorded."""

    def __init__(self, block_number: int, log_index: int) -> None:
        super().__init__(f"Event already recorded at block={block_number} log_index={log_index}")
        self.block_number = block_number
        self.log_index = log_index


class NegativeBalance(LedgerError):
    """Raised when a debit would take a tracked balance below zero."""

    def __init__(self, address: str, balance: int, debit: int) -> None:
        super().__init__(f"Negative balance for {address}: balance={balance} debit={debit}")
        self.address = address
        self.balance = balance
        self.debit = debit


class LedgerInvariantViolation(LedgerError):
    """Raised when materialized balances disagree with the event log."""


class NotIndexed(LedgerError):
    """Raised when a snapshot is requested before any block was ingested."""


class DeploymentFailed(LedgerError):
    """Raised when a replacement token instance could not be deployed."""


class ExternalCallFailed(LedgerError):
    """Raised when a chain-client call fails or a transaction reverts."""


class MigrationInProgress(LedgerError):
    """Raised when a migration is requested while another one is running."""


class ConcurrentLedgerWrite(LedgerError):
    """Raised when the token pointer or watermark moved under an in-flight writer."""


class MigrationFailed(LedgerError):
    """Raised when a migration aborts; carries the partial progress for manual recovery."""

    def __init__(
        self,
        state: "MigrationState",
        progress: "MigrationProgress",
        cause: Optional[BaseException] = None,
    ) -> None:
        detail = user_message(cause) if cause is not None else "unknown error"
        super().__init__(f"Migration failed after reaching {state.value}: {detail}")
        self.state = state
        self.progress = progress
        self.cause = cause


def user_message(exc: BaseException) -> str:
    """Render an operator-facing message without traceback detail."""
    message = str(exc).strip()
    if not message:
        return type(exc).__name__
    if isinstance(exc, LedgerError):
        return message
    return f"{type(exc).__name__}: {message}"
