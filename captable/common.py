"""Shared primitives for ledger persistence and address/amount normalization."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import re
import threading
from typing import Any, Mapping, Optional, Protocol, Sequence

from captable.errors import InvalidEvent

ZERO_ADDRESS = "0x" + "0" * 40
UINT256_MAX = 2**256 - 1

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class LedgerDatabase(Protocol):
    """Minimal transactional DB protocol used by ledger modules."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch rows."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        """Execute mutation statement."""

    def commit(self) -> None:
        """Make all statements since the last commit durable."""

    def rollback(self) -> None:
        """Discard all statements since the last commit."""


@dataclass(frozen=True)
class LedgerClock:
    """Injectable UTC clock for deterministic testing."""

    def now_utc(self) -> datetime:
        """Return current UTC timestamp."""
        return datetime.now(tz=timezone.utc)


class LedgerWriteLock:
    """Process-wide writer lock shared by ingestion and migration cutover."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def __enter__(self) -> "LedgerWriteLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


def normalize_address(value: str) -> str:
    """Validate a 20-byte hex address and return its lower-case form."""
    text = str(value).strip()
    if not _ADDRESS_RE.match(text):
        raise InvalidEvent(f"Invalid address: {value!r}")
    return text.lower()


def normalize_hash(value: str) -> str:
    """Validate a 32-byte hex hash and return its lower-case form."""
    text = str(value).strip()
    if not _HASH_RE.match(text):
        raise InvalidEvent(f"Invalid 32-byte hash: {value!r}")
    return text.lower()


def ensure_uint256(value: int) -> int:
    """Reject anything outside the unsigned 256-bit range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidEvent(f"uint256 value must be an integer, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise InvalidEvent(f"uint256 value out of range: {value}")
    return value


def amount_to_text(value: int) -> str:
    """Canonical decimal serialization for uint256 amounts."""
    return str(ensure_uint256(value))


def amount_from_text(value: Any) -> int:
    """Parse a persisted decimal amount."""
    return ensure_uint256(int(str(value)))
