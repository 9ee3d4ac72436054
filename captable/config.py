"""Environment-backed configuration for the cap-table ledger runtime."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Optional

from captable.common import normalize_address
from captable.errors import InvalidEvent


@dataclass(frozen=True)
class LedgerConfig:
    """Canonical configuration surface for indexing, snapshots and migrations."""

    rpc_url: str
    database_url: str
    token_address: str
    token_artifact_path: Optional[Path]
    admin_wallet: Optional[str]
    private_key: Optional[str]
    confirmations: int = 5
    poll_interval_ms: int = 5000
    batch_size: int = 500
    max_consecutive_failures: int = 0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.confirmations < 0:
            raise RuntimeError(f"confirmations must be >= 0, got {self.confirmations}")
        if self.poll_interval_ms <= 0:
            raise RuntimeError(f"poll_interval_ms must be > 0, got {self.poll_interval_ms}")
        if self.batch_size <= 0:
            raise RuntimeError(f"batch_size must be > 0, got {self.batch_size}")
        if self.max_consecutive_failures < 0:
            raise RuntimeError(f"max_consecutive_failures must be >= 0, got {self.max_consecutive_failures}")

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0


_REQUIRED_KEYS: tuple[str, ...] = (
    "LEDGER_DATABASE_URL",
    "GATED_TOKEN_ADDRESS",
)


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_optional(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    return value


def _read_address(name: str, raw: str) -> str:
    try:
        return normalize_address(raw)
    except InvalidEvent as exc:
        raise RuntimeError(f"Invalid address value for {name}: {raw}") from exc


def _normalize_private_key(raw: str | None) -> str | None:
    if raw is None:
        return None
    return raw if raw.startswith("0x") else f"0x{raw}"


def sqlalchemy_database_url(url: str) -> str:
    """Route bare PostgreSQL URLs to the psycopg 3 driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


def validate_split_ratio(ratio: int) -> int:
    """Split ratios are integers >= 2."""
    if isinstance(ratio, bool) or not isinstance(ratio, int) or ratio <= 1:
        raise ValueError("Split ratio must be an integer greater than 1")
    return ratio


def validate_rename_target(new_symbol: str, new_name: str | None = None) -> tuple[str, str | None]:
    """Rename targets are non-empty after trimming; the name is optional."""
    symbol = (new_symbol or "").strip()
    if not symbol:
        raise ValueError("newSymbol is required")
    name = None
    if new_name is not None:
        name = new_name.strip()
        if not name:
            raise ValueError("newName must not be blank when provided")
    return symbol, name


def load_ledger_config() -> LedgerConfig:
    """Load and validate ledger configuration from environment."""
    for key in _REQUIRED_KEYS:
        _read_env(key)

    artifact_raw = _read_optional("GATED_TOKEN_ABI_PATH")
    admin_raw = _read_optional("ADMIN_WALLET")

    return LedgerConfig(
        rpc_url=_read_env("RPC_URL", "http://127.0.0.1:8545"),
        database_url=_read_env("LEDGER_DATABASE_URL"),
        token_address=_read_address("GATED_TOKEN_ADDRESS", _read_env("GATED_TOKEN_ADDRESS")),
        token_artifact_path=Path(artifact_raw).resolve() if artifact_raw is not None else None,
        admin_wallet=_read_address("ADMIN_WALLET", admin_raw) if admin_raw is not None else None,
        private_key=_normalize_private_key(_read_optional("SEPOLIA_PRIVATE_KEY")),
        confirmations=_read_int("CONFIRMATIONS", 5),
        poll_interval_ms=_read_int("INDEXER_POLL_INTERVAL_MS", 5000),
        batch_size=_read_int("INDEXER_BATCH_SIZE", 500),
        max_consecutive_failures=_read_int("INDEXER_MAX_CONSECUTIVE_FAILURES", 0),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
