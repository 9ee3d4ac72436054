"""Normalized Transfer event payloads and their persisted row mapping."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from captable.common import (
    ZERO_ADDRESS,
    amount_from_text,
    amount_to_text,
    ensure_uint256,
    normalize_address,
    normalize_hash,
)
from captable.errors import InvalidEvent

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_TOPIC0 = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


@dataclass(frozen=True)
class TransferEvent:
    """Immutable Transfer log, identified and ordered by (block_number, log_index)."""

    block_number: int
    log_index: int
    transaction_hash: str
    from_address: str
    to_address: str
    value: int
    topic0: str = TRANSFER_TOPIC0
    data: bytes = field(default=b"", repr=False)

    def __post_init__(self) -> None:
        for name in ("block_number", "log_index"):
            raw = getattr(self, name)
            if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
                raise InvalidEvent(f"{name} must be a non-negative integer, got {raw!r}")
        ensure_uint256(self.value)
        object.__setattr__(self, "transaction_hash", normalize_hash(self.transaction_hash))
        object.__setattr__(self, "topic0", normalize_hash(self.topic0))
        object.__setattr__(self, "from_address", normalize_address(self.from_address))
        object.__setattr__(self, "to_address", normalize_address(self.to_address))
        object.__setattr__(self, "data", bytes(self.data))

    @property
    def sequence_key(self) -> tuple[int, int]:
        """Total-order key."""
        return (self.block_number, self.log_index)

    @property
    def is_mint(self) -> bool:
        return self.from_address == ZERO_ADDRESS

    @property
    def is_burn(self) -> bool:
        return self.to_address == ZERO_ADDRESS

    def to_row(self) -> dict[str, Any]:
        """Map to `events` table bind parameters."""
        return {
            "block": self.block_number,
            "log_index": self.log_index,
            "txhash": self.transaction_hash,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "value": amount_to_text(self.value),
            "topic0": self.topic0,
            "data": self.data,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TransferEvent":
        """Rebuild an event from an `events` table row."""
        data = row.get("data")
        return cls(
            block_number=int(row["block"]),
            log_index=int(row["log_index"]),
            transaction_hash=str(row["txhash"]),
            from_address=str(row["from_address"]),
            to_address=str(row["to_address"]),
            value=amount_from_text(row["value"]),
            topic0=str(row["topic0"]),
            data=bytes(data) if data is not None else b"",
        )


def net_supply_delta(event: TransferEvent) -> int:
    """Change in tracked supply caused by one event (mints add, burns subtract)."""
    if event.is_mint and event.is_burn:
        return 0
    if event.is_mint:
        return event.value
    if event.is_burn:
        return -event.value
    return 0
