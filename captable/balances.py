"""In-memory balance arena used to fold transfer events into holder balances."""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from captable.common import ZERO_ADDRESS, normalize_address
from captable.errors import NegativeBalance
from captable.events import TransferEvent


def plan_transfer(balances: Mapping[str, int], event: TransferEvent) -> dict[str, int]:
    """Compute post-event balances for the touched addresses without mutating anything.

    The returned mapping holds the new amount for each touched non-zero address;
    an amount of ``0`` means the entry must be removed. Raises ``NegativeBalance``
    when the sender does not hold ``event.value``.
    """
    updates: dict[str, int] = {}
    if event.from_address != ZERO_ADDRESS:
        current = balances.get(event.from_address, 0)
        if current < event.value:
            raise NegativeBalance(event.from_address, current, event.value)
        updates[event.from_address] = current - event.value
    if event.to_address != ZERO_ADDRESS:
        base = updates.get(event.to_address, balances.get(event.to_address, 0))
        updates[event.to_address] = base + event.value
    return updates


class BalanceArena:
    """Discardable address -> amount map; never shared between snapshots."""

    def __init__(self) -> None:
        self._balances: dict[str, int] = {}
        self._applied = 0

    def apply(self, event: TransferEvent) -> None:
        """Apply one event atomically: either both legs land or nothing changes."""
        for address, amount in plan_transfer(self._balances, event).items():
            if amount == 0:
                self._balances.pop(address, None)
            else:
                self._balances[address] = amount
        self._applied += 1

    def apply_all(self, events: Iterable[TransferEvent]) -> "BalanceArena":
        for event in events:
            self.apply(event)
        return self

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_address(address), 0)

    def items(self) -> tuple[tuple[str, int], ...]:
        """Non-zero balances, address-ascending."""
        return tuple(sorted(self._balances.items()))

    def total(self) -> int:
        return sum(self._balances.values())

    @property
    def applied_count(self) -> int:
        return self._applied

    def __len__(self) -> int:
        return len(self._balances)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._balances))


def replay(events: Iterable[TransferEvent]) -> BalanceArena:
    """Fold an ordered event sequence from empty state."""
    return BalanceArena().apply_all(events)
