"""Materialized current-balance view over the `holders` table."""

from __future__ import annotations

from captable.balances import plan_transfer
from captable.common import ZERO_ADDRESS, LedgerDatabase, amount_from_text, amount_to_text, normalize_address
from captable.errors import LedgerInvariantViolation
from captable.event_store import EventStore
from captable.events import TransferEvent, net_supply_delta

_MAX_BLOCK = 2**63 - 1


class BalanceLedger:
    """Incrementally maintained address -> balance mapping.

    Zero balances are deleted rather than stored and the zero address is never
    tracked. Like the event store, the ledger leaves commit to its caller.
    """

    def __init__(self, db: LedgerDatabase) -> None:
        self._db = db

    def current(self, address: str) -> int:
        """Balance for an address, zero when absent."""
        row = self._db.fetch_one(
            """
            SELECT balance
            FROM holders
            WHERE address = :address
            """,
            {"address": normalize_address(address)},
        )
        return amount_from_text(row["balance"]) if row is not None else 0

    def apply(self, event: TransferEvent) -> None:
        """Debit sender and credit recipient; a failing debit writes nothing."""
        touched = {event.from_address, event.to_address} - {ZERO_ADDRESS}
        balances = {address: self.current(address) for address in touched}
        updates = plan_transfer(balances, event)
        for address in sorted(updates):
            amount = updates[address]
            if amount == 0:
                self._db.execute(
                    "DELETE FROM holders WHERE address = :address",
                    {"address": address},
                )
                continue
            self._db.execute(
                """
                INSERT INTO holders (address, balance)
                VALUES (:address, :balance)
                ON CONFLICT (address) DO UPDATE SET balance = excluded.balance
                """,
                {"address": address, "balance": amount_to_text(amount)},
            )

    def all(self) -> tuple[tuple[str, int], ...]:
        """All tracked balances, address-ascending."""
        rows = self._db.fetch_all(
            """
            SELECT address, balance
            FROM holders
            ORDER BY address ASC
            """,
            {},
        )
        return tuple((str(row["address"]), amount_from_text(row["balance"])) for row in rows)

    def total(self) -> int:
        return sum(amount for _, amount in self.all())

    def clear(self) -> None:
        """Drop every balance; reserved for migration cutover."""
        self._db.execute("DELETE FROM holders", {})

    def assert_supply_invariant(self, event_store: EventStore) -> int:
        """Fail fast if tracked balances differ from the net mint-minus-burn of the event log."""
        events = event_store.read_through(_MAX_BLOCK)
        expected = sum(net_supply_delta(event) for event in events)
        actual = self.total()
        if actual != expected:
            raise LedgerInvariantViolation(
                f"Ledger total {actual} does not match event-log net supply {expected}"
            )
        for address, amount in self.all():
            if amount <= 0 or address == ZERO_ADDRESS:
                raise LedgerInvariantViolation(f"Invalid holder entry {address}={amount}")
        return actual
