"""Shared builders for ledger tests."""

from __future__ import annotations

from captable.chain_simulator import SimulatedChain
from captable.common import ZERO_ADDRESS
from captable.events import TransferEvent

ADMIN = "0x" + "ad" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


def tx_hash(seed: int) -> str:
    return "0x" + format(seed, "064x")


def make_event(
    block: int,
    log_index: int,
    sender: str,
    recipient: str,
    value: int,
    *,
    seed: int | None = None,
) -> TransferEvent:
    return TransferEvent(
        block_number=block,
        log_index=log_index,
        transaction_hash=tx_hash(seed if seed is not None else block * 1000 + log_index),
        from_address=sender,
        to_address=recipient,
        value=value,
    )


def mint_event(block: int, log_index: int, recipient: str, value: int) -> TransferEvent:
    return make_event(block, log_index, ZERO_ADDRESS, recipient, value)


def burn_event(block: int, log_index: int, holder: str, value: int) -> TransferEvent:
    return make_event(block, log_index, holder, ZERO_ADDRESS, value)


def seed_holder(chain: SimulatedChain, token: str, holder: str, amount: int) -> None:
    """Allow-list a holder on the simulated token and mint to it."""
    chain.submit_transaction(token, "setAllowlistStatus", [holder, True])
    chain.submit_transaction(token, "mint", [holder, amount])
