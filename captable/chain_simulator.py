"""Deterministic in-memory gated-token chain implementing the chain-client protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from hashlib import sha256
from typing import Any, Optional, Sequence

from captable.chain_contract import RawTransferLog, TransactionReceipt
from captable.common import ZERO_ADDRESS, normalize_address
from captable.errors import DeploymentFailed
from captable.events import TRANSFER_EVENT_SIGNATURE, TRANSFER_TOPIC0


class SimulatedRevert(RuntimeError):
    """Raised internally when a simulated transaction reverts."""


@dataclass
class SimulatedToken:
    """State of one gated token instance (zero decimals, admin-managed allow-list)."""

    address: str
    name: str
    symbol: str
    admin: str
    paused: bool = False
    allowlist: set[str] = field(default_factory=set)
    balances: dict[str, int] = field(default_factory=dict)
    history: list[tuple[int, dict[str, int]]] = field(default_factory=list)

    def balance_at(self, block: int) -> dict[str, int]:
        state: dict[str, int] = {}
        for mined_block, balances in self.history:
            if mined_block > block:
                break
            state = balances
        return state

    def total_supply(self) -> int:
        return sum(self.balances.values())


class SimulatedChain:
    """Single-signer chain: every submitted transaction is mined into its own block.

    The simulator signs for any account, so `transfer` and `burn` take the
    holder address explicitly. `inject_failure` arms a one-shot exception for a
    named function to exercise collaborator failures.
    """

    def __init__(self, *, start_block: int = 0) -> None:
        self._head = start_block
        self._tokens: dict[str, SimulatedToken] = {}
        self._logs: list[tuple[str, RawTransferLog]] = []
        self._receipts: dict[str, TransactionReceipt] = {}
        self._nonce = 0
        self._failures: dict[str, list[BaseException]] = {}
        self._omit_created_address = False
        self.submitted: list[tuple[str, str, tuple[Any, ...]]] = []

    # chain-client protocol

    def get_chain_head(self) -> int:
        self._maybe_fail("get_chain_head")
        return self._head

    def get_logs(self, address: str, event_signature: str, from_block: int, to_block: int) -> Sequence[RawTransferLog]:
        self._maybe_fail("get_logs")
        if event_signature != TRANSFER_EVENT_SIGNATURE:
            return ()
        token = normalize_address(address)
        return tuple(
            log
            for log_token, log in self._logs
            if log_token == token and from_block <= log.block_number <= to_block
        )

    def read_contract(self, address: str, function: str, args: Sequence[Any], at_block: Optional[int] = None) -> Any:
        self._maybe_fail(function)
        token = self._token(address)
        if at_block is not None and at_block > self._head:
            raise ValueError(f"Block {at_block} is beyond chain head {self._head}")
        if function == "balanceOf":
            holder = normalize_address(args[0])
            balances = token.balances if at_block is None else token.balance_at(at_block)
            return balances.get(holder, 0)
        if function == "paused":
            return token.paused
        if function == "name":
            return token.name
        if function == "symbol":
            return token.symbol
        if function == "decimals":
            return 0
        if function == "totalSupply":
            balances = token.balances if at_block is None else token.balance_at(at_block)
            return sum(balances.values())
        if function == "isAllowlisted":
            return normalize_address(args[0]) in token.allowlist
        raise ValueError(f"Unknown view function {function}")

    def submit_transaction(self, address: str, function: str, args: Sequence[Any]) -> str:
        self._maybe_fail(function)
        token = self._token(address)
        self.submitted.append((token.address, function, tuple(args)))
        block = self._next_block()
        tx_hash = self._next_hash("tx")
        success = True
        try:
            self._apply(token, function, list(args), block, tx_hash)
        except SimulatedRevert:
            success = False
        token.history.append((block, dict(token.balances)))
        self._receipts[tx_hash] = TransactionReceipt(transaction_hash=tx_hash, success=success, block_number=block)
        return tx_hash

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        self._maybe_fail("wait_for_receipt")
        receipt = self._receipts.get(tx_hash)
        if receipt is None:
            raise ValueError(f"Unknown transaction {tx_hash}")
        return receipt

    def deploy_contract(self, bytecode: str, abi: Sequence[Any], constructor_args: Sequence[Any]) -> TransactionReceipt:
        self._maybe_fail("deploy_contract")
        name, symbol, admin = constructor_args
        block = self._next_block()
        tx_hash = self._next_hash("deploy")
        address = "0x" + sha256(f"contract|{tx_hash}".encode("utf-8")).hexdigest()[:40]
        token = SimulatedToken(address=address, name=str(name), symbol=str(symbol), admin=normalize_address(admin))
        token.history.append((block, {}))
        self._tokens[address] = token
        created = None if self._omit_created_address else address
        receipt = TransactionReceipt(transaction_hash=tx_hash, success=True, created_address=created, block_number=block)
        self._receipts[tx_hash] = receipt
        return receipt

    # test/dry-run helpers

    def deploy_token(self, name: str, symbol: str, admin: str) -> str:
        """Deploy directly and return the new token address."""
        receipt = self.deploy_contract("0x", (), (name, symbol, admin))
        if receipt.created_address is None:
            raise DeploymentFailed("Failed to retrieve new token address from deployment receipt")
        return receipt.created_address

    def mine(self, blocks: int = 1) -> int:
        """Advance the head with empty blocks."""
        self._head += blocks
        return self._head

    def token(self, address: str) -> SimulatedToken:
        return self._token(address)

    def inject_failure(self, function: str, exc: BaseException, *, times: int = 1) -> None:
        self._failures.setdefault(function, []).extend([exc] * times)

    def omit_created_address(self, enabled: bool = True) -> None:
        self._omit_created_address = enabled

    def force_balance(self, token_address: str, holder: str, amount: int) -> None:
        """Overwrite an on-chain balance without emitting a log (drift simulation)."""
        token = self._token(token_address)
        holder_key = normalize_address(holder)
        if amount:
            token.balances[holder_key] = amount
        else:
            token.balances.pop(holder_key, None)
        token.history.append((self._head, dict(token.balances)))

    # internals

    def _maybe_fail(self, function: str) -> None:
        pending = self._failures.get(function)
        if pending:
            raise pending.pop(0)

    def _token(self, address: str) -> SimulatedToken:
        key = normalize_address(address)
        token = self._tokens.get(key)
        if token is None:
            raise ValueError(f"No contract deployed at {key}")
        return token

    def _next_block(self) -> int:
        self._head += 1
        return self._head

    def _next_hash(self, kind: str) -> str:
        self._nonce += 1
        return "0x" + sha256(f"{kind}|{self._nonce}".encode("utf-8")).hexdigest()

    def _emit(self, token: SimulatedToken, block: int, tx_hash: str, sender: str, recipient: str, amount: int) -> None:
        log_index = sum(1 for _, log in self._logs if log.block_number == block)
        self._logs.append(
            (
                token.address,
                RawTransferLog(
                    block_number=block,
                    log_index=log_index,
                    transaction_hash=tx_hash,
                    from_address=sender,
                    to_address=recipient,
                    value=amount,
                    topic0=TRANSFER_TOPIC0,
                    data=amount.to_bytes(32, "big"),
                ),
            )
        )

    def _move(self, token: SimulatedToken, block: int, tx_hash: str, sender: str, recipient: str, amount: int) -> None:
        if token.paused:
            raise SimulatedRevert("EnforcedPause")
        if amount < 0:
            raise SimulatedRevert("NegativeAmount")
        if sender != ZERO_ADDRESS:
            held = token.balances.get(sender, 0)
            if held < amount:
                raise SimulatedRevert("InsufficientBalance")
            remaining = held - amount
            if remaining:
                token.balances[sender] = remaining
            else:
                token.balances.pop(sender, None)
        if recipient != ZERO_ADDRESS:
            token.balances[recipient] = token.balances.get(recipient, 0) + amount
        self._emit(token, block, tx_hash, sender, recipient, amount)

    def _apply(self, token: SimulatedToken, function: str, args: list[Any], block: int, tx_hash: str) -> None:
        if function == "pause":
            if token.paused:
                raise SimulatedRevert("EnforcedPause")
            token.paused = True
        elif function == "unpause":
            if not token.paused:
                raise SimulatedRevert("ExpectedPause")
            token.paused = False
        elif function == "setAllowlistStatus":
            wallet = normalize_address(args[0])
            if bool(args[1]):
                token.allowlist.add(wallet)
            else:
                token.allowlist.discard(wallet)
        elif function == "mint":
            recipient = normalize_address(args[0])
            if recipient not in token.allowlist:
                raise SimulatedRevert("NotAllowlisted")
            self._move(token, block, tx_hash, ZERO_ADDRESS, recipient, int(args[1]))
        elif function == "burn":
            holder = normalize_address(args[0])
            if holder not in token.allowlist:
                raise SimulatedRevert("NotAllowlisted")
            self._move(token, block, tx_hash, holder, ZERO_ADDRESS, int(args[1]))
        elif function == "transfer":
            sender = normalize_address(args[0])
            recipient = normalize_address(args[1])
            if sender not in token.allowlist or recipient not in token.allowlist:
                raise SimulatedRevert("NotAllowlisted")
            self._move(token, block, tx_hash, sender, recipient, int(args[2]))
        else:
            raise SimulatedRevert(f"Unknown function {function}")
