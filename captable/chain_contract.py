"""Chain-client protocol and normalized payloads consumed by the ledger engine."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Sequence, TypeVar

from captable.errors import DeploymentFailed, ExternalCallFailed, LedgerError

T = TypeVar("T")


@dataclass(frozen=True)
class RawTransferLog:
    """Decoded Transfer log as returned by the chain client."""

    block_number: int
    log_index: int
    transaction_hash: str
    from_address: str
    to_address: str
    value: int
    topic0: str
    data: bytes = b""


@dataclass(frozen=True)
class TransactionReceipt:
    """Confirmation outcome of a submitted transaction."""

    transaction_hash: str
    success: bool
    created_address: Optional[str] = None
    block_number: Optional[int] = None


@dataclass(frozen=True)
class TokenArtifact:
    """Compiled gated-token contract: ABI plus creation bytecode."""

    abi: tuple[Any, ...]
    bytecode: str


class ChainClient(Protocol):
    """Canonical chain interface used by ingestion, snapshot and migration."""

    def get_chain_head(self) -> int:
        """Return the latest block height."""

    def get_logs(self, address: str, event_signature: str, from_block: int, to_block: int) -> Sequence[RawTransferLog]:
        """Return decoded logs in (block, log_index) order for the inclusive range."""

    def read_contract(self, address: str, function: str, args: Sequence[Any], at_block: Optional[int] = None) -> Any:
        """Call a view function, optionally at a historical block."""

    def submit_transaction(self, address: str, function: str, args: Sequence[Any]) -> str:
        """Send a state-changing call and return its transaction hash."""

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        """Block until the transaction is mined."""

    def deploy_contract(self, bytecode: str, abi: Sequence[Any], constructor_args: Sequence[Any]) -> TransactionReceipt:
        """Deploy a contract and return the mined deployment receipt."""


def call_chain(description: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Invoke a chain-client method, wrapping collaborator failures in ExternalCallFailed."""
    try:
        return fn(*args, **kwargs)
    except LedgerError:
        raise
    except Exception as exc:
        raise ExternalCallFailed(f"{description} failed: {type(exc).__name__}: {exc}") from exc


def transact_and_confirm(chain: ChainClient, address: str, function: str, args: Sequence[Any]) -> TransactionReceipt:
    """Submit one transaction and wait for a successful receipt."""
    tx_hash = call_chain(f"{function} submission", chain.submit_transaction, address, function, list(args))
    receipt = call_chain(f"{function} confirmation", chain.wait_for_receipt, tx_hash)
    if not receipt.success:
        raise ExternalCallFailed(f"Transaction {tx_hash} ({function}) reverted")
    return receipt


def load_token_artifact(path: Path | str) -> TokenArtifact:
    """Load a compiled artifact JSON with `abi` and `bytecode` keys."""
    artifact_path = Path(path)
    if not artifact_path.is_file():
        raise DeploymentFailed(f"Token artifact not found at {artifact_path}")
    try:
        payload = json.loads(artifact_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DeploymentFailed(f"Token artifact at {artifact_path} is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise DeploymentFailed(f"Token artifact at {artifact_path} must be a JSON object")
    bytecode = payload.get("bytecode")
    if not isinstance(bytecode, str) or not bytecode.startswith("0x"):
        raise DeploymentFailed("Artifact missing bytecode")
    abi = payload.get("abi")
    if not isinstance(abi, list):
        raise DeploymentFailed("Artifact missing abi")
    return TokenArtifact(abi=tuple(abi), bytecode=bytecode)
