"""JSON-RPC chain client backed by web3.py for the gated token."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import eth_abi.abi
from web3 import Web3
from web3.types import LogReceipt

from captable.chain_contract import RawTransferLog, TransactionReceipt
from captable.common import normalize_address, normalize_hash
from captable.events import TRANSFER_EVENT_SIGNATURE

logger = logging.getLogger(__name__)

_RECEIPT_TIMEOUT_SECONDS = 180

# View and admin surface of the gated token used by the engine.
GATED_TOKEN_ABI: tuple[dict[str, Any], ...] = (
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "totalSupply",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {"type": "function", "name": "name", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"type": "function", "name": "symbol", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "string"}]},
    {"type": "function", "name": "paused", "stateMutability": "view", "inputs": [], "outputs": [{"name": "", "type": "bool"}]},
    {"type": "function", "name": "pause", "stateMutability": "nonpayable", "inputs": [], "outputs": []},
    {"type": "function", "name": "unpause", "stateMutability": "nonpayable", "inputs": [], "outputs": []},
    {
        "type": "function",
        "name": "setAllowlistStatus",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "wallet", "type": "address"}, {"name": "allowed", "type": "bool"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "mint",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
)


def _decode_address(topic: bytes) -> str:
    (address,) = eth_abi.abi.decode(types=["address"], data=topic)
    return normalize_address(address)


def decode_transfer_log(log: LogReceipt) -> RawTransferLog:
    """Decode a Transfer log: indexed from/to in topics, value in data."""
    topics = log["topics"]
    if len(topics) != 3:
        raise ValueError(f"Transfer log expects 3 topics, got {len(topics)}")
    data = bytes(log["data"])
    (value,) = eth_abi.abi.decode(types=["uint256"], data=data)
    return RawTransferLog(
        block_number=int(log["blockNumber"]),
        log_index=int(log["logIndex"]),
        transaction_hash=normalize_hash(Web3.to_hex(log["transactionHash"])),
        from_address=_decode_address(bytes(topics[1])),
        to_address=_decode_address(bytes(topics[2])),
        value=int(value),
        topic0=normalize_hash(Web3.to_hex(topics[0])),
        data=data,
    )


class Web3ChainClient:
    """Chain client over an HTTP JSON-RPC endpoint; transactions are signed locally."""

    def __init__(
        self,
        *,
        rpc_url: str,
        private_key: Optional[str] = None,
        abi: Optional[Sequence[Any]] = None,
        w3: Optional[Web3] = None,
    ) -> None:
        self._w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self._account = self._w3.eth.account.from_key(private_key) if private_key else None
        self._abi = list(abi) if abi else list(GATED_TOKEN_ABI)

    @property
    def signer_address(self) -> Optional[str]:
        if self._account is None:
            return None
        return normalize_address(self._account.address)

    def _contract(self, address: str, abi: Optional[Sequence[Any]] = None) -> Any:
        return self._w3.eth.contract(address=Web3.to_checksum_address(address), abi=list(abi or self._abi))

    def _require_account(self) -> Any:
        if self._account is None:
            raise RuntimeError("Missing signer private key for transaction submission")
        return self._account

    def _send(self, transaction: dict[str, Any]) -> str:
        account = self._require_account()
        signed = account.sign_transaction(transaction)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    def _tx_params(self) -> dict[str, Any]:
        account = self._require_account()
        return {
            "from": account.address,
            "nonce": self._w3.eth.get_transaction_count(account.address, "pending"),
            "chainId": self._w3.eth.chain_id,
        }

    @staticmethod
    def _wrap_args(args: Sequence[Any]) -> list[Any]:
        wrapped: list[Any] = []
        for item in args:
            if isinstance(item, str) and Web3.is_address(item):
                wrapped.append(Web3.to_checksum_address(item))
            else:
                wrapped.append(item)
        return wrapped

    def get_chain_head(self) -> int:
        return int(self._w3.eth.block_number)

    def get_logs(self, address: str, event_signature: str, from_block: int, to_block: int) -> Sequence[RawTransferLog]:
        if event_signature != TRANSFER_EVENT_SIGNATURE:
            return ()
        topic0 = Web3.to_hex(Web3.keccak(text=event_signature))
        logs = self._w3.eth.get_logs(
            {
                "address": Web3.to_checksum_address(address),
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [topic0],
            }
        )
        decoded = [decode_transfer_log(log) for log in logs]
        decoded.sort(key=lambda item: (item.block_number, item.log_index))
        logger.debug("fetched logs token=%s from=%s to=%s count=%s", address, from_block, to_block, len(decoded))
        return tuple(decoded)

    def read_contract(self, address: str, function: str, args: Sequence[Any], at_block: Optional[int] = None) -> Any:
        call = self._contract(address).functions[function](*self._wrap_args(args))
        if at_block is None:
            return call.call()
        return call.call(block_identifier=at_block)

    def submit_transaction(self, address: str, function: str, args: Sequence[Any]) -> str:
        call = self._contract(address).functions[function](*self._wrap_args(args))
        tx_hash = self._send(call.build_transaction(self._tx_params()))
        logger.info("submitted transaction token=%s function=%s tx=%s", address, function, tx_hash)
        return tx_hash

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=_RECEIPT_TIMEOUT_SECONDS)
        created = receipt.get("contractAddress")
        return TransactionReceipt(
            transaction_hash=normalize_hash(Web3.to_hex(receipt["transactionHash"])),
            success=int(receipt["status"]) == 1,
            created_address=normalize_address(created) if created else None,
            block_number=int(receipt["blockNumber"]),
        )

    def deploy_contract(self, bytecode: str, abi: Sequence[Any], constructor_args: Sequence[Any]) -> TransactionReceipt:
        factory = self._w3.eth.contract(abi=list(abi), bytecode=bytecode)
        transaction = factory.constructor(*self._wrap_args(constructor_args)).build_transaction(self._tx_params())
        tx_hash = self._send(transaction)
        logger.info("submitted deployment tx=%s", tx_hash)
        return self.wait_for_receipt(tx_hash)
