"""
Chain client boundary.

ChainClient describes every read and write the engine performs against the
chain. Web3ChainClient implements it over AsyncWeb3 and translates transport
failures into TransientNetworkError so callers see one failure type for
anything worth retrying.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Sequence

import aiohttp
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception, Web3RPCError
from web3.providers import AsyncHTTPProvider

from ..errors import ChainConnectivityLost, SimulationRevert, TransactionRejected, TransientNetworkError

logger = logging.getLogger(__name__)

SEND_OPERATION = "eth_sendRawTransaction"


@dataclass(frozen=True)
class FeeData:
    """Fee market reading at one block."""
    base_fee_per_gas: int
    max_priority_fee_per_gas: int
    block_number: int


@dataclass(frozen=True)
class PendingTransaction:
    """The fields of a pending transaction scanners care about."""
    tx_hash: str
    sender: str
    to: Optional[str]
    value: int
    input: bytes
    gas_price: int
    nonce: int
    block_number: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.block_number is None


@dataclass(frozen=True)
class TransactionReceipt:
    """Mined transaction summary."""
    tx_hash: str
    status: int
    block_number: int
    gas_used: int
    effective_gas_price: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient(ABC):
    """Everything the engine needs from the chain."""

    @abstractmethod
    async def get_block_number(self) -> int:
        """Current chain height."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Native balance of an account in wei."""

    @abstractmethod
    async def call(self, to: str, data: bytes, sender: Optional[str] = None, value: int = 0) -> bytes:
        """Read-only contract call against the latest block."""

    @abstractmethod
    async def simulate(self, tx: Dict[str, Any]) -> int:
        """Dry-run a transaction and return its gas estimate. Raises SimulationRevert."""

    @abstractmethod
    async def get_fee_data(self) -> FeeData:
        """Current base fee and suggested priority fee."""

    @abstractmethod
    async def get_pending_transaction_hashes(self) -> List[str]:
        """Hashes that entered the mempool since the previous call."""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Optional[PendingTransaction]:
        """Transaction body, or None when the node no longer knows it."""

    @abstractmethod
    async def get_transaction_count(self, address: str, block_identifier: str = "pending") -> int:
        """Account nonce."""

    @abstractmethod
    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign with the sender's key and broadcast. Returns the transaction hash."""

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Receipt of a mined transaction, or None while it is not mined."""

    async def is_transaction_pending(self, tx_hash: str) -> bool:
        """Whether a transaction is still waiting in the mempool."""
        tx = await self.get_transaction(tx_hash)
        return tx is not None and tx.is_pending


class Web3ChainClient(ChainClient):
    """ChainClient backed by AsyncWeb3 over HTTP."""

    def __init__(
        self,
        rpc_url: str,
        private_keys: Sequence[str] = (),
        request_timeout: float = 10.0,
        max_consecutive_failures: int = 25,
        w3: Optional[AsyncWeb3] = None,
    ):
        """
        Initialize the chain client.

        Args:
            rpc_url: JSON-RPC endpoint
            private_keys: Keys of the funding accounts allowed to sign
            request_timeout: Timeout for each RPC request in seconds
            max_consecutive_failures: Failures in a row before connectivity is lost
            w3: Pre-built AsyncWeb3 instance, mostly for tests
        """
        self.rpc_url = rpc_url
        self.request_timeout = request_timeout
        self.max_consecutive_failures = max_consecutive_failures
        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self.accounts = {}
        for key in private_keys:
            account = Account.from_key(key)
            self.accounts[account.address] = account

        self._pending_filter = None
        self._consecutive_failures = 0

        self.stats = {
            "requests": 0,
            "failures": 0,
            "rejections": 0,
            "transactions_sent": 0,
        }

    @property
    def addresses(self) -> List[str]:
        return list(self.accounts)

    async def _request(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        """Run one RPC request, mapping transport failures to TransientNetworkError."""
        self.stats["requests"] += 1
        try:
            result = await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except (ContractLogicError, TransactionNotFound):
            # The node answered; this is not a connectivity problem
            self._consecutive_failures = 0
            raise
        except Web3RPCError as e:
            # JSON-RPC error answer: the node is reachable
            self._consecutive_failures = 0
            self.stats["rejections"] += 1
            if operation == SEND_OPERATION:
                raise TransactionRejected(str(e), operation=operation) from e
            raise TransientNetworkError(str(e) or type(e).__name__, operation=operation) from e
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, ConnectionError, OSError) as e:
            self.stats["failures"] += 1
            self._consecutive_failures += 1
            if self._consecutive_failures >= self.max_consecutive_failures:
                logger.error(
                    f"Chain connectivity lost after {self._consecutive_failures} consecutive failures: {e}"
                )
                raise ChainConnectivityLost(
                    f"{operation} failed {self._consecutive_failures} times in a row: {e}",
                    consecutive_failures=self._consecutive_failures,
                ) from e
            raise TransientNetworkError(str(e) or type(e).__name__, operation=operation) from e

        self._consecutive_failures = 0
        return result

    async def get_block_number(self) -> int:
        return await self._request("eth_blockNumber", self.w3.eth.block_number)

    async def get_balance(self, address: str) -> int:
        return await self._request("eth_getBalance", self.w3.eth.get_balance(Web3.to_checksum_address(address)))

    async def call(self, to: str, data: bytes, sender: Optional[str] = None, value: int = 0) -> bytes:
        tx: Dict[str, Any] = {"to": Web3.to_checksum_address(to), "data": Web3.to_hex(data)}
        if sender:
            tx["from"] = Web3.to_checksum_address(sender)
        if value:
            tx["value"] = value
        result = await self._request("eth_call", self.w3.eth.call(tx))
        return bytes(result)

    async def simulate(self, tx: Dict[str, Any]) -> int:
        call_tx = {k: v for k, v in tx.items() if k in ("from", "to", "data", "value", "gas")}
        try:
            await self._request("eth_call", self.w3.eth.call(call_tx))
            return await self._request("eth_estimateGas", self.w3.eth.estimate_gas(call_tx))
        except ContractLogicError as e:
            raise SimulationRevert(f"Simulation reverted: {e}", reason=getattr(e, "message", None)) from e

    async def get_fee_data(self) -> FeeData:
        block = await self._request("eth_getBlockByNumber", self.w3.eth.get_block("latest"))
        priority_fee = await self._request("eth_maxPriorityFeePerGas", self.w3.eth.max_priority_fee)
        return FeeData(
            base_fee_per_gas=int(block.get("baseFeePerGas", 0)),
            max_priority_fee_per_gas=int(priority_fee),
            block_number=int(block["number"]),
        )

    async def get_pending_transaction_hashes(self) -> List[str]:
        if self._pending_filter is None:
            self._pending_filter = await self._request("eth_newPendingTransactionFilter", self.w3.eth.filter("pending"))
        try:
            entries = await self._request("eth_getFilterChanges", self._pending_filter.get_new_entries())
        except TransientNetworkError:
            # Nodes drop idle filters; recreate on the next poll
            self._pending_filter = None
            raise
        return [Web3.to_hex(entry) for entry in entries]

    async def get_transaction(self, tx_hash: str) -> Optional[PendingTransaction]:
        try:
            tx = await self._request("eth_getTransactionByHash", self.w3.eth.get_transaction(tx_hash))
        except TransactionNotFound:
            return None
        if tx is None:
            return None
        return PendingTransaction(
            tx_hash=Web3.to_hex(tx["hash"]),
            sender=tx["from"],
            to=tx.get("to"),
            value=int(tx.get("value", 0)),
            input=bytes(tx.get("input", b"")),
            gas_price=int(tx.get("gasPrice") or tx.get("maxFeePerGas") or 0),
            nonce=int(tx["nonce"]),
            block_number=tx.get("blockNumber"),
        )

    async def get_transaction_count(self, address: str, block_identifier: str = "pending") -> int:
        return await self._request(
            "eth_getTransactionCount",
            self.w3.eth.get_transaction_count(Web3.to_checksum_address(address), block_identifier),
        )

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        sender = Web3.to_checksum_address(tx["from"])
        account = self.accounts.get(sender)
        if account is None:
            raise ValueError(f"No signing key loaded for {sender}")

        unsigned = {k: v for k, v in tx.items() if k != "from"}
        signed = account.sign_transaction(unsigned)
        tx_hash = await self._request(SEND_OPERATION, self.w3.eth.send_raw_transaction(signed.raw_transaction))
        self.stats["transactions_sent"] += 1
        return Web3.to_hex(tx_hash)

    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        try:
            receipt = await self._request("eth_getTransactionReceipt", self.w3.eth.get_transaction_receipt(tx_hash))
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return TransactionReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            effective_gas_price=int(receipt.get("effectiveGasPrice", 0)),
        )

    async def get_chain_health(self) -> Dict[str, Any]:
        """Connectivity snapshot used at startup."""
        start_time = time.time()
        try:
            block_number = await self.get_block_number()
            chain_id = await self._request("eth_chainId", self.w3.eth.chain_id)
            return {
                "status": "healthy",
                "block_number": block_number,
                "chain_id": chain_id,
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
            }
        except TransientNetworkError as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
            }

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        provider = self.w3.provider
        if hasattr(provider, "disconnect"):
            await provider.disconnect()
