"""
Nonce management and submission ordering per funding account.

- NonceManager caches the next nonce of one account, refreshed from the
  'pending' transaction count, and is advanced locally once a nonce is
  consumed by a mined transaction.
- AccountSequencer hands out tickets in acceptance order and lets exactly
  one plan at a time use the account, in ticket order. Released or cancelled
  tickets are skipped.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Set

from web3 import Web3

from .client import ChainClient

logger = logging.getLogger(__name__)


class NonceManager:
    """Single writer of one account's nonce sequence."""

    def __init__(self, client: ChainClient, address: str):
        self.client = client
        self.address = Web3.to_checksum_address(address)
        self._cached: Optional[int] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[int]:
        return self._cached

    async def get_next_nonce(self) -> int:
        """Next nonce to use, refreshed from the chain's pending count."""
        async with self._lock:
            onchain = int(await self.client.get_transaction_count(self.address, "pending"))
            if self._cached is None or onchain > self._cached:
                self._cached = onchain
            return self._cached

    def consume(self, nonce: int) -> None:
        """Record that a mined transaction used nonce."""
        if self._cached is None or nonce + 1 > self._cached:
            self._cached = nonce + 1

    def resync(self) -> None:
        """Forget the cached value so the next read comes from the chain."""
        self._cached = None


class AccountSequencer:
    """Serializes plans sharing one funding account, in ticket order."""

    def __init__(self, nonces: NonceManager):
        self.nonces = nonces
        self._next_ticket = 0
        self._now_serving = 0
        self._released: Set[int] = set()
        self._turns: Dict[int, asyncio.Event] = {}

    @property
    def address(self) -> str:
        return self.nonces.address

    @property
    def now_serving(self) -> int:
        return self._now_serving

    def issue(self) -> int:
        """Reserve the next position in the account's submission order."""
        ticket = self._next_ticket
        self._next_ticket += 1
        return ticket

    async def wait_turn(self, ticket: int) -> None:
        """Block until every earlier ticket has been released."""
        if ticket >= self._next_ticket:
            raise ValueError(f"ticket {ticket} was never issued for {self.address}")
        if self._now_serving == ticket:
            return
        event = self._turns.setdefault(ticket, asyncio.Event())
        await event.wait()

    def release(self, ticket: int) -> None:
        """Give up a ticket, whether it was served, skipped or cancelled."""
        if ticket < self._now_serving:
            return
        self._released.add(ticket)
        while self._now_serving in self._released:
            self._released.discard(self._now_serving)
            self._turns.pop(self._now_serving, None)
            self._now_serving += 1

        event = self._turns.get(self._now_serving)
        if event is not None:
            event.set()

    @asynccontextmanager
    async def turn(self, ticket: int) -> AsyncIterator[NonceManager]:
        """Hold the account for the duration of the block."""
        try:
            await self.wait_turn(ticket)
            yield self.nonces
        finally:
            self.release(ticket)


class SequencerRegistry:
    """One AccountSequencer per funding account."""

    def __init__(self, client: ChainClient):
        self.client = client
        self._sequencers: Dict[str, AccountSequencer] = {}

    def for_account(self, address: str) -> AccountSequencer:
        key = Web3.to_checksum_address(address)
        sequencer = self._sequencers.get(key)
        if sequencer is None:
            sequencer = AccountSequencer(NonceManager(self.client, key))
            self._sequencers[key] = sequencer
            logger.debug(f"Created submission sequencer for {key}")
        return sequencer
