"""
Fee market estimate shared by scanners and the orchestrator.

A single refresher task owns the snapshot; every other component only reads
it. Bids for competitive strategies carry a configurable premium and
replacement bids only ever go up.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from ..errors import TransientNetworkError
from ..opportunity.models import FeeBid
from .client import ChainClient

logger = logging.getLogger(__name__)

BPS = 10_000


@dataclass(frozen=True)
class FeeSnapshot:
    """Immutable fee reading."""
    base_fee_per_gas: int
    max_priority_fee_per_gas: int
    block_number: int
    fetched_at: float = field(default_factory=time.time)

    @property
    def gas_price(self) -> int:
        """Expected effective price per gas for inclusion in the next block."""
        return self.base_fee_per_gas + self.max_priority_fee_per_gas


def apply_bps(amount: int, bps: int) -> int:
    """amount * (1 + bps/10000), rounded up."""
    return amount + (amount * bps + BPS - 1) // BPS


class FeeMarket:
    """Holds the latest fee snapshot and derives bids from it."""

    def __init__(self, client: ChainClient, refresh_interval: float = 2.0):
        self.client = client
        self.refresh_interval = refresh_interval
        self._snapshot: Optional[FeeSnapshot] = None
        self._refresh_lock = asyncio.Lock()

        self.stats = {
            "refreshes": 0,
            "refresh_failures": 0,
        }

    @property
    def snapshot(self) -> Optional[FeeSnapshot]:
        return self._snapshot

    async def refresh(self) -> FeeSnapshot:
        """Fetch a new snapshot and publish it."""
        async with self._refresh_lock:
            data = await self.client.get_fee_data()
            self._snapshot = FeeSnapshot(
                base_fee_per_gas=data.base_fee_per_gas,
                max_priority_fee_per_gas=data.max_priority_fee_per_gas,
                block_number=data.block_number,
            )
            self.stats["refreshes"] += 1
            return self._snapshot

    async def current(self) -> FeeSnapshot:
        """Latest snapshot, fetching one if none has been published yet."""
        if self._snapshot is None:
            return await self.refresh()
        return self._snapshot

    async def run(self) -> None:
        """Refresher loop. Meant to run as exactly one task."""
        logger.info(f"Fee market refresher started (interval {self.refresh_interval}s)")
        while True:
            try:
                snapshot = await self.refresh()
                logger.debug(
                    f"Fee market at block {snapshot.block_number}: base {snapshot.base_fee_per_gas} "
                    f"priority {snapshot.max_priority_fee_per_gas}"
                )
            except TransientNetworkError as e:
                self.stats["refresh_failures"] += 1
                logger.warning(f"Fee market refresh failed, keeping previous snapshot: {e}")
            await asyncio.sleep(self.refresh_interval)

    async def gas_price(self, premium_bps: int = 0) -> int:
        """Effective gas price used for cost estimates."""
        snapshot = await self.current()
        priority = apply_bps(snapshot.max_priority_fee_per_gas, premium_bps)
        return snapshot.base_fee_per_gas + priority

    async def initial_bid(self, premium_bps: int = 0, max_fee_cap: Optional[int] = None) -> FeeBid:
        """First bid for a plan: market fee plus premium."""
        snapshot = await self.current()
        priority = apply_bps(snapshot.max_priority_fee_per_gas, premium_bps)
        # Headroom for two full blocks of base fee growth
        max_fee = 2 * snapshot.base_fee_per_gas + priority
        if max_fee_cap is not None:
            max_fee = min(max_fee, max_fee_cap)
            priority = min(priority, max_fee)
        return FeeBid(max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority)

    async def bump(self, previous: FeeBid, bump_bps: int, premium_bps: int = 0,
                   max_fee_cap: Optional[int] = None) -> FeeBid:
        """
        Replacement bid for a retry.

        The result is at least the previous bid bumped by bump_bps and at least
        the current market bid, so a bid never goes down across attempts. A cap
        can hold the bid level but never lower it below the previous one.
        """
        market = await self.initial_bid(premium_bps)
        max_fee = max(apply_bps(previous.max_fee_per_gas, bump_bps), market.max_fee_per_gas)
        priority = max(apply_bps(previous.max_priority_fee_per_gas, bump_bps), market.max_priority_fee_per_gas)

        if max_fee_cap is not None:
            max_fee = max(min(max_fee, max_fee_cap), previous.max_fee_per_gas)
            priority = max(min(priority, max_fee), previous.max_priority_fee_per_gas)

        return FeeBid(max_fee_per_gas=max_fee, max_priority_fee_per_gas=min(priority, max_fee))
