"""Mempool scanners for front-running and sandwiching large swaps."""
import logging
from typing import Optional

from ..capital.provider import calculate_dynamic_loan_amount
from ..chain.client import PendingTransaction
from ..chain.contracts import DecodedSwap, decode_swap_input
from ..opportunity.models import Opportunity, PendingTxSubject, StrategyKind
from .base import MempoolScanner, quote

logger = logging.getLogger(__name__)

BPS = 10_000


class _SwapWatcher(MempoolScanner):
    """Shared filtering of pending router swaps."""

    def _watched_swap(self, tx: PendingTransaction) -> Optional[DecodedSwap]:
        if tx.to is None:
            return None
        if self.config.watched_routers and tx.to not in self.config.watched_routers:
            return None
        swap = decode_swap_input(tx.input, tx.value)
        if swap is None or len(swap.path) < 2:
            return None
        if swap.path[0] not in self.config.base_tokens:
            return None
        if swap.amount_in < self.config.value_threshold_wei:
            return None
        return swap

    def _subject(self, tx: PendingTransaction, swap: DecodedSwap, trade_amount: int, expected_out: int) -> PendingTxSubject:
        return PendingTxSubject(
            tx_hash=tx.tx_hash,
            sender=tx.sender,
            to=tx.to,
            value=tx.value,
            router=tx.to,
            path=swap.path,
            amount_in=swap.amount_in,
            amount_out_min=swap.amount_out_min,
            gas_price=tx.gas_price,
            trade_amount=trade_amount,
            expected_out=expected_out,
        )


class FrontRunningScanner(_SwapWatcher):
    """Large swaps worth trading ahead of."""

    kind = StrategyKind.FRONT_RUNNING

    async def scan_transaction(self, tx: PendingTransaction, block: int) -> Optional[Opportunity]:
        swap = self._watched_swap(tx)
        if swap is None:
            return None

        trade_amount = swap.amount_in * self.config.trade_size_bps // BPS
        if trade_amount == 0:
            return None
        expected_out = await quote(self.client, tx.to, trade_amount, swap.path)
        gain = swap.amount_in * self.config.capture_bps // BPS
        cost = await self.estimate_cost(gain)

        logger.debug(f"Front-run candidate {tx.tx_hash}: swap {swap.amount_in}, gain {gain}, cost {cost}")
        return Opportunity(
            strategy_kind=self.kind,
            subject=self._subject(tx, swap, trade_amount, expected_out),
            observed_at_block=block,
            expected_gross_gain=gain,
            estimated_cost=cost,
        )


class SandwichScanner(_SwapWatcher):
    """Large swaps whose slippage tolerance leaves value to extract."""

    kind = StrategyKind.SANDWICH

    async def scan_transaction(self, tx: PendingTransaction, block: int) -> Optional[Opportunity]:
        swap = self._watched_swap(tx)
        if swap is None:
            return None

        victim_quote = await quote(self.client, tx.to, swap.amount_in, swap.path)
        if victim_quote <= swap.amount_out_min:
            return None
        room_bps = (victim_quote - swap.amount_out_min) * BPS // victim_quote
        gain = swap.amount_in * min(room_bps, self.config.capture_bps) // BPS
        if gain == 0:
            return None

        gas_cost = self.config.gas_estimate * await self.fee_market.gas_price(self.config.fee_premium_bps)
        loan = calculate_dynamic_loan_amount(swap.amount_in, gas_cost, self.config.slippage_bps / BPS)
        trade_amount = loan * self.config.trade_size_bps // BPS
        if self.capital_provider is not None:
            limit = self.capital_provider.max_borrowable(swap.path[0])
            if limit is not None:
                trade_amount = min(trade_amount, limit)
        if trade_amount == 0:
            return None

        expected_out = await quote(self.client, tx.to, trade_amount, swap.path)
        cost = await self.estimate_cost(gain, self.borrow_fee(swap.path[0], trade_amount))

        logger.debug(
            f"Sandwich candidate {tx.tx_hash}: slippage room {room_bps}bps, trade {trade_amount}, "
            f"gain {gain}, cost {cost}"
        )
        return Opportunity(
            strategy_kind=self.kind,
            subject=self._subject(tx, swap, trade_amount, expected_out),
            observed_at_block=block,
            expected_gross_gain=gain,
            estimated_cost=cost,
        )
