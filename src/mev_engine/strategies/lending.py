"""Liquidations and price-target trades."""
from typing import List, Optional, Tuple

from web3 import Web3

from ..chain.contracts import APPROVE, APPROVE_TYPES, LIQUIDATION_CALL, LIQUIDATION_TYPES, SELECTORS
from ..opportunity.models import BorrowerSubject, Opportunity, PlanStep, PriceTargetSubject, StrategyKind
from .base import BuildContext, Strategy, apply_slippage, swap_step


class LiquidationStrategy(Strategy):
    """Repay part of an unhealthy loan and sell the seized collateral."""

    kind = StrategyKind.LIQUIDATION
    subject_type = BorrowerSubject

    def supports(self, opportunity: Opportunity) -> bool:
        if not super().supports(opportunity):
            return False
        subject: BorrowerSubject = opportunity.subject
        # Collateral without a price feed cannot be valued
        return Web3.to_checksum_address(subject.collateral_asset) in self.config.price_feeds

    def build_steps(self, opportunity: Opportunity, context: BuildContext) -> List[PlanStep]:
        subject: BorrowerSubject = opportunity.subject
        pool = self.config.lending_pool

        approve = PlanStep(
            target=subject.debt_asset,
            selector=SELECTORS[APPROVE],
            arg_types=APPROVE_TYPES,
            args=(pool, subject.debt_to_cover),
            label="approve",
        )
        liquidate = PlanStep(
            target=pool,
            selector=SELECTORS[LIQUIDATION_CALL],
            arg_types=LIQUIDATION_TYPES,
            args=(subject.collateral_asset, subject.debt_asset, subject.borrower, subject.debt_to_cover, False),
            label="liquidate",
        )
        # Seized collateral must buy back at least the debt repaid plus the borrow fee
        sell = swap_step(
            router=self.config.swap_router,
            amount_in=0,
            min_out=subject.debt_to_cover + context.borrow_fee,
            path=[subject.collateral_asset, subject.debt_asset],
            recipient=context.executor,
            deadline=context.swap_deadline,
            uses_prior_output=True,
            label="sell_collateral",
        )
        return [approve, liquidate, sell]

    def funding_requirement(self, opportunity: Opportunity) -> Optional[Tuple[str, int]]:
        if not self.config.flash_funded:
            return None
        subject: BorrowerSubject = opportunity.subject
        return subject.debt_asset, subject.debt_to_cover


class LatencyTradeStrategy(Strategy):
    """Buy an asset the moment its price drops below target."""

    kind = StrategyKind.LATENCY_TRADE
    subject_type = PriceTargetSubject

    def supports(self, opportunity: Opportunity) -> bool:
        if not super().supports(opportunity):
            return False
        subject: PriceTargetSubject = opportunity.subject
        return Web3.to_checksum_address(subject.asset) in self.config.price_feeds

    def build_steps(self, opportunity: Opportunity, context: BuildContext) -> List[PlanStep]:
        subject: PriceTargetSubject = opportunity.subject
        buy = swap_step(
            router=subject.router,
            amount_in=subject.amount_in,
            min_out=apply_slippage(subject.quoted_out, self.config.slippage_bps),
            path=[subject.quote_asset, subject.asset],
            recipient=context.executor,
            deadline=context.swap_deadline,
            label="buy",
        )
        if not self.config.flash_funded:
            return [buy]

        # Borrowed quote asset is repaid from unwinding the position in the same transaction
        unwind = swap_step(
            router=subject.exit_router or subject.router,
            amount_in=0,
            min_out=subject.amount_in + context.borrow_fee,
            path=[subject.asset, subject.quote_asset],
            recipient=context.executor,
            deadline=context.swap_deadline,
            uses_prior_output=True,
            label="unwind",
        )
        return [buy, unwind]

    def funding_requirement(self, opportunity: Opportunity) -> Optional[Tuple[str, int]]:
        if not self.config.flash_funded:
            return None
        subject: PriceTargetSubject = opportunity.subject
        return subject.quote_asset, subject.amount_in
