"""Cross-venue and flash-funded cyclic arbitrage."""
from typing import List, Optional, Tuple

from ..opportunity.models import Opportunity, PlanStep, RouteSubject, StrategyKind, TokenPairSubject
from .base import BuildContext, Strategy, apply_slippage, swap_step


class CrossVenueArbitrageStrategy(Strategy):
    """Buy on the cheaper router, sell on the richer one, in one transaction."""

    kind = StrategyKind.CROSS_VENUE_ARBITRAGE
    subject_type = TokenPairSubject

    def build_steps(self, opportunity: Opportunity, context: BuildContext) -> List[PlanStep]:
        subject: TokenPairSubject = opportunity.subject
        slippage = self.config.slippage_bps

        buy = swap_step(
            router=subject.buy_router,
            amount_in=subject.amount_in,
            min_out=apply_slippage(subject.quoted_intermediate, slippage),
            path=[subject.token_in, subject.token_out],
            recipient=context.executor,
            deadline=context.swap_deadline,
            label="buy",
        )
        # Never accept less back than was put in
        floor = subject.amount_in + context.borrow_fee
        sell = swap_step(
            router=subject.sell_router,
            amount_in=subject.quoted_intermediate,
            min_out=max(apply_slippage(subject.quoted_out, slippage), floor),
            path=[subject.token_out, subject.token_in],
            recipient=context.executor,
            deadline=context.swap_deadline,
            uses_prior_output=True,
            label="sell",
        )
        return [buy, sell]

    def funding_requirement(self, opportunity: Opportunity) -> Optional[Tuple[str, int]]:
        if not self.config.flash_funded:
            return None
        subject: TokenPairSubject = opportunity.subject
        return subject.token_in, subject.amount_in


class FlashArbitrageStrategy(Strategy):
    """Borrow the start token, walk a cyclic route, repay from the proceeds."""

    kind = StrategyKind.FLASH_ARBITRAGE
    subject_type = RouteSubject

    def supports(self, opportunity: Opportunity) -> bool:
        if not super().supports(opportunity):
            return False
        subject: RouteSubject = opportunity.subject
        hops = len(subject.tokens)
        return hops >= 2 and len(subject.routers) == hops and len(subject.quoted_amounts) == hops

    def build_steps(self, opportunity: Opportunity, context: BuildContext) -> List[PlanStep]:
        subject: RouteSubject = opportunity.subject
        slippage = self.config.slippage_bps
        hops = len(subject.tokens)

        steps = []
        amount_in = subject.amount_in
        for i in range(hops):
            token_from = subject.tokens[i]
            token_to = subject.tokens[(i + 1) % hops]
            min_out = apply_slippage(subject.quoted_amounts[i], slippage)
            if i == hops - 1:
                min_out = max(min_out, subject.amount_in + context.borrow_fee)
            steps.append(swap_step(
                router=subject.routers[i],
                amount_in=amount_in,
                min_out=min_out,
                path=[token_from, token_to],
                recipient=context.executor,
                deadline=context.swap_deadline,
                uses_prior_output=i > 0,
                label=f"hop_{i}",
            ))
            amount_in = subject.quoted_amounts[i]
        return steps

    def funding_requirement(self, opportunity: Opportunity) -> Optional[Tuple[str, int]]:
        subject: RouteSubject = opportunity.subject
        return subject.start_token, subject.amount_in
