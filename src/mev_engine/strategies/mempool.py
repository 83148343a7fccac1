"""Strategies that trade around a pending transaction."""
from typing import List, Optional, Tuple

from ..opportunity.models import Opportunity, OrderingConstraint, PendingTxSubject, PlanStep, StrategyKind
from .base import BuildContext, Strategy, apply_slippage, swap_step


class _PendingSwapStrategy(Strategy):
    subject_type = PendingTxSubject

    def supports(self, opportunity: Opportunity) -> bool:
        if not super().supports(opportunity):
            return False
        subject: PendingTxSubject = opportunity.subject
        return (
            subject.router is not None
            and len(subject.path) >= 2
            and subject.trade_amount > 0
            and subject.expected_out > 0
        )

    def ordering_constraint(self, opportunity: Opportunity) -> OrderingConstraint:
        return OrderingConstraint.BEFORE_SUBJECT


class FrontRunningStrategy(_PendingSwapStrategy):
    """Take the subject's trade direction first with our own inventory."""

    kind = StrategyKind.FRONT_RUNNING

    def build_steps(self, opportunity: Opportunity, context: BuildContext) -> List[PlanStep]:
        subject: PendingTxSubject = opportunity.subject
        return [swap_step(
            router=subject.router,
            amount_in=subject.trade_amount,
            min_out=apply_slippage(subject.expected_out, self.config.slippage_bps),
            path=subject.path,
            recipient=context.executor,
            deadline=context.swap_deadline,
            label="front",
        )]


class SandwichStrategy(_PendingSwapStrategy):
    """
    Flash-funded round trip on the subject's pool ahead of the subject.

    Borrow, buy, sell and repay share one transaction, so the legs cannot be
    split around the subject; the round trip must close at no less than the
    borrowed amount plus fee or the whole plan reverts.
    """

    kind = StrategyKind.SANDWICH

    def build_steps(self, opportunity: Opportunity, context: BuildContext) -> List[PlanStep]:
        subject: PendingTxSubject = opportunity.subject
        slippage = self.config.slippage_bps
        reverse_path = list(reversed(subject.path))

        front = swap_step(
            router=subject.router,
            amount_in=subject.trade_amount,
            min_out=apply_slippage(subject.expected_out, slippage),
            path=subject.path,
            recipient=context.executor,
            deadline=context.swap_deadline,
            label="front",
        )
        back = swap_step(
            router=subject.router,
            amount_in=subject.expected_out,
            min_out=subject.trade_amount + context.borrow_fee,
            path=reverse_path,
            recipient=context.executor,
            deadline=context.swap_deadline,
            uses_prior_output=True,
            label="back",
        )
        return [front, back]

    def funding_requirement(self, opportunity: Opportunity) -> Optional[Tuple[str, int]]:
        subject: PendingTxSubject = opportunity.subject
        return subject.path[0], subject.trade_amount
