"""
Strategy capability interface.

A Strategy knows how to turn one kind of Opportunity into plan steps: which
subjects it can handle, the calls to make, the ordering it needs relative to
its subject and whether it needs borrowed capital. Everything else (scoring,
funding, submission, retry) is generic and lives outside the strategy.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Type

from ..chain.client import ChainClient
from ..chain.contracts import SELECTORS, SWAP_EXACT_TOKENS_FOR_TOKENS, SWAP_TOKENS_TYPES
from ..config.strategy_config import StrategyConfig
from ..opportunity.models import (
    COMPETITIVE_KINDS,
    Opportunity,
    OrderingConstraint,
    PendingTxSubject,
    PlanStep,
    StrategyKind,
)

logger = logging.getLogger(__name__)

BPS = 10_000


@dataclass(frozen=True)
class BuildContext:
    """Per-plan inputs a strategy needs to build its steps."""
    executor: str
    current_block: int
    swap_deadline: int
    borrow_fee: int = 0


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Minimum acceptable output for a quoted amount."""
    return amount * (BPS - slippage_bps) // BPS


def swap_step(
    router: str,
    amount_in: int,
    min_out: int,
    path: Sequence[str],
    recipient: str,
    deadline: int,
    uses_prior_output: bool = False,
    label: str = "swap",
) -> PlanStep:
    """Router swapExactTokensForTokens step."""
    return PlanStep(
        target=router,
        selector=SELECTORS[SWAP_EXACT_TOKENS_FOR_TOKENS],
        arg_types=SWAP_TOKENS_TYPES,
        args=(amount_in, min_out, list(path), recipient, deadline),
        min_output=min_out,
        uses_prior_output=uses_prior_output,
        label=label,
    )


class Strategy(ABC):
    """Capabilities of one strategy kind."""

    kind: StrategyKind
    subject_type: Type = object

    def __init__(self, config: StrategyConfig):
        if config.kind != self.kind:
            raise ValueError(f"{type(self).__name__} cannot use a {config.kind.value} configuration")
        self.config = config

    @property
    def competitive(self) -> bool:
        """Whether this strategy races others for the same subject."""
        return self.kind in COMPETITIVE_KINDS

    @property
    def fee_premium_bps(self) -> int:
        return self.config.fee_premium_bps if self.competitive else 0

    def supports(self, opportunity: Opportunity) -> bool:
        return opportunity.strategy_kind == self.kind and isinstance(opportunity.subject, self.subject_type)

    @abstractmethod
    def build_steps(self, opportunity: Opportunity, context: BuildContext) -> List[PlanStep]:
        """Trade steps of the plan, without any funding steps."""

    def ordering_constraint(self, opportunity: Opportunity) -> OrderingConstraint:
        return OrderingConstraint.EITHER

    def funding_requirement(self, opportunity: Opportunity) -> Optional[Tuple[str, int]]:
        """(asset, amount) to flash-borrow, or None when self funded."""
        return None

    async def subject_alive(self, client: ChainClient, opportunity: Opportunity) -> bool:
        """Re-check, right before submission, that the subject still exists."""
        subject = opportunity.subject
        if isinstance(subject, PendingTxSubject):
            return await client.is_transaction_pending(subject.tx_hash)
        return True

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.kind.value})"
