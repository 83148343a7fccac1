"""
Profitability Evaluator.

Pure scoring of a candidate: checks freshness, strategy support and net
profit, then builds the execution plan. evaluate() never raises; every
problem becomes a Reject with a reason.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Union

from ..capital.provider import CapitalProvider
from ..errors import PlanConstructionError
from ..opportunity.models import ExecutionPlan, Opportunity, StrategyKind, saturating_sub
from ..strategies.base import BuildContext, Strategy

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    """Why a candidate was not promoted to a plan."""
    UNPROFITABLE = "unprofitable"
    STALE = "stale"
    UNSUPPORTED_SUBJECT = "unsupported_subject"


@dataclass(frozen=True)
class Accept:
    plan: ExecutionPlan

    @property
    def accepted(self) -> bool:
        return True


@dataclass(frozen=True)
class Reject:
    reason: RejectReason
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return False


Evaluation = Union[Accept, Reject]


class ProfitabilityEvaluator:
    """Turns candidates into plans or rejections."""

    def __init__(
        self,
        strategies: Mapping[StrategyKind, Strategy],
        capital_provider: CapitalProvider,
        executor: str,
        funding_account: Optional[str] = None,
        swap_deadline_seconds: int = 120,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize evaluator.

        Args:
            strategies: Strategy capabilities by kind
            capital_provider: Flash-borrow wrapping for funded plans
            executor: Executor contract receiving swap outputs
            funding_account: Account that signs plans unless a strategy names its own
            swap_deadline_seconds: Router deadline offset from now
            clock: Time source for router deadlines
        """
        self.strategies = dict(strategies)
        self.capital_provider = capital_provider
        self.executor = executor
        self.funding_account = funding_account
        self.swap_deadline_seconds = swap_deadline_seconds
        self.clock = clock

        self.stats: Dict[str, int] = {
            "evaluated": 0,
            "accepted": 0,
            **{f"rejected_{reason.value}": 0 for reason in RejectReason},
        }

    def evaluate(self, opportunity: Opportunity, current_block: int) -> Evaluation:
        """Accept with a plan, or Reject with a reason. Never raises."""
        self.stats["evaluated"] += 1
        try:
            result = self._evaluate(opportunity, current_block)
        except Exception as e:
            logger.exception(f"Unexpected error evaluating {opportunity.opportunity_id}: {e}")
            result = Reject(RejectReason.UNSUPPORTED_SUBJECT, f"evaluation error: {e}")

        if isinstance(result, Accept):
            self.stats["accepted"] += 1
            logger.info(
                f"Accepted {opportunity.strategy_kind.value} opportunity {opportunity.opportunity_id} "
                f"as plan {result.plan.plan_id}: gain {opportunity.expected_gross_gain} "
                f"cost {opportunity.estimated_cost}"
            )
        else:
            self.stats[f"rejected_{result.reason.value}"] += 1
            logger.debug(
                f"Rejected {opportunity.strategy_kind.value} opportunity {opportunity.opportunity_id}: "
                f"{result.reason.value} {result.detail}".rstrip()
            )
        return result

    def _evaluate(self, opportunity: Opportunity, current_block: int) -> Evaluation:
        strategy = self.strategies.get(opportunity.strategy_kind)
        if strategy is None:
            return Reject(RejectReason.UNSUPPORTED_SUBJECT, f"no strategy for {opportunity.strategy_kind.value}")
        config = strategy.config

        age = saturating_sub(current_block, opportunity.observed_at_block)
        if age > config.max_staleness_blocks:
            return Reject(RejectReason.STALE, f"observed {age} blocks ago")

        deadline_block = opportunity.observed_at_block + config.deadline_blocks
        if current_block > deadline_block:
            return Reject(RejectReason.STALE, f"deadline block {deadline_block} already passed")

        if not strategy.supports(opportunity):
            return Reject(RejectReason.UNSUPPORTED_SUBJECT, f"{strategy} cannot trade this subject")

        net = saturating_sub(opportunity.expected_gross_gain, opportunity.estimated_cost)
        if net <= config.min_profit_wei:
            return Reject(
                RejectReason.UNPROFITABLE,
                f"gain {opportunity.expected_gross_gain} cost {opportunity.estimated_cost}",
            )

        try:
            plan = self._build_plan(strategy, opportunity, current_block, deadline_block)
        except PlanConstructionError as e:
            return Reject(RejectReason.UNSUPPORTED_SUBJECT, str(e))
        return Accept(plan)

    def _build_plan(
        self, strategy: Strategy, opportunity: Opportunity, current_block: int, deadline_block: int
    ) -> ExecutionPlan:
        requirement = strategy.funding_requirement(opportunity)
        borrow_fee = 0
        if requirement is not None:
            asset, amount = requirement
            borrow_fee = self.capital_provider.flash_fee(asset, amount)

        context = BuildContext(
            executor=self.executor,
            current_block=current_block,
            swap_deadline=int(self.clock()) + self.swap_deadline_seconds,
            borrow_fee=borrow_fee,
        )
        steps = tuple(strategy.build_steps(opportunity, context))
        if not steps:
            raise PlanConstructionError(f"{strategy} produced no steps")

        funding = None
        if requirement is not None:
            asset, amount = requirement
            steps, funding = self.capital_provider.wrap(steps, asset, amount)

        return ExecutionPlan(
            plan_id=uuid.uuid4().hex,
            opportunity=opportunity,
            steps=steps,
            ordering_constraint=strategy.ordering_constraint(opportunity),
            deadline_block=deadline_block,
            funding=funding,
            gas_limit=strategy.config.gas_limit,
            funding_account=strategy.config.funding_account or self.funding_account,
        )
