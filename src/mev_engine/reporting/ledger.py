"""Cumulative profit and loss counter."""
import asyncio
from collections import defaultdict
from typing import Any, Dict

from ..opportunity.models import ExecutionResult, PlanOutcome, StrategyKind


class ProfitLedger:
    """Single point of mutation for realized profit and loss."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._cumulative = 0
        self._gas_paid = 0
        self._by_strategy: Dict[StrategyKind, int] = defaultdict(int)
        self._outcomes: Dict[PlanOutcome, int] = defaultdict(int)

    @property
    def cumulative(self) -> int:
        return self._cumulative

    async def record(self, result: ExecutionResult) -> int:
        """Apply a terminal result and return the new cumulative total."""
        if not result.is_terminal:
            raise ValueError(f"plan {result.plan.plan_id} has no terminal outcome yet")
        async with self._lock:
            self._cumulative += result.realized_profit
            self._gas_paid += result.gas_paid
            self._by_strategy[result.plan.strategy_kind] += result.realized_profit
            self._outcomes[result.outcome] += 1
            return self._cumulative

    def snapshot(self) -> Dict[str, Any]:
        return {
            "cumulative_profit": self._cumulative,
            "gas_paid": self._gas_paid,
            "by_strategy": {kind.value: value for kind, value in self._by_strategy.items()},
            "outcomes": {outcome.value: count for outcome, count in self._outcomes.items()},
        }
