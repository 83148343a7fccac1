"""Outcome event records."""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..opportunity.models import ExecutionResult, PlanOutcome, StrategyKind


@dataclass(frozen=True)
class OutcomeEvent:
    """Terminal result of one plan as seen by the outside world."""
    plan_id: str
    strategy_kind: StrategyKind
    outcome: PlanOutcome
    realized_profit_or_loss: int
    attempt_count: int
    detected_at: float
    accepted_at: float
    started_at: float
    finished_at: float
    cumulative_profit: int
    reason: Optional[str] = None
    subject_key: str = ""

    @classmethod
    def from_result(cls, result: ExecutionResult, cumulative_profit: int) -> "OutcomeEvent":
        plan = result.plan
        return cls(
            plan_id=plan.plan_id,
            strategy_kind=plan.strategy_kind,
            outcome=result.outcome,
            realized_profit_or_loss=result.realized_profit,
            attempt_count=result.attempt_count,
            detected_at=plan.opportunity.detected_at,
            accepted_at=plan.accepted_at,
            started_at=result.started_at,
            finished_at=result.finished_at,
            cumulative_profit=cumulative_profit,
            reason=result.reason,
            subject_key=plan.opportunity.subject_key,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "strategy_kind": self.strategy_kind.value,
            "outcome": self.outcome.value,
            # Stringified: wei amounts overflow JSON number precision
            "realized_profit_or_loss": str(self.realized_profit_or_loss),
            "attempt_count": self.attempt_count,
            "timestamps": {
                "detected_at": self.detected_at,
                "accepted_at": self.accepted_at,
                "started_at": self.started_at,
                "finished_at": self.finished_at,
            },
            "cumulative_profit": str(self.cumulative_profit),
            "reason": self.reason,
            "subject_key": self.subject_key,
        }
