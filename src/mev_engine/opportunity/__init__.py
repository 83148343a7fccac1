"""
Opportunity Models.

Shared data types for candidates, execution plans, attempts and outcomes.
"""
from .models import (
    UINT256_MAX,
    Attempt,
    AttemptOutcome,
    BorrowerSubject,
    COMPETITIVE_KINDS,
    ExecutionPlan,
    ExecutionResult,
    FeeBid,
    FundingSpec,
    Opportunity,
    OrderingConstraint,
    PendingTxSubject,
    PlanOutcome,
    PlanState,
    PlanStep,
    PriceTargetSubject,
    RouteSubject,
    StrategyKind,
    Subject,
    TokenPairSubject,
    check_uint256,
    saturating_sub,
)

__all__ = [
    # Primitives
    "UINT256_MAX",
    "check_uint256",
    "saturating_sub",

    # Candidates
    "StrategyKind",
    "COMPETITIVE_KINDS",
    "Opportunity",
    "Subject",
    "TokenPairSubject",
    "RouteSubject",
    "PendingTxSubject",
    "BorrowerSubject",
    "PriceTargetSubject",

    # Plans
    "PlanStep",
    "FundingSpec",
    "OrderingConstraint",
    "ExecutionPlan",

    # Attempts and outcomes
    "FeeBid",
    "Attempt",
    "AttemptOutcome",
    "PlanState",
    "PlanOutcome",
    "ExecutionResult",
]
