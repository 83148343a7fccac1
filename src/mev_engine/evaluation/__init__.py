"""Profitability scoring and cost estimation."""
from .cost_model import CostBreakdown, estimate_cost, slippage_allowance
from .evaluator import Accept, Evaluation, ProfitabilityEvaluator, Reject, RejectReason

__all__ = [
    "CostBreakdown",
    "estimate_cost",
    "slippage_allowance",
    "Accept",
    "Reject",
    "RejectReason",
    "Evaluation",
    "ProfitabilityEvaluator",
]
