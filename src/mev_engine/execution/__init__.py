"""Atomic plan submission with bounded retry."""
from .orchestrator import ExecutionOrchestrator
from .plan_encoder import PlanEncoder, encode_step
from .retry import RetryPolicy

__all__ = [
    "ExecutionOrchestrator",
    "PlanEncoder",
    "encode_step",
    "RetryPolicy",
]
