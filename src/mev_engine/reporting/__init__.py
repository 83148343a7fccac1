"""Outcome reporting and the profit ledger."""
from .events import OutcomeEvent
from .ledger import ProfitLedger
from .reporter import OutcomeReporter
from .sinks import LoggingSink, OutcomeSink, RedisSink, WebhookSink

__all__ = [
    "OutcomeEvent",
    "ProfitLedger",
    "OutcomeReporter",
    "OutcomeSink",
    "LoggingSink",
    "WebhookSink",
    "RedisSink",
]
