"""
Error taxonomy for the opportunity detection and execution engine.

Every failure the engine can observe maps onto one of these classes. Callers
decide what is fatal (configuration, lost connectivity), what is retried
(transient network failures) and what simply terminates a single plan.
"""
from typing import Optional


class MEVEngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, strategy: Optional[str] = None):
        """
        Initialize engine error.

        Args:
            message: Error message
            strategy: Strategy kind the error relates to, if any
        """
        self.strategy = strategy
        super().__init__(message)

    def __str__(self) -> str:
        """String representation of the error."""
        base_msg = super().__str__()
        if self.strategy:
            return f"[{self.strategy}] {base_msg}"
        return base_msg


class ConfigurationError(MEVEngineError):
    """Strategy or process configuration is malformed. Fatal before start."""


class PlanConstructionError(MEVEngineError):
    """An execution plan cannot be built for a candidate."""


class TransientNetworkError(MEVEngineError):
    """A chain read or write failed for a reason that may clear on retry."""

    def __init__(self, message: str, operation: Optional[str] = None, strategy: Optional[str] = None):
        self.operation = operation
        super().__init__(message, strategy)

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.operation:
            return f"{base_msg} (during {self.operation})"
        return base_msg


class ChainConnectivityLost(MEVEngineError):
    """Chain access has failed repeatedly and is considered unrecoverable."""

    def __init__(self, message: str, consecutive_failures: int = 0):
        self.consecutive_failures = consecutive_failures
        super().__init__(message)


class SimulationRevert(MEVEngineError):
    """Dry-run of a plan reverted."""

    def __init__(self, message: str, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class OnChainRevert(MEVEngineError):
    """A submitted transaction was mined but reverted."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, gas_paid: int = 0):
        self.tx_hash = tx_hash
        self.gas_paid = gas_paid
        super().__init__(message)


class StaleOpportunity(MEVEngineError):
    """A candidate or plan has outlived the block window it was valid for."""


class SubjectGone(MEVEngineError):
    """The pending transaction a plan depends on is no longer pending."""


class RetriesExceeded(MEVEngineError):
    """The retry budget for a plan was used up without a confirmed outcome."""

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class TransactionRejected(MEVEngineError):
    """The node refused a signed transaction (nonce too low, underpriced replacement, ...)."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)

    @property
    def nonce_too_low(self) -> bool:
        text = str(self).lower()
        return "nonce too low" in text or "already known" in text

    @property
    def underpriced(self) -> bool:
        return "underpriced" in str(self).lower()
