"""
Opportunity and execution plan data models.

Candidates flow from scanners to the evaluator as immutable Opportunity
records. Accepted candidates are promoted to ExecutionPlan objects which the
orchestrator drives through Attempts until a terminal PlanOutcome is reached.
All settlement amounts are integers in the asset's smallest unit.
"""
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

UINT256_MAX = 2 ** 256 - 1


def check_uint256(name: str, value: int) -> None:
    """Raise ValueError unless value is an unsigned 256-bit integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"{name} out of uint256 range: {value}")


def saturating_sub(a: int, b: int) -> int:
    """Subtract clamping at zero."""
    return a - b if a > b else 0


class StrategyKind(str, Enum):
    """Families of opportunities the engine trades."""
    CROSS_VENUE_ARBITRAGE = "cross_venue_arbitrage"
    FLASH_ARBITRAGE = "flash_arbitrage"
    FRONT_RUNNING = "front_running"
    LIQUIDATION = "liquidation"
    SANDWICH = "sandwich"
    LATENCY_TRADE = "latency_trade"


COMPETITIVE_KINDS = frozenset({StrategyKind.FRONT_RUNNING, StrategyKind.SANDWICH})


class OrderingConstraint(str, Enum):
    """Where a plan must land relative to its subject transaction."""
    BEFORE_SUBJECT = "before_subject"
    AFTER_SUBJECT = "after_subject"
    EITHER = "either"


# Subjects -----------------------------------------------------------------

@dataclass(frozen=True)
class TokenPairSubject:
    """Price divergence of one token pair across two venues."""
    token_in: str
    token_out: str
    amount_in: int
    buy_router: str
    sell_router: str
    quoted_intermediate: int
    quoted_out: int

    @property
    def key(self) -> str:
        return f"pair:{self.token_in.lower()}:{self.token_out.lower()}"


@dataclass(frozen=True)
class RouteSubject:
    """Cyclic multi-hop route starting and ending in the borrowed asset."""
    tokens: Tuple[str, ...]
    routers: Tuple[str, ...]
    amount_in: int
    quoted_amounts: Tuple[int, ...]

    @property
    def start_token(self) -> str:
        return self.tokens[0]

    @property
    def key(self) -> str:
        return "route:" + ">".join(t.lower() for t in self.tokens)


@dataclass(frozen=True)
class PendingTxSubject:
    """A pending transaction observed in the mempool."""
    tx_hash: str
    sender: str
    to: str
    value: int
    router: Optional[str] = None
    path: Tuple[str, ...] = ()
    amount_in: int = 0
    amount_out_min: int = 0
    gas_price: int = 0
    trade_amount: int = 0
    expected_out: int = 0

    @property
    def key(self) -> str:
        return f"tx:{self.tx_hash.lower()}"


@dataclass(frozen=True)
class BorrowerSubject:
    """An undercollateralized position on a lending pool."""
    borrower: str
    collateral_asset: str
    debt_asset: str
    debt_to_cover: int
    health_factor: int

    @property
    def key(self) -> str:
        return f"borrower:{self.borrower.lower()}:{self.debt_asset.lower()}"


@dataclass(frozen=True)
class PriceTargetSubject:
    """An asset quoted below a configured target price."""
    asset: str
    quote_asset: str
    router: str
    target_price: int
    observed_price: int
    amount_in: int
    quoted_out: int
    exit_router: Optional[str] = None

    @property
    def key(self) -> str:
        return f"target:{self.asset.lower()}:{self.target_price}"


Subject = Union[TokenPairSubject, RouteSubject, PendingTxSubject, BorrowerSubject, PriceTargetSubject]


@dataclass(frozen=True)
class Opportunity:
    """A candidate emitted by a scanner. Never mutated after creation."""
    strategy_kind: StrategyKind
    subject: Subject
    observed_at_block: int
    expected_gross_gain: int
    estimated_cost: int
    opportunity_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    detected_at: float = field(default_factory=time.time)

    def __post_init__(self):
        check_uint256("observed_at_block", self.observed_at_block)
        check_uint256("expected_gross_gain", self.expected_gross_gain)
        check_uint256("estimated_cost", self.estimated_cost)

    @property
    def net_gain(self) -> int:
        """Gain left after costs, clamped at zero."""
        return saturating_sub(self.expected_gross_gain, self.estimated_cost)

    @property
    def subject_key(self) -> str:
        return f"{self.strategy_kind.value}:{self.subject.key}"


# Plans ----------------------------------------------------------------------

@dataclass(frozen=True)
class PlanStep:
    """One contract call inside an atomic plan."""
    target: str
    selector: bytes
    arg_types: Tuple[str, ...]
    args: Tuple[Any, ...]
    min_output: int = 0
    uses_prior_output: bool = False
    label: str = ""

    def __post_init__(self):
        if len(self.selector) != 4:
            raise ValueError(f"selector must be 4 bytes, got {len(self.selector)}")
        if len(self.arg_types) != len(self.args):
            raise ValueError("arg_types and args length mismatch")
        check_uint256("min_output", self.min_output)


@dataclass(frozen=True)
class FundingSpec:
    """Transient capital borrowed and repaid inside the plan."""
    asset: str
    amount: int
    fee: int
    lending_pool: str

    @property
    def repay_amount(self) -> int:
        return self.amount + self.fee


@dataclass(frozen=True)
class ExecutionPlan:
    """An atomic, all-or-nothing sequence of calls submitted as one transaction."""
    plan_id: str
    opportunity: Opportunity
    steps: Tuple[PlanStep, ...]
    ordering_constraint: OrderingConstraint
    deadline_block: int
    funding: Optional[FundingSpec] = None
    gas_limit: int = 1_000_000
    funding_account: Optional[str] = None
    accepted_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.steps:
            raise ValueError("execution plan needs at least one step")
        check_uint256("deadline_block", self.deadline_block)

    @property
    def strategy_kind(self) -> StrategyKind:
        return self.opportunity.strategy_kind

    @property
    def expected_net_profit(self) -> int:
        return self.opportunity.net_gain


# Attempts and outcomes --------------------------------------------------------

@dataclass(frozen=True)
class FeeBid:
    """EIP-1559 fee parameters of one submission."""
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def __post_init__(self):
        check_uint256("max_fee_per_gas", self.max_fee_per_gas)
        check_uint256("max_priority_fee_per_gas", self.max_priority_fee_per_gas)
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("priority fee cannot exceed max fee")

    def __ge__(self, other: "FeeBid") -> bool:
        return (
            self.max_fee_per_gas >= other.max_fee_per_gas
            and self.max_priority_fee_per_gas >= other.max_priority_fee_per_gas
        )


class AttemptOutcome(str, Enum):
    """Result of one submission of a plan."""
    PENDING = "pending"
    CONFIRMED_SUCCESS = "confirmed_success"
    CONFIRMED_REVERTED = "confirmed_reverted"
    DROPPED = "dropped"
    ERROR = "error"


@dataclass
class Attempt:
    """One submission of a plan. Terminal once its outcome leaves PENDING."""
    attempt_number: int
    fee_bid: Optional[FeeBid]
    nonce: Optional[int] = None
    submitted_at: float = field(default_factory=time.time)
    submitted_at_block: Optional[int] = None
    tx_hash: Optional[str] = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    error: Optional[str] = None
    gas_used: int = 0
    effective_gas_price: int = 0
    resolved_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome != AttemptOutcome.PENDING

    @property
    def gas_paid(self) -> int:
        return self.gas_used * self.effective_gas_price

    def resolve(self, outcome: AttemptOutcome, error: Optional[str] = None) -> None:
        """Move the attempt to a terminal outcome exactly once."""
        if self.is_terminal:
            raise RuntimeError(
                f"attempt {self.attempt_number} already resolved as {self.outcome.value}"
            )
        if outcome == AttemptOutcome.PENDING:
            raise ValueError("cannot resolve an attempt to pending")
        self.outcome = outcome
        self.error = error
        self.resolved_at = time.time()


class PlanState(str, Enum):
    """Lifecycle states of a plan inside the orchestrator."""
    ACCEPTED = "accepted"
    SIMULATING = "simulating"
    SUBMITTING = "submitting"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    EXPIRED = "expired"
    ABANDONED = "abandoned"
    RETRIES_EXCEEDED = "retries_exceeded"


class PlanOutcome(str, Enum):
    """Terminal outcome reported for a plan."""
    CONFIRMED_SUCCESS = "confirmed_success"
    CONFIRMED_REVERTED = "confirmed_reverted"
    EXPIRED = "expired"
    ABANDONED = "abandoned"
    RETRIES_EXCEEDED = "retries_exceeded"


TERMINAL_STATES = {
    PlanOutcome.CONFIRMED_SUCCESS: PlanState.CONFIRMED,
    PlanOutcome.CONFIRMED_REVERTED: PlanState.REVERTED,
    PlanOutcome.EXPIRED: PlanState.EXPIRED,
    PlanOutcome.ABANDONED: PlanState.ABANDONED,
    PlanOutcome.RETRIES_EXCEEDED: PlanState.RETRIES_EXCEEDED,
}


@dataclass
class ExecutionResult:
    """Everything known about a plan once it reaches a terminal outcome."""
    plan: ExecutionPlan
    state: PlanState = PlanState.ACCEPTED
    outcome: Optional[PlanOutcome] = None
    attempts: List[Attempt] = field(default_factory=list)
    realized_profit: int = 0
    reason: Optional[str] = None
    error: Optional[Exception] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def gas_paid(self) -> int:
        return sum(a.gas_paid for a in self.attempts)

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None

    def finish(
        self,
        outcome: PlanOutcome,
        reason: Optional[str] = None,
        realized_profit: int = 0,
        error: Optional[Exception] = None,
    ) -> None:
        """Record the terminal outcome. A result finishes only once."""
        if self.is_terminal:
            raise RuntimeError(f"plan {self.plan.plan_id} already finished as {self.outcome.value}")
        self.outcome = outcome
        self.state = TERMINAL_STATES[outcome]
        self.reason = reason
        self.realized_profit = realized_profit
        self.error = error
        self.finished_at = time.time()
