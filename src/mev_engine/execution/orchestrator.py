"""
Execution Orchestrator.

Drives one accepted plan through

    Simulating -> Submitting -> Pending -> {Confirmed, Reverted, Expired, Abandoned}

with RetriesExceeded as an extra terminal report once the retry budget is
spent before anything was broadcast. Broadcast transactions are watched
until one is mined or the deadline passes, whatever the budget. Plans run
concurrently; plans that share a funding account take turns on that account
in the order they were accepted. Every plan ends with exactly one call to the
outcome reporter.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from ..chain.client import ChainClient, TransactionReceipt
from ..chain.fee_market import FeeMarket
from ..chain.nonce_manager import NonceManager, SequencerRegistry
from ..errors import (
    ChainConnectivityLost,
    OnChainRevert,
    RetriesExceeded,
    SimulationRevert,
    StaleOpportunity,
    SubjectGone,
    TransactionRejected,
    TransientNetworkError,
)
from ..opportunity.models import (
    Attempt,
    AttemptOutcome,
    ExecutionPlan,
    ExecutionResult,
    FeeBid,
    PlanOutcome,
    PlanState,
    StrategyKind,
)
from ..reporting.ledger import ProfitLedger
from ..reporting.reporter import OutcomeReporter
from ..strategies.base import Strategy
from .plan_encoder import PlanEncoder
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class _InclusionTimeout(Exception):
    """Attempt not mined within its inclusion window."""


class _DeadlinePassed(Exception):
    """Chain moved past the plan's deadline block."""


class ExecutionOrchestrator:
    """Generic retrying executor shared by every strategy."""

    def __init__(
        self,
        client: ChainClient,
        fee_market: FeeMarket,
        encoder: PlanEncoder,
        sequencers: SequencerRegistry,
        strategies: Mapping[StrategyKind, Strategy],
        ledger: ProfitLedger,
        reporter: OutcomeReporter,
        default_funding_account: Optional[str] = None,
        receipt_poll_interval: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            client: Chain access
            fee_market: Shared fee estimate, read only here
            encoder: Turns plans into executor transactions
            sequencers: Per-account submission order and nonces
            strategies: Strategy capabilities by kind
            ledger: Profit counter, updated once per terminal plan
            reporter: Receives every terminal ExecutionResult once
            default_funding_account: Signer for plans that do not name one
            receipt_poll_interval: Seconds between receipt polls
            sleep: Awaitable sleep, replaceable in tests
        """
        self.client = client
        self.fee_market = fee_market
        self.encoder = encoder
        self.sequencers = sequencers
        self.strategies = dict(strategies)
        self.ledger = ledger
        self.reporter = reporter
        self.default_funding_account = default_funding_account
        self.receipt_poll_interval = receipt_poll_interval
        self._sleep = sleep

        self.stats: Dict[str, int] = {
            "plans_started": 0,
            "attempts_submitted": 0,
            **{f"outcome_{outcome.value}": 0 for outcome in PlanOutcome},
        }

    def _account_for(self, plan: ExecutionPlan) -> str:
        account = plan.funding_account or self.default_funding_account
        if account is None:
            raise ValueError(f"Plan {plan.plan_id} has no funding account")
        return account

    def accept(self, plan: ExecutionPlan) -> int:
        """Reserve the plan's place in its funding account's submission order."""
        return self.sequencers.for_account(self._account_for(plan)).issue()

    def release(self, plan: ExecutionPlan, ticket: int) -> None:
        """Give up a ticket issued by accept() without executing the plan."""
        self.sequencers.for_account(self._account_for(plan)).release(ticket)

    async def report_abandoned(self, plan: ExecutionPlan, reason: str) -> ExecutionResult:
        """Terminal report for an accepted plan that never started executing."""
        result = ExecutionResult(plan=plan)
        result.finish(PlanOutcome.ABANDONED, reason)
        self.stats[f"outcome_{result.outcome.value}"] += 1
        await self.ledger.record(result)
        await self.reporter.report(result)
        return result

    async def execute(self, plan: ExecutionPlan, ticket: Optional[int] = None) -> ExecutionResult:
        """Run a plan to a terminal outcome and report it."""
        account = self._account_for(plan)
        sequencer = self.sequencers.for_account(account)
        if ticket is None:
            ticket = sequencer.issue()

        result = ExecutionResult(plan=plan)
        self.stats["plans_started"] += 1
        try:
            strategy = self.strategies[plan.strategy_kind]
            policy = RetryPolicy.from_config(strategy.config)
            await self._run(plan, result, strategy, policy, account, sequencer, ticket)
        except asyncio.CancelledError:
            if not result.is_terminal:
                result.finish(PlanOutcome.ABANDONED, "cancelled")
            raise
        except ChainConnectivityLost as e:
            if not result.is_terminal:
                result.finish(PlanOutcome.ABANDONED, f"chain connectivity lost: {e}", error=e)
            raise
        except Exception as e:
            logger.exception(f"Plan {plan.plan_id} failed unexpectedly: {e}")
            if not result.is_terminal:
                result.finish(PlanOutcome.ABANDONED, f"unexpected error: {e}", error=e)
        finally:
            sequencer.release(ticket)
            if result.is_terminal:
                self.stats[f"outcome_{result.outcome.value}"] += 1
                await self.ledger.record(result)
                await self.reporter.report(result)

        return result

    async def _run(
        self,
        plan: ExecutionPlan,
        result: ExecutionResult,
        strategy: Strategy,
        policy: RetryPolicy,
        account: str,
        sequencer,
        ticket: int,
    ) -> None:
        result.state = PlanState.SIMULATING
        simulated = await self._simulate(plan, result, policy, account)
        if not simulated:
            return

        async with sequencer.turn(ticket) as nonces:
            await self._submit_until_terminal(plan, result, strategy, policy, account, nonces)

    async def _simulate(self, plan: ExecutionPlan, result: ExecutionResult, policy: RetryPolicy, account: str) -> bool:
        """Dry-run the plan. Returns False once the result is terminal."""
        call = self.encoder.build_call(plan, account)
        for failure_index in range(policy.max_retries):
            try:
                gas_estimate = await self.client.simulate(call)
                logger.debug(f"Plan {plan.plan_id} simulated, gas estimate {gas_estimate}")
                return True
            except SimulationRevert as e:
                logger.info(f"Plan {plan.plan_id} abandoned: simulation reverted ({e.reason or e})")
                result.finish(PlanOutcome.ABANDONED, f"simulation reverted: {e.reason or e}", error=e)
                return False
            except TransientNetworkError as e:
                delay = policy.delay_for(failure_index)
                logger.warning(
                    f"Simulation of plan {plan.plan_id} failed: {e}, "
                    f"attempt {failure_index + 1}/{policy.max_retries}, retrying in {delay}s"
                )
                await self._sleep(delay)

        self._give_up(plan, result, policy)
        return False

    async def _submit_until_terminal(
        self,
        plan: ExecutionPlan,
        result: ExecutionResult,
        strategy: Strategy,
        policy: RetryPolicy,
        account: str,
        nonces: NonceManager,
    ) -> None:
        config = strategy.config
        nonce: Optional[int] = None
        bid: Optional[FeeBid] = None
        failures = 0

        while failures < policy.max_retries:
            attempt: Optional[Attempt] = None
            try:
                # An earlier broadcast may have landed while this loop was backing off
                receipt = await self._find_receipt(result)
                if receipt is not None:
                    self._settle(plan, result, receipt, nonces)
                    return

                current_block = await self.client.get_block_number()
                if current_block > plan.deadline_block:
                    self._drop_pending(result, "deadline passed while pending")
                    self._expire(plan, result, current_block)
                    nonces.resync()
                    return

                if not await strategy.subject_alive(self.client, plan.opportunity):
                    if self._broadcast(result):
                        logger.info(f"Plan {plan.plan_id}: subject no longer pending, watching broadcast transactions")
                        await self._watch_broadcast(plan, result, nonces)
                        return
                    logger.info(f"Plan {plan.plan_id} abandoned: subject no longer pending")
                    result.finish(
                        PlanOutcome.ABANDONED,
                        "subject no longer pending",
                        error=SubjectGone(f"Subject of plan {plan.plan_id} left the mempool", plan.strategy_kind.value),
                    )
                    if nonce is not None:
                        nonces.resync()
                    return

                result.state = PlanState.SUBMITTING
                if bid is None:
                    bid = await self.fee_market.initial_bid(strategy.fee_premium_bps, config.max_fee_per_gas_wei)
                else:
                    bid = await self.fee_market.bump(
                        bid, config.fee_bump_bps, strategy.fee_premium_bps, config.max_fee_per_gas_wei
                    )
                if nonce is None:
                    nonce = await nonces.get_next_nonce()

                attempt = Attempt(
                    attempt_number=len(result.attempts) + 1,
                    fee_bid=bid,
                    nonce=nonce,
                    submitted_at_block=current_block,
                )
                result.attempts.append(attempt)

                tx = self.encoder.build_transaction(plan, account, nonce, bid)
                attempt.tx_hash = await self.client.send_transaction(tx)
                attempt.submitted_at = time.time()
                self.stats["attempts_submitted"] += 1
                result.state = PlanState.PENDING
                logger.info(
                    f"Plan {plan.plan_id} attempt {attempt.attempt_number} submitted as {attempt.tx_hash} "
                    f"(nonce {nonce}, max fee {bid.max_fee_per_gas}, priority {bid.max_priority_fee_per_gas})"
                )

                receipt = await self._await_inclusion(plan, result, current_block, config.inclusion_timeout_blocks)

            except (TransientNetworkError, TransactionRejected) as e:
                if attempt is not None and not attempt.is_terminal:
                    attempt.resolve(AttemptOutcome.ERROR, str(e))
                if isinstance(e, TransactionRejected) and e.nonce_too_low and not self._broadcast(result):
                    # Something outside this plan used the nonce
                    nonces.resync()
                    nonce = None
                delay = policy.delay_for(failures)
                failures += 1
                logger.warning(
                    f"Plan {plan.plan_id} submission failed: {e}, "
                    f"attempt {failures}/{policy.max_retries}, retrying in {delay}s"
                )
                await self._sleep(delay)
                continue

            except _DeadlinePassed:
                self._drop_pending(result, "deadline passed while pending")
                self._expire(plan, result, plan.deadline_block + 1)
                nonces.resync()
                return

            except _InclusionTimeout:
                # The attempt stays broadcast and watched; the next one replaces it at the same nonce
                logger.warning(
                    f"Plan {plan.plan_id} attempt {attempt.attempt_number} not included within "
                    f"{config.inclusion_timeout_blocks} block(s), bumping fee"
                )
                continue

            self._settle(plan, result, receipt, nonces)
            return

        if self._broadcast(result):
            # Retries are spent but earlier transactions can still land before the deadline
            logger.warning(
                f"Plan {plan.plan_id} out of retries with {len(self._broadcast(result))} transaction(s) "
                f"broadcast, watching them until block {plan.deadline_block}"
            )
            await self._watch_broadcast(plan, result, nonces)
            return

        if nonce is not None:
            nonces.resync()
        self._give_up(plan, result, policy)

    async def _watch_broadcast(self, plan: ExecutionPlan, result: ExecutionResult, nonces: NonceManager) -> None:
        """Stop bidding and wait for a broadcast transaction to land before the deadline."""
        try:
            receipt = await self._await_inclusion(plan, result, plan.deadline_block, None)
        except _DeadlinePassed:
            self._drop_pending(result, "deadline passed while pending")
            self._expire(plan, result, plan.deadline_block + 1)
            nonces.resync()
            return
        self._settle(plan, result, receipt, nonces)

    @staticmethod
    def _broadcast(result: ExecutionResult) -> List[str]:
        """Hashes of every attempt the node accepted, newest first."""
        return [a.tx_hash for a in reversed(result.attempts) if a.tx_hash]

    async def _find_receipt(self, result: ExecutionResult) -> Optional[TransactionReceipt]:
        for tx_hash in self._broadcast(result):
            receipt = await self.client.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
        return None

    @staticmethod
    def _drop_pending(result: ExecutionResult, reason: str) -> None:
        for attempt in result.attempts:
            if not attempt.is_terminal:
                attempt.resolve(AttemptOutcome.DROPPED, reason)

    async def _await_inclusion(
        self,
        plan: ExecutionPlan,
        result: ExecutionResult,
        submitted_block: int,
        inclusion_timeout_blocks: Optional[int],
    ) -> TransactionReceipt:
        """Poll until any attempt's transaction is mined, the window closes or the deadline passes."""
        while True:
            try:
                receipt = await self._find_receipt(result)
                if receipt is not None:
                    return receipt
                current_block = await self.client.get_block_number()
            except TransientNetworkError as e:
                # The transaction is already broadcast; keep watching it
                logger.warning(f"Receipt poll for plan {plan.plan_id} failed: {e}")
                await self._sleep(self.receipt_poll_interval)
                continue

            if current_block > plan.deadline_block:
                raise _DeadlinePassed()
            if inclusion_timeout_blocks is not None and current_block >= submitted_block + inclusion_timeout_blocks:
                raise _InclusionTimeout()
            await self._sleep(self.receipt_poll_interval)

    def _settle(self, plan: ExecutionPlan, result: ExecutionResult, receipt: TransactionReceipt,
                nonces: NonceManager) -> None:
        """Record a mined transaction as the plan's outcome."""
        mined = next((a for a in result.attempts if a.tx_hash == receipt.tx_hash), result.attempts[-1])
        mined.gas_used = receipt.gas_used
        mined.effective_gas_price = receipt.effective_gas_price
        if mined.nonce is not None:
            nonces.consume(mined.nonce)

        # A replaced attempt can still be the one that lands
        for attempt in result.attempts:
            if attempt is not mined and not attempt.is_terminal:
                attempt.resolve(AttemptOutcome.DROPPED, f"replaced by {receipt.tx_hash}")

        if receipt.succeeded:
            if not mined.is_terminal:
                mined.resolve(AttemptOutcome.CONFIRMED_SUCCESS)
            profit = plan.opportunity.expected_gross_gain - plan.opportunity.estimated_cost
            logger.info(
                f"Plan {plan.plan_id} confirmed in block {receipt.block_number} "
                f"after {result.attempt_count} attempt(s), realized {profit}"
            )
            result.finish(PlanOutcome.CONFIRMED_SUCCESS, realized_profit=profit)
        else:
            if not mined.is_terminal:
                mined.resolve(AttemptOutcome.CONFIRMED_REVERTED, "reverted on chain")
            loss = -mined.gas_paid
            logger.warning(
                f"Plan {plan.plan_id} reverted on chain in block {receipt.block_number}, gas lost {mined.gas_paid}"
            )
            result.finish(
                PlanOutcome.CONFIRMED_REVERTED,
                "reverted on chain",
                realized_profit=loss,
                error=OnChainRevert(f"Plan {plan.plan_id} reverted", tx_hash=receipt.tx_hash, gas_paid=mined.gas_paid),
            )

    def _expire(self, plan: ExecutionPlan, result: ExecutionResult, current_block: int) -> None:
        logger.debug(f"Plan {plan.plan_id} expired at block {current_block} (deadline {plan.deadline_block})")
        result.finish(
            PlanOutcome.EXPIRED,
            f"deadline block {plan.deadline_block} passed",
            error=StaleOpportunity(f"Plan {plan.plan_id} expired at block {current_block}", plan.strategy_kind.value),
        )

    def _give_up(self, plan: ExecutionPlan, result: ExecutionResult, policy: RetryPolicy) -> None:
        logger.error(
            f"Plan {plan.plan_id} ({plan.strategy_kind.value}) gave up after "
            f"{policy.max_retries} failed attempts"
        )
        result.finish(
            PlanOutcome.RETRIES_EXCEEDED,
            f"{policy.max_retries} attempts failed",
            error=RetriesExceeded(f"Plan {plan.plan_id} exhausted its retries", attempts=policy.max_retries),
        )

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)
