"""
Unit tests for ExecutionOrchestrator.

Drives plans against a scripted chain through every terminal outcome:
confirmation, on-chain revert, simulation revert, expiry and exhausted
retries, plus fee bumping, watching of broadcast transactions, plans on
pending subjects and per-account submission order.
"""
import asyncio

import pytest

from fakes import (
    BORROWER,
    DAI,
    EXECUTOR,
    FUNDER,
    ROUTER_A,
    WETH,
    FakeChainClient,
    RecordingSleep,
    arbitrage_record,
    facilities,
    pair_opportunity,
)

from mev_engine.capital.provider import CapitalProvider
from mev_engine.chain.client import PendingTransaction, TransactionReceipt
from mev_engine.chain.fee_market import FeeMarket, apply_bps
from mev_engine.chain.nonce_manager import SequencerRegistry
from mev_engine.config.strategy_config import load_capital_config, load_strategy_config
from mev_engine.errors import (
    OnChainRevert,
    RetriesExceeded,
    SimulationRevert,
    SubjectGone,
    TransactionRejected,
    TransientNetworkError,
)
from mev_engine.evaluation.evaluator import Accept, ProfitabilityEvaluator
from mev_engine.execution.orchestrator import ExecutionOrchestrator
from mev_engine.execution.plan_encoder import PlanEncoder
from mev_engine.opportunity.models import (
    AttemptOutcome,
    Opportunity,
    PendingTxSubject,
    PlanOutcome,
    PlanState,
    StrategyKind,
)
from mev_engine.reporting.ledger import ProfitLedger
from mev_engine.reporting.reporter import OutcomeReporter
from mev_engine.strategies import build_strategies


def build(client, name="arbitrage", record=None, capital=None, **record_overrides):
    """Evaluator and orchestrator wired around one strategy, arbitrage unless named."""
    if record is None:
        record = arbitrage_record(**record_overrides)
    config = load_strategy_config(name, record)
    strategies = build_strategies([config])
    sleep = RecordingSleep()
    ledger = ProfitLedger()
    reporter = OutcomeReporter(ledger)
    provider = CapitalProvider.from_config(load_capital_config(capital), EXECUTOR)
    evaluator = ProfitabilityEvaluator(strategies, provider, executor=EXECUTOR)
    orchestrator = ExecutionOrchestrator(
        client,
        FeeMarket(client),
        PlanEncoder(EXECUTOR, chain_id=1),
        SequencerRegistry(client),
        strategies,
        ledger,
        reporter,
        sleep=sleep,
    )
    return evaluator, orchestrator, sleep


def accept(evaluator, opportunity, block=100):
    evaluation = evaluator.evaluate(opportunity, block)
    assert isinstance(evaluation, Accept)
    return evaluation.plan


SUBJECT_HASH = "0x" + "ab" * 32


def pending_subject_opportunity(kind, trade_amount, expected_out):
    return Opportunity(
        strategy_kind=kind,
        subject=PendingTxSubject(
            tx_hash=SUBJECT_HASH,
            sender=BORROWER,
            to=ROUTER_A,
            value=0,
            router=ROUTER_A,
            path=(WETH, DAI),
            amount_in=10 * 10 ** 18,
            amount_out_min=29_000 * 10 ** 18,
            trade_amount=trade_amount,
            expected_out=expected_out,
        ),
        observed_at_block=100,
        expected_gross_gain=3 * 10 ** 16,
        estimated_cost=10 ** 15,
    )


def subject_tx():
    return PendingTransaction(
        tx_hash=SUBJECT_HASH,
        sender=BORROWER,
        to=ROUTER_A,
        value=0,
        input=b"",
        gas_price=30,
        nonce=1,
    )


class SendsOnceClient(FakeChainClient):
    """Accepts the first transaction, then every send fails in transit."""

    async def send_transaction(self, tx):
        if self.sent:
            raise TransientNetworkError("connection reset", operation="eth_sendRawTransaction")
        return await super().send_transaction(tx)


class SubjectMinedOnSendClient(FakeChainClient):
    """The subject leaves the mempool as soon as our transaction is broadcast."""

    async def send_transaction(self, tx):
        tx_hash = await super().send_transaction(tx)
        self.transactions.clear()
        return tx_hash


class TestExecutionOrchestrator:
    """Test plan execution outcomes."""

    @pytest.fixture
    def client(self):
        return FakeChainClient(block_number=100)

    @pytest.mark.asyncio
    async def test_profitable_plan_confirms_with_realized_profit(self, client):
        """500 gain, 300 cost: confirmed on the first attempt, realizing 200."""
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity(gain=500, cost=300))

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert result.state == PlanState.CONFIRMED
        assert result.realized_profit == 200
        assert result.attempt_count == 1
        assert result.attempts[0].outcome == AttemptOutcome.CONFIRMED_SUCCESS
        assert orchestrator.ledger.cumulative == 200
        assert orchestrator.reporter.stats["outcomes_reported"] == 1
        assert len(client.sent) == 1
        assert client.sent[0]["from"] == FUNDER
        assert client.sent[0]["to"] == EXECUTOR
        assert client.sent[0]["nonce"] == 7

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_retries(self, client):
        """Three transient send failures back off 1, 2, 4 then give up once."""
        client.send_errors = [
            TransientNetworkError("connection reset", operation="eth_sendRawTransaction") for _ in range(3)
        ]
        evaluator, orchestrator, sleep = build(client, max_retries=3, base_delay_seconds=1)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.RETRIES_EXCEEDED
        assert isinstance(result.error, RetriesExceeded)
        assert sleep.delays == [1, 2, 4]
        assert result.attempt_count == 3
        assert all(a.outcome == AttemptOutcome.ERROR for a in result.attempts)
        assert client.sent == []
        assert orchestrator.reporter.stats["outcomes_reported"] == 1
        assert orchestrator.get_stats()["outcome_retries_exceeded"] == 1

    @pytest.mark.asyncio
    async def test_transient_simulation_failure_is_retried(self, client):
        client.simulate_errors = [TransientNetworkError("timeout", operation="eth_call")]
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert sleep.delays == [1]

    @pytest.mark.asyncio
    async def test_simulation_revert_abandons_without_attempts(self, client):
        client.simulate_error = SimulationRevert("execution reverted", reason="INSUFFICIENT_OUTPUT_AMOUNT")
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.ABANDONED
        assert result.attempt_count == 0
        assert result.gas_paid == 0
        assert result.realized_profit == 0
        assert "INSUFFICIENT_OUTPUT_AMOUNT" in result.reason
        assert client.sent == []
        assert orchestrator.reporter.stats["outcomes_reported"] == 1

    @pytest.mark.asyncio
    async def test_deadline_passed_before_submission_expires(self, client):
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity())
        client.block_number = plan.deadline_block + 1

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.EXPIRED
        assert result.attempt_count == 0
        assert client.sent == []

    @pytest.mark.asyncio
    async def test_pending_past_deadline_expires_and_is_never_resubmitted(self, client):
        client.mine_status = None
        evaluator, orchestrator, sleep = build(client, deadline_blocks=2, inclusion_timeout_blocks=5)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.EXPIRED
        assert len(client.sent) == 1
        assert result.attempts[0].outcome == AttemptOutcome.DROPPED
        assert orchestrator.ledger.cumulative == 0

    @pytest.mark.asyncio
    async def test_inclusion_timeout_resubmits_same_nonce_with_higher_fee(self, client):
        client.mine_on_attempt = 2
        evaluator, orchestrator, sleep = build(client, inclusion_timeout_blocks=1)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.DROPPED, AttemptOutcome.CONFIRMED_SUCCESS]
        first, second = client.sent
        assert first["nonce"] == second["nonce"]
        assert second["maxFeePerGas"] > first["maxFeePerGas"]
        assert second["maxPriorityFeePerGas"] > first["maxPriorityFeePerGas"]
        assert result.attempts[1].fee_bid >= result.attempts[0].fee_bid

    @pytest.mark.asyncio
    async def test_on_chain_revert_realizes_gas_loss(self, client):
        client.mine_status = 0
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_REVERTED
        assert isinstance(result.error, OnChainRevert)
        assert result.realized_profit == -(client.gas_used * client.effective_gas_price)
        assert orchestrator.ledger.cumulative == result.realized_profit

    @pytest.mark.asyncio
    async def test_plans_sharing_an_account_submit_in_acceptance_order(self, client):
        evaluator, orchestrator, sleep = build(client)
        first = accept(evaluator, pair_opportunity(gain=600))
        second = accept(evaluator, pair_opportunity(gain=700))
        first_ticket = orchestrator.accept(first)
        second_ticket = orchestrator.accept(second)

        # Start the later plan first; it must still wait for the earlier one
        results = await asyncio.gather(
            orchestrator.execute(second, second_ticket),
            orchestrator.execute(first, first_ticket),
        )

        assert all(r.outcome == PlanOutcome.CONFIRMED_SUCCESS for r in results)
        assert [tx["nonce"] for tx in client.sent] == [7, 8]
        assert results[1].attempts[0].nonce == 7
        assert results[0].attempts[0].nonce == 8

    @pytest.mark.asyncio
    async def test_cancellation_reports_abandoned(self, client):
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity())
        blocker = orchestrator.accept(plan)  # Hold the account so execute has to wait

        task = asyncio.create_task(orchestrator.execute(plan))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.reporter.stats["outcomes_reported"] == 1
        assert orchestrator.reporter.recent_events[-1].outcome == PlanOutcome.ABANDONED
        orchestrator.sequencers.for_account(FUNDER).release(blocker)

    @pytest.mark.asyncio
    async def test_unstarted_plan_is_released_and_reported(self, client):
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity())
        ticket = orchestrator.accept(plan)

        orchestrator.release(plan, ticket)
        abandoned = await orchestrator.report_abandoned(plan, "cancelled before start")
        later = await orchestrator.execute(accept(evaluator, pair_opportunity(gain=600)))

        assert abandoned.outcome == PlanOutcome.ABANDONED
        assert later.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert orchestrator.reporter.stats["outcomes_reported"] == 2


class TestInclusionWatching:
    """Broadcast transactions are followed to a receipt or the deadline."""

    @pytest.mark.asyncio
    async def test_fee_bumps_do_not_spend_retries(self):
        client = FakeChainClient(block_number=100)
        client.mine_on_attempt = 3
        evaluator, orchestrator, sleep = build(client, max_retries=1, deadline_blocks=10, inclusion_timeout_blocks=1)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert [a.outcome for a in result.attempts] == [
            AttemptOutcome.DROPPED, AttemptOutcome.DROPPED, AttemptOutcome.CONFIRMED_SUCCESS,
        ]
        assert {tx["nonce"] for tx in client.sent} == {7}

    @pytest.mark.asyncio
    async def test_broadcast_transaction_lands_after_retries_are_spent(self):
        client = SendsOnceClient(block_number=100)
        client.mine_status = None
        evaluator, orchestrator, sleep = build(client, max_retries=2, deadline_blocks=20, inclusion_timeout_blocks=1)
        plan = accept(evaluator, pair_opportunity(gain=500, cost=300))
        first_hash = "0x" + f"{1:064x}"
        delays = []

        async def sleep_then_mine(delay):
            delays.append(delay)
            if len(delays) == 2:
                client.receipts[first_hash] = TransactionReceipt(
                    tx_hash=first_hash, status=1, block_number=client.block_number, gas_used=100_000,
                    effective_gas_price=10,
                )

        orchestrator._sleep = sleep_then_mine

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert result.realized_profit == 200
        assert [a.outcome for a in result.attempts] == [
            AttemptOutcome.CONFIRMED_SUCCESS, AttemptOutcome.ERROR, AttemptOutcome.ERROR,
        ]
        assert orchestrator.ledger.cumulative == 200
        assert orchestrator.reporter.stats["outcomes_reported"] == 1

    @pytest.mark.asyncio
    async def test_unmined_broadcast_expires_instead_of_exceeding_retries(self):
        client = SendsOnceClient(block_number=100)
        client.mine_status = None
        evaluator, orchestrator, sleep = build(client, max_retries=2, deadline_blocks=20, inclusion_timeout_blocks=1)
        plan = accept(evaluator, pair_opportunity())

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.EXPIRED
        assert result.attempts[0].outcome == AttemptOutcome.DROPPED
        assert client.block_number > plan.deadline_block
        assert orchestrator.get_stats()["outcome_retries_exceeded"] == 0
        assert orchestrator.reporter.stats["outcomes_reported"] == 1

    @pytest.mark.asyncio
    async def test_nonce_taken_elsewhere_is_refreshed(self):
        client = FakeChainClient(block_number=100)
        client.send_errors = [TransactionRejected("nonce too low: next nonce 9, tx nonce 7")]
        evaluator, orchestrator, sleep = build(client)
        plan = accept(evaluator, pair_opportunity())

        async def sleep_while_nonce_moves(delay):
            client.nonce = 9

        orchestrator._sleep = sleep_while_nonce_moves

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert [a.nonce for a in result.attempts] == [7, 9]
        assert result.attempts[0].outcome == AttemptOutcome.ERROR
        assert client.sent[0]["nonce"] == 9


class TestPendingSubjectPlans:
    """Front-running and sandwich plans depend on their subject staying in the mempool."""

    def front_runner(self, client, **overrides):
        record = {"watched_routers": [ROUTER_A], "funding_account": FUNDER}
        record.update(overrides)
        return build(client, "frontrunning", record)

    @pytest.mark.asyncio
    async def test_subject_gone_abandons_without_sending(self):
        client = FakeChainClient(block_number=100)
        evaluator, orchestrator, sleep = self.front_runner(client)
        plan = accept(evaluator, pending_subject_opportunity(StrategyKind.FRONT_RUNNING, 5 * 10 ** 18, 15_000 * 10 ** 18))

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.ABANDONED
        assert isinstance(result.error, SubjectGone)
        assert result.attempt_count == 0
        assert result.realized_profit == 0
        assert client.sent == []
        assert orchestrator.reporter.stats["outcomes_reported"] == 1

    @pytest.mark.asyncio
    async def test_front_run_confirms_with_priority_premium(self):
        client = FakeChainClient(block_number=100)
        client.transactions[SUBJECT_HASH] = subject_tx()
        evaluator, orchestrator, sleep = self.front_runner(client)
        plan = accept(evaluator, pending_subject_opportunity(StrategyKind.FRONT_RUNNING, 5 * 10 ** 18, 15_000 * 10 ** 18))

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert result.realized_profit == 3 * 10 ** 16 - 10 ** 15
        # 10% premium on the 2 wei market priority fee
        assert client.sent[0]["maxPriorityFeePerGas"] == apply_bps(2, 1000)

    @pytest.mark.asyncio
    async def test_subject_mined_after_broadcast_stops_bidding(self):
        client = SubjectMinedOnSendClient(block_number=100)
        client.transactions[SUBJECT_HASH] = subject_tx()
        client.mine_status = None
        evaluator, orchestrator, sleep = self.front_runner(client, deadline_blocks=5, inclusion_timeout_blocks=1)
        plan = accept(evaluator, pending_subject_opportunity(StrategyKind.FRONT_RUNNING, 5 * 10 ** 18, 15_000 * 10 ** 18))

        result = await orchestrator.execute(plan)

        assert result.outcome == PlanOutcome.EXPIRED
        assert len(client.sent) == 1
        assert result.attempts[0].outcome == AttemptOutcome.DROPPED

    @pytest.mark.asyncio
    async def test_sandwich_plan_confirms(self):
        client = FakeChainClient(block_number=100)
        client.transactions[SUBJECT_HASH] = subject_tx()
        evaluator, orchestrator, sleep = build(
            client, "sandwich", {"watched_routers": [ROUTER_A], "funding_account": FUNDER}, capital=facilities(WETH),
        )
        plan = accept(evaluator, pending_subject_opportunity(StrategyKind.SANDWICH, 2 * 10 ** 18, 6_000 * 10 ** 18))

        result = await orchestrator.execute(plan)

        assert plan.funding is not None
        assert result.outcome == PlanOutcome.CONFIRMED_SUCCESS
        assert result.realized_profit == 3 * 10 ** 16 - 10 ** 15
        assert client.sent[0]["maxPriorityFeePerGas"] == apply_bps(2, 1500)
