"""
Engine Supervisor.

Owns every long-running task of the engine: the fee market refresher, one
worker per scanner (or per subject) and one task per executing plan. Each
candidate flows scanner -> evaluator -> orchestrator; the supervisor keeps
repeated subjects out of that flow and tears everything down on shutdown
or on a fatal error.
"""
import asyncio
import functools
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..chain.client import ChainClient
from ..chain.fee_market import FeeMarket
from ..errors import ChainConnectivityLost, ConfigurationError, TransientNetworkError
from ..evaluation.evaluator import Accept, ProfitabilityEvaluator
from ..execution.orchestrator import ExecutionOrchestrator
from ..opportunity.models import ExecutionPlan, Opportunity, StrategyKind
from ..reporting.reporter import OutcomeReporter
from ..scanners.base import PollingScanner, Scanner

logger = logging.getLogger(__name__)

SubjectKey = Tuple[StrategyKind, str]

FATAL_ERRORS = (ConfigurationError, ChainConnectivityLost)


class EngineSupervisor:
    """Runs scanners, evaluation and execution as one supervised unit."""

    def __init__(
        self,
        client: ChainClient,
        fee_market: FeeMarket,
        scanners: Sequence[Scanner],
        evaluator: ProfitabilityEvaluator,
        orchestrator: ExecutionOrchestrator,
        reporter: OutcomeReporter,
        dedup_window_blocks: int = 2,
        shutdown_grace: float = 10.0,
    ):
        """
        Initialize supervisor.

        Args:
            client: Chain access, used for the current block at evaluation
            fee_market: Shared fee estimate; the supervisor runs its refresher
            scanners: One scanner per enabled strategy kind
            evaluator: Scores candidates and builds plans
            orchestrator: Executes accepted plans
            reporter: Receives evaluation counters; closed on shutdown
            dedup_window_blocks: Blocks during which an accepted subject is not accepted again
            shutdown_grace: Seconds executing plans get to finish on shutdown
        """
        self.client = client
        self.fee_market = fee_market
        self.scanners = list(scanners)
        self.evaluator = evaluator
        self.orchestrator = orchestrator
        self.reporter = reporter
        self.dedup_window_blocks = dedup_window_blocks
        self.shutdown_grace = shutdown_grace

        self.is_running = False
        self.started_at: Optional[float] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._fatal_error: Optional[BaseException] = None
        self._worker_tasks: List[asyncio.Task] = []
        self._execution_tasks: Set[asyncio.Task] = set()
        self._started_tasks: Set[asyncio.Task] = set()
        self._report_tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[SubjectKey] = set()
        self._recent: Dict[SubjectKey, int] = {}

        self.stats: Dict[str, int] = {
            "candidates_received": 0,
            "duplicates_suppressed": 0,
            "plans_launched": 0,
            "evaluation_skipped": 0,
            "workers_failed": 0,
        }

    def _workers(self) -> List[Scanner]:
        workers: List[Scanner] = []
        for scanner in self.scanners:
            if isinstance(scanner, PollingScanner):
                workers.extend(scanner.partition())
            else:
                workers.append(scanner)
        return workers

    async def run(self) -> None:
        """Run until shutdown is requested or a fatal error occurs."""
        if self.is_running:
            logger.warning("Engine supervisor already running")
            return

        self.is_running = True
        self.started_at = time.time()
        self._stop_event = asyncio.Event()
        self._fatal_error = None

        workers = self._workers()
        logger.info(
            f"🚀 Starting engine with {len(self.scanners)} strategies "
            f"({', '.join(s.name for s in self.scanners)}) on {len(workers)} workers"
        )

        self._worker_tasks = [asyncio.create_task(self.fee_market.run(), name="fee-market")]
        for worker in workers:
            self._worker_tasks.append(asyncio.create_task(self._consume(worker), name=f"scanner-{worker.name}"))
        for task in self._worker_tasks:
            task.add_done_callback(self._on_worker_done)

        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

        if self._fatal_error is not None:
            raise self._fatal_error

    def request_shutdown(self) -> None:
        """Ask run() to wind down. Safe to call from a signal handler."""
        if self._stop_event is not None and not self._stop_event.is_set():
            logger.info("🛑 Shutdown requested")
            self._stop_event.set()

    async def stop(self) -> None:
        """Cancel workers, give executing plans the grace period, then close the reporter."""
        if not self.is_running:
            return
        self.is_running = False
        if self._stop_event is not None:
            self._stop_event.set()

        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks.clear()

        executing = list(self._execution_tasks)
        if executing:
            logger.info(f"Waiting up to {self.shutdown_grace}s for {len(executing)} executing plan(s)")
            done, pending = await asyncio.wait(executing, timeout=self.shutdown_grace)
            for task in pending:
                task.cancel()
            # Cancelled plans still report themselves as abandoned
            await asyncio.gather(*pending, return_exceptions=True)
        if self._report_tasks:
            await asyncio.gather(*list(self._report_tasks), return_exceptions=True)

        await self.reporter.close()
        logger.info("✅ Engine stopped")

    def _fail(self, error: BaseException) -> None:
        if self._fatal_error is None:
            self._fatal_error = error
            logger.error(f"❌ Fatal engine error, shutting down: {error}")
        if self._stop_event is not None:
            self._stop_event.set()

    def _on_worker_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, FATAL_ERRORS):
            self._fail(error)
        else:
            # One failed worker stops that strategy only
            self.stats["workers_failed"] += 1
            logger.error(f"Worker {task.get_name()} stopped: {error!r}")

    async def _consume(self, scanner: Scanner) -> None:
        async for opportunity in scanner.scan():
            await self.handle(opportunity)

    def _is_duplicate(self, key: SubjectKey, observed_at_block: int) -> bool:
        if key in self._in_flight:
            return True
        last = self._recent.get(key)
        return last is not None and observed_at_block - last <= self.dedup_window_blocks

    def _prune_recent(self, current_block: int) -> None:
        horizon = current_block - self.dedup_window_blocks
        for key in [k for k, block in self._recent.items() if block < horizon]:
            del self._recent[key]

    async def handle(self, opportunity: Opportunity) -> Optional[asyncio.Task]:
        """Evaluate one candidate and launch its plan if accepted."""
        self.stats["candidates_received"] += 1
        key: SubjectKey = (opportunity.strategy_kind, opportunity.subject_key)
        if self._is_duplicate(key, opportunity.observed_at_block):
            self.stats["duplicates_suppressed"] += 1
            logger.debug(f"Suppressed repeated {key[0].value} subject {key[1]}")
            return None

        try:
            current_block = await self.client.get_block_number()
        except TransientNetworkError as e:
            self.stats["evaluation_skipped"] += 1
            logger.warning(f"Skipping opportunity {opportunity.opportunity_id}, block unavailable: {e}")
            return None

        evaluation = self.evaluator.evaluate(opportunity, current_block)
        self.reporter.record_evaluation(opportunity, evaluation)
        if not isinstance(evaluation, Accept):
            return None

        self._prune_recent(current_block)
        self._recent[key] = opportunity.observed_at_block
        return self.launch(evaluation.plan, key)

    def launch(self, plan: ExecutionPlan, key: Optional[SubjectKey] = None) -> asyncio.Task:
        """Start executing an accepted plan in its own task."""
        # Ticket is issued before any await so submission order is acceptance order
        ticket = self.orchestrator.accept(plan)
        if key is not None:
            self._in_flight.add(key)

        task = asyncio.create_task(self._execute(plan, ticket), name=f"plan-{plan.plan_id}")
        self._execution_tasks.add(task)
        task.add_done_callback(functools.partial(self._on_plan_done, plan, ticket, key))
        self.stats["plans_launched"] += 1
        return task

    async def _execute(self, plan: ExecutionPlan, ticket: int) -> None:
        self._started_tasks.add(asyncio.current_task())
        try:
            await self.orchestrator.execute(plan, ticket)
        except ChainConnectivityLost as e:
            self._fail(e)

    def _on_plan_done(
        self, plan: ExecutionPlan, ticket: int, key: Optional[SubjectKey], task: asyncio.Task
    ) -> None:
        self._execution_tasks.discard(task)
        if key is not None:
            self._in_flight.discard(key)
        if task in self._started_tasks:
            self._started_tasks.discard(task)
            return

        # Cancelled before its first step, so execute() never saw the ticket
        logger.info(f"Plan {plan.plan_id} cancelled before it started")
        self.orchestrator.release(plan, ticket)
        report = asyncio.ensure_future(self.orchestrator.report_abandoned(plan, "cancelled before start"))
        self._report_tasks.add(report)
        report.add_done_callback(self._report_tasks.discard)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "is_running": self.is_running,
            "uptime_seconds": round(time.time() - self.started_at, 1) if self.started_at else 0.0,
            "in_flight": len(self._in_flight),
            "executing": len(self._execution_tasks),
            "scanners": {s.name: dict(s.stats) for s in self.scanners},
            "fee_market": dict(self.fee_market.stats),
            "evaluator": dict(self.evaluator.stats),
            "orchestrator": self.orchestrator.get_stats(),
            "reporter": self.reporter.get_stats(),
        }
