"""
Outcome Reporter.

Turns terminal plan results into OutcomeEvents and fans them out to sinks.
Delivery happens in background tasks with a timeout, so a slow or failing
sink never holds up execution and is never retried.
"""
import asyncio
import logging
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Sequence, Set

from ..evaluation.evaluator import Evaluation, Reject
from ..opportunity.models import ExecutionResult, Opportunity
from .events import OutcomeEvent
from .ledger import ProfitLedger
from .sinks import OutcomeSink

logger = logging.getLogger(__name__)


class OutcomeReporter:
    """Publishes outcome events and opportunity counters."""

    def __init__(
        self,
        ledger: ProfitLedger,
        sinks: Sequence[OutcomeSink] = (),
        sink_timeout: float = 5.0,
        history_size: int = 500,
    ):
        self.ledger = ledger
        self.sinks = list(sinks)
        self.sink_timeout = sink_timeout
        self.recent_events: Deque[OutcomeEvent] = deque(maxlen=history_size)
        self._tasks: Set[asyncio.Task] = set()

        self.stats: Dict[str, Any] = {
            "outcomes_reported": 0,
            "sink_failures": 0,
            "opportunities_detected": 0,
            "opportunities_accepted": 0,
            "opportunities_rejected": defaultdict(int),
        }

    async def report(self, result: ExecutionResult) -> OutcomeEvent:
        """Publish a terminal result. Never raises because of a sink."""
        event = OutcomeEvent.from_result(result, self.ledger.cumulative)
        self.recent_events.append(event)
        self.stats["outcomes_reported"] += 1

        for sink in self.sinks:
            task = asyncio.create_task(self._deliver(sink, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return event

    def record_evaluation(self, opportunity: Opportunity, evaluation: Evaluation) -> None:
        """Count a candidate and what the evaluator made of it."""
        self.stats["opportunities_detected"] += 1
        if isinstance(evaluation, Reject):
            self.stats["opportunities_rejected"][evaluation.reason.value] += 1
        else:
            self.stats["opportunities_accepted"] += 1

    async def _deliver(self, sink: OutcomeSink, event: OutcomeEvent) -> None:
        try:
            await asyncio.wait_for(sink.emit(event), timeout=self.sink_timeout)
        except asyncio.TimeoutError:
            self.stats["sink_failures"] += 1
            logger.warning(f"Outcome sink {sink.name} timed out for plan {event.plan_id}")
        except Exception as e:
            self.stats["sink_failures"] += 1
            logger.warning(f"Outcome sink {sink.name} failed for plan {event.plan_id}: {e}")

    async def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        done, not_done = await asyncio.wait(pending, timeout=timeout or self.sink_timeout)
        for task in not_done:
            task.cancel()

    async def close(self) -> None:
        await self.flush()
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning(f"Failed to close outcome sink {sink.name}: {e}")

    def get_recent_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in list(self.recent_events)[-limit:]]

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        stats["opportunities_rejected"] = dict(self.stats["opportunities_rejected"])
        stats["ledger"] = self.ledger.snapshot()
        return stats
