"""
Outcome event sinks.

Each sink delivers one event somewhere outside the engine. Sinks may raise;
the reporter runs them in the background and only logs their failures.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
import redis.asyncio as redis

from ..opportunity.models import PlanOutcome
from .events import OutcomeEvent

logger = logging.getLogger(__name__)


class OutcomeSink(ABC):
    """Destination for outcome events."""

    name = "sink"

    @abstractmethod
    async def emit(self, event: OutcomeEvent) -> None:
        """Deliver one event."""

    async def close(self) -> None:
        """Release any held connections."""


class LoggingSink(OutcomeSink):
    """Writes every outcome to the engine log."""

    name = "log"

    LEVELS = {
        PlanOutcome.CONFIRMED_SUCCESS: logging.INFO,
        PlanOutcome.CONFIRMED_REVERTED: logging.WARNING,
        PlanOutcome.EXPIRED: logging.DEBUG,
        PlanOutcome.ABANDONED: logging.INFO,
        PlanOutcome.RETRIES_EXCEEDED: logging.ERROR,
    }

    async def emit(self, event: OutcomeEvent) -> None:
        level = self.LEVELS.get(event.outcome, logging.INFO)
        logger.log(
            level,
            f"Outcome {event.outcome.value} for {event.strategy_kind.value} plan {event.plan_id}: "
            f"realized {event.realized_profit_or_loss} after {event.attempt_count} attempt(s), "
            f"cumulative {event.cumulative_profit}"
        )


class WebhookSink(OutcomeSink):
    """POSTs events as JSON to a webhook."""

    name = "webhook"

    def __init__(self, url: str, session: Optional[aiohttp.ClientSession] = None, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def emit(self, event: OutcomeEvent) -> None:
        session = await self._get_session()
        async with session.post(self.url, json=event.to_dict()) as response:
            if response.status >= 400:
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=f"webhook rejected outcome {event.plan_id}",
                )
            logger.debug(f"Outcome webhook sent for plan {event.plan_id}")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class RedisSink(OutcomeSink):
    """Pushes events onto a capped Redis list, newest first."""

    name = "redis"

    def __init__(self, client: redis.Redis, key: str, max_length: int = 1000):
        self.client = client
        self.key = key
        self.max_length = max_length

    @classmethod
    def from_url(cls, url: str, key: str, max_length: int = 1000) -> "RedisSink":
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, key, max_length)

    async def emit(self, event: OutcomeEvent) -> None:
        await self.client.lpush(self.key, json.dumps(event.to_dict()))
        await self.client.ltrim(self.key, 0, self.max_length - 1)

    async def close(self) -> None:
        await self.client.aclose()
