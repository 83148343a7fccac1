"""
Scanner base classes.

A scanner polls the chain (or the mempool) and yields Opportunity records
forever. Failures while reading one subject skip that subject only; failures
of a whole poll are logged and the next poll runs on schedule. Only lost
connectivity ends the stream.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from web3 import Web3

from ..capital.provider import CapitalProvider
from ..chain.client import ChainClient, PendingTransaction
from ..chain.contracts import decode_amounts_out, decode_latest_answer, encode_get_amounts_out, encode_latest_answer
from ..chain.fee_market import FeeMarket
from ..config.strategy_config import StrategyConfig
from ..errors import ChainConnectivityLost, PlanConstructionError
from ..evaluation.cost_model import estimate_cost
from ..opportunity.models import COMPETITIVE_KINDS, Opportunity, StrategyKind

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


async def quote(client: ChainClient, router: str, amount_in: int, path: Sequence[str]) -> int:
    """Router getAmountsOut, final hop output."""
    data = await client.call(router, encode_get_amounts_out(amount_in, path))
    amounts = decode_amounts_out(data)
    if not amounts:
        raise ValueError(f"empty quote from {router}")
    return amounts[-1]


async def read_feed_price(client: ChainClient, feeds: Mapping[str, str], asset: str) -> int:
    """Latest Chainlink answer for an asset. Raises PlanConstructionError for unsupported assets."""
    feed = feeds.get(Web3.to_checksum_address(asset))
    if feed is None:
        raise PlanConstructionError(f"Unsupported asset, no price feed for {asset}")
    price = decode_latest_answer(await client.call(feed, encode_latest_answer()))
    if price <= 0:
        raise ValueError(f"non-positive price {price} from feed {feed}")
    return price


def to_wei(amount: int, usd_price: int, eth_usd_price: int, decimals: int) -> int:
    """Token amount valued in wei from two USD feed answers of the same precision."""
    return amount * usd_price * 10 ** 18 // (eth_usd_price * 10 ** decimals)


class Scanner(ABC):
    """Endless source of candidates for one strategy kind."""

    kind: StrategyKind

    def __init__(
        self,
        config: StrategyConfig,
        client: ChainClient,
        fee_market: FeeMarket,
        capital_provider: Optional[CapitalProvider] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if config.kind != self.kind:
            raise ValueError(f"{type(self).__name__} cannot use a {config.kind.value} configuration")
        self.config = config
        self.client = client
        self.fee_market = fee_market
        self.capital_provider = capital_provider
        self._sleep = sleep

        self.stats: Dict[str, int] = {
            "polls": 0,
            "poll_errors": 0,
            "candidate_errors": 0,
            "opportunities_emitted": 0,
        }

    @property
    def name(self) -> str:
        return self.kind.value

    async def scan(self) -> AsyncIterator[Opportunity]:
        """Yield candidates forever."""
        logger.info(f"Starting {self.name} scanner (interval {self.config.check_interval_seconds}s)")
        while True:
            candidates: List[Opportunity] = []
            try:
                block = await self.client.get_block_number()
                candidates = await self.poll(block)
                self.stats["polls"] += 1
            except (asyncio.CancelledError, ChainConnectivityLost):
                raise
            except Exception as e:
                self.stats["poll_errors"] += 1
                logger.warning(f"{self.name} poll failed: {e}")

            for opportunity in candidates:
                self.stats["opportunities_emitted"] += 1
                yield opportunity

            await self._sleep(self.config.check_interval_seconds)

    @abstractmethod
    async def poll(self, block: int) -> List[Opportunity]:
        """One pass over the scanner's subjects."""

    async def _isolated(self, label: str, candidate: Awaitable[Optional[Opportunity]]) -> Optional[Opportunity]:
        """Await one subject's candidate, turning its failure into a skip."""
        try:
            return await candidate
        except (asyncio.CancelledError, ChainConnectivityLost):
            raise
        except Exception as e:
            self.stats["candidate_errors"] += 1
            logger.warning(f"{self.name}: skipping {label}: {e}")
            return None

    async def estimate_cost(self, expected_gross_gain: int, borrow_fee: int = 0) -> int:
        """Gas at the current fee market plus fees plus slippage allowance."""
        premium = self.config.fee_premium_bps if self.kind in COMPETITIVE_KINDS else 0
        gas_price = await self.fee_market.gas_price(premium)
        return estimate_cost(
            gas_units=self.config.gas_estimate,
            gas_price=gas_price,
            expected_gross_gain=expected_gross_gain,
            slippage_bps=self.config.slippage_bps,
            protocol_fee=self.config.protocol_fee_wei,
            borrow_fee=borrow_fee,
        ).total

    def borrow_fee(self, asset: str, amount: int) -> int:
        if not self.config.flash_funded:
            return 0
        if self.capital_provider is None:
            raise PlanConstructionError(f"{self.name} is flash funded but has no capital provider")
        return self.capital_provider.flash_fee(asset, amount)


class PollingScanner(Scanner):
    """Scanner over a fixed list of configured subjects."""

    def __init__(self, *args, subjects: Optional[Sequence[Any]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.subjects: List[Any] = list(subjects) if subjects is not None else list(self.configured_subjects())

    @abstractmethod
    def configured_subjects(self) -> Sequence[Any]:
        """Subjects listed in the strategy configuration."""

    @abstractmethod
    async def scan_subject(self, subject: Any, block: int) -> Optional[Opportunity]:
        """Candidate for one subject, or None."""

    def describe(self, subject: Any) -> str:
        return repr(subject)

    def partition(self) -> List["PollingScanner"]:
        """One scanner per subject when the configuration asks for a worker each."""
        if not self.config.worker_per_subject or len(self.subjects) <= 1:
            return [self]
        return [
            type(self)(
                self.config,
                self.client,
                self.fee_market,
                self.capital_provider,
                sleep=self._sleep,
                subjects=[subject],
            )
            for subject in self.subjects
        ]

    async def poll(self, block: int) -> List[Opportunity]:
        results = []
        for subject in self.subjects:
            opportunity = await self._isolated(self.describe(subject), self.scan_subject(subject, block))
            if opportunity is not None:
                results.append(opportunity)
        return results


class MempoolScanner(Scanner):
    """Scanner over transactions entering the mempool."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def _remember(self, tx_hash: str) -> bool:
        """Track a hash; False if it was already seen."""
        if tx_hash in self._seen:
            return False
        self._seen[tx_hash] = None
        while len(self._seen) > self.config.max_tracked_hashes:
            self._seen.popitem(last=False)
        return True

    async def poll(self, block: int) -> List[Opportunity]:
        results = []
        for tx_hash in await self.client.get_pending_transaction_hashes():
            if not self._remember(tx_hash):
                continue
            opportunity = await self._isolated(f"tx {tx_hash}", self._scan_hash(tx_hash, block))
            if opportunity is not None:
                results.append(opportunity)
        return results

    async def _scan_hash(self, tx_hash: str, block: int) -> Optional[Opportunity]:
        tx = await self.client.get_transaction(tx_hash)
        if tx is None or not tx.is_pending:
            return None
        return await self.scan_transaction(tx, block)

    @abstractmethod
    async def scan_transaction(self, tx: PendingTransaction, block: int) -> Optional[Opportunity]:
        """Candidate for one pending transaction, or None."""
