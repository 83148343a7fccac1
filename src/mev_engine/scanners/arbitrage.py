"""Price divergence scanners: pairwise across routers and cyclic routes."""
import logging
from typing import Optional, Sequence

from ..config.strategy_config import RouteConfig, TokenPairConfig
from ..errors import PlanConstructionError
from ..opportunity.models import Opportunity, RouteSubject, StrategyKind, TokenPairSubject, saturating_sub
from .base import PollingScanner, quote

logger = logging.getLogger(__name__)


class CrossVenueArbitrageScanner(PollingScanner):
    """Quotes each token pair on every router and pairs the best buy with the best sell."""

    kind = StrategyKind.CROSS_VENUE_ARBITRAGE

    def configured_subjects(self) -> Sequence[TokenPairConfig]:
        return self.config.token_pairs

    def describe(self, subject: TokenPairConfig) -> str:
        return f"pair {subject.token_in}/{subject.token_out}"

    async def scan_subject(self, pair: TokenPairConfig, block: int) -> Optional[Opportunity]:
        routers = self.config.routers
        forward = [pair.token_in, pair.token_out]
        backward = [pair.token_out, pair.token_in]

        buy_router, intermediate = None, 0
        for router in routers:
            out = await quote(self.client, router, pair.amount_in, forward)
            if out > intermediate:
                buy_router, intermediate = router, out
        if buy_router is None:
            return None

        sell_router, final = None, 0
        for router in routers:
            if router == buy_router:
                continue
            back = await quote(self.client, router, intermediate, backward)
            if back > final:
                sell_router, final = router, back
        if sell_router is None:
            return None

        gain = saturating_sub(final, pair.amount_in)
        if gain == 0:
            return None

        cost = await self.estimate_cost(gain, self.borrow_fee(pair.token_in, pair.amount_in))
        logger.debug(
            f"Pair {pair.token_in}/{pair.token_out}: buy on {buy_router}, sell on {sell_router}, "
            f"gain {gain}, cost {cost}"
        )
        return Opportunity(
            strategy_kind=self.kind,
            subject=TokenPairSubject(
                token_in=pair.token_in,
                token_out=pair.token_out,
                amount_in=pair.amount_in,
                buy_router=buy_router,
                sell_router=sell_router,
                quoted_intermediate=intermediate,
                quoted_out=final,
            ),
            observed_at_block=block,
            expected_gross_gain=gain,
            estimated_cost=cost,
        )


class FlashArbitrageScanner(PollingScanner):
    """Quotes configured cyclic routes sized by what can be flash-borrowed."""

    kind = StrategyKind.FLASH_ARBITRAGE

    def configured_subjects(self) -> Sequence[RouteConfig]:
        return self.config.routes

    def describe(self, subject: RouteConfig) -> str:
        return "route " + ">".join(subject.tokens)

    async def scan_subject(self, route: RouteConfig, block: int) -> Optional[Opportunity]:
        if self.capital_provider is None:
            raise PlanConstructionError("flash arbitrage needs a capital provider")
        start = route.tokens[0]
        liquidity = self.capital_provider.max_borrowable(start)
        if liquidity is None:
            raise PlanConstructionError(f"No flash loan facility for {start}")
        amount_in = min(route.amount_in, liquidity)

        hops = len(route.tokens)
        amounts = []
        amount = amount_in
        for i in range(hops):
            path = [route.tokens[i], route.tokens[(i + 1) % hops]]
            amount = await quote(self.client, route.routers[i], amount, path)
            amounts.append(amount)

        gain = saturating_sub(amount, amount_in)
        if gain == 0:
            return None

        cost = await self.estimate_cost(gain, self.capital_provider.flash_fee(start, amount_in))
        return Opportunity(
            strategy_kind=self.kind,
            subject=RouteSubject(
                tokens=tuple(route.tokens),
                routers=tuple(route.routers),
                amount_in=amount_in,
                quoted_amounts=tuple(amounts),
            ),
            observed_at_block=block,
            expected_gross_gain=gain,
            estimated_cost=cost,
        )
