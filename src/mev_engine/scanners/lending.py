"""
Health-factor and price-target scanners.

Both scanners read Chainlink USD feeds, so their gains and borrow fees are
converted to wei at the current ETH/USD answer before they meet gas costs.
"""
import logging
from typing import Optional, Sequence

from ..chain.contracts import WETH, decode_user_account_data, encode_get_user_account_data
from ..config.strategy_config import BorrowerConfig, PriceTargetConfig
from ..opportunity.models import BorrowerSubject, Opportunity, PriceTargetSubject, StrategyKind
from .base import PollingScanner, quote, read_feed_price, to_wei

logger = logging.getLogger(__name__)

BPS = 10_000


class LiquidationScanner(PollingScanner):
    """Tracks configured borrowers and flags health factors below 1."""

    kind = StrategyKind.LIQUIDATION

    def configured_subjects(self) -> Sequence[BorrowerConfig]:
        return self.config.borrowers

    def describe(self, subject: BorrowerConfig) -> str:
        return f"borrower {subject.borrower}"

    async def scan_subject(self, position: BorrowerConfig, block: int) -> Optional[Opportunity]:
        data = decode_user_account_data(
            await self.client.call(self.config.lending_pool, encode_get_user_account_data(position.borrower))
        )
        if not data.is_liquidatable:
            return None

        # Base currency and Chainlink USD feeds both carry 8 decimals
        debt_price = await read_feed_price(self.client, self.config.price_feeds, position.debt_asset)
        debt_base_to_cover = data.total_debt_base * self.config.close_factor_bps // BPS
        debt_to_cover = debt_base_to_cover * 10 ** position.debt_decimals // debt_price
        if debt_to_cover == 0:
            return None

        eth_price = await read_feed_price(self.client, self.config.price_feeds, WETH)
        bonus = debt_to_cover * self.config.liquidation_bonus_bps // BPS
        gain = to_wei(bonus, debt_price, eth_price, position.debt_decimals)
        borrow_fee = to_wei(
            self.borrow_fee(position.debt_asset, debt_to_cover), debt_price, eth_price, position.debt_decimals
        )
        cost = await self.estimate_cost(gain, borrow_fee)

        logger.info(
            f"Borrower {position.borrower} liquidatable: health factor {data.health_factor}, "
            f"covering {debt_to_cover} of {position.debt_asset}, gain {gain} wei, cost {cost} wei"
        )
        return Opportunity(
            strategy_kind=self.kind,
            subject=BorrowerSubject(
                borrower=position.borrower,
                collateral_asset=position.collateral_asset,
                debt_asset=position.debt_asset,
                debt_to_cover=debt_to_cover,
                health_factor=data.health_factor,
            ),
            observed_at_block=block,
            expected_gross_gain=gain,
            estimated_cost=cost,
        )


class LatencyTradeScanner(PollingScanner):
    """Watches price feeds and fires when an asset drops below its target."""

    kind = StrategyKind.LATENCY_TRADE

    def configured_subjects(self) -> Sequence[PriceTargetConfig]:
        return self.config.targets

    def describe(self, subject: PriceTargetConfig) -> str:
        return f"target {subject.asset} < {subject.target_price}"

    async def scan_subject(self, target: PriceTargetConfig, block: int) -> Optional[Opportunity]:
        price = await read_feed_price(self.client, self.config.price_feeds, target.asset)
        if price >= target.target_price:
            return None

        quoted_out = await quote(self.client, target.router, target.amount_in, [target.quote_asset, target.asset])
        discount = target.amount_in * (target.target_price - price) // target.target_price
        if discount == 0:
            return None

        quote_price = await read_feed_price(self.client, self.config.price_feeds, target.quote_asset)
        eth_price = await read_feed_price(self.client, self.config.price_feeds, WETH)
        gain = to_wei(discount, quote_price, eth_price, target.quote_decimals)
        borrow_fee = to_wei(
            self.borrow_fee(target.quote_asset, target.amount_in), quote_price, eth_price, target.quote_decimals
        )
        cost = await self.estimate_cost(gain, borrow_fee)

        return Opportunity(
            strategy_kind=self.kind,
            subject=PriceTargetSubject(
                asset=target.asset,
                quote_asset=target.quote_asset,
                router=target.router,
                target_price=target.target_price,
                observed_price=price,
                amount_in=target.amount_in,
                quoted_out=quoted_out,
                exit_router=target.exit_router or target.router,
            ),
            observed_at_block=block,
            expected_gross_gain=gain,
            estimated_cost=cost,
        )
