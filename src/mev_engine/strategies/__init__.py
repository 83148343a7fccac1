"""
Strategy capabilities.

Each strategy kind contributes plan construction only; the evaluator,
capital provider and orchestrator are shared by all of them.
"""
from typing import Dict, Iterable, Type

from ..config.strategy_config import StrategyConfig
from ..opportunity.models import StrategyKind
from .arbitrage import CrossVenueArbitrageStrategy, FlashArbitrageStrategy
from .base import BuildContext, Strategy, apply_slippage, swap_step
from .lending import LatencyTradeStrategy, LiquidationStrategy
from .mempool import FrontRunningStrategy, SandwichStrategy

STRATEGY_CLASSES: Dict[StrategyKind, Type[Strategy]] = {
    StrategyKind.CROSS_VENUE_ARBITRAGE: CrossVenueArbitrageStrategy,
    StrategyKind.FLASH_ARBITRAGE: FlashArbitrageStrategy,
    StrategyKind.FRONT_RUNNING: FrontRunningStrategy,
    StrategyKind.SANDWICH: SandwichStrategy,
    StrategyKind.LIQUIDATION: LiquidationStrategy,
    StrategyKind.LATENCY_TRADE: LatencyTradeStrategy,
}


def build_strategies(configs: Iterable[StrategyConfig]) -> Dict[StrategyKind, Strategy]:
    """Instantiate the strategy for each configuration record."""
    return {config.kind: STRATEGY_CLASSES[config.kind](config) for config in configs}


__all__ = [
    "Strategy",
    "BuildContext",
    "apply_slippage",
    "swap_step",
    "CrossVenueArbitrageStrategy",
    "FlashArbitrageStrategy",
    "FrontRunningStrategy",
    "SandwichStrategy",
    "LiquidationStrategy",
    "LatencyTradeStrategy",
    "STRATEGY_CLASSES",
    "build_strategies",
]
