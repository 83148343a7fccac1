"""
Opportunity Scanners.

One scanner per strategy kind; all of them yield the same Opportunity shape.
"""
from typing import Dict, Type

from ..opportunity.models import StrategyKind
from .arbitrage import CrossVenueArbitrageScanner, FlashArbitrageScanner
from .base import MempoolScanner, PollingScanner, Scanner, quote, read_feed_price, to_wei
from .lending import LatencyTradeScanner, LiquidationScanner
from .mempool import FrontRunningScanner, SandwichScanner

SCANNER_CLASSES: Dict[StrategyKind, Type[Scanner]] = {
    StrategyKind.CROSS_VENUE_ARBITRAGE: CrossVenueArbitrageScanner,
    StrategyKind.FLASH_ARBITRAGE: FlashArbitrageScanner,
    StrategyKind.FRONT_RUNNING: FrontRunningScanner,
    StrategyKind.SANDWICH: SandwichScanner,
    StrategyKind.LIQUIDATION: LiquidationScanner,
    StrategyKind.LATENCY_TRADE: LatencyTradeScanner,
}

__all__ = [
    "Scanner",
    "PollingScanner",
    "MempoolScanner",
    "quote",
    "read_feed_price",
    "to_wei",
    "CrossVenueArbitrageScanner",
    "FlashArbitrageScanner",
    "FrontRunningScanner",
    "SandwichScanner",
    "LiquidationScanner",
    "LatencyTradeScanner",
    "SCANNER_CLASSES",
]
