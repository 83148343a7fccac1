"""Process settings and strategy configuration records."""
from .settings import Settings
from .strategy_config import (
    BorrowerConfig,
    CapitalConfig,
    CONFIG_MODELS,
    CrossVenueArbitrageConfig,
    FlashArbitrageConfig,
    FlashLoanFacilityConfig,
    FrontRunningConfig,
    LatencyTradeConfig,
    LiquidationConfig,
    MempoolStrategyConfig,
    PriceTargetConfig,
    RouteConfig,
    SandwichConfig,
    StrategyConfig,
    TokenPairConfig,
    load_capital_config,
    load_strategy_config,
    load_strategy_configs,
    resolve_kind,
    select_strategies,
)

__all__ = [
    "Settings",
    "StrategyConfig",
    "CrossVenueArbitrageConfig",
    "FlashArbitrageConfig",
    "MempoolStrategyConfig",
    "FrontRunningConfig",
    "SandwichConfig",
    "LiquidationConfig",
    "LatencyTradeConfig",
    "TokenPairConfig",
    "RouteConfig",
    "BorrowerConfig",
    "PriceTargetConfig",
    "FlashLoanFacilityConfig",
    "CapitalConfig",
    "CONFIG_MODELS",
    "load_strategy_config",
    "load_strategy_configs",
    "load_capital_config",
    "resolve_kind",
    "select_strategies",
]
