"""
Strategy configuration records.

One validated record per strategy kind, passed to the engine as plain
mappings by whoever loads configuration. Any validation failure surfaces as
ConfigurationError before a scanner starts.
"""
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from web3 import Web3

from ..chain.contracts import CHAINLINK_FEEDS, WETH
from ..errors import ConfigurationError
from ..opportunity.models import UINT256_MAX, StrategyKind

# Names used by older configuration files for each strategy kind
KIND_ALIASES: Dict[str, StrategyKind] = {
    "arbitrage": StrategyKind.CROSS_VENUE_ARBITRAGE,
    "flashloan": StrategyKind.FLASH_ARBITRAGE,
    "frontrunning": StrategyKind.FRONT_RUNNING,
    "liquidation": StrategyKind.LIQUIDATION,
    "sandwich": StrategyKind.SANDWICH,
    "hft": StrategyKind.LATENCY_TRADE,
}

MULTI_MODES = ("multi", "all")


def resolve_kind(name: str) -> StrategyKind:
    """Map a configured strategy name or alias to a StrategyKind."""
    key = name.strip().lower()
    if key in KIND_ALIASES:
        return KIND_ALIASES[key]
    try:
        return StrategyKind(key)
    except ValueError:
        raise ConfigurationError(f"Unknown strategy kind: {name}") from None


def _checksum(value: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"invalid address: {value!r}")
    return Web3.to_checksum_address(value)


class TokenPairConfig(BaseModel):
    """Token pair watched across routers."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    token_in: str
    token_out: str
    amount_in: int = Field(gt=0, le=UINT256_MAX)

    @field_validator("token_in", "token_out")
    @classmethod
    def _addresses(cls, v: str) -> str:
        return _checksum(v)


class RouteConfig(BaseModel):
    """Cyclic route; hop i swaps tokens[i] to tokens[i+1] on routers[i]."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    tokens: List[str] = Field(min_length=2)
    routers: List[str] = Field(min_length=2)
    amount_in: int = Field(gt=0, le=UINT256_MAX)

    @field_validator("tokens", "routers")
    @classmethod
    def _addresses(cls, v: List[str]) -> List[str]:
        return [_checksum(a) for a in v]

    @model_validator(mode="after")
    def _hops_match(self) -> "RouteConfig":
        if len(self.routers) != len(self.tokens):
            raise ValueError("a route needs one router per hop (len(routers) == len(tokens))")
        return self


class BorrowerConfig(BaseModel):
    """Lending position tracked for liquidation."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    borrower: str
    collateral_asset: str
    debt_asset: str
    debt_decimals: int = Field(default=18, ge=0, le=36)

    @field_validator("borrower", "collateral_asset", "debt_asset")
    @classmethod
    def _addresses(cls, v: str) -> str:
        return _checksum(v)


class PriceTargetConfig(BaseModel):
    """Buy asset with quote_asset once its feed price drops below target_price."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    asset: str
    quote_asset: str
    router: str
    target_price: int = Field(gt=0, le=UINT256_MAX)
    amount_in: int = Field(gt=0, le=UINT256_MAX)
    quote_decimals: int = Field(default=18, ge=0, le=36)
    # Where a flash-funded buy is unwound to repay the loan; defaults to router
    exit_router: Optional[str] = None

    @field_validator("asset", "quote_asset", "router")
    @classmethod
    def _addresses(cls, v: str) -> str:
        return _checksum(v)

    @field_validator("exit_router")
    @classmethod
    def _exit_router(cls, v: Optional[str]) -> Optional[str]:
        return _checksum(v) if v is not None else None


class FlashLoanFacilityConfig(BaseModel):
    """Flash-borrow facility for one asset."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    asset: str
    lending_pool: str
    fee_bps: int = Field(default=5, ge=0, le=10_000)  # Aave V3 premium, 0.05%
    max_amount: int = Field(default=UINT256_MAX, gt=0, le=UINT256_MAX)
    provider: str = "aave_v3"

    @field_validator("asset", "lending_pool")
    @classmethod
    def _addresses(cls, v: str) -> str:
        return _checksum(v)


class CapitalConfig(BaseModel):
    """Flash-borrow facilities available to all strategies."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    facilities: List[FlashLoanFacilityConfig] = Field(default_factory=list)


class StrategyConfig(BaseModel):
    """Settings shared by every strategy kind."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: StrategyKind
    enabled: bool = True

    # Scanning
    check_interval_seconds: float = Field(default=1.0, gt=0)
    worker_per_subject: bool = False
    max_staleness_blocks: int = Field(default=2, ge=0)

    # Profitability
    slippage_bps: int = Field(default=50, ge=0, le=10_000)
    min_profit_wei: int = Field(default=0, ge=0, le=UINT256_MAX)
    gas_estimate: int = Field(default=300_000, gt=0)
    protocol_fee_wei: int = Field(default=0, ge=0, le=UINT256_MAX)

    # Execution
    gas_limit: int = Field(default=1_000_000, gt=0)
    deadline_blocks: int = Field(default=3, ge=1)
    inclusion_timeout_blocks: int = Field(default=1, ge=1)
    fee_premium_bps: int = Field(default=0, ge=0)
    fee_bump_bps: int = Field(default=1250, ge=1)  # 12.5%, the usual node replacement minimum
    max_fee_per_gas_wei: Optional[int] = Field(default=None, gt=0, le=UINT256_MAX)
    flash_funded: bool = False
    funding_account: Optional[str] = None

    # Retry
    max_retries: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, gt=0)
    max_delay_seconds: float = Field(default=30.0, gt=0)

    @field_validator("funding_account")
    @classmethod
    def _funding_account(cls, v: Optional[str]) -> Optional[str]:
        return _checksum(v) if v is not None else None

    @model_validator(mode="after")
    def _delays(self) -> "StrategyConfig":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if self.gas_estimate > self.gas_limit:
            raise ValueError("gas_estimate cannot exceed gas_limit")
        return self


class BaseTokenStrategyConfig(StrategyConfig):
    """Settings of strategies whose gains are paid in a base token."""
    # Amounts of these tokens compare one to one with gas in wei
    base_tokens: List[str] = Field(default_factory=lambda: [WETH])

    @field_validator("base_tokens")
    @classmethod
    def _base_tokens(cls, v: List[str]) -> List[str]:
        return [_checksum(a) for a in v]


class CrossVenueArbitrageConfig(BaseTokenStrategyConfig):
    kind: StrategyKind = StrategyKind.CROSS_VENUE_ARBITRAGE
    routers: List[str] = Field(min_length=2)
    token_pairs: List[TokenPairConfig] = Field(min_length=1)

    @field_validator("routers")
    @classmethod
    def _routers(cls, v: List[str]) -> List[str]:
        return [_checksum(a) for a in v]

    @model_validator(mode="after")
    def _pairs_start_in_base_tokens(self) -> "CrossVenueArbitrageConfig":
        for pair in self.token_pairs:
            if pair.token_in not in self.base_tokens:
                raise ValueError(f"token_in {pair.token_in} is not a base token")
        return self


class FlashArbitrageConfig(BaseTokenStrategyConfig):
    kind: StrategyKind = StrategyKind.FLASH_ARBITRAGE
    flash_funded: bool = True
    routes: List[RouteConfig] = Field(min_length=1)

    @model_validator(mode="after")
    def _always_funded(self) -> "FlashArbitrageConfig":
        if not self.flash_funded:
            raise ValueError("flash arbitrage is always flash funded")
        return self

    @model_validator(mode="after")
    def _routes_start_in_base_tokens(self) -> "FlashArbitrageConfig":
        for route in self.routes:
            if route.tokens[0] not in self.base_tokens:
                raise ValueError(f"route start {route.tokens[0]} is not a base token")
        return self


class MempoolStrategyConfig(BaseTokenStrategyConfig):
    """Shared settings of strategies that watch pending transactions."""
    watched_routers: List[str] = Field(default_factory=list)
    value_threshold_wei: int = Field(default=10 ** 18, ge=0, le=UINT256_MAX)
    capture_bps: int = Field(default=30, ge=0, le=10_000)
    trade_size_bps: int = Field(default=5000, gt=0, le=10_000)
    max_tracked_hashes: int = Field(default=10_000, gt=0)

    @field_validator("watched_routers")
    @classmethod
    def _routers(cls, v: List[str]) -> List[str]:
        return [_checksum(a) for a in v]


class FrontRunningConfig(MempoolStrategyConfig):
    kind: StrategyKind = StrategyKind.FRONT_RUNNING
    fee_premium_bps: int = Field(default=1000, ge=0)
    deadline_blocks: int = Field(default=1, ge=1)


class SandwichConfig(MempoolStrategyConfig):
    kind: StrategyKind = StrategyKind.SANDWICH
    fee_premium_bps: int = Field(default=1500, ge=0)
    deadline_blocks: int = Field(default=1, ge=1)
    flash_funded: bool = True

    @model_validator(mode="after")
    def _always_funded(self) -> "SandwichConfig":
        if not self.flash_funded:
            raise ValueError("sandwiches are always flash funded")
        return self


class FeedPricedStrategyConfig(StrategyConfig):
    """Settings of strategies whose gains are valued through Chainlink USD feeds."""
    price_feeds: Dict[str, str] = Field(default_factory=lambda: dict(CHAINLINK_FEEDS))

    @field_validator("price_feeds")
    @classmethod
    def _feeds(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {_checksum(asset): _checksum(feed) for asset, feed in v.items()}

    @model_validator(mode="after")
    def _eth_feed(self) -> "FeedPricedStrategyConfig":
        if WETH not in self.price_feeds:
            raise ValueError(f"price_feeds needs a feed for WETH ({WETH}) to value gains in wei")
        return self


class LiquidationConfig(FeedPricedStrategyConfig):
    kind: StrategyKind = StrategyKind.LIQUIDATION
    lending_pool: str
    swap_router: str
    borrowers: List[BorrowerConfig] = Field(min_length=1)
    close_factor_bps: int = Field(default=5000, gt=0, le=10_000)
    liquidation_bonus_bps: int = Field(default=500, ge=0, le=10_000)
    flash_funded: bool = True

    @field_validator("lending_pool", "swap_router")
    @classmethod
    def _addresses(cls, v: str) -> str:
        return _checksum(v)


class LatencyTradeConfig(FeedPricedStrategyConfig):
    kind: StrategyKind = StrategyKind.LATENCY_TRADE
    targets: List[PriceTargetConfig] = Field(min_length=1)


CONFIG_MODELS: Dict[StrategyKind, Type[StrategyConfig]] = {
    StrategyKind.CROSS_VENUE_ARBITRAGE: CrossVenueArbitrageConfig,
    StrategyKind.FLASH_ARBITRAGE: FlashArbitrageConfig,
    StrategyKind.FRONT_RUNNING: FrontRunningConfig,
    StrategyKind.SANDWICH: SandwichConfig,
    StrategyKind.LIQUIDATION: LiquidationConfig,
    StrategyKind.LATENCY_TRADE: LatencyTradeConfig,
}


def load_strategy_config(name: str, raw: Mapping[str, Any]) -> StrategyConfig:
    """Validate one strategy record."""
    kind = resolve_kind(str(raw.get("kind", name)))
    body = dict(raw)
    body["kind"] = kind
    try:
        return CONFIG_MODELS[kind].model_validate(body)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", strategy=kind.value) from e


def load_strategy_configs(raw: Mapping[str, Mapping[str, Any]]) -> Dict[StrategyKind, StrategyConfig]:
    """Validate every strategy record, keyed by kind."""
    configs: Dict[StrategyKind, StrategyConfig] = {}
    for name, body in raw.items():
        if not isinstance(body, Mapping):
            raise ConfigurationError(f"Strategy record must be a mapping, got {type(body).__name__}", strategy=name)
        config = load_strategy_config(name, body)
        if config.kind in configs:
            raise ConfigurationError("Duplicate strategy record", strategy=config.kind.value)
        configs[config.kind] = config
    return configs


def load_capital_config(raw: Optional[Mapping[str, Any]]) -> CapitalConfig:
    """Validate the flash-borrow facility list."""
    try:
        return CapitalConfig.model_validate(dict(raw or {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid capital configuration: {e}") from e


def select_strategies(configs: Mapping[StrategyKind, StrategyConfig], bot_mode: str) -> List[StrategyConfig]:
    """
    Strategies to run for a bot mode.

    "multi" or "all" runs every enabled record; a single kind runs just that
    record whether or not it is flagged enabled.
    """
    if bot_mode.strip().lower() in MULTI_MODES:
        return [c for c in configs.values() if c.enabled]

    kind = resolve_kind(bot_mode)
    if kind not in configs:
        raise ConfigurationError(f"Bot mode {bot_mode!r} has no strategy record", strategy=kind.value)
    return [configs[kind]]
