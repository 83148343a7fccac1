"""Wiring of engine components from settings and strategy records."""
import asyncio
import logging
import signal
from typing import Any, List, Mapping, Optional, Sequence

from eth_account import Account
from web3 import Web3

from ..capital.provider import CapitalProvider
from ..chain.client import ChainClient, Web3ChainClient
from ..chain.fee_market import FeeMarket
from ..chain.nonce_manager import SequencerRegistry
from ..config.settings import Settings
from ..config.strategy_config import load_capital_config, load_strategy_configs, select_strategies
from ..errors import ConfigurationError
from ..evaluation.evaluator import ProfitabilityEvaluator
from ..execution.orchestrator import ExecutionOrchestrator
from ..execution.plan_encoder import PlanEncoder
from ..logging_config import setup_logging
from ..reporting.ledger import ProfitLedger
from ..reporting.reporter import OutcomeReporter
from ..reporting.sinks import LoggingSink, OutcomeSink, RedisSink, WebhookSink
from ..scanners import SCANNER_CLASSES
from ..strategies import build_strategies
from .supervisor import EngineSupervisor

logger = logging.getLogger(__name__)


def build_sinks(settings: Settings) -> List[OutcomeSink]:
    """Logging sink always; webhook and Redis when configured."""
    sinks: List[OutcomeSink] = [LoggingSink()]
    if settings.outcome_webhook_url:
        sinks.append(WebhookSink(settings.outcome_webhook_url, timeout=settings.sink_timeout_seconds))
    if settings.redis_url:
        sinks.append(
            RedisSink.from_url(settings.redis_url, settings.outcome_redis_key, settings.outcome_history_size)
        )
    return sinks


def build_engine(
    settings: Settings,
    strategy_records: Mapping[str, Mapping[str, Any]],
    capital_record: Optional[Mapping[str, Any]] = None,
    client: Optional[ChainClient] = None,
    sinks: Optional[Sequence[OutcomeSink]] = None,
) -> EngineSupervisor:
    """
    Validate configuration and assemble a supervisor.

    Raises:
        ConfigurationError: invalid records, no strategy to run, or missing
            executor, signer or RPC settings
    """
    logger.info("🏭 Building engine components...")

    configs = select_strategies(load_strategy_configs(strategy_records), settings.bot_mode)
    if not configs:
        raise ConfigurationError(f"No enabled strategies for bot mode {settings.bot_mode!r}")
    capital = load_capital_config(capital_record)

    if not settings.executor_contract_address or not Web3.is_address(settings.executor_contract_address):
        raise ConfigurationError("EXECUTOR_CONTRACT_ADDRESS must be a valid address")
    executor = Web3.to_checksum_address(settings.executor_contract_address)

    funding_account = None
    private_keys = []
    if settings.executor_private_key:
        try:
            funding_account = Account.from_key(settings.executor_private_key).address
        except ValueError as e:
            raise ConfigurationError(f"EXECUTOR_PRIVATE_KEY is not a valid key: {e}") from None
        private_keys.append(settings.executor_private_key)
    if funding_account is None and any(c.funding_account is None for c in configs):
        raise ConfigurationError("EXECUTOR_PRIVATE_KEY is required unless every strategy names a funding account")

    if client is None:
        if not settings.ethereum_rpc_url:
            raise ConfigurationError("ETHEREUM_RPC_URL is required")
        client = Web3ChainClient(
            settings.ethereum_rpc_url,
            private_keys=private_keys,
            request_timeout=settings.rpc_timeout_seconds,
            max_consecutive_failures=settings.max_consecutive_rpc_failures,
        )

    fee_market = FeeMarket(client, refresh_interval=settings.fee_refresh_interval_seconds)
    capital_provider = CapitalProvider.from_config(capital, receiver=executor)
    strategies = build_strategies(configs)

    for config in configs:
        if config.flash_funded and not capital.facilities:
            raise ConfigurationError("Flash funded strategy without any flash loan facility", strategy=config.kind.value)

    evaluator = ProfitabilityEvaluator(
        strategies,
        capital_provider,
        executor=executor,
        funding_account=funding_account,
    )
    ledger = ProfitLedger()
    reporter = OutcomeReporter(
        ledger,
        sinks=build_sinks(settings) if sinks is None else sinks,
        sink_timeout=settings.sink_timeout_seconds,
    )
    orchestrator = ExecutionOrchestrator(
        client,
        fee_market,
        PlanEncoder(executor, settings.chain_id),
        SequencerRegistry(client),
        strategies,
        ledger,
        reporter,
        default_funding_account=funding_account,
        receipt_poll_interval=settings.receipt_poll_interval_seconds,
    )
    scanners = [
        SCANNER_CLASSES[config.kind](config, client, fee_market, capital_provider)
        for config in configs
    ]

    logger.info(f"✅ Engine built: {', '.join(c.kind.value for c in configs)}")
    return EngineSupervisor(
        client,
        fee_market,
        scanners,
        evaluator,
        orchestrator,
        reporter,
        dedup_window_blocks=settings.dedup_window_blocks,
        shutdown_grace=settings.shutdown_grace_seconds,
    )


async def check_chain(client: ChainClient, chain_id: int) -> None:
    """Refuse to start against an unreachable node or the wrong chain."""
    if not isinstance(client, Web3ChainClient):
        return
    health = await client.get_chain_health()
    if health["status"] != "healthy":
        raise ConfigurationError(f"Chain node unreachable: {health.get('error')}")
    if health["chain_id"] != chain_id:
        raise ConfigurationError(f"Node is on chain {health['chain_id']}, expected {chain_id}")
    logger.info(f"✅ Connected to chain {chain_id} at block {health['block_number']} ({health['response_time_ms']}ms)")


async def run_engine(
    strategy_records: Mapping[str, Mapping[str, Any]],
    capital_record: Optional[Mapping[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> None:
    """Entry point: build, check the chain, run until SIGINT/SIGTERM or a fatal error."""
    settings = settings or Settings()
    setup_logging(settings.log_level, settings.log_format)

    supervisor = build_engine(settings, strategy_records, capital_record)
    client = supervisor.client
    try:
        await check_chain(client, settings.chain_id)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, supervisor.request_shutdown)
            except NotImplementedError:
                # Windows event loops do not support signal handlers
                pass

        await supervisor.run()
    finally:
        if isinstance(client, Web3ChainClient):
            await client.close()
