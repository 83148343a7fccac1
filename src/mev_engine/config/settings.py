"""Process settings and configuration."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Run mode: a single strategy kind or "multi" for every enabled strategy
    bot_mode: str = Field(
        default="multi",
        description="Strategy kind to run, or 'multi'/'all' for all enabled strategies",
        alias="BOT_MODE"
    )

    # Blockchain settings
    ethereum_rpc_url: Optional[str] = Field(
        default=None,
        description="Ethereum JSON-RPC URL",
        alias="ETHEREUM_RPC_URL"
    )

    chain_id: int = Field(
        default=1,
        description="Expected chain ID",
        alias="CHAIN_ID"
    )

    rpc_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for a single RPC request in seconds",
        alias="RPC_TIMEOUT_SECONDS"
    )

    max_consecutive_rpc_failures: int = Field(
        default=25,
        description="Consecutive RPC failures before connectivity is declared lost",
        alias="MAX_CONSECUTIVE_RPC_FAILURES"
    )

    # Signing and execution
    executor_private_key: Optional[str] = Field(
        default=None,
        description="Private key of the funding account that signs plans",
        alias="EXECUTOR_PRIVATE_KEY"
    )

    executor_contract_address: Optional[str] = Field(
        default=None,
        description="On-chain executor contract that runs a plan atomically",
        alias="EXECUTOR_CONTRACT_ADDRESS"
    )

    fee_refresh_interval_seconds: float = Field(
        default=2.0,
        description="Interval between fee market refreshes",
        alias="FEE_REFRESH_INTERVAL_SECONDS"
    )

    receipt_poll_interval_seconds: float = Field(
        default=1.0,
        description="Interval between receipt polls for a pending attempt",
        alias="RECEIPT_POLL_INTERVAL_SECONDS"
    )

    dedup_window_blocks: int = Field(
        default=2,
        description="Blocks during which a repeated subject is suppressed",
        alias="DEDUP_WINDOW_BLOCKS"
    )

    shutdown_grace_seconds: float = Field(
        default=10.0,
        description="Time allowed for tasks to wind down on shutdown",
        alias="SHUTDOWN_GRACE_SECONDS"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level",
        alias="LOG_LEVEL"
    )

    log_format: Optional[str] = Field(
        default=None,
        description="logging format string, the engine default when unset",
        alias="LOG_FORMAT"
    )

    # Outcome sinks
    outcome_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving outcome events as JSON",
        alias="OUTCOME_WEBHOOK_URL"
    )

    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for the outcome event list",
        alias="REDIS_URL"
    )

    outcome_redis_key: str = Field(
        default="mev_engine:outcomes",
        description="Redis list receiving outcome events",
        alias="OUTCOME_REDIS_KEY"
    )

    outcome_history_size: int = Field(
        default=1000,
        description="Number of outcome events kept in the Redis list",
        alias="OUTCOME_HISTORY_SIZE"
    )

    sink_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for delivering one event to one sink",
        alias="SINK_TIMEOUT_SECONDS"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore"  # Ignore extra fields from .env
    }
