"""Logging setup for engine entry points."""
import logging
from typing import Optional

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty third-party loggers kept at WARNING unless debugging
NOISY_LOGGERS = ("web3", "urllib3", "aiohttp.access", "asyncio")


def setup_logging(level: str = "INFO", fmt: Optional[str] = None) -> None:
    """Configure root logging for the engine process."""
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        format=fmt or DEFAULT_LOG_FORMAT,
    )

    if numeric_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
