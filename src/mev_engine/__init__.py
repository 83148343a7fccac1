"""Opportunity detection and atomic execution engine for EVM trading strategies."""

__version__ = "0.1.0"
