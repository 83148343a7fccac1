"""Chain access: client boundary, contract encoding, fee market and nonces."""
from .client import (
    ChainClient,
    FeeData,
    PendingTransaction,
    TransactionReceipt,
    Web3ChainClient,
)
from .fee_market import FeeMarket, FeeSnapshot, apply_bps
from .nonce_manager import AccountSequencer, NonceManager, SequencerRegistry

__all__ = [
    # Client
    "ChainClient",
    "Web3ChainClient",
    "FeeData",
    "PendingTransaction",
    "TransactionReceipt",

    # Fees
    "FeeMarket",
    "FeeSnapshot",
    "apply_bps",

    # Nonces
    "NonceManager",
    "AccountSequencer",
    "SequencerRegistry",
]
