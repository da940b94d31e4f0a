"""
Core utilities: the exception taxonomy shared by the ledger, reconciler,
minter and CLI.
"""

from solxen_bridge.core.exceptions import (
    BridgeError,
    BurnStoreError,
    BurnValidationError,
    ChainError,
    ConfigError,
    LedgerStorageError,
    RejectedChainError,
    TransientChainError,
)

__all__ = [
    "BridgeError",
    "BurnStoreError",
    "BurnValidationError",
    "ChainError",
    "ConfigError",
    "LedgerStorageError",
    "RejectedChainError",
    "TransientChainError",
]
