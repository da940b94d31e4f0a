"""
Minting: chain clients, submit throttle and the mint executor.

SolanaChainClient (solana-py/solders) is imported lazily by build_chain_client.
"""

from solxen_bridge.minter.chain_client import (
    ChainClient,
    ConfirmationResult,
    ConfirmationStatus,
    SimulatedChainClient,
    build_chain_client,
    memo_for_burn,
)
from solxen_bridge.minter.executor import ExecutorConfig, MintExecutor, MintResult, Outcome, RecoveryResult
from solxen_bridge.minter.rate_limit import RateLimiter

__all__ = [
    "ChainClient",
    "ConfirmationResult",
    "ConfirmationStatus",
    "SimulatedChainClient",
    "build_chain_client",
    "memo_for_burn",
    "ExecutorConfig",
    "MintExecutor",
    "MintResult",
    "Outcome",
    "RecoveryResult",
    "RateLimiter",
]
