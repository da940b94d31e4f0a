"""
Application-level exceptions.

Per-obligation errors (validation, transient, rejected) are isolated by the
pipeline and recorded in the ledger. Storage, source and configuration errors
abort the run.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all solxen-bridge errors."""


class ConfigError(BridgeError):
    """Invalid or missing configuration. Fatal."""


class LedgerStorageError(BridgeError):
    """Ledger unavailable or corrupt. Fatal: correctness needs durable state."""


class BurnStoreError(BridgeError):
    """Burn dataset missing or unreadable. Fatal."""


class BurnValidationError(BridgeError):
    """Malformed burn record. Recorded as a failed obligation, never fatal."""

    def __init__(self, burn_id: str, reason: str) -> None:
        super().__init__(f"{burn_id}: {reason}")
        self.burn_id = burn_id
        self.reason = reason


class ChainError(BridgeError):
    """Base for errors reported by a chain client."""


class TransientChainError(ChainError):
    """
    Timeout, rate limit or transport failure. Retried with backoff.

    tx_reference is set when a signed transaction may have reached the network
    (the send itself failed ambiguously); it must be resolved before any resend.
    """

    def __init__(self, message: str = "", *, tx_reference: str | None = None) -> None:
        super().__init__(message)
        self.tx_reference = tx_reference


class RejectedChainError(ChainError):
    """The chain definitively refused the operation. Not retried automatically."""
