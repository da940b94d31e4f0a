"""
Chain client interface and the in-memory simulated client.

A chain client submits one mint (recipient, amount) and answers whether a
previously submitted mint is confirmed. Every mint carries a memo naming its
burn_id so the mint can be found on chain even when its transaction reference
was never recorded (crash between submit and ledger write).
"""

from __future__ import annotations

import hashlib
import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

import base58

from solxen_bridge.core.exceptions import RejectedChainError
from solxen_bridge.logging import get_logger
from solxen_bridge.migrator.conversion import to_base_units
from solxen_bridge.utils.wallet_utils import is_valid_address

logger = get_logger(__name__)

MEMO_PREFIX = "solxen-bridge:"
SIMULATED_SIGNATURE_PREFIX = "sim"
SIMULATED_BLOCKHASH = "sim-blockhash"


def memo_for_burn(burn_id: str) -> str:
    return f"{MEMO_PREFIX}{burn_id}"


def memo_matches(memo_field: str | None, burn_id: str) -> bool:
    """
    True if an RPC memo field carries the memo for burn_id.

    RPC nodes report memos as "[len] text", several memos joined by "; ".
    """
    if not memo_field:
        return False
    wanted = memo_for_burn(burn_id)
    for part in memo_field.split(";"):
        text = part.strip()
        if text.startswith("[") and "] " in text:
            text = text.split("] ", 1)[1]
        if text == wanted:
            return True
    return False


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    NOT_FOUND = "not_found"
    # Landed but the transaction errored: the mint did not happen
    FAILED = "failed"


@dataclass(frozen=True)
class ConfirmationResult:
    status: ConfirmationStatus
    tx_reference: str | None = None
    error: str | None = None

    @classmethod
    def not_found(cls) -> "ConfirmationResult":
        return cls(ConfirmationStatus.NOT_FOUND)


# Called with (signature, recent_blockhash) once a transaction is signed, before it is sent
OnSigned = Callable[[str, str], None]


class ChainClient(ABC):
    """Submits mints and reports their confirmation status."""

    @abstractmethod
    def submit_mint(
        self,
        recipient: str,
        amount: Decimal,
        *,
        memo: str | None = None,
        on_signed: OnSigned | None = None,
    ) -> str:
        """
        Submit a mint of `amount` tokens to `recipient`. Returns the tx reference.

        on_signed runs before anything is broadcast; if it raises, nothing is
        sent. Raises TransientChainError (retry) or RejectedChainError (do not
        retry). A TransientChainError carrying tx_reference means the signed
        transaction may still land.
        """

    @abstractmethod
    def query_confirmation(
        self,
        tx_reference: str | None = None,
        *,
        burn_id: str | None = None,
        recent_blockhash: str | None = None,
    ) -> ConfirmationResult:
        """
        Status of a submitted mint, looked up by tx reference and/or burn_id memo.

        recent_blockhash is the blockhash tx_reference was signed with; while it
        is still valid an unseen transaction is reported PENDING.

        Raises TransientChainError when the chain cannot be queried.
        """

    def verify(self) -> None:
        """Pre-flight checks before minting. Raises ConfigError when unusable."""

    def describe(self) -> dict[str, Any]:
        return {"client": type(self).__name__}

    def close(self) -> None:
        pass


class SimulatedChainClient(ChainClient):
    """
    Chain client used when no mint authority is configured (or DRY_RUN=1).

    Every mint confirms immediately with a deterministic "sim..." signature;
    nothing leaves the process.
    """

    def __init__(self, *, token_decimals: int = 6) -> None:
        self._decimals = token_decimals
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._confirmed: dict[str, str] = {}
        self._by_burn: dict[str, str] = {}

    def submit_mint(
        self,
        recipient: str,
        amount: Decimal,
        *,
        memo: str | None = None,
        on_signed: OnSigned | None = None,
    ) -> str:
        if not is_valid_address(recipient):
            raise RejectedChainError(f"invalid recipient address {recipient!r}")
        try:
            units = to_base_units(amount, self._decimals)
        except ValueError as e:
            raise RejectedChainError(str(e)) from e
        with self._lock:
            n = next(self._counter)
            digest = hashlib.sha256(f"{memo}|{recipient}|{units}|{n}".encode()).digest()
            signature = SIMULATED_SIGNATURE_PREFIX + base58.b58encode(digest).decode()
        if on_signed is not None:
            on_signed(signature, SIMULATED_BLOCKHASH)
        with self._lock:
            self._confirmed[signature] = recipient
            if memo and memo.startswith(MEMO_PREFIX):
                self._by_burn[memo[len(MEMO_PREFIX):]] = signature
        logger.info(
            "mint_simulated",
            signature=signature,
            recipient=recipient,
            amount=format(amount, "f"),
            base_units=units,
        )
        return signature

    def query_confirmation(
        self,
        tx_reference: str | None = None,
        *,
        burn_id: str | None = None,
        recent_blockhash: str | None = None,
    ) -> ConfirmationResult:
        with self._lock:
            if tx_reference and tx_reference in self._confirmed:
                return ConfirmationResult(ConfirmationStatus.CONFIRMED, tx_reference)
            if burn_id and burn_id in self._by_burn:
                return ConfirmationResult(ConfirmationStatus.CONFIRMED, self._by_burn[burn_id])
        if tx_reference and tx_reference.startswith(SIMULATED_SIGNATURE_PREFIX):
            # Minted by an earlier simulated run; simulated mints always confirm
            return ConfirmationResult(ConfirmationStatus.CONFIRMED, tx_reference)
        return ConfirmationResult.not_found()

    def describe(self) -> dict[str, Any]:
        return {"client": "simulated", "token_decimals": self._decimals}


def build_chain_client(settings: Any) -> ChainClient:
    """
    Chain client for the configured mint authority.

    Falls back to the simulated client when DRY_RUN is set or no keypair can
    be found, matching the behavior of running without credentials.
    """
    if settings.dry_run:
        logger.warning("chain_client_simulated", reason="dry_run")
        return SimulatedChainClient(token_decimals=settings.token_decimals)
    from solxen_bridge.minter.solana_client import SolanaChainClient, load_mint_authority

    keypair = load_mint_authority(settings.private_key, settings.keypair_path)
    if keypair is None:
        logger.warning(
            "chain_client_simulated",
            reason="no_mint_authority",
            keypair_path=str(settings.keypair_path),
        )
        return SimulatedChainClient(token_decimals=settings.token_decimals)
    return SolanaChainClient(
        rpc_url=settings.rpc_url,
        keypair=keypair,
        token_mint=settings.token_mint,
        token_program_id=settings.token_program_id,
        token_decimals=settings.token_decimals,
    )
