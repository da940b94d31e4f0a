"""
Domain models for the burn store and the settlement ledger.

Burn records as read from the source dataset, mint obligations with their
lifecycle status, and the aggregate views used by status output and reports.
Used by the repository layer; no ORM coupling so backends stay swappable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


class ObligationStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why an obligation is failed; decides whether it is retried."""

    VALIDATION = "validation"
    """Malformed burn record; never submitted, never requeued."""
    REJECTED = "rejected"
    """Chain refused the mint; operator requeue only."""
    EXHAUSTED = "exhausted"
    """Retry ceiling hit on transient errors; retried on later runs while budget remains."""


@dataclass(frozen=True)
class BurnRecord:
    """Single burn event from the source dataset. Immutable once read."""

    burn_id: str
    """Source burn transaction signature."""
    depositor_address: str
    burn_amount: Decimal | None
    """Token units (already scaled by the source decimals); None if unparseable."""
    observed_at: datetime | None
    memo: str | None = None
    token: str | None = None
    raw_amount: str | None = None
    """Amount exactly as stored in the source, for diagnostics."""

    @property
    def observed_ts(self) -> int | None:
        if self.observed_at is None:
            return None
        return int(self.observed_at.timestamp())


@dataclass
class Obligation:
    """One burn's owed mint, as stored in the ledger."""

    burn_id: str
    recipient: str
    burn_amount: Decimal | None
    mint_amount: Decimal | None
    observed_at: int | None
    """Unix timestamp (seconds) of the burn; None sorts last."""
    status: ObligationStatus = ObligationStatus.PENDING
    tx_reference: str | None = None
    recent_blockhash: str | None = None
    """Blockhash the latest attempt was signed with; the attempt can land until it expires."""
    attempts: int = 0
    last_error: str | None = None
    failure_kind: FailureKind | None = None
    created_at: int | None = None
    updated_at: int | None = None
    submitted_at: int | None = None
    confirmed_at: int | None = None

    @property
    def observed_at_dt(self) -> datetime | None:
        if self.observed_at is None:
            return None
        return datetime.fromtimestamp(self.observed_at, tz=timezone.utc)

    def is_retryable(self, max_total_attempts: int) -> bool:
        """Exhausted failures stay actionable while lifetime budget remains."""
        return (
            self.status == ObligationStatus.FAILED
            and self.failure_kind == FailureKind.EXHAUSTED
            and self.attempts < max_total_attempts
        )


@dataclass
class LedgerStatistics:
    total_records: int
    pending: int
    submitted: int
    confirmed: int
    failed: int
    unique_wallets: int
    total_burned_amount: Decimal
    total_minted_amount: Decimal
    """Sum of mint_amount over confirmed obligations only."""

    def to_dict(self) -> dict[str, object]:
        return {
            "total_records": self.total_records,
            "pending": self.pending,
            "submitted": self.submitted,
            "confirmed": self.confirmed,
            "failed": self.failed,
            "unique_wallets": self.unique_wallets,
            "total_burned_amount": format(self.total_burned_amount, "f"),
            "total_minted_amount": format(self.total_minted_amount, "f"),
        }


@dataclass
class WalletSummary:
    wallet_address: str
    total_burned: Decimal
    total_minted: Decimal
    burn_count: int
    mint_count: int
    first_burn: int | None
    last_mint: int | None
