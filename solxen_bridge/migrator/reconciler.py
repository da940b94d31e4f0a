"""
Reconciler: burn store -> ledger migration and the actionable queue.

Diffs the (possibly dirty) burn dataset against the ledger and writes one
obligation per burn_id not yet seen. Malformed burns are written as failed
obligations with a diagnostic so they are visible in reports but never
minted; burns under the minimum threshold are skipped without a ledger row
and re-evaluated on every run. Re-running is a no-op for burn_ids already in
the ledger.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable

from solxen_bridge.core.exceptions import BurnValidationError
from solxen_bridge.database.burn_store import BurnStore
from solxen_bridge.database.database import Ledger
from solxen_bridge.database.models import BurnRecord, FailureKind, Obligation, ObligationStatus
from solxen_bridge.logging import get_logger
from solxen_bridge.migrator.conversion import ConversionRule, to_base_units
from solxen_bridge.utils.wallet_utils import is_valid_address, short

logger = get_logger(__name__)


@dataclass
class MigrationResult:
    """Counts from one migrate pass."""

    inserted: int = 0
    invalid: int = 0
    skipped_existing: int = 0
    below_minimum: int = 0
    duplicates: int = 0
    conflicts: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _newest_first(records: Iterable[BurnRecord]) -> list[BurnRecord]:
    # Stable: records without a timestamp go last, source order kept among equals
    dated = [r for r in records if r.observed_at is not None]
    undated = [r for r in records if r.observed_at is None]
    dated.sort(key=lambda r: r.observed_at, reverse=True)
    return dated + undated


class Reconciler:
    """Turns burn records into ledger obligations."""

    def __init__(
        self,
        burn_store: BurnStore,
        ledger: Ledger,
        conversion_rule: ConversionRule,
        *,
        min_burn_amount: Decimal = Decimal(0),
        token_decimals: int = 6,
    ) -> None:
        self._store = burn_store
        self._ledger = ledger
        self._convert = conversion_rule
        self._min_burn_amount = min_burn_amount
        self._decimals = token_decimals

    def build_obligation(self, record: BurnRecord) -> Obligation | None:
        """
        Validate one record and derive its obligation.

        Raises BurnValidationError for malformed records. Returns None when the
        record is valid but below the minimum burn amount.
        """
        amount = record.burn_amount
        if amount is None:
            raise BurnValidationError(record.burn_id, f"unparseable burn amount {record.raw_amount!r}")
        if amount <= 0:
            raise BurnValidationError(record.burn_id, f"non-positive burn amount {format(amount, 'f')}")
        if not is_valid_address(record.depositor_address):
            raise BurnValidationError(
                record.burn_id, f"malformed depositor address {record.depositor_address!r}"
            )
        if amount < self._min_burn_amount:
            return None
        try:
            mint_amount = self._convert(amount)
        except InvalidOperation as e:
            raise BurnValidationError(
                record.burn_id, f"burn amount {format(amount, 'f')} cannot be converted"
            ) from e
        if mint_amount <= 0:
            raise BurnValidationError(
                record.burn_id, f"mint amount for burn {format(amount, 'f')} rounds to zero"
            )
        try:
            to_base_units(mint_amount, self._decimals)
        except ValueError as e:
            raise BurnValidationError(record.burn_id, str(e)) from e
        return Obligation(
            burn_id=record.burn_id,
            recipient=record.depositor_address.strip(),
            burn_amount=amount,
            mint_amount=mint_amount,
            observed_at=record.observed_ts,
        )

    def _record_invalid(self, record: BurnRecord, err: BurnValidationError) -> bool:
        logger.warning(
            "migration_record_invalid",
            burn_id=record.burn_id,
            burner=record.depositor_address,
            reason=err.reason,
        )
        return self._ledger.insert_obligation(
            Obligation(
                burn_id=record.burn_id,
                recipient=record.depositor_address or "",
                burn_amount=record.burn_amount,
                mint_amount=None,
                observed_at=record.observed_ts,
                status=ObligationStatus.FAILED,
                failure_kind=FailureKind.VALIDATION,
                last_error=err.reason,
            )
        )

    def migrate(self, *, burner: str | None = None) -> MigrationResult:
        """
        Insert obligations for every burn not yet in the ledger.

        With burner set, only that depositor's burns are considered, newest
        first, and at most one qualifying burn is migrated.
        """
        result = MigrationResult()
        existing = self._ledger.get_burn_ids()
        records: Iterable[BurnRecord] = self._store.records(burner=burner)
        if burner is not None:
            records = _newest_first(list(records))
        logger.info(
            "migration_started",
            source=str(self._store.path),
            burner=burner,
            existing=len(existing),
            min_burn_amount=format(self._min_burn_amount, "f"),
        )

        seen: dict[str, BurnRecord] = {}
        for record in records:
            first = seen.get(record.burn_id)
            if first is not None:
                result.duplicates += 1
                if first != record:
                    result.conflicts += 1
                    logger.warning(
                        "migration_duplicate_conflict",
                        burn_id=record.burn_id,
                        kept_amount=first.raw_amount,
                        dropped_amount=record.raw_amount,
                    )
                continue
            seen[record.burn_id] = record

            if record.burn_id in existing:
                result.skipped_existing += 1
                continue

            try:
                obligation = self.build_obligation(record)
            except BurnValidationError as e:
                if self._record_invalid(record, e):
                    result.invalid += 1
                else:
                    result.skipped_existing += 1
                continue

            if obligation is None:
                result.below_minimum += 1
                logger.debug(
                    "migration_below_minimum",
                    burn_id=short(record.burn_id),
                    amount=format(record.burn_amount, "f") if record.burn_amount is not None else None,
                )
                continue

            if self._ledger.insert_obligation(obligation):
                result.inserted += 1
                logger.info(
                    "migration_record_inserted",
                    burn_id=obligation.burn_id,
                    recipient=obligation.recipient,
                    burn_amount=format(obligation.burn_amount, "f"),
                    mint_amount=format(obligation.mint_amount, "f"),
                )
            else:
                result.skipped_existing += 1
            if burner is not None and result.inserted:
                break

        if burner is not None and not seen:
            logger.warning("migration_burner_not_found", burner=burner)
        elif burner is not None and not result.inserted:
            logger.warning("migration_burner_no_qualifying_record", burner=burner)
        logger.info("migration_completed", **result.to_dict())
        return result

    def pending(self, max_total_attempts: int) -> list[Obligation]:
        """Obligations requiring action, oldest burn first."""
        return self._ledger.list_actionable(max_total_attempts)
