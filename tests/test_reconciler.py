"""
Tests for burn store -> ledger reconciliation.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from solxen_bridge.core.exceptions import BurnValidationError
from solxen_bridge.database import BurnRecord, FailureKind, ObligationStatus
from solxen_bridge.migrator import IdentityConversion, RateConversion, Reconciler

VALID_WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
VALID_WALLET_2 = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"
UNIT = 1_000_000


def _reconciler(store, ledger, *, minimum="0", rule=None):
    return Reconciler(store, ledger, rule or IdentityConversion(), min_burn_amount=Decimal(minimum))


def test_migrate_inserts_pending_obligations(make_burn_store, ledger):
    store = make_burn_store(
        [
            ("B1", VALID_WALLET, 100 * UNIT, 1),
            ("B2", VALID_WALLET_2, 50 * UNIT, 2),
        ]
    )
    result = _reconciler(store, ledger).migrate()
    assert result.inserted == 2
    obs = ledger.list_obligations()
    assert [(o.burn_id, o.mint_amount, o.status) for o in obs] == [
        ("B1", Decimal("100"), ObligationStatus.PENDING),
        ("B2", Decimal("50"), ObligationStatus.PENDING),
    ]
    assert obs[0].recipient == VALID_WALLET
    assert obs[0].observed_at == 1


def test_migrate_twice_changes_nothing(make_burn_store, ledger):
    store = make_burn_store(
        [
            ("B1", VALID_WALLET, 100 * UNIT, 1),
            ("B0", VALID_WALLET, 0, 2),
        ]
    )
    reconciler = _reconciler(store, ledger)
    reconciler.migrate()
    before = ledger.list_obligations()
    second = reconciler.migrate()
    assert second.inserted == 0
    assert second.invalid == 0
    assert second.skipped_existing == 2
    assert ledger.list_obligations() == before


def test_invalid_records_are_failed_without_blocking_others(make_burn_store, ledger):
    store = make_burn_store(
        [
            ("zero", VALID_WALLET, 0, 1),
            ("negative", VALID_WALLET, -5, 2),
            ("garbage", VALID_WALLET, "12abc", 3),
            ("bad-address", "not-an-address", 10 * UNIT, 4),
            ("good", VALID_WALLET_2, 10 * UNIT, 5),
        ]
    )
    result = _reconciler(store, ledger).migrate()
    assert result.invalid == 4
    assert result.inserted == 1
    for burn_id in ("zero", "negative", "garbage", "bad-address"):
        ob = ledger.get_obligation(burn_id)
        assert ob.status == ObligationStatus.FAILED
        assert ob.failure_kind == FailureKind.VALIDATION
        assert ob.last_error
    assert [o.burn_id for o in ledger.list_actionable(9)] == ["good"]


def test_below_minimum_is_skipped_and_revisited(make_burn_store, ledger):
    store = make_burn_store([("small", VALID_WALLET, 419 * UNIT, 1), ("ok", VALID_WALLET, 420 * UNIT, 2)])
    result = _reconciler(store, ledger, minimum="420").migrate()
    assert result.below_minimum == 1
    assert result.inserted == 1
    assert ledger.get_obligation("small") is None
    # Lowering the threshold later picks the burn up
    assert _reconciler(store, ledger, minimum="1").migrate().inserted == 1
    assert ledger.get_obligation("small").mint_amount == Decimal("419")


def test_duplicate_burn_ids_first_wins(make_burn_store, ledger):
    store = make_burn_store(
        [
            ("B1", VALID_WALLET, 100 * UNIT, 1),
            ("B1", VALID_WALLET, 100 * UNIT, 1),
            ("B1", VALID_WALLET, 999 * UNIT, 1),
        ]
    )
    result = _reconciler(store, ledger).migrate()
    assert result.inserted == 1
    assert result.duplicates == 2
    assert result.conflicts == 1
    assert ledger.get_obligation("B1").burn_amount == Decimal("100")


def test_burner_mode_migrates_latest_qualifying_burn(make_burn_store, ledger):
    store = make_burn_store(
        [
            ("old", VALID_WALLET, 500 * UNIT, 100),
            ("newest-small", VALID_WALLET, 1 * UNIT, 300),
            ("newer", VALID_WALLET, 600 * UNIT, 200),
            ("other", VALID_WALLET_2, 700 * UNIT, 400),
        ]
    )
    result = _reconciler(store, ledger, minimum="420").migrate(burner=VALID_WALLET)
    assert result.inserted == 1
    assert ledger.get_burn_ids() == {"newer"}


def test_burner_mode_unknown_burner(make_burn_store, ledger):
    store = make_burn_store([("B1", VALID_WALLET, 500 * UNIT, 1)])
    result = _reconciler(store, ledger).migrate(burner=VALID_WALLET_2)
    assert result.inserted == 0
    assert ledger.get_burn_ids() == set()


def test_conversion_rule_applied(make_burn_store, ledger):
    store = make_burn_store([("B1", VALID_WALLET, 100 * UNIT, 1)])
    _reconciler(store, ledger, rule=RateConversion(rate=Decimal("0.25"))).migrate()
    ob = ledger.get_obligation("B1")
    assert ob.burn_amount == Decimal("100")
    assert ob.mint_amount == Decimal("25")


def test_mint_rounding_to_zero_is_invalid(make_burn_store, ledger):
    reconciler = _reconciler(make_burn_store([]), ledger, rule=RateConversion(rate=Decimal("0.1")))
    record = BurnRecord("dust", VALID_WALLET, Decimal("0.000001"), None)
    with pytest.raises(BurnValidationError, match="rounds to zero"):
        reconciler.build_obligation(record)


def test_oversized_amounts_fail_validation_without_aborting(make_burn_store, ledger):
    store = make_burn_store(
        [
            ("huge", VALID_WALLET, "1e46", 1),
            ("over-u64", VALID_WALLET, str(20_000_000_000_000 * UNIT), 2),
            ("ok", VALID_WALLET_2, 100 * UNIT, 3),
        ]
    )
    result = _reconciler(store, ledger).migrate()
    assert result.inserted == 1
    assert result.invalid == 2
    huge, over = ledger.get_obligation("huge"), ledger.get_obligation("over-u64")
    assert huge.failure_kind == FailureKind.VALIDATION
    assert "cannot be converted" in huge.last_error
    assert over.failure_kind == FailureKind.VALIDATION
    assert "u64" in over.last_error
    assert ledger.get_obligation("ok").status == ObligationStatus.PENDING


def test_pending_is_ordered_by_observed_at(make_burn_store, ledger):
    store = make_burn_store(
        [
            ("late", VALID_WALLET, UNIT, 300),
            ("undated", VALID_WALLET, UNIT, None),
            ("early", VALID_WALLET, UNIT, 100),
        ]
    )
    reconciler = _reconciler(store, ledger)
    reconciler.migrate()
    assert [o.burn_id for o in reconciler.pending(9)] == ["early", "late", "undated"]
