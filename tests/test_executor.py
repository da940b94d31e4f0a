"""
Tests for the mint executor: ordering, retry ceiling, rejection, crash
recovery and exactly-once submission. Uses the scriptable FakeChainClient.
"""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from solxen_bridge.core.exceptions import LedgerStorageError, RejectedChainError, TransientChainError
from solxen_bridge.database import FailureKind, Obligation, ObligationStatus
from solxen_bridge.minter import ExecutorConfig, MintExecutor, Outcome, RateLimiter, memo_for_burn

VALID_WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
VALID_WALLET_2 = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"


def _config(**overrides) -> ExecutorConfig:
    values = dict(
        concurrency=1,
        retry_attempts=3,
        max_total_attempts=9,
        retry_backoff_sec=0.0,
        retry_backoff_cap_sec=0.0,
        confirm_timeout_sec=0.05,
        confirm_poll_interval_sec=0.01,
        min_submit_interval_sec=0.0,
        max_tx_per_minute=10_000,
    )
    values.update(overrides)
    return ExecutorConfig(**values)


def _executor(ledger, chain, **overrides) -> MintExecutor:
    return MintExecutor(ledger, chain, _config(**overrides))


def _add(ledger, burn_id: str, amount: str, observed_at: int | None, recipient: str = VALID_WALLET) -> None:
    ledger.insert_obligation(
        Obligation(
            burn_id=burn_id,
            recipient=recipient,
            burn_amount=Decimal(amount),
            mint_amount=Decimal(amount),
            observed_at=observed_at,
        )
    )


def test_all_confirmed_in_observed_order(ledger, chain):
    _add(ledger, "B2", "50", 2, VALID_WALLET_2)
    _add(ledger, "B1", "100", 1)
    result = _executor(ledger, chain).run()

    assert result.confirmed == 2
    assert result.dispatched == ["B1", "B2"]
    assert chain.calls == [("B1", VALID_WALLET, Decimal("100")), ("B2", VALID_WALLET_2, Decimal("50"))]
    for burn_id in ("B1", "B2"):
        ob = ledger.get_obligation(burn_id)
        assert ob.status == ObligationStatus.CONFIRMED
        assert ob.tx_reference.startswith(f"tx-{burn_id}-")
        assert ob.attempts == 1


def test_rejection_is_terminal_and_isolated(ledger, chain):
    _add(ledger, "B1", "100", 1)
    _add(ledger, "B2", "50", 2)
    chain.errors["B2"] = RejectedChainError("custom program error: 0x5")
    result = _executor(ledger, chain).run()

    assert result.confirmed == 1
    assert result.rejected == 1
    b1, b2 = ledger.get_obligation("B1"), ledger.get_obligation("B2")
    assert b1.status == ObligationStatus.CONFIRMED
    assert b2.status == ObligationStatus.FAILED
    assert b2.failure_kind == FailureKind.REJECTED
    assert "custom program error" in b2.last_error
    assert b2.attempts == 1
    assert chain.submits_by_burn["B2"] == 1


def test_always_transient_fails_after_exactly_retry_attempts(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.errors["B1"] = TransientChainError("429 Too Many Requests")
    result = _executor(ledger, chain, retry_attempts=3).run()

    assert result.exhausted == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.FAILED
    assert ob.failure_kind == FailureKind.EXHAUSTED
    assert ob.attempts == 3
    assert chain.submits_by_burn["B1"] == 3
    assert "429" in ob.last_error


def test_transient_then_success(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.errors["B1"] = [TransientChainError("timed out")]
    result = _executor(ledger, chain).run()

    assert result.confirmed == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.CONFIRMED
    assert ob.attempts == 2


def test_crash_recovery_passes_stored_blockhash(ledger, chain):
    _add(ledger, "B1", "100", 1)
    ledger.claim("B1", 9)
    assert ledger.set_tx_reference("B1", "tx-signed-before-crash", recent_blockhash="bh-stored")

    _executor(ledger, chain).recover()
    assert chain.query_blockhashes[0] == "bh-stored"


def test_exhausted_obligation_retried_on_later_run(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.errors["B1"] = TransientChainError("node is behind")
    _executor(ledger, chain, retry_attempts=2, max_total_attempts=4).run()
    assert ledger.get_obligation("B1").attempts == 2

    del chain.errors["B1"]
    result = _executor(ledger, chain, retry_attempts=2, max_total_attempts=4).run()
    assert result.confirmed == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.CONFIRMED
    assert ob.attempts == 3


def test_lifetime_budget_stops_retries(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.errors["B1"] = TransientChainError("timed out")
    _executor(ledger, chain, retry_attempts=2, max_total_attempts=2).run()
    result = _executor(ledger, chain, retry_attempts=2, max_total_attempts=2).run()
    assert result.dispatched == []
    assert chain.submits_by_burn["B1"] == 2


def test_rerun_never_resubmits_confirmed(ledger, chain):
    _add(ledger, "B1", "100", 1)
    _executor(ledger, chain).run()
    result = _executor(ledger, chain).run()
    assert result.dispatched == []
    assert len(chain.calls) == 1


def test_landed_with_error_is_rejected(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.failed_on_chain.add("B1")
    result = _executor(ledger, chain).run()
    assert result.rejected == 1
    ob = ledger.get_obligation("B1")
    assert ob.failure_kind == FailureKind.REJECTED
    assert ob.last_error == "InstructionError"
    assert chain.submits_by_burn["B1"] == 1


def test_unconfirmed_submission_is_left_in_flight(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.pending_forever.add("B1")
    result = _executor(ledger, chain).run()
    assert result.in_flight == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.SUBMITTED
    assert ob.tx_reference is not None
    # Never resubmitted while the first transaction may still land
    assert chain.submits_by_burn["B1"] == 1


def test_signed_transaction_is_recorded_before_it_is_sent(ledger, chain, monkeypatch):
    _add(ledger, "B1", "100", 1)
    seen = []
    original = ledger.set_tx_reference

    def record(burn_id, tx_reference, **kwargs):
        # Nothing has landed yet when the ledger is written
        seen.append((tx_reference, kwargs["recent_blockhash"], burn_id in chain.landed))
        return original(burn_id, tx_reference, **kwargs)

    monkeypatch.setattr(ledger, "set_tx_reference", record)
    _executor(ledger, chain).run()
    assert seen == [("tx-B1-1", "bh-1", False)]
    assert ledger.get_obligation("B1").recent_blockhash == "bh-1"


def test_ambiguous_send_still_pending_is_not_resent(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.send_times_out.add("B1")
    chain.pending_forever.add("B1")
    result = _executor(ledger, chain).run()

    assert result.in_flight == 1
    assert chain.submits_by_burn["B1"] == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.SUBMITTED
    assert ob.tx_reference == "tx-B1-1"
    assert ob.recent_blockhash == "bh-1"
    assert ob.attempts == 1
    assert "read timed out" in ob.last_error
    assert "bh-1" in chain.query_blockhashes


def test_ambiguous_send_that_landed_confirms_without_resend(ledger, chain):
    _add(ledger, "B1", "100", 1)
    chain.send_times_out.add("B1")
    result = _executor(ledger, chain).run()

    assert result.confirmed == 1
    assert chain.submits_by_burn["B1"] == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.CONFIRMED
    assert ob.tx_reference == "tx-B1-1"


def test_unrecorded_signature_is_never_sent(ledger, chain, monkeypatch):
    _add(ledger, "B1", "100", 1)
    monkeypatch.setattr(ledger, "set_tx_reference", lambda *args, **kwargs: False)
    with pytest.raises(LedgerStorageError):
        _executor(ledger, chain).run()
    assert "B1" not in chain.landed


def test_storage_failure_stops_queued_obligations(ledger, chain, monkeypatch):
    for i in (1, 2, 3):
        _add(ledger, f"B{i}", "100", i)
    original = ledger.claim

    def claim(burn_id, max_total_attempts):
        if burn_id == "B1":
            raise LedgerStorageError("disk I/O error")
        return original(burn_id, max_total_attempts)

    monkeypatch.setattr(ledger, "claim", claim)
    executor = _executor(ledger, chain)
    with pytest.raises(LedgerStorageError):
        executor.run()
    assert chain.calls == []
    assert executor.stop_event.is_set()
    assert {o.status for o in ledger.list_obligations()} == {ObligationStatus.PENDING}


def test_crash_recovery_confirms_landed_mint_without_resubmitting(ledger, chain):
    _add(ledger, "B1", "100", 1)
    # Crash after submit, before the reference reached the ledger
    ledger.claim("B1", 9)
    chain.landed["B1"] = "tx-landed-before-crash"

    result = _executor(ledger, chain).run()
    assert result.recovery.confirmed == 1
    assert result.confirmed == 1
    assert chain.calls == []
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.CONFIRMED
    assert ob.tx_reference == "tx-landed-before-crash"


def test_crash_recovery_releases_and_mints_once(ledger, chain):
    _add(ledger, "B1", "100", 1)
    ledger.claim("B1", 9)
    ledger.record_attempt("B1", tx_reference="tx-dropped")

    result = _executor(ledger, chain).run()
    assert result.recovery.released == 1
    assert result.confirmed == 1
    assert chain.submits_by_burn["B1"] == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.CONFIRMED
    assert ob.attempts == 2


def test_crash_recovery_landed_with_error(ledger, chain):
    _add(ledger, "B1", "100", 1)
    ledger.claim("B1", 9)
    chain.failed_on_chain.add("B1")
    ref = chain.submit_mint(VALID_WALLET, Decimal("100"), memo=memo_for_burn("B1"))
    ledger.record_attempt("B1", tx_reference=ref)

    result = _executor(ledger, chain).run()
    assert result.recovery.rejected == 1
    assert ledger.get_obligation("B1").failure_kind == FailureKind.REJECTED


def test_stop_event_prevents_new_claims(ledger, chain):
    _add(ledger, "B1", "100", 1)
    _add(ledger, "B2", "50", 2)
    stop = threading.Event()
    stop.set()
    result = MintExecutor(ledger, chain, _config(), stop_event=stop).run()
    assert result.dispatched == []
    assert result.interrupted is True
    assert chain.calls == []
    assert {o.status for o in ledger.list_obligations()} == {ObligationStatus.PENDING}


def test_stop_after_failed_attempt_releases_obligation(ledger, chain):
    _add(ledger, "B1", "100", 1)
    stop = threading.Event()

    def fail_and_stop(*args, **kwargs):
        stop.set()
        raise TransientChainError("timed out")

    chain.submit_mint = fail_and_stop
    executor = MintExecutor(ledger, chain, _config(retry_backoff_sec=5.0, retry_backoff_cap_sec=5.0), stop_event=stop)
    result = executor.run()
    assert result.skipped == 1
    ob = ledger.get_obligation("B1")
    assert ob.status == ObligationStatus.PENDING
    assert ob.attempts == 1


def test_concurrent_workers_submit_each_obligation_once(ledger, chain):
    for i in range(12):
        _add(ledger, f"B{i:02d}", "1", i)
    result = _executor(ledger, chain, concurrency=4).run()
    assert result.confirmed == 12
    assert sorted(result.dispatched) == [f"B{i:02d}" for i in range(12)]
    assert all(n == 1 for n in chain.submits_by_burn.values())
    assert ledger.count_by_status()["confirmed"] == 12


def test_process_claimed_obligation_directly(ledger, chain):
    _add(ledger, "B1", "100", 1)
    claimed = ledger.claim("B1", 9)
    assert _executor(ledger, chain).process(claimed) is Outcome.CONFIRMED


def test_backoff_is_exponential_and_capped():
    cfg = _config(retry_backoff_sec=2.0, retry_backoff_cap_sec=30.0)
    assert [cfg.backoff(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0]


def test_rate_limiter_is_used_for_every_submission(ledger, chain):
    _add(ledger, "B1", "100", 1)
    _add(ledger, "B2", "50", 2)
    acquired = []

    class CountingLimiter(RateLimiter):
        def acquire(self, stop_event=None):
            acquired.append(True)
            return True

    MintExecutor(ledger, chain, _config(), rate_limiter=CountingLimiter()).run()
    assert len(acquired) == 2
