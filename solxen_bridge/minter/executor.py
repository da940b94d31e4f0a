"""
Mint executor: drives obligations from pending to a terminal state.

For each actionable obligation, oldest burn first:
  claim (pending -> submitted, compare-and-swap in the ledger)
  -> submit through the chain client, rate limited
  -> wait for confirmation
  -> confirmed | failed (rejected / exhausted) | left submitted when unresolved

Before any resubmission the previous attempt is resolved on chain (by tx
reference, then by the burn_id memo); a mint is only ever resubmitted once the
chain says nothing landed. Submitted rows found at startup are resolved the
same way before new work is dispatched.

A signed transaction is written to the ledger with its blockhash before it is
broadcast. Until that blockhash expires the attempt counts as in flight, even
across restarts and ambiguous send failures.

Concurrency is a ThreadPoolExecutor bounded by the configured ceiling. A stop
event (SIGINT/SIGTERM) stops new claims; in-flight obligations finish their
current step and unsubmitted claims are released back to pending.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable

from solxen_bridge.core.exceptions import LedgerStorageError, RejectedChainError, TransientChainError
from solxen_bridge.database.database import Ledger
from solxen_bridge.database.models import FailureKind, Obligation, ObligationStatus
from solxen_bridge.logging import bind_obligation, get_logger
from solxen_bridge.minter.chain_client import (
    ChainClient,
    ConfirmationResult,
    ConfirmationStatus,
    memo_for_burn,
)
from solxen_bridge.minter.rate_limit import RateLimiter

logger = get_logger(__name__)

# Query retries when resolving a previous attempt before giving up on it for this run
RESOLVE_QUERY_ATTEMPTS = 3


class Outcome(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"
    IN_FLIGHT = "in_flight"
    SKIPPED = "skipped"


@dataclass
class ExecutorConfig:
    concurrency: int = 1
    retry_attempts: int = 3
    max_total_attempts: int = 9
    retry_backoff_sec: float = 2.0
    retry_backoff_cap_sec: float = 30.0
    confirm_timeout_sec: float = 60.0
    confirm_poll_interval_sec: float = 1.0
    min_submit_interval_sec: float = 2.0
    max_tx_per_minute: int = 30

    @classmethod
    def from_settings(cls, settings: Any) -> "ExecutorConfig":
        return cls(
            concurrency=settings.concurrency,
            retry_attempts=settings.retry_attempts,
            max_total_attempts=settings.max_total_attempts,
            retry_backoff_sec=settings.retry_backoff_sec,
            retry_backoff_cap_sec=settings.retry_backoff_cap_sec,
            confirm_timeout_sec=settings.confirm_timeout_sec,
            confirm_poll_interval_sec=settings.confirm_poll_interval_sec,
            min_submit_interval_sec=settings.min_submit_interval_sec,
            max_tx_per_minute=settings.max_tx_per_minute,
        )

    def backoff(self, retry: int) -> float:
        """Delay before retry number `retry` (1-based): base * 2^(retry-1), capped."""
        return min(self.retry_backoff_cap_sec, self.retry_backoff_sec * (2 ** (retry - 1)))


@dataclass
class RecoveryResult:
    confirmed: int = 0
    rejected: int = 0
    released: int = 0
    in_flight: int = 0


@dataclass
class MintResult:
    """Outcome counts of one mint pass (recovery included)."""

    confirmed: int = 0
    rejected: int = 0
    exhausted: int = 0
    in_flight: int = 0
    skipped: int = 0
    recovery: RecoveryResult = field(default_factory=RecoveryResult)
    dispatched: list[str] = field(default_factory=list)
    interrupted: bool = False

    def count(self, outcome: Outcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("dispatched")
        data["dispatched_count"] = len(self.dispatched)
        return data


class MintExecutor:
    """Submits owed mints with bounded concurrency, retry and exactly-once guards."""

    def __init__(
        self,
        ledger: Ledger,
        chain: ChainClient,
        config: ExecutorConfig | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        stop_event: threading.Event | None = None,
        explorer_link: Callable[[str], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ledger = ledger
        self._chain = chain
        self._cfg = config or ExecutorConfig()
        self._limiter = rate_limiter or RateLimiter(
            self._cfg.min_submit_interval_sec, self._cfg.max_tx_per_minute
        )
        self._stop = stop_event or threading.Event()
        self._explorer_link = explorer_link
        self._clock = clock
        self._result_lock = threading.Lock()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    # --- Startup recovery ---

    def recover(self) -> RecoveryResult:
        """
        Resolve obligations left submitted by an earlier (possibly crashed) run.

        Confirmed on chain -> confirmed; landed with an error -> failed
        (rejected); nothing found -> back to pending; still unresolved -> left
        submitted and reported in flight.
        """
        result = RecoveryResult()
        stuck = self._ledger.list_obligations(ObligationStatus.SUBMITTED)
        if stuck:
            logger.info("mint_recovery_started", submitted=len(stuck))
        for ob in stuck:
            if self._stop.is_set():
                result.in_flight += 1
                continue
            log = bind_obligation(ob.burn_id)
            resolved = self._resolve_previous(ob.burn_id, ob.tx_reference, log, ob.recent_blockhash)
            if resolved.status is ConfirmationStatus.CONFIRMED:
                self._confirm(ob.burn_id, resolved.tx_reference or ob.tx_reference, log)
                result.confirmed += 1
            elif resolved.status is ConfirmationStatus.FAILED:
                self._fail(ob.burn_id, FailureKind.REJECTED, resolved.error or "transaction failed on chain", log)
                result.rejected += 1
            elif resolved.status is ConfirmationStatus.NOT_FOUND:
                self._ledger.release(ob.burn_id)
                log.info("mint_recovery_released", tx_reference=ob.tx_reference)
                result.released += 1
            else:
                log.warning("mint_recovery_unresolved", tx_reference=ob.tx_reference)
                result.in_flight += 1
        if stuck:
            logger.info("mint_recovery_completed", **asdict(result))
        return result

    # --- Main pass ---

    def run(self) -> MintResult:
        """Recover, then process every actionable obligation. Returns outcome counts."""
        result = MintResult()
        result.recovery = self.recover()
        result.confirmed += result.recovery.confirmed
        result.rejected += result.recovery.rejected
        result.in_flight += result.recovery.in_flight

        actionable = self._ledger.list_actionable(self._cfg.max_total_attempts)
        logger.info(
            "mint_run_started",
            actionable=len(actionable),
            concurrency=self._cfg.concurrency,
            **self._chain.describe(),
        )
        if actionable:
            with ThreadPoolExecutor(max_workers=self._cfg.concurrency, thread_name_prefix="mint") as pool:
                futures = {pool.submit(self._process_safe, ob, result): ob for ob in actionable}
                try:
                    for fut in as_completed(futures):
                        outcome = fut.result()
                        with self._result_lock:
                            result.count(outcome)
                except BaseException:
                    # Queued obligations must not be claimed after a fatal error
                    self._stop.set()
                    pool.shutdown(wait=True, cancel_futures=True)
                    logger.error("mint_run_aborted", dispatched=len(result.dispatched))
                    raise
        result.interrupted = self._stop.is_set()
        logger.info("mint_run_completed", **result.to_dict())
        return result

    def _process_safe(self, ob: Obligation, result: MintResult) -> Outcome:
        """Per-obligation isolation: chain errors never abort the run. Storage errors propagate."""
        if self._stop.is_set():
            return Outcome.SKIPPED
        try:
            claimed = self._ledger.claim(ob.burn_id, self._cfg.max_total_attempts)
            if claimed is None:
                # Taken by another worker or process, or no longer actionable
                return Outcome.SKIPPED
            with self._result_lock:
                result.dispatched.append(claimed.burn_id)
            return self.process(claimed)
        except LedgerStorageError:
            self._stop.set()
            raise

    def process(self, ob: Obligation) -> Outcome:
        """Drive one claimed (submitted) obligation to an outcome."""
        log = bind_obligation(ob.burn_id)
        burn_id = ob.burn_id
        last_ref = ob.tx_reference
        last_blockhash = ob.recent_blockhash
        last_error = ob.last_error
        # A prior attempt exists: resolve it before submitting anything
        needs_resolve = ob.attempts > 0 or ob.tx_reference is not None
        budget = self._cfg.retry_attempts
        if ob.attempts:
            budget = max(1, min(budget, self._cfg.max_total_attempts - ob.attempts))
        tries = 0

        while True:
            if needs_resolve:
                resolved = self._resolve_previous(burn_id, last_ref, log, last_blockhash)
                if resolved.status is ConfirmationStatus.CONFIRMED:
                    return self._confirm(burn_id, resolved.tx_reference or last_ref, log)
                if resolved.status is ConfirmationStatus.FAILED:
                    return self._fail(
                        burn_id, FailureKind.REJECTED, resolved.error or "transaction failed on chain", log
                    )
                if resolved.status is ConfirmationStatus.PENDING:
                    log.warning("mint_left_in_flight", tx_reference=resolved.tx_reference or last_ref)
                    return Outcome.IN_FLIGHT

            if tries >= budget:
                return self._fail(burn_id, FailureKind.EXHAUSTED, last_error or "retry ceiling reached", log)
            if self._stop.is_set():
                return self._release(burn_id, log)
            if tries > 0:
                delay = self._cfg.backoff(tries)
                log.info("mint_retry_backoff", retry=tries, delay_sec=delay)
                if self._stop.wait(delay):
                    return self._release(burn_id, log)
            if not self._limiter.acquire(self._stop):
                return self._release(burn_id, log)

            def on_signed(signature: str, recent_blockhash: str) -> None:
                nonlocal last_ref, last_blockhash
                if not self._ledger.set_tx_reference(burn_id, signature, recent_blockhash=recent_blockhash):
                    raise LedgerStorageError(f"{burn_id}: signed transaction not recorded, not sending")
                last_ref, last_blockhash = signature, recent_blockhash

            tries += 1
            needs_resolve = True
            try:
                ref = self._chain.submit_mint(
                    ob.recipient, ob.mint_amount, memo=memo_for_burn(burn_id), on_signed=on_signed
                )
            except RejectedChainError as e:
                self._ledger.record_attempt(burn_id, error=str(e))
                return self._fail(burn_id, FailureKind.REJECTED, str(e), log)
            except TransientChainError as e:
                last_error = str(e)
                if e.tx_reference:
                    # Sent or not, the signed transaction is resolved before any resend
                    last_ref = e.tx_reference
                attempts = self._ledger.record_attempt(burn_id, tx_reference=e.tx_reference, error=last_error)
                log.warning(
                    "mint_submit_transient_error",
                    attempt=tries,
                    attempts_total=attempts,
                    tx_reference=e.tx_reference,
                    error=last_error,
                )
                continue

            last_ref = ref
            self._ledger.record_attempt(burn_id, tx_reference=ref)
            log.info("mint_tx_submitted", tx_reference=ref, attempt=tries, recipient=ob.recipient)
            confirmation = self._await_confirmation(ref, burn_id, log, last_blockhash)
            if confirmation.status is ConfirmationStatus.CONFIRMED:
                return self._confirm(burn_id, confirmation.tx_reference or ref, log)
            if confirmation.status is ConfirmationStatus.FAILED:
                return self._fail(burn_id, FailureKind.REJECTED, confirmation.error or "transaction failed on chain", log)
            last_error = f"not confirmed within {self._cfg.confirm_timeout_sec}s"

    # --- Chain queries ---

    def _query(self, tx_reference: str | None, burn_id: str, recent_blockhash: str | None = None) -> ConfirmationResult:
        return self._chain.query_confirmation(tx_reference, burn_id=burn_id, recent_blockhash=recent_blockhash)

    def _resolve_previous(
        self, burn_id: str, tx_reference: str | None, log: Any, recent_blockhash: str | None = None
    ) -> ConfirmationResult:
        """
        Definitive answer on whether an earlier attempt landed.

        PENDING means the chain could not say within the confirmation window;
        the caller must not resubmit.
        """
        for attempt in range(1, RESOLVE_QUERY_ATTEMPTS + 1):
            try:
                resolved = self._query(tx_reference, burn_id, recent_blockhash)
                break
            except TransientChainError as e:
                log.warning("mint_resolve_query_failed", attempt=attempt, error=str(e))
                if attempt == RESOLVE_QUERY_ATTEMPTS or self._stop.wait(self._cfg.backoff(attempt)):
                    return ConfirmationResult(ConfirmationStatus.PENDING, tx_reference)
        if resolved.status is ConfirmationStatus.PENDING:
            ref = resolved.tx_reference or tx_reference
            # A memo hit is a different signature whose blockhash is unknown here
            blockhash = recent_blockhash if ref == tx_reference else None
            return self._await_confirmation(ref, burn_id, log, blockhash)
        return resolved

    def _await_confirmation(
        self, tx_reference: str | None, burn_id: str, log: Any, recent_blockhash: str | None = None
    ) -> ConfirmationResult:
        """
        Poll until confirmed, failed or timeout.

        On timeout returns the last observed status: PENDING when the chain
        still reports the transaction in flight, NOT_FOUND when it never saw it.
        """
        deadline = self._clock() + self._cfg.confirm_timeout_sec
        last = ConfirmationResult(ConfirmationStatus.PENDING, tx_reference)
        while True:
            try:
                # Memo lookup only when there is no reference to poll
                if tx_reference:
                    last = self._chain.query_confirmation(tx_reference, recent_blockhash=recent_blockhash)
                else:
                    last = self._query(None, burn_id)
            except TransientChainError as e:
                log.warning("mint_confirm_poll_error", tx_reference=tx_reference, error=str(e))
                last = ConfirmationResult(ConfirmationStatus.PENDING, tx_reference)
            if last.status in (ConfirmationStatus.CONFIRMED, ConfirmationStatus.FAILED):
                return last
            if self._clock() >= deadline or self._stop.is_set():
                break
            self._stop.wait(self._cfg.confirm_poll_interval_sec)
        log.warning(
            "mint_confirm_timeout",
            tx_reference=tx_reference,
            last_status=last.status.value,
            timeout_sec=self._cfg.confirm_timeout_sec,
        )
        return last

    # --- Ledger transitions ---

    def _confirm(self, burn_id: str, tx_reference: str | None, log: Any) -> Outcome:
        if not self._ledger.mark_confirmed(burn_id, tx_reference or ""):
            log.error("mint_confirm_not_recorded", tx_reference=tx_reference)
            return Outcome.SKIPPED
        link = self._explorer_link(tx_reference) if self._explorer_link and tx_reference else None
        log.info("mint_tx_confirmed", tx_reference=tx_reference, explorer=link)
        return Outcome.CONFIRMED

    def _fail(self, burn_id: str, kind: FailureKind, error: str, log: Any) -> Outcome:
        self._ledger.mark_failed(burn_id, kind, error)
        log.warning("mint_failed", failure_kind=kind.value, error=error)
        return Outcome.REJECTED if kind is FailureKind.REJECTED else Outcome.EXHAUSTED

    def _release(self, burn_id: str, log: Any) -> Outcome:
        self._ledger.release(burn_id)
        log.info("mint_released_on_shutdown")
        return Outcome.SKIPPED
