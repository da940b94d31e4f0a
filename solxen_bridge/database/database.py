"""
Settlement ledger: one row per mint obligation, keyed by burn_id.

SQLite for now; designed so the backend can be swapped via a different
LedgerBackend implementation. Every mutation is a single-row transaction keyed
by burn_id. Status transitions are compare-and-swap updates (the WHERE clause
pins the expected current status), so a claim holds across threads and across
processes sharing the file. Any sqlite3 error surfaces as LedgerStorageError.
"""

from __future__ import annotations

import sqlite3
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator

from solxen_bridge.core.exceptions import LedgerStorageError
from solxen_bridge.database.models import (
    FailureKind,
    LedgerStatistics,
    Obligation,
    ObligationStatus,
    WalletSummary,
)
from solxen_bridge.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 2

SCHEMA_OBLIGATIONS = """
CREATE TABLE IF NOT EXISTS obligations (
    burn_id TEXT PRIMARY KEY,
    recipient TEXT NOT NULL,
    burn_amount TEXT,
    mint_amount TEXT,
    observed_at INTEGER,
    status TEXT NOT NULL CHECK (status IN ('pending', 'submitted', 'confirmed', 'failed')),
    tx_reference TEXT,
    recent_blockhash TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    failure_kind TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    submitted_at INTEGER,
    confirmed_at INTEGER
);
CREATE INDEX IF NOT EXISTS ix_obligations_status ON obligations(status);
CREATE INDEX IF NOT EXISTS ix_obligations_observed ON obligations(observed_at);
CREATE INDEX IF NOT EXISTS ix_obligations_recipient ON obligations(recipient);
"""

_COLUMNS = (
    "burn_id, recipient, burn_amount, mint_amount, observed_at, status, tx_reference, recent_blockhash, "
    "attempts, last_error, failure_kind, created_at, updated_at, submitted_at, confirmed_at"
)
_ORDER = "ORDER BY observed_at IS NULL, observed_at ASC, burn_id ASC"
# Pending, or failed on transient errors with lifetime budget left
_ACTIONABLE = (
    "(status = 'pending' OR (status = 'failed' AND failure_kind = 'exhausted' AND attempts < ?))"
)


def _decimal_to_db(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(value, "f")


def _decimal_from_db(raw: Any) -> Decimal | None:
    if raw is None or raw == "":
        return None
    return Decimal(str(raw))


def _row_to_obligation(row: sqlite3.Row) -> Obligation:
    kind = row["failure_kind"]
    return Obligation(
        burn_id=row["burn_id"],
        recipient=row["recipient"],
        burn_amount=_decimal_from_db(row["burn_amount"]),
        mint_amount=_decimal_from_db(row["mint_amount"]),
        observed_at=row["observed_at"],
        status=ObligationStatus(row["status"]),
        tx_reference=row["tx_reference"],
        recent_blockhash=row["recent_blockhash"],
        attempts=row["attempts"],
        last_error=row["last_error"],
        failure_kind=FailureKind(kind) if kind else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        submitted_at=row["submitted_at"],
        confirmed_at=row["confirmed_at"],
    )


# -----------------------------------------------------------------------------
# Abstract backend
# -----------------------------------------------------------------------------


class LedgerBackend(ABC):
    """Abstract interface for ledger persistence."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def insert_obligation(self, obligation: Obligation) -> bool:
        """Insert if burn_id is absent. Returns True if a row was written."""
        ...

    @abstractmethod
    def get_obligation(self, burn_id: str) -> Obligation | None:
        ...

    @abstractmethod
    def get_burn_ids(self) -> set[str]:
        """All burn_ids present in the ledger, in any status."""
        ...

    @abstractmethod
    def list_obligations(
        self,
        statuses: tuple[str, ...] | None = None,
        *,
        recipient: str | None = None,
    ) -> list[Obligation]:
        """Obligations oldest burn first (missing timestamps last)."""
        ...

    @abstractmethod
    def list_actionable(self, max_total_attempts: int) -> list[Obligation]:
        ...

    @abstractmethod
    def claim(self, burn_id: str, max_total_attempts: int, now: int) -> Obligation | None:
        """CAS actionable -> submitted. Returns the claimed row, or None if not claimable."""
        ...

    @abstractmethod
    def record_attempt(self, burn_id: str, tx_reference: str | None, error: str | None, now: int) -> int:
        """Count one submission on a submitted row. Returns the new attempt total."""
        ...

    @abstractmethod
    def set_tx_reference(self, burn_id: str, tx_reference: str, recent_blockhash: str | None, now: int) -> bool:
        """Record a signed transaction on a submitted row before it is broadcast."""
        ...

    @abstractmethod
    def mark_confirmed(self, burn_id: str, tx_reference: str, now: int) -> bool:
        """CAS submitted -> confirmed."""
        ...

    @abstractmethod
    def mark_failed(self, burn_id: str, kind: FailureKind, error: str, now: int) -> bool:
        """CAS submitted -> failed."""
        ...

    @abstractmethod
    def release(self, burn_id: str, now: int) -> bool:
        """CAS submitted -> pending (nothing landed on chain)."""
        ...

    @abstractmethod
    def requeue(self, burn_id: str, now: int) -> bool:
        """CAS failed (not validation) -> pending."""
        ...

    @abstractmethod
    def count_by_status(self) -> dict[str, int]:
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


class SQLiteLedgerBackend(LedgerBackend):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 10.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = FULL")
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as e:
            raise LedgerStorageError(f"Cannot open ledger {self._path}: {e}") from e
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LedgerStorageError(f"Ledger operation failed on {self._path}: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.executescript(SCHEMA_OBLIGATIONS)
            cur.execute("PRAGMA user_version")
            version = cur.fetchone()[0]
            if version == 1:
                cur.execute("ALTER TABLE obligations ADD COLUMN recent_blockhash TEXT")
            if version < SCHEMA_VERSION:
                cur.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            elif version > SCHEMA_VERSION:
                raise LedgerStorageError(
                    f"Ledger {self._path} has schema version {version}, newer than supported {SCHEMA_VERSION}"
                )

    def insert_obligation(self, obligation: Obligation) -> bool:
        now = int(time.time())
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO obligations ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(burn_id) DO NOTHING
                """,
                (
                    obligation.burn_id,
                    obligation.recipient,
                    _decimal_to_db(obligation.burn_amount),
                    _decimal_to_db(obligation.mint_amount),
                    obligation.observed_at,
                    obligation.status.value,
                    obligation.tx_reference,
                    obligation.recent_blockhash,
                    obligation.attempts,
                    obligation.last_error,
                    obligation.failure_kind.value if obligation.failure_kind else None,
                    obligation.created_at or now,
                    obligation.updated_at or now,
                    obligation.submitted_at,
                    obligation.confirmed_at,
                ),
            )
            return cur.rowcount == 1

    def get_obligation(self, burn_id: str) -> Obligation | None:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM obligations WHERE burn_id = ?", (burn_id,))
            row = cur.fetchone()
        return _row_to_obligation(row) if row is not None else None

    def get_burn_ids(self) -> set[str]:
        with self._cursor() as cur:
            cur.execute("SELECT burn_id FROM obligations")
            return {row["burn_id"] for row in cur.fetchall()}

    def list_obligations(
        self,
        statuses: tuple[str, ...] | None = None,
        *,
        recipient: str | None = None,
    ) -> list[Obligation]:
        sql = f"SELECT {_COLUMNS} FROM obligations WHERE 1 = 1"
        params: list[Any] = []
        if statuses:
            sql += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)
        if recipient is not None:
            sql += " AND recipient = ?"
            params.append(recipient)
        sql += f" {_ORDER}"
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [_row_to_obligation(row) for row in rows]

    def list_actionable(self, max_total_attempts: int) -> list[Obligation]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM obligations WHERE {_ACTIONABLE} {_ORDER}",
                (max_total_attempts,),
            )
            rows = cur.fetchall()
        return [_row_to_obligation(row) for row in rows]

    def claim(self, burn_id: str, max_total_attempts: int, now: int) -> Obligation | None:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE obligations
                SET status = 'submitted', submitted_at = ?, updated_at = ?, failure_kind = NULL
                WHERE burn_id = ? AND {_ACTIONABLE}
                """,
                (now, now, burn_id, max_total_attempts),
            )
            if cur.rowcount != 1:
                return None
            cur.execute(f"SELECT {_COLUMNS} FROM obligations WHERE burn_id = ?", (burn_id,))
            row = cur.fetchone()
        return _row_to_obligation(row)

    def record_attempt(self, burn_id: str, tx_reference: str | None, error: str | None, now: int) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE obligations
                SET attempts = attempts + 1,
                    tx_reference = COALESCE(?, tx_reference),
                    last_error = ?,
                    updated_at = ?
                WHERE burn_id = ? AND status = 'submitted'
                """,
                (tx_reference, error, now, burn_id),
            )
            if cur.rowcount != 1:
                raise LedgerStorageError(f"record_attempt: obligation {burn_id} is not submitted")
            cur.execute("SELECT attempts FROM obligations WHERE burn_id = ?", (burn_id,))
            return int(cur.fetchone()["attempts"])

    def set_tx_reference(self, burn_id: str, tx_reference: str, recent_blockhash: str | None, now: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE obligations SET tx_reference = ?, recent_blockhash = ?, updated_at = ?
                WHERE burn_id = ? AND status = 'submitted'
                """,
                (tx_reference, recent_blockhash, now, burn_id),
            )
            return cur.rowcount == 1

    def mark_confirmed(self, burn_id: str, tx_reference: str, now: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE obligations
                SET status = 'confirmed', tx_reference = ?, confirmed_at = ?, updated_at = ?,
                    last_error = NULL, failure_kind = NULL
                WHERE burn_id = ? AND status = 'submitted'
                """,
                (tx_reference, now, now, burn_id),
            )
            return cur.rowcount == 1

    def mark_failed(self, burn_id: str, kind: FailureKind, error: str, now: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE obligations
                SET status = 'failed', failure_kind = ?, last_error = ?, updated_at = ?
                WHERE burn_id = ? AND status = 'submitted'
                """,
                (kind.value, error, now, burn_id),
            )
            return cur.rowcount == 1

    def release(self, burn_id: str, now: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE obligations SET status = 'pending', updated_at = ? WHERE burn_id = ? AND status = 'submitted'",
                (now, burn_id),
            )
            return cur.rowcount == 1

    def requeue(self, burn_id: str, now: int) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE obligations
                SET status = 'pending', failure_kind = NULL, updated_at = ?
                WHERE burn_id = ? AND status = 'failed' AND failure_kind != 'validation'
                """,
                (now, burn_id),
            )
            return cur.rowcount == 1

    def count_by_status(self) -> dict[str, int]:
        with self._cursor() as cur:
            cur.execute("SELECT status, COUNT(*) AS n FROM obligations GROUP BY status")
            counts = {row["status"]: int(row["n"]) for row in cur.fetchall()}
        return {s.value: counts.get(s.value, 0) for s in ObligationStatus}


# -----------------------------------------------------------------------------
# Ledger facade: single entrypoint; backend is swappable.
# -----------------------------------------------------------------------------


class Ledger:
    """
    Durable record of obligation lifecycle state.

    Owned by the pipeline orchestrator and handed to the reconciler and the
    minter explicitly. Reports read it through list_obligations().
    """

    def __init__(self, backend: LedgerBackend) -> None:
        self._backend = backend

    def ensure_schema(self) -> None:
        self._backend.ensure_schema()

    # --- Writes (single row, keyed by burn_id) ---

    def insert_obligation(self, obligation: Obligation) -> bool:
        return self._backend.insert_obligation(obligation)

    def claim(self, burn_id: str, max_total_attempts: int) -> Obligation | None:
        return self._backend.claim(burn_id, max_total_attempts, int(time.time()))

    def record_attempt(self, burn_id: str, *, tx_reference: str | None = None, error: str | None = None) -> int:
        return self._backend.record_attempt(burn_id, tx_reference, error, int(time.time()))

    def set_tx_reference(self, burn_id: str, tx_reference: str, *, recent_blockhash: str | None = None) -> bool:
        return self._backend.set_tx_reference(burn_id, tx_reference, recent_blockhash, int(time.time()))

    def mark_confirmed(self, burn_id: str, tx_reference: str) -> bool:
        return self._backend.mark_confirmed(burn_id, tx_reference, int(time.time()))

    def mark_failed(self, burn_id: str, kind: FailureKind, error: str) -> bool:
        return self._backend.mark_failed(burn_id, kind, error, int(time.time()))

    def release(self, burn_id: str) -> bool:
        return self._backend.release(burn_id, int(time.time()))

    def requeue(self, burn_id: str) -> bool:
        return self._backend.requeue(burn_id, int(time.time()))

    def requeue_all_failed(self) -> int:
        """Requeue every failed obligation except validation failures. Returns count."""
        requeued = 0
        for ob in self.list_obligations(ObligationStatus.FAILED):
            if ob.failure_kind != FailureKind.VALIDATION and self.requeue(ob.burn_id):
                requeued += 1
        return requeued

    # --- Reads ---

    def get_obligation(self, burn_id: str) -> Obligation | None:
        return self._backend.get_obligation(burn_id)

    def get_burn_ids(self) -> set[str]:
        return self._backend.get_burn_ids()

    def list_obligations(
        self,
        status: ObligationStatus | Iterable[ObligationStatus] | None = None,
        *,
        recipient: str | None = None,
    ) -> list[Obligation]:
        """Read interface for reports: obligations filtered by status, oldest burn first."""
        if status is None:
            statuses = None
        elif isinstance(status, ObligationStatus):
            statuses = (status.value,)
        else:
            statuses = tuple(ObligationStatus(s).value for s in status)
        return self._backend.list_obligations(statuses, recipient=recipient)

    def list_actionable(self, max_total_attempts: int) -> list[Obligation]:
        """Pending plus exhausted-with-budget obligations, oldest burn first."""
        return self._backend.list_actionable(max_total_attempts)

    def count_by_status(self) -> dict[str, int]:
        return self._backend.count_by_status()

    def get_statistics(self) -> LedgerStatistics:
        counts = self.count_by_status()
        obligations = self.list_obligations()
        total_burned = sum((o.burn_amount for o in obligations if o.burn_amount is not None), Decimal(0))
        total_minted = sum(
            (
                o.mint_amount
                for o in obligations
                if o.status == ObligationStatus.CONFIRMED and o.mint_amount is not None
            ),
            Decimal(0),
        )
        return LedgerStatistics(
            total_records=len(obligations),
            pending=counts[ObligationStatus.PENDING.value],
            submitted=counts[ObligationStatus.SUBMITTED.value],
            confirmed=counts[ObligationStatus.CONFIRMED.value],
            failed=counts[ObligationStatus.FAILED.value],
            unique_wallets=len({o.recipient for o in obligations}),
            total_burned_amount=total_burned,
            total_minted_amount=total_minted,
        )

    def get_wallet_summaries(self) -> list[WalletSummary]:
        """Per-recipient burn/mint totals, largest burner first."""
        grouped: dict[str, list[Obligation]] = defaultdict(list)
        for ob in self.list_obligations():
            grouped[ob.recipient].append(ob)
        summaries = []
        for wallet, obs in grouped.items():
            minted = [o for o in obs if o.status == ObligationStatus.CONFIRMED]
            burn_times = [o.observed_at for o in obs if o.observed_at is not None]
            mint_times = [o.confirmed_at for o in minted if o.confirmed_at is not None]
            summaries.append(
                WalletSummary(
                    wallet_address=wallet,
                    total_burned=sum((o.burn_amount for o in obs if o.burn_amount is not None), Decimal(0)),
                    total_minted=sum((o.mint_amount for o in minted if o.mint_amount is not None), Decimal(0)),
                    burn_count=len(obs),
                    mint_count=len(minted),
                    first_burn=min(burn_times) if burn_times else None,
                    last_mint=max(mint_times) if mint_times else None,
                )
            )
        summaries.sort(key=lambda s: (-s.total_burned, s.wallet_address))
        return summaries


def get_ledger(path: str | Path) -> Ledger:
    """Return a Ledger backed by the SQLite file at path, schema ensured."""
    backend = SQLiteLedgerBackend(path)
    ledger = Ledger(backend)
    ledger.ensure_schema()
    logger.debug("ledger_opened", path=str(path))
    return ledger
