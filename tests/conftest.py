"""
Pytest fixtures for solxen-bridge tests.

Temporary SQLite ledger and burn store under tmp_path, a scriptable fake chain
client, and settings with throttling/backoff switched off. No network access.
"""

from __future__ import annotations

import itertools
import sqlite3
import threading
from collections import defaultdict
from decimal import Decimal
from pathlib import Path

import pytest

from solxen_bridge.config.settings import Settings
from solxen_bridge.core.exceptions import TransientChainError
from solxen_bridge.database import BurnStore, get_ledger
from solxen_bridge.minter.chain_client import (
    MEMO_PREFIX,
    ChainClient,
    ConfirmationResult,
    ConfirmationStatus,
)

# Valid Solana/X1 pubkeys (base58, 32 bytes)
VALID_WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
VALID_WALLET_2 = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"

# 1 token = 10^6 raw units in the burn store
UNIT = 1_000_000


class FakeChainClient(ChainClient):
    """
    Scriptable chain client.

    errors[burn_id]: exceptions raised by successive submit_mint calls for
    that burn (a list is consumed; a single exception repeats forever).
    failed_on_chain: burn_ids whose transactions land with an error.
    pending_forever: burn_ids whose transactions never confirm.
    landed[burn_id]: a mint already on chain (found by memo lookup).
    send_times_out: burn_ids whose next send is signed and then times out
    (consumed once); the transaction still lands unless scripted otherwise.
    """

    def __init__(self) -> None:
        self.errors: dict[str, object] = {}
        self.failed_on_chain: set[str] = set()
        self.pending_forever: set[str] = set()
        self.landed: dict[str, str] = {}
        self.send_times_out: set[str] = set()
        self.signed: list[tuple[str, str]] = []
        self.query_blockhashes: list[str | None] = []
        self.calls: list[tuple[str, str, Decimal]] = []
        self.submits_by_burn: dict[str, int] = defaultdict(int)
        self._refs: dict[str, str] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def submit_mint(self, recipient, amount, *, memo=None, on_signed=None):
        burn_id = memo[len(MEMO_PREFIX):] if memo else ""
        with self._lock:
            self.calls.append((burn_id, recipient, amount))
            self.submits_by_burn[burn_id] += 1
            scripted = self.errors.get(burn_id)
            if isinstance(scripted, list):
                if scripted:
                    raise scripted.pop(0)
            elif scripted is not None:
                raise scripted
            n = next(self._counter)
            ref = f"tx-{burn_id}-{n}"
            blockhash = f"bh-{n}"
            self.signed.append((ref, blockhash))
        if on_signed is not None:
            on_signed(ref, blockhash)
        with self._lock:
            self._refs[ref] = burn_id
            if burn_id not in self.failed_on_chain and burn_id not in self.pending_forever:
                self.landed[burn_id] = ref
            if burn_id in self.send_times_out:
                self.send_times_out.discard(burn_id)
                raise TransientChainError("read timed out", tx_reference=ref)
        return ref

    def query_confirmation(self, tx_reference=None, *, burn_id=None, recent_blockhash=None):
        with self._lock:
            self.query_blockhashes.append(recent_blockhash)
            owner = self._refs.get(tx_reference) if tx_reference else None
            if owner is not None:
                if owner in self.failed_on_chain:
                    return ConfirmationResult(ConfirmationStatus.FAILED, tx_reference, error="InstructionError")
                if owner in self.pending_forever:
                    return ConfirmationResult(ConfirmationStatus.PENDING, tx_reference)
                return ConfirmationResult(ConfirmationStatus.CONFIRMED, tx_reference)
            if burn_id is not None and burn_id in self.landed:
                return ConfirmationResult(ConfirmationStatus.CONFIRMED, self.landed[burn_id])
        return ConfirmationResult.not_found()


@pytest.fixture
def chain():
    return FakeChainClient()


@pytest.fixture
def ledger(tmp_path):
    return get_ledger(tmp_path / "ledger.db")


@pytest.fixture
def make_burn_store(tmp_path):
    """
    Build a SQLite burn store shaped like the burn indexer's burns.db.

    rows: (signature, burner, raw_amount, timestamp)
    """

    def _make(rows, name: str = "burns.db") -> BurnStore:
        path = Path(tmp_path) / name
        conn = sqlite3.connect(path)
        conn.execute(
            """
            CREATE TABLE burns (
                signature TEXT,
                burner TEXT,
                amount,
                memo TEXT,
                token TEXT,
                timestamp,
                memo_checked INTEGER DEFAULT 0,
                created_at TEXT
            )
            """
        )
        conn.executemany(
            "INSERT INTO burns (signature, burner, amount, timestamp) VALUES (?, ?, ?, ?)",
            rows,
        )
        conn.commit()
        conn.close()
        return BurnStore(path)

    return _make


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Settings for fast, offline runs: no throttling, no backoff, short confirm window."""
    monkeypatch.delenv("MINT_AUTHORITY_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("DRY_RUN", raising=False)
    return Settings(
        burn_store_path=tmp_path / "burns.db",
        ledger_path=tmp_path / "ledger.db",
        report_dir=tmp_path / "report",
        keypair_path=tmp_path / "no-keypair.json",
        private_key="",
        min_burn_amount=Decimal(0),
        conversion_rate=Decimal(1),
        concurrency=1,
        min_submit_interval_sec=0.0,
        max_tx_per_minute=10_000,
        retry_attempts=3,
        max_total_attempts=9,
        retry_backoff_sec=0.0,
        retry_backoff_cap_sec=0.0,
        confirm_timeout_sec=0.05,
        confirm_poll_interval_sec=0.01,
        dry_run=False,
    )
