"""
Persistence layer: the read-only burn store and the settlement ledger.

SQLite via Ledger and get_ledger(); the backend is swappable behind LedgerBackend.
"""

from solxen_bridge.database.burn_store import BurnStore
from solxen_bridge.database.database import (
    Ledger,
    LedgerBackend,
    SQLiteLedgerBackend,
    get_ledger,
)
from solxen_bridge.database.models import (
    BurnRecord,
    FailureKind,
    LedgerStatistics,
    Obligation,
    ObligationStatus,
    WalletSummary,
)

__all__ = [
    "BurnStore",
    "Ledger",
    "LedgerBackend",
    "SQLiteLedgerBackend",
    "get_ledger",
    "BurnRecord",
    "FailureKind",
    "LedgerStatistics",
    "Obligation",
    "ObligationStatus",
    "WalletSummary",
]
