"""
Settlement reports, rendered from ledger reads only.

Default renderer writes:
  obligations.csv  one row per obligation, oldest burn first
  summary.json     ledger statistics and per-wallet totals
"""

from __future__ import annotations

import csv
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from solxen_bridge.database.database import Ledger
from solxen_bridge.database.models import Obligation, WalletSummary
from solxen_bridge.logging import get_logger

logger = get_logger(__name__)

OBLIGATIONS_CSV = "obligations.csv"
SUMMARY_JSON = "summary.json"

CSV_COLUMNS = [
    "burn_id",
    "recipient",
    "burn_amount",
    "mint_amount",
    "observed_at",
    "status",
    "failure_kind",
    "attempts",
    "tx_reference",
    "explorer_url",
    "last_error",
    "confirmed_at",
]


def _iso(ts: int | None) -> str:
    if ts is None:
        return ""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _amount(value) -> str:
    return "" if value is None else format(value, "f")


class ReportRenderer(ABC):
    """Renders ledger state to files under an output directory."""

    @abstractmethod
    def render(self, ledger: Ledger, output_dir: Path) -> list[Path]:
        """Write the report; return the paths written."""


class CsvJsonReportRenderer(ReportRenderer):
    def __init__(self, explorer_tx_url: str | None = None) -> None:
        self._explorer_tx_url = explorer_tx_url

    def _explorer(self, ob: Obligation) -> str:
        if not self._explorer_tx_url or not ob.tx_reference:
            return ""
        return self._explorer_tx_url.format(signature=ob.tx_reference)

    def _row(self, ob: Obligation) -> dict[str, str]:
        return {
            "burn_id": ob.burn_id,
            "recipient": ob.recipient,
            "burn_amount": _amount(ob.burn_amount),
            "mint_amount": _amount(ob.mint_amount),
            "observed_at": _iso(ob.observed_at),
            "status": ob.status.value,
            "failure_kind": ob.failure_kind.value if ob.failure_kind else "",
            "attempts": str(ob.attempts),
            "tx_reference": ob.tx_reference or "",
            "explorer_url": self._explorer(ob),
            "last_error": ob.last_error or "",
            "confirmed_at": _iso(ob.confirmed_at),
        }

    @staticmethod
    def _wallet(summary: WalletSummary) -> dict[str, object]:
        return {
            "wallet_address": summary.wallet_address,
            "total_burned": _amount(summary.total_burned),
            "total_minted": _amount(summary.total_minted),
            "burn_count": summary.burn_count,
            "mint_count": summary.mint_count,
            "first_burn": _iso(summary.first_burn) or None,
            "last_mint": _iso(summary.last_mint) or None,
        }

    def render(self, ledger: Ledger, output_dir: Path) -> list[Path]:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        obligations = ledger.list_obligations()

        csv_path = output_dir / OBLIGATIONS_CSV
        with open(csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            for ob in obligations:
                writer.writerow(self._row(ob))

        summary = {
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "statistics": ledger.get_statistics().to_dict(),
            "wallets": [self._wallet(w) for w in ledger.get_wallet_summaries()],
        }
        json_path = output_dir / SUMMARY_JSON
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)

        logger.info(
            "report_generated",
            output_dir=str(output_dir),
            obligations=len(obligations),
            wallets=len(summary["wallets"]),
        )
        return [csv_path, json_path]
