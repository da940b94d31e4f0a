"""
Pipeline orchestrator: burn store -> reconciler -> mint executor -> report.

Owns the ledger and hands it explicitly to the reconciler, the executor and
the report renderer. Every mode is safe to re-run:
  migrate   reconcile burns into the ledger; no chain interaction
  mint      recover in-flight obligations, then mint everything actionable
  run       migrate then mint (then write the report)
  generate  render the report from the ledger
"""

from __future__ import annotations

import signal
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from solxen_bridge.config.settings import Settings
from solxen_bridge.database.burn_store import BurnStore
from solxen_bridge.database.database import Ledger, get_ledger
from solxen_bridge.database.models import LedgerStatistics, ObligationStatus
from solxen_bridge.logging import get_logger
from solxen_bridge.migrator.conversion import ConversionRule, build_conversion_rule
from solxen_bridge.migrator.reconciler import MigrationResult, Reconciler
from solxen_bridge.minter.chain_client import ChainClient, build_chain_client
from solxen_bridge.minter.executor import ExecutorConfig, MintExecutor, MintResult
from solxen_bridge.report.renderer import CsvJsonReportRenderer, ReportRenderer
from solxen_bridge.report.tables import format_table

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED_OBLIGATIONS = 1
EXIT_FATAL = 2


@dataclass
class RunSummary:
    """End-of-run view: this run's results plus final ledger counts."""

    mode: str
    statistics: LedgerStatistics
    migration: MigrationResult | None = None
    mint: MintResult | None = None
    report_paths: list[Path] | None = None

    @property
    def confirmed(self) -> int:
        return self.statistics.confirmed

    @property
    def failed(self) -> int:
        return self.statistics.failed

    @property
    def pending(self) -> int:
        return self.statistics.pending

    @property
    def in_flight(self) -> int:
        return self.statistics.submitted

    @property
    def exit_code(self) -> int:
        return EXIT_FAILED_OBLIGATIONS if self.failed else EXIT_OK

    def rows(self) -> list[tuple[str, object]]:
        rows: list[tuple[str, object]] = []
        if self.migration is not None:
            m = self.migration
            rows += [
                ("Burns migrated", m.inserted),
                ("Burns invalid", m.invalid),
                ("Burns below minimum", m.below_minimum),
                ("Burns already in ledger", m.skipped_existing),
                ("Duplicate burn rows", m.duplicates),
            ]
        if self.mint is not None:
            rows += [
                ("Minted this run", self.mint.confirmed),
                ("Rejected this run", self.mint.rejected),
                ("Exhausted this run", self.mint.exhausted),
                ("Recovered from crash", self.mint.recovery.confirmed),
            ]
        rows += [
            ("Confirmed", self.confirmed),
            ("Failed", self.failed),
            ("Pending", self.pending),
            ("In flight", self.in_flight),
        ]
        return rows

    def render(self) -> str:
        return f"solxen-bridge {self.mode}\n" + format_table(self.rows())


def install_signal_handlers(stop_event: threading.Event) -> None:
    """SIGINT/SIGTERM request a graceful stop instead of killing in-flight work."""

    def request_shutdown(signum: int, frame: Any) -> None:
        if not stop_event.is_set():
            logger.warning("pipeline_shutdown_requested", signal=signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, request_shutdown)
        except (AttributeError, ValueError):
            # Not the main thread, or unsupported platform
            pass


class Pipeline:
    def __init__(
        self,
        settings: Settings,
        *,
        ledger: Ledger | None = None,
        burn_store: BurnStore | None = None,
        chain_client: ChainClient | None = None,
        conversion_rule: ConversionRule | None = None,
        report_renderer: ReportRenderer | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.settings = settings
        self._ledger = ledger
        self._burn_store = burn_store
        self._chain = chain_client
        self._conversion_rule = conversion_rule
        self._renderer = report_renderer
        self.stop_event = stop_event or threading.Event()

    @property
    def ledger(self) -> Ledger:
        if self._ledger is None:
            self._ledger = get_ledger(self.settings.ledger_path)
        return self._ledger

    @property
    def burn_store(self) -> BurnStore:
        if self._burn_store is None:
            self._burn_store = BurnStore(
                self.settings.burn_store_path,
                amount_decimals=self.settings.source_amount_decimals,
            )
        return self._burn_store

    @property
    def chain_client(self) -> ChainClient:
        if self._chain is None:
            self._chain = build_chain_client(self.settings)
            self._chain.verify()
        return self._chain

    @property
    def report_renderer(self) -> ReportRenderer:
        if self._renderer is None:
            self._renderer = CsvJsonReportRenderer(self.settings.explorer_tx_url)
        return self._renderer

    def reconciler(self) -> Reconciler:
        rule = self._conversion_rule or build_conversion_rule(
            self.settings.conversion_rate, self.settings.token_decimals
        )
        return Reconciler(
            self.burn_store,
            self.ledger,
            rule,
            min_burn_amount=self.settings.min_burn_amount,
            token_decimals=self.settings.token_decimals,
        )

    def executor(self) -> MintExecutor:
        return MintExecutor(
            self.ledger,
            self.chain_client,
            ExecutorConfig.from_settings(self.settings),
            stop_event=self.stop_event,
            explorer_link=self.settings.explorer_link,
        )

    def summary(self, mode: str, **parts: Any) -> RunSummary:
        return RunSummary(mode=mode, statistics=self.ledger.get_statistics(), **parts)

    # --- Modes ---

    def migrate(self, *, burner: str | None = None) -> RunSummary:
        result = self.reconciler().migrate(burner=burner)
        return self.summary("migrate", migration=result)

    def mint(self) -> RunSummary:
        result = self.executor().run()
        return self.summary("mint", mint=result)

    def run(self, *, burner: str | None = None, write_report: bool = True) -> RunSummary:
        logger.info(
            "pipeline_run_started",
            burn_store=str(self.settings.burn_store_path),
            ledger=str(self.settings.ledger_path),
            burner=burner,
        )
        migration = self.reconciler().migrate(burner=burner)
        mint = self.executor().run()
        report_paths = self.generate() if write_report else None
        summary = self.summary("run", migration=migration, mint=mint, report_paths=report_paths)
        logger.info(
            "pipeline_run_completed",
            confirmed=summary.confirmed,
            failed=summary.failed,
            pending=summary.pending,
            in_flight=summary.in_flight,
        )
        return summary

    def generate(self) -> list[Path]:
        return self.report_renderer.render(self.ledger, self.settings.report_dir)

    def status(self) -> RunSummary:
        return self.summary("status")

    def requeue(self, *, burn_id: str | None = None, all_failed: bool = False) -> int:
        """Return failed obligations to pending. Validation failures are never requeued."""
        if all_failed:
            count = self.ledger.requeue_all_failed()
        elif burn_id:
            ob = self.ledger.get_obligation(burn_id)
            if ob is None or ob.status != ObligationStatus.FAILED:
                logger.warning("requeue_not_failed", burn_id=burn_id, status=ob.status.value if ob else None)
                return 0
            count = 1 if self.ledger.requeue(burn_id) else 0
            if not count:
                logger.warning("requeue_refused", burn_id=burn_id, failure_kind=ob.failure_kind)
        else:
            raise ValueError("requeue needs burn_id or all_failed")
        logger.info("requeue_completed", requeued=count, burn_id=burn_id, all_failed=all_failed)
        return count

    def close(self) -> None:
        if self._chain is not None:
            self._chain.close()
