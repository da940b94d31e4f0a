"""
solxen-bridge command line.

  solxen-bridge run [--burner ADDR]     migrate new burns, mint, write report
  solxen-bridge migrate [--burner ADDR] burn store -> ledger only
  solxen-bridge mint                    recover and mint actionable obligations
  solxen-bridge generate                write the report from the ledger
  solxen-bridge status                  ledger statistics and wallet totals
  solxen-bridge requeue (--burn-id ID | --all-failed)

With no subcommand, `run` is assumed.

Exit codes: 0 success, 1 failed obligations in the ledger, 2 fatal error
(storage, configuration, unreadable burn store).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from solxen_bridge import __version__
from solxen_bridge.config.settings import Settings, get_settings
from solxen_bridge.core.exceptions import BridgeError, ConfigError
from solxen_bridge.logging import configure_structlog, get_logger
from solxen_bridge.pipeline.orchestrator import (
    EXIT_FATAL,
    EXIT_OK,
    Pipeline,
    install_signal_handlers,
)
from solxen_bridge.report.tables import format_table

logger = get_logger(__name__)

COMMANDS = ("run", "migrate", "mint", "generate", "status", "requeue")


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--burn-store", type=Path, default=None, help="Burn dataset (SQLite or CSV). Env: BURN_STORE_PATH")
    common.add_argument("--ledger", type=Path, default=None, help="Ledger SQLite file. Env: LEDGER_DB_PATH")
    common.add_argument("--report-dir", type=Path, default=None, help="Report output directory. Env: REPORT_DIR")
    common.add_argument("--rpc-url", default=None, help="X1 RPC endpoint. Env: X1_RPC_URL")
    common.add_argument("--keypair", type=Path, default=None, help="Mint authority keypair file. Env: MINT_AUTHORITY_KEYPAIR")
    common.add_argument("--concurrency", type=int, default=None, help="Max concurrent mints. Env: MINT_CONCURRENCY")
    common.add_argument("--min-burn", default=None, help="Minimum burn amount in tokens. Env: MIN_BURN_AMOUNT")
    common.add_argument("--dry-run", action="store_true", default=None, help="Simulate mints; nothing is sent.")
    common.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR. Env: LOG_LEVEL")
    common.add_argument("--log-format", choices=("json", "console"), default=None, help="Env: LOG_FORMAT")
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    parser = argparse.ArgumentParser(
        prog="solxen-bridge",
        description="Settle solXEN burns on Solana as solXEN mints on X1.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    p_run = sub.add_parser("run", parents=[common], help="Migrate new burns, mint, write report.")
    p_run.add_argument("--burner", default=None, help="Only the latest qualifying burn of this address.")
    p_run.add_argument("--no-report", action="store_true", help="Skip report generation.")

    p_migrate = sub.add_parser("migrate", parents=[common], help="Reconcile the burn store into the ledger.")
    p_migrate.add_argument("--burner", default=None, help="Only the latest qualifying burn of this address.")

    sub.add_parser("mint", parents=[common], help="Mint every actionable obligation.")
    sub.add_parser("generate", parents=[common], help="Write the report from the ledger.")

    p_status = sub.add_parser("status", parents=[common], help="Print ledger statistics.")
    p_status.add_argument("--wallets", action="store_true", help="Also print per-wallet totals.")

    p_requeue = sub.add_parser("requeue", parents=[common], help="Return failed obligations to pending.")
    group = p_requeue.add_mutually_exclusive_group(required=True)
    group.add_argument("--burn-id", default=None, help="Requeue one failed obligation.")
    group.add_argument("--all-failed", action="store_true", help="Requeue every non-validation failure.")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    return get_settings(
        burn_store_path=args.burn_store,
        ledger_path=args.ledger,
        report_dir=args.report_dir,
        rpc_url=args.rpc_url,
        keypair_path=args.keypair,
        concurrency=args.concurrency,
        min_burn_amount=args.min_burn,
        dry_run=args.dry_run,
    )


def _configure_logging(args: argparse.Namespace) -> None:
    if args.log_level is None and args.log_format is None:
        return
    level = None
    if args.log_level:
        level = getattr(logging, args.log_level.upper(), None)
        if not isinstance(level, int):
            raise ConfigError(f"Unknown log level: {args.log_level}")
    configure_structlog(level=level, fmt=args.log_format)


def _print_status(pipeline: Pipeline, wallets: bool) -> None:
    print(pipeline.status().render())
    if not wallets:
        return
    rows = [
        (
            w.wallet_address,
            f"burned {format(w.total_burned, 'f')} / minted {format(w.total_minted, 'f')} "
            f"({w.mint_count}/{w.burn_count})",
        )
        for w in pipeline.ledger.get_wallet_summaries()
    ]
    if rows:
        print(format_table(rows, header=("Wallet", "Totals")))


def dispatch(args: argparse.Namespace, pipeline: Pipeline) -> int:
    command = args.command
    if command == "migrate":
        summary = pipeline.migrate(burner=args.burner)
    elif command == "mint":
        install_signal_handlers(pipeline.stop_event)
        summary = pipeline.mint()
    elif command == "run":
        install_signal_handlers(pipeline.stop_event)
        summary = pipeline.run(burner=args.burner, write_report=not args.no_report)
    elif command == "generate":
        for path in pipeline.generate():
            print(path)
        return EXIT_OK
    elif command == "status":
        _print_status(pipeline, args.wallets)
        return EXIT_OK
    elif command == "requeue":
        count = pipeline.requeue(burn_id=args.burn_id, all_failed=args.all_failed)
        print(f"requeued: {count}")
        return EXIT_OK
    else:
        raise ValueError(f"unknown command {command}")
    print(summary.render())
    return summary.exit_code


def _default_to_run(argv: Sequence[str]) -> list[str]:
    """Without a subcommand the full pipeline runs."""
    args = list(argv)
    if any(a in COMMANDS or a in ("-h", "--help", "--version") for a in args):
        return args
    return ["run", *args]


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(_default_to_run(sys.argv[1:] if argv is None else argv))
    pipeline: Pipeline | None = None
    try:
        _configure_logging(args)
        settings = settings_from_args(args)
        pipeline = Pipeline(settings)
        return dispatch(args, pipeline)
    except BridgeError as e:
        logger.exception("cli_fatal", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("cli_interrupted", command=args.command)
        return EXIT_FATAL
    finally:
        if pipeline is not None:
            pipeline.close()


if __name__ == "__main__":
    sys.exit(main())
