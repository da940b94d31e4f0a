"""
Structured settlement logs on stderr.

Every record carries timestamp, level, event_type and the emitting module;
executor records also carry burn_id and, once signed, tx_reference, so one run
can be audited from its log stream alone. stdout stays free for tables.

LOG_LEVEL and LOG_FORMAT (json | console) set the defaults; the CLI can
override both through configure_structlog().
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog


def _env_level() -> int:
    return getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO)


def _env_format() -> str:
    return os.getenv("LOG_FORMAT", "json").strip().lower()


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event = event_dict.pop("event", None)
    if event is not None:
        event_dict.setdefault("event_type", event)
    return event_dict


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Resolved per logger so pytest capture and shell redirects see it
    return structlog.PrintLogger(file=sys.stderr)


def configure_structlog(level: int | None = None, fmt: str | None = None) -> None:
    fmt = (fmt or _env_format()).strip().lower()
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]
    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors += [
            structlog.processors.format_exc_info,
            _event_type,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level if level is not None else _env_level()),
        context_class=dict,
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Logger bound to the module name.

        logger = get_logger(__name__)
        logger.info("mint_tx_confirmed", burn_id=burn_id, tx_reference=sig)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_obligation(burn_id: str) -> structlog.BoundLogger:
    return get_logger("solxen_bridge.minter").bind(burn_id=burn_id)
