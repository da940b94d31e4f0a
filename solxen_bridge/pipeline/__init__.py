"""Pipeline orchestration: migrate, mint, run, generate."""

from solxen_bridge.pipeline.orchestrator import (
    EXIT_FAILED_OBLIGATIONS,
    EXIT_FATAL,
    EXIT_OK,
    Pipeline,
    RunSummary,
    install_signal_handlers,
)

__all__ = [
    "EXIT_FAILED_OBLIGATIONS",
    "EXIT_FATAL",
    "EXIT_OK",
    "Pipeline",
    "RunSummary",
    "install_signal_handlers",
]
