"""
Structured logging for solxen-bridge.

JSON logs with timestamp, event_type, burn_id and transaction signature.
Use get_logger() in all pipeline modules for aggregation-friendly output.
"""

from solxen_bridge.logging.logger import bind_obligation, configure_structlog, get_logger

__all__ = ["bind_obligation", "configure_structlog", "get_logger"]
