"""
Migration: burn store -> ledger reconciliation and burn-to-mint conversion rules.
"""

from solxen_bridge.migrator.conversion import (
    ConversionRule,
    IdentityConversion,
    RateConversion,
    build_conversion_rule,
    to_base_units,
)
from solxen_bridge.migrator.reconciler import MigrationResult, Reconciler

__all__ = [
    "ConversionRule",
    "IdentityConversion",
    "RateConversion",
    "build_conversion_rule",
    "to_base_units",
    "MigrationResult",
    "Reconciler",
]
