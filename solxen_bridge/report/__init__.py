"""Reports over the settlement ledger."""

from solxen_bridge.report.renderer import CsvJsonReportRenderer, ReportRenderer
from solxen_bridge.report.tables import format_table

__all__ = ["CsvJsonReportRenderer", "ReportRenderer", "format_table"]
