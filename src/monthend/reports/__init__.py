"""Report parsing: normalization, flattening and net income lookup."""

from monthend.reports.flatten import (
    PROTECTED_ZERO_LABELS,
    ReportLine,
    flatten_report,
    parse_amount,
    period_columns,
    pick_value,
    total_column_index,
)
from monthend.reports.net_income import find_net_income
from monthend.reports.nodes import (
    Cell,
    DataRow,
    GroupNode,
    Report,
    ReportColumn,
    ReportNode,
    SummaryRow,
    normalize_report,
    walk,
)

__all__ = [
    # Nodes
    "Cell",
    "DataRow",
    "GroupNode",
    "Report",
    "ReportColumn",
    "ReportNode",
    "SummaryRow",
    "normalize_report",
    "walk",
    # Flattening
    "PROTECTED_ZERO_LABELS",
    "ReportLine",
    "flatten_report",
    "parse_amount",
    "period_columns",
    "pick_value",
    "total_column_index",
    # Net income
    "find_net_income",
]
