"""Locate the bottom-line net income in a P&L report."""

from decimal import Decimal
from typing import Any

from monthend.reports.flatten import pick_value, total_column_index
from monthend.reports.nodes import DataRow, Report, SummaryRow, clean_label, normalize_report, walk

NET_INCOME_LABEL = "net income"
NET_INCOME_GROUP = "netincome"


def find_net_income(report: Report | dict[str, Any]) -> Decimal | None:
    """Return the net income value, or None when the report has none.

    None means indeterminate and must not be treated as zero. When several
    rows match, the last one in traversal order wins. A section is visited
    before its nested rows, so a matching nested row overrides the section's
    own total, and within one row the summary overrides the data cells.
    """
    report = normalize_report(report)
    total_index = total_column_index(report)

    found: Decimal | None = None
    for node, _path in walk(report.rows):
        if not isinstance(node, (DataRow, SummaryRow)):
            continue
        if len(node.cells) < 2:
            continue

        label = clean_label(node.cells[0].value).lower()
        group = (node.group or "").lower()
        if NET_INCOME_LABEL not in label and group != NET_INCOME_GROUP:
            continue

        value = pick_value(node.cells, total_index)
        if value is not None:
            found = value
    return found
