"""Flatten a QBO report tree into typed line items."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from monthend.reports.nodes import (
    Cell,
    DataRow,
    Report,
    ReportColumn,
    SummaryRow,
    clean_label,
    normalize_report,
    walk,
)

LineSource = Literal["data", "summary"]

# Aggregate labels where a zero is meaningful and must not be read as "missing".
PROTECTED_ZERO_LABELS = (
    "net income",
    "net operating income",
    "gross profit",
    "total income",
    "total expenses",
)


@dataclass(frozen=True)
class ReportLine:
    """A single named value extracted from a report."""

    name: str
    value: Decimal
    source: LineSource
    section: str | None = None
    group: str | None = None
    path: tuple[str, ...] = ()
    account_id: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.section or "", self.source, self.name)


def parse_amount(value: Any) -> Decimal | None:
    """Parse a report cell into a Decimal.

    Accepts thousands separators, a leading ``$`` and accounting-style
    parentheses for negatives. Empty, ``NaN`` and infinite values yield None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        text = str(value).strip()
    if not text:
        return None

    negative = text.startswith("(") and text.endswith(")")
    cleaned = text.strip("()").replace(",", "").replace("$", "").strip()
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def total_column_index(report: Report) -> int | None:
    """Index of the report's total column, if it has one."""
    for index, column in enumerate(report.columns):
        if column.is_total:
            return index
    for index, column in enumerate(report.columns):
        if column.title.lower() == "total":
            return index
    return None


def period_columns(report: Report) -> list[tuple[int, ReportColumn]]:
    """Value columns other than the label column and the total column."""
    total_index = total_column_index(report)
    return [
        (index, column)
        for index, column in enumerate(report.columns)
        if index > 0 and index != total_index
    ]


def pick_value(
    cells: tuple[Cell, ...],
    preferred_index: int | None,
    strict: bool = False,
) -> Decimal | None:
    """Select a row's numeric value.

    The preferred (total) column wins when it parses; otherwise cells are
    scanned right to left, skipping the label in cell 0. With ``strict``
    only the preferred column is considered.
    """
    if preferred_index is not None and 1 <= preferred_index < len(cells):
        amount = parse_amount(cells[preferred_index].value)
        if amount is not None or strict:
            return amount
    if strict:
        return None

    for index in range(len(cells) - 1, 0, -1):
        amount = parse_amount(cells[index].value)
        if amount is not None:
            return amount
    return None


def _keep_line(name: str, value: Decimal) -> bool:
    lowered = name.lower()
    if lowered == "total":
        return False
    if value == 0:
        return any(label in lowered for label in PROTECTED_ZERO_LABELS)
    return True


def flatten_report(report: Report | dict[str, Any], column: int | None = None) -> list[ReportLine]:
    """Extract de-duplicated lines from a report.

    Args:
        report: Normalized report or raw QBO report JSON.
        column: Pin value selection to this column index (no fallback).
            Defaults to the total column with right-to-left fallback.

    Returns:
        One line per (section, source, name), keeping the largest magnitude
        when a key appears more than once in the tree.
    """
    report = normalize_report(report)
    strict = column is not None
    preferred = column if strict else total_column_index(report)

    lines: list[ReportLine] = []
    for node, path in walk(report.rows):
        if isinstance(node, DataRow):
            source: LineSource = "data"
        elif isinstance(node, SummaryRow):
            source = "summary"
        else:
            continue

        name = clean_label(node.cells[0].value) if node.cells else ""
        if not name:
            continue
        value = pick_value(node.cells, preferred, strict=strict)
        if value is None or not _keep_line(name, value):
            continue

        lines.append(
            ReportLine(
                name=name,
                value=value,
                source=source,
                section=path[-1] if path else None,
                group=node.group,
                path=path,
                account_id=node.cells[0].id,
            )
        )

    best: dict[tuple[str, str, str], ReportLine] = {}
    for line in lines:
        previous = best.get(line.key)
        if previous is None or abs(line.value) > abs(previous.value):
            best[line.key] = line
    return list(best.values())
