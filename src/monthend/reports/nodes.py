"""Typed representation of QuickBooks report JSON.

QBO reports are loosely shaped: a row may carry a ``Header``, nested
``Rows.Row`` children, its own ``ColData``, a ``Summary.ColData`` subtotal,
or any combination of these. ``normalize_report`` turns that structure into
a closed set of node types so traversal never has to check optional keys:

- ``GroupNode``: a section with an optional header label and child nodes.
  The section's own cells (if any) come first as a ``DataRow``, then its
  subtotal as a ``SummaryRow``, then the nested rows. A section is read
  before anything it contains.
- ``DataRow``: an account-level line.
- ``SummaryRow``: a subtotal or total line.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Cell:
    """One column value of a report row."""

    value: str
    id: str | None = None


@dataclass(frozen=True)
class ReportColumn:
    """Column metadata from ``Columns.Column``."""

    title: str = ""
    col_type: str = ""
    key: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    @property
    def is_total(self) -> bool:
        return (self.key or "").lower() == "total"


@dataclass(frozen=True)
class DataRow:
    cells: tuple[Cell, ...]
    group: str | None = None


@dataclass(frozen=True)
class SummaryRow:
    cells: tuple[Cell, ...]
    group: str | None = None


@dataclass(frozen=True)
class GroupNode:
    label: str | None
    children: tuple["ReportNode", ...] = ()
    group: str | None = None


ReportNode = Union[GroupNode, DataRow, SummaryRow]


@dataclass(frozen=True)
class Report:
    """A normalized report: header fields, columns and the row tree."""

    header: dict[str, Any] = field(default_factory=dict)
    columns: tuple[ReportColumn, ...] = ()
    rows: tuple[ReportNode, ...] = ()

    @property
    def name(self) -> str:
        return str(self.header.get("ReportName", ""))


def clean_label(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _cells(raw: Any) -> tuple[Cell, ...]:
    if not isinstance(raw, list):
        return ()
    cells = []
    for item in raw:
        if isinstance(item, dict):
            raw_id = item.get("id")
            cells.append(
                Cell(
                    value=clean_label(item.get("value")),
                    id=str(raw_id) if raw_id not in (None, "") else None,
                )
            )
        else:
            cells.append(Cell(value=clean_label(item)))
    return tuple(cells)


def _child_rows(raw_row: dict[str, Any]) -> list[Any] | None:
    rows = raw_row.get("Rows")
    if isinstance(rows, list):
        return rows
    if isinstance(rows, dict) and isinstance(rows.get("Row"), list):
        return rows["Row"]
    return None


def _normalize_row(raw_row: Any) -> list[ReportNode]:
    if not isinstance(raw_row, dict):
        return []

    group = raw_row.get("group")
    group = str(group) if group else None

    own: list[ReportNode] = []
    data_cells = _cells(raw_row.get("ColData"))
    if data_cells:
        own.append(DataRow(cells=data_cells, group=group))

    summary = raw_row.get("Summary")
    summary_cells = _cells(summary.get("ColData")) if isinstance(summary, dict) else ()

    header = raw_row.get("Header")
    header_cells = _cells(header.get("ColData")) if isinstance(header, dict) else ()
    children = _child_rows(raw_row)

    if header_cells or children is not None:
        label = clean_label(header_cells[0].value) if header_cells else ""
        nested: list[ReportNode] = list(own)
        if summary_cells:
            nested.append(SummaryRow(cells=summary_cells, group=group))
        for child in children or []:
            nested.extend(_normalize_row(child))
        return [GroupNode(label=label or None, children=tuple(nested), group=group)]

    if summary_cells:
        own.append(SummaryRow(cells=summary_cells, group=group))
    return own


def _normalize_columns(raw: dict[str, Any]) -> tuple[ReportColumn, ...]:
    columns = raw.get("Columns")
    items = columns.get("Column") if isinstance(columns, dict) else None
    if not isinstance(items, list):
        return ()

    normalized = []
    for item in items:
        if not isinstance(item, dict):
            normalized.append(ReportColumn())
            continue
        meta: dict[str, str] = {}
        for entry in item.get("MetaData") or []:
            if isinstance(entry, dict) and entry.get("Name"):
                meta[str(entry["Name"])] = str(entry.get("Value", ""))
        normalized.append(
            ReportColumn(
                title=clean_label(item.get("ColTitle")),
                col_type=clean_label(item.get("ColType")),
                key=meta.get("ColKey"),
                start_date=meta.get("StartDate"),
                end_date=meta.get("EndDate"),
            )
        )
    return tuple(normalized)


def normalize_report(raw: Any) -> Report:
    """Convert raw report JSON into a ``Report``.

    Malformed fragments are skipped rather than raised, so an empty or
    partial payload yields an empty tree.
    """
    if isinstance(raw, Report):
        return raw
    if not isinstance(raw, dict):
        return Report()

    rows: list[ReportNode] = []
    for raw_row in _child_rows(raw) or []:
        rows.extend(_normalize_row(raw_row))

    header = raw.get("Header")
    return Report(
        header=dict(header) if isinstance(header, dict) else {},
        columns=_normalize_columns(raw),
        rows=tuple(rows),
    )


def walk(
    nodes: tuple[ReportNode, ...] | list[ReportNode],
    path: tuple[str, ...] = (),
) -> Iterator[tuple[ReportNode, tuple[str, ...]]]:
    """Yield ``(node, section_path)`` pairs depth-first.

    A group's children (including its own data and summary rows) see the
    group's label appended to the path.
    """
    for node in nodes:
        yield node, path
        if isinstance(node, GroupNode):
            child_path = path + (node.label,) if node.label else path
            yield from walk(node.children, child_path)
