"""Audit findings derived from this month's and last month's P&L."""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from monthend.reports import ReportLine

SUMMARY_LABELS = frozenset({
    "total income",
    "total expenses",
    "gross profit",
    "net income",
    "net operating income",
})
UNCATEGORIZED_KEYWORDS = ("uncategorized", "ask my accountant", "unknown")
TOP_LINES_LIMIT = 10
CONCENTRATION_LIMIT = 5
SWINGS_LIMIT = 10


class Severity(str, Enum):
    INFO = "info"
    WARN = "warn"
    CRITICAL = "critical"


@dataclass
class Finding:
    id: str
    severity: Severity
    title: str
    detail: str
    metric: Decimal | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "severity": self.severity.value,
            "title": self.title,
            "detail": self.detail,
            "meta": _jsonable(self.meta),
        }
        if self.metric is not None:
            result["metric"] = str(self.metric)
        return result


@dataclass
class FindingsInput:
    org_id: str
    period_from: str
    period_to: str
    lines: list[ReportLine]
    prior_lines: list[ReportLine]
    net_income: Decimal | None
    prior_net_income: Decimal | None


def format_money(amount: Decimal) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _round2(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _pct(delta: Decimal, base: Decimal) -> Decimal | None:
    if base == 0:
        return None
    return _round2(delta / abs(base))


def _pct_suffix(pct: Decimal | None) -> str:
    return "" if pct is None else f" ({pct * 100:.1f}%)"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, ReportLine):
        return {
            "name": value.name,
            "value": str(value.value),
            "source": value.source,
            "section": value.section,
        }
    return value


def find_line(lines: list[ReportLine], name_includes: str) -> ReportLine | None:
    """First line whose name contains the text, case-insensitively."""
    needle = name_includes.lower()
    for line in lines:
        if needle in line.name.lower():
            return line
    return None


def _month_over_month(
    finding_id: str,
    title: str,
    this_value: Decimal,
    prior_value: Decimal,
    warn_at: Decimal,
    critical_at: Decimal,
    meta_names: tuple[str, str],
) -> Finding:
    delta = _round2(this_value - prior_value)
    pct = _pct(delta, prior_value)
    severity = Severity.INFO
    if abs(delta) >= critical_at:
        severity = Severity.CRITICAL
    elif abs(delta) >= warn_at:
        severity = Severity.WARN
    return Finding(
        id=finding_id,
        severity=severity,
        title=title,
        detail=(
            f"This month: {format_money(this_value)}. Prior month: {format_money(prior_value)}. "
            f"Change: {format_money(delta)}{_pct_suffix(pct)}."
        ),
        metric=delta,
        meta={meta_names[0]: this_value, meta_names[1]: prior_value, "delta": delta, "pct": pct},
    )


def build_findings(data: FindingsInput) -> list[Finding]:
    """Run every P&L check and return findings in a stable order."""
    findings: list[Finding] = []
    lines = data.lines

    # Parse health
    has_net_income = data.net_income is not None
    healthy = has_net_income and len(lines) >= 4
    if has_net_income:
        detail = (
            f"Parsed lines: {len(lines)}. "
            f"Net Income detected: {format_money(data.net_income)}."
        )
    else:
        detail = (
            f"Net Income was not detected in the P&L output for {data.period_from} to "
            f"{data.period_to}. Parsed lines: {len(lines)}."
        )
    findings.append(
        Finding(
            id="pnl-parse-health",
            severity=Severity.INFO if healthy else Severity.WARN,
            title="P&L parse health",
            detail=detail,
            meta={
                "org_id": data.org_id,
                "from": data.period_from,
                "to": data.period_to,
                "lines_count": len(lines),
                "net_income": data.net_income,
                "prior_net_income": data.prior_net_income,
            },
        )
    )

    # Executive summary
    total_income_line = find_line(lines, "total income")
    total_expenses_line = find_line(lines, "total expenses")
    prior_expenses_line = find_line(data.prior_lines, "total expenses")
    total_income = total_income_line.value if total_income_line else None
    total_expenses = total_expenses_line.value if total_expenses_line else None
    prior_expenses = prior_expenses_line.value if prior_expenses_line else None

    if total_income is not None or total_expenses is not None or has_net_income:
        parts = []
        if total_income is not None:
            parts.append(f"Total Income: {format_money(total_income)}")
        if total_expenses is not None:
            parts.append(f"Total Expenses: {format_money(total_expenses)}")
        if data.net_income is not None:
            parts.append(f"Net Income: {format_money(data.net_income)}")
        findings.append(
            Finding(
                id="pnl-exec-summary",
                severity=Severity.INFO,
                title="Executive summary",
                detail=". ".join(parts) + ".",
                meta={
                    "total_income": total_income,
                    "total_expenses": total_expenses,
                    "net_income": data.net_income,
                },
            )
        )

    # Revenue missing while expenses are booked
    income = total_income or Decimal("0")
    expenses = total_expenses or Decimal("0")
    if income == 0 and expenses > 0:
        findings.append(
            Finding(
                id="pnl-revenue-missing",
                severity=Severity.CRITICAL if expenses >= 1000 else Severity.WARN,
                title="Revenue appears to be zero",
                detail=(
                    f"Total Income is {format_money(income)} while Total Expenses are "
                    f"{format_money(expenses)} for {data.period_from} to {data.period_to}. "
                    "If you expected revenue, check invoice posting dates, income accounts "
                    "mapping, or whether revenue was posted in a different period."
                ),
                metric=expenses,
                meta={"total_income": total_income, "total_expenses": total_expenses},
            )
        )

    findings.append(_top_lines(lines))

    if total_expenses is not None and total_expenses > 0:
        concentration = _expense_concentration(lines, total_expenses)
        if concentration is not None:
            findings.append(concentration)

    if data.net_income is not None and data.prior_net_income is not None:
        findings.append(
            _month_over_month(
                "pnl-mom-net-income",
                "Net Income month-over-month",
                data.net_income,
                data.prior_net_income,
                warn_at=Decimal("50000"),
                critical_at=Decimal("200000"),
                meta_names=("net_income", "prior_net_income"),
            )
        )

    if total_expenses is not None and prior_expenses is not None:
        findings.append(
            _month_over_month(
                "pnl-mom-expenses",
                "Total Expenses month-over-month",
                total_expenses,
                prior_expenses,
                warn_at=Decimal("1000"),
                critical_at=Decimal("10000"),
                meta_names=("total_expenses", "prior_total_expenses"),
            )
        )

    uncategorized = _uncategorized(lines)
    if uncategorized is not None:
        findings.append(uncategorized)

    swings = _largest_swings(lines, data.prior_lines)
    if swings is not None:
        findings.append(swings)

    return findings


def _top_lines(lines: list[ReportLine]) -> Finding:
    candidates = [line for line in lines if line.name.lower().strip() not in SUMMARY_LABELS]
    candidates.sort(key=lambda line: (line.source != "data", -abs(line.value)))
    top = candidates[:TOP_LINES_LIMIT]
    return Finding(
        id="pnl-top-lines",
        severity=Severity.INFO,
        title="Top accounts (snapshot)",
        detail=(
            f"Top {len(top)} accounts by magnitude for quick review."
            if top
            else "No account-level lines found to show (yet)."
        ),
        meta={
            "top": [
                {
                    "name": line.name,
                    "section": line.section,
                    "source": line.source,
                    "value": line.value,
                    "formatted": format_money(line.value),
                }
                for line in top
            ]
        },
    )


def _expense_concentration(lines: list[ReportLine], total_expenses: Decimal) -> Finding | None:
    expense_lines = [
        line
        for line in lines
        if line.source == "data" and (line.section or "").lower() == "expenses" and line.value != 0
    ]
    expense_lines.sort(key=lambda line: abs(line.value), reverse=True)
    top = expense_lines[:CONCENTRATION_LIMIT]
    if not top:
        return None

    items = []
    for line in top:
        pct = abs(line.value) / abs(total_expenses)
        items.append({
            "name": line.name,
            "value": line.value,
            "formatted": format_money(line.value),
            "pct": _round2(pct),
            "pct_formatted": f"{pct * 100:.1f}%",
        })
    biggest_pct = abs(top[0].value) / abs(total_expenses)

    severity = Severity.INFO
    if biggest_pct >= Decimal("0.75") and total_expenses >= 5000:
        severity = Severity.CRITICAL
    elif biggest_pct >= Decimal("0.5") and total_expenses >= 1000:
        severity = Severity.WARN

    return Finding(
        id="pnl-expense-concentration",
        severity=severity,
        title="Expense concentration",
        detail=(
            "Top expense accounts represent the majority of Total Expenses "
            f"({format_money(total_expenses)}). Largest: {top[0].name} at "
            f"{items[0]['pct_formatted']} of expenses."
        ),
        metric=_round2(biggest_pct),
        meta={"total_expenses": total_expenses, "top": items},
    )


def _uncategorized(lines: list[ReportLine]) -> Finding | None:
    hits = [
        line
        for line in lines
        if any(keyword in line.name.lower() for keyword in UNCATEGORIZED_KEYWORDS)
    ]
    if not hits:
        return None
    total = _round2(sum((line.value for line in hits), Decimal("0")))
    return Finding(
        id="pnl-uncat",
        severity=Severity.WARN if abs(total) > 1000 else Severity.INFO,
        title="Potentially uncategorized activity",
        detail=(
            f"Found {len(hits)} line(s) that look like Uncategorized/Ask My Accountant/etc. "
            f"Total impact: {format_money(total)}."
        ),
        metric=total,
        meta={"hits": hits, "total": total},
    )


def _sum_by_name(lines: list[ReportLine]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for line in lines:
        if line.source == "data":
            totals[line.name] = totals.get(line.name, Decimal("0")) + line.value
    return totals


def _largest_swings(lines: list[ReportLine], prior_lines: list[ReportLine]) -> Finding | None:
    now = _sum_by_name(lines)
    prev = _sum_by_name(prior_lines)

    swings = []
    for name in {**now, **prev}:
        if not name.strip() or name.lower().strip() in SUMMARY_LABELS:
            continue
        this_month = now.get(name, Decimal("0"))
        prior_month = prev.get(name, Decimal("0"))
        if abs(this_month) + abs(prior_month) <= Decimal("0.01"):
            continue
        swings.append((name, this_month, prior_month, _round2(this_month - prior_month)))

    swings.sort(key=lambda swing: abs(swing[3]), reverse=True)
    top = swings[:SWINGS_LIMIT]
    if not top:
        return None

    max_delta = max(abs(swing[3]) for swing in top)
    severity = Severity.INFO
    if max_delta >= 10000:
        severity = Severity.CRITICAL
    elif max_delta >= 1000:
        severity = Severity.WARN

    return Finding(
        id="pnl-largest-swings",
        severity=severity,
        title="Largest account swings vs prior month",
        detail=f"Top {len(top)} account swings by magnitude.",
        metric=max_delta,
        meta={
            "max_abs_delta": max_delta,
            "swings": [
                {
                    "name": name,
                    "this_month": this_month,
                    "prior_month": prior_month,
                    "delta": delta,
                    "this_formatted": format_money(this_month),
                    "prior_formatted": format_money(prior_month),
                    "delta_formatted": format_money(delta),
                }
                for name, this_month, prior_month, delta in top
            ],
        },
    )
