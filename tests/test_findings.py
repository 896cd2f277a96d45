"""Tests for P&L audit findings."""

from decimal import Decimal

import pytest

from monthend.findings import (
    FindingsInput,
    Severity,
    build_findings,
    find_line,
    format_money,
)
from monthend.reports import ReportLine


def data(name, value, section="Expenses"):
    return ReportLine(name=name, value=Decimal(str(value)), source="data", section=section)


def summary(name, value, section=None):
    return ReportLine(name=name, value=Decimal(str(value)), source="summary", section=section)


def run(lines, prior_lines=None, net_income=None, prior_net_income=None):
    findings = build_findings(
        FindingsInput(
            org_id="acme",
            period_from="2025-09-01",
            period_to="2025-09-30",
            lines=lines,
            prior_lines=prior_lines or [],
            net_income=None if net_income is None else Decimal(str(net_income)),
            prior_net_income=None if prior_net_income is None else Decimal(str(prior_net_income)),
        )
    )
    return {finding.id: finding for finding in findings}


def test_format_money():
    assert format_money(Decimal("1234.5")) == "$1,234.50"
    assert format_money(Decimal("-87")) == "-$87.00"


def test_find_line_is_case_insensitive():
    lines = [data("Rent", 10), summary("Total Expenses", 10)]

    assert find_line(lines, "total expenses").name == "Total Expenses"
    assert find_line(lines, "payroll") is None


class TestParseHealth:
    def test_healthy(self):
        lines = [data("A", 1), data("B", 2), data("C", 3), summary("Total Expenses", 6)]

        finding = run(lines, net_income=-6)["pnl-parse-health"]

        assert finding.severity == Severity.INFO
        assert "Net Income detected: -$6.00" in finding.detail

    @pytest.mark.parametrize(
        ("line_count", "net_income"),
        [(10, None), (3, "100")],
    )
    def test_warns(self, line_count, net_income):
        lines = [data(f"Line {i}", i + 1) for i in range(line_count)]

        finding = run(lines, net_income=net_income)["pnl-parse-health"]

        assert finding.severity == Severity.WARN
        assert finding.meta["lines_count"] == line_count

    def test_missing_net_income_detail(self):
        finding = run([], net_income=None)["pnl-parse-health"]

        assert "Net Income was not detected" in finding.detail
        assert "2025-09-01 to 2025-09-30" in finding.detail


class TestExecutiveSummary:
    def test_lists_available_totals(self):
        lines = [summary("Total Income", 5000), summary("Total Expenses", 3000)]

        finding = run(lines, net_income=2000)["pnl-exec-summary"]

        assert finding.detail == (
            "Total Income: $5,000.00. Total Expenses: $3,000.00. Net Income: $2,000.00."
        )

    def test_absent_without_totals(self):
        assert "pnl-exec-summary" not in run([data("Rent", 10)])


class TestRevenueMissing:
    @pytest.mark.parametrize(
        ("expenses", "severity"),
        [(999, Severity.WARN), (1000, Severity.CRITICAL)],
    )
    def test_severity_by_expenses(self, expenses, severity):
        finding = run([summary("Total Expenses", expenses)])["pnl-revenue-missing"]

        assert finding.severity == severity
        assert finding.metric == Decimal(expenses)

    def test_not_raised_with_income(self):
        lines = [summary("Total Income", 10), summary("Total Expenses", 5000)]

        assert "pnl-revenue-missing" not in run(lines)


class TestTopLines:
    def test_data_lines_first_then_magnitude(self):
        lines = [
            summary("Total Expenses", 9000),
            summary("Payroll Summary", 8000),
            data("Rent", 200),
            data("Software", -700),
        ]

        top = run(lines)["pnl-top-lines"].meta["top"]

        assert [item["name"] for item in top] == ["Software", "Rent", "Payroll Summary"]

    def test_empty(self):
        finding = run([])["pnl-top-lines"]

        assert finding.detail == "No account-level lines found to show (yet)."


class TestExpenseConcentration:
    @pytest.mark.parametrize(
        ("rent", "other", "severity"),
        [
            (4000, 1000, Severity.CRITICAL),
            (3000, 2000, Severity.WARN),
            (700, 300, Severity.WARN),
            (400, 300, Severity.INFO),
            (2000, 2000, Severity.WARN),
        ],
    )
    def test_severity(self, rent, other, severity):
        total = rent + other
        lines = [
            data("Rent", rent),
            data("Utilities", other),
            summary("Total Expenses", total),
        ]

        finding = run(lines)["pnl-expense-concentration"]

        assert finding.severity == severity
        assert finding.meta["top"][0]["name"] == "Rent"

    def test_only_expense_section_counts(self):
        lines = [data("Sales", 9000, section="Income"), summary("Total Expenses", 100)]

        assert "pnl-expense-concentration" not in run(lines)


class TestMonthOverMonth:
    @pytest.mark.parametrize(
        ("this", "prior", "severity"),
        [
            (10000, 0, Severity.INFO),
            (60000, 5000, Severity.WARN),
            (-150000, 60000, Severity.CRITICAL),
        ],
    )
    def test_net_income(self, this, prior, severity):
        finding = run([], net_income=this, prior_net_income=prior)["pnl-mom-net-income"]

        assert finding.severity == severity
        assert finding.metric == Decimal(this - prior)

    def test_net_income_pct_is_none_when_prior_zero(self):
        finding = run([], net_income=100, prior_net_income=0)["pnl-mom-net-income"]

        assert finding.meta["pct"] is None
        assert "%" not in finding.detail

    @pytest.mark.parametrize(
        ("this", "prior", "severity"),
        [
            (5500, 5000, Severity.INFO),
            (6000, 5000, Severity.WARN),
            (4000, 15000, Severity.CRITICAL),
        ],
    )
    def test_expenses(self, this, prior, severity):
        finding = run(
            [summary("Total Expenses", this)],
            prior_lines=[summary("Total Expenses", prior)],
        )["pnl-mom-expenses"]

        assert finding.severity == severity

    def test_expenses_pct(self):
        finding = run(
            [summary("Total Expenses", 1500)],
            prior_lines=[summary("Total Expenses", 1000)],
        )["pnl-mom-expenses"]

        assert finding.meta["pct"] == Decimal("0.50")
        assert finding.detail.endswith("Change: $500.00 (50.0%).")

    def test_absent_without_prior(self):
        findings = run([summary("Total Expenses", 1500)], net_income=10)

        assert "pnl-mom-expenses" not in findings
        assert "pnl-mom-net-income" not in findings


class TestUncategorized:
    def test_warns_above_threshold(self):
        lines = [
            data("Uncategorized Expense", 800),
            data("Ask My Accountant", 400),
            data("Rent", 5000),
        ]

        finding = run(lines)["pnl-uncat"]

        assert finding.severity == Severity.WARN
        assert finding.metric == Decimal("1200.00")
        assert len(finding.meta["hits"]) == 2

    def test_info_at_threshold(self):
        finding = run([data("Unknown Vendor Charges", 1000)])["pnl-uncat"]

        assert finding.severity == Severity.INFO

    def test_absent(self):
        assert "pnl-uncat" not in run([data("Rent", 100)])

    def test_hits_serialize(self):
        payload = run([data("Uncategorized Income", 5, section="Income")])["pnl-uncat"].to_dict()

        assert payload["meta"]["hits"] == [
            {
                "name": "Uncategorized Income",
                "value": "5",
                "source": "data",
                "section": "Income",
            }
        ]
        assert payload["metric"] == "5.00"


class TestLargestSwings:
    def test_ranks_by_absolute_delta(self):
        lines = [data("Rent", 2000), data("Software", 300), data("New Hire", 12000)]
        prior = [data("Rent", 2000), data("Software", 1800), data("Travel", 700)]

        finding = run(lines, prior_lines=prior)["pnl-largest-swings"]

        names = [swing["name"] for swing in finding.meta["swings"]]
        assert names[:3] == ["New Hire", "Software", "Travel"]
        assert finding.severity == Severity.CRITICAL
        assert finding.metric == Decimal("12000.00")

    def test_warn_severity(self):
        finding = run([data("Rent", 3500)], prior_lines=[data("Rent", 2000)])[
            "pnl-largest-swings"
        ]

        assert finding.severity == Severity.WARN
        assert finding.meta["swings"][0]["delta_formatted"] == "$1,500.00"

    def test_ignores_summary_labels_and_zero_rows(self):
        lines = [data("Net Income", 50000), data("Dormant", 0)]

        assert "pnl-largest-swings" not in run(lines, prior_lines=[data("Dormant", 0)])
