"""Pytest configuration and fixtures."""

import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("QBO_ENV", "sandbox")
os.environ.setdefault("QBO_CLIENT_ID", "test-client-id")
os.environ.setdefault("QBO_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("QBO_ACCESS_TOKEN", "test-access-token")
os.environ.setdefault("QBO_REALM_ID", "9130000000000001")

from monthend.clients.qbo import AccountFound, AccountLookup, AccountNotFound  # noqa: E402

HISTORY_MONTHS = [
    ("2025-03-01", "2025-03-31", "Mar 2025"),
    ("2025-04-01", "2025-04-30", "Apr 2025"),
    ("2025-05-01", "2025-05-31", "May 2025"),
    ("2025-06-01", "2025-06-30", "Jun 2025"),
    ("2025-07-01", "2025-07-31", "Jul 2025"),
    ("2025-08-01", "2025-08-31", "Aug 2025"),
]


def _money(value: Any) -> str:
    if value is None:
        return ""
    return f"{Decimal(str(value)):.2f}"


def _column(title: str, key: str | None = None, start: str | None = None, end: str | None = None):
    column: dict[str, Any] = {"ColTitle": title, "ColType": "Money" if title else "Account"}
    meta = []
    if key:
        meta.append({"Name": "ColKey", "Value": key})
    if start:
        meta.append({"Name": "StartDate", "Value": start})
    if end:
        meta.append({"Name": "EndDate", "Value": end})
    if meta:
        column["MetaData"] = meta
    return column


def build_pnl(
    expenses: list[tuple[str, str, Any]],
    months: list[tuple[str, str, str]] | None = None,
    income: list[tuple[str, str, Any]] | None = None,
    net_income: Any = None,
) -> dict[str, Any]:
    """Build QBO ProfitAndLoss JSON.

    Each expense or income entry is ``(name, account_id, amount)``; with
    ``months`` the amount is a list with one value (or None) per month and a
    Total column holding the row sum is appended.
    """
    columns = [_column("")]
    if months:
        columns += [
            _column(title, key=start[:7], start=start, end=end) for start, end, title in months
        ]
    columns.append(_column("Total", key="total"))

    def cells(name: str, account_id: str | None, amount: Any) -> list[dict[str, Any]]:
        first: dict[str, Any] = {"value": name}
        if account_id:
            first["id"] = account_id
        if months:
            values = list(amount)
            total = sum((Decimal(str(v)) for v in values if v is not None), Decimal("0"))
            return [first] + [{"value": _money(v)} for v in values] + [{"value": _money(total)}]
        return [first, {"value": _money(amount)}]

    def section(label: str, group: str, entries: list[tuple[str, str, Any]]) -> dict[str, Any]:
        rows = [{"ColData": cells(n, a, v), "type": "Data"} for n, a, v in entries]
        if months:
            totals = [
                sum(
                    (Decimal(str(v[i])) for _, _, v in entries if v[i] is not None),
                    Decimal("0"),
                )
                for i in range(len(months))
            ]
        else:
            totals = sum((Decimal(str(v)) for _, _, v in entries), Decimal("0"))
        return {
            "Header": {"ColData": [{"value": label}]},
            "Rows": {"Row": rows},
            "Summary": {"ColData": cells(f"Total {label}", None, totals)},
            "type": "Section",
            "group": group,
        }

    rows = []
    if income is not None:
        rows.append(section("Income", "Income", income))
    rows.append(section("Expenses", "Expenses", expenses))
    if net_income is not None:
        rows.append({
            "Summary": {
                "ColData": cells(
                    "Net Income", None, net_income if not months else [net_income] * len(months)
                )
            },
            "type": "Section",
            "group": "NetIncome",
        })

    return {
        "Header": {"ReportName": "ProfitAndLoss", "Currency": "USD"},
        "Columns": {"Column": columns},
        "Rows": {"Row": rows},
    }


@dataclass
class FakeQBO:
    """In-memory stand-in for QBOClient."""

    historical: dict[str, Any] = field(default_factory=dict)
    current: dict[str, Any] = field(default_factory=dict)
    pnl_by_period: dict[tuple[date, date], dict[str, Any]] = field(default_factory=dict)
    accounts: dict[str, AccountLookup] = field(default_factory=dict)
    report_error: Exception | None = None
    journal_error: Exception | None = None
    journal_response: dict[str, Any] | None = None
    report_calls: list[dict[str, Any]] = field(default_factory=list)
    account_calls: list[tuple[str, str | None]] = field(default_factory=list)
    journal_entries: list[dict[str, Any]] = field(default_factory=list)

    @property
    def external_calls(self) -> int:
        return len(self.report_calls) + len(self.account_calls) + len(self.journal_entries)

    async def fetch_report(
        self, org_id: str, report_name: str, params: dict[str, Any]  # noqa: ARG002
    ) -> dict[str, Any]:
        self.report_calls.append({"report": report_name, **params})
        if self.report_error is not None:
            raise self.report_error
        if params.get("summarize_column_by"):
            return self.historical
        return self.current

    async def get_profit_and_loss(
        self,
        org_id: str,
        start_date: date,
        end_date: date,
        summarize_column_by: str | None = None,  # noqa: ARG002
    ) -> dict[str, Any]:
        self.report_calls.append({"start_date": start_date, "end_date": end_date})
        if self.report_error is not None:
            raise self.report_error
        return self.pnl_by_period.get((start_date, end_date), self.current)

    async def find_account(
        self, org_id: str, account_type: str, name: str | None = None  # noqa: ARG002
    ) -> AccountLookup:
        self.account_calls.append((account_type, name))
        missing = AccountNotFound(account_type=account_type, name=name)
        return self.accounts.get(account_type, missing)

    async def create_journal_entry(
        self, org_id: str, payload: dict[str, Any]  # noqa: ARG002
    ) -> dict[str, Any]:
        self.journal_entries.append(payload)
        if self.journal_error is not None:
            raise self.journal_error
        if self.journal_response is not None:
            return self.journal_response
        return {"JournalEntry": {"Id": str(100 + len(self.journal_entries))}}


@pytest.fixture
def fake_qbo() -> FakeQBO:
    return FakeQBO()


@pytest.fixture
def accrued_liabilities() -> AccountFound:
    return AccountFound(account_id="88", name="Accrued Liabilities")


@pytest.fixture
def pnl_builder():
    """Factory for QBO ProfitAndLoss payloads."""
    return build_pnl


@pytest.fixture
def history_months() -> list[tuple[str, str, str]]:
    return list(HISTORY_MONTHS)

