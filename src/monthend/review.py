"""Month-end P&L review run."""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID, uuid4

import structlog

from monthend.clients.qbo import QBOClient
from monthend.errors import InputError
from monthend.findings import Finding, FindingsInput, Severity, build_findings
from monthend.periods import parse_date, prior_month_range
from monthend.reports import find_net_income, flatten_report

logger = structlog.get_logger(__name__)


@dataclass
class ReviewResult:
    org_id: str
    period_from: date
    period_to: date
    prior_from: date
    prior_to: date
    findings: list[Finding]
    run_id: UUID = field(default_factory=uuid4)

    @property
    def warn_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.WARN)

    @property
    def critical_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.CRITICAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "org_id": self.org_id,
            "from": self.period_from.isoformat(),
            "to": self.period_to.isoformat(),
            "prev": {"from": self.prior_from.isoformat(), "to": self.prior_to.isoformat()},
            "findings": [finding.to_dict() for finding in self.findings],
            "summary": {
                "findings_count": len(self.findings),
                "warn_count": self.warn_count,
                "critical_count": self.critical_count,
            },
        }


class MonthEndReview:
    """Compares a period's P&L with the prior month and reports findings."""

    def __init__(self, client: QBOClient):
        self._client = client

    async def run(
        self, org_id: str, period_from: date | str, period_to: date | str
    ) -> ReviewResult:
        """Fetch both periods concurrently and build findings.

        Raises:
            InputError: Missing org or period bounds.
            QBOAPIError: A report fetch failed.
        """
        if not org_id:
            raise InputError("org_id is required")
        start = parse_date(period_from, "period_from")
        end = parse_date(period_to, "period_to")
        prior_from, prior_to = prior_month_range(start, end)

        try:
            async with asyncio.TaskGroup() as tasks:
                this_task = tasks.create_task(
                    self._client.get_profit_and_loss(org_id, start, end)
                )
                prior_task = tasks.create_task(
                    self._client.get_profit_and_loss(org_id, prior_from, prior_to)
                )
        except ExceptionGroup as group:
            raise group.exceptions[0] from None
        this_report = this_task.result()
        prior_report = prior_task.result()

        findings = build_findings(
            FindingsInput(
                org_id=org_id,
                period_from=start.isoformat(),
                period_to=end.isoformat(),
                lines=flatten_report(this_report),
                prior_lines=flatten_report(prior_report),
                net_income=find_net_income(this_report),
                prior_net_income=find_net_income(prior_report),
            )
        )
        result = ReviewResult(
            org_id=org_id,
            period_from=start,
            period_to=end,
            prior_from=prior_from,
            prior_to=prior_to,
            findings=findings,
        )
        logger.info(
            "monthend_review_complete",
            org_id=org_id,
            run_id=str(result.run_id),
            findings=len(findings),
            warn=result.warn_count,
            critical=result.critical_count,
        )
        return result
