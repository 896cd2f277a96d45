"""Recurring-expense accrual detection.

Compares a historical window of P&L activity with the current period and
flags expense accounts that appeared month after month but are missing now.
The historical report is requested summarized by month, so each month
column contributes at most one occurrence per account.
"""

import asyncio
import re
import time
from collections.abc import Awaitable
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

import structlog

from monthend.accruals.models import (
    AccrualCandidate,
    AccrualRule,
    CandidateExample,
    CandidateExplanation,
    DetectionDebug,
    DetectionResult,
    ExpenseAggregate,
)
from monthend.clients.qbo import QBOClient
from monthend.config import get_settings
from monthend.errors import DetectionError, InputError
from monthend.findings import format_money
from monthend.periods import months_ago, parse_date, prior_day
from monthend.reports import ReportLine, flatten_report, normalize_report, period_columns

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PROFIT_AND_LOSS = "ProfitAndLoss"

_VENDOR_PATTERNS = (
    re.compile(r"^(.+?)\s+(Services|Inc|LLC|Corp|Ltd|Company)", re.IGNORECASE),
    re.compile(r"^(.+?)\s+-\s+"),
)


def extract_vendor_name(account_name: str) -> str | None:
    """Guess a vendor from an account label.

    This is a heuristic, not authoritative data: "Acme Services" and
    "Acme - Hosting" both yield "Acme"; anything else yields None.
    """
    for pattern in _VENDOR_PATTERNS:
        match = pattern.match(account_name)
        if match:
            vendor = match.group(1).strip()
            if vendor:
                return vendor
    return None


def score_confidence(month_count: int, average_amount: Decimal, vendor_name: str | None) -> float:
    """Bounded heuristic score in [0, 1]."""
    score = 0.5
    if month_count >= 6:
        score += 0.2
    elif month_count >= 3:
        score += 0.1
    if average_amount > 1000:
        score += 0.1
    if vendor_name:
        score += 0.1
    return round(min(max(score, 0.0), 1.0), 4)


class AccrualDetector:
    """Finds recurring expenses missing from the current period."""

    def __init__(
        self,
        reports: QBOClient,
        noise_floor: Decimal | float | None = None,
        present_tolerance: float | None = None,
        debug_example_limit: int | None = None,
    ):
        settings = get_settings()
        self._reports = reports
        self._noise_floor = Decimal(
            str(noise_floor if noise_floor is not None else settings.accrual_noise_floor)
        )
        self._present_tolerance = Decimal(
            str(
                present_tolerance
                if present_tolerance is not None
                else settings.accrual_present_tolerance
            )
        )
        self._debug_example_limit = (
            debug_example_limit
            if debug_example_limit is not None
            else settings.accrual_debug_example_limit
        )
        self._logger = logger.bind(component="accrual_detector")

    async def detect(
        self,
        org_id: str,
        period_from: date | str,
        period_to: date | str,
        rule: AccrualRule,
        debug: bool = False,
    ) -> DetectionResult:
        """Detect accrual candidates for a period.

        Raises:
            InputError: Missing org or period bounds, or an inverted period.
            DetectionError: A report fetch failed; no partial result is returned.
        """
        if not org_id:
            raise InputError("org_id is required")
        start = parse_date(period_from, "period_from")
        end = parse_date(period_to, "period_to")
        if start > end:
            raise InputError("period_from must not be after period_to")

        started = time.perf_counter()
        trace = DetectionDebug(
            history_window_from=months_ago(start, rule.lookback_months),
            history_window_to=prior_day(start),
        )
        self._logger.info(
            "accrual_detection_started",
            org_id=org_id,
            period_from=start.isoformat(),
            period_to=end.isoformat(),
            history_from=trace.history_window_from.isoformat(),
            history_to=trace.history_window_to.isoformat(),
            lookback_months=rule.lookback_months,
            min_amount=str(rule.min_amount),
            confidence_threshold=rule.confidence_threshold,
            min_recurrence=rule.min_recurrence_count,
        )

        history_params = {
            "start_date": trace.history_window_from.isoformat(),
            "end_date": trace.history_window_to.isoformat(),
            "summarize_column_by": "Month",
        }
        current_params = {"start_date": start.isoformat(), "end_date": end.isoformat()}
        try:
            async with asyncio.TaskGroup() as tasks:
                historical_task = tasks.create_task(
                    self._timed(
                        trace,
                        "fetch_historical",
                        self._reports.fetch_report(org_id, PROFIT_AND_LOSS, history_params),
                    )
                )
                current_task = tasks.create_task(
                    self._timed(
                        trace,
                        "fetch_current",
                        self._reports.fetch_report(org_id, PROFIT_AND_LOSS, current_params),
                    )
                )
        except ExceptionGroup as group:
            # The sibling fetch is cancelled; report the first failure.
            error = group.exceptions[0]
            self._logger.error("accrual_detection_failed", org_id=org_id, error=str(error))
            raise DetectionError(f"Failed to detect accrual candidates: {error}") from error
        historical_raw = historical_task.result()
        current_raw = current_task.result()

        processing_started = time.perf_counter()
        aggregates = self._aggregate_history(historical_raw, trace)
        current_amounts = self._current_amounts(current_raw, trace)
        trace.rows_read_count = len(aggregates)
        trace.groups_found_count = len(aggregates)

        candidates = self._evaluate(
            org_id, start, end, rule, aggregates, current_amounts, trace, debug
        )

        trace.timings_ms["processing"] = _elapsed_ms(processing_started)
        trace.timings_ms["total"] = _elapsed_ms(started)
        self._logger.info(
            "accrual_detection_complete",
            org_id=org_id,
            candidates=len(candidates),
            groups=trace.groups_found_count,
            excluded=trace.excluded_total,
        )
        if debug:
            self._logger.debug("accrual_detection_debug", org_id=org_id, **trace.to_dict())

        return DetectionResult(candidates=candidates, debug=trace)

    # === Aggregation ===

    def _expense_amount(self, line: ReportLine) -> Decimal | None:
        """Magnitude of an expense line, or None if the line is not one."""
        if line.source != "data" or not line.account_id:
            return None
        if line.value < 0 and abs(line.value) > self._noise_floor:
            return abs(line.value)
        return None

    def _aggregate_history(
        self, raw: dict[str, Any], trace: DetectionDebug
    ) -> dict[str, ExpenseAggregate]:
        report = normalize_report(raw)
        passes: list[tuple[int | None, date | None]] = []
        for index, column in period_columns(report):
            passes.append((index, _column_date(column.end_date)))
        if len(passes) <= 1:
            passes = [(None, passes[0][1] if passes else None)]

        aggregates: dict[str, ExpenseAggregate] = {}
        for column_index, seen in passes:
            for line in flatten_report(report, column=column_index):
                amount = self._expense_amount(line)
                if amount is None or line.account_id is None:
                    continue
                trace.historical_lines_count += 1
                aggregate = aggregates.get(line.account_id)
                if aggregate is None:
                    aggregate = ExpenseAggregate(
                        account_id=line.account_id,
                        account_name=" / ".join((*line.path, line.name)),
                        vendor_name=extract_vendor_name(line.name),
                    )
                    aggregates[line.account_id] = aggregate
                aggregate.add(amount, seen)
        return aggregates

    def _current_amounts(self, raw: dict[str, Any], trace: DetectionDebug) -> dict[str, Decimal]:
        amounts: dict[str, Decimal] = {}
        for line in flatten_report(raw):
            amount = self._expense_amount(line)
            if amount is None or line.account_id is None:
                continue
            trace.current_lines_count += 1
            amounts[line.account_id] = amounts.get(line.account_id, Decimal("0")) + amount
        return amounts

    # === Filtering and scoring ===

    def _evaluate(
        self,
        org_id: str,
        start: date,
        end: date,
        rule: AccrualRule,
        aggregates: dict[str, ExpenseAggregate],
        current_amounts: dict[str, Decimal],
        trace: DetectionDebug,
        debug: bool,
    ) -> list[AccrualCandidate]:
        include_accounts = set(rule.include_accounts)
        excluded_accounts = set(rule.excluded_accounts)
        excluded_vendors = set(rule.excluded_vendors)

        candidates: list[AccrualCandidate] = []
        for aggregate in aggregates.values():
            if include_accounts and aggregate.account_id not in include_accounts:
                trace.excluded_by_account_filter += 1
                continue
            if aggregate.account_id in excluded_accounts:
                trace.excluded_by_account_filter += 1
                continue
            if aggregate.vendor_name and aggregate.vendor_name in excluded_vendors:
                trace.excluded_by_vendor_filter += 1
                continue

            average = aggregate.average_amount
            current = current_amounts.get(aggregate.account_id, Decimal("0"))
            if abs(current - average) / max(abs(average), Decimal("1")) < self._present_tolerance:
                trace.excluded_because_present_in_current_period += 1
                continue
            if abs(average) < rule.min_amount:
                trace.excluded_by_min_amount += 1
                continue
            if aggregate.month_count < rule.min_recurrence_count:
                trace.excluded_by_missing_recurrence += 1
                continue

            confidence = score_confidence(aggregate.month_count, average, aggregate.vendor_name)
            reason = (
                "Recurring expense missing in current period. "
                f"Average: {format_money(average)} over {aggregate.month_count} months."
            )

            examples = trace.top_candidate_examples_pre_threshold
            if debug and len(examples) < self._debug_example_limit:
                examples.append(
                    CandidateExample(
                        account_id=aggregate.account_id,
                        account_name=aggregate.account_name,
                        vendor_name=aggregate.vendor_name,
                        average_amount=average,
                        confidence=confidence,
                        reason=reason,
                    )
                )

            if confidence < rule.confidence_threshold:
                trace.excluded_by_confidence += 1
                continue

            candidates.append(
                AccrualCandidate(
                    org_id=org_id,
                    period_from_date=start,
                    period_to_date=end,
                    account_id=aggregate.account_id,
                    account_name=aggregate.account_name,
                    vendor_name=aggregate.vendor_name,
                    expected_amount=abs(average),
                    confidence_score=confidence,
                    explanation=CandidateExplanation(
                        reason=reason,
                        historical_months=aggregate.month_count,
                        average_amount=average,
                        last_seen_date=aggregate.last_seen_date,
                        pattern=aggregate.pattern,
                    ),
                )
            )
        return candidates

    @staticmethod
    async def _timed(trace: DetectionDebug, key: str, awaitable: Awaitable[T]) -> T:
        started = time.perf_counter()
        try:
            return await awaitable
        finally:
            trace.timings_ms[key] = _elapsed_ms(started)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _column_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None
