"""Tests for recurring-expense accrual detection."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from monthend.accruals.detection import (
    AccrualDetector,
    extract_vendor_name,
    score_confidence,
)
from monthend.accruals.models import AccrualRule, CandidateStatus
from monthend.errors import DetectionError, InputError, QBOAPIError

ORG = "org-1"
PERIOD_FROM = date(2025, 9, 1)
PERIOD_TO = date(2025, 9, 30)


class StalledCurrentReports:
    """Report source whose history fetch fails while the current fetch is in flight."""

    def __init__(self):
        self.current_started = asyncio.Event()
        self.current_cancelled = False

    async def fetch_report(self, org_id, report_name, params):  # noqa: ARG002
        if params.get("summarize_column_by"):
            await self.current_started.wait()
            raise QBOAPIError("Report unavailable", status_code=503)
        self.current_started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.current_cancelled = True
            raise
        return {}


def _monthly(amount, months=6):
    return [amount] * months


@pytest.fixture
def detector(fake_qbo):
    return AccrualDetector(fake_qbo, noise_floor=10, present_tolerance=0.10, debug_example_limit=5)


@pytest.fixture
def rule():
    return AccrualRule.defaults(ORG)


def _counters(debug):
    return (
        debug.excluded_by_account_filter
        + debug.excluded_by_vendor_filter
        + debug.excluded_because_present_in_current_period
        + debug.excluded_by_min_amount
        + debug.excluded_by_missing_recurrence
        + debug.excluded_by_confidence
    )


class TestVendorExtraction:
    """Tests for vendor name extraction."""

    @pytest.mark.parametrize(
        ("label", "expected"),
        [
            ("Acme Services", "Acme"),
            ("Globex Inc", "Globex"),
            ("Initech llc", "Initech"),
            ("AWS - Hosting", "AWS"),
            ("Office Rent", None),
            ("", None),
        ],
    )
    def test_extract_vendor_name(self, label, expected):
        """Test vendor names taken from account labels."""
        assert extract_vendor_name(label) == expected


class TestConfidence:
    """Tests for confidence scoring."""

    def test_office_rent_scores_point_eight(self):
        """Test the score for six months of rent."""
        assert score_confidence(6, Decimal("2000"), None) == pytest.approx(0.8)

    def test_vendor_bonus(self):
        """Test the bonus for a known vendor."""
        assert score_confidence(6, Decimal("2000"), "Acme") == pytest.approx(0.9)

    def test_few_months_small_amount(self):
        """Test scores for short, small histories."""
        assert score_confidence(3, Decimal("100"), None) == pytest.approx(0.6)
        assert score_confidence(2, Decimal("100"), None) == pytest.approx(0.5)

    @pytest.mark.parametrize("months", [0, 1, 3, 6, 24])
    @pytest.mark.parametrize("amount", ["0", "999", "1000.01", "1000000"])
    @pytest.mark.parametrize("vendor", [None, "Acme"])
    def test_bounded(self, months, amount, vendor):
        """Test that scores stay within [0, 1]."""
        assert 0.0 <= score_confidence(months, Decimal(amount), vendor) <= 1.0


class TestScenarios:
    """Tests for end-to-end detection scenarios."""

    @pytest.mark.asyncio
    async def test_missing_office_rent_is_a_candidate(
        self, detector, rule, fake_qbo, pnl_builder, history_months
    ):
        """Six months of rent at $2,000 and none this period yields one candidate."""
        fake_qbo.historical = pnl_builder(
            [("Office Rent", "60", _monthly(-2000))], months=history_months
        )
        fake_qbo.current = pnl_builder([("Utilities", "61", -150)])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.account_id == "60"
        assert candidate.account_name == "Expenses / Office Rent"
        assert candidate.vendor_name is None
        assert candidate.expected_amount == Decimal("2000")
        assert candidate.confidence_score >= 0.7
        assert candidate.confidence_score == pytest.approx(0.8)
        assert candidate.status == CandidateStatus.PENDING
        assert candidate.period_from_date == PERIOD_FROM
        assert candidate.period_to_date == PERIOD_TO
        assert candidate.explanation.historical_months == 6
        assert candidate.explanation.last_seen_date == date(2025, 8, 31)
        assert candidate.explanation.reason == (
            "Recurring expense missing in current period. Average: $2,000.00 over 6 months."
        )

    @pytest.mark.asyncio
    async def test_present_this_period_is_excluded(
        self, detector, rule, fake_qbo, pnl_builder, history_months
    ):
        """Test that an expense already booked this period is skipped."""
        fake_qbo.historical = pnl_builder(
            [("Office Rent", "60", _monthly(-2000))], months=history_months
        )
        fake_qbo.current = pnl_builder([("Office Rent", "60", -1950)])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert result.candidates == []
        assert result.debug.excluded_because_present_in_current_period == 1

    @pytest.mark.asyncio
    async def test_small_average_is_excluded(
        self, detector, rule, fake_qbo, pnl_builder, history_months
    ):
        """Test that averages below the minimum are skipped."""
        fake_qbo.historical = pnl_builder(
            [("Bank Fees", "70", _monthly(-30))], months=history_months
        )
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert result.candidates == []
        assert result.debug.excluded_by_min_amount == 1


class TestWindowAndFetch:
    """Tests for the history window and report fetches."""

    @pytest.mark.asyncio
    async def test_requests_monthly_history_and_current_period(
        self, detector, rule, fake_qbo, pnl_builder
    ):
        """Test the report parameters for both fetches."""
        fake_qbo.historical = pnl_builder([])
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, "2025-09-01", "2025-09-30", rule)

        historical = next(c for c in fake_qbo.report_calls if c.get("summarize_column_by"))
        current = next(c for c in fake_qbo.report_calls if not c.get("summarize_column_by"))
        assert historical["start_date"] == "2025-03-01"
        assert historical["end_date"] == "2025-08-31"
        assert historical["summarize_column_by"] == "Month"
        assert current["start_date"] == "2025-09-01"
        assert current["end_date"] == "2025-09-30"
        assert result.debug.history_window_from == date(2025, 3, 1)
        assert result.debug.history_window_to == date(2025, 8, 31)

    @pytest.mark.asyncio
    async def test_fetch_failure_raises_detection_error(self, detector, rule, fake_qbo):
        """Test that a failed fetch raises DetectionError."""
        fake_qbo.report_error = QBOAPIError("Token expired", status_code=401)

        with pytest.raises(DetectionError, match="Token expired") as exc_info:
            await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert isinstance(exc_info.value.__cause__, QBOAPIError)

    @pytest.mark.asyncio
    async def test_fetch_failure_cancels_the_other_fetch(self, rule):
        """A failed history fetch does not leave the current-period fetch running."""
        reports = StalledCurrentReports()
        detector = AccrualDetector(reports)

        with pytest.raises(DetectionError, match="Report unavailable"):
            await asyncio.wait_for(detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule), timeout=5)

        assert reports.current_cancelled is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("org_id", "period_from", "period_to"),
        [
            ("", PERIOD_FROM, PERIOD_TO),
            (ORG, None, PERIOD_TO),
            (ORG, PERIOD_FROM, ""),
            (ORG, PERIOD_TO, PERIOD_FROM),
        ],
    )
    async def test_invalid_input_makes_no_calls(
        self, detector, rule, fake_qbo, org_id, period_from, period_to
    ):
        """Test that invalid input is rejected before any fetch."""
        with pytest.raises(InputError):
            await detector.detect(org_id, period_from, period_to, rule)

        assert fake_qbo.report_calls == []

    @pytest.mark.asyncio
    async def test_timings_recorded(self, detector, rule, fake_qbo, pnl_builder):
        """Test that the debug trace records timings."""
        fake_qbo.historical = pnl_builder([])
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert set(result.debug.timings_ms) == {
            "fetch_historical",
            "fetch_current",
            "processing",
            "total",
        }
        assert all(value >= 0 for value in result.debug.timings_ms.values())


class TestFilters:
    """Tests for candidate filters and counters."""

    @pytest.mark.asyncio
    async def test_counters_account_for_every_aggregate(
        self, detector, fake_qbo, pnl_builder, history_months
    ):
        """Test that every aggregate is counted once."""
        rule = AccrualRule(
            org_id=ORG,
            excluded_accounts=("62",),
            excluded_vendors=("Acme",),
            confidence_threshold=0.85,
        )
        fake_qbo.historical = pnl_builder(
            [
                ("Office Rent", "60", _monthly(-2000)),
                ("Acme Services", "61", _monthly(-500)),
                ("Storage", "62", _monthly(-400)),
                ("Payroll", "63", _monthly(-9000)),
                ("Bank Fees", "64", _monthly(-30)),
                ("Consulting", "65", [-800, -800, None, None, None, None]),
                ("Globex Inc", "66", _monthly(-1500)),
                ("Refunds", "67", _monthly(250)),
                ("Postage", "68", _monthly(-5)),
            ],
            months=history_months,
        )
        fake_qbo.current = pnl_builder([("Payroll", "63", -9100)])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)
        debug = result.debug

        assert debug.rows_read_count == 7
        assert debug.excluded_by_account_filter == 1
        assert debug.excluded_by_vendor_filter == 1
        assert debug.excluded_because_present_in_current_period == 1
        assert debug.excluded_by_min_amount == 1
        assert debug.excluded_by_missing_recurrence == 1
        assert debug.excluded_by_confidence == 1
        assert [c.account_id for c in result.candidates] == ["66"]
        assert _counters(debug) + len(result.candidates) == debug.rows_read_count

    @pytest.mark.asyncio
    async def test_account_filter_takes_precedence(
        self, detector, fake_qbo, pnl_builder, history_months
    ):
        """An excluded account that would also fail min amount counts once, as account."""
        rule = AccrualRule(org_id=ORG, excluded_accounts=("70",))
        fake_qbo.historical = pnl_builder(
            [("Bank Fees", "70", _monthly(-30))], months=history_months
        )
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert result.debug.excluded_by_account_filter == 1
        assert result.debug.excluded_by_min_amount == 0

    @pytest.mark.asyncio
    async def test_include_accounts_limits_scope(
        self, detector, fake_qbo, pnl_builder, history_months
    ):
        """Test that include_accounts limits detection."""
        rule = AccrualRule(org_id=ORG, include_accounts=("61",))
        fake_qbo.historical = pnl_builder(
            [
                ("Office Rent", "60", _monthly(-2000)),
                ("Software", "61", _monthly(-1200)),
            ],
            months=history_months,
        )
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert [c.account_id for c in result.candidates] == ["61"]
        assert result.debug.excluded_by_account_filter == 1

    @pytest.mark.asyncio
    async def test_candidates_keep_history_order(
        self, detector, rule, fake_qbo, pnl_builder, history_months
    ):
        """Test that candidates follow history order."""
        fake_qbo.historical = pnl_builder(
            [
                ("Software", "61", _monthly(-1200)),
                ("Office Rent", "60", _monthly(-2000)),
                ("Insurance", "59", _monthly(-1100)),
            ],
            months=history_months,
        )
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert [c.account_id for c in result.candidates] == ["61", "60", "59"]

    @pytest.mark.asyncio
    async def test_debug_examples_include_below_threshold(
        self, fake_qbo, pnl_builder, history_months
    ):
        """Test that debug examples include below-threshold candidates."""
        detector = AccrualDetector(fake_qbo, debug_example_limit=2)
        rule = AccrualRule(org_id=ORG, confidence_threshold=1.0)
        fake_qbo.historical = pnl_builder(
            [
                ("Software", "61", _monthly(-1200)),
                ("Office Rent", "60", _monthly(-2000)),
                ("Insurance", "59", _monthly(-1100)),
            ],
            months=history_months,
        )
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule, debug=True)

        assert result.candidates == []
        assert result.debug.excluded_by_confidence == 3
        examples = result.debug.top_candidate_examples_pre_threshold
        assert [e.account_id for e in examples] == ["61", "60"]
        assert examples[0].confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_no_examples_without_debug(
        self, detector, rule, fake_qbo, pnl_builder, history_months
    ):
        """Test that examples are omitted without debug."""
        fake_qbo.historical = pnl_builder(
            [("Office Rent", "60", _monthly(-2000))], months=history_months
        )
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert result.debug.top_candidate_examples_pre_threshold == []
        assert result.debug.rows_read_count == 1

    @pytest.mark.asyncio
    async def test_unsummarized_history_counts_one_occurrence(
        self, detector, fake_qbo, pnl_builder
    ):
        """Without month columns each account is seen once in the window."""
        rule = AccrualRule(org_id=ORG, min_recurrence_count=1, confidence_threshold=0.5)
        fake_qbo.historical = pnl_builder([("Office Rent", "60", -12000)])
        fake_qbo.current = pnl_builder([])

        result = await detector.detect(ORG, PERIOD_FROM, PERIOD_TO, rule)

        assert len(result.candidates) == 1
        assert result.candidates[0].explanation.historical_months == 1
        assert result.candidates[0].expected_amount == Decimal("12000")
