"""Domain types for accrual detection and posting."""

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


def utc_now() -> datetime:
    return datetime.now(UTC)


class CandidateStatus(str, Enum):
    """Review status of an accrual candidate."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PostingStatus(str, Enum):
    """Outcome of a journal entry submission."""

    SUCCESS = "success"
    ERROR = "error"


# =============================================================================
# RULES
# =============================================================================


@dataclass(frozen=True)
class AccrualRule:
    """Per-organization detection parameters."""

    org_id: str
    lookback_months: int = 6
    min_amount: Decimal = Decimal("50")
    confidence_threshold: float = 0.7
    min_recurrence_count: int = 3
    excluded_accounts: tuple[str, ...] = ()
    excluded_vendors: tuple[str, ...] = ()
    include_accounts: tuple[str, ...] = ()
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.lookback_months < 1:
            raise ValueError("lookback_months must be >= 1")
        if not self.min_amount.is_finite():
            raise ValueError("min_amount must be a finite number")
        if self.min_amount < 0:
            raise ValueError("min_amount must be >= 0")
        if not 0 <= self.confidence_threshold <= 1:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if self.min_recurrence_count < 1:
            raise ValueError("min_recurrence_count must be >= 1")

    @classmethod
    def defaults(cls, org_id: str) -> "AccrualRule":
        return cls(org_id=org_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "org_id": self.org_id,
            "lookback_months": self.lookback_months,
            "min_amount": str(self.min_amount),
            "confidence_threshold": self.confidence_threshold,
            "min_recurrence_count": self.min_recurrence_count,
            "excluded_accounts": list(self.excluded_accounts),
            "excluded_vendors": list(self.excluded_vendors),
            "include_accounts": list(self.include_accounts),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# =============================================================================
# DETECTION
# =============================================================================


@dataclass
class ExpenseAggregate:
    """A recurring expense account summed across the historical window."""

    account_id: str
    account_name: str
    vendor_name: str | None
    total_amount: Decimal = Decimal("0")
    month_count: int = 0
    last_seen_date: date | None = None
    pattern: str = "monthly"

    @property
    def average_amount(self) -> Decimal:
        if self.month_count == 0:
            return Decimal("0")
        return self.total_amount / self.month_count

    def add(self, amount: Decimal, seen: date | None) -> None:
        self.total_amount += amount
        self.month_count += 1
        if seen and (self.last_seen_date is None or seen > self.last_seen_date):
            self.last_seen_date = seen


@dataclass(frozen=True)
class CandidateExplanation:
    reason: str
    historical_months: int
    average_amount: Decimal
    last_seen_date: date | None
    pattern: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "historical_months": self.historical_months,
            "average_amount": str(self.average_amount),
            "last_seen_date": self.last_seen_date.isoformat() if self.last_seen_date else None,
            "pattern": self.pattern,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CandidateExplanation":
        last_seen = data.get("last_seen_date")
        return cls(
            reason=str(data.get("reason", "")),
            historical_months=int(data.get("historical_months", 0)),
            average_amount=Decimal(str(data.get("average_amount", "0"))),
            last_seen_date=date.fromisoformat(last_seen) if last_seen else None,
            pattern=str(data.get("pattern", "monthly")),
        )


@dataclass(frozen=True)
class AccrualCandidate:
    """An expense expected this period but not yet recorded."""

    org_id: str
    period_from_date: date
    period_to_date: date
    account_id: str
    account_name: str
    vendor_name: str | None
    expected_amount: Decimal
    confidence_score: float
    explanation: CandidateExplanation
    status: CandidateStatus = CandidateStatus.PENDING
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def unique_key(self) -> tuple[str, date, date, str, str | None]:
        return (
            self.org_id,
            self.period_from_date,
            self.period_to_date,
            self.account_id,
            self.vendor_name,
        )

    def with_status(self, status: CandidateStatus) -> "AccrualCandidate":
        return replace(self, status=status, updated_at=utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "org_id": self.org_id,
            "period_from_date": self.period_from_date.isoformat(),
            "period_to_date": self.period_to_date.isoformat(),
            "vendor_name": self.vendor_name,
            "account_id": self.account_id,
            "account_name": self.account_name,
            "expected_amount": str(self.expected_amount),
            "confidence_score": self.confidence_score,
            "explanation": self.explanation.to_dict(),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class CandidateExample:
    """A pre-threshold survivor recorded for operator visibility."""

    account_id: str
    account_name: str
    vendor_name: str | None
    average_amount: Decimal
    confidence: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "vendor_name": self.vendor_name,
            "average_amount": str(self.average_amount),
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass
class DetectionDebug:
    """Counters and timings for one detection run."""

    history_window_from: date | None = None
    history_window_to: date | None = None
    rows_read_count: int = 0
    groups_found_count: int = 0
    historical_lines_count: int = 0
    current_lines_count: int = 0
    excluded_by_account_filter: int = 0
    excluded_by_vendor_filter: int = 0
    excluded_because_present_in_current_period: int = 0
    excluded_by_min_amount: int = 0
    excluded_by_missing_recurrence: int = 0
    excluded_by_confidence: int = 0
    top_candidate_examples_pre_threshold: list[CandidateExample] = field(default_factory=list)
    timings_ms: dict[str, float] = field(
        default_factory=lambda: {
            "fetch_historical": 0.0,
            "fetch_current": 0.0,
            "processing": 0.0,
            "total": 0.0,
        }
    )

    @property
    def excluded_total(self) -> int:
        return (
            self.excluded_by_account_filter
            + self.excluded_by_vendor_filter
            + self.excluded_because_present_in_current_period
            + self.excluded_by_min_amount
            + self.excluded_by_missing_recurrence
            + self.excluded_by_confidence
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "history_window_from": (
                self.history_window_from.isoformat() if self.history_window_from else None
            ),
            "history_window_to": (
                self.history_window_to.isoformat() if self.history_window_to else None
            ),
            "rows_read_count": self.rows_read_count,
            "groups_found_count": self.groups_found_count,
            "historical_lines_count": self.historical_lines_count,
            "current_lines_count": self.current_lines_count,
            "excluded_by_account_filter": self.excluded_by_account_filter,
            "excluded_by_vendor_filter": self.excluded_by_vendor_filter,
            "excluded_because_present_in_current_period": (
                self.excluded_because_present_in_current_period
            ),
            "excluded_by_min_amount": self.excluded_by_min_amount,
            "excluded_by_missing_recurrence": self.excluded_by_missing_recurrence,
            "excluded_by_confidence": self.excluded_by_confidence,
            "top_candidate_examples_pre_threshold": [
                example.to_dict() for example in self.top_candidate_examples_pre_threshold
            ],
            "timings_ms": dict(self.timings_ms),
        }


@dataclass
class DetectionResult:
    candidates: list[AccrualCandidate]
    debug: DetectionDebug

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "debug": self.debug.to_dict(),
        }


# =============================================================================
# APPROVAL AND POSTING
# =============================================================================


@dataclass(frozen=True)
class AccrualApproval:
    """A reviewer's decision on a candidate."""

    candidate_id: UUID
    org_id: str
    decision: CandidateStatus
    approved_by: str | None = None
    notes: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class PostingRecord:
    """Idempotency ledger entry for a candidate's journal entry."""

    candidate_id: UUID
    org_id: str
    posting_status: PostingStatus
    journal_entry_id: str | None = None
    error_message: str | None = None
    posted_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.posting_status == PostingStatus.SUCCESS and bool(self.journal_entry_id)


@dataclass(frozen=True)
class PostingOutcome:
    success: bool
    journal_entry_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.journal_entry_id:
            result["journal_entry_id"] = self.journal_entry_id
        if self.error:
            result["error"] = self.error
        return result
