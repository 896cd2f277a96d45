"""Repository interfaces for rules, candidates and the posting ledger.

Each repository is scoped by organization id and enforces its uniqueness
constraints itself, so callers never need in-process locking. Implementations
must not block the event loop; blocking drivers run on a worker thread.
"""

from abc import ABC, abstractmethod
from datetime import date
from uuid import UUID

from monthend.accruals.models import (
    AccrualApproval,
    AccrualCandidate,
    AccrualRule,
    CandidateStatus,
    PostingRecord,
    PostingStatus,
)


class RuleRepository(ABC):
    """One accrual rule row per organization."""

    @abstractmethod
    async def get(self, org_id: str) -> AccrualRule | None:
        """Return the stored rule, or None if the org has never saved one."""

    @abstractmethod
    async def upsert(self, rule: AccrualRule) -> None:
        """Insert or fully replace the rule keyed by ``rule.org_id``."""


class CandidateRepository(ABC):
    """Accrual candidates and their approval trail."""

    @abstractmethod
    async def save_for_period(
        self,
        org_id: str,
        period_from: date,
        period_to: date,
        candidates: list[AccrualCandidate],
    ) -> list[AccrualCandidate]:
        """Upsert candidates for a period on their uniqueness tuple.

        Existing rows keep their id and status. Pending rows for the period
        that are not in ``candidates`` are removed; decided rows are kept.
        Returns the stored candidates in the order given.
        """

    @abstractmethod
    async def list_for_period(
        self, org_id: str, period_from: date, period_to: date
    ) -> list[AccrualCandidate]:
        """Candidates for a period, highest confidence and amount first."""

    @abstractmethod
    async def get(self, candidate_id: UUID, org_id: str) -> AccrualCandidate | None:
        """Look up a candidate by primary key within an org."""

    @abstractmethod
    async def update_status(
        self, candidate_id: UUID, org_id: str, status: CandidateStatus
    ) -> AccrualCandidate | None:
        """Set a candidate's status and return the updated row."""

    @abstractmethod
    async def add_approval(self, approval: AccrualApproval) -> None:
        """Append a decision record."""

    @abstractmethod
    async def latest_approval(self, candidate_id: UUID) -> AccrualApproval | None:
        """Most recent decision for a candidate."""

    @abstractmethod
    async def history(self, org_id: str, limit: int = 50) -> list[AccrualCandidate]:
        """Candidates for an org, newest first."""


class PostingLedger(ABC):
    """Idempotency ledger: at most one posting record per candidate."""

    @abstractmethod
    async def get(self, candidate_id: UUID) -> PostingRecord | None:
        """Return the posting record for a candidate, if any."""

    @abstractmethod
    async def record(
        self,
        candidate_id: UUID,
        org_id: str,
        status: PostingStatus,
        journal_entry_id: str | None = None,
        error_message: str | None = None,
    ) -> PostingRecord:
        """Insert or update the candidate's record.

        Raises:
            PostingConflictError: The candidate already has a successful
                record with a journal entry id.
        """
