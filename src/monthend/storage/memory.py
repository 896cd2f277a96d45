"""In-process repositories backed by dictionaries.

Every method completes without awaiting, so each check-then-write runs
atomically on the event loop.
"""

from dataclasses import replace
from datetime import date
from uuid import UUID

from monthend.accruals.models import (
    AccrualApproval,
    AccrualCandidate,
    AccrualRule,
    CandidateStatus,
    PostingRecord,
    PostingStatus,
    utc_now,
)
from monthend.errors import PostingConflictError
from monthend.storage.base import CandidateRepository, PostingLedger, RuleRepository


def _sort_for_review(candidates: list[AccrualCandidate]) -> list[AccrualCandidate]:
    return sorted(
        candidates,
        key=lambda c: (c.confidence_score, c.expected_amount),
        reverse=True,
    )


class InMemoryRuleRepository(RuleRepository):
    def __init__(self) -> None:
        self._rules: dict[str, AccrualRule] = {}

    async def get(self, org_id: str) -> AccrualRule | None:
        return self._rules.get(org_id)

    async def upsert(self, rule: AccrualRule) -> None:
        self._rules[rule.org_id] = rule


class InMemoryCandidateRepository(CandidateRepository):
    def __init__(self) -> None:
        self._candidates: dict[UUID, AccrualCandidate] = {}
        self._by_key: dict[tuple[str, date, date, str, str | None], UUID] = {}
        self._approvals: list[AccrualApproval] = []

    async def save_for_period(
        self,
        org_id: str,
        period_from: date,
        period_to: date,
        candidates: list[AccrualCandidate],
    ) -> list[AccrualCandidate]:
        stored: list[AccrualCandidate] = []
        for candidate in candidates:
            existing_id = self._by_key.get(candidate.unique_key)
            if existing_id is not None:
                existing = self._candidates[existing_id]
                updated = replace(
                    existing,
                    account_name=candidate.account_name,
                    expected_amount=candidate.expected_amount,
                    confidence_score=candidate.confidence_score,
                    explanation=candidate.explanation,
                    updated_at=utc_now(),
                )
            else:
                updated = candidate
                self._by_key[candidate.unique_key] = candidate.id
            self._candidates[updated.id] = updated
            stored.append(updated)

        keep = {c.id for c in stored}
        for candidate in list(self._candidates.values()):
            if (
                candidate.org_id == org_id
                and candidate.period_from_date == period_from
                and candidate.period_to_date == period_to
                and candidate.status == CandidateStatus.PENDING
                and candidate.id not in keep
            ):
                del self._candidates[candidate.id]
                del self._by_key[candidate.unique_key]
        return stored

    async def list_for_period(
        self, org_id: str, period_from: date, period_to: date
    ) -> list[AccrualCandidate]:
        return _sort_for_review([
            c for c in self._candidates.values()
            if c.org_id == org_id
            and c.period_from_date == period_from
            and c.period_to_date == period_to
        ])

    async def get(self, candidate_id: UUID, org_id: str) -> AccrualCandidate | None:
        candidate = self._candidates.get(candidate_id)
        if candidate is None or candidate.org_id != org_id:
            return None
        return candidate

    async def update_status(
        self, candidate_id: UUID, org_id: str, status: CandidateStatus
    ) -> AccrualCandidate | None:
        candidate = await self.get(candidate_id, org_id)
        if candidate is None:
            return None
        updated = candidate.with_status(status)
        self._candidates[candidate_id] = updated
        return updated

    async def add_approval(self, approval: AccrualApproval) -> None:
        self._approvals.append(approval)

    async def latest_approval(self, candidate_id: UUID) -> AccrualApproval | None:
        for approval in reversed(self._approvals):
            if approval.candidate_id == candidate_id:
                return approval
        return None

    async def history(self, org_id: str, limit: int = 50) -> list[AccrualCandidate]:
        rows = [c for c in self._candidates.values() if c.org_id == org_id]
        rows.sort(key=lambda c: c.created_at, reverse=True)
        return rows[:limit]


class InMemoryPostingLedger(PostingLedger):
    def __init__(self) -> None:
        self._records: dict[UUID, PostingRecord] = {}

    async def get(self, candidate_id: UUID) -> PostingRecord | None:
        return self._records.get(candidate_id)

    async def record(
        self,
        candidate_id: UUID,
        org_id: str,
        status: PostingStatus,
        journal_entry_id: str | None = None,
        error_message: str | None = None,
    ) -> PostingRecord:
        now = utc_now()
        existing = self._records.get(candidate_id)
        if existing is not None and existing.is_terminal:
            raise PostingConflictError(str(candidate_id), existing.journal_entry_id or "")

        posted_at = now if status == PostingStatus.SUCCESS else None
        if existing is not None:
            record = replace(
                existing,
                posting_status=status,
                journal_entry_id=journal_entry_id,
                error_message=error_message,
                posted_at=posted_at or existing.posted_at,
                updated_at=now,
            )
        else:
            record = PostingRecord(
                candidate_id=candidate_id,
                org_id=org_id,
                posting_status=status,
                journal_entry_id=journal_entry_id,
                error_message=error_message,
                posted_at=posted_at,
                created_at=now,
                updated_at=now,
            )
        self._records[candidate_id] = record
        return record
