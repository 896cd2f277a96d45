"""Accrual workflow: detect, store, review and post candidates."""

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

import structlog

from monthend.accruals.detection import AccrualDetector
from monthend.accruals.models import (
    AccrualApproval,
    AccrualCandidate,
    CandidateStatus,
    DetectionResult,
    PostingOutcome,
    PostingRecord,
)
from monthend.accruals.posting import PostingGateway
from monthend.accruals.rules import AccrualRuleStore
from monthend.errors import InputError
from monthend.periods import parse_date
from monthend.storage.base import CandidateRepository, PostingLedger

logger = structlog.get_logger(__name__)


@dataclass
class DecisionOutcome:
    """Result of approving or rejecting one candidate."""

    candidate: AccrualCandidate
    posting: PostingOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"candidate": self.candidate.to_dict()}
        if self.posting is not None:
            result["posting"] = self.posting.to_dict()
        return result


@dataclass
class BatchItemOutcome:
    candidate_id: UUID
    success: bool
    journal_entry_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate_id": str(self.candidate_id),
            "success": self.success,
            "journal_entry_id": self.journal_entry_id,
            "error": self.error,
        }


@dataclass
class CandidateHistoryEntry:
    candidate: AccrualCandidate
    approval: AccrualApproval | None
    posting: PostingRecord | None

    def to_dict(self) -> dict[str, Any]:
        result = self.candidate.to_dict()
        result["approval"] = (
            {
                "decision": self.approval.decision.value,
                "approved_by": self.approval.approved_by,
                "notes": self.approval.notes,
                "created_at": self.approval.created_at.isoformat(),
            }
            if self.approval
            else None
        )
        result["posting"] = (
            {
                "posting_status": self.posting.posting_status.value,
                "journal_entry_id": self.posting.journal_entry_id,
                "error_message": self.posting.error_message,
                "posted_at": self.posting.posted_at.isoformat() if self.posting.posted_at else None,
            }
            if self.posting
            else None
        )
        return result


class AccrualService:
    """Coordinates the rule store, detector, candidate repository and gateway."""

    def __init__(
        self,
        rules: AccrualRuleStore,
        candidates: CandidateRepository,
        ledger: PostingLedger,
        detector: AccrualDetector,
        gateway: PostingGateway,
    ):
        self._rules = rules
        self._candidates = candidates
        self._ledger = ledger
        self._detector = detector
        self._gateway = gateway
        self._logger = logger.bind(component="accrual_service")

    async def run_detection(
        self,
        org_id: str,
        period_from: date | str,
        period_to: date | str,
        debug: bool = False,
    ) -> DetectionResult:
        """Detect candidates for the period and persist them.

        The returned result carries the stored candidates, so re-running a
        period keeps ids and review status of rows seen before.
        """
        start = parse_date(period_from, "period_from")
        end = parse_date(period_to, "period_to")
        rule = await self._rules.get(org_id)
        result = await self._detector.detect(org_id, start, end, rule, debug=debug)
        stored = await self._candidates.save_for_period(org_id, start, end, result.candidates)
        self._logger.info(
            "accrual_candidates_saved",
            org_id=org_id,
            period_from=start.isoformat(),
            period_to=end.isoformat(),
            count=len(stored),
        )
        return DetectionResult(candidates=stored, debug=result.debug)

    async def list_candidates(
        self, org_id: str, period_from: date | str, period_to: date | str
    ) -> list[AccrualCandidate]:
        return await self._candidates.list_for_period(
            org_id,
            parse_date(period_from, "period_from"),
            parse_date(period_to, "period_to"),
        )

    async def decide(
        self,
        org_id: str,
        candidate_id: UUID,
        decision: CandidateStatus | str,
        approved_by: str | None = None,
        notes: str | None = None,
    ) -> DecisionOutcome:
        """Approve or reject a candidate; approval posts it.

        Only pending candidates change status. Approving an already approved
        candidate skips the status change and re-invokes the gateway, which
        returns the existing journal entry if one was posted.

        Raises:
            InputError: Unknown candidate, invalid decision, or a transition
                away from a decided status.
        """
        try:
            decision = CandidateStatus(decision)
        except ValueError as e:
            raise InputError(f"Invalid decision: {decision}") from e
        if decision == CandidateStatus.PENDING:
            raise InputError("Decision must be approved or rejected")

        candidate = await self._candidates.get(candidate_id, org_id)
        if candidate is None:
            raise InputError(f"Accrual candidate {candidate_id} not found")

        if candidate.status == CandidateStatus.PENDING:
            updated = await self._candidates.update_status(candidate_id, org_id, decision)
            if updated is None:
                raise InputError(f"Accrual candidate {candidate_id} not found")
            candidate = updated
            await self._candidates.add_approval(
                AccrualApproval(
                    candidate_id=candidate_id,
                    org_id=org_id,
                    decision=decision,
                    approved_by=approved_by,
                    notes=notes,
                )
            )
            self._logger.info(
                "accrual_candidate_decided",
                org_id=org_id,
                candidate_id=str(candidate_id),
                decision=decision.value,
                approved_by=approved_by,
            )
        elif not (
            candidate.status == CandidateStatus.APPROVED and decision == CandidateStatus.APPROVED
        ):
            raise InputError(f"Accrual candidate is already {candidate.status.value}")

        if decision != CandidateStatus.APPROVED:
            return DecisionOutcome(candidate=candidate)

        posting = await self._gateway.post(org_id, candidate)
        return DecisionOutcome(candidate=candidate, posting=posting)

    async def approve_many(
        self,
        org_id: str,
        candidate_ids: list[UUID],
        approved_by: str | None = None,
        notes: str | None = None,
    ) -> list[BatchItemOutcome]:
        """Approve candidates one by one; a failure does not stop the batch."""
        outcomes: list[BatchItemOutcome] = []
        for candidate_id in candidate_ids:
            try:
                decided = await self.decide(
                    org_id, candidate_id, CandidateStatus.APPROVED, approved_by, notes
                )
            except InputError as e:
                outcomes.append(
                    BatchItemOutcome(candidate_id=candidate_id, success=False, error=str(e))
                )
                continue

            posting = decided.posting
            outcomes.append(
                BatchItemOutcome(
                    candidate_id=candidate_id,
                    success=bool(posting and posting.success),
                    journal_entry_id=posting.journal_entry_id if posting else None,
                    error=posting.error if posting else None,
                )
            )

        self._logger.info(
            "accrual_batch_approved",
            org_id=org_id,
            requested=len(candidate_ids),
            posted=sum(1 for o in outcomes if o.success),
        )
        return outcomes

    async def history(self, org_id: str, limit: int = 50) -> list[CandidateHistoryEntry]:
        """Candidates newest first with their latest decision and posting."""
        entries: list[CandidateHistoryEntry] = []
        for candidate in await self._candidates.history(org_id, limit=limit):
            entries.append(
                CandidateHistoryEntry(
                    candidate=candidate,
                    approval=await self._candidates.latest_approval(candidate.id),
                    posting=await self._ledger.get(candidate.id),
                )
            )
        return entries
