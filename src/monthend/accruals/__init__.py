"""Accrual detection, review and posting."""

from monthend.accruals.models import (
    AccrualApproval,
    AccrualCandidate,
    AccrualRule,
    CandidateExample,
    CandidateExplanation,
    CandidateStatus,
    DetectionDebug,
    DetectionResult,
    ExpenseAggregate,
    PostingOutcome,
    PostingRecord,
    PostingStatus,
)
from monthend.accruals.detection import AccrualDetector, extract_vendor_name, score_confidence
from monthend.accruals.posting import (
    NO_LIABILITY_ACCOUNT,
    JournalEntry,
    JournalLine,
    PostingGateway,
    build_accrual_entry,
)
from monthend.accruals.rules import AccrualRuleStore, default_rule_fields
from monthend.accruals.service import (
    AccrualService,
    BatchItemOutcome,
    CandidateHistoryEntry,
    DecisionOutcome,
)

__all__ = [
    # Models
    "AccrualApproval",
    "AccrualCandidate",
    "AccrualRule",
    "CandidateExample",
    "CandidateExplanation",
    "CandidateStatus",
    "DetectionDebug",
    "DetectionResult",
    "ExpenseAggregate",
    "PostingOutcome",
    "PostingRecord",
    "PostingStatus",
    # Detection
    "AccrualDetector",
    "extract_vendor_name",
    "score_confidence",
    # Posting
    "NO_LIABILITY_ACCOUNT",
    "JournalEntry",
    "JournalLine",
    "PostingGateway",
    "build_accrual_entry",
    # Rules
    "AccrualRuleStore",
    "default_rule_fields",
    # Workflow
    "AccrualService",
    "BatchItemOutcome",
    "CandidateHistoryEntry",
    "DecisionOutcome",
]
