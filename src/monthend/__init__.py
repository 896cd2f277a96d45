"""Month-end close review for QuickBooks Online organizations."""

__version__ = "0.1.0"

from monthend.accruals import (
    AccrualCandidate,
    AccrualDetector,
    AccrualRule,
    AccrualRuleStore,
    AccrualService,
    CandidateStatus,
    DetectionResult,
    PostingGateway,
    PostingOutcome,
)
from monthend.clients import (
    CredentialProvider,
    OAuthCredentialProvider,
    QBOClient,
    StaticCredentialProvider,
)
from monthend.config import configure_logging, get_settings
from monthend.findings import Finding, Severity, build_findings
from monthend.reports import ReportLine, find_net_income, flatten_report, normalize_report
from monthend.review import MonthEndReview, ReviewResult

__all__ = [
    # Version
    "__version__",
    # Accruals
    "AccrualCandidate",
    "AccrualDetector",
    "AccrualRule",
    "AccrualRuleStore",
    "AccrualService",
    "CandidateStatus",
    "DetectionResult",
    "PostingGateway",
    "PostingOutcome",
    # Clients
    "CredentialProvider",
    "OAuthCredentialProvider",
    "QBOClient",
    "StaticCredentialProvider",
    # Reports
    "ReportLine",
    "find_net_income",
    "flatten_report",
    "normalize_report",
    # Review
    "Finding",
    "Severity",
    "build_findings",
    "MonthEndReview",
    "ReviewResult",
    # Config
    "get_settings",
    "configure_logging",
]
