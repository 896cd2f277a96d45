"""Exception hierarchy for the month-end review service."""

from typing import Any


class MonthEndError(Exception):
    """Base exception for month-end review errors."""

    pass


class InputError(MonthEndError, ValueError):
    """Required parameters are missing or invalid."""

    pass


class DetectionError(MonthEndError):
    """Accrual detection aborted because an upstream call failed."""

    pass


class QBOAPIError(MonthEndError):
    """QuickBooks Online API returned an error or an unusable response."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class AuthenticationError(QBOAPIError):
    """Token refresh was rejected or client credentials are missing."""

    pass


class NoConnectionError(MonthEndError):
    """The organization has no QuickBooks connection."""

    pass


class PostingConflictError(MonthEndError):
    """Attempt to overwrite a successful posting record."""

    def __init__(self, candidate_id: str, journal_entry_id: str):
        super().__init__(
            f"Candidate {candidate_id} already posted as journal entry {journal_entry_id}"
        )
        self.candidate_id = candidate_id
        self.journal_entry_id = journal_entry_id


class PostingError(MonthEndError):
    """A journal entry could not be built or submitted."""

    pass
