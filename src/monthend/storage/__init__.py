"""Persistence for accrual rules, candidates and the posting ledger."""

from monthend.storage.base import CandidateRepository, PostingLedger, RuleRepository
from monthend.storage.memory import (
    InMemoryCandidateRepository,
    InMemoryPostingLedger,
    InMemoryRuleRepository,
)
from monthend.storage.sqlite import (
    SQLiteCandidateRepository,
    SQLiteDatabase,
    SQLitePostingLedger,
    SQLiteRuleRepository,
)

__all__ = [
    # Interfaces
    "RuleRepository",
    "CandidateRepository",
    "PostingLedger",
    # In-memory
    "InMemoryRuleRepository",
    "InMemoryCandidateRepository",
    "InMemoryPostingLedger",
    # SQLite
    "SQLiteDatabase",
    "SQLiteRuleRepository",
    "SQLiteCandidateRepository",
    "SQLitePostingLedger",
]
