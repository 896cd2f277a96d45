"""SQLite-backed repositories.

Uniqueness is enforced by the schema: rules are keyed by org, candidates by
their (org, period, account, vendor) tuple, postings by candidate. The
posting upsert refuses to touch a successful row inside the same statement,
so concurrent writers cannot overwrite a recorded journal entry.
"""

import asyncio
import json
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

import structlog

from monthend.accruals.models import (
    AccrualApproval,
    AccrualCandidate,
    AccrualRule,
    CandidateExplanation,
    CandidateStatus,
    PostingRecord,
    PostingStatus,
    utc_now,
)
from monthend.errors import PostingConflictError
from monthend.storage.base import CandidateRepository, PostingLedger, RuleRepository

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS accrual_rules (
    org_id TEXT PRIMARY KEY,
    lookback_months INTEGER NOT NULL DEFAULT 6,
    min_amount TEXT NOT NULL DEFAULT '50',
    confidence_threshold REAL NOT NULL DEFAULT 0.7,
    min_recurrence_count INTEGER NOT NULL DEFAULT 3,
    excluded_accounts TEXT NOT NULL DEFAULT '[]',
    excluded_vendors TEXT NOT NULL DEFAULT '[]',
    include_accounts TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS accrual_candidates (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    period_from_date TEXT NOT NULL,
    period_to_date TEXT NOT NULL,
    vendor_name TEXT,
    vendor_key TEXT NOT NULL DEFAULT '',
    account_id TEXT NOT NULL,
    account_name TEXT NOT NULL,
    expected_amount TEXT NOT NULL,
    confidence_score REAL NOT NULL,
    explanation_json TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK(status IN ('pending','approved','rejected')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(org_id, period_from_date, period_to_date, account_id, vendor_key)
);

CREATE TABLE IF NOT EXISTS accrual_approvals (
    id TEXT PRIMARY KEY,
    candidate_id TEXT NOT NULL REFERENCES accrual_candidates(id) ON DELETE CASCADE,
    org_id TEXT NOT NULL,
    approved_by TEXT,
    decision TEXT NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS qbo_postings (
    candidate_id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    journal_entry_id TEXT,
    posting_status TEXT NOT NULL CHECK(posting_status IN ('success','error')),
    error_message TEXT,
    posted_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_accrual_candidates_org_period
    ON accrual_candidates(org_id, period_from_date, period_to_date);
CREATE INDEX IF NOT EXISTS idx_accrual_approvals_candidate
    ON accrual_approvals(candidate_id);
"""


class SQLiteDatabase:
    """Connection factory and schema owner for a single database file.

    ``sqlite3`` is blocking, so repositories hand their statements to ``run``,
    which executes them on a worker thread with a connection of its own.
    """

    def __init__(self, path: str):
        self.path = path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _run_sync(self, work: Callable[[sqlite3.Connection], T]) -> T:
        with self.connect() as db:
            return work(db)

    async def run(self, work: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``work`` in one transaction without blocking the event loop."""
        return await asyncio.to_thread(self._run_sync, work)

    def init_schema(self) -> None:
        with self.connect() as db:
            db.executescript(SCHEMA)
        logger.debug("sqlite_schema_ready", path=self.path)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteRuleRepository(RuleRepository):
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    async def get(self, org_id: str) -> AccrualRule | None:
        row = await self._db.run(
            lambda db: db.execute(
                "SELECT * FROM accrual_rules WHERE org_id = ?", (org_id,)
            ).fetchone()
        )
        if row is None:
            return None
        return AccrualRule(
            org_id=row["org_id"],
            lookback_months=row["lookback_months"],
            min_amount=Decimal(row["min_amount"]),
            confidence_threshold=row["confidence_threshold"],
            min_recurrence_count=row["min_recurrence_count"],
            excluded_accounts=tuple(json.loads(row["excluded_accounts"] or "[]")),
            excluded_vendors=tuple(json.loads(row["excluded_vendors"] or "[]")),
            include_accounts=tuple(json.loads(row["include_accounts"] or "[]")),
            updated_at=_parse_ts(row["updated_at"]),
        )

    async def upsert(self, rule: AccrualRule) -> None:
        params = (
            rule.org_id,
            rule.lookback_months,
            str(rule.min_amount),
            rule.confidence_threshold,
            rule.min_recurrence_count,
            json.dumps(list(rule.excluded_accounts)),
            json.dumps(list(rule.excluded_vendors)),
            json.dumps(list(rule.include_accounts)),
            _ts(rule.updated_at or utc_now()),
        )
        await self._db.run(
            lambda db: db.execute(
                """
                INSERT INTO accrual_rules (
                    org_id, lookback_months, min_amount, confidence_threshold,
                    min_recurrence_count, excluded_accounts, excluded_vendors,
                    include_accounts, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (org_id) DO UPDATE SET
                    lookback_months = excluded.lookback_months,
                    min_amount = excluded.min_amount,
                    confidence_threshold = excluded.confidence_threshold,
                    min_recurrence_count = excluded.min_recurrence_count,
                    excluded_accounts = excluded.excluded_accounts,
                    excluded_vendors = excluded.excluded_vendors,
                    include_accounts = excluded.include_accounts,
                    updated_at = excluded.updated_at
                """,
                params,
            )
        )


class SQLiteCandidateRepository(CandidateRepository):
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    @staticmethod
    def _from_row(row: sqlite3.Row) -> AccrualCandidate:
        return AccrualCandidate(
            id=UUID(row["id"]),
            org_id=row["org_id"],
            period_from_date=date.fromisoformat(row["period_from_date"]),
            period_to_date=date.fromisoformat(row["period_to_date"]),
            vendor_name=row["vendor_name"],
            account_id=row["account_id"],
            account_name=row["account_name"],
            expected_amount=Decimal(row["expected_amount"]),
            confidence_score=row["confidence_score"],
            explanation=CandidateExplanation.from_dict(json.loads(row["explanation_json"])),
            status=CandidateStatus(row["status"]),
            created_at=_parse_ts(row["created_at"]) or utc_now(),
            updated_at=_parse_ts(row["updated_at"]) or utc_now(),
        )

    async def save_for_period(
        self,
        org_id: str,
        period_from: date,
        period_to: date,
        candidates: list[AccrualCandidate],
    ) -> list[AccrualCandidate]:
        now = _ts(utc_now())

        def save(db: sqlite3.Connection) -> list[sqlite3.Row]:
            stored_ids: list[str] = []
            for candidate in candidates:
                row = db.execute(
                    """
                    INSERT INTO accrual_candidates (
                        id, org_id, period_from_date, period_to_date, vendor_name,
                        vendor_key, account_id, account_name, expected_amount,
                        confidence_score, explanation_json, status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                    ON CONFLICT (org_id, period_from_date, period_to_date, account_id, vendor_key)
                    DO UPDATE SET
                        account_name = excluded.account_name,
                        expected_amount = excluded.expected_amount,
                        confidence_score = excluded.confidence_score,
                        explanation_json = excluded.explanation_json,
                        updated_at = excluded.updated_at
                    RETURNING id
                    """,
                    (
                        str(candidate.id),
                        org_id,
                        period_from.isoformat(),
                        period_to.isoformat(),
                        candidate.vendor_name,
                        candidate.vendor_name or "",
                        candidate.account_id,
                        candidate.account_name,
                        str(candidate.expected_amount),
                        candidate.confidence_score,
                        json.dumps(candidate.explanation.to_dict()),
                        _ts(candidate.created_at),
                        now,
                    ),
                ).fetchone()
                stored_ids.append(row["id"])

            placeholders = ",".join("?" for _ in stored_ids) or "''"
            db.execute(
                f"""
                DELETE FROM accrual_candidates
                WHERE org_id = ? AND period_from_date = ? AND period_to_date = ?
                  AND status = 'pending' AND id NOT IN ({placeholders})
                """,
                (org_id, period_from.isoformat(), period_to.isoformat(), *stored_ids),
            )
            if not stored_ids:
                return []

            rows = {
                row["id"]: row
                for row in db.execute(
                    f"SELECT * FROM accrual_candidates WHERE id IN ({placeholders})",
                    stored_ids,
                ).fetchall()
            }
            return [rows[candidate_id] for candidate_id in stored_ids]

        return [self._from_row(row) for row in await self._db.run(save)]

    async def list_for_period(
        self, org_id: str, period_from: date, period_to: date
    ) -> list[AccrualCandidate]:
        rows = await self._db.run(
            lambda db: db.execute(
                """
                SELECT * FROM accrual_candidates
                WHERE org_id = ? AND period_from_date = ? AND period_to_date = ?
                ORDER BY confidence_score DESC, CAST(expected_amount AS REAL) DESC
                """,
                (org_id, period_from.isoformat(), period_to.isoformat()),
            ).fetchall()
        )
        return [self._from_row(row) for row in rows]

    async def get(self, candidate_id: UUID, org_id: str) -> AccrualCandidate | None:
        row = await self._db.run(
            lambda db: db.execute(
                "SELECT * FROM accrual_candidates WHERE id = ? AND org_id = ? LIMIT 1",
                (str(candidate_id), org_id),
            ).fetchone()
        )
        return self._from_row(row) if row else None

    async def update_status(
        self, candidate_id: UUID, org_id: str, status: CandidateStatus
    ) -> AccrualCandidate | None:
        await self._db.run(
            lambda db: db.execute(
                """
                UPDATE accrual_candidates SET status = ?, updated_at = ?
                WHERE id = ? AND org_id = ?
                """,
                (status.value, _ts(utc_now()), str(candidate_id), org_id),
            )
        )
        return await self.get(candidate_id, org_id)

    async def add_approval(self, approval: AccrualApproval) -> None:
        params = (
            str(approval.id),
            str(approval.candidate_id),
            approval.org_id,
            approval.approved_by,
            approval.decision.value,
            approval.notes,
            _ts(approval.created_at),
        )
        await self._db.run(
            lambda db: db.execute(
                """
                INSERT INTO accrual_approvals
                    (id, candidate_id, org_id, approved_by, decision, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                params,
            )
        )

    async def latest_approval(self, candidate_id: UUID) -> AccrualApproval | None:
        row = await self._db.run(
            lambda db: db.execute(
                """
                SELECT * FROM accrual_approvals WHERE candidate_id = ?
                ORDER BY created_at DESC LIMIT 1
                """,
                (str(candidate_id),),
            ).fetchone()
        )
        if row is None:
            return None
        return AccrualApproval(
            id=UUID(row["id"]),
            candidate_id=UUID(row["candidate_id"]),
            org_id=row["org_id"],
            decision=CandidateStatus(row["decision"]),
            approved_by=row["approved_by"],
            notes=row["notes"],
            created_at=_parse_ts(row["created_at"]) or utc_now(),
        )

    async def history(self, org_id: str, limit: int = 50) -> list[AccrualCandidate]:
        rows = await self._db.run(
            lambda db: db.execute(
                """
                SELECT * FROM accrual_candidates WHERE org_id = ?
                ORDER BY created_at DESC LIMIT ?
                """,
                (org_id, limit),
            ).fetchall()
        )
        return [self._from_row(row) for row in rows]


class SQLitePostingLedger(PostingLedger):
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    @staticmethod
    def _from_row(row: sqlite3.Row) -> PostingRecord:
        return PostingRecord(
            candidate_id=UUID(row["candidate_id"]),
            org_id=row["org_id"],
            posting_status=PostingStatus(row["posting_status"]),
            journal_entry_id=row["journal_entry_id"],
            error_message=row["error_message"],
            posted_at=_parse_ts(row["posted_at"]),
            created_at=_parse_ts(row["created_at"]) or utc_now(),
            updated_at=_parse_ts(row["updated_at"]) or utc_now(),
        )

    async def get(self, candidate_id: UUID) -> PostingRecord | None:
        row = await self._db.run(
            lambda db: db.execute(
                "SELECT * FROM qbo_postings WHERE candidate_id = ?", (str(candidate_id),)
            ).fetchone()
        )
        return self._from_row(row) if row else None

    async def record(
        self,
        candidate_id: UUID,
        org_id: str,
        status: PostingStatus,
        journal_entry_id: str | None = None,
        error_message: str | None = None,
    ) -> PostingRecord:
        now = _ts(utc_now())
        posted_at = now if status == PostingStatus.SUCCESS else None

        def upsert(db: sqlite3.Connection) -> tuple[int, sqlite3.Row]:
            cursor = db.execute(
                """
                INSERT INTO qbo_postings (
                    candidate_id, org_id, journal_entry_id, posting_status,
                    error_message, posted_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (candidate_id) DO UPDATE SET
                    journal_entry_id = excluded.journal_entry_id,
                    posting_status = excluded.posting_status,
                    error_message = excluded.error_message,
                    posted_at = COALESCE(excluded.posted_at, qbo_postings.posted_at),
                    updated_at = excluded.updated_at
                WHERE NOT (
                    qbo_postings.posting_status = 'success'
                    AND qbo_postings.journal_entry_id IS NOT NULL
                )
                """,
                (
                    str(candidate_id),
                    org_id,
                    journal_entry_id,
                    status.value,
                    error_message,
                    posted_at,
                    now,
                    now,
                ),
            )
            row = db.execute(
                "SELECT * FROM qbo_postings WHERE candidate_id = ?", (str(candidate_id),)
            ).fetchone()
            return cursor.rowcount, row

        updated, row = await self._db.run(upsert)
        record = self._from_row(row)
        if updated == 0:
            raise PostingConflictError(str(candidate_id), record.journal_entry_id or "")
        return record
