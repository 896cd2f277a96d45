"""Idempotent posting of approved accruals as QBO journal entries."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import structlog

from monthend.accruals.models import AccrualCandidate, PostingOutcome, PostingStatus
from monthend.clients.qbo import (
    ACCOUNTS_PAYABLE_TYPE,
    ACCRUED_LIABILITIES_NAME,
    ACCRUED_LIABILITIES_TYPE,
    AccountFound,
    LookupFailed,
    QBOClient,
)
from monthend.errors import PostingError
from monthend.storage.base import PostingLedger

logger = structlog.get_logger(__name__)

NO_LIABILITY_ACCOUNT = (
    "No Accrued Liabilities or Accounts Payable account found. "
    "Please create one in QuickBooks."
)


@dataclass(frozen=True)
class JournalLine:
    account_id: str
    account_name: str
    posting_type: str  # "Debit" or "Credit"
    amount: Decimal
    description: str


@dataclass
class JournalEntry:
    txn_date: date
    memo: str
    lines: list[JournalLine] = field(default_factory=list)

    @property
    def is_balanced(self) -> bool:
        debits = sum(
            (line.amount for line in self.lines if line.posting_type == "Debit"), Decimal("0")
        )
        credits = sum(
            (line.amount for line in self.lines if line.posting_type == "Credit"), Decimal("0")
        )
        return bool(self.lines) and debits == credits

    def to_qbo(self) -> dict[str, Any]:
        return {
            "TxnDate": self.txn_date.isoformat(),
            "PrivateNote": self.memo,
            "Line": [
                {
                    "Id": str(index),
                    "Description": line.description,
                    "Amount": float(line.amount),
                    "DetailType": "JournalEntryLineDetail",
                    "JournalEntryLineDetail": {
                        "PostingType": line.posting_type,
                        "AccountRef": {"value": line.account_id, "name": line.account_name},
                    },
                }
                for index, line in enumerate(self.lines)
            ],
        }


def build_accrual_entry(
    candidate: AccrualCandidate, liability_account_id: str, liability_account_name: str
) -> JournalEntry:
    """Debit the expense account and credit the liability for the expected amount."""
    amount = candidate.expected_amount.quantize(Decimal("0.01"))
    vendor = f" - {candidate.vendor_name}" if candidate.vendor_name else ""
    memo = f"Accrual: {candidate.account_name}{vendor}. {candidate.explanation.reason}".strip()
    return JournalEntry(
        txn_date=candidate.period_to_date,
        memo=memo,
        lines=[
            JournalLine(
                account_id=candidate.account_id,
                account_name=candidate.account_name,
                posting_type="Debit",
                amount=amount,
                description=f"Accrual for {candidate.account_name}",
            ),
            JournalLine(
                account_id=liability_account_id,
                account_name=liability_account_name,
                posting_type="Credit",
                amount=amount,
                description=f"Accrual liability for {candidate.account_name}",
            ),
        ],
    )


def extract_journal_entry_id(body: dict[str, Any]) -> str | None:
    entry = body.get("JournalEntry")
    if isinstance(entry, dict) and entry.get("Id"):
        return str(entry["Id"])
    if body.get("Id"):
        return str(body["Id"])
    return None


class PostingGateway:
    """Posts accrual candidates to QBO at most once.

    The ledger is the only idempotency guard: a candidate with a successful
    record is never submitted again.
    """

    def __init__(self, client: QBOClient, ledger: PostingLedger):
        self._client = client
        self._ledger = ledger
        self._logger = logger.bind(component="posting_gateway")

    async def resolve_liability_account(self, org_id: str) -> AccountFound:
        """Find the account to credit.

        Prefers "Accrued Liabilities", then any Accounts Payable account.

        Raises:
            PostingError: Neither account exists, or a lookup failed.
        """
        for account_type, name in (
            (ACCRUED_LIABILITIES_TYPE, ACCRUED_LIABILITIES_NAME),
            (ACCOUNTS_PAYABLE_TYPE, None),
        ):
            result = await self._client.find_account(org_id, account_type, name)
            if isinstance(result, AccountFound):
                return result
            if isinstance(result, LookupFailed):
                raise PostingError(f"Liability account lookup failed: {result.message}")

        self._logger.warning("liability_account_missing", org_id=org_id)
        raise PostingError(NO_LIABILITY_ACCOUNT)

    async def post(self, org_id: str, candidate: AccrualCandidate) -> PostingOutcome:
        """Submit the candidate as a journal entry, or return its existing one.

        Failures from account resolution and submission are recorded in the
        ledger and returned as an unsuccessful outcome. Ledger write errors
        propagate.
        """
        existing = await self._ledger.get(candidate.id)
        if existing is not None and existing.is_terminal:
            self._logger.info(
                "accrual_already_posted",
                candidate_id=str(candidate.id),
                journal_entry_id=existing.journal_entry_id,
            )
            return PostingOutcome(success=True, journal_entry_id=existing.journal_entry_id)

        journal_entry_id: str | None = None
        error: str | None = None
        try:
            journal_entry_id = await self._submit(org_id, candidate)
        except Exception as e:
            error = str(e) or e.__class__.__name__

        if journal_entry_id:
            await self._ledger.record(
                candidate.id, org_id, PostingStatus.SUCCESS, journal_entry_id=journal_entry_id
            )
            self._logger.info(
                "accrual_posted",
                candidate_id=str(candidate.id),
                journal_entry_id=journal_entry_id,
            )
            return PostingOutcome(success=True, journal_entry_id=journal_entry_id)

        await self._ledger.record(candidate.id, org_id, PostingStatus.ERROR, error_message=error)
        self._logger.error("accrual_post_failed", candidate_id=str(candidate.id), error=error)
        return PostingOutcome(success=False, error=error)

    async def _submit(self, org_id: str, candidate: AccrualCandidate) -> str:
        liability = await self.resolve_liability_account(org_id)
        entry = build_accrual_entry(
            candidate, liability.account_id, liability.name or ACCRUED_LIABILITIES_NAME
        )
        if not entry.is_balanced:
            raise PostingError("Journal entry is not balanced")

        body = await self._client.create_journal_entry(org_id, entry.to_qbo())
        journal_entry_id = extract_journal_entry_id(body)
        if not journal_entry_id:
            raise PostingError("QBO did not return a journal entry id")
        return journal_entry_id
