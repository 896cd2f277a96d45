"""QuickBooks Online API client for reports, account queries and journal entries."""

from dataclasses import dataclass
from datetime import date
from typing import Any, Union

import httpx
import structlog

from monthend.clients.credentials import CredentialProvider
from monthend.config import get_settings
from monthend.errors import QBOAPIError

logger = structlog.get_logger(__name__)

ACCRUED_LIABILITIES_TYPE = "Other Current Liability"
ACCRUED_LIABILITIES_NAME = "Accrued Liabilities"
ACCOUNTS_PAYABLE_TYPE = "Accounts Payable"


# === Account lookup results ===


@dataclass(frozen=True)
class AccountFound:
    account_id: str
    name: str | None = None


@dataclass(frozen=True)
class AccountNotFound:
    account_type: str
    name: str | None = None


@dataclass(frozen=True)
class LookupFailed:
    message: str
    status_code: int | None = None


AccountLookup = Union[AccountFound, AccountNotFound, LookupFailed]


def extract_fault_message(body: Any, status_code: int, text: str = "") -> str:
    """Best human-readable message from a QBO error response.

    Handles ``{"Fault": {"Error": [{"Message", "Detail"}]}}``, the lowercase
    ``{"fault": {"error": [...]}}`` variant used for auth failures, and plain
    ``{"message"}`` / OAuth ``{"error_description"}`` bodies.
    """
    if isinstance(body, dict):
        fault = body.get("Fault") or body.get("fault")
        if isinstance(fault, dict):
            errors = fault.get("Error") or fault.get("error")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                first = errors[0]
                message = first.get("Message") or first.get("message")
                detail = first.get("Detail") or first.get("detail")
                if message or detail:
                    return str(message or detail)
        for key in ("message", "error_description", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]

    suffix = f": {text[:200]}" if text else ""
    return f"QBO request failed ({status_code}){suffix}"


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class QBOClient:
    """Async client for the QuickBooks Online accounting API."""

    def __init__(
        self,
        credentials: CredentialProvider,
        base_url: str | None = None,
        minor_version: str | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.qbo_host).rstrip("/")
        self._credentials = credentials
        self._minor_version = minor_version or settings.qbo_minor_version
        self._timeout = timeout or settings.qbo_timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "QBOClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # === Generic Request Methods ===

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def _request(
        self,
        org_id: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request against the org's company.

        Requests are not retried; a failed submission is left for the
        caller to re-invoke.
        """
        credential = await self._credentials.get_valid_credential(org_id)
        client = await self._get_client()

        query = {k: v for k, v in (params or {}).items() if v is not None}
        query.setdefault("minorversion", self._minor_version)
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
        }
        if json is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = await client.request(
                method=method,
                url=f"/v3/company/{credential.realm_id}{path}",
                params=query,
                json=json,
                headers=headers,
            )
        except httpx.RequestError as e:
            raise QBOAPIError(f"Request failed: {e}") from e

        body = self._parse_body(response)
        if response.status_code >= 400:
            text = response.text if body is None else ""
            raise QBOAPIError(
                extract_fault_message(body, response.status_code, text),
                status_code=response.status_code,
                details=body if body is not None else {"raw": text[:500]},
            )
        if not isinstance(body, dict):
            raise QBOAPIError(
                "QBO returned an unparsable response",
                status_code=response.status_code,
                details={"raw": (response.text or "")[:500]},
            )
        return body

    # === Report Endpoints ===

    async def fetch_report(
        self, org_id: str, report_name: str, params: dict[str, Any]
    ) -> dict[str, Any]:
        """Fetch a named report (ProfitAndLoss, BalanceSheet, ...)."""
        logger.debug("fetching_report", org_id=org_id, report=report_name, params=params)
        return await self._request(org_id, "GET", f"/reports/{report_name}", params=params)

    async def get_profit_and_loss(
        self,
        org_id: str,
        start_date: date,
        end_date: date,
        summarize_column_by: str | None = None,
    ) -> dict[str, Any]:
        """Get profit and loss report."""
        return await self.fetch_report(
            org_id,
            "ProfitAndLoss",
            {
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "summarize_column_by": summarize_column_by,
            },
        )

    # === Account Endpoints ===

    async def query(self, org_id: str, statement: str) -> dict[str, Any]:
        """Run a QBO query statement."""
        return await self._request(org_id, "GET", "/query", params={"query": statement})

    async def find_account(
        self, org_id: str, account_type: str, name: str | None = None
    ) -> AccountLookup:
        """Find the first account of a type (and optionally name)."""
        statement = f"SELECT * FROM Account WHERE AccountType = '{_quote(account_type)}'"
        if name:
            statement += f" AND Name = '{_quote(name)}'"
        statement += " MAXRESULTS 1"

        try:
            result = await self.query(org_id, statement)
        except QBOAPIError as e:
            return LookupFailed(message=str(e), status_code=e.status_code)

        query_response = result.get("QueryResponse")
        accounts = query_response.get("Account") if isinstance(query_response, dict) else None
        if isinstance(accounts, list) and accounts and isinstance(accounts[0], dict):
            account_id = accounts[0].get("Id")
            if account_id:
                return AccountFound(account_id=str(account_id), name=accounts[0].get("Name"))
        return AccountNotFound(account_type=account_type, name=name)

    # === Journal Entry Endpoints ===

    async def create_journal_entry(self, org_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a journal entry."""
        return await self._request(org_id, "POST", "/journalentry", json=payload)
