"""Bearer credentials for QuickBooks Online with automatic token refresh."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog

from monthend.config import get_settings
from monthend.errors import AuthenticationError, NoConnectionError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Credential:
    """A usable access token and the QBO company it belongs to."""

    access_token: str
    realm_id: str


class CredentialProvider(ABC):
    """Supplies a currently valid credential for an organization."""

    @abstractmethod
    async def get_valid_credential(self, org_id: str) -> Credential:
        """Return a non-expired credential.

        Raises:
            NoConnectionError: The org has no QuickBooks connection.
        """


class StaticCredentialProvider(CredentialProvider):
    """Fixed credentials, keyed by org or shared by every org."""

    def __init__(
        self,
        access_token: str | None = None,
        realm_id: str | None = None,
        by_org: dict[str, Credential] | None = None,
    ):
        self._default = (
            Credential(access_token=access_token, realm_id=realm_id)
            if access_token and realm_id
            else None
        )
        self._by_org = dict(by_org or {})

    async def get_valid_credential(self, org_id: str) -> Credential:
        credential = self._by_org.get(org_id, self._default)
        if credential is None:
            raise NoConnectionError("No QBO connection found for this org")
        return credential


# === OAuth connections ===


@dataclass(frozen=True)
class QBOConnection:
    """Stored OAuth tokens for one organization."""

    org_id: str
    realm_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    refresh_expires_at: datetime | None = None


class ConnectionRepository(ABC):
    @abstractmethod
    async def get(self, org_id: str) -> QBOConnection | None:
        """Return the org's connection, if any."""

    @abstractmethod
    async def save(self, connection: QBOConnection) -> None:
        """Insert or replace the org's connection."""


class InMemoryConnectionRepository(ConnectionRepository):
    def __init__(self, connections: list[QBOConnection] | None = None):
        self._connections = {c.org_id: c for c in connections or []}

    async def get(self, org_id: str) -> QBOConnection | None:
        return self._connections.get(org_id)

    async def save(self, connection: QBOConnection) -> None:
        self._connections[connection.org_id] = connection


class OAuthCredentialProvider(CredentialProvider):
    """Refreshes access tokens shortly before they expire."""

    REFRESH_MARGIN = timedelta(seconds=60)

    def __init__(
        self,
        connections: ConnectionRepository,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str | None = None,
    ):
        settings = get_settings()
        self._connections = connections
        self._client_id = client_id or settings.qbo_client_id
        self._client_secret = client_secret or settings.qbo_client_secret.get_secret_value()
        self._token_url = token_url or settings.qbo_token_url
        self._timeout = settings.qbo_timeout

        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _is_expired(self, connection: QBOConnection) -> bool:
        return datetime.now(UTC) >= connection.expires_at - self.REFRESH_MARGIN

    async def get_valid_credential(self, org_id: str) -> Credential:
        async with self._lock:
            connection = await self._connections.get(org_id)
            if connection is None:
                raise NoConnectionError("No QBO connection found for this org")

            if self._is_expired(connection):
                connection = await self.refresh_tokens(connection)

        return Credential(access_token=connection.access_token, realm_id=connection.realm_id)

    async def refresh_tokens(self, connection: QBOConnection) -> QBOConnection:
        """Exchange the refresh token for a new access token and store it."""
        if not self._client_id or not self._client_secret:
            raise AuthenticationError("Missing QBO client credentials")

        client = await self._get_client()
        response = await client.post(
            self._token_url,
            data={"grant_type": "refresh_token", "refresh_token": connection.refresh_token},
            auth=(self._client_id, self._client_secret),
            headers={"Accept": "application/json"},
        )

        data: Any
        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}

        if response.status_code >= 400 or not isinstance(data, dict):
            raise AuthenticationError(
                f"QBO refresh failed ({response.status_code})",
                status_code=response.status_code,
                details=data,
            )
        if not data.get("access_token"):
            raise AuthenticationError("QBO refresh response had no access token", details=data)

        now = datetime.now(UTC)
        refresh_expires_in = data.get("x_refresh_token_expires_in")
        refreshed = replace(
            connection,
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or connection.refresh_token,
            expires_at=now + timedelta(seconds=int(data.get("expires_in") or 3600)),
            refresh_expires_at=(
                now + timedelta(seconds=int(refresh_expires_in))
                if refresh_expires_in
                else connection.refresh_expires_at
            ),
        )
        await self._connections.save(refreshed)
        logger.info("qbo_tokens_refreshed", org_id=connection.org_id)
        return refreshed
