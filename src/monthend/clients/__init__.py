"""QuickBooks Online clients."""

from monthend.clients.credentials import (
    ConnectionRepository,
    Credential,
    CredentialProvider,
    InMemoryConnectionRepository,
    OAuthCredentialProvider,
    QBOConnection,
    StaticCredentialProvider,
)
from monthend.clients.qbo import (
    AccountFound,
    AccountLookup,
    AccountNotFound,
    LookupFailed,
    QBOClient,
    extract_fault_message,
)

__all__ = [
    # Credentials
    "Credential",
    "CredentialProvider",
    "StaticCredentialProvider",
    "OAuthCredentialProvider",
    "ConnectionRepository",
    "InMemoryConnectionRepository",
    "QBOConnection",
    # API Client
    "QBOClient",
    "AccountFound",
    "AccountNotFound",
    "AccountLookup",
    "LookupFailed",
    "extract_fault_message",
]
