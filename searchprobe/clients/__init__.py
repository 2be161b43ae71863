"""Expose constructed client wrappers."""

from .credential_store import CredentialStore, EncryptedFileCredentialStore
from .entra_auth import (
    AuthCancelled,
    AuthDenied,
    AuthExchangeFailed,
    AuthRefreshFailed,
    AuthenticationError,
    EntraOAuthClient,
    NoCredential,
)
from .loopback import ListenerBindFailure, LoopbackRedirectListener
from .record_store import SQLiteProbeRecordStore
from .search import ProbeResult, ProbeTransportFailure, ResultRow, SearchProbeClient

__all__ = [
    "AuthCancelled",
    "AuthDenied",
    "AuthExchangeFailed",
    "AuthRefreshFailed",
    "AuthenticationError",
    "CredentialStore",
    "EncryptedFileCredentialStore",
    "EntraOAuthClient",
    "ListenerBindFailure",
    "LoopbackRedirectListener",
    "NoCredential",
    "ProbeResult",
    "ProbeTransportFailure",
    "ResultRow",
    "SQLiteProbeRecordStore",
    "SearchProbeClient",
]
