"""
Factory functions that build the shared clients, services and schedulers.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Optional

from searchprobe.clients import (
    EncryptedFileCredentialStore,
    EntraOAuthClient,
    SQLiteProbeRecordStore,
    SearchProbeClient,
)
from searchprobe.core.config import get_settings
from searchprobe.schemas.config import ProbeConfigDocument
from searchprobe.services import (
    AccessTokenService,
    InteractiveLoginService,
    LoggingEventSink,
    ProbeEventSink,
    ProbeScheduler,
    TokenCipherService,
)
from searchprobe.services.scheduler import ValidationCompleteHook


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret
    if secret:
        return TokenCipherService(secret=secret)
    return TokenCipherService.from_key_file(settings.storage.credential_dir)


@lru_cache()
def get_credential_store() -> EncryptedFileCredentialStore:
    """Provide the encrypted per-principal token store."""
    settings = _settings()
    return EncryptedFileCredentialStore(
        settings.storage.credential_dir, get_token_cipher_service()
    )


@lru_cache()
def get_entra_oauth_client() -> EntraOAuthClient:
    """Create a singleton Entra ID OAuth client."""
    return EntraOAuthClient(_settings().auth)


@lru_cache()
def get_access_token_service() -> AccessTokenService:
    """Provide helper for handing out and refreshing access tokens."""
    settings = _settings()
    return AccessTokenService(
        store=get_credential_store(),
        oauth_client=get_entra_oauth_client(),
        refresh_window=timedelta(seconds=settings.auth.refresh_window_seconds),
    )


@lru_cache()
def get_interactive_login_service() -> InteractiveLoginService:
    """Provide the browser-driven login flow."""
    return InteractiveLoginService(get_entra_oauth_client(), _settings().auth)


@lru_cache()
def get_record_store() -> SQLiteProbeRecordStore:
    """Provide shared SQLite probe record store."""
    return SQLiteProbeRecordStore(_settings().storage.records_db_path)


@lru_cache()
def get_search_client() -> SearchProbeClient:
    """Provide the search client, recording exchanges in the record store."""
    settings = _settings()
    return SearchProbeClient(
        timeout=settings.storage.search_timeout_seconds,
        exchange_recorder=get_record_store().record_exchange,
    )


def build_scheduler(
    document: ProbeConfigDocument,
    *,
    event_sink: Optional[ProbeEventSink] = None,
    on_validation_complete: Optional[ValidationCompleteHook] = None,
) -> ProbeScheduler:
    """Build a scheduler for a probe configuration document."""
    return ProbeScheduler(
        query=document.to_probe_query(),
        token_service=get_access_token_service(),
        search_client=get_search_client(),
        interval_seconds=document.interval_seconds(),
        principals=document.users,
        target_url=document.page_url,
        client_id=document.client_id,
        tenant_id=document.tenant_id,
        login_service=get_interactive_login_service(),
        event_sink=event_sink or LoggingEventSink(),
        record_sink=get_record_store(),
        on_validation_complete=on_validation_complete,
    )


__all__ = [
    "build_scheduler",
    "get_access_token_service",
    "get_credential_store",
    "get_entra_oauth_client",
    "get_interactive_login_service",
    "get_record_store",
    "get_search_client",
    "get_token_cipher_service",
]
