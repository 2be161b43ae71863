"""Expose dependency helpers for assembling a probe scheduler."""

from .clients import (
    build_scheduler,
    get_access_token_service,
    get_credential_store,
    get_entra_oauth_client,
    get_interactive_login_service,
    get_record_store,
    get_search_client,
    get_token_cipher_service,
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
