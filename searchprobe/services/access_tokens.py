"""
Helpers for retrieving and refreshing delegated access tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from searchprobe.clients.credential_store import CredentialStore
from searchprobe.clients.entra_auth import (
    AuthRefreshFailed,
    EntraOAuthClient,
    NoCredential,
    resource_scope,
)
from searchprobe.models.token import CredentialStatus, TokenRecord

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessTokenService:
    """Hands out access tokens from the credential store, refreshing near expiry."""

    _REFRESH_WINDOW = timedelta(minutes=5)

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: EntraOAuthClient,
        *,
        refresh_window: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._window = refresh_window if refresh_window is not None else self._REFRESH_WINDOW
        self._clock = clock

    def save(self, credential_key: str, record: TokenRecord) -> None:
        """Persist a record obtained from an interactive login."""
        self._store.save(credential_key, record)

    async def get_valid_or_refreshed_access_token(
        self, credential_key: str, resource_hint: str
    ) -> Optional[str]:
        """Return a usable access token, or ``None`` when a login is required.

        A refresh failure raises ``AuthRefreshFailed``; the exchange is
        attempted once per call.
        """
        record = self._store.load(credential_key)
        if record is None:
            return None

        if record.is_fresh(self._clock(), self._window):
            return record.access_token

        if not record.refresh_token:
            return None

        scope = resource_scope(resource_hint)
        refreshed_at = self._clock()
        access_token, rotated_refresh_token, expires_in = await self._oauth.refresh_token(
            tenant_id=record.tenant_id,
            client_id=record.client_id,
            refresh_token=record.refresh_token,
            scope=scope,
        )
        updated = TokenRecord(
            access_token=access_token,
            refresh_token=rotated_refresh_token or record.refresh_token,
            expires_on=refreshed_at + timedelta(seconds=expires_in),
            scope=scope,
            tenant_id=record.tenant_id,
            client_id=record.client_id,
        )
        try:
            self._store.save(credential_key, updated)
        except OSError as exc:
            raise AuthRefreshFailed(
                f"Refreshed token for {credential_key!r} could not be stored: {exc}"
            ) from exc
        logger.info(
            "Refreshed access token",
            extra={"credential_key": credential_key, "rotated": rotated_refresh_token is not None},
        )
        return updated.access_token

    async def require_access_token(self, credential_key: str, resource_hint: str) -> str:
        """Like ``get_valid_or_refreshed_access_token`` but raises ``NoCredential``."""
        token = await self.get_valid_or_refreshed_access_token(credential_key, resource_hint)
        if token is None:
            raise NoCredential(f"No valid token stored under {credential_key!r}; login required.")
        return token

    def credential_status(
        self, credential_key: str
    ) -> Tuple[CredentialStatus, Optional[datetime]]:
        """Summarise what is stored for ``credential_key`` without refreshing it."""
        record = self._store.load(credential_key)
        if record is None:
            return CredentialStatus.NO_TOKEN, None
        if not record.refresh_token:
            return CredentialStatus.NO_REFRESH_TOKEN, record.expires_on
        if record.expires_on > self._clock():
            return CredentialStatus.ACTIVE, record.expires_on
        return CredentialStatus.EXPIRED_REFRESHABLE, record.expires_on


__all__ = ["AccessTokenService"]
