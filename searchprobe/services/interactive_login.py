"""
Interactive Authorization Code + PKCE login driven through the system browser.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import webbrowser
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from searchprobe.clients.entra_auth import (
    AuthCancelled,
    AuthDenied,
    EntraOAuthClient,
    generate_pkce_challenge,
    resource_scope,
)
from searchprobe.clients.loopback import LoopbackRedirectListener
from searchprobe.core.config import AuthSettings
from searchprobe.models.token import TokenRecord

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InteractiveLoginService:
    """Run one browser sign-in and return the resulting token record."""

    def __init__(
        self,
        oauth_client: EntraOAuthClient,
        auth_settings: AuthSettings,
        *,
        open_browser: Callable[[str], object] = webbrowser.open,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._oauth = oauth_client
        self._settings = auth_settings
        self._open_browser = open_browser
        self._clock = clock

    async def login(
        self,
        *,
        client_id: str,
        tenant_id: str,
        resource_hint: str,
        login_hint: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TokenRecord:
        """
        Sign a user in and exchange the authorization code.

        Raises ``ListenerBindFailure`` when no redirect port is free,
        ``AuthCancelled`` on timeout, ``AuthDenied`` when the provider returns
        an error and ``AuthExchangeFailed`` when the code cannot be redeemed.
        Cancelling the calling task releases the listener as well.
        """
        scope = resource_scope(resource_hint)
        pkce = generate_pkce_challenge()
        state = secrets.token_urlsafe(16)
        wait_seconds = timeout if timeout is not None else self._settings.login_timeout_seconds

        async with LoopbackRedirectListener(
            self._settings.redirect_port_start, self._settings.redirect_port_end
        ) as listener:
            redirect_uri = listener.redirect_uri
            authorize_url = self._oauth.build_authorization_url(
                tenant_id=tenant_id,
                client_id=client_id,
                redirect_uri=redirect_uri,
                scope=scope,
                code_challenge=pkce.challenge,
                state=state,
                login_hint=login_hint,
            )
            logger.info("Opening browser for sign-in", extra={"login_hint": login_hint})
            self._open_browser(authorize_url)
            try:
                capture = await listener.wait_for_redirect(wait_seconds)
            except asyncio.TimeoutError as exc:
                raise AuthCancelled(
                    f"No sign-in redirect received within {wait_seconds:g} seconds."
                ) from exc

        if capture.error or not capture.code:
            raise AuthDenied(
                f"Authorization failed: {capture.error_description or capture.error or 'no code returned'}"
            )
        if capture.state != state:
            raise AuthDenied("Authorization failed: state mismatch in redirect.")

        issued_at = self._clock()
        access_token, refresh_token, expires_in = await self._oauth.exchange_authorization_code(
            tenant_id=tenant_id,
            client_id=client_id,
            code=capture.code,
            redirect_uri=redirect_uri,
            code_verifier=pkce.verifier,
            scope=scope,
        )
        return TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_on=issued_at + timedelta(seconds=expires_in),
            scope=scope,
            tenant_id=tenant_id,
            client_id=client_id,
        )


__all__ = ["InteractiveLoginService"]
