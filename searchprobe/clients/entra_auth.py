"""
Entra ID (Azure AD) OAuth utilities.

These helpers build the authorization URL for the Authorization Code flow
with PKCE and talk to the v2.0 token endpoint for code and refresh grants.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlencode, urlsplit

import httpx

from searchprobe.core.config import AuthSettings


class AuthenticationError(Exception):
    """Base class for delegated-authentication failures."""


class AuthCancelled(AuthenticationError):
    """No browser redirect arrived before the login timed out."""


class AuthDenied(AuthenticationError):
    """The identity provider redirected back with an error."""


class AuthExchangeFailed(AuthenticationError):
    """The token endpoint rejected the authorization code."""


class AuthRefreshFailed(AuthenticationError):
    """The token endpoint rejected the refresh grant."""


class NoCredential(AuthenticationError):
    """No usable token is stored for a principal; interactive login is needed."""


@dataclass(frozen=True)
class PkceChallenge:
    """RFC 7636 verifier and its S256 challenge."""

    verifier: str
    challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_pkce_challenge() -> PkceChallenge:
    """Generate a fresh verifier (43 chars) and ``base64url(sha256(verifier))``."""
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PkceChallenge(verifier=verifier, challenge=challenge)


def resource_scope(resource_hint: str) -> str:
    """Delegated scope for the host of ``resource_hint`` plus refresh/OIDC scopes."""
    parts = urlsplit(resource_hint.strip())
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Resource hint must be an absolute URL: {resource_hint!r}")
    return f"{parts.scheme}://{parts.netloc}/.default offline_access openid"


_GUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_SHAREPOINT_SUFFIXES = (
    re.compile(r"-admin\.sharepoint\.com$", re.IGNORECASE),
    re.compile(r"-df\.sharepoint\.com$", re.IGNORECASE),
    re.compile(r"\.sharepoint\.com$", re.IGNORECASE),
)
_PLACEHOLDER_TENANT = "yourtenant.onmicrosoft.com"


def normalize_tenant(value: Optional[str]) -> str:
    """Turn what an operator typed into a tenant segment for the authority URL.

    SharePoint host names map to the matching ``onmicrosoft.com`` domain, bare
    names get the domain appended, and an empty value means the multi-tenant
    ``organizations`` endpoint.
    """
    tenant = (value or "").strip()
    if not tenant or tenant.lower() == _PLACEHOLDER_TENANT:
        return "organizations"
    if ".sharepoint.com" in tenant.lower():
        for pattern in _SHAREPOINT_SUFFIXES:
            tenant = pattern.sub(".onmicrosoft.com", tenant)
        return tenant
    if "." not in tenant and not _GUID.match(tenant):
        return f"{tenant}.onmicrosoft.com"
    return tenant


class EntraOAuthClient:
    """Build Entra authorization URLs and exchange codes / refresh tokens."""

    def __init__(
        self,
        auth_settings: AuthSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = auth_settings
        self._transport = transport

    def _endpoint(self, tenant_id: str, name: str) -> str:
        return f"{self._settings.authority_host}/{tenant_id}/oauth2/v2.0/{name}"

    def build_authorization_url(
        self,
        *,
        tenant_id: str,
        client_id: str,
        redirect_uri: str,
        scope: str,
        code_challenge: str,
        state: str,
        login_hint: Optional[str] = None,
    ) -> str:
        """Construct the Entra consent URL."""
        params = {
            "client_id": client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": scope,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "prompt": "select_account",
            "state": state,
        }
        if login_hint:
            params["login_hint"] = login_hint
        return f"{self._endpoint(tenant_id, 'authorize')}?{urlencode(params)}"

    async def _post_token(self, tenant_id: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._settings.http_timeout_seconds, transport=self._transport
        ) as client:
            return await client.post(self._endpoint(tenant_id, "token"), data=payload)

    async def exchange_authorization_code(
        self,
        *,
        tenant_id: str,
        client_id: str,
        code: str,
        redirect_uri: str,
        code_verifier: str,
        scope: str,
    ) -> Tuple[str, str, int]:
        """
        Exchange an authorization code for tokens.

        Returns a tuple of (access_token, refresh_token, expires_in_seconds).
        """
        payload = {
            "client_id": client_id,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
            "scope": scope,
        }
        try:
            response = await self._post_token(tenant_id, payload)
        except httpx.HTTPError as exc:
            raise AuthExchangeFailed(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise AuthExchangeFailed(response.text)

        token_payload = _json_or_empty(response)
        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token") or ""
        expires_in = token_payload.get("expires_in")

        if not access_token or not expires_in:
            raise AuthExchangeFailed("Incomplete token payload returned from Entra ID.")

        return access_token, refresh_token, _lifetime_seconds(expires_in, AuthExchangeFailed)

    async def refresh_token(
        self,
        *,
        tenant_id: str,
        client_id: str,
        refresh_token: str,
        scope: str,
    ) -> Tuple[str, Optional[str], int]:
        """
        Redeem a refresh token.

        Returns (access_token, rotated_refresh_token_or_None, expires_in_seconds).
        """
        payload = {
            "client_id": client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": scope,
        }
        try:
            response = await self._post_token(tenant_id, payload)
        except httpx.HTTPError as exc:
            raise AuthRefreshFailed(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise AuthRefreshFailed(response.text)

        token_payload = _json_or_empty(response)
        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")

        if not access_token or not expires_in:
            raise AuthRefreshFailed("Incomplete refresh payload returned from Entra ID.")

        return (
            access_token,
            token_payload.get("refresh_token") or None,
            _lifetime_seconds(expires_in, AuthRefreshFailed),
        )


def _lifetime_seconds(value, error: type) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise error(f"Token endpoint returned a non-numeric expires_in: {value!r}") from exc


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


__all__ = [
    "AuthCancelled",
    "AuthDenied",
    "AuthExchangeFailed",
    "AuthRefreshFailed",
    "AuthenticationError",
    "EntraOAuthClient",
    "NoCredential",
    "PkceChallenge",
    "generate_pkce_challenge",
    "normalize_tenant",
    "resource_scope",
]
