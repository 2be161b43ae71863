try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from searchprobe.clients.entra_auth import (
    AuthExchangeFailed,
    AuthRefreshFailed,
    EntraOAuthClient,
    generate_pkce_challenge,
    normalize_tenant,
    resource_scope,
)
from searchprobe.core.config import AuthSettings


def _client(handler=None) -> EntraOAuthClient:
    transport = httpx.MockTransport(handler) if handler is not None else None
    return EntraOAuthClient(AuthSettings(), transport=transport)


def test_pkce_challenge_is_s256_of_verifier() -> None:
    pkce = generate_pkce_challenge()

    assert 43 <= len(pkce.verifier) <= 128
    expected = base64.urlsafe_b64encode(hashlib.sha256(pkce.verifier.encode("ascii")).digest())
    assert pkce.challenge == expected.rstrip(b"=").decode("ascii")
    assert "=" not in pkce.verifier and "=" not in pkce.challenge


def test_pkce_challenges_are_unique() -> None:
    assert generate_pkce_challenge().verifier != generate_pkce_challenge().verifier


def test_resource_scope_uses_host_of_hint() -> None:
    scope = resource_scope("https://contoso.sharepoint.com/sites/hr/")

    assert scope == "https://contoso.sharepoint.com/.default offline_access openid"


def test_resource_scope_rejects_relative_hint() -> None:
    with pytest.raises(ValueError):
        resource_scope("contoso.sharepoint.com")


@pytest.mark.parametrize(
    ("typed", "expected"),
    [
        ("", "organizations"),
        (None, "organizations"),
        ("yourtenant.onmicrosoft.com", "organizations"),
        ("contoso", "contoso.onmicrosoft.com"),
        ("contoso.sharepoint.com", "contoso.onmicrosoft.com"),
        ("contoso-admin.sharepoint.com", "contoso.onmicrosoft.com"),
        ("contoso.onmicrosoft.com", "contoso.onmicrosoft.com"),
        (
            "72f988bf-86f1-41af-91ab-2d7cd011db47",
            "72f988bf-86f1-41af-91ab-2d7cd011db47",
        ),
    ],
)
def test_normalize_tenant(typed, expected) -> None:
    assert normalize_tenant(typed) == expected


def test_authorization_url_contains_pkce_and_hint() -> None:
    url = _client().build_authorization_url(
        tenant_id="contoso.onmicrosoft.com",
        client_id="client-id",
        redirect_uri="http://localhost:18700/",
        scope="https://contoso.sharepoint.com/.default offline_access openid",
        code_challenge="challenge",
        state="state-1",
        login_hint="alice@contoso.com",
    )

    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert parsed.netloc == "login.microsoftonline.com"
    assert parsed.path == "/contoso.onmicrosoft.com/oauth2/v2.0/authorize"
    assert params["response_type"] == ["code"]
    assert params["code_challenge_method"] == ["S256"]
    assert params["code_challenge"] == ["challenge"]
    assert params["prompt"] == ["select_account"]
    assert params["login_hint"] == ["alice@contoso.com"]
    assert params["redirect_uri"] == ["http://localhost:18700/"]
    assert params["state"] == ["state-1"]


@pytest.mark.asyncio
async def test_exchange_posts_verifier_and_returns_tokens() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        assert request.url.path == "/organizations/oauth2/v2.0/token"
        return httpx.Response(
            200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 3599}
        )

    result = await _client(handler).exchange_authorization_code(
        tenant_id="organizations",
        client_id="client-id",
        code="the-code",
        redirect_uri="http://localhost:18700/",
        code_verifier="verifier",
        scope="scope",
    )

    assert result == ("at", "rt", 3599)
    assert seen[0]["grant_type"] == "authorization_code"
    assert seen[0]["code_verifier"] == "verifier"


@pytest.mark.asyncio
async def test_exchange_failure_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    with pytest.raises(AuthExchangeFailed):
        await _client(handler).exchange_authorization_code(
            tenant_id="organizations",
            client_id="client-id",
            code="bad",
            redirect_uri="http://localhost:18700/",
            code_verifier="verifier",
            scope="scope",
        )


@pytest.mark.asyncio
async def test_refresh_without_rotation_returns_none_refresh_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "at-2", "expires_in": 3600})

    result = await _client(handler).refresh_token(
        tenant_id="organizations", client_id="client-id", refresh_token="rt", scope="scope"
    )

    assert result == ("at-2", None, 3600)


@pytest.mark.asyncio
async def test_refresh_transport_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(AuthRefreshFailed):
        await _client(handler).refresh_token(
            tenant_id="organizations", client_id="client-id", refresh_token="rt", scope="scope"
        )


@pytest.mark.asyncio
async def test_non_numeric_lifetime_is_a_refresh_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "at", "expires_in": "soon"})

    with pytest.raises(AuthRefreshFailed, match="expires_in"):
        await _client(handler).refresh_token(
            tenant_id="organizations", client_id="client-id", refresh_token="rt", scope="scope"
        )
