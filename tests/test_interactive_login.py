try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
import socket
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from searchprobe.clients.entra_auth import AuthCancelled, AuthDenied, EntraOAuthClient
from searchprobe.clients.loopback import ListenerBindFailure, LoopbackRedirectListener
from searchprobe.core.config import AuthSettings
from searchprobe.services.interactive_login import InteractiveLoginService

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
SITE = "https://contoso.sharepoint.com/sites/hr"


def _settings(start: int = 38700, end: int = 38719) -> AuthSettings:
    return AuthSettings(
        SEARCHPROBE_REDIRECT_PORT_START=start,
        SEARCHPROBE_REDIRECT_PORT_END=end,
    )


def _token_endpoint(seen: list) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        return httpx.Response(
            200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 3600}
        )

    return httpx.MockTransport(handler)


class FakeBrowser:
    """Follows the authorize URL by hitting the loopback redirect directly."""

    def __init__(self, **redirect_params: str) -> None:
        self.redirect_params = redirect_params
        self.urls: list[str] = []
        self.responses: list[httpx.Response] = []
        self.tasks: list[asyncio.Task] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        self.tasks.append(asyncio.get_running_loop().create_task(self._follow(url)))
        return True

    @property
    def redirect_uri(self) -> str:
        return parse_qs(urlparse(self.urls[0]).query)["redirect_uri"][0]

    async def _follow(self, url: str) -> None:
        params = parse_qs(urlparse(url).query)
        query = dict(self.redirect_params)
        query.setdefault("state", params["state"][0])
        target = params["redirect_uri"][0]
        async with httpx.AsyncClient() as client:
            self.responses.append(await client.get(f"{target}?{urlencode(query)}"))


class SilentBrowser:
    def __init__(self) -> None:
        self.urls: list[str] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        return True


@pytest.mark.anyio
async def test_login_exchanges_code_with_matching_verifier() -> None:
    seen: list[dict] = []
    oauth = EntraOAuthClient(_settings(), transport=_token_endpoint(seen))
    browser = FakeBrowser(code="auth-code")
    service = InteractiveLoginService(oauth, _settings(), open_browser=browser, clock=lambda: NOW)

    record = await service.login(
        client_id="client-id",
        tenant_id="contoso.onmicrosoft.com",
        resource_hint=SITE,
        login_hint="alice@contoso.com",
        timeout=10,
    )
    await asyncio.gather(*browser.tasks)

    assert record.access_token == "at"
    assert record.refresh_token == "rt"
    assert record.expires_on == NOW + timedelta(seconds=3600)
    assert record.scope == "https://contoso.sharepoint.com/.default offline_access openid"
    assert record.tenant_id == "contoso.onmicrosoft.com"
    assert seen[0]["code"] == "auth-code"
    assert seen[0]["redirect_uri"] == browser.redirect_uri
    assert browser.redirect_uri.startswith("http://127.0.0.1:")
    assert browser.responses[0].status_code == 200
    assert "Login successful" in browser.responses[0].text
    assert parse_qs(urlparse(browser.urls[0]).query)["login_hint"] == ["alice@contoso.com"]


@pytest.mark.anyio
async def test_login_error_redirect_raises_denied_without_exchange() -> None:
    seen: list[dict] = []
    oauth = EntraOAuthClient(_settings(), transport=_token_endpoint(seen))
    browser = FakeBrowser(error="access_denied", error_description="<b>User declined</b>")
    service = InteractiveLoginService(oauth, _settings(), open_browser=browser)

    with pytest.raises(AuthDenied, match="User declined"):
        await service.login(client_id="client-id", tenant_id="organizations", resource_hint=SITE, timeout=10)
    await asyncio.gather(*browser.tasks)

    assert seen == []
    assert "&lt;b&gt;User declined&lt;/b&gt;" in browser.responses[0].text


@pytest.mark.anyio
async def test_login_state_mismatch_is_denied() -> None:
    seen: list[dict] = []
    oauth = EntraOAuthClient(_settings(), transport=_token_endpoint(seen))
    browser = FakeBrowser(code="auth-code", state="forged")
    service = InteractiveLoginService(oauth, _settings(), open_browser=browser)

    with pytest.raises(AuthDenied, match="state"):
        await service.login(client_id="client-id", tenant_id="organizations", resource_hint=SITE, timeout=10)
    await asyncio.gather(*browser.tasks)

    assert seen == []


@pytest.mark.anyio
async def test_login_timeout_cancels_and_releases_port() -> None:
    oauth = EntraOAuthClient(_settings())
    browser = SilentBrowser()
    service = InteractiveLoginService(oauth, _settings(), open_browser=browser)

    with pytest.raises(AuthCancelled):
        await service.login(client_id="client-id", tenant_id="organizations", resource_hint=SITE, timeout=0.3)

    redirect_uri = parse_qs(urlparse(browser.urls[0]).query)["redirect_uri"][0]
    port = urlparse(redirect_uri).port
    async with LoopbackRedirectListener(port, port) as listener:
        assert listener.port == port


@pytest.mark.anyio
async def test_cancelling_login_task_releases_port() -> None:
    oauth = EntraOAuthClient(_settings())
    browser = SilentBrowser()
    service = InteractiveLoginService(oauth, _settings(), open_browser=browser)

    task = asyncio.create_task(
        service.login(client_id="client-id", tenant_id="organizations", resource_hint=SITE, timeout=30)
    )
    while not browser.urls:
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    port = urlparse(parse_qs(urlparse(browser.urls[0]).query)["redirect_uri"][0]).port
    async with LoopbackRedirectListener(port, port) as listener:
        assert listener.port == port


@pytest.mark.anyio
async def test_listener_skips_busy_ports_and_fails_when_range_exhausted() -> None:
    blockers = []
    try:
        for port in (38730, 38731):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.bind(("127.0.0.1", port))
            sock.listen(1)
            blockers.append(sock)

        with pytest.raises(ListenerBindFailure):
            async with LoopbackRedirectListener(38730, 38731):
                pass

        async with LoopbackRedirectListener(38730, 38732) as listener:
            assert listener.port == 38732
            assert listener.redirect_uri == "http://127.0.0.1:38732/"
    finally:
        for sock in blockers:
            sock.close()


@pytest.mark.anyio
async def test_listener_rejects_requests_without_redirect_parameters() -> None:
    async with LoopbackRedirectListener(38740, 38749) as listener:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"http://127.0.0.1:{listener.port}/favicon-check")
            root = await client.get(f"http://127.0.0.1:{listener.port}/")

        assert response.status_code == 404
        assert root.status_code == 400
        with pytest.raises(asyncio.TimeoutError):
            await listener.wait_for_redirect(0.05)
