"""Single-use loopback HTTP endpoint that captures the OAuth browser redirect."""

from __future__ import annotations

import asyncio
import html
import logging
import socket
from dataclasses import dataclass
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

logger = logging.getLogger(__name__)

_SUCCESS_PAGE = (
    "<html><body><h2>Login successful!</h2>"
    "<p>You can close this tab.</p></body></html>"
)
_FAILURE_PAGE = "<html><body><h2>Login failed</h2><p>{detail}</p></body></html>"
_UNEXPECTED_PAGE = (
    "<html><body><h2>Waiting for sign-in</h2>"
    "<p>This address only accepts the sign-in redirect.</p></body></html>"
)


class ListenerBindFailure(RuntimeError):
    """No port in the configured redirect range could be bound."""


@dataclass(frozen=True)
class RedirectCapture:
    """Query parameters of the redirect the identity provider sent back."""

    code: Optional[str]
    state: Optional[str]
    error: Optional[str]
    error_description: Optional[str]


def _bind_first_free(host: str, port_start: int, port_end: int) -> socket.socket:
    for port in range(port_start, port_end + 1):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            sock.listen(8)
        except OSError:
            sock.close()
            continue
        sock.setblocking(False)
        return sock
    raise ListenerBindFailure(
        f"Could not find an available port for the OAuth listener in {port_start}-{port_end}."
    )


class LoopbackRedirectListener:
    """Serve ``GET /`` on the first free loopback port until one redirect arrives.

    Use as an async context manager; leaving the block always shuts the server
    down and releases the port, whatever happened inside.
    """

    HOST = "127.0.0.1"

    def __init__(self, port_start: int, port_end: int) -> None:
        self._port_start = port_start
        self._port_end = port_end
        self._sock: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._capture: Optional[asyncio.Future] = None

    @property
    def port(self) -> int:
        if self._sock is None:
            raise RuntimeError("Listener is not bound")
        return self._sock.getsockname()[1]

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.HOST}:{self.port}/"

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.get("/", response_class=HTMLResponse)
        async def capture_redirect(request: Request) -> HTMLResponse:
            params = request.query_params
            if not any(name in params for name in ("code", "error", "error_description")):
                return HTMLResponse(_UNEXPECTED_PAGE, status_code=400)

            capture = RedirectCapture(
                code=params.get("code") or None,
                state=params.get("state"),
                error=params.get("error"),
                error_description=params.get("error_description"),
            )
            if self._capture is not None and not self._capture.done():
                self._capture.set_result(capture)
            if capture.code:
                return HTMLResponse(_SUCCESS_PAGE)
            detail = capture.error_description or capture.error or "Unknown error"
            return HTMLResponse(_FAILURE_PAGE.format(detail=html.escape(detail)))

        return app

    async def start(self) -> None:
        self._sock = _bind_first_free(self.HOST, self._port_start, self._port_end)
        self._capture = asyncio.get_running_loop().create_future()
        config = uvicorn.Config(
            self._build_app(),
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._sock]))
        try:
            while not self._server.started:
                if self._serve_task.done():
                    raise ListenerBindFailure("OAuth listener failed to start.")
                await asyncio.sleep(0.01)
        except BaseException:
            await self.close()
            raise
        logger.debug("OAuth redirect listener ready on port %s", self.port)

    async def wait_for_redirect(self, timeout: float) -> RedirectCapture:
        """Block until a redirect is captured; ``asyncio.TimeoutError`` otherwise."""
        if self._capture is None:
            raise RuntimeError("Listener is not started")
        return await asyncio.wait_for(asyncio.shield(self._capture), timeout)

    async def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        task, self._serve_task = self._serve_task, None
        if task is not None:
            try:
                await asyncio.shield(task)
            except Exception:
                logger.warning("OAuth listener shut down uncleanly", exc_info=True)
        if self._server is not None:
            for server in getattr(self._server, "servers", []):
                server.close()
        if self._sock is not None:
            self._sock.close()
        if self._capture is not None and not self._capture.done():
            self._capture.cancel()

    async def __aenter__(self) -> "LoopbackRedirectListener":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


__all__ = ["ListenerBindFailure", "LoopbackRedirectListener", "RedirectCapture"]
