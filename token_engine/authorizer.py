"""
Interactive authorization: hand the start URL to a browser and wait for the provider redirect.

InteractiveAuthorizer is the capability the engine depends on; it is used as an
async context manager so any native resource it owns is released on every exit.
LoopbackAuthorizer serves a tiny FastAPI app on 127.0.0.1 that catches the
redirect and opens the system browser at the start URL.
"""
import asyncio
import enum
import html
import logging
import socket
import webbrowser
from dataclasses import dataclass
from typing import Callable, Protocol

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

logger = logging.getLogger(__name__)


class NavigationStatus(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class NavigationResult:
    status: NavigationStatus
    redirect_url: str | None = None

    @classmethod
    def completed(cls, redirect_url: str) -> "NavigationResult":
        return cls(NavigationStatus.COMPLETED, redirect_url)

    @classmethod
    def cancelled(cls) -> "NavigationResult":
        return cls(NavigationStatus.CANCELLED)


class InteractiveAuthorizer(Protocol):
    async def __aenter__(self) -> "InteractiveAuthorizer": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def navigate(self, start_url: str, cancel_event: asyncio.Event) -> NavigationResult: ...


class AuthorizationSession:
    """
    Cancellation scope for one interactive attempt.
    cancel() (or the optional timeout) sets cancel_event; the authorizer stops waiting.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self.cancel_event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    async def __aenter__(self) -> "AuthorizationSession":
        if self.timeout:
            self._timer = asyncio.get_running_loop().call_later(self.timeout, self.cancel)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


_DONE_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
  <h1>{title}</h1>
  <p>{message}</p>
</body>
</html>"""


class LoopbackAuthorizer:
    """
    Catches the provider redirect on http://{host}:{port}{callback_path}.
    The first callback wins; later ones get a page but do not change the result.
    """

    def __init__(
        self,
        port: int,
        *,
        host: str = "127.0.0.1",
        callback_path: str = "/callback",
        open_browser: Callable[[str], object] = webbrowser.open,
    ):
        self.host = host
        self.port = port
        self.callback_path = callback_path
        self._open_browser = open_browser
        self._result: asyncio.Future | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._socket: socket.socket | None = None
        self.app = self.build_app()

    def build_app(self) -> FastAPI:
        app = FastAPI(title="Token engine loopback", docs_url=None, redoc_url=None, openapi_url=None)

        @app.get(self.callback_path, response_class=HTMLResponse)
        async def callback(request: Request):
            """Record the full redirect URL; token exchange happens in the engine."""
            if self._result is not None and not self._result.done():
                self._result.set_result(str(request.url))
            error = request.query_params.get("error")
            if error:
                msg = request.query_params.get("error_description") or error
                return HTMLResponse(
                    _DONE_PAGE.format(title="Sign-in failed", message=html.escape(msg)),
                    status_code=400,
                )
            return HTMLResponse(
                _DONE_PAGE.format(title="Sign-in complete", message="You can close this window.")
            )

        return app

    def _bind(self) -> socket.socket:
        # Bind here so a busy port surfaces as OSError instead of uvicorn exiting the process
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        return sock

    async def __aenter__(self) -> "LoopbackAuthorizer":
        self._result = asyncio.get_running_loop().create_future()
        self._socket = self._bind()
        config = uvicorn.Config(self.app, log_level="warning", lifespan="off")
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))
        while not self._server.started:
            if self._serve_task.done():
                self._serve_task.result()
                break
            await asyncio.sleep(0.01)
        logger.debug("Loopback redirect listener on %s:%s", self.host, self.port)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._server is not None:
                self._server.should_exit = True
            if self._serve_task is not None:
                await self._serve_task
        finally:
            if self._socket is not None:
                self._socket.close()
            if self._result is not None and not self._result.done():
                self._result.cancel()
            self._server = None
            self._serve_task = None
            self._socket = None

    async def navigate(self, start_url: str, cancel_event: asyncio.Event) -> NavigationResult:
        if self._result is None:
            raise RuntimeError("LoopbackAuthorizer must be entered with 'async with' before navigate()")
        try:
            await asyncio.to_thread(self._open_browser, start_url)
        except Exception as e:
            logger.warning("Failed to open browser automatically: %s. Open the sign-in URL manually.", e)

        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({self._result, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if self._result in done:
            return NavigationResult.completed(self._result.result())
        logger.info("Interactive authorization cancelled before the redirect arrived")
        return NavigationResult.cancelled()
