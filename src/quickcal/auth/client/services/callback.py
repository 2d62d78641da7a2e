"""Transient loopback listener that captures one authorization callback.

The listener is bound to an ephemeral port before the browser is opened, so
the redirect URI is known up front. It hands the first complete callback to
the waiting flow and then shuts itself down.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response
from starlette.routing import Route

from quickcal.auth.client.models.flow import AuthorizationResponse
from quickcal.auth.config import DEFAULT_SHUTDOWN_GRACE_SECONDS

logger = logging.getLogger(__name__)

CONFIRMATION_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>QuickCal</title>
</head>
<body style="font-family: sans-serif; text-align: center; margin-top: 4em;">
  <h1>Authentication finished</h1>
  <p>You can close this window and return to QuickCal.</p>
</body>
</html>
"""


class CallbackServer:
    """Serves ``GET <callback_path>?code=...&state=...`` exactly once.

    Lifecycle: ``bind()`` -> ``start()`` -> ``wait_for_callback()`` ->
    ``close()``. ``close()`` must run on every path; it is idempotent and
    returns only after the listening socket is released.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        callback_path: str = "/callback",
        shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
        shutdown_timeout: float = 5.0,
    ) -> None:
        self.host = host
        self.callback_path = callback_path
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.shutdown_timeout = shutdown_timeout

        self._socket: socket.socket | None = None
        self._port: int | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._result: asyncio.Future[AuthorizationResponse] | None = None
        self._closed = False

        self._app = Starlette(
            routes=[Route(callback_path, self._handle_callback, methods=["GET"])]
        )

    @property
    def port(self) -> int:
        if self._port is None:
            raise RuntimeError("Callback server is not bound")
        return self._port

    @property
    def redirect_uri(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}{self.callback_path}"

    @property
    def is_listening(self) -> bool:
        return self._socket is not None and self._socket.fileno() != -1

    def bind(self) -> str:
        """Bind the listening socket to an ephemeral port.

        Returns:
            The redirect URI served by this listener
        """
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.bind((self.host, 0))
            sock.listen()
        except OSError:
            sock.close()
            raise
        self._socket = sock
        self._port = sock.getsockname()[1]
        logger.debug(f"Callback listener bound to {self.redirect_uri}")
        return self.redirect_uri

    async def start(self) -> None:
        """Start serving the bound socket in a background task."""
        if self._socket is None:
            self.bind()

        self._result = asyncio.get_running_loop().create_future()
        config = uvicorn.Config(
            app=self._app,
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=[self._socket])
        )
        logger.debug(f"Callback server started on port {self.port}")

    async def wait_for_callback(self) -> AuthorizationResponse:
        """Wait for the first complete callback.

        Cancelling the waiter leaves the handoff intact.
        """
        if self._result is None:
            raise RuntimeError("Callback server is not started")
        return await asyncio.shield(self._result)

    async def close(self) -> None:
        """Shut down the listener and release the socket.

        Signals shutdown, lets the in-flight response flush for the grace
        delay, then waits (bounded) for the server task to finish and forces it
        down if it does not.
        """
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.should_exit = True

        await asyncio.sleep(self.shutdown_grace_seconds)

        if self._serve_task is not None:
            done, _ = await asyncio.wait(
                {self._serve_task}, timeout=self.shutdown_timeout
            )
            if not done:
                logger.warning("Callback server did not stop in time, forcing close")
                if self._server is not None:
                    self._server.force_exit = True
                self._serve_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._serve_task
            elif not self._serve_task.cancelled():
                error = self._serve_task.exception()
                if error is not None:
                    logger.error(f"Callback server stopped with error: {error}")

        if self._socket is not None:
            self._socket.close()

        if self._result is not None and not self._result.done():
            self._result.cancel()

        logger.debug("Callback server closed")

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        code = params.get("code")
        state = params.get("state")
        error = params.get("error")

        if not ((code and state) or error):
            logger.warning("Callback request missing code or state parameter")
            return PlainTextResponse(
                "Missing code or state parameter", status_code=400
            )

        if self._result is not None and not self._result.done():
            self._result.set_result(
                AuthorizationResponse(
                    code=code,
                    state=state,
                    error=error,
                    error_description=params.get("error_description"),
                    error_uri=params.get("error_uri"),
                )
            )
            logger.info("Received authorization callback")
            if self._server is not None:
                self._server.should_exit = True
        else:
            logger.debug("Ignoring repeated authorization callback")

        return HTMLResponse(CONFIRMATION_PAGE)
