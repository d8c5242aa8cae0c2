"""Single-use loopback listener for the OAuth redirect.

:class:`CallbackListener` binds ``127.0.0.1:<port>``, waits for the browser
to be redirected to ``/callback``, checks the ``state`` parameter against
the login session, answers with a small HTML page, and hands the
authorization code to an exchange coroutine. The listener then closes
itself; a watchdog closes it if no valid callback arrives in time.

Lifecycle::

    IDLE -> BOUND -> LISTENING -> ACCEPTED -> COMPLETED | ERRORED
    (any state) -> TIMED_OUT

Requests for other paths (a browser favicon request, for example) get a 404
and leave the listener running. The first request on the callback path
consumes the session: a ``state`` mismatch, a provider error, or a missing
code answers 400 and ends the attempt, and any other connection still open
at that point is closed without an answer.

The success page is written and flushed *before* the code exchange task is
created, so the browser shows success independently of token endpoint
latency.
"""

from __future__ import annotations

import asyncio
import html
import secrets
from enum import Enum
from typing import Awaitable, Callable, Optional

from nowplaying.auth.codec import HEADER_TERMINATOR, build_response, parse_request
from nowplaying.exceptions import (
    BindError,
    CSRFError,
    LoginTimeoutError,
    NetworkError,
    ProviderError,
)
from nowplaying.models import PKCESession, TokenSet
from nowplaying.output import debug, error, security, warning

CALLBACK_PATH = "/callback"
DEFAULT_TIMEOUT = 120.0
MAX_HEADER_BYTES = 16 * 1024

CodeExchange = Callable[[str], Awaitable[TokenSet]]

SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head><title>nowplaying</title>
<style>
  body { font-family: -apple-system, system-ui, sans-serif; display: flex;
         justify-content: center; align-items: center; min-height: 100vh;
         margin: 0; background: #121212; color: #fff; }
  .card { text-align: center; padding: 2rem; }
  h1 { color: #1DB954; margin-bottom: 0.5rem; }
  p { color: #b3b3b3; }
</style></head>
<body>
  <div class="card">
    <h1>Authenticated</h1>
    <p>You can close this tab and return to your terminal.</p>
  </div>
</body>
</html>
"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head><title>nowplaying - Error</title>
<style>
  body { font-family: -apple-system, system-ui, sans-serif; display: flex;
         justify-content: center; align-items: center; min-height: 100vh;
         margin: 0; background: #121212; color: #fff; }
  .card { text-align: center; padding: 2rem; }
  h1 { color: #e74c3c; }
  p { color: #b3b3b3; }
</style></head>
<body>
  <div class="card">
    <h1>Authentication Failed</h1>
    <p>{message}</p>
    <p>Please try again with <code>nowplaying auth login</code></p>
  </div>
</body>
</html>
"""


def error_page(message: str) -> str:
    """Render :data:`ERROR_HTML` with *message* HTML-escaped."""
    return ERROR_HTML.replace("{message}", html.escape(message))


class ListenerState(str, Enum):
    IDLE = "idle"
    BOUND = "bound"
    LISTENING = "listening"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"


class CallbackListener:
    """Receive exactly one OAuth redirect on a loopback port.

    Args:
        session: The PKCE session whose ``state`` the callback must echo.
        on_code: Coroutine function that exchanges the authorization code
            for a :class:`~nowplaying.models.TokenSet`.
        host: Interface to bind. Always loopback in practice.
        port: TCP port to bind; ``0`` picks a free port (tests).
        path: The callback path registered as the redirect URI.
        timeout: Seconds before the watchdog tears the listener down.

    Example::

        listener = CallbackListener(session, orchestrator.complete_login)
        await listener.start()
        tokens = await listener.wait()
    """

    def __init__(
        self,
        session: PKCESession,
        on_code: CodeExchange,
        host: str = "127.0.0.1",
        port: int = 48721,
        path: str = CALLBACK_PATH,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._session = session
        self._on_code = on_code
        self._host = host
        self._port = port
        self._path = path
        self._timeout = timeout

        self._state = ListenerState.IDLE
        self._server: Optional[asyncio.AbstractServer] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._result: Optional[asyncio.Future[TokenSet]] = None
        self._exchange_task: Optional[asyncio.Task[None]] = None
        self._closed = False

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def port(self) -> int:
        """The bound port (differs from the requested one when it was ``0``)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def finished(self) -> bool:
        """True once the attempt has a final outcome."""
        return self._result is not None and self._result.done()

    async def start(self) -> None:
        """Bind, start accepting connections, and arm the watchdog.

        Raises:
            BindError: If the port cannot be bound (e.g. already in use).
        """
        if self._state is not ListenerState.IDLE:
            raise RuntimeError(f"listener cannot start from state {self._state.value}")

        loop = asyncio.get_running_loop()
        try:
            self._server = await asyncio.start_server(
                self._handle_client, self._host, self._port, start_serving=False
            )
        except OSError as exc:
            self._state = ListenerState.ERRORED
            error(f"Failed to bind callback server on port {self._port}: {exc}")
            raise BindError(
                f"Failed to bind callback server on {self._host}:{self._port}: {exc}"
            ) from exc
        self._state = ListenerState.BOUND

        self._result = loop.create_future()
        await self._server.start_serving()
        self._state = ListenerState.LISTENING
        self._watchdog = loop.call_later(self._timeout, self._on_timeout)
        debug(f"Callback listener on http://{self._host}:{self.port}{self._path}")

    async def wait(self) -> TokenSet:
        """Wait for the outcome of the login attempt.

        Returns:
            The stored token set once the code exchange succeeds.

        Raises:
            CSRFError: The callback ``state`` did not match.
            ProviderError: Spotify reported an error or sent no code.
            LoginTimeoutError: No valid callback arrived in time.
            NetworkError: The callback connection failed.
        """
        if self._result is None:
            raise RuntimeError("listener was never started")
        return await self._result

    def close(self) -> None:
        """Abandon the attempt. Safe to call repeatedly and after completion."""
        self._teardown()
        if self._exchange_task is not None and not self._exchange_task.done():
            self._exchange_task.cancel()
        if self._result is not None and not self._result.done():
            self._result.cancel()

    # ------------------------------------------------------------------ #
    # Connection handling
    # ------------------------------------------------------------------ #

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            raw = await self._read_head(reader)
        except (ConnectionError, OSError) as exc:
            await self._close_writer(writer)
            if not self._closed:
                self._fail(NetworkError(f"Callback connection failed: {exc}"))
            return

        if self._closed:
            await self._close_writer(writer)
            return
        if raw is None:
            # Peer closed before sending a full header block.
            await self._close_writer(writer)
            return
        if len(raw) > MAX_HEADER_BYTES:
            await self._respond(writer, "400 Bad Request", "Request too large", "text/plain")
            return

        request = parse_request(raw)
        if request is None or request.path != self._path:
            await self._respond(writer, "404 Not Found", "Not found", "text/plain")
            return

        # Claim the session before the first await. Connections that finish
        # reading after this point are dropped unanswered.
        self._state = ListenerState.ACCEPTED
        self._teardown()
        params = request.params

        if not _same_state(params.get("state", ""), self._session.state):
            security("Spotify callback state mismatch: possible CSRF attack, login aborted.")
            await self._respond(
                writer, "400 Bad Request", error_page("State mismatch: possible CSRF attack.")
            )
            self._fail(CSRFError("OAuth state mismatch on callback; login aborted"))
            return

        if "error" in params:
            message = params.get("error_description") or params["error"]
            error(f"Spotify auth error: {message}")
            await self._respond(writer, "400 Bad Request", error_page(message))
            self._fail(ProviderError(message))
            return

        code = params.get("code")
        if not code:
            await self._respond(
                writer, "400 Bad Request", error_page("No authorization code received.")
            )
            self._fail(ProviderError("No authorization code received"))
            return

        await self._respond(writer, "200 OK", SUCCESS_HTML)
        if self.finished:
            # Abandoned by close() while the page was being written.
            return
        self._state = ListenerState.COMPLETED
        self._exchange_task = asyncio.create_task(self._exchange(code))

    async def _read_head(self, reader: asyncio.StreamReader) -> Optional[bytes]:
        """Accumulate bytes until the blank line ending the header block.

        Returns ``None`` on EOF before the terminator. Stops early once the
        buffer exceeds :data:`MAX_HEADER_BYTES`.
        """
        buf = b""
        while HEADER_TERMINATOR not in buf:
            if len(buf) > MAX_HEADER_BYTES:
                return buf
            chunk = await reader.read(4096)
            if not chunk:
                return None
            buf += chunk
        return buf

    async def _respond(
        self,
        writer: asyncio.StreamWriter,
        status_line: str,
        body: str,
        content_type: str = "text/html",
    ) -> None:
        writer.write(build_response(status_line, body, content_type))
        try:
            await writer.drain()
        except (ConnectionError, OSError) as exc:
            debug(f"Callback response not delivered: {exc}")
        await self._close_writer(writer)

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def _exchange(self, code: str) -> None:
        try:
            tokens = await self._on_code(code)
        except asyncio.CancelledError:
            if self._result is not None and not self._result.done():
                self._result.cancel()
            raise
        except Exception as exc:
            self._state = ListenerState.ERRORED
            self._set_exception(exc)
            return
        if self._result is not None and not self._result.done():
            self._result.set_result(tokens)

    # ------------------------------------------------------------------ #
    # Termination
    # ------------------------------------------------------------------ #

    def _on_timeout(self) -> None:
        self._watchdog = None
        if self.finished:
            return
        warning(f"Spotify auth timed out ({self._timeout:g}s)")
        self._state = ListenerState.TIMED_OUT
        self._teardown()
        self._set_exception(
            LoginTimeoutError(
                f"No Spotify callback received within {self._timeout:g} seconds"
            )
        )

    def _fail(self, exc: Exception) -> None:
        self._state = ListenerState.ERRORED
        self._teardown()
        self._set_exception(exc)

    def _set_exception(self, exc: BaseException) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_exception(exc)

    def _teardown(self) -> None:
        """Cancel the watchdog and stop accepting connections. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        if self._server is not None:
            self._server.close()


def _same_state(received: str, expected: str) -> bool:
    return secrets.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))
