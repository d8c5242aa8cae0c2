"""Spotify login, token exchange, refresh, and the ``ensure_token`` chokepoint.

:class:`AuthOrchestrator` sequences the Authorization Code + PKCE flow
(:rfc:`7636`):

1. Generates a :class:`~nowplaying.models.PKCESession`.
2. Starts a :class:`~nowplaying.auth.listener.CallbackListener` on the
   loopback redirect port.
3. Opens the authorization URL in the user's browser.
4. When the redirect arrives, exchanges the code for tokens and persists
   them via :class:`~nowplaying.auth.token_store.TokenStore`.

Every Web API call goes through :meth:`AuthOrchestrator.ensure_token`,
which refreshes an expired access token before handing it out and never
returns a stale one.

Only one login may be in flight per orchestrator; a second :meth:`login`
while the first listener is still waiting raises :class:`AuthError`.
"""

from __future__ import annotations

import asyncio
import webbrowser
from typing import Any, Callable, Optional

import httpx

from nowplaying.auth.codec import encode_query
from nowplaying.auth.listener import CALLBACK_PATH, CallbackListener
from nowplaying.auth.pkce import new_session
from nowplaying.auth.token_store import TokenStore
from nowplaying.config import resolve_client_id
from nowplaying.exceptions import (
    AuthError,
    ConfigError,
    NetworkError,
    ParseError,
    ProviderError,
)
from nowplaying.models import PKCESession, Settings, TokenSet
from nowplaying.output import debug, error, info, success

AUTH_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"
SCOPES = "user-read-playback-state user-modify-playback-state"

LOGIN_HINT = "run `nowplaying auth login`"


class AuthOrchestrator:
    """Own the Spotify OAuth lifecycle for one local account.

    Args:
        store: The token store shared with every consumer of tokens.
        settings: User settings (client id override, redirect port, timeouts).
        http_client: Optional pre-built :class:`httpx.AsyncClient` used for
            token endpoint calls. When ``None`` a short-lived client is
            created per call.
        open_url: Browser launcher; defaults to :func:`webbrowser.open`.
    """

    def __init__(
        self,
        store: TokenStore,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        open_url: Callable[[str], Any] = webbrowser.open,
    ) -> None:
        self._store = store
        self._settings = settings or Settings()
        self._http_client = http_client
        self._open_url = open_url
        self._listener: Optional[CallbackListener] = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def redirect_uri(self) -> str:
        return f"http://127.0.0.1:{self._settings.redirect_port}{CALLBACK_PATH}"

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    def client_id(self) -> str:
        """Return the configured client id.

        Raises:
            ConfigError: If no client id is configured.
        """
        client_id = resolve_client_id(self._settings)
        if not client_id:
            raise ConfigError(
                "Spotify client_id not configured. Set NOWPLAYING_SPOTIFY_CLIENT_ID "
                "or run `nowplaying config set-client-id <id>`."
            )
        return client_id

    def build_authorize_url(self, session: PKCESession) -> str:
        """Build the authorization URL with deterministically ordered parameters."""
        params = {
            "client_id": self.client_id(),
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": SCOPES,
            "code_challenge_method": "S256",
            "code_challenge": session.code_challenge,
            "state": session.state,
        }
        return f"{AUTH_URL}?{encode_query(params)}"

    async def login(self) -> CallbackListener:
        """Start the browser login and return the running listener.

        Returns immediately after the listener is accepting connections and
        the browser launch has been scheduled. Await
        :meth:`CallbackListener.wait` for the outcome.

        Raises:
            ConfigError: If no client id is configured.
            AuthError: If a previous login is still waiting for its callback.
            BindError: If the redirect port is already in use.
        """
        client_id = self.client_id()
        if self._listener is not None and not self._listener.finished:
            raise AuthError("A Spotify login is already in progress")

        session = new_session()
        auth_url = self.build_authorize_url(session)

        async def complete(code: str) -> TokenSet:
            return await self._complete_login(code, session.code_verifier)

        listener = CallbackListener(
            session,
            complete,
            port=self._settings.redirect_port,
            timeout=self._settings.login_timeout,
        )
        await listener.start()
        self._listener = listener

        debug(f"Authorize URL for client {client_id[:8]}...: {auth_url}")
        self._spawn(self._launch_browser(auth_url))
        info("Opening browser for Spotify login...")
        return listener

    async def _launch_browser(self, url: str) -> None:
        try:
            opened = await asyncio.to_thread(self._open_url, url)
        except (webbrowser.Error, OSError) as exc:
            debug(f"Browser launch failed: {exc}")
            opened = False
        if opened is False:
            info(f"Could not open a browser. Visit this URL to log in:\n{url}")

    async def _complete_login(self, code: str, verifier: str) -> TokenSet:
        try:
            data = await self.exchange_code(code, verifier)
        except Exception as exc:
            error(f"Token exchange failed: {exc}")
            raise
        if not self._store.store(data):
            raise AuthError("Spotify login succeeded but the tokens could not be saved")
        tokens = self._store.get()
        assert tokens is not None  # store() succeeded
        success("Spotify authentication successful!")
        return tokens

    # ------------------------------------------------------------------ #
    # Token endpoint
    # ------------------------------------------------------------------ #

    async def exchange_code(self, code: str, verifier: str) -> dict[str, Any]:
        """Exchange an authorization code for access and refresh tokens.

        Raises:
            NetworkError: If the token endpoint cannot be reached.
            ParseError: If the response body is not a JSON object.
            ProviderError: If the response carries an ``error`` field.
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id(),
            "code_verifier": verifier,
        }
        return await self._post_token(form, "token exchange")

    async def refresh_token(self) -> TokenSet:
        """Refresh the access token with the stored refresh token.

        A response without ``refresh_token`` keeps the stored one.

        Raises:
            AuthError: If no refresh token is stored or the new tokens
                cannot be persisted.
            NetworkError, ParseError, ProviderError: On endpoint failures.
        """
        refresh_token = self._store.refresh_token()
        if not refresh_token:
            raise AuthError(f"no refresh token available; {LOGIN_HINT}")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id(),
        }
        data = await self._post_token(form, "refresh")
        if not self._store.store(data):
            raise AuthError("Refreshed Spotify tokens could not be saved")
        debug(f"Access token refreshed (expires in {data.get('expires_in', '?')}s)")
        tokens = self._store.get()
        assert tokens is not None
        return tokens

    async def _post_token(self, form: dict[str, str], label: str) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    TOKEN_URL, content=encode_query(form), headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._settings.request.timeout) as client:
                    response = await client.post(
                        TOKEN_URL, content=encode_query(form), headers=headers
                    )
        except httpx.HTTPError as exc:
            raise NetworkError(f"{label} request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ParseError(f"failed to parse {label} response") from exc
        if not isinstance(data, dict):
            raise ParseError(f"failed to parse {label} response")

        if data.get("error"):
            message = data.get("error_description") or data["error"]
            raise ProviderError(
                str(message), status=response.status_code, reason=str(data["error"])
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"{label} failed with HTTP {response.status_code}",
                status=response.status_code,
            )
        if not data.get("access_token"):
            raise ParseError(f"{label} response missing 'access_token' field")
        return data

    # ------------------------------------------------------------------ #
    # Token access
    # ------------------------------------------------------------------ #

    async def ensure_token(self) -> str:
        """Return a valid access token, refreshing an expired one first.

        Raises:
            AuthError: If there are no tokens or the refresh cannot produce a
                valid token. The message includes a re-login hint.
            NetworkError, ParseError, ProviderError: If the refresh request fails.
        """
        if not self._store.has_tokens():
            raise AuthError(f"not authenticated; {LOGIN_HINT}")

        if self._store.is_expired():
            debug("Access token expired, refreshing...")
            await self.refresh_token()
            if self._store.is_expired():
                raise AuthError(f"token refresh returned an expired token; {LOGIN_HINT}")

        token = self._store.access_token()
        if not token:
            raise AuthError(f"not authenticated; {LOGIN_HINT}")
        return token

    def is_authenticated(self) -> bool:
        return self._store.has_tokens()

    def status(self) -> Optional[TokenSet]:
        """The stored token set, for display. ``None`` when logged out."""
        return self._store.get() if self._store.has_tokens() else None

    def logout(self) -> None:
        """Forget the stored tokens and abandon any pending login."""
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        self._store.clear()
        info("Spotify tokens cleared")

    # ------------------------------------------------------------------ #
    # Background tasks
    # ------------------------------------------------------------------ #

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        """Run *coro* as a detached task that is kept referenced until done."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
