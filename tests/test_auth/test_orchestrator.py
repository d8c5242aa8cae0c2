"""Tests for the Spotify auth orchestrator.

Token endpoint traffic is served by :class:`httpx.MockTransport`; the
browser launcher is replaced by a recording callable, and the login tests
drive the real loopback listener on an ephemeral port.
"""

from __future__ import annotations

import asyncio
import json
import webbrowser
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from nowplaying.auth.orchestrator import AUTH_URL, SCOPES, TOKEN_URL, AuthOrchestrator
from nowplaying.auth.token_store import TokenStore
from nowplaying.exceptions import (
    AuthError,
    ConfigError,
    NetworkError,
    ParseError,
    ProviderError,
)
from nowplaying.models import Settings


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def token_handler(
    payload: Any, status: int = 200, seen: list[httpx.Request] | None = None
) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload)

    return handler


def form_of(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class RecordingBrowser:
    def __init__(self, result: Any = True, raises: Optional[Exception] = None) -> None:
        self.urls: list[str] = []
        self.result = result
        self.raises = raises

    def __call__(self, url: str) -> Any:
        self.urls.append(url)
        if self.raises is not None:
            raise self.raises
        return self.result


@pytest.fixture
def browser() -> RecordingBrowser:
    return RecordingBrowser()


@pytest.fixture
def make_auth(
    store: TokenStore,
    settings: Settings,
    browser: RecordingBrowser,
    make_http_client: Any,
) -> Callable[..., AuthOrchestrator]:
    def _make(handler: Callable[[httpx.Request], httpx.Response] | None = None) -> AuthOrchestrator:
        client = make_http_client(handler) if handler is not None else None
        return AuthOrchestrator(store, settings, http_client=client, open_url=browser)

    return _make


# ---------------------------------------------------------------------------
# Client id and authorize URL
# ---------------------------------------------------------------------------


class TestAuthorizeUrl:
    def test_missing_client_id_raises(
        self, store: TokenStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("NOWPLAYING_SPOTIFY_CLIENT_ID", raising=False)
        auth = AuthOrchestrator(store, Settings())
        with pytest.raises(ConfigError):
            auth.client_id()

    def test_env_overrides_settings(
        self, make_auth: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("NOWPLAYING_SPOTIFY_CLIENT_ID", "from-env")
        assert make_auth().client_id() == "from-env"

    def test_url_parameters(self, make_auth: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        from nowplaying.auth.pkce import new_session

        monkeypatch.delenv("NOWPLAYING_SPOTIFY_CLIENT_ID", raising=False)
        session = new_session()
        auth = make_auth()
        url = auth.build_authorize_url(session)

        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == AUTH_URL
        params = {k: v[0] for k, v in parse_qs(parts.query).items()}
        assert params == {
            "client_id": "test-client-id",
            "code_challenge": session.code_challenge,
            "code_challenge_method": "S256",
            "redirect_uri": auth.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "state": session.state,
        }

    def test_url_keys_sorted_and_rfc3986(
        self, make_auth: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from nowplaying.auth.pkce import new_session

        monkeypatch.delenv("NOWPLAYING_SPOTIFY_CLIENT_ID", raising=False)
        query = urlsplit(make_auth().build_authorize_url(new_session())).query
        keys = [pair.split("=", 1)[0] for pair in query.split("&")]
        assert keys == sorted(keys)
        assert "+" not in query
        assert "scope=user-read-playback-state%20user-modify-playback-state" in query

    def test_redirect_uri_uses_configured_port(self, store: TokenStore) -> None:
        auth = AuthOrchestrator(store, Settings(client_id="x", redirect_port=48721))
        assert auth.redirect_uri == "http://127.0.0.1:48721/callback"


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestExchange:
    async def test_exchange_posts_form(self, make_auth: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NOWPLAYING_SPOTIFY_CLIENT_ID", raising=False)
        seen: list[httpx.Request] = []
        auth = make_auth(token_handler({"access_token": "A", "expires_in": 3600}, seen=seen))

        data = await auth.exchange_code("the-code", "the-verifier")

        assert data["access_token"] == "A"
        request = seen[0]
        assert str(request.url) == TOKEN_URL
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert form_of(request) == {
            "client_id": "test-client-id",
            "code": "the-code",
            "code_verifier": "the-verifier",
            "grant_type": "authorization_code",
            "redirect_uri": auth.redirect_uri,
        }

    async def test_error_payload_raises_provider_error(self, make_auth: Any) -> None:
        payload = {"error": "invalid_grant", "error_description": "Invalid authorization code"}
        auth = make_auth(token_handler(payload, status=400))
        with pytest.raises(ProviderError, match="Invalid authorization code") as info:
            await auth.exchange_code("bad", "v")
        assert info.value.status == 400
        assert info.value.reason == "invalid_grant"

    async def test_error_without_description(self, make_auth: Any) -> None:
        auth = make_auth(token_handler({"error": "invalid_client"}, status=400))
        with pytest.raises(ProviderError, match="invalid_client"):
            await auth.exchange_code("bad", "v")

    async def test_http_error_status_without_error_field(self, make_auth: Any) -> None:
        auth = make_auth(token_handler({"detail": "boom"}, status=500))
        with pytest.raises(ProviderError) as info:
            await auth.exchange_code("c", "v")
        assert info.value.status == 500

    async def test_non_json_body(self, make_auth: Any) -> None:
        auth = make_auth(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ParseError):
            await auth.exchange_code("c", "v")

    async def test_non_object_body(self, make_auth: Any) -> None:
        auth = make_auth(token_handler(["not", "an", "object"]))
        with pytest.raises(ParseError):
            await auth.exchange_code("c", "v")

    async def test_missing_access_token(self, make_auth: Any) -> None:
        auth = make_auth(token_handler({"token_type": "Bearer"}))
        with pytest.raises(ParseError):
            await auth.exchange_code("c", "v")

    async def test_transport_error(self, make_auth: Any) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        auth = make_auth(handler)
        with pytest.raises(NetworkError):
            await auth.exchange_code("c", "v")


@pytest.mark.asyncio
class TestRefresh:
    async def test_refresh_keeps_old_refresh_token(
        self, make_auth: Any, store: TokenStore, quiet_output: Any
    ) -> None:
        store.store({"access_token": "old", "refresh_token": "R1", "expires_in": 0})
        seen: list[httpx.Request] = []
        auth = make_auth(token_handler({"access_token": "new", "expires_in": 3600}, seen=seen))

        tokens = await auth.refresh_token()

        assert tokens.access_token == "new"
        assert tokens.refresh_token == "R1"
        assert store.refresh_token() == "R1"
        assert form_of(seen[0]) == {
            "client_id": "test-client-id",
            "grant_type": "refresh_token",
            "refresh_token": "R1",
        }

    async def test_refresh_rotates_refresh_token(
        self, make_auth: Any, store: TokenStore, quiet_output: Any
    ) -> None:
        store.store({"access_token": "old", "refresh_token": "R1", "expires_in": 0})
        auth = make_auth(token_handler({"access_token": "new", "refresh_token": "R2"}))
        await auth.refresh_token()
        assert store.refresh_token() == "R2"

    async def test_no_refresh_token(self, make_auth: Any, store: TokenStore) -> None:
        calls: list[httpx.Request] = []
        store.store({"access_token": "old", "expires_in": 0})
        auth = make_auth(token_handler({}, seen=calls))
        with pytest.raises(AuthError, match="no refresh token available"):
            await auth.refresh_token()
        assert calls == []

    async def test_refresh_error_leaves_store_unchanged(
        self, make_auth: Any, store: TokenStore
    ) -> None:
        store.store({"access_token": "old", "refresh_token": "R1", "expires_in": 0})
        auth = make_auth(token_handler({"error": "invalid_grant"}, status=400))
        with pytest.raises(ProviderError):
            await auth.refresh_token()
        assert store.access_token() == "old"

    async def test_unsaved_tokens_raise(
        self, make_auth: Any, store: TokenStore, monkeypatch: pytest.MonkeyPatch, quiet_output: Any
    ) -> None:
        store.store({"access_token": "old", "refresh_token": "R1", "expires_in": 0})
        auth = make_auth(token_handler({"access_token": "new"}))
        monkeypatch.setattr(store, "store", lambda data: False)
        with pytest.raises(AuthError, match="could not be saved"):
            await auth.refresh_token()


# ---------------------------------------------------------------------------
# ensure_token
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestEnsureToken:
    async def test_no_tokens(self, make_auth: Any) -> None:
        with pytest.raises(AuthError, match="nowplaying auth login"):
            await make_auth().ensure_token()

    async def test_valid_token_returned_without_network(
        self, make_auth: Any, store: TokenStore
    ) -> None:
        calls: list[httpx.Request] = []
        store.store({"access_token": "fresh", "refresh_token": "R", "expires_in": 3600})
        auth = make_auth(token_handler({}, seen=calls))
        assert await auth.ensure_token() == "fresh"
        assert calls == []

    async def test_expired_token_refreshed(
        self, make_auth: Any, store: TokenStore, quiet_output: Any
    ) -> None:
        store.store({"access_token": "stale", "refresh_token": "R", "expires_in": 0})
        auth = make_auth(token_handler({"access_token": "fresh", "expires_in": 3600}))
        assert await auth.ensure_token() == "fresh"
        assert store.is_expired() is False

    async def test_refresh_returning_expired_token(
        self, make_auth: Any, store: TokenStore, quiet_output: Any
    ) -> None:
        store.store({"access_token": "stale", "refresh_token": "R", "expires_in": 0})
        auth = make_auth(token_handler({"access_token": "still-stale", "expires_in": 0}))
        with pytest.raises(AuthError):
            await auth.ensure_token()

    async def test_expired_without_refresh_token(
        self, make_auth: Any, store: TokenStore
    ) -> None:
        store.store({"access_token": "stale", "expires_in": 0})
        with pytest.raises(AuthError, match="no refresh token"):
            await make_auth().ensure_token()


# ---------------------------------------------------------------------------
# Login flow
# ---------------------------------------------------------------------------


async def hit_callback(port: int, target: str) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {target} HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n".encode())
    await writer.drain()
    response = await reader.read()
    writer.close()
    return response


@pytest.mark.asyncio
class TestLogin:
    async def test_full_login(
        self,
        make_auth: Any,
        store: TokenStore,
        browser: RecordingBrowser,
        quiet_output: Any,
    ) -> None:
        seen: list[httpx.Request] = []
        auth = make_auth(
            token_handler(
                {"access_token": "A", "refresh_token": "R", "expires_in": 3600}, seen=seen
            )
        )

        listener = await auth.login()
        for _ in range(50):
            if browser.urls:
                break
            await asyncio.sleep(0.01)
        assert len(browser.urls) == 1

        params = {k: v[0] for k, v in parse_qs(urlsplit(browser.urls[0]).query).items()}
        response = await hit_callback(
            listener.port, f"/callback?code=xyz&state={params['state']}"
        )
        assert response.startswith(b"HTTP/1.1 200 OK")

        tokens = await asyncio.wait_for(listener.wait(), 2)
        assert tokens.access_token == "A"
        assert store.access_token() == "A"
        assert store.refresh_token() == "R"

        form = form_of(seen[0])
        assert form["code"] == "xyz"
        assert form["grant_type"] == "authorization_code"
        assert form["code_verifier"]
        assert form["code_verifier"] != params["code_challenge"]

    async def test_missing_client_id_fails_before_listening(
        self, store: TokenStore, browser: RecordingBrowser, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("NOWPLAYING_SPOTIFY_CLIENT_ID", raising=False)
        auth = AuthOrchestrator(store, Settings(redirect_port=0), open_url=browser)
        with pytest.raises(ConfigError):
            await auth.login()
        assert browser.urls == []

    async def test_concurrent_login_rejected(self, make_auth: Any, quiet_output: Any) -> None:
        auth = make_auth()
        listener = await auth.login()
        try:
            with pytest.raises(AuthError, match="already in progress"):
                await auth.login()
        finally:
            listener.close()

    async def test_login_allowed_after_previous_finished(
        self, make_auth: Any, quiet_output: Any
    ) -> None:
        auth = make_auth()
        first = await auth.login()
        first.close()
        second = await auth.login()
        assert second is not first
        second.close()

    @pytest.mark.parametrize(
        "browser",
        [
            RecordingBrowser(result=False),
            RecordingBrowser(raises=webbrowser.Error("no runnable browser")),
            RecordingBrowser(raises=OSError("xdg-open not found")),
        ],
        ids=["not-opened", "webbrowser-error", "os-error"],
    )
    async def test_browser_failure_prints_url(
        self,
        store: TokenStore,
        settings: Settings,
        browser: RecordingBrowser,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        auth = AuthOrchestrator(store, settings, open_url=browser)
        listener = await auth.login()
        try:
            for _ in range(50):
                if "Visit this URL" in capsys.readouterr().err:
                    break
                await asyncio.sleep(0.01)
            else:
                pytest.fail("authorize URL was not printed")
        finally:
            listener.close()

    async def test_logout_clears_tokens_and_pending_login(
        self, make_auth: Any, store: TokenStore, quiet_output: Any
    ) -> None:
        store.store({"access_token": "A", "refresh_token": "R"})
        auth = make_auth()
        listener = await auth.login()

        auth.logout()

        assert store.has_tokens() is False
        assert auth.status() is None
        with pytest.raises(asyncio.CancelledError):
            await listener.wait()


class TestStatus:
    def test_status_reports_tokens(self, store: TokenStore, settings: Settings) -> None:
        store.store({"access_token": "A", "scope": SCOPES})
        auth = AuthOrchestrator(store, settings)
        tokens = auth.status()
        assert tokens is not None
        assert tokens.scope == SCOPES
        assert auth.is_authenticated() is True

    def test_status_when_logged_out(self, store: TokenStore, settings: Settings) -> None:
        auth = AuthOrchestrator(store, settings)
        assert auth.status() is None
        assert auth.is_authenticated() is False

    def test_stored_file_is_plain_json(self, store: TokenStore, settings: Settings) -> None:
        store.store({"access_token": "A"})
        assert json.loads(store.path.read_text())["access_token"] == "A"
