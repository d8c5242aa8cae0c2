"""Authenticated asynchronous gateway to the Spotify Web API.

This module provides :class:`SpotifyGateway`, which wraps
:class:`httpx.AsyncClient` and layers on:

- **Token injection** -- every request first calls
  :meth:`~nowplaying.auth.orchestrator.AuthOrchestrator.ensure_token` and
  sends ``Authorization: Bearer <token>``.
- **401 recovery** -- a 401 triggers exactly one refresh-and-replay. A
  second 401, or a failed refresh, is returned to the caller as an error.
- **Device activation** -- ``play`` and ``queue`` fail when no Spotify
  Connect device is active. The gateway then lists devices, transfers
  playback to the first one, waits briefly, and retries the command once.
- **Domain operations** -- search, devices, playback, queue, and catalog
  drill-downs returning typed models from :mod:`nowplaying.client.catalog`.

See Also:
    :class:`~nowplaying.auth.orchestrator.AuthOrchestrator` for token handling.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from nowplaying.auth.codec import encode_query
from nowplaying.auth.orchestrator import AuthOrchestrator
from nowplaying.client.catalog import (
    build_play_body,
    parse_album_tracks,
    parse_devices,
    parse_playlist_tracks,
    parse_search,
    parse_top_tracks,
)
from nowplaying.exceptions import DeviceError, NetworkError, ParseError, ProviderError
from nowplaying.models import Device, SearchResults, Settings, Track
from nowplaying.output import debug

API_BASE = "https://api.spotify.com/v1"

SEARCH_TYPES = "track,album,artist,playlist"
DEFAULT_MARKET = "US"
PLAYLIST_TRACK_FIELDS = (
    "items(track(id,uri,name,artists,album(id,name,images),duration_ms,popularity))"
)

_DEVICE_ERROR_MARKERS = ("no active device", "player command failed", "not found")

T = TypeVar("T")


def is_device_error(exc: ProviderError) -> bool:
    """Whether *exc* means "no active playback device"."""
    if exc.reason == "NO_ACTIVE_DEVICE":
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _DEVICE_ERROR_MARKERS)


class SpotifyGateway:
    """Asynchronous client for the Spotify Web API.

    Must be used as an async context manager unless an ``http_client`` is
    injected, in which case the caller owns that client's lifecycle.

    Args:
        auth: Orchestrator that supplies and refreshes access tokens.
        settings: User settings (search defaults, timeout, settle delay).
        http_client: Optional pre-built :class:`httpx.AsyncClient`.

    Example::

        async with SpotifyGateway(auth) as spotify:
            results = await spotify.search("daft punk")
            await spotify.play(results.tracks[0].uri)
    """

    def __init__(
        self,
        auth: AuthOrchestrator,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._auth = auth
        self._settings = settings or Settings()
        self._client = http_client
        self._owns_client = http_client is None

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> SpotifyGateway:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.request.timeout)
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Core request
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> Any:
        """Make an authenticated Web API request.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            path: Path appended to :data:`API_BASE`, e.g. ``"/search"``.
            params: Query parameters, percent-encoded per RFC 3986.
            body: JSON-serialisable request body.

        Returns:
            The decoded JSON body, or ``{}`` for an empty success body.

        Raises:
            AuthError: If no valid token can be obtained.
            ProviderError: If Spotify returns an error (including a 401 that
                persists after one refresh).
            NetworkError: On transport failures.
            ParseError: If a non-empty body is not valid JSON.
        """
        token = await self._auth.ensure_token()
        try:
            return await self._send(method, path, token, params, body)
        except ProviderError as exc:
            if exc.status != 401:
                raise
            debug("Got 401, attempting token refresh...")

        await self._auth.refresh_token()
        token = await self._auth.ensure_token()
        return await self._send(method, path, token, params, body)

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        params: Optional[dict[str, Any]],
        body: Optional[Any],
    ) -> Any:
        assert self._client is not None, "Gateway not initialised -- use as async context manager"

        url = f"{API_BASE}{path}"
        if params:
            query = encode_query(params)
            if query:
                url = f"{url}?{query}"

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.request(method, url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise NetworkError(f"HTTP request failed: {exc}") from exc

        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        """Decode a response body and raise :class:`ProviderError` for error payloads."""
        status = response.status_code
        if not response.content.strip():
            if status >= 400:
                raise ProviderError(f"HTTP {status}", status=status)
            return {}

        try:
            data = response.json()
        except ValueError as exc:
            if status >= 400:
                raise ProviderError(
                    f"HTTP {status}: {response.text[:200]}", status=status
                ) from exc
            raise ParseError("failed to parse response") from exc

        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            message = error.get("message") or "API error"
            debug(f"Spotify API error: {message}")
            raise ProviderError(
                message,
                status=error.get("status") or status,
                reason=error.get("reason"),
            )
        if error:
            message = data.get("error_description") or str(error)
            raise ProviderError(message, status=status)
        if status >= 400:
            raise ProviderError(f"HTTP {status}", status=status)
        return data

    # ------------------------------------------------------------------ #
    # Device activation
    # ------------------------------------------------------------------ #

    async def _with_device(self, action: Callable[[], Awaitable[T]]) -> T:
        """Run *action*, activating a device and retrying once if none is active."""
        try:
            return await action()
        except ProviderError as exc:
            if not is_device_error(exc):
                raise
            original = exc

        devices = await self.devices()
        if not devices:
            raise DeviceError("No Spotify devices found. Open Spotify on a device first.")
        if any(d.is_active for d in devices):
            raise original

        target = next((d for d in devices if d.id), None)
        if target is None:
            raise DeviceError("No Spotify devices available.")

        debug(f"Transferring playback to: {target.name}")
        try:
            await self.transfer_playback(target.id, play=False)
        except ProviderError as exc:
            raise DeviceError(f"Failed to activate device: {exc}") from exc

        await asyncio.sleep(self._settings.request.settle_delay)
        return await action()

    # ------------------------------------------------------------------ #
    # Domain operations
    # ------------------------------------------------------------------ #

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        market: Optional[str] = None,
    ) -> SearchResults:
        """Search tracks, albums, artists, and playlists.

        An empty query returns empty results without a request.
        """
        if not query:
            return SearchResults()

        params: dict[str, Any] = {
            "q": query,
            "type": SEARCH_TYPES,
            "limit": limit or self._settings.search.limit,
        }
        market = market or self._settings.search.market
        if market:
            params["market"] = market

        data = await self.request("GET", "/search", params=params)
        return parse_search(data)

    async def devices(self) -> list[Device]:
        data = await self.request("GET", "/me/player/devices")
        return parse_devices(data)

    async def transfer_playback(self, device_id: str, play: bool = False) -> None:
        await self.request("PUT", "/me/player", body={"device_ids": [device_id], "play": play})

    async def play(
        self,
        uri: Optional[str] = None,
        context_uri: Optional[str] = None,
        offset_uri: Optional[str] = None,
    ) -> None:
        """Start playback of a track, or of an album/artist/playlist context.

        Raises:
            DeviceError: If no device exists or none can be activated.
        """
        body = build_play_body(uri, context_uri, offset_uri)

        async def do_play() -> None:
            await self.request("PUT", "/me/player/play", body=body)

        await self._with_device(do_play)

    async def queue(self, uri: str) -> None:
        """Append a track to the user's playback queue."""

        async def do_queue() -> None:
            await self.request("POST", "/me/player/queue", params={"uri": uri})

        await self._with_device(do_queue)

    async def album_tracks(self, album_id: str) -> list[Track]:
        data = await self.request("GET", f"/albums/{album_id}/tracks", params={"limit": 50})
        return parse_album_tracks(data)

    async def artist_top_tracks(self, artist_id: str, market: Optional[str] = None) -> list[Track]:
        market = market or self._settings.search.market or DEFAULT_MARKET
        data = await self.request(
            "GET", f"/artists/{artist_id}/top-tracks", params={"market": market}
        )
        return parse_top_tracks(data)

    async def playlist_tracks(self, playlist_id: str) -> list[Track]:
        data = await self.request(
            "GET",
            f"/playlists/{playlist_id}/tracks",
            params={"limit": 50, "fields": PLAYLIST_TRACK_FIELDS},
        )
        return parse_playlist_tracks(data)
