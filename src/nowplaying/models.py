"""Canonical Pydantic models shared across all nowplaying modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`SearchConfig`, :class:`RequestConfig`, and :class:`Settings`.

**Auth models** -- produced and consumed by :mod:`nowplaying.auth`:
    :class:`TokenSet` (persisted to the token file), :class:`PKCESession`
    and :class:`CallbackRequest` (memory only).

**Catalog models** -- normalised Spotify Web API payloads produced by
:mod:`nowplaying.client.catalog`:
    :class:`Device`, :class:`Track`, :class:`Album`, :class:`Artist`,
    :class:`Playlist`, and :class:`SearchResults`.

All models use Pydantic v2.
"""

from __future__ import annotations

import time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# --- Configuration ---


class SearchConfig(BaseModel):
    """Defaults applied to ``search`` calls."""

    limit: int = Field(default=7, ge=1, le=50, description="Results per item type")
    market: Optional[str] = Field(
        default=None, description="ISO 3166-1 alpha-2 market code, e.g. 'US'"
    )


class RequestConfig(BaseModel):
    """HTTP behaviour for token and Web API requests."""

    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    settle_delay: float = Field(
        default=0.5,
        description="Seconds to wait after transferring playback before retrying",
    )


class Settings(BaseModel):
    """Top-level user settings stored in ``<config_dir>/config.json``.

    Example::

        Settings(client_id="abc123", search=SearchConfig(market="SE"))
    """

    client_id: Optional[str] = Field(
        default=None, description="Spotify application client id"
    )
    redirect_port: int = Field(
        default=48721, description="Loopback port for the OAuth callback"
    )
    login_timeout: float = Field(
        default=120.0, description="Seconds to wait for the browser callback"
    )
    search: SearchConfig = Field(default_factory=SearchConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)


# --- Auth ---


class TokenSet(BaseModel):
    """The persisted OAuth token set.

    ``expires_at`` already includes a 60 second safety buffer, so a token is
    treated as expired as soon as ``now >= expires_at``.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = Field(
        default=None, description="Epoch seconds after which the access token is stale"
    )
    scope: Optional[str] = None
    token_type: str = "Bearer"
    stored_at: int = Field(default_factory=lambda: int(time.time()))

    @model_validator(mode="after")
    def _expiry_required(self) -> TokenSet:
        if self.access_token and self.expires_at is None:
            raise ValueError("access_token present without expires_at")
        return self


class PKCESession(BaseModel):
    """Single-use secrets for one login attempt. Never persisted."""

    code_verifier: str
    code_challenge: str
    state: str
    created_at: float = Field(default_factory=time.time)


class CallbackRequest(BaseModel):
    """The request line of one inbound callback connection."""

    method: str
    path: str
    params: dict[str, str] = Field(default_factory=dict)


# --- Catalog ---


class Device(BaseModel):
    """A Spotify Connect device as reported by ``/me/player/devices``."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str = "unknown device"
    is_active: bool = False
    type: Optional[str] = None
    volume_percent: Optional[int] = None
    is_restricted: bool = False


class Track(BaseModel):
    type: Literal["track"] = "track"
    id: str
    uri: Optional[str] = None
    name: str = ""
    artist: str = ""
    album: str = ""
    album_id: Optional[str] = None
    duration_ms: Optional[int] = None
    popularity: Optional[int] = None
    track_number: Optional[int] = None
    image_url: Optional[str] = None


class Album(BaseModel):
    type: Literal["album"] = "album"
    id: str
    uri: Optional[str] = None
    name: str = ""
    artist: str = ""
    total_tracks: Optional[int] = None
    release_date: Optional[str] = None
    image_url: Optional[str] = None


class Artist(BaseModel):
    type: Literal["artist"] = "artist"
    id: str
    uri: Optional[str] = None
    name: str = ""
    genres: str = ""
    followers: int = 0
    popularity: Optional[int] = None
    image_url: Optional[str] = None


class Playlist(BaseModel):
    type: Literal["playlist"] = "playlist"
    id: str
    uri: Optional[str] = None
    name: str = ""
    owner: str = ""
    description: str = ""
    total_tracks: int = 0
    is_public: Optional[bool] = None
    image_url: Optional[str] = None


class SearchResults(BaseModel):
    """Normalised results of a multi-type ``/search`` call."""

    tracks: list[Track] = Field(default_factory=list)
    albums: list[Album] = Field(default_factory=list)
    artists: list[Artist] = Field(default_factory=list)
    playlists: list[Playlist] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.tracks or self.albums or self.artists or self.playlists)
