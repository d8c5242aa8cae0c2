"""Normalise raw Spotify Web API payloads into catalog models.

Spotify responses are deeply nested and occasionally contain ``null``
entries (removed tracks, unavailable playlists). Every parser here skips
non-object items and items without an ``id`` instead of failing, so a
single bad entry never drops a whole result page.
"""

from __future__ import annotations

from typing import Any, Optional

from nowplaying.models import Album, Artist, Device, Playlist, SearchResults, Track

MAX_GENRES = 3


def _items(container: Any, key: str = "items") -> list[dict[str, Any]]:
    if not isinstance(container, dict):
        return []
    items = container.get(key)
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict) and item.get("id")]


def _first_image(obj: Any) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    images = obj.get("images") or []
    if images and isinstance(images[0], dict):
        return images[0].get("url")
    return None


def _artist_names(item: dict[str, Any]) -> str:
    names = [a.get("name", "") for a in item.get("artists") or [] if isinstance(a, dict)]
    return ", ".join(names)


def parse_track(item: dict[str, Any], album_name: Optional[str] = None) -> Track:
    """Build a :class:`Track`, reading album details from ``item["album"]`` when present."""
    album = item.get("album") if isinstance(item.get("album"), dict) else None
    if album_name is None:
        album_name = (album.get("name") or "") if album else ""
    return Track(
        id=item["id"],
        uri=item.get("uri"),
        name=item.get("name") or "",
        artist=_artist_names(item),
        album=album_name,
        album_id=album.get("id") if album else None,
        duration_ms=item.get("duration_ms"),
        popularity=item.get("popularity"),
        track_number=item.get("track_number"),
        image_url=_first_image(album),
    )


def parse_album(item: dict[str, Any]) -> Album:
    return Album(
        id=item["id"],
        uri=item.get("uri"),
        name=item.get("name") or "",
        artist=_artist_names(item),
        total_tracks=item.get("total_tracks"),
        release_date=item.get("release_date"),
        image_url=_first_image(item),
    )


def parse_artist(item: dict[str, Any]) -> Artist:
    genres = [g for g in item.get("genres") or [] if isinstance(g, str)][:MAX_GENRES]
    followers = item.get("followers")
    return Artist(
        id=item["id"],
        uri=item.get("uri"),
        name=item.get("name") or "",
        genres=", ".join(genres),
        followers=(followers.get("total") or 0) if isinstance(followers, dict) else 0,
        popularity=item.get("popularity"),
        image_url=_first_image(item),
    )


def parse_playlist(item: dict[str, Any]) -> Playlist:
    owner = item.get("owner")
    tracks = item.get("tracks")
    return Playlist(
        id=item["id"],
        uri=item.get("uri"),
        name=item.get("name") or "",
        owner=(owner.get("display_name") or "") if isinstance(owner, dict) else "",
        description=item.get("description") or "",
        total_tracks=(tracks.get("total") or 0) if isinstance(tracks, dict) else 0,
        is_public=item.get("public"),
        image_url=_first_image(item),
    )


def parse_search(data: dict[str, Any]) -> SearchResults:
    """Normalise a ``/search`` response covering all four item types."""
    return SearchResults(
        tracks=[parse_track(i) for i in _items(data.get("tracks"))],
        albums=[parse_album(i) for i in _items(data.get("albums"))],
        artists=[parse_artist(i) for i in _items(data.get("artists"))],
        playlists=[parse_playlist(i) for i in _items(data.get("playlists"))],
    )


def parse_album_tracks(data: dict[str, Any]) -> list[Track]:
    # Album track objects carry no album; the caller already knows it.
    return [parse_track(i, album_name="") for i in _items(data)]


def parse_top_tracks(data: dict[str, Any]) -> list[Track]:
    return [parse_track(i) for i in _items(data, "tracks")]


def parse_playlist_tracks(data: dict[str, Any]) -> list[Track]:
    """Unwrap ``{"track": {...}}`` playlist entries, skipping local/removed tracks."""
    tracks: list[Track] = []
    for entry in data.get("items") or []:
        if not isinstance(entry, dict):
            continue
        track = entry.get("track")
        if isinstance(track, dict) and track.get("id"):
            tracks.append(parse_track(track))
    return tracks


def parse_devices(data: dict[str, Any]) -> list[Device]:
    """Parse the device list. Null fields fall back to the model defaults."""
    devices = data.get("devices") or []
    return [
        Device.model_validate({k: v for k, v in d.items() if v is not None})
        for d in devices
        if isinstance(d, dict)
    ]


def build_play_body(
    uri: Optional[str],
    context_uri: Optional[str] = None,
    offset_uri: Optional[str] = None,
) -> dict[str, Any]:
    """Build the ``PUT /me/player/play`` body.

    * ``context_uri`` given: play that album/playlist, optionally starting at
      ``offset_uri``.
    * ``spotify:track:`` URI: play the single track.
    * Any other URI (album, artist, playlist): play it as a context.
    """
    body: dict[str, Any] = {}
    if context_uri:
        body["context_uri"] = context_uri
        if offset_uri:
            body["offset"] = {"uri": offset_uri}
    elif uri and uri.startswith("spotify:track:"):
        body["uris"] = [uri]
    elif uri:
        body["context_uri"] = uri
    return body
