"""Player commands -- search, devices, playback, and catalog drill-downs.

These are plain callbacks, registered on the root app when
:mod:`nowplaying.app` is imported. Each one builds an orchestrator and a
:class:`~nowplaying.client.gateway.SpotifyGateway`, runs one async call,
and renders the result as a table (or JSON with ``--json``).
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from nowplaying.client import SpotifyGateway
from nowplaying.commands.auth import make_orchestrator
from nowplaying.config import load_settings
from nowplaying.models import Device, SearchResults, Track
from nowplaying.output import info, print_table, success

T = TypeVar("T")


def _run(call: Callable[[SpotifyGateway], Awaitable[T]]) -> T:
    """Run one gateway call on a fresh event loop."""
    settings = load_settings()

    async def _main() -> T:
        auth = make_orchestrator()
        async with SpotifyGateway(auth, settings) as spotify:
            return await call(spotify)

    return asyncio.run(_main())


def _duration(ms: Optional[int]) -> str:
    if not ms:
        return ""
    seconds = ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


def _track_rows(tracks: list[Track]) -> list[list[str]]:
    return [[t.name, t.artist, t.album, _duration(t.duration_ms), t.uri or ""] for t in tracks]


def _print_tracks(tracks: list[Track], title: str) -> None:
    if not tracks:
        info("No tracks found.")
        return
    print_table(["Track", "Artist", "Album", "Length", "URI"], _track_rows(tracks), title=title)


def search_command(
    query: str = typer.Argument(help="Search text."),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Results per type."),
    market: Optional[str] = typer.Option(None, "--market", "-m", help="Market code, e.g. US."),
) -> None:
    """Search tracks, albums, artists, and playlists.

    Example::

        nowplaying search "daft punk" --limit 3
    """
    results: SearchResults = _run(lambda s: s.search(query, limit=limit, market=market))
    if results.is_empty():
        info("No results.")
        return

    if results.tracks:
        _print_tracks(results.tracks, "Tracks")
    if results.albums:
        rows = [[a.name, a.artist, a.release_date or "", a.uri or ""] for a in results.albums]
        print_table(["Album", "Artist", "Released", "URI"], rows, title="Albums")
    if results.artists:
        rows = [[a.name, a.genres, str(a.followers), a.uri or ""] for a in results.artists]
        print_table(["Artist", "Genres", "Followers", "URI"], rows, title="Artists")
    if results.playlists:
        rows = [
            [p.name, p.owner, str(p.total_tracks), p.uri or ""] for p in results.playlists
        ]
        print_table(["Playlist", "Owner", "Tracks", "URI"], rows, title="Playlists")


def devices_command() -> None:
    """List Spotify Connect devices."""
    devices: list[Device] = _run(lambda s: s.devices())
    if not devices:
        info("No Spotify devices found. Open Spotify on a device first.")
        return
    rows = [
        [d.name, d.type or "", "yes" if d.is_active else "", d.id or ""] for d in devices
    ]
    print_table(["Device", "Type", "Active", "ID"], rows, title="Devices")


def play_command(
    uri: Optional[str] = typer.Argument(None, help="Track, album, artist, or playlist URI."),
    context: Optional[str] = typer.Option(
        None, "--context", "-c", help="Album/playlist URI to play as context."
    ),
    offset: Optional[str] = typer.Option(
        None, "--offset", help="Track URI inside --context to start from."
    ),
) -> None:
    """Start playback, activating an idle device if necessary.

    Example::

        nowplaying play spotify:track:0DiWol3AO6WpXZgp0goxAV
        nowplaying play --context spotify:album:xyz --offset spotify:track:abc
    """
    if not uri and not context:
        raise typer.BadParameter("Give a URI or --context.")
    _run(lambda s: s.play(uri, context_uri=context, offset_uri=offset))
    success("Playing.")


def queue_command(
    uri: str = typer.Argument(help="Track URI to add to the queue."),
) -> None:
    """Add a track to the playback queue."""
    _run(lambda s: s.queue(uri))
    success("Queued.")


def album_command(album_id: str = typer.Argument(help="Spotify album id.")) -> None:
    """List the tracks of an album."""
    _print_tracks(_run(lambda s: s.album_tracks(album_id)), "Album tracks")


def artist_command(
    artist_id: str = typer.Argument(help="Spotify artist id."),
    market: Optional[str] = typer.Option(None, "--market", "-m", help="Market code."),
) -> None:
    """List an artist's top tracks."""
    _print_tracks(_run(lambda s: s.artist_top_tracks(artist_id, market=market)), "Top tracks")


def playlist_command(playlist_id: str = typer.Argument(help="Spotify playlist id.")) -> None:
    """List the tracks of a playlist."""
    _print_tracks(_run(lambda s: s.playlist_tracks(playlist_id)), "Playlist tracks")


COMMANDS: dict[str, Callable[..., Any]] = {
    "search": search_command,
    "devices": devices_command,
    "play": play_command,
    "queue": queue_command,
    "album": album_command,
    "artist": artist_command,
    "playlist": playlist_command,
}
