"""Spotify Web API client module for nowplaying.

Provides :class:`SpotifyGateway`, an :mod:`httpx`-based async client with
automatic token injection, one-shot refresh on 401, and device activation
for playback commands, plus the catalog parsers it returns models from.

Example::

    from nowplaying.client import SpotifyGateway

    async with SpotifyGateway(auth) as spotify:
        devices = await spotify.devices()
"""

from nowplaying.client.gateway import SpotifyGateway

__all__ = ["SpotifyGateway"]
