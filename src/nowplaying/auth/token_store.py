"""Persistent Spotify token store with an in-memory cache.

Stores the current :class:`~nowplaying.models.TokenSet` in
``<data_dir>/spotify_tokens.json`` (``~/.local/share/nowplaying/`` on
Linux). Files are written atomically via :func:`~nowplaying.config.atomic_write`
with ``0o600`` permissions so that tokens are never world-readable, even
momentarily.

The first :meth:`TokenStore.get` reads the file and caches the outcome --
including "no file" and "corrupt file" -- for the lifetime of the store.
Only :meth:`TokenStore.store` and :meth:`TokenStore.clear` change the cache.

The file is assumed to have a single writer; concurrent processes writing
it are not coordinated.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from nowplaying.config import atomic_write, get_data_dir
from nowplaying.models import TokenSet
from nowplaying.output import debug, error, warning

TOKEN_FILENAME = "spotify_tokens.json"

DEFAULT_EXPIRES_IN = 3600
EXPIRY_BUFFER = 60


class TokenStore:
    """Read/write the token set for the single local Spotify account.

    Construct once and pass the instance to every component that needs
    tokens; the cache lives on the instance, not in module state.

    Args:
        path: Token file location. Defaults to
            ``get_data_dir() / "spotify_tokens.json"``.
        clock: Returns the current time in epoch seconds. Injectable for tests.

    Example::

        store = TokenStore()
        store.store({"access_token": "tok", "expires_in": 3600})
        assert not store.is_expired()
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = path if path is not None else get_data_dir() / TOKEN_FILENAME
        self._clock = clock
        self._tokens: Optional[TokenSet] = None
        self._loaded = False

    @property
    def path(self) -> Path:
        """The filesystem path of the token file."""
        return self._path

    def get(self) -> Optional[TokenSet]:
        """Return the current token set, loading it from disk on first use."""
        if not self._loaded:
            self._tokens = self._load()
            self._loaded = True
        return self._tokens

    def store(self, data: Mapping[str, Any]) -> bool:
        """Persist a token endpoint response.

        ``expires_at`` is computed as ``now + expires_in - 60`` with
        ``expires_in`` defaulting to 3600. A response without
        ``refresh_token`` keeps the previously stored one, and a missing
        ``token_type`` becomes ``"Bearer"``.

        Args:
            data: The decoded token endpoint response.

        Returns:
            ``True`` when the file was written and the cache updated,
            ``False`` (after logging) when serialisation or the write failed.
        """
        now = int(self._clock())
        previous = self.get()

        expires_in = data.get("expires_in")
        try:
            ttl = int(expires_in) if expires_in is not None else DEFAULT_EXPIRES_IN
        except (TypeError, ValueError):
            ttl = DEFAULT_EXPIRES_IN

        try:
            tokens = TokenSet(
                access_token=data.get("access_token"),
                refresh_token=data.get("refresh_token")
                or (previous.refresh_token if previous else None),
                expires_at=now + ttl - EXPIRY_BUFFER,
                scope=data.get("scope"),
                token_type=data.get("token_type") or "Bearer",
                stored_at=now,
            )
            text = json.dumps(tokens.model_dump(mode="json"), indent=2) + "\n"
        except (TypeError, ValueError, ValidationError) as exc:
            error(f"Failed to encode Spotify tokens: {exc}")
            return False

        try:
            atomic_write(self._path, text, mode=0o600)
        except OSError as exc:
            error(f"Failed to write Spotify token file {self._path}: {exc}")
            return False

        self._tokens = tokens
        self._loaded = True
        debug(f"Stored Spotify tokens (expire at {tokens.expires_at})")
        return True

    def is_expired(self) -> bool:
        """True when there is no token set or ``now >= expires_at``."""
        tokens = self.get()
        if tokens is None or tokens.expires_at is None:
            return True
        return self._clock() >= tokens.expires_at

    def has_tokens(self) -> bool:
        tokens = self.get()
        return tokens is not None and bool(tokens.access_token)

    def access_token(self) -> Optional[str]:
        tokens = self.get()
        return tokens.access_token if tokens else None

    def refresh_token(self) -> Optional[str]:
        tokens = self.get()
        return tokens.refresh_token if tokens else None

    def clear(self) -> None:
        """Forget the cached tokens and delete the token file if it exists.

        This is a no-op when the file has already been removed.
        """
        self._tokens = None
        self._loaded = True
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass

    def _load(self) -> Optional[TokenSet]:
        if not self._path.is_file():
            return None
        try:
            text = self._path.read_text(encoding="utf-8")
            return TokenSet.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValueError, OSError):
            warning(f"Failed to decode Spotify token file {self._path}")
            return None
