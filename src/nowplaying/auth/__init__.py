"""Spotify OAuth2 Authorization Code + PKCE authentication.

The main entry points are:

- :class:`AuthOrchestrator` -- login, code exchange, refresh, logout, and
  the :meth:`~AuthOrchestrator.ensure_token` chokepoint used by every API call.
- :class:`TokenStore` -- the single persisted token file plus its cache.
- :class:`CallbackListener` -- the single-use loopback redirect listener.
- :func:`generate_pkce` / :func:`random_string` -- PKCE secret helpers.

Typical usage::

    from nowplaying.auth import AuthOrchestrator, TokenStore

    auth = AuthOrchestrator(TokenStore())
    listener = await auth.login()
    await listener.wait()
    token = await auth.ensure_token()
"""

from nowplaying.auth.listener import CallbackListener, ListenerState
from nowplaying.auth.orchestrator import AuthOrchestrator
from nowplaying.auth.pkce import generate_pkce, new_session, random_string
from nowplaying.auth.token_store import TokenStore

__all__ = [
    "AuthOrchestrator",
    "CallbackListener",
    "ListenerState",
    "TokenStore",
    "generate_pkce",
    "new_session",
    "random_string",
]
