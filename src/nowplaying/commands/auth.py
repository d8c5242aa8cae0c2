"""Auth commands -- manage the local Spotify login.

Provides the ``nowplaying auth`` sub-command group::

    nowplaying auth login     # browser login via PKCE
    nowplaying auth status    # show token state
    nowplaying auth refresh   # force a token refresh
    nowplaying auth logout    # delete the stored tokens
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import typer

from nowplaying.auth import AuthOrchestrator, TokenStore
from nowplaying.config import load_settings
from nowplaying.output import print_record, info, success, suggest


auth_app = typer.Typer(no_args_is_help=True)


def make_orchestrator() -> AuthOrchestrator:
    """Build an orchestrator from the user's settings and token file."""
    return AuthOrchestrator(TokenStore(), load_settings())


@auth_app.command("login")
def auth_login() -> None:
    """Log in to Spotify in the browser.

    Starts a local callback listener, opens the Spotify consent page, and
    waits until the redirect arrives and the tokens are stored (or the
    attempt fails or times out).

    Example::

        nowplaying auth login
    """
    auth = make_orchestrator()

    async def _run() -> None:
        listener = await auth.login()
        info(f"Waiting for the Spotify redirect on port {listener.port}...")
        try:
            await listener.wait()
        finally:
            listener.close()

    asyncio.run(_run())
    suggest("Try it: nowplaying devices")


@auth_app.command("status")
def auth_status() -> None:
    """Show whether tokens are stored and when the access token expires.

    Example::

        nowplaying auth status --json
    """
    auth = make_orchestrator()
    tokens = auth.status()
    if tokens is None:
        info("Not authenticated.")
        suggest("Log in: nowplaying auth login")
        raise typer.Exit(code=3)

    expires = (
        datetime.fromtimestamp(tokens.expires_at, tz=timezone.utc).isoformat()
        if tokens.expires_at is not None
        else None
    )
    print_record(
        {
            "authenticated": True,
            "expired": auth.store.is_expired(),
            "expires_at": expires,
            "has_refresh_token": bool(tokens.refresh_token),
            "scope": tokens.scope,
            "token_file": str(auth.store.path),
        }
    )


@auth_app.command("refresh")
def auth_refresh() -> None:
    """Refresh the access token now using the stored refresh token."""
    auth = make_orchestrator()
    asyncio.run(auth.refresh_token())
    success("Access token refreshed.")


@auth_app.command("logout")
def auth_logout() -> None:
    """Delete the stored Spotify tokens."""
    make_orchestrator().logout()
