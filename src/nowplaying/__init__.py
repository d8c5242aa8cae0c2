"""nowplaying -- Spotify PKCE login and an authenticated Web API gateway.

This package implements the OAuth2 Authorization Code + PKCE flow against
Spotify's accounts service, persists the resulting token set locally, and
exposes an async gateway that keeps every Web API call authenticated,
refreshes on 401, and wakes an idle playback device when needed.

Typical workflow::

    nowplaying auth login          # browser login, tokens stored on disk
    nowplaying search "daft punk"  # authenticated API call
    nowplaying play spotify:track:0DiWol3AO6WpXZgp0goxAV

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware directories and settings persistence.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    auth: PKCE helpers, callback listener, token store, orchestrator.
    client: Authenticated Web API gateway and catalog normalisation.
"""

__version__ = "0.3.0"
