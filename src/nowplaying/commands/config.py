"""Config commands -- view and modify settings.

Provides the ``nowplaying config`` sub-command group for reading and
updating the settings file (:class:`~nowplaying.models.Settings`) stored
in the nowplaying config directory.
"""

from __future__ import annotations

import os

import typer

from nowplaying.output import error, print_record, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show current settings and the effective client id source.

    Example::

        nowplaying config show --json
    """
    from nowplaying.config import CLIENT_ID_ENV, get_config_dir, load_settings

    settings = load_settings()
    info(f"Config directory: {get_config_dir()}")
    if os.environ.get(CLIENT_ID_ENV, "").strip():
        info(f"Client id overridden by ${CLIENT_ID_ENV}")
    print_record(settings.model_dump(mode="json"))


@config_app.command("set-client-id")
def config_set_client_id(
    client_id: str = typer.Argument(help="Client id of your Spotify developer app."),
) -> None:
    """Store the Spotify application client id.

    Register an app at https://developer.spotify.com/dashboard with the
    redirect URI ``http://127.0.0.1:48721/callback`` and paste its client id.

    Example::

        nowplaying config set-client-id 0123456789abcdef0123456789abcdef
    """
    from nowplaying.config import load_settings, save_settings

    client_id = client_id.strip()
    if not client_id:
        error("Client id must not be empty.")
        raise typer.Exit(code=2)

    settings = load_settings()
    settings.client_id = client_id
    save_settings(settings)
    success("Client id saved.")
