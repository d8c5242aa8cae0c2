"""Built-in CLI sub-commands for nowplaying.

This package groups the Typer sub-command modules that form the CLI's
top-level command tree:

* :mod:`~nowplaying.commands.auth` -- log in, log out, inspect and refresh tokens.
* :mod:`~nowplaying.commands.config` -- view and modify settings.
* :mod:`~nowplaying.commands.player` -- search, devices, playback, queue,
  and catalog drill-downs.

Multi-command groups export a :class:`typer.Typer` sub-application; the
player commands are plain callbacks registered directly on the root app.
"""
