"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~nowplaying.exceptions.NowPlayingError` subclass.
Shell wrappers can inspect the exit code to determine the failure class
without parsing stderr.

Example::

    $ nowplaying play spotify:track:xyz
    $ echo $?
    9   # EXIT_DEVICE_ERROR -- no Spotify device is available
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing configuration."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed, was declined, or no valid token is available."""

EXIT_PROVIDER_ERROR = 5
"""Spotify returned an error payload."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_PARSE_ERROR = 7
"""A response or request could not be parsed."""

EXIT_SECURITY_ERROR = 8
"""A security check failed (state mismatch on the OAuth callback)."""

EXIT_DEVICE_ERROR = 9
"""No playback device could be found or activated."""
