"""Exception hierarchy for nowplaying.

All exceptions inherit from :class:`NowPlayingError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`nowplaying.exit_codes`.
The top-level error handler in :func:`nowplaying.app.main` catches
``NowPlayingError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    NowPlayingError (exit 1)
    +-- ConfigError         (exit 2)
    +-- AuthError           (exit 3)
    |   +-- LoginTimeoutError
    +-- CryptoError         (exit 1)
    +-- BindError           (exit 6)
    +-- ParseError          (exit 7)
    +-- CSRFError           (exit 8)
    +-- ProviderError       (exit 5)
    +-- NetworkError        (exit 6)
    +-- DeviceError         (exit 9)
"""

from __future__ import annotations

from nowplaying.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_DEVICE_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_PARSE_ERROR,
    EXIT_PROVIDER_ERROR,
    EXIT_SECURITY_ERROR,
)


class NowPlayingError(Exception):
    """Base exception for all nowplaying errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`nowplaying.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(NowPlayingError):
    """Raised for configuration problems (missing client id, invalid config JSON)."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(NowPlayingError):
    """Raised when no usable token exists or a token cannot be obtained."""

    exit_code = EXIT_AUTH_FAILURE


class LoginTimeoutError(AuthError):
    """Raised when no valid callback reaches the local listener in time."""


class CryptoError(NowPlayingError):
    """Raised when the PKCE hash or encoding step cannot be executed."""

    exit_code = EXIT_GENERIC_FAILURE


class BindError(NowPlayingError):
    """Raised when the callback listener cannot bind its loopback port."""

    exit_code = EXIT_CONNECTION_ERROR


class ParseError(NowPlayingError):
    """Raised for malformed HTTP messages or undecodable JSON bodies."""

    exit_code = EXIT_PARSE_ERROR


class CSRFError(NowPlayingError):
    """Raised when the callback ``state`` does not match the login session."""

    exit_code = EXIT_SECURITY_ERROR


class ProviderError(NowPlayingError):
    """Raised when Spotify returns an OAuth or Web API error payload.

    Args:
        message: The provider's error message.
        status: HTTP status reported by the provider, when known.
        reason: Provider-specific reason code (e.g. ``NO_ACTIVE_DEVICE``).
    """

    exit_code = EXIT_PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        status: int | None = None,
        reason: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.reason = reason


class NetworkError(NowPlayingError):
    """Raised on transport failures (timeout, DNS resolution, connection refused).

    Named to avoid shadowing the built-in ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class DeviceError(NowPlayingError):
    """Raised when no Spotify playback device can be found or activated."""

    exit_code = EXIT_DEVICE_ERROR
