"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for nowplaying:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.nowplaying/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Settings** -- A single :class:`~nowplaying.models.Settings` JSON file
  storing the client id override and request/search defaults. Managed via
  :func:`load_settings` and :func:`save_settings`.
* **Client id resolution** -- :func:`resolve_client_id` merges the
  environment and the settings file into the effective client id.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so that a crash mid-write never corrupts the file.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from nowplaying.exceptions import ConfigError
from nowplaying.models import Settings

_APP_NAME = "nowplaying"
_CONFIG_FILENAME = "config.json"

CLIENT_ID_ENV = "NOWPLAYING_SPOTIFY_CLIENT_ID"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/nowplaying/`` (default ``~/.config/nowplaying/``).
    On macOS/Windows: ``~/.nowplaying/``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (token file, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/nowplaying/`` (default ``~/.local/share/nowplaying/``).
    On macOS/Windows: ``~/.nowplaying/data/``.
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given, permissions are applied to the temp file before any content is
    written. On any failure the temp file is removed and the error re-raised.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


def settings_path() -> Path:
    """Path to the settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> Settings:
    """Load settings from the XDG config directory.

    Returns:
        The deserialised :class:`~nowplaying.models.Settings`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = settings_path()
    if not path.is_file():
        return Settings()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return Settings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    """Persist settings atomically to disk."""
    data = settings.model_dump(mode="json")
    atomic_write(settings_path(), json.dumps(data, indent=2) + "\n")


def resolve_client_id(settings: Optional[Settings] = None) -> Optional[str]:
    """Resolve the Spotify client id.

    Precedence (high to low):
        1. ``NOWPLAYING_SPOTIFY_CLIENT_ID`` environment variable
        2. ``client_id`` in the settings file

    Blank values are treated as unset.

    Returns:
        The client id, or ``None`` when none is configured.
    """
    env_value = os.environ.get(CLIENT_ID_ENV, "").strip()
    if env_value:
        return env_value
    if settings is None:
        settings = load_settings()
    if settings.client_id and settings.client_id.strip():
        return settings.client_id.strip()
    return None
