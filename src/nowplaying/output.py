"""Terminal output for nowplaying: catalog tables on stdout, diagnostics on stderr.

Two kinds of output leave the process:

* **Data** goes to stdout. The player commands emit tables (tracks,
  albums, devices) and the ``auth status`` / ``config show`` commands emit
  a key/value record. Both render as Rich tables on a terminal, as
  tab-separated lines when piped or with ``--plain``, and as JSON with
  ``--json``.
* **Diagnostics** go to stderr, tagged with a :class:`Severity`. Login
  progress and results are ``info``/``success``, token-file problems are
  ``warning``, failed exchanges are ``error``, and an OAuth ``state``
  mismatch on the callback is ``security``.

``NO_COLOR`` and ``TERM=dumb`` disable colour. The auth and client layers
call the module-level functions (:func:`info`, :func:`security`, ...) so
they never have to carry an :class:`OutputManager` around; the root
callback in :mod:`nowplaying.app` installs one with :func:`set_output`.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, NamedTuple, Optional

from rich.console import Console
from rich.table import Table


class OutputFormat(str, Enum):
    """How data on stdout is rendered.

    ``AUTO`` becomes ``RICH`` on a colour-capable terminal and ``PLAIN``
    otherwise.
    """

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SECURITY = "security"


class _Style(NamedTuple):
    prefix: str
    markup: str
    quiet_hides: bool


# Plain prefix, Rich markup around the message, and whether --quiet hides it.
_STYLES: dict[Severity, _Style] = {
    Severity.DEBUG: _Style("[debug] ", "[dim]\\[debug] {}[/dim]", True),
    Severity.INFO: _Style("", "{}", True),
    Severity.SUCCESS: _Style("", "[green]{}[/green]", True),
    Severity.WARNING: _Style("Warning: ", "[yellow]Warning:[/yellow] {}", False),
    Severity.ERROR: _Style("Error: ", "[bold red]Error:[/bold red] {}", False),
    Severity.SECURITY: _Style(
        "SECURITY: ", "[bold white on red] SECURITY [/bold white on red] {}", False
    ),
}

_URI_HEADERS = {"URI", "ID"}


class OutputManager:
    """Routes catalog data to stdout and diagnostics to stderr.

    Args:
        format: Data format; ``AUTO`` picks Rich or plain from the terminal.
        no_color: Print diagnostics without markup.
        quiet: Hide ``info``, ``success`` and suggestions. Warnings,
            errors and security events still print.
        verbose: Show ``debug`` messages (HTTP calls, token refreshes).
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _color_disabled_by_env()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            rich = sys.stdout.isatty() and not self._no_color
            format = OutputFormat.RICH if rich else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    # ------------------------------------------------------------------ #
    # stdout
    # ------------------------------------------------------------------ #

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Print catalog rows (tracks, albums, devices, ...).

        JSON mode prints a list of objects keyed by *headers*, so
        ``nowplaying --json devices`` gives ``[{"Device": ..., "ID": ...}]``.
        Plain mode prints a header line and one tab-separated line per row.
        """
        if self._format == OutputFormat.JSON:
            self._write(_dumps([dict(zip(headers, row)) for row in rows]))
        elif self._format == OutputFormat.PLAIN:
            for line in [headers, *rows]:
                self._write("\t".join(line))
        else:
            table = Table(title=title, header_style="bold cyan")
            for header in headers:
                # Spotify URIs and ids are for copy/paste, not reading.
                table.add_column(header, style="dim" if header in _URI_HEADERS else None)
            for row in rows:
                table.add_row(*row)
            self._stdout.print(table)

    def print_record(self, record: dict[str, Any]) -> None:
        """Print one key/value record such as the auth status or settings.

        Nested sections (``search``, ``request``) are flattened to dotted
        keys for the plain and Rich renderings; JSON keeps the nesting.
        """
        if self._format == OutputFormat.JSON:
            self._write(_dumps(record))
            return

        pairs = _flatten(record)
        if self._format == OutputFormat.PLAIN:
            for key, value in pairs:
                self._write(f"{key}\t{_plain(value)}")
        else:
            table = Table(show_header=False, box=None, pad_edge=False)
            table.add_column(style="bold")
            table.add_column()
            for key, value in pairs:
                table.add_row(key, _plain(value))
            self._stdout.print(table)

    # ------------------------------------------------------------------ #
    # stderr
    # ------------------------------------------------------------------ #

    def emit(self, severity: Severity, message: str) -> None:
        """Print *message* to stderr at *severity*, honouring quiet/verbose."""
        if severity is Severity.DEBUG and not self._verbose:
            return
        style = _STYLES[severity]
        if self._quiet and style.quiet_hides:
            return
        if self._no_color:
            print(f"{style.prefix}{message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(style.markup.format(message))

    def info(self, message: str) -> None:
        self.emit(Severity.INFO, message)

    def success(self, message: str) -> None:
        self.emit(Severity.SUCCESS, message)

    def warning(self, message: str) -> None:
        self.emit(Severity.WARNING, message)

    def error(self, message: str) -> None:
        self.emit(Severity.ERROR, message)

    def security(self, message: str) -> None:
        """Report a rejected OAuth callback. Printed even with ``--quiet``."""
        self.emit(Severity.SECURITY, message)

    def debug(self, message: str) -> None:
        self.emit(Severity.DEBUG, message)

    def suggest(self, command: str) -> None:
        """Point the user at the next command to run (hidden by ``--quiet``)."""
        if self._quiet:
            return
        if self._no_color:
            print(f"→ {command}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[dim]→ {command}[/dim]")

    def _write(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _flatten(record: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    pairs: list[tuple[str, Any]] = []
    for key, value in record.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            pairs.extend(_flatten(value, f"{name}."))
        else:
            pairs.append((name, value))
    return pairs


def _plain(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def _color_disabled_by_env() -> bool:
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Global instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Drop the installed manager; the next call builds a fresh one."""
    global _output
    _output = None


def print_table(headers: list[str], rows: list[list[str]], title: Optional[str] = None) -> None:
    get_output().print_table(headers, rows, title)


def print_record(record: dict[str, Any]) -> None:
    get_output().print_record(record)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def security(message: str) -> None:
    get_output().security(message)


def debug(message: str) -> None:
    get_output().debug(message)


def suggest(command: str) -> None:
    get_output().suggest(command)
