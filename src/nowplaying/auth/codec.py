"""Minimal HTTP/1.1 message codec for the OAuth callback listener.

The listener only ever sees a browser redirect, so this module parses just
the request line (method, path, query) and builds ``Connection: close``
responses. It also owns the RFC 3986 query encoder shared by the authorize
URL builder and the Web API gateway.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Union
from urllib.parse import quote, unquote

from nowplaying.exceptions import ParseError
from nowplaying.models import CallbackRequest

_REQUEST_LINE = re.compile(r"^([A-Za-z]+)\s+(/\S*)\s+HTTP/")
_STATUS_LINE = re.compile(r"^HTTP/\d(?:\.\d)?\s+(\d{3}(?:\s+.*)?)$")

HEADER_TERMINATOR = b"\r\n\r\n"


def parse_request(raw: Union[bytes, str]) -> Optional[CallbackRequest]:
    """Parse the request line of a raw HTTP request.

    The query string is split on ``&`` and each pair on its first ``=``; a
    pair without ``=`` maps to an empty value. Keys and values are
    percent-decoded.

    Returns:
        A :class:`~nowplaying.models.CallbackRequest`, or ``None`` when the
        request line does not look like ``METHOD /path?query HTTP/x``.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("latin-1")
    match = _REQUEST_LINE.match(raw)
    if match is None:
        return None
    method, target = match.groups()

    path, _, query = target.partition("?")
    params: dict[str, str] = {}
    for pair in query.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        if not key:
            continue
        params[unquote(key)] = unquote(value)
    return CallbackRequest(method=method.upper(), path=path, params=params)


def build_response(
    status_line: str,
    body: str,
    content_type: str = "text/html",
) -> bytes:
    """Build a complete ``Connection: close`` HTTP/1.1 response.

    Args:
        status_line: Status code and reason, e.g. ``"200 OK"``.
        body: Response body; ``Content-Length`` is its UTF-8 byte length.
        content_type: Value of the ``Content-Type`` header.
    """
    payload = body.encode("utf-8")
    head = "\r\n".join(
        [
            f"HTTP/1.1 {status_line}",
            f"Content-Type: {content_type}",
            f"Content-Length: {len(payload)}",
            "Connection: close",
            "",
            "",
        ]
    )
    return head.encode("latin-1") + payload


def parse_response(raw: bytes) -> tuple[str, dict[str, str], bytes]:
    """Split a raw HTTP response into ``(status_line, headers, body)``.

    Header names are lower-cased. The body is truncated to
    ``Content-Length`` when that header is present.

    Raises:
        ParseError: If the header block or status line is malformed.
    """
    head, sep, body = raw.partition(HEADER_TERMINATOR)
    if not sep:
        raise ParseError("response has no header terminator")
    lines = head.decode("latin-1").split("\r\n")
    match = _STATUS_LINE.match(lines[0])
    if match is None:
        raise ParseError(f"malformed status line: {lines[0]!r}")

    headers: dict[str, str] = {}
    for line in lines[1:]:
        name, colon, value = line.partition(":")
        if not colon:
            raise ParseError(f"malformed header line: {line!r}")
        headers[name.strip().lower()] = value.strip()

    length = headers.get("content-length")
    if length is not None and length.isdigit():
        body = body[: int(length)]
    return match.group(1), headers, body


def encode_query(params: Mapping[str, Any]) -> str:
    """Encode *params* as a query string with sorted keys.

    Every character outside the RFC 3986 unreserved set
    (``A-Z a-z 0-9 - . _ ~``) is percent-encoded, so spaces become ``%20``
    rather than ``+``. ``None`` values are skipped; booleans are lower-cased.
    """
    parts = []
    for key in sorted(params):
        value = params[key]
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        parts.append(f"{quote(str(key), safe='')}={quote(str(value), safe='')}")
    return "&".join(parts)
