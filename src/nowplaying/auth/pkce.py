"""PKCE (Proof Key for Code Exchange, :rfc:`7636`) helpers.

Generates the random ``code_verifier`` and ``state`` strings for a login
attempt and derives the S256 ``code_challenge`` from the verifier. No
client secret is involved: the verifier proves that the party redeeming
the authorization code is the one that started the flow.

Example::

    session = new_session()
    # session.code_challenge goes into the authorize URL,
    # session.code_verifier into the token exchange.
"""

from __future__ import annotations

import base64
import hashlib
import random
import secrets
import time

from nowplaying.exceptions import CryptoError
from nowplaying.models import PKCESession

# RFC 7636 section 4.1 unreserved characters.
ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

VERIFIER_LENGTH = 128
STATE_LENGTH = 32


def random_string(length: int) -> str:
    """Return *length* characters drawn from :data:`ALPHABET`.

    Uses the operating system's CSPRNG. On platforms without an entropy
    source, falls back to a PRNG seeded from the current time.

    Raises:
        ValueError: If *length* is negative.
    """
    if length < 0:
        raise ValueError(f"length must be non-negative, got {length}")
    try:
        return "".join(secrets.choice(ALPHABET) for _ in range(length))
    except NotImplementedError:
        rng = random.Random(time.time_ns())
        return "".join(rng.choice(ALPHABET) for _ in range(length))


def compute_challenge(verifier: str) -> str:
    """Derive the S256 code challenge: unpadded base64url of ``SHA256(verifier)``.

    Raises:
        CryptoError: If the verifier cannot be hashed or encoded.
    """
    try:
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    except (AttributeError, UnicodeError, ValueError) as exc:
        raise CryptoError(f"Failed to generate PKCE challenge: {exc}") from exc


def generate_pkce() -> tuple[str, str]:
    """Generate a PKCE ``(code_verifier, code_challenge)`` pair."""
    verifier = random_string(VERIFIER_LENGTH)
    return verifier, compute_challenge(verifier)


def new_session() -> PKCESession:
    """Create the single-use secrets for one login attempt."""
    verifier, challenge = generate_pkce()
    return PKCESession(
        code_verifier=verifier,
        code_challenge=challenge,
        state=random_string(STATE_LENGTH),
    )
