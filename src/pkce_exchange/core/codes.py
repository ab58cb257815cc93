"""Code-id generation and PKCE argument helpers.

RFC 7636 defines PKCE to bind a token redemption to the party that started
the flow.  The mechanism relies on a *code verifier* (random high-entropy
string) held by the client and a *code challenge* derived from that verifier
that is sent at registration time.

The server side only needs :func:`generate_code_id` and
:func:`parse_challenge_method`; the verifier helpers are the client half and
are kept here so tests and tooling derive challenges the same way.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import re
import secrets
from hashlib import sha256
from typing import Final, Iterable

from pkce_exchange.core.errors import InvalidRequest
from pkce_exchange.core.models import ChallengeMethod

CODE_ID_PREFIX: Final[str] = "c_"
# 24 random bytes -> 192 bits, comfortably above the 128-bit floor.
_CODE_ID_BYTES: Final[int] = 24
_MIN_CODE_ID_BYTES: Final[int] = 16

# RFC-7636 §4.1 mandates the verifier length between 43 and 128 characters.
_VERIFIER_LEN: Final[int] = 64
_ALLOWED_CHARS: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)
_S256_CHALLENGE_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]{43}$")

ALL_METHODS: Final[frozenset[ChallengeMethod]] = frozenset(ChallengeMethod)


def generate_code_id(nbytes: int = _CODE_ID_BYTES) -> str:
    """Return a fresh, URL-safe, opaque code id.

    The id is pure randomness: nothing about the client, the challenge or the
    time of registration can be derived from it.
    """
    if nbytes < _MIN_CODE_ID_BYTES:
        raise ValueError("code id needs at least 16 random bytes")
    return CODE_ID_PREFIX + secrets.token_urlsafe(nbytes)


def parse_challenge_method(
    value: ChallengeMethod | str | None,
    enabled: Iterable[ChallengeMethod] = ALL_METHODS,
) -> ChallengeMethod:
    """Validate a ``code_challenge_method`` argument.

    Raises
    ------
    InvalidRequest
        If the method is unknown or disabled by configuration.
    """
    if isinstance(value, ChallengeMethod):
        method = value
    elif isinstance(value, str):
        normalised = value.strip()
        if normalised.lower() == "plain":
            method = ChallengeMethod.PLAIN
        elif normalised.upper() == "S256":
            method = ChallengeMethod.S256
        else:
            raise InvalidRequest("unsupported code_challenge_method")
    else:
        raise InvalidRequest("code_challenge_method is required")

    if method not in frozenset(enabled):
        raise InvalidRequest(f"code_challenge_method {method.value} is not enabled")
    return method


def is_well_formed_s256_challenge(challenge: str) -> bool:
    """Return *True* if *challenge* looks like base64url(SHA-256) without padding."""
    return bool(_S256_CHALLENGE_RE.match(challenge))


def is_utf8_encodable(value: str) -> bool:
    """Return *False* for strings carrying lone surrogates (possible from JSON)."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _random_urlsafe_string(length: int) -> str:
    """Return a cryptographically secure, URL-safe random string."""
    return "".join(secrets.choice(_ALLOWED_CHARS) for _ in range(length))


def generate_code_verifier(length: int = _VERIFIER_LEN) -> str:
    """Generate a high-entropy code verifier.

    Parameters
    ----------
    length:
        Desired length between 43 and 128 characters (default 64).
    """
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be 43-128 characters")
    return _random_urlsafe_string(length)


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    digest = sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
