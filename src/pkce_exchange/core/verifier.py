"""Proof verification for redemptions.

Both gates compare secrets, so every comparison goes through
:func:`hmac.compare_digest` on bytes.  Nothing in this module logs the values
it compares.
"""

from __future__ import annotations

import hmac
import logging
from typing import Protocol, runtime_checkable

from pkce_exchange.core.codes import code_challenge_s256
from pkce_exchange.core.models import ChallengeMethod

_LOG = logging.getLogger("pkce-exchange.core.verifier")


@runtime_checkable
class OtpVerifier(Protocol):
    """External one-time-password check.

    *subject* is the username for user redemptions and the client id
    otherwise.
    """

    def __call__(self, subject: str, otp: str) -> bool: ...


def _constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def verify(presented_verifier: str, stored_challenge: str, method: ChallengeMethod) -> bool:
    """Return *True* if *presented_verifier* satisfies *stored_challenge*.

    ``plain`` compares the verifier itself, ``S256`` compares the
    base64url-without-padding SHA-256 digest of the verifier.
    """
    if method is ChallengeMethod.PLAIN:
        candidate = presented_verifier
    elif method is ChallengeMethod.S256:
        candidate = code_challenge_s256(presented_verifier)
    else:  # pragma: no cover - registration rejects anything else
        raise ValueError(f"unsupported challenge method {method!r}")
    return _constant_time_equals(candidate, stored_challenge)


def check_otp(otp_verifier: OtpVerifier, subject: str, otp: str) -> bool:
    """Run the external OTP gate.

    Errors raised by the external verifier fail the gate; they are logged
    with their type only.
    """
    try:
        return bool(otp_verifier(subject, otp))
    except Exception as exc:  # noqa: BLE001 - external collaborator
        _LOG.warning("OTP verifier raised %s; treating as rejection", type(exc).__name__)
        return False
