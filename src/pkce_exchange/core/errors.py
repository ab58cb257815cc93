"""Exception types raised by the PKCE core.

Only lightweight, **data-carrying** exceptions live here so that web/CLI layers
can transform them into HTTP responses or user-friendly messages.  None of
them ever carries a verifier, challenge, OTP or token.
"""

from __future__ import annotations

from typing import Any, ClassVar


class PkceError(RuntimeError):
    """Base class for every failure surfaced by the core."""

    error_code: ClassVar[str] = "internal_error"
    http_status: ClassVar[int] = 500
    retryable: ClassVar[bool] = False
    default_message: ClassVar[str] = "Internal error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {
            "error": self.error_code,
            "message": str(self),
            "retryable": self.retryable,
        }


class InvalidRequest(PkceError):
    """Malformed or out-of-policy input. Never retried by the core."""

    error_code = "invalid_request"
    http_status = 400
    default_message = "Invalid request."


class ChallengeNotFound(PkceError):
    """Unknown, expired or already consumed ``code_id``.

    The three causes share one message so callers cannot tell them apart.
    """

    error_code = "challenge_not_found"
    http_status = 404
    default_message = "Challenge not found."

    def __init__(self) -> None:
        super().__init__(None)


class ProofMismatch(PkceError):
    """A presented proof did not match; counts toward the attempt limit."""

    error_code = "proof_mismatch"
    http_status = 401
    default_message = "Proof did not match."


class VerificationFailed(ProofMismatch):
    error_code = "verification_failed"
    default_message = "Code verifier does not match the registered challenge."


class OtpFailed(ProofMismatch):
    error_code = "otp_failed"
    default_message = "One-time password rejected."


class UserCreationConflict(PkceError):
    """User exists in the identity backend with different attributes."""

    error_code = "user_creation_conflict"
    http_status = 409
    default_message = "User already exists with different attributes."


class TokenGenerationFailed(PkceError):
    """The identity backend failed to issue tokens.

    The ``code_id`` used for the attempt is already consumed; callers must
    start again from registration.
    """

    error_code = "token_generation_failed"
    http_status = 502
    retryable = True
    default_message = "Token generation failed."


class TokenGenerationTimeout(TokenGenerationFailed):
    """The identity backend did not answer before the deadline.

    The outcome on the backend side is unknown, hence ``ambiguous``.
    """

    error_code = "token_generation_timeout"
    http_status = 504
    default_message = "Identity backend did not respond before the deadline."
    ambiguous: ClassVar[bool] = True

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["ambiguous"] = self.ambiguous
        return payload


class InternalError(PkceError):
    """Local failure such as a code id collision or a full registry."""

    retryable = True
