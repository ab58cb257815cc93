"""Redemption orchestration: consume, verify, then issue tokens once.

Order of a redemption
---------------------
0. Local request validation; no registry access.
1. ``registry.consume(code_id, guard=...)``.  The guard runs under the
   record lock and checks the code verifier, the OTP gate and the
   exchange-type subset.  A failing guard leaves the record pending; a
   passing guard consumes it before anything leaves the process.
2. User tokens (find-or-create, then password grant) when requested.
3. Client tokens when requested.
4. All requested classes succeed or the whole call fails.

Every gateway call runs on a bounded thread pool under the redemption's
deadline.  A missed deadline surfaces as
:class:`~pkce_exchange.core.errors.TokenGenerationTimeout`; the ``code_id``
stays consumed either way.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Iterable, TypeVar

from pkce_exchange.core.codes import is_utf8_encodable
from pkce_exchange.core.config import PkceConfig
from pkce_exchange.core.errors import (
    ChallengeNotFound,
    InvalidRequest,
    OtpFailed,
    PkceError,
    TokenGenerationFailed,
    TokenGenerationTimeout,
    UserCreationConflict,
    VerificationFailed,
)
from pkce_exchange.core.gateway import (
    GatewayConflict,
    GatewayError,
    GatewayTimeout,
    IdentityGateway,
)
from pkce_exchange.core.log_utils import get_pkce_logger
from pkce_exchange.core.models import (
    ChallengeRecord,
    ExchangeType,
    TokenBundle,
    TokenPair,
    UserCredentials,
)
from pkce_exchange.core.registry import ChallengeRegistry
from pkce_exchange.core.verifier import OtpVerifier, check_otp, verify

_LOG = logging.getLogger("pkce-exchange.core.orchestrator")

T = TypeVar("T")


class TokenOrchestrator:
    """Drives a verified challenge through the identity gateway."""

    def __init__(
        self,
        registry: ChallengeRegistry,
        gateway: IdentityGateway,
        *,
        otp_verifier: OtpVerifier | None = None,
        otp_required: bool = False,
        max_verifier_length: int = 128,
        deadline_seconds: float = 10.0,
        max_workers: int = 8,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        if otp_required and otp_verifier is None:
            raise ValueError("an OTP verifier is required when OTP is mandatory")
        self.registry = registry
        self.gateway = gateway
        self.otp_verifier = otp_verifier
        self.otp_required = otp_required
        self.max_verifier_length = max_verifier_length
        self.deadline_seconds = deadline_seconds
        self._timer = timer
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="pkce-gateway"
        )

    @classmethod
    def from_config(
        cls,
        config: PkceConfig,
        registry: ChallengeRegistry,
        gateway: IdentityGateway,
        *,
        otp_verifier: OtpVerifier | None = None,
    ) -> "TokenOrchestrator":
        return cls(
            registry,
            gateway,
            otp_verifier=otp_verifier,
            otp_required=config.otp_required,
            max_verifier_length=config.max_verifier_length,
            deadline_seconds=config.gateway_deadline_seconds,
            max_workers=config.gateway_max_workers,
        )

    # ------------------------------------------------------------------ #
    # helpers                                                            #
    # ------------------------------------------------------------------ #
    def _call(
        self,
        operation: str,
        deadline: float,
        fn: Callable[..., T],
        *args: Any,
        on_conflict: type[PkceError] = TokenGenerationFailed,
        **kwargs: Any,
    ) -> T:
        """Run a gateway call on the pool, bounded by *deadline*.

        Gateway exceptions are translated into the core taxonomy here so
        nothing from the gateway module leaks to callers.
        """
        remaining = deadline - self._timer()
        if remaining <= 0:
            raise TokenGenerationTimeout(f"deadline exceeded before {operation}")
        future = self._executor.submit(fn, *args, timeout=remaining, **kwargs)
        try:
            return future.result(timeout=remaining)
        except FuturesTimeout:
            future.cancel()
            raise TokenGenerationTimeout(f"{operation} did not complete before the deadline") from None
        except GatewayTimeout as exc:
            raise TokenGenerationTimeout(f"{operation} timed out") from exc
        except GatewayConflict as exc:
            raise on_conflict(f"{operation} conflicted with existing state") from exc
        except GatewayError as exc:
            raise TokenGenerationFailed(f"{operation} failed") from exc
        except Exception as exc:  # noqa: BLE001 - nothing untyped may escape after consume
            _LOG.error("%s raised unexpected %s", operation, type(exc).__name__)
            raise TokenGenerationFailed(f"{operation} failed") from exc

    def _validate(
        self,
        code_id: str,
        code_verifier: str,
        exchange_type: ExchangeType | str | Iterable[str] | None,
        otp: str | None,
        user_credentials: UserCredentials | None,
    ) -> ExchangeType:
        if not isinstance(code_id, str) or not code_id:
            raise InvalidRequest("code_id is required")
        if not isinstance(code_verifier, str) or not code_verifier:
            raise InvalidRequest("code_verifier is required")
        if len(code_verifier) > self.max_verifier_length:
            raise InvalidRequest("code_verifier is too long")
        texts = [code_verifier, otp or ""]
        if user_credentials is not None:
            texts += [user_credentials.username, user_credentials.password]
        if not all(is_utf8_encodable(value) for value in texts):
            raise InvalidRequest("request fields must be valid UTF-8")
        try:
            requested = ExchangeType.parse(exchange_type)
        except ValueError as exc:
            raise InvalidRequest(str(exc)) from None
        if not requested:
            raise InvalidRequest("at least one exchange type is required")
        if ExchangeType.USER in requested and user_credentials is None:
            raise InvalidRequest("user credentials are required for user tokens")
        if otp is not None and self.otp_verifier is None:
            raise InvalidRequest("otp verification is not enabled")
        if self.otp_required and not otp:
            raise InvalidRequest("otp is required")
        return requested

    def _guard(
        self,
        code_verifier: str,
        requested: ExchangeType,
        otp: str | None,
        user_credentials: UserCredentials | None,
    ) -> Callable[[ChallengeRecord], None]:
        def guard(record: ChallengeRecord) -> None:
            if not verify(code_verifier, record.code_challenge, record.code_challenge_method):
                raise VerificationFailed()
            if otp is not None and self.otp_verifier is not None:
                subject = user_credentials.username if user_credentials else record.client_id
                if not check_otp(self.otp_verifier, subject, otp):
                    raise OtpFailed()
            if not record.requested_exchange_type.covers(requested):
                raise InvalidRequest("exchange type was not requested at registration")

        return guard

    # ------------------------------------------------------------------ #
    # public API                                                         #
    # ------------------------------------------------------------------ #
    def redeem(
        self,
        code_id: str,
        code_verifier: str,
        exchange_type: ExchangeType | str | Iterable[str] | None,
        otp: str | None = None,
        user_credentials: UserCredentials | None = None,
        *,
        timeout: float | None = None,
        correlation_id: str | None = None,
    ) -> TokenBundle:
        """Redeem *code_id* with *code_verifier* and return the issued tokens.

        Raises
        ------
        InvalidRequest
            Malformed request or exchange type not covered by the registration.
        ChallengeNotFound
            Unknown, expired or already consumed ``code_id``.
        VerificationFailed, OtpFailed
            Wrong proof; the challenge stays redeemable.
        UserCreationConflict
            The user exists with different attributes.
        TokenGenerationFailed
            Gateway failure (``TokenGenerationTimeout`` on a missed deadline).
        """
        requested = self._validate(code_id, code_verifier, exchange_type, otp, user_credentials)
        log = get_pkce_logger(
            base_logger_name="pkce-exchange.core.orchestrator",
            code_id=code_id,
            correlation_id=correlation_id,
        )

        try:
            record = self.registry.consume(
                code_id, guard=self._guard(code_verifier, requested, otp, user_credentials)
            )
        except (VerificationFailed, OtpFailed) as exc:
            log.info("Redemption rejected: %s", exc.error_code)
            raise
        if record is None:
            log.info("Redemption of unknown challenge")
            raise ChallengeNotFound()

        deadline = self._timer() + (timeout if timeout is not None else self.deadline_seconds)
        user_tokens: TokenPair | None = None
        client_tokens: TokenPair | None = None
        try:
            if ExchangeType.USER in requested and user_credentials is not None:
                user = self._call(
                    "user lookup",
                    deadline,
                    self.gateway.find_or_create_user,
                    user_credentials,
                    on_conflict=UserCreationConflict,
                )
                user_tokens = self._call(
                    "user token issuance",
                    deadline,
                    self.gateway.issue_user_tokens,
                    user,
                    user_credentials,
                    client_id=record.client_id,
                )
            if ExchangeType.CLIENT in requested:
                client_tokens = self._call(
                    "client token issuance",
                    deadline,
                    self.gateway.issue_client_tokens,
                    record.client_id,
                )
        except (UserCreationConflict, TokenGenerationFailed) as exc:
            log.warning(
                "Token issuance failed after consuming challenge: %s", exc.error_code
            )
            raise

        log.info("Redeemed challenge client_id=%s exchange=%s", record.client_id, ",".join(requested.names()))
        return TokenBundle(client_id=record.client_id, client=client_tokens, user=user_tokens)

    def refresh(self, refresh_token: str, *, timeout: float | None = None) -> TokenBundle:
        """Forward a refresh grant to the gateway; no challenge state involved."""
        if not isinstance(refresh_token, str) or not refresh_token:
            raise InvalidRequest("refresh_token is required")
        deadline = self._timer() + (timeout if timeout is not None else self.deadline_seconds)
        pair = self._call("token refresh", deadline, self.gateway.refresh_tokens, refresh_token)
        return TokenBundle(refreshed=pair)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
