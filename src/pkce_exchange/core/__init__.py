"""PKCE challenge core package.

This namespace hosts the **transport-agnostic** building blocks of the PKCE
exchange: challenge registration, single-use redemption and token issuance
through an external identity backend.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
codes
    Code-id generation and PKCE argument helpers.
verifier
    Constant-time proof checks (code verifier, OTP gate).
registry
    Single-use, time-bounded challenge store and its sweeper.
gateway
    Identity backend interface and HTTP implementation.
orchestrator
    Redemption and refresh flows.
service
    Façade exposing the inbound operations.
models
    Immutable dataclasses and enums.
errors
    Exception types used by the core.
config
    Environment-driven settings.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, ManualClock, default_clock  # noqa: F401
from .codes import (  # noqa: F401
    code_challenge_s256,
    generate_code_id,
    generate_code_verifier,
)
from .config import HttpGatewayConfig, PkceConfig  # noqa: F401
from .errors import (  # noqa: F401
    ChallengeNotFound,
    InternalError,
    InvalidRequest,
    OtpFailed,
    PkceError,
    TokenGenerationFailed,
    TokenGenerationTimeout,
    UserCreationConflict,
    VerificationFailed,
)
from .gateway import HttpIdentityGateway, IdentityGateway  # noqa: F401
from .log_utils import get_pkce_logger  # noqa: F401
from .models import (  # noqa: F401
    ChallengeMethod,
    ChallengeRecord,
    ChallengeStatus,
    ExchangeType,
    TokenBundle,
    TokenPair,
    UserCredentials,
    UserRef,
)
from .orchestrator import TokenOrchestrator  # noqa: F401
from .registry import ChallengeRegistry, RegistrySweeper  # noqa: F401
from .service import PkceExchangeService  # noqa: F401
from .verifier import OtpVerifier, verify  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "ManualClock",
    "default_clock",
    # codes
    "code_challenge_s256",
    "generate_code_id",
    "generate_code_verifier",
    # config
    "HttpGatewayConfig",
    "PkceConfig",
    # errors
    "ChallengeNotFound",
    "InternalError",
    "InvalidRequest",
    "OtpFailed",
    "PkceError",
    "TokenGenerationFailed",
    "TokenGenerationTimeout",
    "UserCreationConflict",
    "VerificationFailed",
    # gateway
    "HttpIdentityGateway",
    "IdentityGateway",
    # logging helpers
    "get_pkce_logger",
    # models
    "ChallengeMethod",
    "ChallengeRecord",
    "ChallengeStatus",
    "ExchangeType",
    "TokenBundle",
    "TokenPair",
    "UserCredentials",
    "UserRef",
    # flows
    "TokenOrchestrator",
    "ChallengeRegistry",
    "RegistrySweeper",
    "PkceExchangeService",
    "OtpVerifier",
    "verify",
]
