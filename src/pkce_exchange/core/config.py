"""Configuration for the PKCE core and the HTTP identity gateway.

Both dataclasses are immutable and built either directly (tests, embedders)
or from environment variables via ``from_env()``.  Invalid values raise
``ValueError`` at load time rather than on first use.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Literal

from pkce_exchange.core.codes import ALL_METHODS, parse_challenge_method
from pkce_exchange.core.errors import InvalidRequest
from pkce_exchange.core.models import ChallengeMethod
from pkce_exchange.utils.environment import (
    env_bool,
    env_float,
    env_int,
    env_list,
    env_mapping,
)

_LOG = logging.getLogger("pkce-exchange.core.config")

# "evict_oldest" drops the earliest-registered record of a full shard; reads do not count
EvictionPolicy = Literal["reject", "evict_oldest"]
_EVICTION_POLICIES: tuple[str, ...] = ("reject", "evict_oldest")


@dataclass(frozen=True)
class PkceConfig:
    """Settings for registration, redemption and the registry."""

    challenge_ttl_seconds: float = 300.0
    enabled_methods: frozenset[ChallengeMethod] = ALL_METHODS
    otp_required: bool = False
    max_registry_size: int = 10_000
    eviction_policy: EvictionPolicy = "reject"
    registry_shards: int = 64
    max_challenge_length: int = 128
    max_verifier_length: int = 128
    max_verification_attempts: int = 5
    sweep_interval_seconds: float = 30.0
    gateway_deadline_seconds: float = 10.0
    gateway_max_workers: int = 8

    def __post_init__(self) -> None:
        if self.challenge_ttl_seconds <= 0:
            raise ValueError("challenge_ttl_seconds must be positive")
        if not self.enabled_methods:
            raise ValueError("at least one challenge method must be enabled")
        if self.eviction_policy not in _EVICTION_POLICIES:
            raise ValueError(f"eviction_policy must be one of {_EVICTION_POLICIES}")
        if self.max_registry_size < 1 or self.registry_shards < 1:
            raise ValueError("registry size and shard count must be positive")
        if self.max_challenge_length < 43:
            raise ValueError("max_challenge_length must allow S256 challenges (43)")
        if self.max_verifier_length < 1 or self.max_verification_attempts < 1:
            raise ValueError("verifier length and attempt limit must be positive")
        if self.gateway_deadline_seconds <= 0 or self.gateway_max_workers < 1:
            raise ValueError("gateway deadline and worker count must be positive")

    @classmethod
    def from_env(cls) -> "PkceConfig":
        """Load settings from ``PKCE_*`` environment variables."""
        method_names = env_list("PKCE_ENABLED_METHODS", ("S256", "plain"))
        try:
            methods = frozenset(parse_challenge_method(name) for name in method_names)
        except InvalidRequest:
            raise ValueError(
                f"PKCE_ENABLED_METHODS contains an unknown method: {method_names}"
            ) from None

        config = cls(
            challenge_ttl_seconds=env_float("PKCE_CHALLENGE_TTL_SECONDS", 300.0),
            enabled_methods=methods,
            otp_required=env_bool("PKCE_OTP_REQUIRED", False),
            max_registry_size=env_int("PKCE_MAX_REGISTRY_SIZE", 10_000, minimum=1),
            eviction_policy=_eviction_policy_from_env(),
            registry_shards=env_int("PKCE_REGISTRY_SHARDS", 64, minimum=1),
            max_challenge_length=env_int("PKCE_MAX_CHALLENGE_LENGTH", 128, minimum=43),
            max_verifier_length=env_int("PKCE_MAX_VERIFIER_LENGTH", 128, minimum=1),
            max_verification_attempts=env_int(
                "PKCE_MAX_VERIFICATION_ATTEMPTS", 5, minimum=1
            ),
            sweep_interval_seconds=env_float("PKCE_SWEEP_INTERVAL_SECONDS", 30.0),
            gateway_deadline_seconds=env_float("PKCE_GATEWAY_DEADLINE_SECONDS", 10.0),
            gateway_max_workers=env_int("PKCE_GATEWAY_MAX_WORKERS", 8, minimum=1),
        )
        _LOG.debug(
            "Loaded PKCE config ttl=%ss methods=%s otp_required=%s max_size=%d",
            config.challenge_ttl_seconds,
            sorted(m.value for m in config.enabled_methods),
            config.otp_required,
            config.max_registry_size,
        )
        return config


def _eviction_policy_from_env() -> EvictionPolicy:
    value = (os.getenv("PKCE_EVICTION_POLICY") or "reject").strip().lower()
    if value not in _EVICTION_POLICIES:
        raise ValueError(f"PKCE_EVICTION_POLICY must be one of {_EVICTION_POLICIES}")
    return value  # type: ignore[return-value]


@dataclass(frozen=True)
class HttpGatewayConfig:
    """Endpoints and credentials for :class:`~pkce_exchange.core.gateway.HttpIdentityGateway`."""

    token_url: str
    users_url: str
    admin_client_id: str
    admin_client_secret: str = field(repr=False)
    client_secrets: dict[str, str] = field(default_factory=dict, repr=False)
    default_client_id: str | None = None
    verify_ssl: bool = True

    @classmethod
    def from_env(cls) -> "HttpGatewayConfig":
        """Load the identity backend settings from ``IDP_*`` variables."""
        token_url = (os.getenv("IDP_TOKEN_URL") or "").strip()
        users_url = (os.getenv("IDP_USERS_URL") or "").strip().rstrip("/")
        admin_client_id = (os.getenv("IDP_ADMIN_CLIENT_ID") or "").strip()
        if not token_url or not users_url or not admin_client_id:
            raise ValueError(
                "IDP_TOKEN_URL, IDP_USERS_URL and IDP_ADMIN_CLIENT_ID must be set"
            )
        return cls(
            token_url=token_url,
            users_url=users_url,
            admin_client_id=admin_client_id,
            admin_client_secret=os.getenv("IDP_ADMIN_CLIENT_SECRET", ""),
            client_secrets=env_mapping("IDP_CLIENT_SECRETS"),
            default_client_id=(os.getenv("IDP_DEFAULT_CLIENT_ID") or None),
            verify_ssl=env_bool("IDP_VERIFY_SSL", True),
        )
