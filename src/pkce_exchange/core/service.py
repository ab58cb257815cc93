"""PkceExchangeService – the inbound operation surface.

This service wires configuration, the challenge registry, its sweeper, the
identity gateway and the token orchestrator, and exposes the three inbound
operations.  Handlers in ``pkce_exchange.servers.routes`` call the thin
façade methods below; any other transport would do the same.

All collaborators are injectable so tests and embedders can swap the
identity backend or drive time with a manual clock.
"""

from __future__ import annotations

import logging
from typing import Iterable

from pkce_exchange.core.clock import Clock, default_clock
from pkce_exchange.core.config import PkceConfig
from pkce_exchange.core.gateway import HttpIdentityGateway, IdentityGateway
from pkce_exchange.core.models import (
    ChallengeMethod,
    ExchangeType,
    TokenBundle,
    UserCredentials,
)
from pkce_exchange.core.orchestrator import TokenOrchestrator
from pkce_exchange.core.registry import ChallengeRegistry, RegistrySweeper
from pkce_exchange.core.verifier import OtpVerifier

_LOG = logging.getLogger("pkce-exchange.core.service")


class PkceExchangeService:
    """Application service for challenge registration, redemption and refresh."""

    def __init__(
        self,
        *,
        config: PkceConfig | None = None,
        gateway: IdentityGateway | None = None,
        registry: ChallengeRegistry | None = None,
        otp_verifier: OtpVerifier | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config or PkceConfig.from_env()
        if gateway is None:
            gateway = HttpIdentityGateway.from_env()
            _LOG.info("Using HTTP identity gateway at %s", gateway.config.token_url)
        self.gateway = gateway
        self.registry = registry or ChallengeRegistry.from_config(self.config, clock=clock)
        self.sweeper = RegistrySweeper(self.registry, self.config.sweep_interval_seconds)
        self.orchestrator = TokenOrchestrator.from_config(
            self.config, self.registry, self.gateway, otp_verifier=otp_verifier
        )

    # ------------------------------------------------------------------ #
    # lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        """Start background expiry reclamation."""
        self.sweeper.start()

    def close(self) -> None:
        self.sweeper.stop()
        self.orchestrator.close()
        close_gateway = getattr(self.gateway, "close", None)
        if callable(close_gateway):
            close_gateway()

    def __enter__(self) -> "PkceExchangeService":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # inbound operations                                                 #
    # ------------------------------------------------------------------ #
    def register_challenge(
        self,
        client_id: str,
        code_challenge: str,
        code_challenge_method: ChallengeMethod | str | None,
        exchange_type: ExchangeType | str | Iterable[str] | None,
    ) -> str:
        """Register a challenge and return its ``code_id``."""
        return self.registry.register(
            client_id, code_challenge, code_challenge_method, exchange_type
        )

    def redeem_challenge(
        self,
        code_id: str,
        code_verifier: str,
        exchange_type: ExchangeType | str | Iterable[str] | None,
        otp: str | None = None,
        user_credentials: UserCredentials | None = None,
        *,
        correlation_id: str | None = None,
    ) -> TokenBundle:
        """Redeem a challenge; see :meth:`TokenOrchestrator.redeem`."""
        return self.orchestrator.redeem(
            code_id,
            code_verifier,
            exchange_type,
            otp,
            user_credentials,
            correlation_id=correlation_id,
        )

    def refresh_tokens(self, refresh_token: str) -> TokenBundle:
        return self.orchestrator.refresh(refresh_token)
