"""End-to-end checks through PkceExchangeService with an in-memory gateway.

Coverage:
* the register -> redeem -> re-redeem scenario
* expiry reclamation via the background sweeper
* lifecycle (context manager, close propagates to the gateway)
"""

from __future__ import annotations

import time

import pytest

from pkce_exchange.core.clock import ManualClock
from pkce_exchange.core.codes import code_challenge_s256
from pkce_exchange.core.config import PkceConfig
from pkce_exchange.core.errors import ChallengeNotFound
from pkce_exchange.core.service import PkceExchangeService


def test_register_redeem_then_replay(service: PkceExchangeService) -> None:
    code_id = service.register_challenge(
        "app1", code_challenge_s256("verifier-abc"), "S256", {"client"}
    )
    assert code_id.startswith("c_")

    bundle = service.redeem_challenge(code_id, "verifier-abc", {"client"})
    assert bundle.client is not None

    with pytest.raises(ChallengeNotFound):
        service.redeem_challenge(code_id, "verifier-abc", {"client"})


def test_refresh_passthrough(service: PkceExchangeService, gateway) -> None:  # noqa: ANN001
    assert service.refresh_tokens("rt").refreshed is not None
    assert gateway.operations() == ["refresh_tokens"]


def test_sweeper_reclaims_expired(gateway, clock: ManualClock) -> None:  # noqa: ANN001
    config = PkceConfig(challenge_ttl_seconds=60, sweep_interval_seconds=0.01)
    with PkceExchangeService(config=config, gateway=gateway, clock=clock) as svc:
        svc.register_challenge("app1", "plain-verifier", "plain", "client")
        assert len(svc.registry) == 1
        clock.advance(61)
        deadline = time.monotonic() + 2
        while len(svc.registry) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(svc.registry) == 0
    assert not svc.sweeper.running


def test_close_closes_gateway(clock: ManualClock) -> None:
    class ClosingGateway:
        closed = False

        def close(self) -> None:
            self.closed = True

    gw = ClosingGateway()
    svc = PkceExchangeService(config=PkceConfig(), gateway=gw, clock=clock)  # type: ignore[arg-type]
    svc.close()
    assert gw.closed is True
