"""Shared fixtures: manual clock, in-memory identity gateway, wired service."""

from __future__ import annotations

import threading
import time
from typing import Iterator

import pytest

from pkce_exchange.core.clock import ManualClock
from pkce_exchange.core.config import PkceConfig
from pkce_exchange.core.gateway import GatewayConflict
from pkce_exchange.core.models import TokenPair, UserCredentials, UserRef
from pkce_exchange.core.orchestrator import TokenOrchestrator
from pkce_exchange.core.registry import ChallengeRegistry
from pkce_exchange.core.service import PkceExchangeService


class FakeGateway:
    """In-memory identity backend recording every call.

    ``failures`` maps an operation name to the exception it should raise;
    ``delays`` maps an operation name to seconds to sleep first.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []
        self.users: dict[str, UserCredentials] = {}
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self._lock = threading.Lock()
        self._counter = 0

    def _enter(self, operation: str, arg: object) -> int:
        with self._lock:
            self.calls.append((operation, arg))
            self._counter += 1
            n = self._counter
        if operation in self.delays:
            time.sleep(self.delays[operation])
        if operation in self.failures:
            raise self.failures[operation]
        return n

    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]

    def find_or_create_user(self, credentials: UserCredentials, *, timeout=None) -> UserRef:  # noqa: ANN001
        self._enter("find_or_create_user", credentials.username)
        existing = self.users.get(credentials.username)
        if existing is not None and existing.email != credentials.email:
            raise GatewayConflict("email differs", status_code=409)
        self.users[credentials.username] = credentials
        return UserRef(user_id=f"uid-{credentials.username}", username=credentials.username)

    def issue_user_tokens(self, user: UserRef, credentials: UserCredentials, *, client_id: str, timeout=None) -> TokenPair:  # noqa: ANN001
        n = self._enter("issue_user_tokens", (user.username, client_id))
        return TokenPair(access_token=f"user-at-{n}", refresh_token=f"user-rt-{n}", expires_in=300)

    def issue_client_tokens(self, client_id: str, *, timeout=None) -> TokenPair:  # noqa: ANN001
        n = self._enter("issue_client_tokens", client_id)
        return TokenPair(access_token=f"client-at-{n}", refresh_token=f"client-rt-{n}", expires_in=300)

    def refresh_tokens(self, refresh_token: str, *, timeout=None) -> TokenPair:  # noqa: ANN001
        n = self._enter("refresh_tokens", refresh_token)
        return TokenPair(access_token=f"refreshed-at-{n}", refresh_token=f"refreshed-rt-{n}", expires_in=300)


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run tests against a live identity backend",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' are always run because they stub all external
    calls.
    """
    if not config.getoption("--integration", default=False):
        skip_integration = pytest.mark.skip(reason="Need --integration option to run")
        for item in items:
            if "integration" in item.keywords and "ci_safe" not in item.keywords:
                item.add_marker(skip_integration)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def registry(clock: ManualClock) -> ChallengeRegistry:
    return ChallengeRegistry(ttl_seconds=300, max_size=1_000, shards=8, clock=clock)


@pytest.fixture()
def orchestrator(registry: ChallengeRegistry, gateway: FakeGateway) -> Iterator[TokenOrchestrator]:
    orch = TokenOrchestrator(registry, gateway, deadline_seconds=5.0, max_workers=16)
    yield orch
    orch.close()


@pytest.fixture()
def service(clock: ManualClock, gateway: FakeGateway) -> Iterator[PkceExchangeService]:
    config = PkceConfig(challenge_ttl_seconds=300, registry_shards=8, sweep_interval_seconds=60)
    svc = PkceExchangeService(config=config, gateway=gateway, clock=clock)
    yield svc
    svc.close()
