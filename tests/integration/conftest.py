"""Configuration for integration tests against a live identity backend."""

import os

import pytest

from pkce_exchange.core.gateway import HttpIdentityGateway


@pytest.fixture()
def live_gateway():
    """Gateway built from ``IDP_*`` variables; skips when they are missing."""
    if not os.getenv("IDP_TOKEN_URL"):
        pytest.skip("IDP_TOKEN_URL not set")
    gateway = HttpIdentityGateway.from_env()
    yield gateway
    gateway.close()


@pytest.fixture()
def live_client_id() -> str:
    client_id = os.getenv("IDP_DEFAULT_CLIENT_ID")
    if not client_id:
        pytest.skip("IDP_DEFAULT_CLIENT_ID not set")
    return client_id
