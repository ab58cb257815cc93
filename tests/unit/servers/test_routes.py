"""Unit tests for the HTTP endpoints (registration, redemption, refresh)."""

from __future__ import annotations

import httpx
import pytest

from pkce_exchange.core.codes import code_challenge_s256
from pkce_exchange.core.gateway import GatewayTimeout
from pkce_exchange.servers.main import create_app

# --------------------------------------------------------------------------- #
# Constants                                                                   #
# --------------------------------------------------------------------------- #
VERIFIER = "verifier-abc"
REGISTER = {
    "client_id": "app1",
    "code_challenge": code_challenge_s256(VERIFIER),
    "code_challenge_method": "S256",
    "exchange_type": ["client"],
}


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
async def client(service):  # noqa: ANN001
    """Async HTTP client bound to the Starlette app."""
    app = create_app(service)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _register(client: httpx.AsyncClient, **overrides) -> str:  # noqa: ANN003
    resp = await client.post("/pkce/challenges", json={**REGISTER, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()["code_id"]


# --------------------------------------------------------------------------- #
# Tests                                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_health(client: httpx.AsyncClient) -> None:
    resp = await client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_register_then_redeem_once(client: httpx.AsyncClient) -> None:
    resp = await client.post("/pkce/challenges", json=REGISTER)
    assert resp.status_code == 201
    body = resp.json()
    assert body["client_id"] == "app1"
    assert body["expires_in"] == 300
    code_id = body["code_id"]

    redeem = {"code_id": code_id, "code_verifier": VERIFIER, "exchange_type": "client"}
    resp = await client.post("/pkce/token", json=redeem)
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    tokens = resp.json()
    assert tokens["client_id"] == "app1"
    assert tokens["client_tokens"]["access_token"].startswith("client-at-")
    assert "user_tokens" not in tokens

    resp = await client.post("/pkce/token", json=redeem)
    assert resp.status_code == 404
    assert resp.json()["error"] == "challenge_not_found"


@pytest.mark.anyio
async def test_user_redeem(client: httpx.AsyncClient) -> None:
    code_id = await _register(client, exchange_type="client,user")
    resp = await client.post(
        "/pkce/token",
        json={
            "code_id": code_id,
            "code_verifier": VERIFIER,
            "exchange_type": ["user"],
            "user": {"username": "alice", "password": "pw", "email": "alice@example.com"},
        },
    )
    assert resp.status_code == 200
    assert set(resp.json()) == {"client_id", "user_tokens"}


@pytest.mark.anyio
async def test_wrong_verifier_then_correct(client: httpx.AsyncClient) -> None:
    code_id = await _register(client)
    bad = {"code_id": code_id, "code_verifier": "nope", "exchange_type": "client"}
    resp = await client.post("/pkce/token", json=bad)
    assert resp.status_code == 401
    assert resp.json() == {
        "error": "verification_failed",
        "message": "Code verifier does not match the registered challenge.",
        "retryable": False,
    }

    good = {**bad, "code_verifier": VERIFIER}
    assert (await client.post("/pkce/token", json=good)).status_code == 200


@pytest.mark.anyio
async def test_escalation_is_bad_request(client: httpx.AsyncClient) -> None:
    code_id = await _register(client)
    resp = await client.post(
        "/pkce/token",
        json={
            "code_id": code_id,
            "code_verifier": VERIFIER,
            "exchange_type": "client,user",
            "user": {"username": "alice", "password": "pw"},
        },
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body",
    [
        {**REGISTER, "code_challenge_method": "S512"},
        {**REGISTER, "code_challenge": ""},
        {**REGISTER, "client_id": None},
        {**REGISTER, "exchange_type": 1},
    ],
)
async def test_register_validation(client: httpx.AsyncClient, body: dict) -> None:
    resp = await client.post("/pkce/challenges", json=body)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"


@pytest.mark.anyio
async def test_malformed_json(client: httpx.AsyncClient) -> None:
    resp = await client.post(
        "/pkce/token", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400
    resp = await client.post("/pkce/token", json=["a", "list"])
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_incomplete_user_object(client: httpx.AsyncClient) -> None:
    code_id = await _register(client, exchange_type="user")
    resp = await client.post(
        "/pkce/token",
        json={"code_id": code_id, "code_verifier": VERIFIER, "exchange_type": "user", "user": {"username": "a"}},
    )
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_gateway_timeout_maps_to_504(client: httpx.AsyncClient, gateway) -> None:  # noqa: ANN001
    gateway.failures["issue_client_tokens"] = GatewayTimeout("slow")
    code_id = await _register(client)
    resp = await client.post(
        "/pkce/token", json={"code_id": code_id, "code_verifier": VERIFIER, "exchange_type": "client"}
    )
    assert resp.status_code == 504
    assert resp.json()["ambiguous"] is True
    assert resp.json()["retryable"] is True


@pytest.mark.anyio
async def test_refresh(client: httpx.AsyncClient) -> None:
    resp = await client.post("/pkce/refresh", json={"refresh_token": "rt-1"})
    assert resp.status_code == 200
    assert resp.json()["tokens"]["refresh_token"].startswith("refreshed-rt-")

    resp = await client.post("/pkce/refresh", json={"refresh_token": 5})
    assert resp.status_code == 400


@pytest.mark.anyio
async def test_correlation_id_echo(client: httpx.AsyncClient) -> None:
    resp = await client.get("/healthz", headers={"X-Correlation-ID": "abc-123"})
    assert resp.headers["x-correlation-id"] == "abc-123"

    resp = await client.get("/healthz", headers={"X-Correlation-ID": "bad id with spaces"})
    generated = resp.headers["x-correlation-id"]
    assert generated != "bad id with spaces" and len(generated) == 32


@pytest.mark.anyio
async def test_lone_surrogate_verifier_is_bad_request(client: httpx.AsyncClient) -> None:
    code_id = await _register(client)
    raw = (
        '{"code_id": "%s", "code_verifier": "\\ud800", "exchange_type": "client"}' % code_id
    ).encode()
    resp = await client.post(
        "/pkce/token", content=raw, headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"

    # the challenge is still redeemable with the real verifier
    redeem = {"code_id": code_id, "code_verifier": VERIFIER, "exchange_type": "client"}
    assert (await client.post("/pkce/token", json=redeem)).status_code == 200


@pytest.mark.anyio
async def test_non_string_user_attribute_is_bad_request(client: httpx.AsyncClient, gateway) -> None:  # noqa: ANN001
    code_id = await _register(client, exchange_type="user")
    resp = await client.post(
        "/pkce/token",
        json={
            "code_id": code_id,
            "code_verifier": VERIFIER,
            "exchange_type": "user",
            "user": {"username": "alice", "password": "pw", "email": 42},
        },
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"
    assert gateway.calls == []
