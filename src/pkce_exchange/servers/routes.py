"""HTTP endpoints for challenge registration, redemption and refresh.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters (JSON bodies).
2. Delegate business logic to ``PkceExchangeService`` on the thread pool.
3. Return an appropriate Starlette ``Response`` type.

The base path is configurable (default: ``/pkce``) so that reverse-proxies can
mount the application under arbitrary prefixes.

SECURITY NOTE
-------------
• No raw secrets (code verifiers, challenges, OTPs, passwords, access /
  refresh tokens) are ever logged.
• Correlation IDs, if present in ``request.state.correlation_id``, are included
  in INFO logs to aid troubleshooting.

This module is HTTP-only and MUST remain free from business logic.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from pkce_exchange.core.errors import InvalidRequest, PkceError
from pkce_exchange.core.log_utils import short_code_id
from pkce_exchange.core.models import UserCredentials
from pkce_exchange.core.service import PkceExchangeService

_LOG = logging.getLogger("pkce-exchange.servers.routes")


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or "-"


def _error_response(exc: PkceError) -> JSONResponse:
    return JSONResponse(exc.to_payload(), status_code=exc.http_status)


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise InvalidRequest("request body must be JSON") from None
    if not isinstance(payload, dict):
        raise InvalidRequest("request body must be a JSON object")
    return payload


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequest(f"{key} must be a string")
    return value


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def build_routes(svc: PkceExchangeService, *, base_path: str = "/pkce") -> list[Route]:
    """Return the PKCE endpoints bound to *svc* under *base_path*."""

    # ----- POST /pkce/challenges ------------------------------------------ #
    async def _register(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            code_id = await run_in_threadpool(
                svc.register_challenge,
                payload.get("client_id"),
                payload.get("code_challenge"),
                payload.get("code_challenge_method"),
                payload.get("exchange_type"),
            )
        except PkceError as exc:
            _LOG.info(
                "Challenge registration rejected error=%s correlation_id=%s",
                exc.error_code,
                _correlation_id(request),
            )
            return _error_response(exc)

        _LOG.info(
            "Challenge registered code_id=%s correlation_id=%s",
            short_code_id(code_id),
            _correlation_id(request),
        )
        return JSONResponse(
            {
                "code_id": code_id,
                "client_id": payload["client_id"].strip(),
                "expires_in": int(svc.registry.ttl_seconds),
            },
            status_code=201,
        )

    # ----- POST /pkce/token ------------------------------------------------ #
    async def _redeem(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            user_raw = payload.get("user")
            user: UserCredentials | None = None
            if user_raw is not None:
                if not isinstance(user_raw, dict):
                    raise InvalidRequest("user must be an object")
                try:
                    user = UserCredentials.from_mapping(user_raw)
                except ValueError as exc:
                    raise InvalidRequest(str(exc)) from None

            bundle = await run_in_threadpool(
                svc.redeem_challenge,
                payload.get("code_id"),
                payload.get("code_verifier"),
                payload.get("exchange_type"),
                _optional_str(payload, "otp"),
                user,
                correlation_id=getattr(request.state, "correlation_id", None),
            )
        except PkceError as exc:
            _LOG.info(
                "Redemption failed error=%s correlation_id=%s",
                exc.error_code,
                _correlation_id(request),
            )
            return _error_response(exc)

        return JSONResponse(bundle.to_payload(), headers={"Cache-Control": "no-store"})

    # ----- POST /pkce/refresh ---------------------------------------------- #
    async def _refresh(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            bundle = await run_in_threadpool(
                svc.refresh_tokens, _optional_str(payload, "refresh_token")
            )
        except PkceError as exc:
            _LOG.info(
                "Refresh failed error=%s correlation_id=%s",
                exc.error_code,
                _correlation_id(request),
            )
            return _error_response(exc)

        return JSONResponse(bundle.to_payload(), headers={"Cache-Control": "no-store"})

    return [
        Route(f"{base_path}/challenges", _register, methods=["POST"]),
        Route(f"{base_path}/token", _redeem, methods=["POST"]),
        Route(f"{base_path}/refresh", _refresh, methods=["POST"]),
    ]
