"""Starlette application factory and CLI entry point."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from pkce_exchange.core.service import PkceExchangeService
from pkce_exchange.utils.logging import setup_logging

from .correlation import CorrelationIdMiddleware
from .routes import build_routes

logger = logging.getLogger("pkce-exchange.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(
    service: PkceExchangeService | None = None, *, base_path: str = "/pkce"
) -> Starlette:
    """Build the HTTP application around *service* (built from env when omitted)."""
    svc = service or PkceExchangeService()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("PKCE exchange server starting")
        svc.start()
        try:
            yield
        finally:
            logger.info("PKCE exchange server shutting down")
            svc.close()

    app = Starlette(
        routes=[
            Route("/healthz", health_check, methods=["GET"]),
            *build_routes(svc, base_path=base_path),
        ],
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.service = svc
    return app


def main(argv: list[str] | None = None) -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    parser = argparse.ArgumentParser(description="PKCE challenge exchange server")
    parser.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--base-path", default="/pkce")
    args = parser.parse_args(argv)

    setup_logging(getattr(logging, args.log_level))
    app = create_app(base_path=args.base_path)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":  # pragma: no cover
    main()
