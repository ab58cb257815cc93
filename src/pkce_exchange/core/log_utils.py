"""Structured logging helpers for the PKCE core.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``code_id``        – The challenge handle (first 6 chars kept; it is a
  capability token, so the full value never reaches the logs)
- ``client_id``      – The registering application
- ``correlation_id`` – Request identifier wired by the HTTP layer

Usage
-----
>>> from pkce_exchange.core.log_utils import get_pkce_logger
>>> log = get_pkce_logger(
...     base_logger_name="pkce-exchange.core.orchestrator",
...     code_id="c_Q2x4TmFh...",
...     client_id="app1",
... )
>>> log.info("Redemption started")
INFO pkce-exchange.core.orchestrator code_id=c_Q2x4 client_id=app1 ...

The adapter is a thin wrapper around :class:`logging.LoggerAdapter`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping

_CODE_ID_KEEP = 6


def short_code_id(code_id: str | None) -> str:
    """Return the loggable prefix of *code_id*."""
    if not code_id:
        return "-"
    return f"{code_id[:_CODE_ID_KEEP]}****"


class _PkceLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted PKCE context into log records."""

    extra_keys = ("code_id", "client_id", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if k == "code_id" and extra and extra.get("code_id"):
                extra_clean[k] = short_code_id(str(extra["code_id"]))
            elif extra and k in extra and extra[k] is not None:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_pkce_logger(
    *,
    base_logger_name: str = "pkce-exchange.core",
    code_id: str | None = None,
    client_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with PKCE context."""
    logger = logging.getLogger(base_logger_name)
    return _PkceLoggerAdapter(
        logger,
        {
            "code_id": code_id,
            "client_id": client_id,
            "correlation_id": correlation_id,
        },
    )
