"""Identity backend interface and its HTTP implementation.

:class:`IdentityGateway` is the seam between the core and the identity
provider.  The core assumes nothing about idempotency: every call is made at
most once per redemption and never retried automatically.

:class:`HttpIdentityGateway` talks to a standard OAuth 2.0 token endpoint
(``client_credentials``, ``password`` and ``refresh_token`` grants) and to a
Keycloak-style admin users collection for lookup/creation.

SECURITY NOTE
-------------
Passwords and tokens are never logged and client secrets only appear
masked; error messages carry the HTTP status and the provider's ``error``
field only.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

import requests

from pkce_exchange.core.config import HttpGatewayConfig
from pkce_exchange.core.models import TokenPair, UserCredentials, UserRef
from pkce_exchange.utils.logging import mask_sensitive

_LOG = logging.getLogger("pkce-exchange.core.gateway")

Timeout = float | tuple[float, float] | None


class GatewayError(RuntimeError):
    """The identity backend refused or failed a call."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayConflict(GatewayError):
    """The user exists with attributes that differ from the request."""


class GatewayTimeout(GatewayError):
    """No answer within the allotted time; the outcome is unknown."""


@runtime_checkable
class IdentityGateway(Protocol):
    """Operations the core needs from the identity backend."""

    def find_or_create_user(
        self, credentials: UserCredentials, *, timeout: Timeout = None
    ) -> UserRef: ...

    def issue_user_tokens(
        self,
        user: UserRef,
        credentials: UserCredentials,
        *,
        client_id: str,
        timeout: Timeout = None,
    ) -> TokenPair: ...

    def issue_client_tokens(self, client_id: str, *, timeout: Timeout = None) -> TokenPair: ...

    def refresh_tokens(self, refresh_token: str, *, timeout: Timeout = None) -> TokenPair: ...


def _provider_error(resp: requests.Response) -> str:
    """Return the provider's ``error`` code without echoing the whole body."""
    try:
        data = resp.json()
    except ValueError:
        return ""
    if isinstance(data, dict):
        return str(data.get("error") or data.get("errorMessage") or "")[:100]
    return ""


class HttpIdentityGateway(IdentityGateway):
    """``requests`` implementation of :class:`IdentityGateway`."""

    DEFAULT_TIMEOUT: tuple[float, float] = (5, 20)

    def __init__(
        self,
        config: HttpGatewayConfig,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.session.verify = config.verify_ssl
        _LOG.debug(
            "Identity gateway token_url=%s admin_client=%s admin_secret=%s verify_ssl=%s",
            config.token_url,
            config.admin_client_id,
            mask_sensitive(config.admin_client_secret),
            config.verify_ssl,
        )

    @classmethod
    def from_env(cls) -> "HttpIdentityGateway":
        return cls(HttpGatewayConfig.from_env())

    # ------------------------------------------------------------------ #
    # transport helpers                                                  #
    # ------------------------------------------------------------------ #
    def _send(self, method: str, url: str, *, timeout: Timeout, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(
                method, url, timeout=timeout or self.DEFAULT_TIMEOUT, **kwargs
            )
        except requests.Timeout as exc:
            raise GatewayTimeout(f"{method} {url} timed out") from exc
        except requests.RequestException as exc:
            raise GatewayError(f"{method} {url} failed: {type(exc).__name__}") from exc

    def _token_request(self, form: dict[str, str], *, timeout: Timeout) -> TokenPair:
        resp = self._send("POST", self.config.token_url, data=form, timeout=timeout)
        if not resp.ok:
            raise GatewayError(
                f"token endpoint returned {resp.status_code} {_provider_error(resp)}".rstrip(),
                status_code=resp.status_code,
            )
        try:
            return TokenPair.from_token_response(resp.json())
        except (ValueError, TypeError) as exc:
            raise GatewayError(f"malformed token response: {exc}") from exc

    def _client_form(self, client_id: str) -> dict[str, str]:
        form = {"client_id": client_id}
        secret = self.config.client_secrets.get(client_id)
        if secret:
            form["client_secret"] = secret  # noqa: S105
        return form

    def _admin_headers(self, timeout: Timeout) -> dict[str, str]:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.config.admin_client_id,
            "client_secret": self.config.admin_client_secret,
        }
        pair = self._token_request(form, timeout=timeout)
        return {"Authorization": f"Bearer {pair.access_token}"}

    def _find_user(
        self, username: str, headers: dict[str, str], timeout: Timeout
    ) -> dict[str, Any] | None:
        resp = self._send(
            "GET",
            self.config.users_url,
            params={"username": username, "exact": "true"},
            headers=headers,
            timeout=timeout,
        )
        if not resp.ok:
            raise GatewayError(
                f"user lookup returned {resp.status_code}", status_code=resp.status_code
            )
        try:
            users = resp.json()
        except ValueError as exc:
            raise GatewayError("malformed user lookup response") from exc
        if not isinstance(users, list):
            raise GatewayError("malformed user lookup response: expected a list")
        for user in users:
            if not isinstance(user, dict):
                continue
            if str(user.get("username", "")).lower() == username.lower():
                if not user.get("id"):
                    raise GatewayError("malformed user lookup response: user without id")
                return user
        return None

    # ------------------------------------------------------------------ #
    # IdentityGateway                                                    #
    # ------------------------------------------------------------------ #
    def find_or_create_user(
        self, credentials: UserCredentials, *, timeout: Timeout = None
    ) -> UserRef:
        headers = self._admin_headers(timeout)
        existing = self._find_user(credentials.username, headers, timeout)
        if existing is not None:
            for key, wanted in credentials.attributes().items():
                have = existing.get(key)
                if have is not None and str(have).lower() != wanted.lower():
                    raise GatewayConflict(
                        f"user exists with a different {key}", status_code=409
                    )
            _LOG.debug("Found existing user id=%s", existing.get("id"))
            return UserRef(user_id=str(existing["id"]), username=credentials.username)

        body: dict[str, Any] = {
            "username": credentials.username,
            "enabled": True,
            "credentials": [
                {"type": "password", "value": credentials.password, "temporary": False}
            ],
            **credentials.attributes(),
        }
        resp = self._send(
            "POST", self.config.users_url, json=body, headers=headers, timeout=timeout
        )
        if resp.status_code == 409:
            raise GatewayConflict("user already exists", status_code=409)
        if not resp.ok:
            raise GatewayError(
                f"user creation returned {resp.status_code}", status_code=resp.status_code
            )

        location = resp.headers.get("Location", "")
        user_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
        if not user_id:
            created = self._find_user(credentials.username, headers, timeout)
            if created is None:
                raise GatewayError("created user could not be found")
            user_id = str(created["id"])
        _LOG.info("Created identity backend user id=%s", user_id)
        return UserRef(user_id=user_id, username=credentials.username)

    def issue_user_tokens(
        self,
        user: UserRef,
        credentials: UserCredentials,
        *,
        client_id: str,
        timeout: Timeout = None,
    ) -> TokenPair:
        form = {
            "grant_type": "password",
            "username": user.username,
            "password": credentials.password,
            **self._client_form(client_id),
        }
        return self._token_request(form, timeout=timeout)

    def issue_client_tokens(self, client_id: str, *, timeout: Timeout = None) -> TokenPair:
        form = {"grant_type": "client_credentials", **self._client_form(client_id)}
        return self._token_request(form, timeout=timeout)

    def refresh_tokens(self, refresh_token: str, *, timeout: Timeout = None) -> TokenPair:
        client_id = self.config.default_client_id
        if not client_id:
            raise GatewayError("IDP_DEFAULT_CLIENT_ID is required for refresh grants")
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._client_form(client_id),
        }
        return self._token_request(form, timeout=timeout)

    def close(self) -> None:
        self.session.close()
