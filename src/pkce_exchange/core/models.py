"""Typed, immutable records used by the PKCE core."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable

from pkce_exchange.core.clock import Clock, default_clock


class ChallengeMethod(str, enum.Enum):
    """Transform applied to the verifier before comparing with the challenge."""

    PLAIN = "plain"
    S256 = "S256"


class ChallengeStatus(str, enum.Enum):
    PENDING = "pending"
    CONSUMED = "consumed"


class ExchangeType(enum.Flag):
    """Token classes a redemption may produce."""

    NONE = 0
    CLIENT = enum.auto()
    USER = enum.auto()

    @classmethod
    def parse(cls, value: "ExchangeType | str | Iterable[str] | None") -> "ExchangeType":
        """Build a flag set from ``"client"``, ``"client,user"`` or a list of names.

        Raises ``ValueError`` on unknown names.  An empty input yields
        ``ExchangeType.NONE``; callers decide whether that is acceptable.
        """
        if isinstance(value, ExchangeType):
            return value
        if value is None:
            return cls.NONE
        if isinstance(value, str):
            names: Iterable[str] = value.replace(" ", ",").split(",")
        elif isinstance(value, (list, tuple, set, frozenset)):
            names = value
        else:
            raise ValueError(
                f"exchange type must be a string or a list, got {type(value).__name__}"
            )
        result = cls.NONE
        for raw in names:
            if not isinstance(raw, str):
                raise ValueError(f"exchange type must be a string, got {type(raw).__name__}")
            name = raw.strip().lower()
            if not name:
                continue
            try:
                result |= _EXCHANGE_NAMES[name]
            except KeyError:
                raise ValueError(f"unknown exchange type {raw!r}") from None
        return result

    def names(self) -> list[str]:
        """Return the lowercase member names contained in this flag set."""
        return [name for name, member in _EXCHANGE_NAMES.items() if member in self]

    def covers(self, other: "ExchangeType") -> bool:
        """Return *True* if every class in *other* is also present in ``self``."""
        return (self | other) == self


_EXCHANGE_NAMES: dict[str, ExchangeType] = {
    "client": ExchangeType.CLIENT,
    "user": ExchangeType.USER,
}


@dataclass(frozen=True, slots=True)
class ChallengeRecord:
    """State held for one registered challenge.

    Instances are never mutated; the registry replaces the record when the
    status moves from ``pending`` to ``consumed``.
    """

    code_id: str
    client_id: str
    code_challenge: str = field(repr=False)
    code_challenge_method: ChallengeMethod
    requested_exchange_type: ExchangeType
    created_at: float
    expires_at: float
    status: ChallengeStatus = ChallengeStatus.PENDING

    @property
    def ttl_seconds(self) -> float:
        return self.expires_at - self.created_at

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* once ``now >= expires_at``."""
        return clock() >= self.expires_at

    @property
    def is_pending(self) -> bool:
        return self.status is ChallengeStatus.PENDING


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access/refresh token pair returned by the identity backend."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_in: int | None = None
    token_type: str = "Bearer"

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "TokenPair":
        """Build a pair from an OAuth 2.0 token endpoint JSON body."""
        if not isinstance(data, dict):
            raise ValueError("token response is not a JSON object")
        access_token = data.get("access_token")
        if not access_token:
            raise ValueError("token response missing access_token")
        expires_in = data.get("expires_in")
        return cls(
            access_token=str(access_token),
            refresh_token=data.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            token_type=str(data.get("token_type") or "Bearer"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.refresh_token is not None:
            payload["refresh_token"] = self.refresh_token
        if self.expires_in is not None:
            payload["expires_in"] = self.expires_in
        return payload


@dataclass(frozen=True, slots=True)
class TokenBundle:
    """Aggregated result of a redemption or refresh."""

    client_id: str | None = None
    client: TokenPair | None = None
    user: TokenPair | None = None
    refreshed: TokenPair | None = None

    @property
    def exchange_type(self) -> ExchangeType:
        result = ExchangeType.NONE
        if self.client is not None:
            result |= ExchangeType.CLIENT
        if self.user is not None:
            result |= ExchangeType.USER
        return result

    def is_empty(self) -> bool:
        return self.client is None and self.user is None and self.refreshed is None

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable dict; absent token classes are omitted."""
        payload: dict[str, Any] = {}
        if self.client_id is not None:
            payload["client_id"] = self.client_id
        if self.client is not None:
            payload["client_tokens"] = self.client.to_payload()
        if self.user is not None:
            payload["user_tokens"] = self.user.to_payload()
        if self.refreshed is not None:
            payload["tokens"] = self.refreshed.to_payload()
        return payload


@dataclass(frozen=True, slots=True)
class UserCredentials:
    """Identity and password supplied with a user-token redemption."""

    username: str
    password: str = field(repr=False)
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "UserCredentials":
        """Build credentials from a request body; raises ``ValueError`` when incomplete."""
        username = data.get("username")
        password = data.get("password")
        if not isinstance(username, str) or not username.strip():
            raise ValueError("user.username is required")
        if not isinstance(password, str) or not password:
            raise ValueError("user.password is required")
        for key in ("email", "first_name", "last_name"):
            if not isinstance(data.get(key), (str, type(None))):
                raise ValueError(f"user.{key} must be a string")
        return cls(
            username=username.strip(),
            password=password,
            email=data.get("email"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
        )

    def attributes(self) -> dict[str, str]:
        """Profile attributes that were actually supplied."""
        values = {
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }
        return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True, slots=True)
class UserRef:
    """Handle to a user held by the identity backend."""

    user_id: str
    username: str
