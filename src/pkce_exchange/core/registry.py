"""In-memory, single-use challenge registry.

The registry is the only shared mutable state of the core.  It maps
``code_id`` to :class:`~pkce_exchange.core.models.ChallengeRecord` and is the
single writer of the record status.  Goals:

* **Single use** – :meth:`ChallengeRegistry.consume` is linearizable per
  ``code_id``; under N concurrent calls exactly one succeeds.
* **No global lock** – the map is split into shards, each a
  :class:`cachetools.TTLCache` behind its own lock, and every record slot has
  a lock of its own.  Shard locks are held only for dictionary access; the
  check-guard-consume sequence runs under the slot lock.
* **Time bound** – expired records behave exactly like absent ones, are
  evicted lazily by the cache and eagerly by :class:`RegistrySweeper`.
* **Anti-enumeration** – absent, consumed and expired all yield ``None``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Callable, Final, Iterable

from cachetools import TTLCache

from pkce_exchange.core.clock import Clock, default_clock
from pkce_exchange.core.codes import (
    ALL_METHODS,
    generate_code_id,
    is_utf8_encodable,
    is_well_formed_s256_challenge,
    parse_challenge_method,
)
from pkce_exchange.core.config import EvictionPolicy, PkceConfig
from pkce_exchange.core.errors import InternalError, InvalidRequest, ProofMismatch
from pkce_exchange.core.log_utils import get_pkce_logger, short_code_id
from pkce_exchange.core.models import (
    ChallengeMethod,
    ChallengeRecord,
    ChallengeStatus,
    ExchangeType,
)

_LOG = logging.getLogger("pkce-exchange.core.registry")

_MAX_CLIENT_ID_LEN: Final[int] = 255
_MAX_CODE_ID_LEN: Final[int] = 128

Guard = Callable[[ChallengeRecord], None]


class _Slot:
    """Mutable holder for one record; ``record`` is swapped, never edited."""

    __slots__ = ("record", "lock", "failed_attempts")

    def __init__(self, record: ChallengeRecord) -> None:
        self.record = record
        self.lock = threading.Lock()
        self.failed_attempts = 0


class _Shard:
    __slots__ = ("lock", "entries")

    def __init__(self, maxsize: int, ttl: float, timer: Clock) -> None:
        self.lock = threading.Lock()
        self.entries: TTLCache[str, _Slot] = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)


class ChallengeRegistry:
    """Time-bounded, single-use ``code_id -> ChallengeRecord`` store."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_size: int = 10_000,
        shards: int = 64,
        eviction_policy: EvictionPolicy = "reject",
        enabled_methods: Iterable[ChallengeMethod] = ALL_METHODS,
        max_challenge_length: int = 128,
        max_verification_attempts: int = 5,
        clock: Clock = default_clock,
        code_id_factory: Callable[[], str] = generate_code_id,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        shards = max(1, min(shards, max_size))
        self.ttl_seconds = float(ttl_seconds)
        self.max_size = max_size
        self.eviction_policy = eviction_policy
        self.enabled_methods = frozenset(enabled_methods)
        self.max_challenge_length = max_challenge_length
        self.max_verification_attempts = max_verification_attempts
        self._clock = clock
        self._new_code_id = code_id_factory
        per_shard = max(1, -(-max_size // shards))  # ceiling division
        self._shards: tuple[_Shard, ...] = tuple(
            _Shard(per_shard, self.ttl_seconds, clock) for _ in range(shards)
        )

    @classmethod
    def from_config(cls, config: PkceConfig, *, clock: Clock = default_clock) -> "ChallengeRegistry":
        return cls(
            ttl_seconds=config.challenge_ttl_seconds,
            max_size=config.max_registry_size,
            shards=config.registry_shards,
            eviction_policy=config.eviction_policy,
            enabled_methods=config.enabled_methods,
            max_challenge_length=config.max_challenge_length,
            max_verification_attempts=config.max_verification_attempts,
            clock=clock,
        )

    # ------------------------------------------------------------------ #
    # internals                                                          #
    # ------------------------------------------------------------------ #
    def _shard_for(self, code_id: str) -> _Shard:
        return self._shards[hash(code_id) % len(self._shards)]

    def _lookup(self, code_id: str) -> tuple[_Shard, _Slot | None]:
        shard = self._shard_for(code_id)
        with shard.lock:
            return shard, shard.entries.get(code_id)

    def _live(self, slot: _Slot) -> bool:
        record = slot.record
        return record.is_pending and not record.is_expired(clock=self._clock)

    def _retire(self, shard: _Shard, code_id: str, slot: _Slot) -> bool:
        """Mark *slot* consumed and drop it from *shard*.

        Returns *False* if the slot was evicted in the meantime, in which case
        nothing changes.  Caller holds ``slot.lock``.
        """
        with shard.lock:
            if shard.entries.get(code_id) is not slot:
                return False
            try:
                del shard.entries[code_id]
            except KeyError:
                # expired between lookup and delete; the cache already dropped it
                pass
        slot.record = replace(slot.record, status=ChallengeStatus.CONSUMED)
        return True

    def _validate(
        self,
        client_id: str,
        code_challenge: str,
        code_challenge_method: ChallengeMethod | str | None,
        requested_exchange_type: ExchangeType | str | Iterable[str] | None,
    ) -> tuple[ChallengeMethod, ExchangeType]:
        if not isinstance(client_id, str) or not client_id.strip():
            raise InvalidRequest("client_id is required")
        if len(client_id) > _MAX_CLIENT_ID_LEN:
            raise InvalidRequest("client_id is too long")
        method = parse_challenge_method(code_challenge_method, self.enabled_methods)
        if not isinstance(code_challenge, str) or not code_challenge:
            raise InvalidRequest("code_challenge is required")
        if len(code_challenge) > self.max_challenge_length:
            raise InvalidRequest("code_challenge is too long")
        if not (is_utf8_encodable(code_challenge) and is_utf8_encodable(client_id)):
            raise InvalidRequest("client_id and code_challenge must be valid UTF-8")
        if method is ChallengeMethod.S256 and not is_well_formed_s256_challenge(code_challenge):
            raise InvalidRequest("code_challenge is not a base64url SHA-256 digest")
        try:
            exchange_type = ExchangeType.parse(requested_exchange_type)
        except ValueError as exc:
            raise InvalidRequest(str(exc)) from None
        if not exchange_type:
            raise InvalidRequest("at least one exchange type is required")
        return method, exchange_type

    # ------------------------------------------------------------------ #
    # public API                                                         #
    # ------------------------------------------------------------------ #
    def register(
        self,
        client_id: str,
        code_challenge: str,
        code_challenge_method: ChallengeMethod | str | None,
        requested_exchange_type: ExchangeType | str | Iterable[str] | None,
    ) -> str:
        """Store a new pending challenge and return its ``code_id``.

        Raises
        ------
        InvalidRequest
            On malformed input.
        InternalError
            On a code id collision or when the registry is full under the
            ``reject`` policy.  Both are retryable.
        """
        method, exchange_type = self._validate(
            client_id, code_challenge, code_challenge_method, requested_exchange_type
        )
        code_id = self._new_code_id()
        now = self._clock()
        record = ChallengeRecord(
            code_id=code_id,
            client_id=client_id.strip(),
            code_challenge=code_challenge,
            code_challenge_method=method,
            requested_exchange_type=exchange_type,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )

        shard = self._shard_for(code_id)
        with shard.lock:
            if code_id in shard.entries:
                _LOG.error("code_id collision for %s; refusing to overwrite", short_code_id(code_id))
                raise InternalError("could not allocate a challenge id, retry")
            shard.entries.expire()
            if len(shard.entries) >= shard.entries.maxsize:
                if self.eviction_policy == "reject":
                    _LOG.warning("Challenge registry shard full; rejecting registration")
                    raise InternalError("challenge registry is at capacity, retry later")
                # by registration time, not TTLCache's LRU order
                oldest = min(
                    shard.entries.items(), key=lambda item: item[1].record.created_at
                )[0]
                del shard.entries[oldest]
                _LOG.warning(
                    "Challenge registry shard full; evicted oldest %s", short_code_id(oldest)
                )
            shard.entries[code_id] = _Slot(record)

        get_pkce_logger(
            base_logger_name="pkce-exchange.core.registry",
            code_id=code_id,
            client_id=record.client_id,
        ).info(
            "Registered challenge method=%s exchange=%s ttl=%ss",
            method.value,
            ",".join(exchange_type.names()),
            int(self.ttl_seconds),
        )
        return code_id

    def consume(self, code_id: str, *, guard: Guard | None = None) -> ChallengeRecord | None:
        """Atomically consume a pending record.

        *guard* runs under the record lock before the transition.  If it
        raises, the record stays pending and the exception propagates;
        :class:`~pkce_exchange.core.errors.ProofMismatch` failures count
        toward ``max_verification_attempts`` and exhausting them consumes the
        record.

        Returns the pre-transition record, or ``None`` for absent, consumed
        and expired ids alike.
        """
        if not isinstance(code_id, str) or not code_id or len(code_id) > _MAX_CODE_ID_LEN:
            return None
        shard, slot = self._lookup(code_id)
        if slot is None:
            return None

        with slot.lock:
            if not self._live(slot):
                return None
            record = slot.record
            if guard is not None:
                try:
                    guard(record)
                except ProofMismatch:
                    slot.failed_attempts += 1
                    if slot.failed_attempts >= self.max_verification_attempts:
                        self._retire(shard, code_id, slot)
                        _LOG.warning(
                            "Challenge %s dropped after %d failed attempts",
                            short_code_id(code_id),
                            slot.failed_attempts,
                        )
                    raise
            if not self._retire(shard, code_id, slot):
                return None

        _LOG.debug("Consumed challenge %s", short_code_id(code_id))
        return record

    def peek(self, code_id: str) -> ChallengeRecord | None:
        """Return the live record for *code_id* without touching it."""
        if not isinstance(code_id, str) or not code_id:
            return None
        _, slot = self._lookup(code_id)
        if slot is None:
            return None
        with slot.lock:
            return slot.record if self._live(slot) else None

    def sweep(self) -> int:
        """Drop expired records from every shard; return how many were removed."""
        removed = 0
        for shard in self._shards:
            with shard.lock:
                removed += len(shard.entries.expire())
        if removed:
            _LOG.debug("Swept %d expired challenges", removed)
        return removed

    def __len__(self) -> int:
        """Number of live records; expired entries are dropped on the way."""
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total


class RegistrySweeper:
    """Background thread that periodically calls :meth:`ChallengeRegistry.sweep`."""

    def __init__(self, registry: ChallengeRegistry, interval_seconds: float = 30.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.registry = registry
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="pkce-registry-sweeper", daemon=True
        )
        self._thread.start()
        _LOG.debug("Registry sweeper started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.registry.sweep()
            except Exception:  # noqa: BLE001 - keep the loop alive
                _LOG.exception("Error in challenge registry sweep")
