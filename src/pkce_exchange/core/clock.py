"""Clock abstraction for testable time handling in the PKCE core.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  Record creation, expiry checks and the
registry's TTL cache MUST depend on an injected ``Clock`` instance rather than
calling ``time.time()`` directly, so tests can move time forward at will.

Example
-------
>>> from pkce_exchange.core.clock import default_clock
>>> now = default_clock()
>>> isinstance(now, float)
True
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``.

    Returns
    -------
    float
        Seconds since the UNIX epoch.
    """
    return time.time()


class ManualClock:
    """Clock that only moves when told to.

    Used by tests and by embedders that drive time themselves (e.g. replay
    tooling).  Thread-safe so concurrent redemption tests can share it.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        """Move the clock forward by *seconds* and return the new time."""
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        with self._lock:
            self._now += seconds
            return self._now
