"""
auth/limiter.py -- Fixed-window attempt limiter for the sign-in path.

slowapi (api/limiter.py) throttles whole HTTP routes by client IP. This module
throttles an arbitrary key (here email|ip) around an arbitrary callable, so the
authenticator can count every attempt -- right or wrong -- against the actor
making it. Both sit on the same `limits` library and accept the same storage
URIs ("memory://", "redis://host:6379", ...).

Window semantics: fixed window. The first hit on a key starts the window and
sets its expiry; later hits do not push the expiry out. Once the window
expires the counter starts again from zero.

Atomicity: FixedWindowRateLimiter.hit() is one storage increment followed by a
compare on the returned value -- INCR on Redis, a locked add in memory. Two
concurrent attempts can never both read a stale count and both slip under
the limit, which a separate get-then-incr would allow. Within one process
hits on the same key are also serialized through a striped lock.

Failures: storage errors are wrapped by `limits` (wrap_exceptions=True) and
re-raised here as Unavailable. The guarded action's own result or exception
is never touched.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import timedelta
from typing import TypeVar
from zlib import crc32

from limits import RateLimitItem, RateLimitItemPerSecond
from limits.errors import StorageError
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter

from auth.errors import LockedOut, Unavailable

logger = logging.getLogger("signgate.limiter")

T = TypeVar("T")

_REDIS_SCHEMES = ("redis", "rediss", "redis+sentinel", "redis+cluster")

# Lock stripes for in-process serialization of hits on the same key.
_LOCK_STRIPES = 64


def storage_options(uri: str, timeout: float) -> dict:
    """Constructor options for a `limits` storage URI.

    Shared with the slowapi limiter in api/limiter.py so both fail the same way:
    StorageError instead of a driver exception, and no unbounded socket waits.
    """
    options: dict = {"wrap_exceptions": True}
    if uri.split("://", 1)[0] in _REDIS_SCHEMES:
        # Bounded latency: a hung Redis must fail the attempt, not the worker.
        options["socket_timeout"] = timeout
        options["socket_connect_timeout"] = timeout
    return options


def _build_storage(uri: str, timeout: float) -> Storage:
    return storage_from_string(uri, **storage_options(uri, timeout))


def _window_item(max_attempts: int, window: timedelta) -> RateLimitItem:
    seconds = window.total_seconds()
    if seconds <= 0:
        raise ValueError("Rate limit window must be a positive duration.")
    if seconds != int(seconds):
        raise ValueError("Rate limit window must be a whole number of seconds.")
    if max_attempts < 0:
        raise ValueError("max_attempts must not be negative.")
    return RateLimitItemPerSecond(max_attempts, int(seconds))


class RateLimiter:
    """Counts attempts per key and refuses to run an action once over the limit.

    Usage:
        limiter = RateLimiter("memory://")
        user = limiter.limit("user@mail.com|1.2.3.4", 5, timedelta(seconds=60), lambda: do_sign_in())
    """

    def __init__(
        self,
        storage_uri: str = "memory://",
        timeout: float = 2.0,
        storage: Storage | None = None,
    ) -> None:
        self.storage: Storage = storage if storage is not None else _build_storage(storage_uri, timeout)
        self._strategy = FixedWindowRateLimiter(self.storage)
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    def limit(self, key: str, max_attempts: int, window: timedelta, action: Callable[[], T]) -> T:
        """Record one attempt for `key`, then run `action` if still within the limit.

        Raises:
            ValueError:  window is not a positive whole number of seconds,
                         or max_attempts is negative.
            LockedOut:   this attempt is over max_attempts for the current window.
            Unavailable: the counter storage failed.
        Anything `action` raises propagates unchanged.
        """
        item = _window_item(max_attempts, window)
        if max_attempts == 0:
            logger.warning("Attempt refused, limiter configured with zero attempts")
            raise LockedOut(retry_after=window)

        try:
            with self._lock_for(key):
                allowed = self._strategy.hit(item, key)
        except StorageError as exc:
            logger.error("Rate limit storage failed on hit: %s", exc)
            raise Unavailable("Rate limit storage unavailable.") from exc

        if not allowed:
            retry_after = self._retry_after(item, key, window)
            logger.warning("Attempt limit reached, locked out for %ds", retry_after.total_seconds())
            raise LockedOut(retry_after=retry_after)

        return action()

    def reset(self, key: str, max_attempts: int, window: timedelta) -> None:
        """Forget every attempt recorded for `key` in the given bucket."""
        item = _window_item(max_attempts, window)
        try:
            self.storage.clear(item.key_for(key))
        except StorageError as exc:
            raise Unavailable("Rate limit storage unavailable.") from exc

    def _lock_for(self, key: str) -> threading.Lock:
        # The memory backend creates its per-key lock lazily, so two first hits
        # on a fresh key can race. Same key, same stripe.
        return self._locks[crc32(key.encode("utf-8")) % _LOCK_STRIPES]

    def _retry_after(self, item: RateLimitItem, key: str, window: timedelta) -> timedelta:
        try:
            stats = self._strategy.get_window_stats(item, key)
        except StorageError as exc:
            raise Unavailable("Rate limit storage unavailable.") from exc
        remaining = stats.reset_time - time.time()
        # Clamp into (0, window]; clocks and rounding can push it slightly out.
        return min(timedelta(seconds=max(remaining, 0)), window)
