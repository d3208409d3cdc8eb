"""Fixed-window request throttle.

Each client key gets a window that opens on its first request and lasts
``window_duration_ms``. Every request in the window, rejected ones included,
increments the count, so a client that keeps retrying stays over quota until
the window ends instead of earning a reset.

Thread-safety: sync routes run in a thread pool and the janitor runs on the
event loop, so every read-modify-write on the store happens under one lock.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from neuronova.adapters.throttle.base import AbstractThrottleStore, Decision, ThrottleRecord
from neuronova.adapters.throttle.in_memory import InMemoryThrottleStore
from neuronova.core.config import ThrottleSettings
from neuronova.core.logging import hash_identifier

logger = logging.getLogger(__name__)


GENERAL_MESSAGE = "Too many requests, please try again later."
AUTH_MESSAGE = "Too many authentication attempts, please try again later."
ADMIN_MESSAGE = "Too many admin requests, please try again later."

DEFAULT_FALLBACK_KEY = "unknown"


def _now_ms() -> int:
    return int(time.time() * 1000)


class RequestThrottle:
    """Per-client fixed-window throttle over an injected store.

    Args:
        window_duration_ms: Window length in milliseconds.
        max_requests_per_window: Requests admitted per key per window.
        store: Record store owned by this throttle (a fresh in-memory store
            when omitted). It must not be shared with another throttle.
        name: Profile name used in logs and stats.
        message: Error text returned to rejected clients.
        fallback_key: Key used when the caller passes an empty one.
        clock: Time source returning epoch milliseconds.
        sweep_interval_ms: Minimum gap between opportunistic full sweeps
            inside ``admit``; defaults to the window length.

    Raises:
        ValueError: If the window or limit is below 1.
    """

    def __init__(
        self,
        *,
        window_duration_ms: int,
        max_requests_per_window: int,
        store: AbstractThrottleStore | None = None,
        name: str = "general",
        message: str = GENERAL_MESSAGE,
        fallback_key: str = DEFAULT_FALLBACK_KEY,
        clock: Callable[[], int] = _now_ms,
        sweep_interval_ms: int | None = None,
    ) -> None:
        if window_duration_ms < 1:
            raise ValueError("window_duration_ms must be >= 1")
        if max_requests_per_window < 1:
            raise ValueError("max_requests_per_window must be >= 1")
        if not fallback_key:
            raise ValueError("fallback_key must be a non-empty string")

        self.name = name
        self.message = message
        self._window_ms = window_duration_ms
        self._limit = max_requests_per_window
        self._store = store if store is not None else InMemoryThrottleStore()
        self._fallback_key = fallback_key
        self._clock = clock
        self._sweep_interval_ms = sweep_interval_ms if sweep_interval_ms is not None else window_duration_ms
        self._last_sweep_at: int | None = None
        self._lock = threading.RLock()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"RequestThrottle(name={self.name!r}, limit={self._limit}, "
            f"window_ms={self._window_ms}, tracked={len(self._store)})"
        )

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_duration_ms(self) -> int:
        return self._window_ms

    def admit(self, client_key: str, now_ms: int | None = None) -> Decision:
        """Count one request for ``client_key`` and decide whether it passes.

        Args:
            client_key: Client identifier; an empty value falls back to the
                shared fallback key.
            now_ms: Current epoch milliseconds (read from the clock if omitted).

        Returns:
            Decision for this request. Never raises on rejection.
        """

        key = client_key or self._fallback_key
        now = self._clock() if now_ms is None else now_ms

        with self._lock:
            self._maybe_sweep_locked(now)

            record = self._store.get(key)
            if record is None or record.is_expired(now):
                record = ThrottleRecord(key=key, count=1, window_reset_at=now + self._window_ms)
            else:
                record.count += 1
            self._store.put(record)
            count = record.count

            decision = self._decide(count, record.window_reset_at, now)

        if count == self._limit + 1:
            # Log once per window when a client first crosses the quota
            logger.warning(
                "throttle.limit_reached",
                extra={
                    "profile": self.name,
                    "key_hash": hash_identifier(key),
                    "limit": self._limit,
                    "reset_at": decision.reset_at_iso,
                },
            )
        return decision

    def peek(self, client_key: str, now_ms: int | None = None) -> Decision:
        """Report the quota of ``client_key`` without counting a request.

        ``admitted`` tells whether one more request would be admitted. An
        unseen or expired key reports a full quota.
        """

        key = client_key or self._fallback_key
        now = self._clock() if now_ms is None else now_ms

        with self._lock:
            record = self._store.get(key)
            if record is None or record.is_expired(now):
                count, reset_at = 0, now + self._window_ms
            else:
                count, reset_at = record.count, record.window_reset_at

        return Decision(
            admitted=count < self._limit,
            limit=self._limit,
            remaining=max(0, self._limit - count),
            reset_at=reset_at,
            retry_after_seconds=self._retry_after(reset_at, now),
        )

    def reset(self, client_key: str) -> bool:
        """Forget the record of ``client_key``; return whether one existed."""

        with self._lock:
            removed = self._store.delete(client_key)
        if removed:
            logger.info(
                "throttle.reset",
                extra={"profile": self.name, "key_hash": hash_identifier(client_key)},
            )
        return removed

    def sweep(self, now_ms: int | None = None) -> int:
        """Remove expired records and return how many were dropped."""

        now = self._clock() if now_ms is None else now_ms
        with self._lock:
            removed = self._store.evict_expired(now)
            self._last_sweep_at = now
        if removed:
            logger.debug(
                "throttle.swept",
                extra={"profile": self.name, "removed": removed, "tracked": len(self._store)},
            )
        return removed

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._last_sweep_at = None

    def stats(self) -> dict[str, int | str]:
        """Configuration and size of this profile (no client keys)."""

        with self._lock:
            tracked = len(self._store)
        return {
            "profile": self.name,
            "limit": self._limit,
            "window_ms": self._window_ms,
            "tracked_clients": tracked,
        }

    def _maybe_sweep_locked(self, now: int) -> None:
        if self._last_sweep_at is not None and now - self._last_sweep_at < self._sweep_interval_ms:
            return
        self._store.evict_expired(now)
        self._last_sweep_at = now

    def _decide(self, count: int, reset_at: int, now: int) -> Decision:
        return Decision(
            admitted=count <= self._limit,
            limit=self._limit,
            remaining=max(0, self._limit - count),
            reset_at=reset_at,
            retry_after_seconds=self._retry_after(reset_at, now),
        )

    @staticmethod
    def _retry_after(reset_at: int, now: int) -> int:
        return max(0, math.ceil((reset_at - now) / 1000))


def create_custom_throttle(
    window_ms: int,
    max_requests: int,
    message: str,
    *,
    name: str = "custom",
    store: AbstractThrottleStore | None = None,
    fallback_key: str = DEFAULT_FALLBACK_KEY,
) -> RequestThrottle:
    """Build a throttle profile with its own window, quota and message."""

    return RequestThrottle(
        window_duration_ms=window_ms,
        max_requests_per_window=max_requests,
        store=store,
        name=name,
        message=message,
        fallback_key=fallback_key,
    )


def build_throttle_profiles(cfg: ThrottleSettings) -> dict[str, RequestThrottle]:
    """Create the general, auth and admin profiles, each with its own store."""

    window_ms = cfg.window_duration_ms
    return {
        "general": create_custom_throttle(
            window_ms,
            cfg.max_requests_per_window,
            GENERAL_MESSAGE,
            name="general",
            store=InMemoryThrottleStore(),
            fallback_key=cfg.fallback_client_key,
        ),
        "auth": create_custom_throttle(
            window_ms,
            cfg.auth_max_attempts,
            AUTH_MESSAGE,
            name="auth",
            store=InMemoryThrottleStore(),
            fallback_key=cfg.fallback_client_key,
        ),
        "admin": create_custom_throttle(
            window_ms,
            cfg.admin_max_requests,
            ADMIN_MESSAGE,
            name="admin",
            store=InMemoryThrottleStore(),
            fallback_key=cfg.fallback_client_key,
        ),
    }
