"""Throttle records, decisions and the store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone


def epoch_ms_to_iso(epoch_ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC timestamp (``...Z``)."""

    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ThrottleRecord:
    """Request count of one client inside its current window.

    Attributes:
        key: Client identifier.
        count: Requests observed in the current window (rejected ones included).
        window_reset_at: Epoch milliseconds at which the window expires.
    """

    key: str
    count: int
    window_reset_at: int

    def is_expired(self, now_ms: int) -> bool:
        return self.window_reset_at <= now_ms


@dataclass(frozen=True)
class Decision:
    """Outcome of a throttle check.

    Attributes:
        admitted: Whether the request may proceed.
        limit: Max requests per window.
        remaining: ``max(0, limit - count)``.
        reset_at: Epoch milliseconds when the window resets.
        retry_after_seconds: Seconds until ``reset_at``, rounded up.
    """

    admitted: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int

    @property
    def reset_at_iso(self) -> str:
        return epoch_ms_to_iso(self.reset_at)


class AbstractThrottleStore(ABC):
    """Key → record mapping owned by a single throttle.

    Implementations need not be thread-safe: the owning throttle serializes
    every access.
    """

    @abstractmethod
    def get(self, key: str) -> ThrottleRecord | None:
        raise NotImplementedError

    @abstractmethod
    def put(self, record: ThrottleRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the record for ``key``; return whether one existed."""
        raise NotImplementedError

    @abstractmethod
    def evict_expired(self, now_ms: int) -> int:
        """Remove every record whose window ended at or before ``now_ms``.

        Returns:
            Number of records removed.
        """
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError
