"""In-memory throttle store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Records vanish on restart.
"""

from __future__ import annotations

from neuronova.adapters.throttle.base import AbstractThrottleStore, ThrottleRecord


class InMemoryThrottleStore(AbstractThrottleStore):
    """Dict-backed store of throttle records."""

    def __init__(self) -> None:
        self._records: dict[str, ThrottleRecord] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryThrottleStore(size={len(self._records)})"

    def get(self, key: str) -> ThrottleRecord | None:
        return self._records.get(key)

    def put(self, record: ThrottleRecord) -> None:
        self._records[record.key] = record

    def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    def evict_expired(self, now_ms: int) -> int:
        expired_keys = [k for k, record in self._records.items() if record.is_expired(now_ms)]
        for key in expired_keys:
            del self._records[key]
        return len(expired_keys)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
