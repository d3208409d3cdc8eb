"""Quotas for outbound calls to external research APIs.

Each service (PubMed, arXiv, bioRxiv) has its own fixed-window throttle. A
caller that exceeds the quota blocks the service for ``block_duration_ms``
(or until the window ends when no block period is configured); while
blocked, every call is refused without counting.

Quota keys are ``ratelimit:<service>:<identifier>``; most callers share the
``global`` identifier.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable

from neuronova.adapters.throttle.base import epoch_ms_to_iso
from neuronova.core.errors import NotFoundAppError, QuotaExceededAppError, ValidationAppError
from neuronova.services.throttle import RequestThrottle

logger = logging.getLogger(__name__)

GLOBAL_IDENTIFIER = "global"


@dataclass(frozen=True)
class QuotaConfig:
    """Quota of one external service.

    Attributes:
        window_ms: Window length in milliseconds.
        max_requests: Calls allowed per window.
        block_duration_ms: Block period once the quota is exceeded; None
            blocks until the window ends.
    """

    window_ms: int
    max_requests: int
    block_duration_ms: int | None = None


@dataclass(frozen=True)
class QuotaState:
    count: int
    reset_time: int
    blocked: bool
    block_end_time: int | None = None


DEFAULT_QUOTA_CONFIGS: dict[str, QuotaConfig] = {
    "pubmed": QuotaConfig(window_ms=3_600_000, max_requests=100, block_duration_ms=1_800_000),
    "arxiv": QuotaConfig(window_ms=3_600_000, max_requests=1000, block_duration_ms=900_000),
    "biorxiv": QuotaConfig(window_ms=3_600_000, max_requests=100, block_duration_ms=1_800_000),
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def quota_key(service: str, identifier: str = GLOBAL_IDENTIFIER) -> str:
    return f"ratelimit:{service}:{identifier}"


class ExternalApiQuotaService:
    """Service-level quota bookkeeping with temporary blocks.

    Args:
        configs: Quota per service name; defaults to ``DEFAULT_QUOTA_CONFIGS``.
        enabled: When False every call is allowed and nothing is counted.
        clock: Time source returning epoch milliseconds.
    """

    def __init__(
        self,
        configs: dict[str, QuotaConfig] | None = None,
        *,
        enabled: bool = True,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.RLock()
        self._configs: dict[str, QuotaConfig] = dict(configs or DEFAULT_QUOTA_CONFIGS)
        self._throttles: dict[str, RequestThrottle] = {
            service: self._build_throttle(service, cfg) for service, cfg in self._configs.items()
        }
        self._blocked_until: dict[str, int] = {}

    @property
    def services(self) -> list[str]:
        return sorted(self._configs)

    def _build_throttle(self, service: str, cfg: QuotaConfig) -> RequestThrottle:
        return RequestThrottle(
            window_duration_ms=cfg.window_ms,
            max_requests_per_window=cfg.max_requests,
            name=f"quota:{service}",
            message=f"Rate limit exceeded for {service}",
            clock=self._clock,
        )

    def _throttle_for(self, service: str) -> RequestThrottle:
        throttle = self._throttles.get(service)
        if throttle is None:
            raise NotFoundAppError(
                code="unknown_quota_service",
                message=f"No quota is configured for service '{service}'",
                details={"service": service, "known": self.services},
            )
        return throttle

    def _active_block_end(self, service: str, key: str, now: int) -> int | None:
        block_end = self._blocked_until.get(key)
        if block_end is not None and now >= block_end:
            del self._blocked_until[key]
            self._throttles[service].reset(key)
            return None
        return block_end

    def is_allowed(self, service: str, identifier: str = GLOBAL_IDENTIFIER) -> bool:
        """Count one call against ``service`` and report whether it may proceed.

        Raises:
            NotFoundAppError: If ``service`` has no quota configured.
        """

        throttle = self._throttle_for(service)
        if not self.enabled:
            return True

        key = quota_key(service, identifier)
        now = self._clock()

        with self._lock:
            if self._active_block_end(service, key, now) is not None:
                return False

            decision = throttle.admit(key, now)
            if decision.admitted:
                return True

            cfg = self._configs[service]
            block_end = now + cfg.block_duration_ms if cfg.block_duration_ms else decision.reset_at
            self._blocked_until[key] = block_end

        logger.warning(
            "quota.blocked",
            extra={
                "service": service,
                "identifier": identifier,
                "limit": decision.limit,
                "block_end": epoch_ms_to_iso(block_end),
            },
        )
        return False

    def ensure_allowed(self, service: str, identifier: str = GLOBAL_IDENTIFIER) -> None:
        """Like ``is_allowed`` but raises when the call must not be made.

        Raises:
            QuotaExceededAppError: If the quota is exhausted or blocked.
            NotFoundAppError: If ``service`` has no quota configured.
        """

        if self.is_allowed(service, identifier):
            return

        reset_time = self.get_reset_time(service, identifier)
        retry_after = max(0, math.ceil((reset_time - self._clock()) / 1000))
        raise QuotaExceededAppError(
            code="external_quota_exceeded",
            message=f"Rate limit exceeded for {service}, please try again later.",
            details={
                "service": service,
                "retry_after": retry_after,
                "reset_at": epoch_ms_to_iso(reset_time),
            },
        )

    def get_remaining_requests(self, service: str, identifier: str = GLOBAL_IDENTIFIER) -> int:
        return self.get_state(service, identifier)[1]

    def get_reset_time(self, service: str, identifier: str = GLOBAL_IDENTIFIER) -> int:
        """Epoch ms at which calls resume: block end, else window end."""

        state, _ = self.get_state(service, identifier)
        if state.blocked and state.block_end_time is not None:
            return state.block_end_time
        return state.reset_time

    def get_state(self, service: str, identifier: str = GLOBAL_IDENTIFIER) -> tuple[QuotaState, int]:
        """Return the current state and remaining calls for a quota key."""

        throttle = self._throttle_for(service)
        key = quota_key(service, identifier)
        now = self._clock()

        with self._lock:
            block_end = self._active_block_end(service, key, now)
            decision = throttle.peek(key, now)

        state = QuotaState(
            count=decision.limit - decision.remaining,
            reset_time=decision.reset_at,
            blocked=block_end is not None,
            block_end_time=block_end,
        )
        remaining = 0 if state.blocked else decision.remaining
        return state, remaining

    def get_stats(self, service: str | None = None) -> dict[str, dict[str, Any]]:
        """Per-service config, state and status for the global identifier."""

        services = [service] if service else self.services
        stats: dict[str, dict[str, Any]] = {}

        for name in services:
            state, remaining = self.get_state(name)
            if not self.enabled:
                status = "disabled"
            elif state.blocked:
                status = "blocked"
            else:
                status = "active"
            stats[name] = {
                "config": asdict(self._configs[name]),
                "current": asdict(state),
                "remaining_requests": remaining,
                "reset_time": self.get_reset_time(name),
                "status": status,
            }

        return stats

    def reset_limits(self, service: str, identifier: str = GLOBAL_IDENTIFIER) -> None:
        """Forget counts and blocks of one quota key."""

        throttle = self._throttle_for(service)
        key = quota_key(service, identifier)
        with self._lock:
            self._blocked_until.pop(key, None)
            throttle.reset(key)
        logger.info("quota.reset", extra={"service": service, "identifier": identifier})

    def update_config(
        self,
        service: str,
        *,
        window_ms: int | None = None,
        max_requests: int | None = None,
        block_duration_ms: int | None = None,
    ) -> QuotaConfig:
        """Merge new values into a service's quota and restart its counters.

        An unknown service is created when both ``window_ms`` and
        ``max_requests`` are given.

        Raises:
            NotFoundAppError: Unknown service without a complete config.
            ValidationAppError: Values below 1.
        """

        with self._lock:
            current = self._configs.get(service)
            if current is None:
                if window_ms is None or max_requests is None:
                    raise NotFoundAppError(
                        code="unknown_quota_service",
                        message=(
                            f"No quota is configured for service '{service}'; "
                            "provide window_ms and max_requests to create one"
                        ),
                        details={"service": service, "known": self.services},
                    )
                updated = QuotaConfig(window_ms, max_requests, block_duration_ms)
            else:
                changes = {
                    k: v
                    for k, v in {
                        "window_ms": window_ms,
                        "max_requests": max_requests,
                        "block_duration_ms": block_duration_ms,
                    }.items()
                    if v is not None
                }
                updated = replace(current, **changes)

            if updated.block_duration_ms is not None and updated.block_duration_ms < 1:
                raise ValidationAppError(
                    code="invalid_quota_config",
                    message="block_duration_ms must be >= 1",
                    details={"service": service},
                )
            try:
                throttle = self._build_throttle(service, updated)
            except ValueError as exc:
                raise ValidationAppError(
                    code="invalid_quota_config",
                    message=str(exc),
                    details={"service": service},
                ) from exc

            self._configs[service] = updated
            self._throttles[service] = throttle
            prefix = quota_key(service, "")
            for key in [k for k in self._blocked_until if k.startswith(prefix)]:
                del self._blocked_until[key]

        logger.info("quota.config_updated", extra={"service": service, **asdict(updated)})
        return updated
