"""Request throttling for the HTTP layer.

The ``general`` profile runs as HTTP middleware and counts every request.
The ``admin`` profile runs as a router dependency, and the ``auth`` profile
is consulted by API-key verification (see ``neuronova.core.auth``).

Every throttled response carries X-RateLimit-Limit, X-RateLimit-Remaining
and X-RateLimit-Reset. When several profiles apply to one request, the
innermost one (route dependency) sets the headers and the middleware leaves
them untouched.

Clients are keyed by peer address, or by the first X-Forwarded-For hop when
``trust_forwarded_for`` is on. Requests without an identifiable address all
share the fallback key, so one anonymous client can exhaust the quota of
every other anonymous client behind the same proxy.
"""

from __future__ import annotations

import logging
from typing import Mapping, MutableMapping

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from neuronova.adapters.throttle.base import Decision
from neuronova.core.config import ThrottleSettings
from neuronova.core.errors import NotFoundAppError
from neuronova.core.logging import hash_identifier
from neuronova.schemas.rate_limit import RejectionBody
from neuronova.services.throttle import DEFAULT_FALLBACK_KEY, RequestThrottle

logger = logging.getLogger(__name__)

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"


class ThrottleRejectedError(Exception):
    """Raised by route guards when a throttle profile rejects a request."""

    def __init__(self, decision: Decision, message: str, profile: str) -> None:
        super().__init__(message)
        self.decision = decision
        self.message = message
        self.profile = profile


def client_key_from_request(
    request: Request,
    *,
    trust_forwarded_for: bool = False,
    fallback_key: str = DEFAULT_FALLBACK_KEY,
) -> str:
    """Derive the throttle key identifying the caller of ``request``."""

    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

    if request.client and request.client.host:
        return request.client.host

    logger.debug("throttle.unidentified_client", extra={"fallback_key": fallback_key})
    return fallback_key


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """Format the quota headers for a decision. Pure; safe to call repeatedly."""

    return {
        HEADER_LIMIT: str(decision.limit),
        HEADER_REMAINING: str(decision.remaining),
        HEADER_RESET: decision.reset_at_iso,
    }


def apply_rate_limit_headers(
    headers: MutableMapping[str, str],
    decision: Decision,
    *,
    overwrite: bool = True,
) -> None:
    for name, value in rate_limit_headers(decision).items():
        if overwrite or name not in headers:
            headers[name] = value


def build_rejection_response(
    decision: Decision,
    message: str,
    *,
    include_headers: bool = True,
) -> JSONResponse:
    """429 response with the retry hint in the body and headers."""

    headers: dict[str, str] = {"Retry-After": str(decision.retry_after_seconds)}
    if include_headers:
        headers.update(rate_limit_headers(decision))

    return JSONResponse(
        status_code=429,
        content=RejectionBody(error=message, retryAfter=decision.retry_after_seconds).model_dump(),
        headers=headers,
    )


def _log_rejection(profile: str, key: str, decision: Decision, path: str) -> None:
    logger.info(
        "throttle.rejected",
        extra={
            "profile": profile,
            "key_hash": hash_identifier(key),
            "limit": decision.limit,
            "retry_after_s": decision.retry_after_seconds,
            "request_path": path,
        },
    )


class ThrottleMiddleware:
    """HTTP middleware applying one throttle profile to every request.

    Usage:
        app.middleware("http")(ThrottleMiddleware(throttle, cfg))
    """

    def __init__(self, throttle: RequestThrottle, cfg: ThrottleSettings) -> None:
        self.throttle = throttle
        self._trust_forwarded_for = cfg.trust_forwarded_for
        self._fallback_key = cfg.fallback_client_key
        self._include_headers = cfg.include_headers

    async def __call__(self, request: Request, call_next) -> Response:
        key = client_key_from_request(
            request,
            trust_forwarded_for=self._trust_forwarded_for,
            fallback_key=self._fallback_key,
        )
        decision = self.throttle.admit(key)

        if not decision.admitted:
            _log_rejection(self.throttle.name, key, decision, request.url.path)
            return build_rejection_response(
                decision,
                self.throttle.message,
                include_headers=self._include_headers,
            )

        try:
            response: Response = await call_next(request)
        except Exception as exc:
            # Rendered here, not by ServerErrorMiddleware, so the 500 gets quota headers
            handler = request.app.exception_handlers.get(Exception)
            if handler is None:
                raise
            response = await handler(request, exc)

        if self._include_headers:
            apply_rate_limit_headers(response.headers, decision, overwrite=False)
        return response


async def throttle_rejected_handler(request: Request, exc: ThrottleRejectedError) -> JSONResponse:
    cfg: ThrottleSettings = request.app.state.throttle_settings
    return build_rejection_response(exc.decision, exc.message, include_headers=cfg.include_headers)


def get_throttle(request: Request, profile: str) -> RequestThrottle:
    """Look up a throttle profile registered on the application."""

    throttles: Mapping[str, RequestThrottle] = request.app.state.throttles
    throttle = throttles.get(profile)
    if throttle is None:
        raise NotFoundAppError(
            code="unknown_throttle_profile",
            message=f"No throttle profile named '{profile}'",
            details={"profile": profile, "known": sorted(throttles)},
        )
    return throttle


def request_client_key(request: Request) -> str:
    cfg: ThrottleSettings = request.app.state.throttle_settings
    return client_key_from_request(
        request,
        trust_forwarded_for=cfg.trust_forwarded_for,
        fallback_key=cfg.fallback_client_key,
    )


def throttling_enabled(request: Request) -> bool:
    return request.app.state.throttle_settings.enabled


async def enforce_admin_rate_limit(request: Request, response: Response) -> None:
    """FastAPI dependency counting the request against the ``admin`` profile.

    Raises:
        ThrottleRejectedError: When the client is over the admin quota.
    """

    if not throttling_enabled(request):
        return

    throttle = get_throttle(request, "admin")
    key = request_client_key(request)
    decision = throttle.admit(key)

    if not decision.admitted:
        _log_rejection(throttle.name, key, decision, request.url.path)
        raise ThrottleRejectedError(decision, throttle.message, throttle.name)

    if request.app.state.throttle_settings.include_headers:
        apply_rate_limit_headers(response.headers, decision)
