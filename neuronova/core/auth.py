"""API key authentication for the admin surface.

Keys are validated against a comma-separated list from environment
variables. Failed attempts (missing or invalid key) count against the
``auth`` throttle profile; successful ones do not. Once a client has used up
its failed attempts for the window it is refused with 429 before its key is
even checked.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from neuronova.core.config import AppSettings, settings
from neuronova.core.errors import AuthenticationAppError
from neuronova.core.logging import hash_identifier
from neuronova.core.rate_limit import (
    ThrottleRejectedError,
    get_throttle,
    request_client_key,
    throttling_enabled,
)

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def app_settings_for(request: Request) -> AppSettings:
    """Settings the application was built with (global settings as fallback)."""

    return getattr(request.app.state, "app_settings", None) or settings.app


def validate_api_key(provided_key: str, app_cfg: AppSettings | None = None) -> None:
    """Validate that provided API key matches configured keys.

    Args:
        provided_key: Value of the X-API-Key header.
        app_cfg: Settings to validate against; the global ones when omitted.

    Raises:
        AuthenticationAppError: If the key is invalid, or authentication is
            required but no keys are configured.
    """
    cfg = app_cfg or settings.app
    if not cfg.api_key_required:
        return

    valid_keys = parse_api_keys(cfg.api_keys)

    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={
                "reason": "api_keys_not_configured",
                "auth_required": cfg.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if provided_key not in valid_keys:
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": hash_identifier(provided_key),
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


def _record_failed_attempt(request: Request) -> None:
    if throttling_enabled(request):
        get_throttle(request, "auth").admit(request_client_key(request))


async def verify_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency for API key authentication.

    Usage:
        @router.get("/protected", dependencies=[Depends(verify_api_key)])

    Raises:
        ThrottleRejectedError: 429 once the client's failed attempts are used up.
        HTTPException: 403 Forbidden if authentication fails.
    """
    app_cfg = app_settings_for(request)
    if not app_cfg.api_key_required:
        logger.debug("auth.skipped", extra={"reason": "auth_required_false"})
        return

    if throttling_enabled(request):
        throttle = get_throttle(request, "auth")
        key = request_client_key(request)
        decision = throttle.peek(key)
        if not decision.admitted:
            logger.warning(
                "auth.throttled",
                extra={"key_hash": hash_identifier(key), "retry_after_s": decision.retry_after_seconds},
            )
            raise ThrottleRejectedError(decision, throttle.message, throttle.name)

    if not x_api_key:
        logger.warning("auth.missing_key", extra={"api_key_present": False})
        _record_failed_attempt(request)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validate_api_key(x_api_key, app_cfg)
    except AuthenticationAppError as exc:
        _record_failed_attempt(request)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    logger.info("auth.success", extra={"api_key_hash": hash_identifier(x_api_key)})
