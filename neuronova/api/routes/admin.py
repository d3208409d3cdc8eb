from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from neuronova.core.auth import verify_api_key
from neuronova.core.errors import ValidationAppError
from neuronova.core.rate_limit import enforce_admin_rate_limit, get_throttle
from neuronova.schemas.rate_limit import (
    QuotaConfigModel,
    QuotaConfigUpdate,
    QuotaSummary,
    ServiceQuotaStats,
    SuccessEnvelope,
    SystemStatus,
    ThrottleProfileStats,
)
from neuronova.services.external_quota import GLOBAL_IDENTIFIER, ExternalApiQuotaService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key), Depends(enforce_admin_rate_limit)],
)


def get_quota_service(request: Request) -> ExternalApiQuotaService:
    return request.app.state.quota_service


@router.get("/status", response_model=SuccessEnvelope)
def system_status(request: Request) -> SuccessEnvelope:
    """Throttle profile sizes and a summary of external API quotas.

    ``rate_limits.active`` counts the external services currently blocked.
    """

    quota_service = get_quota_service(request)
    quota_stats = quota_service.get_stats()

    status = SystemStatus(
        timestamp=datetime.now(timezone.utc).isoformat(),
        throttling_enabled=request.app.state.throttle_settings.enabled,
        throttles=[
            ThrottleProfileStats(**throttle.stats())
            for throttle in request.app.state.throttles.values()
        ],
        rate_limits=QuotaSummary(
            total=len(quota_stats),
            active=sum(1 for s in quota_stats.values() if s["current"]["blocked"]),
        ),
    )
    return SuccessEnvelope(data=status)


@router.get("/quotas", response_model=SuccessEnvelope)
def list_quotas(request: Request, service: str | None = None) -> SuccessEnvelope:
    stats = get_quota_service(request).get_stats(service)
    return SuccessEnvelope(
        data={name: ServiceQuotaStats(**entry) for name, entry in stats.items()},
    )


@router.post("/quotas/{service}/reset", response_model=SuccessEnvelope)
def reset_quota(
    service: str,
    request: Request,
    identifier: str = GLOBAL_IDENTIFIER,
) -> SuccessEnvelope:
    get_quota_service(request).reset_limits(service, identifier)
    return SuccessEnvelope(message=f"Rate limits reset for {service}")


@router.patch("/quotas/{service}", response_model=SuccessEnvelope)
def update_quota(
    service: str,
    payload: QuotaConfigUpdate,
    request: Request,
) -> SuccessEnvelope:
    """Change a service quota; counters and blocks of that service restart."""

    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise ValidationAppError(
            code="empty_quota_update",
            message="Provide at least one of window_ms, max_requests, block_duration_ms",
        )

    updated = get_quota_service(request).update_config(service, **changes)
    return SuccessEnvelope(
        data=QuotaConfigModel(
            window_ms=updated.window_ms,
            max_requests=updated.max_requests,
            block_duration_ms=updated.block_duration_ms,
        ),
        message=f"Rate limit config updated for {service}",
    )


@router.delete("/throttle/{profile}/clients/{client_key}", response_model=SuccessEnvelope)
def reset_client(profile: str, client_key: str, request: Request) -> SuccessEnvelope:
    """Forget one client's window in a throttle profile."""

    removed = get_throttle(request, profile).reset(client_key)
    return SuccessEnvelope(
        data={"removed": removed},
        message=f"Throttle reset for client in profile {profile}",
    )
