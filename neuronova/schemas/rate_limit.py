"""Request/response models for the admin rate-limit endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class QuotaConfigUpdate(BaseModel):
    """Partial update of an external service quota."""

    window_ms: int | None = Field(None, ge=1, description="Window length in milliseconds")
    max_requests: int | None = Field(None, ge=1, description="Calls allowed per window")
    block_duration_ms: int | None = Field(
        None,
        ge=1,
        description="Block period after the quota is exceeded, in milliseconds",
    )


class QuotaConfigModel(BaseModel):
    window_ms: int
    max_requests: int
    block_duration_ms: int | None = None


class QuotaStateModel(BaseModel):
    count: int
    reset_time: int
    blocked: bool
    block_end_time: int | None = None


class ServiceQuotaStats(BaseModel):
    config: QuotaConfigModel
    current: QuotaStateModel
    remaining_requests: int
    reset_time: int
    status: Literal["active", "blocked", "disabled"]


class ThrottleProfileStats(BaseModel):
    profile: str
    limit: int
    window_ms: int
    tracked_clients: int


class QuotaSummary(BaseModel):
    total: int = Field(..., description="Number of external services with a quota")
    active: int = Field(..., description="Number of services currently blocked")


class SystemStatus(BaseModel):
    timestamp: str
    throttling_enabled: bool
    throttles: list[ThrottleProfileStats]
    rate_limits: QuotaSummary


class SuccessEnvelope(BaseModel):
    success: bool = True
    data: Any | None = None
    message: str | None = None


class RejectionBody(BaseModel):
    """Body of a 429 response from a throttle profile."""

    success: Literal[False] = False
    error: str
    retryAfter: int = Field(..., description="Seconds until the window resets, rounded up")
