"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any import of ``neuronova`` so the
global settings object is built from them.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-admin-key-123,test-admin-key-456")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("THROTTLE_SWEEP_INTERVAL_SECONDS", "0")

from typing import Any, Callable

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from neuronova.core.app_factory import create_app
from neuronova.core.config import AppSettings, LogSettings, QuotaSettings, Settings, ThrottleSettings

ADMIN_KEY = "test-admin-key-123"


@pytest.fixture
def make_app() -> Callable[..., FastAPI]:
    """Build an isolated app; keyword args override throttle settings."""

    def _factory(
        *,
        quota_enabled: bool = True,
        app_cfg: AppSettings | None = None,
        log_cfg: LogSettings | None = None,
        **throttle_overrides: Any,
    ) -> FastAPI:
        throttle_overrides.setdefault("sweep_interval_seconds", 0)
        sections: dict[str, Any] = {
            "log": log_cfg or LogSettings(level="WARNING"),
            "throttle": ThrottleSettings(**throttle_overrides),
            "quota": QuotaSettings(enabled=quota_enabled),
        }
        if app_cfg is not None:
            sections["app"] = app_cfg
        return create_app(Settings(**sections))

    return _factory


@pytest.fixture
def client(make_app: Callable[..., FastAPI]) -> TestClient:
    return TestClient(make_app())


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-API-Key": ADMIN_KEY}
