"""OpenAPI customizations.

Adds the X-API-Key security scheme to admin operations, documents the
throttle headers and the 429 response on every operation, and registers
tag descriptions.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from neuronova.core.rate_limit import HEADER_LIMIT, HEADER_REMAINING, HEADER_RESET

_RATE_LIMIT_HEADERS = {
    HEADER_LIMIT: {
        "description": "Requests allowed per window",
        "schema": {"type": "integer"},
    },
    HEADER_REMAINING: {
        "description": "Requests left in the current window",
        "schema": {"type": "integer"},
    },
    HEADER_RESET: {
        "description": "ISO-8601 time at which the window resets",
        "schema": {"type": "string", "format": "date-time"},
    },
}

_TOO_MANY_REQUESTS = {
    "description": "Too many requests from this client",
    "headers": {
        **_RATE_LIMIT_HEADERS,
        "Retry-After": {
            "description": "Seconds until the window resets",
            "schema": {"type": "integer"},
        },
    },
    "content": {
        "application/json": {
            "schema": {
                "type": "object",
                "properties": {
                    "success": {"type": "boolean", "enum": [False]},
                    "error": {"type": "string"},
                    "retryAfter": {"type": "integer"},
                },
            }
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with security and throttle docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin API key via the X-API-Key header.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Admin", "description": "Throttle and external quota administration."},
            {"name": "Health", "description": "Liveness checks."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                method_obj["security"] = [{"ApiKeyAuth": []}] if "/admin/" in path else []
                responses = method_obj.setdefault("responses", {})
                responses.setdefault("429", _TOO_MANY_REQUESTS)
                ok = responses.get("200")
                if isinstance(ok, dict):
                    ok.setdefault("headers", dict(_RATE_LIMIT_HEADERS))

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
