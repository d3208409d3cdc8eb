"""Tests for the admin throttle and quota endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient


def test_status_reports_profiles_and_quota_summary(client: TestClient, admin_headers) -> None:
    resp = client.get("/v1/admin/status", headers=admin_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["throttling_enabled"] is True
    profiles = {p["profile"]: p for p in data["throttles"]}
    assert set(profiles) == {"general", "auth", "admin"}
    assert profiles["general"]["limit"] == 100
    assert profiles["general"]["tracked_clients"] == 1
    assert data["rate_limits"] == {"total": 3, "active": 0}


def test_status_counts_blocked_services(make_app, admin_headers) -> None:
    app = make_app()
    client = TestClient(app)
    quota = app.state.quota_service
    quota.update_config("pubmed", max_requests=1)
    quota.is_allowed("pubmed")
    quota.is_allowed("pubmed")

    data = client.get("/v1/admin/status", headers=admin_headers).json()["data"]

    assert data["rate_limits"] == {"total": 3, "active": 1}


def test_admin_responses_report_admin_quota(make_app, admin_headers) -> None:
    client = TestClient(make_app(admin_max_requests=3))

    resp = client.get("/v1/admin/status", headers=admin_headers)

    assert resp.headers["X-RateLimit-Limit"] == "3"
    assert resp.headers["X-RateLimit-Remaining"] == "2"


def test_admin_profile_rejects_over_quota(make_app, admin_headers) -> None:
    client = TestClient(make_app(admin_max_requests=2))

    assert client.get("/v1/admin/status", headers=admin_headers).status_code == 200
    assert client.get("/v1/admin/quotas", headers=admin_headers).status_code == 200
    resp = client.get("/v1/admin/status", headers=admin_headers)

    assert resp.status_code == 429
    assert resp.json()["error"] == "Too many admin requests, please try again later."
    assert resp.headers["X-RateLimit-Limit"] == "2"
    # Non-admin routes still follow the general profile
    health = client.get("/health")
    assert health.status_code == 200
    assert health.headers["X-RateLimit-Limit"] == "100"


def test_list_quotas(client: TestClient, admin_headers) -> None:
    resp = client.get("/v1/admin/quotas", headers=admin_headers)

    data = resp.json()["data"]
    assert set(data) == {"pubmed", "arxiv", "biorxiv"}
    assert data["arxiv"]["config"] == {
        "window_ms": 3_600_000,
        "max_requests": 1000,
        "block_duration_ms": 900_000,
    }
    assert data["pubmed"]["status"] == "active"
    assert data["pubmed"]["remaining_requests"] == 100


def test_list_single_quota(client: TestClient, admin_headers) -> None:
    resp = client.get("/v1/admin/quotas", params={"service": "biorxiv"}, headers=admin_headers)

    assert list(resp.json()["data"]) == ["biorxiv"]


def test_unknown_quota_service_returns_404(client: TestClient, admin_headers) -> None:
    resp = client.get("/v1/admin/quotas", params={"service": "scopus"}, headers=admin_headers)

    assert resp.status_code == 404
    error = resp.json()["error"]
    assert error["code"] == "unknown_quota_service"
    assert "request_id" in error


def test_quotas_report_disabled_status(make_app, admin_headers) -> None:
    client = TestClient(make_app(quota_enabled=False))

    data = client.get("/v1/admin/quotas", headers=admin_headers).json()["data"]

    assert {entry["status"] for entry in data.values()} == {"disabled"}


def test_reset_quota_unblocks_service(make_app, admin_headers) -> None:
    app = make_app()
    client = TestClient(app)
    quota = app.state.quota_service
    quota.update_config("arxiv", max_requests=1)
    quota.is_allowed("arxiv")
    assert quota.is_allowed("arxiv") is False

    resp = client.post("/v1/admin/quotas/arxiv/reset", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["message"] == "Rate limits reset for arxiv"
    assert quota.is_allowed("arxiv") is True


def test_patch_quota_config(make_app, admin_headers) -> None:
    app = make_app()
    client = TestClient(app)

    resp = client.patch(
        "/v1/admin/quotas/pubmed",
        json={"max_requests": 5},
        headers=admin_headers,
    )

    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "window_ms": 3_600_000,
        "max_requests": 5,
        "block_duration_ms": 1_800_000,
    }
    assert app.state.quota_service.get_remaining_requests("pubmed") == 5


def test_patch_creates_new_service_with_full_config(client: TestClient, admin_headers) -> None:
    resp = client.patch(
        "/v1/admin/quotas/crossref",
        json={"window_ms": 60_000, "max_requests": 50},
        headers=admin_headers,
    )

    assert resp.status_code == 200
    listing = client.get("/v1/admin/quotas", headers=admin_headers).json()["data"]
    assert "crossref" in listing


def test_patch_rejects_empty_update(client: TestClient, admin_headers) -> None:
    resp = client.patch("/v1/admin/quotas/pubmed", json={}, headers=admin_headers)

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "empty_quota_update"


def test_patch_rejects_non_positive_values(client: TestClient, admin_headers) -> None:
    resp = client.patch("/v1/admin/quotas/pubmed", json={"max_requests": 0}, headers=admin_headers)

    assert resp.status_code == 422


def test_reset_throttled_client(make_app, admin_headers) -> None:
    app = make_app(max_requests_per_window=3)
    client = TestClient(app)
    client.get("/health")

    resp = client.delete("/v1/admin/throttle/general/clients/testclient", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["data"] == {"removed": True}
    # The dropped window included the reset request itself
    assert app.state.throttles["general"].peek("testclient").remaining == 3


def test_reset_client_unknown_profile(client: TestClient, admin_headers) -> None:
    resp = client.delete("/v1/admin/throttle/uploads/clients/testclient", headers=admin_headers)

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "unknown_throttle_profile"
