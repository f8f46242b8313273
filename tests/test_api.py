"""Integration tests for the HTTP surface: health, auth guards and error responses"""

import inspect
import logging
from unittest.mock import MagicMock, patch
from fastapi.routing import APIRoute
from app.core.request_context import RequestIdFilter
from app.database.supabase_client import get_supabase
from tests.conftest import db_error, make_supabase

HEALTHY_REPORT = {
    "ok": True,
    "missing": [],
    "checks": {
        "database": {"ok": True, "error": None, "latency_ms": 3.2},
        "whatsapp": {"ok": True, "error": None},
        "storage": {"ok": True, "error": None},
    },
    "checked_at": "2024-05-01T00:00:00+00:00",
}


@patch("app.main.run_startup_diagnostics", return_value=HEALTHY_REPORT)
def test_health_endpoint(mock_diagnostics, anonymous_client):
    response = anonymous_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert "response_time_ms" in data
    assert data["checks"]["database"]["ok"] is True


@patch("app.main.run_startup_diagnostics")
def test_health_degraded_without_optional_integrations(mock_diagnostics, anonymous_client):
    report = {**HEALTHY_REPORT, "checks": {**HEALTHY_REPORT["checks"],
                                           "whatsapp": {"ok": False, "error": "not configured"}}}
    mock_diagnostics.return_value = report
    response = anonymous_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


@patch("app.main.run_startup_diagnostics")
def test_health_unhealthy_returns_503(mock_diagnostics, anonymous_client):
    mock_diagnostics.return_value = {**HEALTHY_REPORT, "ok": False, "missing": ["SUPABASE_URL is not set"]}
    response = anonymous_client.get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


@patch("app.main.run_startup_diagnostics")
def test_ready_reflects_diagnostics(mock_diagnostics, anonymous_client):
    from app.main import app
    app.state.diagnostics = None
    mock_diagnostics.return_value = {**HEALTHY_REPORT, "ok": False}
    assert anonymous_client.get("/ready").status_code == 503
    mock_diagnostics.return_value = HEALTHY_REPORT
    assert anonymous_client.get("/ready").status_code == 200


def test_security_and_request_id_headers(anonymous_client):
    response = anonymous_client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_access_log_carries_request_id(anonymous_client, caplog):
    caplog.handler.addFilter(RequestIdFilter())
    with caplog.at_level(logging.INFO, logger="app.requests"):
        anonymous_client.get("/", headers={"X-Request-ID": "req-456"})
    records = [r for r in caplog.records if r.name == "app.requests"]
    assert records
    assert records[-1].request_id == "req-456"


def test_missing_token_is_unauthorized(anonymous_client):
    response = anonymous_client.get("/api/v1/members")
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"
    assert response.json()["detail"] == "Please sign in to continue."


def test_auditor_cannot_create_transactions(client, user):
    user.role, user.role_level = "INSTITUTION_AUDITOR", 20
    response = client.post("/api/v1/transactions", json={"type": "DEPOSIT", "amount": 100, "channel": "CASH"})
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


def test_other_institution_is_forbidden(client):
    response = client.get("/api/v1/members", params={"institution_id": "inst-2"})
    assert response.status_code == 403


def test_duplicate_group_returns_conflict(client, supabase):
    supabase.table.return_value.execute.side_effect = db_error("23505", "duplicate key value")
    response = client.post("/api/v1/groups", json={"group_name": "Twizigamire"})
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "CONFLICT"
    assert body["retryable"] is False
    assert body["detail"] == "A group with this name or code already exists"


def test_missing_member_returns_not_found(client, supabase):
    supabase.table.return_value.execute.side_effect = db_error("PGRST116", "JSON object requested, multiple (or no) rows returned")
    response = client.get("/api/v1/members/missing")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_me_lists_permissions(client):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 200
    permissions = response.json()["permissions"]
    assert "staff:create" in permissions
    assert "transactions:allocate" in permissions


def test_service_handlers_run_in_threadpool():
    from app.main import app
    # The webhook reads the raw body and hands processing to the threadpool itself
    blocking = [
        route.path for route in app.routes
        if isinstance(route, APIRoute)
        and (route.path.startswith("/api/") or route.path in ("/health", "/ready"))
        and route.path != "/api/v1/messaging/whatsapp/webhook"
        and inspect.iscoroutinefunction(route.endpoint)
    ]
    assert blocking == []


def test_login_does_not_touch_shared_client(anonymous_client, supabase):
    from app.main import app
    shared = make_supabase()
    app.dependency_overrides[get_supabase] = lambda: shared
    supabase.auth.sign_in_with_password.return_value = MagicMock(
        user=MagicMock(id="user-1", email="admin@example.com"),
        session=MagicMock(access_token="access", refresh_token="refresh", expires_in=3600),
    )

    response = anonymous_client.post("/api/v1/auth/login",
                                     json={"email": "admin@example.com", "password": "secret"})

    assert response.status_code == 200
    assert response.json()["access_token"] == "access"
    shared.auth.sign_in_with_password.assert_not_called()


def test_logout_revokes_token_with_admin_api(client, supabase):
    response = client.post("/api/v1/auth/logout", headers={"Authorization": "Bearer token-1"})
    assert response.status_code == 200
    supabase.auth.admin.sign_out.assert_called_once_with("token-1")
    supabase.auth.sign_out.assert_not_called()
