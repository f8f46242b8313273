"""Pytest fixtures for testing"""

import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError
from app.main import app, limiter
from app.database.supabase_client import get_supabase, get_service_supabase, get_session_supabase
from app.core.dependencies import get_current_user
from app.core.query_cache import query_cache
from app.modules.auth.schemas import CurrentUser
from app.modules.auth.service import clear_auth_cache
from app.modules.messaging.routes import webhook_audit
from app.modules.messaging.service import whatsapp_rate_limiter

BUILDER_METHODS = (
    "select", "insert", "update", "upsert", "delete", "eq", "neq", "in_", "or_", "ilike",
    "gte", "lte", "lt", "order", "range", "limit", "single", "is_",
)


def make_supabase(data=None, count=None):
    """Supabase client mock whose query builders chain onto themselves"""
    client = MagicMock()
    builder = MagicMock()
    for name in BUILDER_METHODS:
        getattr(builder, name).return_value = builder
    builder.execute.return_value = MagicMock(data=data if data is not None else [], count=count)
    client.table.return_value = builder
    client.rpc.return_value = builder
    return client


def set_result(client, data=None, count=None):
    client.table.return_value.execute.return_value = MagicMock(data=data, count=count)


def db_error(code: str, message: str = "database error") -> APIError:
    return APIError({"message": message, "code": code, "hint": None, "details": None})


def make_user(role: str = "ADMIN", level: int = 80, institution_id: str = "inst-1") -> CurrentUser:
    return CurrentUser(
        id="user-1",
        email="admin@example.com",
        full_name="Test Admin",
        role=role,
        role_level=level,
        institution_id=institution_id,
    )


@pytest.fixture(autouse=True)
def reset_state():
    limiter.reset()
    query_cache.clear()
    clear_auth_cache()
    whatsapp_rate_limiter.reset_all()
    webhook_audit.clear()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def supabase():
    return make_supabase()


@pytest.fixture
def user():
    return make_user()


@pytest.fixture
def anonymous_client(supabase) -> TestClient:
    """Client with a mocked database and no authenticated user"""
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_service_supabase] = lambda: supabase
    app.dependency_overrides[get_session_supabase] = lambda: supabase
    return TestClient(app)


@pytest.fixture
def client(anonymous_client, user) -> TestClient:
    """Client signed in as an institution admin"""
    app.dependency_overrides[get_current_user] = lambda: user
    return anonymous_client
