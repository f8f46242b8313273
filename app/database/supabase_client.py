import logging
from supabase import create_client, Client
from app.config import settings
from app.core.errors import AppError
from typing import Optional

logger = logging.getLogger(__name__)


class SupabaseClient:
    """
    Process-wide Supabase clients.

    The anon client runs under the caller's row-level security policies.
    The service client uses the service_role key and bypasses them, so
    handlers that use it check institution scope themselves.
    """
    _anon: Optional[Client] = None
    _service: Optional[Client] = None

    @classmethod
    def _create(cls, key: str) -> Client:
        if not settings.supabase_url or not key:
            raise AppError("Supabase URL and key must be configured", code="CONFIGURATION_ERROR", status_code=503)
        return create_client(settings.supabase_url, key)

    @classmethod
    def get_client(cls) -> Client:
        if cls._anon is None:
            cls._anon = cls._create(settings.supabase_key)
        return cls._anon

    @classmethod
    def get_service_client(cls) -> Client:
        if cls._service is not None:
            return cls._service
        if not settings.supabase_service_role_key:
            logger.warning("SUPABASE_SERVICE_ROLE_KEY not set; privileged handlers fall back to the anon client")
            return cls.get_client()
        cls._service = cls._create(settings.supabase_service_role_key)
        return cls._service

    @classmethod
    def create_session_client(cls) -> Client:
        """Unshared anon client; sign-in stores its session here, not on the shared client"""
        return cls._create(settings.supabase_key)

    @classmethod
    def reset_client(cls):
        cls._anon = None
        cls._service = None


def get_supabase() -> Client:
    return SupabaseClient.get_client()


def get_session_supabase() -> Client:
    return SupabaseClient.create_session_client()


def get_service_supabase() -> Client:
    """Service-role client for webhook, report and invite handlers"""
    return SupabaseClient.get_service_client()
