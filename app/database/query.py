"""
Execution helpers for Supabase query builders and RPC calls.

Every call goes through here so that PostgREST failures reach services as
DatabaseError (or TimeoutError / NetworkError) rather than raw client errors.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from supabase import Client

from app.config import settings
from app.core.errors import AppError, NotFoundError, create_app_error
from app.core.resilience import with_retry, with_timeout

logger = logging.getLogger(__name__)


def _execute(fn, operation: str, retry: bool):
    try:
        if retry:
            return with_retry(
                fn,
                retries=settings.max_retries,
                base_delay=settings.retry_delay_seconds,
                timeout_seconds=settings.request_timeout_seconds,
                operation=operation,
            )
        return with_timeout(fn, settings.request_timeout_seconds, operation)
    except AppError:
        raise
    except Exception as e:
        raise create_app_error(e, operation) from e


def run_query(builder: Any, operation: str = "query", retry: bool = False):
    """Execute a query builder; retry=True is only for idempotent reads."""
    return _execute(builder.execute, operation, retry)


def call_rpc(client: Client, name: str, params: Optional[Dict[str, Any]] = None,
             operation: Optional[str] = None, retry: bool = False):
    return _execute(lambda: client.rpc(name, params or {}).execute(), operation or name, retry)


def check_connectivity(client: Client, timeout_seconds: float) -> Tuple[bool, Optional[str]]:
    """Cheap round trip against the institutions table, bounded by timeout_seconds."""
    try:
        with_timeout(
            lambda: client.table("institutions").select("id").limit(1).execute(),
            timeout_seconds,
            "Database connectivity check",
        )
        return True, None
    except Exception as e:
        logger.error(f"Database connectivity check failed: {e}")
        return False, str(e)


def scoped(builder: Any, institution_id: Optional[str]):
    """Restrict a builder to one institution; None (platform admin) leaves it open."""
    if institution_id:
        return builder.eq("institution_id", institution_id)
    return builder


def check_scope(row: Optional[Dict[str, Any]], institution_id: Optional[str],
                resource_type: str, resource_id: Optional[str] = None) -> None:
    """Rows from another institution are reported as missing."""
    if institution_id and (row or {}).get("institution_id") != institution_id:
        raise NotFoundError(resource_type, resource_id)


def quote_value(value: str) -> str:
    """Double-quote a value for a PostgREST logic filter so commas and parentheses stay literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def ilike_any(columns: Sequence[str], text: str) -> str:
    """PostgREST or= filter matching text in any of the columns."""
    term = quote_value(f"%{text.strip()}%")
    return ",".join(f"{column}.ilike.{term}" for column in columns)
