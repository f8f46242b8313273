import logging
import threading
from datetime import datetime, timezone
from supabase import Client
from app.modules.audit.schemas import AuditEntry, AuditLogFilters, AuditLogPage
from app.core.errors import AppError
from app.core.request_context import get_request_id
from app.database.query import run_query, call_rpc, quote_value
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

AUDIT_BATCH_SIZE = 10
AUDIT_MAX_QUEUE = 1000
DEFAULT_AUDIT_PAGE_SIZE = 50
CURSOR_SEPARATOR = "|"


class AuditLogger:
    """
    Writes audit_log rows. Failures are logged and never propagate: an audit
    write must not fail the operation being audited.
    """

    def __init__(self, supabase: Optional[Client], batch_size: int = AUDIT_BATCH_SIZE,
                 max_queue: int = AUDIT_MAX_QUEUE):
        self.supabase = supabase
        self.batch_size = batch_size
        self.max_queue = max_queue
        self._queue: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    @staticmethod
    def build_row(
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        institution_id: Optional[str] = None,
        actor_user_id: Optional[str] = None,
        actor_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        previous_value: Any = None,
        new_value: Any = None,
        request_meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        meta = dict(metadata or {})
        if previous_value is not None:
            meta["previous_value"] = previous_value
        if new_value is not None:
            meta["new_value"] = new_value
        request_meta = request_meta or {}
        return {
            "institution_id": institution_id,
            "actor_user_id": actor_user_id,
            "actor_email": actor_email,
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id is not None else None,
            "request_id": request_meta.get("request_id") or get_request_id(),
            "ip_address": request_meta.get("ip_address"),
            "user_agent": request_meta.get("user_agent"),
            "metadata": meta,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

    def log(self, action: str, entity_type: str, entity_id: Optional[str] = None, **kwargs) -> bool:
        """Insert one audit row immediately."""
        row = self.build_row(action, entity_type, entity_id, **kwargs)
        try:
            run_query(self.supabase.table("audit_log").insert(row), "AuditLogger.log")
            return True
        except AppError as e:
            logger.error(f"Failed to write audit row action={action} entity={entity_type}: {e.message}")
            return False

    def enqueue(self, action: str, entity_type: str, entity_id: Optional[str] = None, **kwargs) -> None:
        """Queue a row; the queue is flushed once it reaches batch_size."""
        row = self.build_row(action, entity_type, entity_id, **kwargs)
        with self._lock:
            self._queue.append(row)
            self._trim()
            should_flush = len(self._queue) >= self.batch_size
        if should_flush:
            self.flush()

    def _trim(self):
        # Caller holds the lock; the oldest rows go first
        overflow = len(self._queue) - self.max_queue
        if overflow > 0:
            del self._queue[:overflow]
            logger.error(f"Audit queue full, dropped {overflow} oldest rows")

    def flush(self) -> int:
        """Insert queued rows in batches; a failed batch goes back on the queue."""
        written = 0
        while True:
            with self._lock:
                if not self._queue:
                    return written
                batch = self._queue[:self.batch_size]
                del self._queue[:self.batch_size]
            try:
                run_query(self.supabase.table("audit_log").insert(batch), "AuditLogger.flush")
                written += len(batch)
            except AppError as e:
                logger.error(f"Failed to flush {len(batch)} audit rows, re-queued: {e.message}")
                with self._lock:
                    self._queue[:0] = batch
                    self._trim()
                return written

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def clear(self):
        with self._lock:
            self._queue.clear()


class AuditService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_entries(
        self,
        institution_id: Optional[str],
        filters: AuditLogFilters,
        limit: int = DEFAULT_AUDIT_PAGE_SIZE,
        cursor: Optional[str] = None,
    ) -> AuditLogPage:
        """Cursor-paginated audit log; falls back to a direct query when the RPC is unavailable."""
        params = {
            "p_institution_id": institution_id,
            "p_limit": limit,
            "p_cursor": cursor.partition(CURSOR_SEPARATOR)[0] if cursor else None,
            "p_action_filter": filters.action or None,
            "p_entity_type_filter": filters.entity_type or None,
            "p_actor_filter": filters.actor or None,
            "p_date_from": f"{filters.date_from}T00:00:00Z" if filters.date_from else None,
            "p_date_to": f"{filters.date_to}T23:59:59Z" if filters.date_to else None,
        }
        try:
            result = call_rpc(self.supabase, "get_audit_log_paginated", params, "AuditService.list_entries")
            data = result.data or {}
            if isinstance(data, list):
                data = data[0] if data else {}
            if data.get("success") is False:
                raise AppError(data.get("error") or "Audit log RPC reported failure")
            return AuditLogPage(
                items=[AuditEntry(**item) for item in data.get("items") or []],
                has_more=bool(data.get("has_more")),
                next_cursor=data.get("next_cursor"),
                source="rpc",
            )
        except AppError as e:
            logger.warning(f"get_audit_log_paginated failed, using direct query: {e.message}")
            return self._list_direct(institution_id, filters, limit, cursor)

    def _list_direct(
        self,
        institution_id: Optional[str],
        filters: AuditLogFilters,
        limit: int,
        cursor: Optional[str],
    ) -> AuditLogPage:
        query = self.supabase.table("audit_log").select("*")
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if filters.action:
            query = query.ilike("action", f"%{filters.action}%")
        if filters.entity_type:
            query = query.eq("entity_type", filters.entity_type)
        if filters.actor:
            query = query.ilike("actor_email", f"%{filters.actor}%")
        if filters.date_from:
            query = query.gte("created_at", f"{filters.date_from}T00:00:00Z")
        if filters.date_to:
            query = query.lte("created_at", f"{filters.date_to}T23:59:59Z")
        if cursor:
            created_at, _, last_id = cursor.partition(CURSOR_SEPARATOR)
            if last_id:
                # Rows sharing the boundary timestamp are ordered by id
                stamp, after = quote_value(created_at), quote_value(last_id)
                query = query.or_(f"created_at.lt.{stamp},and(created_at.eq.{stamp},id.lt.{after})")
            else:
                query = query.lt("created_at", created_at)
        # One extra row tells us whether another page exists
        result = run_query(
            query.order("created_at", desc=True).order("id", desc=True).limit(limit + 1),
            "AuditService.list_direct",
        )
        rows = result.data or []
        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = None
        if has_more and rows:
            next_cursor = f"{rows[-1]['created_at']}{CURSOR_SEPARATOR}{rows[-1]['id']}"
        return AuditLogPage(
            items=[AuditEntry(**row) for row in rows],
            has_more=has_more,
            next_cursor=next_cursor,
            source="fallback",
        )
