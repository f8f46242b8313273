import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from supabase import Client
from app.modules.reconciliation.schemas import (
    ReconciliationIssueCreate, ReconciliationIssueResponse, ReconciliationStats
)
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.errors import DatabaseError, NotFoundError, ValidationError
from app.core.query_cache import QueryCache
from app.database.query import run_query, scoped, check_scope
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ReconciliationService:
    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None, cache: Optional[QueryCache] = None):
        self.supabase = supabase
        self.audit = audit
        self.cache = cache

    def list_issues(self, institution_id: Optional[str], status: Optional[str] = None,
                    limit: Optional[int] = None) -> List[ReconciliationIssueResponse]:
        query = self.supabase.table("reconciliation_issues").select("*")
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if status:
            query = query.eq("status", status)
        query = query.order("detected_at", desc=True)
        if limit:
            query = query.limit(limit)
        result = run_query(query, "ReconciliationService.list_issues", retry=True)
        return [ReconciliationIssueResponse(**row) for row in result.data or []]

    def create_issue(self, data: ReconciliationIssueCreate, institution_id: str,
                     actor: Optional[CurrentUser] = None,
                     request_meta: Optional[Dict[str, Any]] = None) -> ReconciliationIssueResponse:
        if not institution_id:
            raise ValidationError("Institution ID is required")
        row = data.model_dump(exclude={"institution_id"})
        row.update({"institution_id": institution_id, "status": "OPEN"})
        result = run_query(self.supabase.table("reconciliation_issues").insert(row),
                           "ReconciliationService.create_issue")
        if not result.data:
            raise DatabaseError("Failed to create reconciliation issue")
        issue = result.data[0]
        self._audit("create_reconciliation_issue", issue["id"], institution_id, actor, request_meta,
                    new_value={"source": data.source, "amount": data.amount})
        return ReconciliationIssueResponse(**issue)

    def resolve_issue(self, issue_id: str, notes: Optional[str] = None, institution_id: Optional[str] = None,
                      actor: Optional[CurrentUser] = None,
                      request_meta: Optional[Dict[str, Any]] = None) -> ReconciliationIssueResponse:
        return self._close(issue_id, "RESOLVED", notes, institution_id, actor, request_meta)

    def ignore_issue(self, issue_id: str, notes: Optional[str] = None, institution_id: Optional[str] = None,
                     actor: Optional[CurrentUser] = None,
                     request_meta: Optional[Dict[str, Any]] = None) -> ReconciliationIssueResponse:
        return self._close(issue_id, "IGNORED", notes, institution_id, actor, request_meta)

    def _close(self, issue_id: str, status: str, notes: Optional[str], institution_id: Optional[str],
               actor: Optional[CurrentUser], request_meta: Optional[Dict[str, Any]]) -> ReconciliationIssueResponse:
        update = {"status": status, "resolved_at": datetime.now(timezone.utc).isoformat()}
        if notes is not None:
            update["notes"] = notes
        result = run_query(
            scoped(self.supabase.table("reconciliation_issues").update(update).eq("id", issue_id), institution_id),
            f"ReconciliationService.{status.lower()}",
        )
        if not result.data:
            raise NotFoundError("Reconciliation issue", issue_id)
        issue = result.data[0]
        check_scope(issue, institution_id, "Reconciliation issue", issue_id)
        self._audit(f"{'resolve' if status == 'RESOLVED' else 'ignore'}_reconciliation_issue", issue_id,
                    issue.get("institution_id"), actor, request_meta, new_value={"status": status, "notes": notes})
        if self.cache is not None:
            self.cache.invalidate(("dashboard",))
        return ReconciliationIssueResponse(**issue)

    def _count(self, institution_id: Optional[str], status: Optional[str]) -> int:
        query = self.supabase.table("reconciliation_issues").select("id", count="exact", head=True)
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if status:
            query = query.eq("status", status)
        return run_query(query, "ReconciliationService.stats", retry=True).count or 0

    def get_stats(self, institution_id: Optional[str]) -> ReconciliationStats:
        with ThreadPoolExecutor(max_workers=3) as pool:
            open_issues = pool.submit(self._count, institution_id, "OPEN")
            resolved = pool.submit(self._count, institution_id, "RESOLVED")
            total = pool.submit(self._count, institution_id, None)
            return ReconciliationStats(open=open_issues.result(), resolved=resolved.result(), total=total.result())

    def _audit(self, action: str, issue_id: Optional[str], institution_id: Optional[str],
               actor: Optional[CurrentUser], request_meta: Optional[Dict[str, Any]], **kwargs):
        if self.audit:
            self.audit.log(
                action, "reconciliation_issue", issue_id,
                institution_id=institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                request_meta=request_meta,
                **kwargs,
            )
