from fastapi import APIRouter, Depends, Query, Request
from app.database.supabase_client import get_supabase
from app.modules.reconciliation.schemas import (
    ReconciliationIssueCreate, ReconciliationIssueResponse, ReconciliationNote, ReconciliationStats,
    ISSUE_STATUS_PATTERN
)
from app.modules.reconciliation.service import ReconciliationService
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution, get_request_meta
from app.core.query_cache import QueryCache, get_query_cache
from supabase import Client
from typing import List, Optional

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


def get_reconciliation_service(
    supabase: Client = Depends(get_supabase),
    cache: QueryCache = Depends(get_query_cache)
) -> ReconciliationService:
    return ReconciliationService(supabase, AuditLogger(supabase), cache)


@router.get("", response_model=List[ReconciliationIssueResponse])
def list_issues(
    institution_id: Optional[str] = None,
    status: Optional[str] = Query(None, pattern=ISSUE_STATUS_PATTERN),
    limit: Optional[int] = Query(None, ge=1, le=500),
    user: CurrentUser = Depends(require_permission("reconciliation:read")),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    return service.list_issues(resolve_institution(user, institution_id), status=status, limit=limit)


@router.get("/stats", response_model=ReconciliationStats)
def get_stats(
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("reconciliation:read")),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    return service.get_stats(resolve_institution(user, institution_id))


@router.post("", response_model=ReconciliationIssueResponse, status_code=201)
def create_issue(
    body: ReconciliationIssueCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("reconciliation:create")),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    scope = resolve_institution(user, body.institution_id) or user.institution_id
    return service.create_issue(body, scope, actor=user, request_meta=get_request_meta(request))


@router.post("/{issue_id}/resolve", response_model=ReconciliationIssueResponse)
def resolve_issue(
    issue_id: str,
    request: Request,
    body: Optional[ReconciliationNote] = None,
    user: CurrentUser = Depends(require_permission("reconciliation:resolve")),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    notes = body.notes if body else None
    scope = resolve_institution(user)
    return service.resolve_issue(issue_id, notes, scope, actor=user, request_meta=get_request_meta(request))


@router.post("/{issue_id}/ignore", response_model=ReconciliationIssueResponse)
def ignore_issue(
    issue_id: str,
    request: Request,
    body: Optional[ReconciliationNote] = None,
    user: CurrentUser = Depends(require_permission("reconciliation:resolve")),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    notes = body.notes if body else None
    scope = resolve_institution(user)
    return service.ignore_issue(issue_id, notes, scope, actor=user, request_meta=get_request_meta(request))
