from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from app.database.supabase_client import get_supabase
from app.modules.transactions.schemas import (
    TransactionFilters, TransactionCreate, TransactionStatusUpdate, TransactionResponse,
    TransactionListResponse, AllocateRequest, BatchAllocateRequest, BatchAllocateResponse,
    FlagDuplicateRequest, MemberSuggestion
)
from app.modules.transactions.service import TransactionService
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution, get_request_meta
from app.core.query_cache import QueryCache, get_query_cache, query_keys
from supabase import Client
from datetime import datetime, timezone
from typing import Optional

router = APIRouter(prefix="/transactions", tags=["transactions"])


def get_transaction_service(
    supabase: Client = Depends(get_supabase),
    cache: QueryCache = Depends(get_query_cache)
) -> TransactionService:
    return TransactionService(supabase, AuditLogger(supabase), cache)


def get_transaction_filters(
    member_id: Optional[str] = None,
    group_id: Optional[str] = None,
    status: Optional[str] = None,
    allocation_status: Optional[str] = None,
    date_from: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    date_to: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    search: Optional[str] = None,
) -> TransactionFilters:
    return TransactionFilters(
        member_id=member_id, group_id=group_id, status=status, allocation_status=allocation_status,
        date_from=date_from, date_to=date_to, search=search,
    )


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    institution_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    filters: TransactionFilters = Depends(get_transaction_filters),
    user: CurrentUser = Depends(require_permission("transactions:read")),
    service: TransactionService = Depends(get_transaction_service),
    cache: QueryCache = Depends(get_query_cache)
):
    """List transactions, newest first"""
    scope = resolve_institution(user, institution_id)
    key = query_keys.transactions(scope, {**filters.model_dump(), "page": page, "limit": limit})
    return cache.fetch(key, lambda: service.list_transactions(scope, filters, page=page, limit=limit))


@router.post("", response_model=TransactionResponse, status_code=201)
def create_transaction(
    body: TransactionCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("transactions:create")),
    service: TransactionService = Depends(get_transaction_service)
):
    """Record a manual transaction (cash or bank deposit)"""
    scope = resolve_institution(user, body.institution_id) or user.institution_id
    return service.create_transaction(body, scope, actor=user, request_meta=get_request_meta(request))


@router.get("/unallocated/count")
def count_unallocated(
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("transactions:read")),
    service: TransactionService = Depends(get_transaction_service)
):
    return {"count": service.count_unallocated(resolve_institution(user, institution_id))}


@router.get("/export")
def export_transactions(
    institution_id: Optional[str] = None,
    filters: TransactionFilters = Depends(get_transaction_filters),
    user: CurrentUser = Depends(require_permission("transactions:export")),
    service: TransactionService = Depends(get_transaction_service)
):
    """Export filtered transactions as CSV"""
    content = service.export_csv(resolve_institution(user, institution_id), filters)
    filename = f"transactions_{datetime.now(timezone.utc).strftime('%Y%m%d')}.csv"
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/allocate-batch", response_model=BatchAllocateResponse)
def allocate_batch(
    body: BatchAllocateRequest,
    request: Request,
    user: CurrentUser = Depends(require_permission("transactions:allocate")),
    service: TransactionService = Depends(get_transaction_service)
):
    return service.allocate_batch(body.transaction_ids, body.member_id, body.group_id, resolve_institution(user),
                                  actor=user, request_meta=get_request_meta(request))


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    user: CurrentUser = Depends(require_permission("transactions:read")),
    service: TransactionService = Depends(get_transaction_service)
):
    return service.get_transaction(transaction_id, resolve_institution(user))


@router.patch("/{transaction_id}/status", response_model=TransactionResponse)
def update_transaction_status(
    transaction_id: str,
    body: TransactionStatusUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("transactions:update")),
    service: TransactionService = Depends(get_transaction_service)
):
    return service.update_status(transaction_id, body.status, resolve_institution(user),
                                 actor=user, request_meta=get_request_meta(request))


@router.post("/{transaction_id}/allocate", response_model=TransactionResponse)
def allocate_transaction(
    transaction_id: str,
    body: AllocateRequest,
    request: Request,
    user: CurrentUser = Depends(require_permission("transactions:allocate")),
    service: TransactionService = Depends(get_transaction_service)
):
    """Allocate an unallocated payment to a member"""
    return service.allocate(transaction_id, body.member_id, body.note, resolve_institution(user),
                            actor=user, request_meta=get_request_meta(request))


@router.post("/{transaction_id}/flag-duplicate", response_model=TransactionResponse)
def flag_duplicate(
    transaction_id: str,
    body: FlagDuplicateRequest,
    request: Request,
    user: CurrentUser = Depends(require_permission("transactions:update")),
    service: TransactionService = Depends(get_transaction_service)
):
    return service.flag_duplicate(transaction_id, body.duplicate_of, resolve_institution(user),
                                  actor=user, request_meta=get_request_meta(request))


@router.get("/{transaction_id}/suggest-member", response_model=MemberSuggestion)
def suggest_member(
    transaction_id: str,
    user: CurrentUser = Depends(require_permission("transactions:allocate")),
    service: TransactionService = Depends(get_transaction_service)
):
    return service.suggest_member(transaction_id, resolve_institution(user))
