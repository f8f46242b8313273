from fastapi import APIRouter, Depends, Query, Request
from app.database.supabase_client import get_supabase
from app.modules.members.schemas import (
    MemberCreate, MemberUpdate, MemberResponse, MemberListResponse, MemberBalance,
    MemberImportRequest, MemberImportResult, MemberTransactionsResponse
)
from app.modules.members.service import MemberService
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution, get_request_meta
from app.core.query_cache import QueryCache, get_query_cache, query_keys
from supabase import Client
from typing import List, Optional

router = APIRouter(prefix="/members", tags=["members"])


def get_member_service(
    supabase: Client = Depends(get_supabase),
    cache: QueryCache = Depends(get_query_cache)
) -> MemberService:
    return MemberService(supabase, AuditLogger(supabase), cache)


@router.get("", response_model=MemberListResponse)
def list_members(
    institution_id: Optional[str] = None,
    group_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_permission("members:read")),
    service: MemberService = Depends(get_member_service),
    cache: QueryCache = Depends(get_query_cache)
):
    """List members of the caller's institution"""
    scope = resolve_institution(user, institution_id)
    filters = {"group_id": group_id, "status": status, "search": search, "page": page, "limit": limit}
    return cache.fetch(
        query_keys.members(scope, filters),
        lambda: service.list_members(scope, group_id=group_id, status=status, search=search, page=page, limit=limit),
    )


@router.get("/search", response_model=List[MemberResponse])
def search_members(
    q: str = "",
    institution_id: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(require_permission("members:read")),
    service: MemberService = Depends(get_member_service)
):
    """Search members by name, phone or member code"""
    return service.search_members(resolve_institution(user, institution_id), q, limit=limit)


@router.post("/import", response_model=MemberImportResult)
def import_members(
    body: MemberImportRequest,
    request: Request,
    user: CurrentUser = Depends(require_permission("members:import")),
    service: MemberService = Depends(get_member_service)
):
    """Bulk import members from CSV text"""
    scope = resolve_institution(user, body.institution_id) or user.institution_id
    return service.import_members(body.csv_text, scope, body.default_group_id,
                                  actor=user, request_meta=get_request_meta(request))


@router.post("", response_model=MemberResponse, status_code=201)
def create_member(
    member_data: MemberCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("members:create")),
    service: MemberService = Depends(get_member_service)
):
    """Create a new member (optionally linked to a group)"""
    scope = resolve_institution(user, member_data.institution_id) or user.institution_id
    return service.create_member(member_data, scope, actor=user, request_meta=get_request_meta(request))


@router.get("/{member_id}", response_model=MemberResponse)
def get_member(
    member_id: str,
    user: CurrentUser = Depends(require_permission("members:read")),
    service: MemberService = Depends(get_member_service)
):
    return service.get_member(member_id, resolve_institution(user))


@router.put("/{member_id}", response_model=MemberResponse)
def update_member(
    member_id: str,
    member_data: MemberUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("members:update")),
    service: MemberService = Depends(get_member_service)
):
    scope = resolve_institution(user)
    return service.update_member(member_id, member_data, scope, actor=user, request_meta=get_request_meta(request))


@router.delete("/{member_id}", status_code=204)
def delete_member(
    member_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("members:delete")),
    service: MemberService = Depends(get_member_service)
):
    """Close a member (soft delete)"""
    scope = resolve_institution(user)
    service.delete_member(member_id, scope, actor=user, request_meta=get_request_meta(request))
    return None


@router.get("/{member_id}/transactions", response_model=MemberTransactionsResponse)
def get_member_transactions(
    member_id: str,
    limit: int = Query(50, ge=1, le=500),
    user: CurrentUser = Depends(require_permission("transactions:read")),
    service: MemberService = Depends(get_member_service)
):
    items = service.get_transactions(member_id, limit=limit, institution_id=resolve_institution(user))
    return MemberTransactionsResponse(member_id=member_id, items=items)


@router.get("/{member_id}/balance", response_model=MemberBalance)
def get_member_balance(
    member_id: str,
    user: CurrentUser = Depends(require_permission("members:read")),
    service: MemberService = Depends(get_member_service)
):
    return service.get_balance(member_id, resolve_institution(user))
