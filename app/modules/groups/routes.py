from fastapi import APIRouter, Depends, Query, Request
from app.database.supabase_client import get_supabase
from app.modules.groups.schemas import (
    GroupCreate, GroupUpdate, GroupStatusUpdate, GroupResponse, GroupListResponse,
    GroupMemberAdd, GroupMemberResponse, GroupImportRequest, GroupImportResult
)
from app.modules.groups.service import GroupService
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution, get_request_meta
from app.core.query_cache import QueryCache, get_query_cache, query_keys
from supabase import Client
from typing import List, Optional

router = APIRouter(prefix="/groups", tags=["groups"])


def get_group_service(
    supabase: Client = Depends(get_supabase),
    cache: QueryCache = Depends(get_query_cache)
) -> GroupService:
    return GroupService(supabase, AuditLogger(supabase), cache)


@router.post("", response_model=GroupResponse, status_code=201)
def create_group(
    group_data: GroupCreate,
    request: Request,
    user: CurrentUser = Depends(require_permission("groups:create")),
    service: GroupService = Depends(get_group_service)
):
    """Create a new group (requires groups:create permission)"""
    scope = resolve_institution(user, group_data.institution_id) or user.institution_id
    return service.create_group(group_data, scope, actor=user, request_meta=get_request_meta(request))


@router.get("", response_model=GroupListResponse)
def list_groups(
    institution_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_permission("groups:read")),
    service: GroupService = Depends(get_group_service),
    cache: QueryCache = Depends(get_query_cache)
):
    """List groups of the caller's institution with member counts"""
    scope = resolve_institution(user, institution_id)
    filters = {"status": status, "search": search, "page": page, "limit": limit}
    return cache.fetch(
        query_keys.groups(scope, filters),
        lambda: service.list_groups(scope, status=status, search=search, page=page, limit=limit),
    )


@router.post("/import", response_model=GroupImportResult)
def import_groups(
    body: GroupImportRequest,
    request: Request,
    user: CurrentUser = Depends(require_permission("groups:import")),
    service: GroupService = Depends(get_group_service)
):
    """Bulk import groups from CSV text"""
    scope = resolve_institution(user, body.institution_id) or user.institution_id
    return service.import_groups(body.csv_text, scope, actor=user, request_meta=get_request_meta(request))


@router.get("/{group_id}", response_model=GroupResponse)
def get_group(
    group_id: str,
    user: CurrentUser = Depends(require_permission("groups:read")),
    service: GroupService = Depends(get_group_service)
):
    return service.get_group_by_id(group_id, resolve_institution(user))


@router.put("/{group_id}", response_model=GroupResponse)
def update_group(
    group_id: str,
    group_data: GroupUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("groups:update")),
    service: GroupService = Depends(get_group_service)
):
    scope = resolve_institution(user)
    return service.update_group(group_id, group_data, scope, actor=user, request_meta=get_request_meta(request))


@router.patch("/{group_id}/status", response_model=GroupResponse)
def set_group_status(
    group_id: str,
    body: GroupStatusUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("groups:update")),
    service: GroupService = Depends(get_group_service)
):
    """Pause, reactivate or close a group"""
    scope = resolve_institution(user)
    return service.set_status(group_id, body.status, scope, actor=user, request_meta=get_request_meta(request))


@router.delete("/{group_id}", status_code=204)
def delete_group(
    group_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("groups:delete")),
    service: GroupService = Depends(get_group_service)
):
    """Close group (requires groups:delete permission)"""
    scope = resolve_institution(user)
    service.delete_group(group_id, scope, actor=user, request_meta=get_request_meta(request))
    return None


@router.get("/{group_id}/members", response_model=List[GroupMemberResponse])
def list_group_members(
    group_id: str,
    user: CurrentUser = Depends(require_permission("groups:read")),
    service: GroupService = Depends(get_group_service)
):
    return service.list_members(group_id, resolve_institution(user))


@router.post("/{group_id}/members", response_model=GroupMemberResponse, status_code=201)
def add_member_to_group(
    group_id: str,
    member_data: GroupMemberAdd,
    request: Request,
    user: CurrentUser = Depends(require_permission("groups:manage_members")),
    service: GroupService = Depends(get_group_service)
):
    """Add a member to group with a leadership role or as a plain member"""
    scope = resolve_institution(user)
    return service.add_member(group_id, member_data, scope, actor=user, request_meta=get_request_meta(request))


@router.delete("/{group_id}/members/{member_id}", status_code=204)
def remove_member_from_group(
    group_id: str,
    member_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("groups:manage_members")),
    service: GroupService = Depends(get_group_service)
):
    scope = resolve_institution(user)
    service.remove_member(group_id, member_id, scope, actor=user, request_meta=get_request_meta(request))
    return None
