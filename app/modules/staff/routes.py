from fastapi import APIRouter, Depends, Query, Request
from app.database.supabase_client import get_supabase, get_service_supabase
from app.modules.staff.schemas import StaffInvite, StaffUpdate, StaffResponse, StaffListResponse, StaffInviteResult
from app.modules.staff.service import StaffService
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution, get_request_meta
from supabase import Client
from typing import Optional

router = APIRouter(prefix="/staff", tags=["staff"])


def get_staff_service(supabase: Client = Depends(get_supabase)) -> StaffService:
    return StaffService(supabase, AuditLogger(supabase))


def get_admin_staff_service(supabase: Client = Depends(get_service_supabase)) -> StaffService:
    return StaffService(supabase, AuditLogger(supabase))


@router.get("", response_model=StaffListResponse)
def list_staff(
    institution_id: Optional[str] = None,
    role: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_permission("staff:read")),
    service: StaffService = Depends(get_staff_service)
):
    """List staff profiles of the caller's institution"""
    scope = resolve_institution(user, institution_id)
    return service.list_staff(scope, role=role, search=search, page=page, limit=limit)


@router.post("/invite", response_model=StaffInviteResult, status_code=201)
def invite_staff(
    body: StaffInvite,
    request: Request,
    user: CurrentUser = Depends(require_permission("staff:create")),
    service: StaffService = Depends(get_admin_staff_service)
):
    """Invite a staff member by email (requires staff:create permission)"""
    return service.invite_staff(body, actor=user, request_meta=get_request_meta(request))


@router.get("/{user_id}", response_model=StaffResponse)
def get_staff(
    user_id: str,
    user: CurrentUser = Depends(require_permission("staff:read")),
    service: StaffService = Depends(get_staff_service)
):
    profile = service.get_staff(user_id)
    resolve_institution(user, profile.institution_id)
    return profile


@router.patch("/{user_id}", response_model=StaffResponse)
def update_staff(
    user_id: str,
    body: StaffUpdate,
    request: Request,
    user: CurrentUser = Depends(require_permission("staff:update")),
    service: StaffService = Depends(get_staff_service)
):
    return service.update_staff(user_id, body, actor=user, request_meta=get_request_meta(request))


@router.post("/{user_id}/suspend", response_model=StaffResponse)
def suspend_staff(
    user_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("staff:suspend")),
    service: StaffService = Depends(get_staff_service)
):
    return service.set_status(user_id, "SUSPENDED", actor=user, request_meta=get_request_meta(request))


@router.post("/{user_id}/activate", response_model=StaffResponse)
def activate_staff(
    user_id: str,
    request: Request,
    user: CurrentUser = Depends(require_permission("staff:suspend")),
    service: StaffService = Depends(get_staff_service)
):
    return service.set_status(user_id, "ACTIVE", actor=user, request_meta=get_request_meta(request))
