from fastapi import APIRouter, Depends, Query
from app.database.supabase_client import get_supabase
from app.modules.audit.schemas import AuditLogFilters, AuditLogPage
from app.modules.audit.service import AuditService, DEFAULT_AUDIT_PAGE_SIZE
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution
from supabase import Client
from typing import Optional

router = APIRouter(prefix="/audit", tags=["audit"])


def get_audit_service(supabase: Client = Depends(get_supabase)) -> AuditService:
    return AuditService(supabase)


@router.get("", response_model=AuditLogPage)
def list_audit_log(
    institution_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    actor: Optional[str] = None,
    date_from: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    date_to: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    cursor: Optional[str] = None,
    limit: int = Query(DEFAULT_AUDIT_PAGE_SIZE, ge=1, le=200),
    user: CurrentUser = Depends(require_permission("audit:read")),
    service: AuditService = Depends(get_audit_service)
):
    """Audit log for the caller's institution (platform admins see every institution)."""
    scope = resolve_institution(user, institution_id)
    filters = AuditLogFilters(action=action, entity_type=entity_type, actor=actor,
                              date_from=date_from, date_to=date_to)
    return service.list_entries(scope, filters, limit=limit, cursor=cursor)
