from fastapi import APIRouter, Depends, Query, Request
from app.database.supabase_client import get_service_supabase
from app.modules.reports.schemas import GenerateReportRequest, GenerateReportResult, GroupReportResponse
from app.modules.reports.service import ReportService
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution, get_request_meta
from supabase import Client
from typing import List, Optional

router = APIRouter(prefix="/reports", tags=["reports"])


def get_report_service(supabase: Client = Depends(get_service_supabase)) -> ReportService:
    return ReportService(supabase, AuditLogger(supabase))


@router.post("/groups/{group_id}", response_model=GenerateReportResult)
def generate_group_report(
    group_id: str,
    request: Request,
    body: Optional[GenerateReportRequest] = None,
    user: CurrentUser = Depends(require_permission("reports:create")),
    service: ReportService = Depends(get_report_service)
):
    """Generate a contribution report for a group and optionally send it to its leaders"""
    return service.generate_group_report(group_id, body or GenerateReportRequest(),
                                         actor=user, request_meta=get_request_meta(request))


@router.get("", response_model=List[GroupReportResponse])
def list_reports(
    institution_id: Optional[str] = None,
    group_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_permission("reports:read")),
    service: ReportService = Depends(get_report_service)
):
    return service.list_reports(resolve_institution(user, institution_id), group_id=group_id, limit=limit)
