import logging
from datetime import date, datetime, timedelta, timezone
from supabase import Client
from app.modules.reports.schemas import (
    GenerateReportRequest, GroupReportData, MemberContribution, GenerateReportResult, GroupReportResponse
)
from app.modules.reports.pdf import render_group_report_pdf
from app.modules.reports.s3_storage import upload_pdf_if_configured
from app.modules.messaging.generators import generate_group_report_message
from app.modules.messaging.schemas import SendWhatsAppRequest
from app.modules.messaging.service import MessagingService
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.config import settings
from app.core.errors import AppError, DatabaseError, ForbiddenError, NotFoundError
from app.database.query import run_query, call_rpc
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def report_period(report_type: str, period_start: Optional[date] = None, period_end: Optional[date] = None,
                  now: Optional[datetime] = None) -> Tuple[Optional[date], Optional[date]]:
    """
    WEEKLY covers the last 7 days, MONTHLY the current month to date and
    OVERALL has no bounds. Explicit dates take precedence.
    """
    now = now or datetime.now(timezone.utc)
    start: Optional[date] = None
    end: Optional[date] = None
    if report_type == "WEEKLY":
        start, end = (now - timedelta(days=7)).date(), now.date()
    elif report_type == "MONTHLY":
        start, end = now.date().replace(day=1), now.date()
    if period_start:
        start = period_start
    if period_end:
        end = period_end
    return start, end


class ReportService:
    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None,
                 messaging: Optional[MessagingService] = None):
        self.supabase = supabase
        self.audit = audit
        self.messaging = messaging or MessagingService(supabase, audit)

    def _get_group(self, group_id: str) -> Dict[str, Any]:
        try:
            result = run_query(
                self.supabase.table("groups").select("*").eq("id", group_id).single(),
                "ReportService.get_group",
            )
        except DatabaseError as e:
            if e.db_code == "PGRST116":
                raise NotFoundError("Group", group_id)
            raise
        if not result.data:
            raise NotFoundError("Group", group_id)
        return result.data

    def generate_group_report(self, group_id: str, request: GenerateReportRequest,
                              actor: Optional[CurrentUser] = None,
                              request_meta: Optional[Dict[str, Any]] = None) -> GenerateReportResult:
        group = self._get_group(group_id)
        # The service-role client bypasses row level security
        if actor and not actor.is_platform_admin and group.get("institution_id") != actor.institution_id:
            raise ForbiddenError("You do not have access to this group")
        start, end = report_period(request.report_type, request.period_start, request.period_end)
        start_str = start.isoformat() if start else None
        end_str = end.isoformat() if end else None

        summary = call_rpc(self.supabase, "get_group_contributions_summary", {
            "p_group_id": group_id,
            "p_period_start": start_str,
            "p_period_end": end_str,
        }, "ReportService.contributions_summary").data or {}
        if isinstance(summary, list):
            summary = summary[0] if summary else {}

        report = GroupReportData(
            group_id=group_id,
            group_name=group.get("group_name") or "",
            report_type=request.report_type,
            period_start=start_str,
            period_end=end_str,
            period_total=float(summary.get("period_total") or 0),
            overall_total=float(summary.get("overall_total") or 0),
            member_count=int(summary.get("member_count") or 0),
            currency=group.get("currency") or settings.default_currency,
            member_contributions=[
                MemberContribution(
                    member_id=mc.get("member_id"),
                    member_name=mc.get("member_name"),
                    phone=mc.get("phone"),
                    period_total=float(mc.get("period_total") or 0),
                    overall_total=float(mc.get("overall_total") or 0),
                )
                for mc in summary.get("member_contributions") or []
            ],
        )

        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        pdf_url = upload_pdf_if_configured(
            render_group_report_pdf(report.model_dump()),
            f"group-reports/{group_id}/{request.report_type.lower()}_{stamp}.pdf",
        )

        result = run_query(self.supabase.table("group_reports").insert({
            "institution_id": group.get("institution_id"),
            "group_id": group_id,
            "report_type": request.report_type,
            "period_start": start_str,
            "period_end": end_str,
            "summary": {
                "total_contributions": report.period_total,
                "overall_total": report.overall_total,
                "member_count": report.member_count,
            },
            "member_contributions": [mc.model_dump() for mc in report.member_contributions],
            "pdf_url": pdf_url,
            "generated_by": actor.id if actor else None,
        }), "ReportService.save_report")
        if not result.data:
            raise DatabaseError("Failed to save report")
        report_id = result.data[0]["id"]

        sent_to = self._send_to_leaders(report, pdf_url, actor, request_meta) if request.send_to_leaders else []

        if self.audit:
            self.audit.log(
                "generate_group_report", "group_report", report_id,
                institution_id=group.get("institution_id"),
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                metadata={"group_id": group_id, "report_type": request.report_type, "sent_to": len(sent_to)},
                request_meta=request_meta,
            )
        logger.info(f"Generated {request.report_type} report {report_id} for group {group_id}")
        return GenerateReportResult(
            success=True,
            report_id=report_id,
            report_data=report,
            pdf_url=pdf_url,
            message="Report generated successfully",
            sent_to=sent_to,
        )

    def _send_to_leaders(self, report: GroupReportData, pdf_url: Optional[str],
                         actor: Optional[CurrentUser], request_meta: Optional[Dict[str, Any]]) -> List[str]:
        try:
            leaders = call_rpc(self.supabase, "get_group_leaders", {"p_group_id": report.group_id},
                               "ReportService.group_leaders").data or []
        except AppError as e:
            logger.error(f"Could not load leaders for group {report.group_id}: {e.message}")
            return []

        sent_to = []
        for leader in leaders:
            phone = leader.get("phone")
            if not phone:
                continue
            message = generate_group_report_message(
                report.group_name, leader.get("full_name") or "Leader", report.report_type,
                report.period_start, report.period_end, report.period_total, report.member_count,
                report.currency,
            )
            try:
                delivery = self.messaging.send_whatsapp(
                    SendWhatsAppRequest(to=phone, message=message), actor, request_meta
                )
                if delivery.success and pdf_url:
                    self.messaging.send_whatsapp(SendWhatsAppRequest(
                        to=phone,
                        document_url=pdf_url,
                        document_filename=f"{report.group_name.replace(' ', '_')}_{report.report_type.lower()}_report.pdf",
                        caption=f"{report.group_name} {report.report_type.title()} Report",
                    ), actor, request_meta)
            except AppError as e:
                logger.error(f"Failed to send report to leader {leader.get('member_id')}: {e.message}")
                continue
            if delivery.success:
                sent_to.append(phone)
        return sent_to

    def list_reports(self, institution_id: Optional[str], group_id: Optional[str] = None,
                     limit: int = 50) -> List[GroupReportResponse]:
        query = self.supabase.table("group_reports").select("*")
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if group_id:
            query = query.eq("group_id", group_id)
        result = run_query(query.order("created_at", desc=True).limit(limit), "ReportService.list_reports", retry=True)
        return [GroupReportResponse(**row) for row in result.data or []]
