from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import date, datetime

REPORT_TYPE_PATTERN = "^(WEEKLY|MONTHLY|OVERALL)$"


class GenerateReportRequest(BaseModel):
    report_type: str = Field("WEEKLY", pattern=REPORT_TYPE_PATTERN)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    send_to_leaders: bool = True


class MemberContribution(BaseModel):
    member_id: Optional[str] = None
    member_name: Optional[str] = None
    phone: Optional[str] = None
    period_total: float = 0
    overall_total: float = 0


class GroupReportData(BaseModel):
    group_id: str
    group_name: str
    report_type: str
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    period_total: float = 0
    overall_total: float = 0
    member_count: int = 0
    currency: str = "RWF"
    member_contributions: List[MemberContribution] = []


class GenerateReportResult(BaseModel):
    success: bool
    report_id: Optional[str] = None
    report_data: GroupReportData
    pdf_url: Optional[str] = None
    message: str
    sent_to: List[str] = []


class GroupReportResponse(BaseModel):
    id: str
    institution_id: Optional[str] = None
    group_id: Optional[str] = None
    report_type: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None
    member_contributions: Optional[List[Dict[str, Any]]] = None
    pdf_url: Optional[str] = None
    generated_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
