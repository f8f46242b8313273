from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from app.core.pagination import PageMeta

GROUP_STATUS_PATTERN = "^(ACTIVE|PAUSED|CLOSED)$"
GROUP_ROLE_PATTERN = "^(CHAIRPERSON|SECRETARY|TREASURER|MEMBER)$"
FREQUENCY_PATTERN = "^(Weekly|Monthly)$"


class GroupCreate(BaseModel):
    group_name: str = Field(..., min_length=2)
    code: Optional[str] = None
    meeting_day: Optional[str] = None
    expected_amount: float = Field(0, ge=0)
    frequency: str = Field("Weekly", pattern=FREQUENCY_PATTERN)
    cycle_label: Optional[str] = None
    grace_days: Optional[int] = Field(None, ge=0)
    bank_name: Optional[str] = None
    account_ref: Optional[str] = None
    currency: Optional[str] = None
    status: Optional[str] = Field(None, pattern=GROUP_STATUS_PATTERN)
    institution_id: Optional[str] = None


class GroupUpdate(BaseModel):
    group_name: Optional[str] = None
    meeting_day: Optional[str] = None
    expected_amount: Optional[float] = Field(None, ge=0)
    frequency: Optional[str] = Field(None, pattern=FREQUENCY_PATTERN)
    cycle_label: Optional[str] = None
    grace_days: Optional[int] = Field(None, ge=0)
    bank_name: Optional[str] = None
    account_ref: Optional[str] = None


class GroupStatusUpdate(BaseModel):
    status: str = Field(..., pattern=GROUP_STATUS_PATTERN)


class GroupResponse(BaseModel):
    id: str
    institution_id: Optional[str] = None
    group_name: str
    code: Optional[str] = None
    meeting_day: Optional[str] = None
    expected_amount: Optional[float] = None
    frequency: Optional[str] = None
    cycle_label: Optional[str] = None
    grace_days: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    fund_balance: Optional[float] = None
    member_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GroupListResponse(BaseModel):
    items: List[GroupResponse]
    meta: PageMeta


class GroupMemberAdd(BaseModel):
    member_id: str
    role: str = Field("MEMBER", pattern=GROUP_ROLE_PATTERN)


class GroupMemberResponse(BaseModel):
    id: Optional[str] = None
    group_id: str
    member_id: str
    role: str
    status: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GroupImportRequest(BaseModel):
    csv_text: str
    institution_id: Optional[str] = None


class GroupImportRowResult(BaseModel):
    row: int
    status: str  # created | skipped | failed
    group_id: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []


class GroupImportResult(BaseModel):
    total_rows: int
    created: int
    skipped: int
    failed: int
    rows: List[GroupImportRowResult]
