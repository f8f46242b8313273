from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from app.core.pagination import PageMeta

MEMBER_STATUSES = ("ACTIVE", "INACTIVE", "CLOSED")


class MemberCreate(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    national_id: Optional[str] = None
    member_code: Optional[str] = None
    date_of_birth: Optional[date] = None
    group_id: Optional[str] = None
    institution_id: Optional[str] = None


class MemberUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    national_id: Optional[str] = None
    member_code: Optional[str] = None
    date_of_birth: Optional[date] = None
    status: Optional[str] = Field(None, pattern="^(ACTIVE|INACTIVE|CLOSED)$")


class GroupMembership(BaseModel):
    group_id: str
    role: Optional[str] = None
    status: Optional[str] = None
    group_name: Optional[str] = None


class MemberResponse(BaseModel):
    id: str
    institution_id: Optional[str] = None
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    national_id: Optional[str] = None
    member_code: Optional[str] = None
    status: Optional[str] = None
    savings_balance: Optional[float] = None
    group_memberships: List[GroupMembership] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MemberListResponse(BaseModel):
    items: List[MemberResponse]
    meta: PageMeta


class MemberBalance(BaseModel):
    member_id: str
    total_savings: float
    total_loans: float
    net_balance: float


class MemberImportRowResult(BaseModel):
    row: int
    status: str  # created | skipped | failed
    member_id: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []


class MemberImportResult(BaseModel):
    total_rows: int
    created: int
    skipped: int
    failed: int
    rows: List[MemberImportRowResult]


class MemberImportRequest(BaseModel):
    csv_text: str
    institution_id: Optional[str] = None
    default_group_id: Optional[str] = None


class MemberTransactionsResponse(BaseModel):
    member_id: str
    items: List[Dict[str, Any]]
