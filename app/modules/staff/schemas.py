from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime
from app.core.pagination import PageMeta

STAFF_STATUSES = ("ACTIVE", "SUSPENDED")


class StaffInvite(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    role: Optional[str] = None
    institution_id: Optional[str] = None


class StaffUpdate(BaseModel):
    full_name: Optional[str] = None
    role: Optional[str] = None
    institution_id: Optional[str] = None


class StaffResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    institution_id: Optional[str] = None
    status: str = "ACTIVE"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StaffListResponse(BaseModel):
    items: List[StaffResponse]
    meta: PageMeta


class StaffInviteResult(BaseModel):
    success: bool = True
    profile: StaffResponse
    invite_id: Optional[str] = None
