from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from app.core.pagination import PageMeta

TRANSACTION_TYPES = ("DEPOSIT", "WITHDRAWAL", "LOAN_DISBURSEMENT", "LOAN_REPAYMENT", "CONTRIBUTION", "FEE", "SAVINGS")
CHANNELS = ("MOMO", "CASH", "BANK", "MOBILE_MONEY")
TRANSACTION_STATUS_PATTERN = "^(PENDING|COMPLETED|FAILED|REVERSED)$"


class TransactionFilters(BaseModel):
    member_id: Optional[str] = None
    group_id: Optional[str] = None
    status: Optional[str] = None
    allocation_status: Optional[str] = None
    date_from: Optional[str] = None  # YYYY-MM-DD
    date_to: Optional[str] = None
    search: Optional[str] = None


class TransactionCreate(BaseModel):
    member_id: Optional[str] = None
    group_id: Optional[str] = None
    type: str
    amount: float
    currency: Optional[str] = None
    channel: str
    status: Optional[str] = Field(None, pattern=TRANSACTION_STATUS_PATTERN)
    reference: Optional[str] = None
    payer_phone: Optional[str] = None
    payer_name: Optional[str] = None
    occurred_at: Optional[datetime] = None
    institution_id: Optional[str] = None


class TransactionStatusUpdate(BaseModel):
    status: str = Field(..., pattern=TRANSACTION_STATUS_PATTERN)


class AllocateRequest(BaseModel):
    member_id: str
    note: Optional[str] = None


class BatchAllocateRequest(BaseModel):
    transaction_ids: List[str]
    member_id: str
    group_id: Optional[str] = None


class FlagDuplicateRequest(BaseModel):
    duplicate_of: Optional[str] = None


class TransactionResponse(BaseModel):
    id: str
    institution_id: Optional[str] = None
    member_id: Optional[str] = None
    group_id: Optional[str] = None
    type: Optional[str] = None
    amount: float = 0
    currency: Optional[str] = None
    channel: Optional[str] = None
    status: Optional[str] = None
    allocation_status: Optional[str] = None
    momo_ref: Optional[str] = None
    reference: Optional[str] = None
    payer_phone: Optional[str] = None
    payer_name: Optional[str] = None
    note: Optional[str] = None
    member_name: Optional[str] = None
    group_name: Optional[str] = None
    occurred_at: Optional[datetime] = None
    allocated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    meta: PageMeta


class BatchAllocateResponse(BaseModel):
    allocated: int
    items: List[TransactionResponse]


class MemberSuggestion(BaseModel):
    suggested_member: Optional[Dict[str, Any]] = None
    match_type: Optional[str] = None
    reason: Optional[str] = None
