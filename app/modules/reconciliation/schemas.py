from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

ISSUE_STATUS_PATTERN = "^(OPEN|RESOLVED|IGNORED)$"


class ReconciliationIssueCreate(BaseModel):
    source: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)
    ledger_status: str = Field(..., min_length=1)
    source_reference: Optional[str] = None
    notes: Optional[str] = None
    linked_transaction_id: Optional[str] = None
    institution_id: Optional[str] = None


class ReconciliationNote(BaseModel):
    notes: Optional[str] = None


class ReconciliationIssueResponse(BaseModel):
    id: str
    institution_id: Optional[str] = None
    source: Optional[str] = None
    amount: float = 0
    source_reference: Optional[str] = None
    ledger_status: Optional[str] = None
    status: str
    notes: Optional[str] = None
    linked_transaction_id: Optional[str] = None
    detected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReconciliationStats(BaseModel):
    open: int = 0
    resolved: int = 0
    total: int = 0
