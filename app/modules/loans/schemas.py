from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class LoanTotals(BaseModel):
    total_interest: float
    total_to_pay: float
    periodic_payment: int


class LoanResponse(BaseModel):
    id: str
    member_id: Optional[str] = None
    member_name: str = "Unknown Member"
    member_phone: Optional[str] = None
    member_savings_balance: float = 0
    group_id: Optional[str] = None
    group_name: str = "Unknown Group"
    principal_amount: float = 0
    outstanding_balance: float = 0
    interest_rate: float = 0
    term_months: int = 0
    periodic_payment: int = 0
    total_to_pay: float = 0
    expected_interest: float = 0
    issue_date: Optional[str] = None
    next_payment_date: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoanStats(BaseModel):
    total_loans: int = 0
    active_loans: int = 0
    total_disbursed: float = 0
    total_outstanding: float = 0
    total_expected_interest: float = 0


class LoanListResponse(BaseModel):
    loans: List[LoanResponse]
    stats: LoanStats
    error: Optional[str] = None
