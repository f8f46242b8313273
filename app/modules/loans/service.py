import logging
import math
from supabase import Client
from app.modules.loans.schemas import LoanResponse, LoanStats, LoanListResponse, LoanTotals
from app.core.errors import AppError
from app.database.query import run_query
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

LOAN_SELECT = (
    "*, members:members!loans_member_id_fkey(id, full_name, phone, savings_balance), "
    "groups:groups!loans_group_id_fkey(id, group_name)"
)


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def calculate_periodic_payment(principal: float, interest_rate: float, term_months: int) -> int:
    """Flat-interest instalment, rounded up to the next whole unit"""
    if term_months <= 0:
        return 0
    total_interest = principal * interest_rate * term_months / 100
    return math.ceil((principal + total_interest) / term_months)


def calculate_loan_totals(principal: float, interest_rate: float, term_months: int) -> LoanTotals:
    total_interest = principal * interest_rate * term_months / 100
    return LoanTotals(
        total_interest=total_interest,
        total_to_pay=principal + total_interest,
        periodic_payment=calculate_periodic_payment(principal, interest_rate, term_months),
    )


def _to_loan(row: Dict[str, Any]) -> LoanResponse:
    member = row.get("members") or {}
    group = row.get("groups") or {}
    principal = _number(row.get("amount"))
    rate = _number(row.get("interest_rate"))
    term = int(row.get("term_months") or 0)
    totals = calculate_loan_totals(principal, rate, term)
    return LoanResponse(
        id=row["id"],
        member_id=row.get("member_id"),
        member_name=member.get("full_name") or "Unknown Member",
        member_phone=member.get("phone"),
        member_savings_balance=_number(member.get("savings_balance")),
        group_id=row.get("group_id"),
        group_name=group.get("group_name") or "Unknown Group",
        principal_amount=principal,
        outstanding_balance=_number(row.get("outstanding_balance")),
        interest_rate=rate,
        term_months=term,
        periodic_payment=totals.periodic_payment,
        total_to_pay=totals.total_to_pay,
        expected_interest=totals.total_interest,
        issue_date=row.get("start_date") or row.get("created_at"),
        next_payment_date=row.get("next_payment_date"),
        status=row.get("status"),
        created_at=row.get("created_at"),
    )


def compute_loan_stats(loans: List[LoanResponse]) -> LoanStats:
    return LoanStats(
        total_loans=len(loans),
        active_loans=sum(1 for loan in loans if loan.status == "ACTIVE"),
        total_disbursed=sum(loan.principal_amount for loan in loans),
        total_outstanding=sum(loan.outstanding_balance for loan in loans),
        total_expected_interest=sum(loan.expected_interest for loan in loans),
    )


class LoanService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_loans(self, institution_id: Optional[str]) -> LoanListResponse:
        """Loans with member/group details; errors yield an empty portfolio"""
        query = self.supabase.table("loans").select(LOAN_SELECT)
        if institution_id:
            query = query.eq("institution_id", institution_id)
        try:
            result = run_query(query.order("created_at", desc=True), "LoanService.list_loans", retry=True)
        except AppError as e:
            logger.error(f"Error fetching loans: {e.message}")
            return LoanListResponse(loans=[], stats=LoanStats(), error=e.message)

        loans = [_to_loan(row) for row in result.data or []]
        return LoanListResponse(loans=loans, stats=compute_loan_stats(loans))
