from fastapi import APIRouter, Depends
from app.database.supabase_client import get_supabase
from app.modules.loans.schemas import LoanListResponse, LoanStats
from app.modules.loans.service import LoanService
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution
from supabase import Client
from typing import Optional

router = APIRouter(prefix="/loans", tags=["loans"])


def get_loan_service(supabase: Client = Depends(get_supabase)) -> LoanService:
    return LoanService(supabase)


@router.get("", response_model=LoanListResponse)
def list_loans(
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("loans:read")),
    service: LoanService = Depends(get_loan_service)
):
    """List the loan portfolio with computed repayment figures"""
    return service.list_loans(resolve_institution(user, institution_id))


@router.get("/stats", response_model=LoanStats)
def loan_stats(
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("loans:read")),
    service: LoanService = Depends(get_loan_service)
):
    return service.list_loans(resolve_institution(user, institution_id)).stats
