"""Unit tests for loan calculations and the loan portfolio listing"""

from app.modules.loans.service import (
    LoanService, calculate_loan_totals, calculate_periodic_payment, compute_loan_stats, _to_loan,
)
from tests.conftest import db_error, make_supabase


def test_periodic_payment_flat_interest():
    # 100,000 at 5% per month for 10 months: 50,000 interest, 15,000 per month
    assert calculate_periodic_payment(100000, 5, 10) == 15000


def test_periodic_payment_rounds_up():
    assert calculate_periodic_payment(100000, 0, 3) == 33334


def test_periodic_payment_zero_term():
    assert calculate_periodic_payment(100000, 5, 0) == 0
    assert calculate_periodic_payment(100000, 5, -1) == 0


def test_loan_totals():
    totals = calculate_loan_totals(200000, 2.5, 12)
    assert totals.total_interest == 60000
    assert totals.total_to_pay == 260000
    assert totals.periodic_payment == 21667


def test_to_loan_defaults_missing_relations():
    loan = _to_loan({"id": "loan-1", "amount": "50000", "interest_rate": None, "term_months": 5,
                     "status": "ACTIVE"})
    assert loan.member_name == "Unknown Member"
    assert loan.group_name == "Unknown Group"
    assert loan.principal_amount == 50000
    assert loan.periodic_payment == 10000


def test_loan_stats():
    loans = [
        _to_loan({"id": "1", "amount": 1000, "outstanding_balance": 400, "interest_rate": 10,
                  "term_months": 2, "status": "ACTIVE"}),
        _to_loan({"id": "2", "amount": 500, "outstanding_balance": 0, "interest_rate": 0,
                  "term_months": 1, "status": "CLOSED"}),
    ]
    stats = compute_loan_stats(loans)
    assert stats.total_loans == 2
    assert stats.active_loans == 1
    assert stats.total_disbursed == 1500
    assert stats.total_outstanding == 400
    assert stats.total_expected_interest == 200


def test_list_loans_maps_rows():
    supabase = make_supabase([{
        "id": "loan-1",
        "member_id": "m-1",
        "amount": 120000,
        "outstanding_balance": 60000,
        "interest_rate": 5,
        "term_months": 6,
        "status": "ACTIVE",
        "members": {"full_name": "Aline Uwase", "phone": "+250788000001", "savings_balance": 30000},
        "groups": {"group_name": "Twizigamire"},
    }])
    result = LoanService(supabase).list_loans("inst-1")

    assert result.error is None
    assert result.loans[0].member_name == "Aline Uwase"
    assert result.loans[0].group_name == "Twizigamire"
    assert result.loans[0].periodic_payment == 26000
    assert result.stats.active_loans == 1
    supabase.table.assert_called_with("loans")


def test_list_loans_error_returns_empty_portfolio():
    supabase = make_supabase()
    supabase.table.return_value.execute.side_effect = db_error("42501", "permission denied for table loans")

    result = LoanService(supabase).list_loans("inst-1")

    assert result.loans == []
    assert result.stats.total_loans == 0
    assert result.error
