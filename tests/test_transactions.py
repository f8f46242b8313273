"""Tests for transaction allocation, creation and export"""

from unittest.mock import MagicMock
import pytest
from app.core.errors import DatabaseError, NotFoundError, ValidationError
from app.core.pagination import page_meta
from app.core.query_cache import QueryCache, query_keys
from app.modules.transactions.schemas import (
    TransactionCreate, TransactionFilters, TransactionListResponse, TransactionResponse,
)
from app.modules.transactions.service import TransactionService
from tests.conftest import db_error, make_supabase, make_user


def cached_page(cache: QueryCache, key=None):
    key = key or query_keys.transactions("inst-1", {"page": 1})
    page = TransactionListResponse(
        items=[TransactionResponse(id="t-1", amount=5000, allocation_status="unallocated")],
        meta=page_meta(1, 50, 1),
    )
    cache.set(key, page)
    return key


def test_allocate_rolls_back_cached_lists_when_rpc_fails():
    supabase = make_supabase()
    supabase.rpc.return_value = MagicMock()
    supabase.rpc.return_value.execute.side_effect = db_error("P0001", "transaction already allocated")
    cache = QueryCache()
    key = cached_page(cache)

    with pytest.raises(DatabaseError):
        TransactionService(supabase, cache=cache).allocate("t-1", "m-1", actor=make_user())

    item = cache.get(key).items[0]
    assert item.allocation_status == "unallocated"
    assert item.member_id is None


def test_allocate_success_invalidates_and_audits():
    supabase = make_supabase({"id": "t-1", "institution_id": "inst-1", "member_id": "m-1",
                              "allocation_status": "allocated", "amount": 5000,
                              "members": {"full_name": "Aline Uwase"}, "groups": None})
    audit = MagicMock()
    cache = QueryCache()
    key = cached_page(cache)

    txn = TransactionService(supabase, audit, cache).allocate("t-1", "m-1", note="matched by phone",
                                                               actor=make_user())

    assert txn.allocation_status == "allocated"
    assert txn.member_name == "Aline Uwase"
    assert cache.get(key) is None
    supabase.rpc.assert_called_once_with("allocate_transaction", {
        "p_transaction_id": "t-1", "p_member_id": "m-1", "p_note": "matched by phone",
    })
    assert audit.log.call_args.args[:3] == ("allocate_transaction", "transaction", "t-1")


def test_allocate_requires_member():
    with pytest.raises(ValidationError):
        TransactionService(make_supabase()).allocate("t-1", "")


def test_create_transaction_validates_amount_and_type():
    service = TransactionService(make_supabase())
    with pytest.raises(ValidationError):
        service.create_transaction(TransactionCreate(type="DEPOSIT", amount=0, channel="MOMO"), "inst-1")
    with pytest.raises(ValidationError):
        service.create_transaction(TransactionCreate(type="GIFT", amount=100, channel="MOMO"), "inst-1")
    with pytest.raises(ValidationError):
        service.create_transaction(TransactionCreate(type="DEPOSIT", amount=100, channel="PIGEON"), "inst-1")


def test_create_transaction_defaults():
    supabase = make_supabase([{"id": "t-9", "institution_id": "inst-1", "amount": 2000, "type": "DEPOSIT"}])
    TransactionService(supabase).create_transaction(
        TransactionCreate(type="DEPOSIT", amount=2000, channel="CASH"), "inst-1"
    )
    row = supabase.table.return_value.insert.call_args.args[0]
    assert row["currency"] == "RWF"
    assert row["status"] == "COMPLETED"
    assert row["allocation_status"] == "unallocated"


def test_export_csv():
    supabase = make_supabase([{"id": "t-1", "type": "DEPOSIT", "amount": 1500, "currency": "RWF",
                               "occurred_at": "2024-05-01T10:00:00+00:00", "payer_phone": "+250788000001",
                               "members": {"full_name": "Aline Uwase"}, "groups": {"group_name": "Twizigamire"}}])
    csv_text = TransactionService(supabase).export_csv("inst-1", TransactionFilters(search="0788"))

    lines = csv_text.strip().splitlines()
    assert lines[0].startswith("occurred_at,type,amount")
    assert "Aline Uwase" in lines[1]
    assert "Twizigamire" in lines[1]
    supabase.table.return_value.or_.assert_called_once()


def test_suggest_member_without_match():
    supabase = make_supabase()
    supabase.rpc.return_value.execute.return_value = MagicMock(data={"success": False, "error": "No phone"})
    suggestion = TransactionService(supabase).suggest_member("t-1")
    assert suggestion.suggested_member is None
    assert suggestion.reason == "No phone"


def test_list_endpoint_rejects_bad_dates(client):
    response = client.get("/api/v1/transactions", params={"date_from": "01/05/2024"})
    assert response.status_code == 422


def test_unallocated_count_endpoint(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(data=[], count=7)
    response = client.get("/api/v1/transactions/unallocated/count")
    assert response.status_code == 200
    assert response.json()["count"] == 7


def test_search_text_is_quoted_inside_or_filter():
    supabase = make_supabase([])
    TransactionService(supabase).list_transactions("inst-1", TransactionFilters(search='MP,"x"),id.eq.1'))
    supabase.table.return_value.or_.assert_called_once_with(
        'payer_phone.ilike."%MP,\\"x\\"),id.eq.1%",'
        'momo_ref.ilike."%MP,\\"x\\"),id.eq.1%",'
        'payer_name.ilike."%MP,\\"x\\"),id.eq.1%"'
    )


def test_get_transaction_scopes_query_to_institution(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data={"id": "t-1", "institution_id": "inst-1", "amount": 5000}
    )
    response = client.get("/api/v1/transactions/t-1")
    assert response.status_code == 200
    supabase.table.return_value.eq.assert_any_call("institution_id", "inst-1")


def test_status_update_on_other_institution_transaction_is_not_found(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data=[{"id": "t-2", "institution_id": "inst-2", "status": "REVERSED", "amount": 5000}]
    )
    response = client.patch("/api/v1/transactions/t-2/status", json={"status": "REVERSED"})
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_allocate_checks_transaction_before_rpc():
    supabase = make_supabase({"id": "t-2", "institution_id": "inst-2", "amount": 5000})
    with pytest.raises(NotFoundError):
        TransactionService(supabase).allocate("t-2", "m-1", institution_id="inst-1")
    supabase.rpc.assert_not_called()


def test_platform_admin_reads_any_institution_transaction(client, supabase, user):
    user.role, user.role_level, user.institution_id = "PLATFORM_ADMIN", 100, None
    supabase.table.return_value.execute.return_value = MagicMock(
        data={"id": "t-2", "institution_id": "inst-2", "amount": 5000}
    )
    response = client.get("/api/v1/transactions/t-2")
    assert response.status_code == 200
    assert response.json()["institution_id"] == "inst-2"
