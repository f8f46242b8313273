"""Tests for reconciliation issues and inbound SMS records"""

from unittest.mock import MagicMock
import pytest
from app.core.errors import NotFoundError, ValidationError
from app.core.query_cache import QueryCache, query_keys
from app.core.resilience import RequestDeduplicator
from app.modules.reconciliation.service import ReconciliationService
from app.modules.sms.service import SmsService
from tests.conftest import make_supabase, make_user


def test_resolve_issue_sets_status_and_invalidates_dashboard():
    supabase = make_supabase([{"id": "r-1", "institution_id": "inst-1", "status": "RESOLVED", "amount": 500}])
    audit = MagicMock()
    cache = QueryCache()
    cache.set(query_keys.dashboard("inst-1", "stats", 7), "stats")

    issue = ReconciliationService(supabase, audit, cache).resolve_issue("r-1", "Matched manually",
                                                                        actor=make_user())

    assert issue.status == "RESOLVED"
    update = supabase.table.return_value.update.call_args.args[0]
    assert update["status"] == "RESOLVED"
    assert update["notes"] == "Matched manually"
    assert "resolved_at" in update
    assert audit.log.call_args.args[0] == "resolve_reconciliation_issue"
    assert cache.get(query_keys.dashboard("inst-1", "stats", 7)) is None


def test_close_missing_issue():
    with pytest.raises(NotFoundError):
        ReconciliationService(make_supabase([])).ignore_issue("missing")


def test_reconciliation_stats():
    stats = ReconciliationService(make_supabase(count=3)).get_stats("inst-1")
    assert (stats.open, stats.resolved, stats.total) == (3, 3, 3)


def test_sms_search_blank_term_skips_query():
    supabase = make_supabase()
    assert SmsService(supabase).search_messages("inst-1", "   ") == []
    supabase.table.assert_not_called()


def test_sms_search_matches_sender_and_body():
    supabase = make_supabase([{"id": "s-1", "sender": "M-Money", "body": "You have received RWF 5,000"}])
    results = SmsService(supabase, deduplicator=RequestDeduplicator()).search_messages("inst-1", "received")
    assert results[0].id == "s-1"
    supabase.table.return_value.or_.assert_called_once_with('sender.ilike."%received%",body.ilike."%received%"')


def test_sms_link_requires_transaction():
    with pytest.raises(ValidationError):
        SmsService(make_supabase()).link_transaction("s-1", "")


def test_sms_link_invalidates_cached_lists():
    supabase = make_supabase([{"id": "s-1", "linked_transaction_id": "t-1"}])
    cache = QueryCache()
    cache.set(query_keys.sms("inst-1"), "cached")

    sms = SmsService(supabase, cache).link_transaction("s-1", "t-1")

    assert sms.linked_transaction_id == "t-1"
    assert cache.get(query_keys.sms("inst-1")) is None


def test_resolve_other_institution_issue_is_not_found(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data=[{"id": "r-2", "institution_id": "inst-2", "status": "RESOLVED", "amount": 500}]
    )
    response = client.post("/api/v1/reconciliation/r-2/resolve", json={"notes": "done"})
    assert response.status_code == 404
    supabase.table.return_value.eq.assert_any_call("institution_id", "inst-1")


def test_other_institution_sms_is_not_found(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data={"id": "s-2", "institution_id": "inst-2", "sender": "M-Money", "body": "received"}
    )
    assert client.get("/api/v1/sms/s-2").status_code == 404


def test_sms_link_to_other_institution_transaction_is_not_found():
    supabase = make_supabase([{"id": "t-2", "institution_id": "inst-2"}])
    with pytest.raises(NotFoundError):
        SmsService(supabase).link_transaction("s-1", "t-2", "inst-1")
    supabase.table.return_value.update.assert_not_called()
