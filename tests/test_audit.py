"""Tests for audit writes and audit log pagination"""

from unittest.mock import MagicMock
from app.modules.audit.schemas import AuditLogFilters
from app.modules.audit.service import AuditLogger, AuditService
from tests.conftest import db_error, make_supabase


def test_build_row_merges_values_into_metadata():
    row = AuditLogger.build_row(
        "allocate_transaction", "transaction", 42,
        institution_id="inst-1",
        metadata={"note": "x"},
        previous_value={"member_id": None},
        new_value={"member_id": "m-1"},
        request_meta={"request_id": "req-1", "ip_address": "10.0.0.1"},
    )
    assert row["entity_id"] == "42"
    assert row["request_id"] == "req-1"
    assert row["ip_address"] == "10.0.0.1"
    assert row["metadata"] == {"note": "x", "previous_value": {"member_id": None},
                               "new_value": {"member_id": "m-1"}}


def test_log_failure_does_not_raise():
    supabase = make_supabase()
    supabase.table.return_value.execute.side_effect = db_error("42501", "permission denied")
    assert AuditLogger(supabase).log("create_member", "member", "m-1") is False


def test_queue_flushes_in_batches():
    supabase = make_supabase()
    audit = AuditLogger(supabase, batch_size=2)
    audit.enqueue("receive_whatsapp", "whatsapp_message", "w-1")
    assert audit.pending == 1
    audit.enqueue("receive_whatsapp", "whatsapp_message", "w-2")
    assert audit.pending == 0
    batch = supabase.table.return_value.insert.call_args.args[0]
    assert [row["entity_id"] for row in batch] == ["w-1", "w-2"]


def test_failed_flush_requeues_rows():
    supabase = make_supabase()
    supabase.table.return_value.execute.side_effect = db_error("08006", "connection failure")
    audit = AuditLogger(supabase, batch_size=10)
    audit.enqueue("receive_whatsapp", "whatsapp_message", "w-1")

    assert audit.flush() == 0
    assert audit.pending == 1


def test_list_entries_from_rpc():
    supabase = make_supabase()
    supabase.rpc.return_value = MagicMock()
    supabase.rpc.return_value.execute.return_value = MagicMock(data={
        "success": True,
        "items": [{"id": "a-1", "action": "create_member"}],
        "has_more": True,
        "next_cursor": "2024-05-01T00:00:00Z",
    })

    page = AuditService(supabase).list_entries("inst-1", AuditLogFilters(), limit=1)

    assert page.source == "rpc"
    assert page.has_more
    assert page.next_cursor == "2024-05-01T00:00:00Z"


def test_list_entries_falls_back_to_keyset_query():
    supabase = make_supabase([
        {"id": "a-3", "action": "create_member", "created_at": "2024-05-03T00:00:00+00:00"},
        {"id": "a-2", "action": "create_member", "created_at": "2024-05-02T00:00:00+00:00"},
        {"id": "a-1", "action": "create_member", "created_at": "2024-05-01T00:00:00+00:00"},
    ])
    supabase.rpc.return_value = MagicMock()
    supabase.rpc.return_value.execute.side_effect = db_error("42883", "function does not exist")

    page = AuditService(supabase).list_entries("inst-1", AuditLogFilters(action="member"), limit=2,
                                               cursor="2024-05-04T00:00:00+00:00")

    assert page.source == "fallback"
    assert [item.id for item in page.items] == ["a-3", "a-2"]
    assert page.has_more
    assert page.next_cursor == "2024-05-02T00:00:00+00:00|a-2"
    supabase.table.return_value.lt.assert_called_once_with("created_at", "2024-05-04T00:00:00+00:00")
    supabase.table.return_value.limit.assert_called_once_with(3)


def test_fallback_cursor_keeps_rows_sharing_a_timestamp():
    supabase = make_supabase([])
    supabase.rpc.return_value = MagicMock()
    supabase.rpc.return_value.execute.side_effect = db_error("42883", "function does not exist")

    AuditService(supabase).list_entries("inst-1", AuditLogFilters(), limit=2,
                                        cursor="2024-05-02T00:00:00+00:00|a-2")

    builder = supabase.table.return_value
    builder.lt.assert_not_called()
    builder.or_.assert_called_once_with(
        'created_at.lt."2024-05-02T00:00:00+00:00",'
        'and(created_at.eq."2024-05-02T00:00:00+00:00",id.lt."a-2")'
    )
    builder.order.assert_any_call("id", desc=True)
    assert supabase.rpc.call_args.args[1]["p_cursor"] == "2024-05-02T00:00:00+00:00"


def test_queue_is_capped_dropping_oldest_rows():
    supabase = make_supabase()
    supabase.table.return_value.execute.side_effect = db_error("08006", "connection failure")
    audit = AuditLogger(supabase, batch_size=10, max_queue=3)
    for n in range(5):
        audit.enqueue("receive_whatsapp", "whatsapp_message", f"w-{n}")

    assert audit.pending == 3
    audit.flush()
    assert audit.pending == 3
