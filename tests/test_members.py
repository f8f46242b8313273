"""Tests for member import and institution scoping of member routes"""

from unittest.mock import MagicMock
import pytest
from app.core.errors import NotFoundError
from app.modules.members.service import MemberService
from tests.conftest import make_supabase

IMPORT_CSV = (
    "full_name,phone,email\n"
    "Bob Mugisha,0788123456,bob..m@example.com\n"
    "Alice Uwase,0788654321,alice@example.com\n"
)


def test_import_records_row_rejected_by_member_model(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data=[{"id": "m-1", "institution_id": "inst-1", "full_name": "Alice Uwase"}]
    )
    response = client.post("/api/v1/members/import", json={"csv_text": IMPORT_CSV})

    assert response.status_code == 200
    summary = response.json()
    assert summary["total_rows"] == 2
    assert summary["created"] == 1
    assert summary["failed"] == 1
    bad_row = summary["rows"][0]
    assert bad_row["row"] == 2
    assert bad_row["status"] == "failed"
    assert "email" in bad_row["errors"][0]
    assert summary["rows"][1]["member_id"] == "m-1"


def test_search_text_is_quoted_inside_or_filter():
    supabase = make_supabase([])
    MemberService(supabase).search_members("inst-1", "a,b")
    supabase.table.return_value.or_.assert_called_once_with(
        'full_name.ilike."%a,b%",phone.ilike."%a,b%",member_code.ilike."%a,b%"'
    )


def test_other_institution_member_is_not_found(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data={"id": "m-2", "institution_id": "inst-2", "full_name": "Other Member"}
    )
    response = client.get("/api/v1/members/m-2")
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"
    supabase.table.return_value.eq.assert_any_call("institution_id", "inst-1")


def test_other_institution_member_balance_is_not_found(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data={"id": "m-2", "institution_id": "inst-2", "full_name": "Other Member"}
    )
    assert client.get("/api/v1/members/m-2/balance").status_code == 404
    assert client.get("/api/v1/members/m-2/transactions").status_code == 404


def test_update_on_other_institution_member_is_not_found(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data=[{"id": "m-2", "institution_id": "inst-2", "full_name": "Renamed"}]
    )
    response = client.put("/api/v1/members/m-2", json={"full_name": "Renamed"})
    assert response.status_code == 404


def test_delete_scopes_update_to_institution():
    supabase = make_supabase([{"id": "m-1", "institution_id": "inst-1", "full_name": "Aline"}])
    assert MemberService(supabase).delete_member("m-1", "inst-1") is True
    supabase.table.return_value.eq.assert_any_call("institution_id", "inst-1")


def test_platform_admin_reads_any_member(client, supabase, user):
    user.role, user.role_level, user.institution_id = "PLATFORM_ADMIN", 100, None
    supabase.table.return_value.execute.return_value = MagicMock(
        data={"id": "m-2", "institution_id": "inst-2", "full_name": "Other Member"}
    )
    response = client.get("/api/v1/members/m-2")
    assert response.status_code == 200
    assert response.json()["institution_id"] == "inst-2"


def test_get_member_without_scope_skips_institution_filter():
    supabase = make_supabase({"id": "m-2", "institution_id": "inst-2", "full_name": "Other Member"})
    member = MemberService(supabase).get_member("m-2")
    assert member.id == "m-2"
    with pytest.raises(NotFoundError):
        MemberService(supabase).get_member("m-2", "inst-1")
