"""Tests for group report periods and generation"""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch
import pytest
from app.core.errors import ForbiddenError, NotFoundError
from app.modules.reports.pdf import render_group_report_pdf, render_statement_pdf
from app.modules.reports.schemas import GenerateReportRequest
from app.modules.reports.service import ReportService, report_period
from tests.conftest import db_error, make_supabase, make_user
from tests.test_messaging import make_statement

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

SUMMARY = {
    "period_total": 42000,
    "overall_total": 310000,
    "member_count": 2,
    "member_contributions": [
        {"member_id": "m-1", "member_name": "Aline Uwase", "phone": "+250788000001",
         "period_total": 22000, "overall_total": 160000},
        {"member_id": "m-2", "member_name": "Eric Habimana", "phone": None,
         "period_total": 20000, "overall_total": 150000},
    ],
}


def test_weekly_period():
    assert report_period("WEEKLY", now=NOW) == (date(2024, 5, 8), date(2024, 5, 15))


def test_monthly_period():
    assert report_period("MONTHLY", now=NOW) == (date(2024, 5, 1), date(2024, 5, 15))


def test_overall_period_is_unbounded():
    assert report_period("OVERALL", now=NOW) == (None, None)


def test_explicit_dates_override():
    start, end = report_period("WEEKLY", date(2024, 1, 1), date(2024, 1, 31), now=NOW)
    assert (start, end) == (date(2024, 1, 1), date(2024, 1, 31))


def _report_supabase(group):
    supabase = make_supabase()
    supabase.table.return_value.execute.side_effect = [
        MagicMock(data=group),
        MagicMock(data=[{"id": "report-1"}]),
    ]
    rpc_builder = MagicMock()
    rpc_builder.execute.return_value = MagicMock(data=SUMMARY)
    supabase.rpc.return_value = rpc_builder
    return supabase


@patch("app.modules.reports.service.upload_pdf_if_configured", return_value=None)
def test_generate_group_report(mock_upload):
    supabase = _report_supabase({"id": "g-1", "group_name": "Twizigamire", "institution_id": "inst-1",
                                 "currency": "RWF"})
    service = ReportService(supabase)

    result = service.generate_group_report("g-1", GenerateReportRequest(report_type="OVERALL", send_to_leaders=False),
                                           actor=make_user())

    assert result.success
    assert result.report_id == "report-1"
    assert result.report_data.period_total == 42000
    assert result.report_data.member_count == 2
    assert result.pdf_url is None
    assert result.sent_to == []
    supabase.rpc.assert_called_once_with("get_group_contributions_summary", {
        "p_group_id": "g-1", "p_period_start": None, "p_period_end": None,
    })
    pdf_bytes = mock_upload.call_args.args[0]
    assert pdf_bytes.startswith(b"%PDF")


def test_generate_report_for_other_institution_is_forbidden():
    supabase = _report_supabase({"id": "g-1", "group_name": "Other", "institution_id": "inst-2"})
    with pytest.raises(ForbiddenError):
        ReportService(supabase).generate_group_report("g-1", GenerateReportRequest(), actor=make_user())


def test_generate_report_missing_group():
    supabase = make_supabase()
    supabase.table.return_value.execute.side_effect = db_error("PGRST116", "no rows")
    with pytest.raises(NotFoundError):
        ReportService(supabase).generate_group_report("missing", GenerateReportRequest(), actor=make_user())


def test_send_to_leaders_skips_leaders_without_phone():
    supabase = make_supabase()
    supabase.rpc.return_value.execute.return_value = MagicMock(data=[
        {"member_id": "m-1", "full_name": "Aline", "phone": "+250788000001"},
        {"member_id": "m-2", "full_name": "Eric", "phone": None},
    ])
    messaging = MagicMock()
    messaging.send_whatsapp.return_value = MagicMock(success=True)
    service = ReportService(supabase, messaging=messaging)
    report = MagicMock(group_id="g-1", group_name="Twizigamire", report_type="WEEKLY", period_start="2024-05-08",
                       period_end="2024-05-15", period_total=42000, member_count=2, currency="RWF")

    sent_to = service._send_to_leaders(report, "https://files/report.pdf", make_user(), None)

    assert sent_to == ["+250788000001"]
    # Text message followed by the PDF document
    assert messaging.send_whatsapp.call_count == 2


def test_pdf_renderers_produce_pdf():
    assert render_statement_pdf(make_statement()).startswith(b"%PDF")
    assert render_group_report_pdf({
        "group_name": "Twizigamire", "report_type": "WEEKLY", "period_start": "2024-05-08",
        "period_end": "2024-05-15", "currency": "RWF", **SUMMARY,
    }).startswith(b"%PDF")
