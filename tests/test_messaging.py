"""Tests for WhatsApp sending, webhook handling and statement messages"""

import hashlib
import hmac
import json
from datetime import date
from unittest.mock import MagicMock, patch
import httpx
import pytest
from app.config import settings
from app.core.errors import AppError, RateLimitError, ValidationError
from app.core.resilience import FixedWindowRateLimiter
from app.modules.messaging.generators import (
    format_currency, format_date, generate_group_report_message, generate_statement_message,
)
from app.modules.messaging.schemas import (
    MemberStatement, SendWhatsAppRequest, StatementGroup, StatementLoans, StatementMember, StatementSavings,
)
from app.modules.messaging.service import MessagingService, extract_content, verify_webhook_signature
from app.modules.messaging.whatsapp_client import GraphResponse, WhatsAppClient, build_payload
from app.modules.messaging.routes import webhook_audit
from tests.conftest import db_error, make_supabase, make_user

SECRET = "app-secret"


def sign(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def fake_whatsapp(response=None):
    whatsapp = MagicMock()
    whatsapp.configured = True
    whatsapp.send.return_value = response or GraphResponse(
        ok=True, status_code=200, data={"messages": [{"id": "wamid.123"}]}
    )
    return whatsapp


def make_statement(**overrides) -> MemberStatement:
    data = dict(
        member=StatementMember(id="m-1", full_name="Aline Uwase", phone="+250788000001"),
        savings=StatementSavings(current_balance=1250000, total_contributions=300000, contribution_count=12),
        loans=StatementLoans(),
        groups=[],
        recent_transactions=[],
        generated_at="2024-05-01T00:00:00Z",
    )
    data.update(overrides)
    return MemberStatement(**data)


# Signature and subscription

def test_verify_webhook_signature():
    body = b'{"object":"whatsapp_business_account"}'
    assert verify_webhook_signature(body, sign(body), SECRET)
    assert not verify_webhook_signature(body, sign(body, "other"), SECRET)
    assert not verify_webhook_signature(body, None, SECRET)
    assert not verify_webhook_signature(body, sign(body)[len("sha256="):], SECRET)


def test_verify_subscription(monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_verify_token", "verify-me")
    assert MessagingService.verify_subscription("subscribe", "verify-me", "1234") == "1234"
    assert MessagingService.verify_subscription("subscribe", "wrong", "1234") is None
    assert MessagingService.verify_subscription("unsubscribe", "verify-me", "1234") is None


def test_webhook_handshake_endpoint(anonymous_client, monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_verify_token", "verify-me")
    ok = anonymous_client.get("/api/v1/messaging/whatsapp/webhook",
                              params={"hub.mode": "subscribe", "hub.verify_token": "verify-me",
                                      "hub.challenge": "challenge-1"})
    assert ok.status_code == 200
    assert ok.text == "challenge-1"

    denied = anonymous_client.get("/api/v1/messaging/whatsapp/webhook",
                                  params={"hub.mode": "subscribe", "hub.verify_token": "nope"})
    assert denied.status_code == 403


# Webhook processing

WEBHOOK_PAYLOAD = {
    "object": "whatsapp_business_account",
    "entry": [{
        "changes": [{
            "value": {
                "metadata": {"phone_number_id": "phone-1"},
                "messages": [{"id": "wamid.in", "from": "250788000001", "type": "text",
                              "text": {"body": "Balance please"}}],
                "statuses": [{"id": "wamid.out", "status": "delivered"}],
            }
        }]
    }],
}


def test_webhook_rejects_bad_signature(anonymous_client, monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_app_secret", SECRET)
    body = json.dumps(WEBHOOK_PAYLOAD).encode()
    response = anonymous_client.post("/api/v1/messaging/whatsapp/webhook", content=body,
                                     headers={"X-Hub-Signature-256": sign(body, "wrong")})
    assert response.status_code == 401


def test_webhook_rejects_invalid_json(anonymous_client, monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_app_secret", SECRET)
    body = b"not json"
    response = anonymous_client.post("/api/v1/messaging/whatsapp/webhook", content=body,
                                     headers={"X-Hub-Signature-256": sign(body)})
    assert response.status_code == 400


def test_webhook_processes_messages_and_statuses(anonymous_client, supabase, monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_app_secret", SECRET)
    supabase.table.return_value.execute.return_value = MagicMock(data=[{"institution_id": "inst-1"}])
    body = json.dumps(WEBHOOK_PAYLOAD).encode()

    response = anonymous_client.post("/api/v1/messaging/whatsapp/webhook", content=body,
                                     headers={"X-Hub-Signature-256": sign(body)})

    assert response.status_code == 200
    assert response.json()["processed_messages"] == 1
    assert response.json()["processed_statuses"] == 1
    tables = [call.args[0] for call in supabase.table.call_args_list]
    assert "whatsapp_inbound_log" in tables
    assert "whatsapp_message_log" in tables
    assert "audit_log" in tables


def test_webhook_ignores_other_objects():
    result = MessagingService(make_supabase()).process_webhook({"object": "page"})
    assert result.message == "Ignored"
    assert result.processed_messages == 0


def test_extract_content():
    assert extract_content({"type": "text", "text": {"body": "hi"}}) == "hi"
    assert extract_content({"type": "button", "button": {"text": "Yes"}}) == "Yes"
    assert extract_content({"type": "interactive", "interactive": {"list_reply": {"title": "Loans"}}}) == "Loans"
    assert extract_content({"type": "image"}) is None


# Outbound

def test_build_payload_text_and_document():
    text = build_payload("+250788000001", "Hello")
    assert text["type"] == "text"
    assert text["text"]["body"] == "Hello"

    document = build_payload("+250788000001", "See attached", "https://files/statement.pdf", "statement.pdf")
    assert document["type"] == "document"
    assert document["document"]["caption"] == "See attached"


def test_send_whatsapp_normalizes_phone_and_logs():
    supabase = make_supabase([{"id": "log-1"}])
    whatsapp = fake_whatsapp()
    service = MessagingService(supabase, whatsapp=whatsapp, rate_limiter=FixedWindowRateLimiter(10, 60))

    result = service.send_whatsapp(SendWhatsAppRequest(to="0788000001", message="Hello"), actor=make_user())

    assert result.success
    assert result.message_id == "wamid.123"
    assert result.log_id == "log-1"
    payload = whatsapp.send.call_args.args[0]
    assert payload["to"] == "+250788000001"


def test_send_whatsapp_requires_recipient_and_content():
    service = MessagingService(make_supabase(), whatsapp=fake_whatsapp())
    with pytest.raises(ValidationError):
        service.send_whatsapp(SendWhatsAppRequest(to="   ", message="Hello"))
    with pytest.raises(ValidationError):
        service.send_whatsapp(SendWhatsAppRequest(to="0788000001"))


def test_send_whatsapp_rate_limited():
    service = MessagingService(make_supabase([{"id": "log-1"}]), whatsapp=fake_whatsapp(),
                               rate_limiter=FixedWindowRateLimiter(max_requests=1, window_seconds=60))
    request = SendWhatsAppRequest(to="0788000001", message="Hello")
    service.send_whatsapp(request, actor=make_user())

    with pytest.raises(RateLimitError) as exc_info:
        service.send_whatsapp(request, actor=make_user())
    assert exc_info.value.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in exc_info.value.headers


def test_send_whatsapp_idempotent():
    supabase = make_supabase([{"id": "log-9", "message_id": "wamid.old", "status": "sent"}])
    whatsapp = fake_whatsapp()
    service = MessagingService(supabase, whatsapp=whatsapp, rate_limiter=FixedWindowRateLimiter(10, 60))

    result = service.send_whatsapp(SendWhatsAppRequest(to="0788000001", message="Hi", idempotency_key="k-1"))

    assert result.duplicate
    assert result.message_id == "wamid.old"
    whatsapp.send.assert_not_called()


def test_send_whatsapp_not_configured():
    whatsapp = fake_whatsapp()
    whatsapp.configured = False
    service = MessagingService(make_supabase(), whatsapp=whatsapp, rate_limiter=FixedWindowRateLimiter(10, 60))
    with pytest.raises(AppError) as exc_info:
        service.send_whatsapp(SendWhatsAppRequest(to="0788000001", message="Hi"))
    assert exc_info.value.code == "WHATSAPP_NOT_CONFIGURED"


def test_send_whatsapp_reports_graph_failure():
    whatsapp = fake_whatsapp(GraphResponse(ok=False, status_code=400,
                                           data={"error": {"message": "Invalid parameter"}}))
    service = MessagingService(make_supabase([{"id": "log-1"}]), whatsapp=whatsapp,
                               rate_limiter=FixedWindowRateLimiter(10, 60))

    result = service.send_whatsapp(SendWhatsAppRequest(to="0788000001", message="Hi"))

    assert not result.success
    assert result.error == "Invalid parameter"


@patch("app.modules.messaging.whatsapp_client.httpx.Client")
def test_whatsapp_client_retries_server_errors(mock_client_cls, monkeypatch):
    monkeypatch.setattr(settings, "retry_delay_seconds", 0)
    request = httpx.Request("POST", "https://graph.example/phone-1/messages")
    mock_http = mock_client_cls.return_value.__enter__.return_value
    mock_http.post.side_effect = [
        httpx.Response(503, request=request),
        httpx.Response(200, json={"messages": [{"id": "wamid.ok"}]}, request=request),
    ]

    response = WhatsAppClient("phone-1", "token", "https://graph.example").send({"to": "+250788000001"})

    assert response.ok
    assert response.message_id == "wamid.ok"
    assert mock_http.post.call_count == 2


# Message generators

def test_format_helpers():
    assert format_currency(1250000) == "RWF 1,250,000"
    assert format_currency(None, "USD") == "USD 0"
    assert format_date("2024-05-01T10:00:00Z") == "01/05/2024"
    assert format_date(None) == ""
    assert format_date("not a date") == "not a date"


def test_statement_message_sections():
    statement = make_statement(
        loans=StatementLoans(active_loan_balance=50000, total_loans_taken=100000, loans_count=1,
                             has_active_loan=True),
        groups=[StatementGroup(id="g-1", name="Twizigamire", role="TREASURER",
                               contribution_frequency="Weekly", expected_amount=2000)],
    )
    message = generate_statement_message(statement, today=date(2024, 5, 1))

    assert "*Member:* Aline Uwase" in message
    assert "*Generated:* 01/05/2024" in message
    assert "*Current Balance:* RWF 1,250,000" in message
    assert "*Active Loan Balance:* RWF 50,000" in message
    assert "• Twizigamire (TREASURER)" in message
    assert "Expected: RWF 2,000 Weekly" in message


def test_statement_message_without_loans_or_groups():
    message = generate_statement_message(make_statement(), today=date(2024, 5, 1))
    assert "LOAN SUMMARY" not in message
    assert "GROUP MEMBERSHIPS" not in message
    assert message.endswith("For questions, contact your SACCO office.")


def test_group_report_message():
    message = generate_group_report_message("Twizigamire", "Eric", "weekly", "2024-04-24", None, 84000, 12)
    assert message.startswith("📊 *GROUP WEEKLY REPORT*")
    assert "*Period:* 24/04/2024 - Today" in message
    assert "*Total Contributions:* RWF 84,000" in message
    assert "*Active Members:* 12" in message


def test_webhook_audit_rows_survive_a_failed_flush(anonymous_client, supabase, monkeypatch):
    monkeypatch.setattr(settings, "whatsapp_app_secret", SECRET)
    audit_table = make_supabase().table.return_value
    audit_table.execute.side_effect = db_error("08006", "connection failure")
    other_tables = make_supabase([{"institution_id": "inst-1"}]).table.return_value
    supabase.table.side_effect = lambda name: audit_table if name == "audit_log" else other_tables
    body = json.dumps(WEBHOOK_PAYLOAD).encode()
    headers = {"X-Hub-Signature-256": sign(body)}

    assert anonymous_client.post("/api/v1/messaging/whatsapp/webhook", content=body,
                                  headers=headers).status_code == 200
    assert webhook_audit.pending == 1

    audit_table.execute.side_effect = None
    assert anonymous_client.post("/api/v1/messaging/whatsapp/webhook", content=body,
                                  headers=headers).status_code == 200
    assert webhook_audit.pending == 0
    assert len(audit_table.insert.call_args.args[0]) == 2


def test_statement_for_other_institution_member_is_not_found(client, supabase):
    supabase.table.return_value.execute.return_value = MagicMock(
        data={"id": "m-2", "institution_id": "inst-2", "full_name": "Other Member"}
    )
    assert client.get("/api/v1/messaging/statements/m-2").status_code == 404
    assert client.get("/api/v1/messaging/statements/m-2/pdf").status_code == 404
    assert client.post("/api/v1/messaging/statements/m-2/send", json={}).status_code == 404
