import hashlib
import hmac
import logging
from datetime import datetime, timezone
from supabase import Client
import httpx
from app.modules.messaging.schemas import (
    SendWhatsAppRequest, SendWhatsAppResult, MemberStatement, StatementMember, StatementSavings,
    StatementLoans, StatementGroup, StatementTransaction, SendStatementRequest, StatementResult,
    WebhookResult, MessageLogEntry
)
from app.modules.messaging.whatsapp_client import WhatsAppClient, build_payload
from app.modules.messaging.generators import generate_statement_message
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.modules.reports.pdf import render_statement_pdf
from app.modules.reports.s3_storage import upload_pdf_if_configured
from app.config import settings
from app.core.errors import AppError, DatabaseError, NotFoundError, RateLimitError, ValidationError
from app.core.request_context import get_request_id
from app.core.resilience import FixedWindowRateLimiter, rate_limit_key, rate_limit_headers
from app.core.validation import normalize_phone
from app.database.query import run_query, scoped, check_scope
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

WHATSAPP_BUSINESS_OBJECT = "whatsapp_business_account"
SIGNATURE_PREFIX = "sha256="
RECENT_TRANSACTIONS = 10

whatsapp_rate_limiter = FixedWindowRateLimiter(
    max_requests=settings.messaging_rate_limit_requests,
    window_seconds=settings.messaging_rate_limit_window_seconds,
)


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check Meta's X-Hub-Signature-256 header against the raw request body"""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len(SIGNATURE_PREFIX):])


def extract_content(message: Dict[str, Any]) -> Optional[str]:
    message_type = message.get("type")
    if message_type == "text":
        return (message.get("text") or {}).get("body")
    if message_type == "button":
        return (message.get("button") or {}).get("text")
    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("title")
    return None


class MessagingService:
    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None,
                 whatsapp: Optional[WhatsAppClient] = None,
                 rate_limiter: Optional[FixedWindowRateLimiter] = None):
        self.supabase = supabase
        self.audit = audit
        self.whatsapp = whatsapp or WhatsAppClient()
        self.rate_limiter = rate_limiter or whatsapp_rate_limiter

    # Outbound

    def _find_duplicate(self, idempotency_key: str, institution_id: Optional[str]) -> Optional[Dict[str, Any]]:
        query = self.supabase.table("whatsapp_message_log") \
            .select("id, message_id, status") \
            .eq("idempotency_key", idempotency_key)
        if institution_id:
            query = query.eq("institution_id", institution_id)
        result = run_query(query.limit(1), "MessagingService.find_duplicate")
        return result.data[0] if result.data else None

    def _log_outbound(self, institution_id: Optional[str], phone: str, request: SendWhatsAppRequest,
                      actor: Optional[CurrentUser], request_id: Optional[str]) -> Optional[str]:
        try:
            result = run_query(self.supabase.table("whatsapp_message_log").insert({
                "institution_id": institution_id,
                "direction": "outbound",
                "phone_number": phone,
                "message_type": "document" if request.document_url else "text",
                "content": request.message or request.caption,
                "status": "pending",
                "idempotency_key": request.idempotency_key,
                "request_id": request_id,
                "metadata": {
                    "document_url": request.document_url,
                    "document_filename": request.document_filename,
                    "sent_by": actor.id if actor else None,
                },
            }), "MessagingService.log_outbound")
        except AppError as e:
            # A missing log row must not block the send
            logger.warning(f"Failed to create message log: {e.message}")
            return None
        return result.data[0]["id"] if result.data else None

    def _update_log(self, log_id: Optional[str], update: Dict[str, Any]):
        if not log_id:
            return
        update["updated_at"] = datetime.now(timezone.utc).isoformat()
        try:
            run_query(self.supabase.table("whatsapp_message_log").update(update).eq("id", log_id),
                      "MessagingService.update_log")
        except AppError as e:
            logger.warning(f"Failed to update message log {log_id}: {e.message}")

    def send_whatsapp(self, request: SendWhatsAppRequest, actor: Optional[CurrentUser] = None,
                      request_meta: Optional[Dict[str, Any]] = None,
                      institution_id: Optional[str] = None) -> SendWhatsAppResult:
        """
        Send a text or document message through the Graph API.

        Requests repeating an idempotency key return the logged result instead
        of sending again.
        """
        if not request.to or not request.to.strip():
            raise ValidationError("Missing required field: to", {"to": "Required"})
        if not request.message and not request.document_url:
            raise ValidationError("Missing required field: message or document_url")

        institution_id = institution_id or (actor.institution_id if actor else None)
        limit = self.rate_limiter.check(rate_limit_key("whatsapp", institution_id))
        if not limit.allowed:
            logger.warning(f"WhatsApp rate limit reached for institution {institution_id}")
            raise RateLimitError("Too many messages sent. Please wait before sending more.",
                                 retry_after=limit.retry_after, headers=rate_limit_headers(limit))

        if request.idempotency_key:
            existing = self._find_duplicate(request.idempotency_key, institution_id)
            if existing:
                logger.info(f"Duplicate send for idempotency key {request.idempotency_key}, log {existing['id']}")
                return SendWhatsAppResult(success=True, message_id=existing.get("message_id"),
                                          log_id=existing["id"], duplicate=True, status=existing.get("status"))

        if not self.whatsapp.configured:
            logger.error("WhatsApp credentials not configured")
            raise AppError("WhatsApp credentials not configured", code="WHATSAPP_NOT_CONFIGURED")

        phone = normalize_phone(request.to)
        request_id = (request_meta or {}).get("request_id") or get_request_id()
        log_id = self._log_outbound(institution_id, phone, request, actor, request_id)
        payload = build_payload(phone, request.message, request.document_url,
                                request.document_filename, request.caption)

        logger.info(f"Sending WhatsApp {payload['type']} message to {phone}")
        try:
            response = self.whatsapp.send(payload)
            success, message_id, error = response.ok, response.message_id, response.error_message
        except (httpx.HTTPError, AppError) as e:
            logger.error(f"WhatsApp API call failed: {e}")
            success, message_id, error = False, None, "Failed to send WhatsApp message"

        self._update_log(log_id, {
            "message_id": message_id,
            "status": "sent" if success else "failed",
            "error_message": error,
        })
        if self.audit:
            self.audit.log(
                "send_whatsapp", "whatsapp_message", message_id or log_id,
                institution_id=institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                metadata={"to": phone, "message_type": payload["type"], "success": success,
                          "wa_message_id": message_id},
                request_meta=request_meta,
            )

        if not success:
            logger.error(f"WhatsApp send to {phone} failed: {error}")
            return SendWhatsAppResult(success=False, log_id=log_id, status="failed", error=error)
        logger.info(f"WhatsApp message sent, id={message_id}")
        return SendWhatsAppResult(success=True, message_id=message_id, log_id=log_id, status="sent",
                                  timestamp=datetime.now(timezone.utc).isoformat())

    def list_messages(self, institution_id: Optional[str], limit: int = 50) -> List[MessageLogEntry]:
        query = self.supabase.table("whatsapp_message_log").select("*")
        if institution_id:
            query = query.eq("institution_id", institution_id)
        result = run_query(query.order("created_at", desc=True).limit(limit),
                           "MessagingService.list_messages", retry=True)
        return [MessageLogEntry(**row) for row in result.data or []]

    # Webhook

    @staticmethod
    def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Return the challenge to echo back, or None when verification fails"""
        if mode == "subscribe" and settings.whatsapp_verify_token and token == settings.whatsapp_verify_token:
            logger.info("Webhook verification successful")
            return challenge or ""
        logger.warning(f"Webhook verification failed mode={mode}")
        return None

    def process_webhook(self, payload: Dict[str, Any]) -> WebhookResult:
        if payload.get("object") != WHATSAPP_BUSINESS_OBJECT:
            logger.info(f"Ignoring non-WhatsApp webhook object={payload.get('object')}")
            return WebhookResult(success=True, message="Ignored")

        result = WebhookResult(success=True)
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
                for message in value.get("messages") or []:
                    self._process_inbound(message, phone_number_id)
                    result.processed_messages += 1
                for status in value.get("statuses") or []:
                    self._process_status(status)
                    result.processed_statuses += 1
        if self.audit:
            self.audit.flush()
        logger.info(f"Webhook processed: {result.processed_messages} messages, {result.processed_statuses} statuses")
        return result

    def _institution_for_phone_id(self, phone_number_id: Optional[str]) -> Optional[str]:
        if not phone_number_id:
            return None
        try:
            result = run_query(
                self.supabase.table("institution_settings")
                .select("institution_id")
                .eq("whatsapp_phone_id", phone_number_id)
                .limit(1),
                "MessagingService.institution_for_phone_id",
            )
        except AppError as e:
            logger.warning(f"Could not resolve institution for phone id {phone_number_id}: {e.message}")
            return None
        return result.data[0]["institution_id"] if result.data else None

    def _process_inbound(self, message: Dict[str, Any], phone_number_id: Optional[str]):
        logger.info(f"Inbound WhatsApp message id={message.get('id')} type={message.get('type')}")
        content = extract_content(message)
        institution_id = self._institution_for_phone_id(phone_number_id)
        try:
            run_query(self.supabase.table("whatsapp_inbound_log").insert({
                "institution_id": institution_id,
                "from_phone": message.get("from"),
                "message_id": message.get("id"),
                "message_type": message.get("type"),
                "content": content,
                "raw_payload": message,
                "processed": False,
                "webhook_received_at": datetime.now(timezone.utc).isoformat(),
            }), "MessagingService.log_inbound")
        except AppError as e:
            logger.error(f"Failed to log inbound message {message.get('id')}: {e.message}")

        if institution_id and self.audit:
            self.audit.enqueue(
                "receive_whatsapp", "whatsapp_message", message.get("id"),
                institution_id=institution_id,
                metadata={"from": message.get("from"), "type": message.get("type"), "has_content": bool(content)},
            )

    def _process_status(self, status: Dict[str, Any]):
        errors = status.get("errors") or []
        try:
            run_query(
                self.supabase.table("whatsapp_message_log").update({
                    "status": status.get("status"),
                    "error_message": errors[0].get("message") if errors else None,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                }).eq("message_id", status.get("id")),
                "MessagingService.update_status",
            )
        except AppError as e:
            logger.warning(f"Failed to update status for message {status.get('id')}: {e.message}")

    # Member statements

    def _optional_rows(self, builder, operation: str) -> List[Dict[str, Any]]:
        """Secondary statement sections degrade to empty rather than failing the statement"""
        try:
            return run_query(builder, operation, retry=True).data or []
        except AppError as e:
            logger.error(f"{operation} failed: {e.message}")
            return []

    def build_member_statement(self, member_id: str, institution_id: Optional[str] = None) -> MemberStatement:
        try:
            result = run_query(
                scoped(
                    self.supabase.table("members")
                    .select("id, full_name, phone, email, national_id, savings_balance, institution_id")
                    .eq("id", member_id),
                    institution_id,
                ).single(),
                "MessagingService.statement_member",
            )
        except DatabaseError as e:
            if e.db_code == "PGRST116":
                raise NotFoundError("Member", member_id)
            raise
        member = result.data
        if not member:
            raise NotFoundError("Member", member_id)
        check_scope(member, institution_id, "Member", member_id)

        memberships = self._optional_rows(
            self.supabase.table("group_members")
            .select("role, joined_date, groups(id, group_name, frequency, expected_amount, currency)")
            .eq("member_id", member_id)
            .eq("status", "GOOD_STANDING"),
            "MessagingService.statement_groups",
        )
        transactions = self._optional_rows(
            self.supabase.table("transactions")
            .select("id, type, amount, occurred_at, status, groups(group_name)")
            .eq("member_id", member_id)
            .order("occurred_at", desc=True)
            .limit(RECENT_TRANSACTIONS),
            "MessagingService.statement_transactions",
        )
        contributions = self._optional_rows(
            self.supabase.table("transactions")
            .select("amount, occurred_at")
            .eq("member_id", member_id)
            .eq("allocation_status", "allocated")
            .eq("type", "CONTRIBUTION"),
            "MessagingService.statement_contributions",
        )
        loans = self._optional_rows(
            self.supabase.table("loans").select("*").eq("member_id", member_id),
            "MessagingService.statement_loans",
        )

        last = max(contributions, key=lambda c: c.get("occurred_at") or "", default=None)
        active = [loan for loan in loans if loan.get("status") in ("ACTIVE", "DISBURSED")]
        groups = [row.get("groups") or {} for row in memberships]
        currency = next((g.get("currency") for g in groups if g.get("currency")), settings.default_currency)

        return MemberStatement(
            member=StatementMember(
                id=member["id"],
                full_name=member.get("full_name") or "",
                phone=member.get("phone"),
                email=member.get("email"),
                national_id=member.get("national_id"),
            ),
            savings=StatementSavings(
                current_balance=float(member.get("savings_balance") or 0),
                total_contributions=sum(float(c.get("amount") or 0) for c in contributions),
                contribution_count=len(contributions),
                last_contribution_date=last.get("occurred_at") if last else None,
                last_contribution_amount=float(last.get("amount") or 0) if last else None,
            ),
            loans=StatementLoans(
                active_loan_balance=sum(float(loan.get("outstanding_balance") or 0) for loan in active),
                total_loans_taken=sum(float(loan.get("amount") or 0) for loan in loans),
                total_loans_repaid=sum(float(loan.get("amount_repaid") or 0) for loan in loans),
                loans_count=len(loans),
                has_active_loan=bool(active),
            ),
            groups=[
                StatementGroup(
                    id=group.get("id") or "",
                    name=group.get("group_name") or "",
                    role=row.get("role"),
                    joined_at=row.get("joined_date"),
                    contribution_frequency=group.get("frequency") or "",
                    expected_amount=float(group.get("expected_amount") or 0),
                )
                for row, group in zip(memberships, groups)
            ],
            recent_transactions=[
                StatementTransaction(
                    id=txn["id"],
                    type=txn.get("type"),
                    amount=float(txn.get("amount") or 0),
                    date=txn.get("occurred_at"),
                    group_name=(txn.get("groups") or {}).get("group_name"),
                    status=txn.get("status"),
                )
                for txn in transactions
            ],
            currency=currency,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    def send_member_statement(self, member_id: str, options: SendStatementRequest,
                              institution_id: Optional[str] = None, actor: Optional[CurrentUser] = None,
                              request_meta: Optional[Dict[str, Any]] = None) -> StatementResult:
        statement = self.build_member_statement(member_id, institution_id)
        message = generate_statement_message(statement)

        pdf_url = None
        if options.attach_pdf:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
            pdf_url = upload_pdf_if_configured(
                render_statement_pdf(statement), f"statements/{member_id}/statement_{stamp}.pdf"
            )

        delivery = None
        if options.send_whatsapp:
            phone = options.phone or statement.member.phone
            if not phone:
                raise ValidationError("Member has no phone number", {"phone": "Required"})
            delivery = self.send_whatsapp(SendWhatsAppRequest(to=phone, message=message), actor, request_meta)
            if delivery.success and pdf_url:
                self.send_whatsapp(SendWhatsAppRequest(
                    to=phone,
                    document_url=pdf_url,
                    document_filename=f"statement_{statement.member.full_name.replace(' ', '_')}.pdf",
                    caption="Savings statement",
                ), actor, request_meta)

        return StatementResult(statement=statement, message=message, pdf_url=pdf_url, delivery=delivery)
