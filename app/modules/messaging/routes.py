import json
import logging
from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from app.database.supabase_client import get_supabase, get_service_supabase
from app.modules.messaging.schemas import (
    SendWhatsAppRequest, SendWhatsAppResult, MemberStatement, SendStatementRequest, StatementResult,
    WebhookResult, MessageLogEntry
)
from app.modules.messaging.service import MessagingService, verify_webhook_signature
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.modules.reports.pdf import render_statement_pdf
from app.config import settings
from app.core.dependencies import require_permission, resolve_institution, get_request_meta
from supabase import Client
from typing import List, Optional

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messaging", tags=["messaging"])


def get_messaging_service(supabase: Client = Depends(get_supabase)) -> MessagingService:
    return MessagingService(supabase, AuditLogger(supabase))


# Outlives each request so rows from a failed flush go out with the next webhook
webhook_audit = AuditLogger(None)


def get_webhook_service(supabase: Client = Depends(get_service_supabase)) -> MessagingService:
    webhook_audit.supabase = supabase
    return MessagingService(supabase, webhook_audit)


@router.post("/whatsapp/send", response_model=SendWhatsAppResult)
def send_whatsapp(
    body: SendWhatsAppRequest,
    request: Request,
    user: CurrentUser = Depends(require_permission("messaging:send")),
    service: MessagingService = Depends(get_messaging_service)
):
    """Send a WhatsApp text or document message (STAFF and above)"""
    result = service.send_whatsapp(body, actor=user, request_meta=get_request_meta(request))
    if not result.success:
        return JSONResponse(status_code=502, content=result.model_dump())
    return result


@router.get("/whatsapp/messages", response_model=List[MessageLogEntry])
def list_messages(
    institution_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(require_permission("messaging:read")),
    service: MessagingService = Depends(get_messaging_service)
):
    return service.list_messages(resolve_institution(user, institution_id), limit)


@router.get("/whatsapp/webhook")
def verify_webhook(request: Request):
    """Meta subscription handshake"""
    params = request.query_params
    challenge = MessagingService.verify_subscription(
        params.get("hub.mode"), params.get("hub.verify_token"), params.get("hub.challenge")
    )
    if challenge is None:
        return PlainTextResponse("Forbidden", status_code=403)
    return PlainTextResponse(challenge)


@router.post("/whatsapp/webhook", response_model=WebhookResult)
async def receive_webhook(
    request: Request,
    service: MessagingService = Depends(get_webhook_service)
):
    """Inbound messages and delivery statuses from Meta"""
    body = await request.body()
    if settings.whatsapp_app_secret:
        signature = request.headers.get("x-hub-signature-256")
        if not verify_webhook_signature(body, signature, settings.whatsapp_app_secret):
            logger.warning("Invalid webhook signature")
            return JSONResponse(status_code=401, content={"success": False, "error": "Invalid signature"})
    else:
        logger.warning("WHATSAPP_APP_SECRET not configured - skipping signature verification")

    try:
        payload = json.loads(body)
    except ValueError:
        logger.error("Invalid JSON webhook payload")
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON"})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON"})
    return await run_in_threadpool(service.process_webhook, payload)


@router.get("/statements/{member_id}", response_model=MemberStatement)
def get_member_statement(
    member_id: str,
    user: CurrentUser = Depends(require_permission("messaging:read")),
    service: MessagingService = Depends(get_messaging_service)
):
    return service.build_member_statement(member_id, resolve_institution(user))


@router.get("/statements/{member_id}/pdf")
def download_member_statement(
    member_id: str,
    user: CurrentUser = Depends(require_permission("messaging:read")),
    service: MessagingService = Depends(get_messaging_service)
):
    statement = service.build_member_statement(member_id, resolve_institution(user))
    return Response(
        content=render_statement_pdf(statement),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="statement_{member_id}.pdf"'},
    )


@router.post("/statements/{member_id}/send", response_model=StatementResult)
def send_member_statement(
    member_id: str,
    request: Request,
    body: Optional[SendStatementRequest] = None,
    user: CurrentUser = Depends(require_permission("messaging:send")),
    service: MessagingService = Depends(get_messaging_service)
):
    """Build the statement, attach the PDF when storage is configured and send it over WhatsApp"""
    return service.send_member_statement(member_id, body or SendStatementRequest(), resolve_institution(user),
                                         actor=user, request_meta=get_request_meta(request))
