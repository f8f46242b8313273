from fastapi import APIRouter, Depends, Query
from app.database.supabase_client import get_supabase
from app.modules.sms.schemas import (
    SmsFilters, SmsCreate, SmsParseUpdate, SmsLinkRequest, SmsResponse, SmsListResponse
)
from app.modules.sms.service import SmsService
from app.modules.auth.schemas import CurrentUser
from app.core.dependencies import require_permission, resolve_institution
from app.core.query_cache import QueryCache, get_query_cache, query_keys
from supabase import Client
from typing import List, Optional

router = APIRouter(prefix="/sms", tags=["sms"])


def get_sms_service(
    supabase: Client = Depends(get_supabase),
    cache: QueryCache = Depends(get_query_cache)
) -> SmsService:
    return SmsService(supabase, cache)


@router.get("", response_model=SmsListResponse)
def list_sms(
    institution_id: Optional[str] = None,
    is_parsed: Optional[bool] = None,
    source: Optional[str] = None,
    date_from: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    date_to: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(require_permission("sms:read")),
    service: SmsService = Depends(get_sms_service),
    cache: QueryCache = Depends(get_query_cache)
):
    scope = resolve_institution(user, institution_id)
    filters = SmsFilters(is_parsed=is_parsed, source=source, date_from=date_from, date_to=date_to)
    key = query_keys.sms(scope, {**filters.model_dump(), "limit": limit, "offset": offset})
    return cache.fetch(key, lambda: service.list_messages(scope, filters, limit=limit, offset=offset))


@router.get("/search", response_model=List[SmsResponse])
def search_sms(
    q: str = "",
    institution_id: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("sms:read")),
    service: SmsService = Depends(get_sms_service)
):
    return service.search_messages(resolve_institution(user, institution_id), q)


@router.post("", response_model=SmsResponse, status_code=201)
def create_sms(
    body: SmsCreate,
    user: CurrentUser = Depends(require_permission("sms:update")),
    service: SmsService = Depends(get_sms_service)
):
    """Record an SMS captured outside the ingest gateway"""
    scope = resolve_institution(user, body.institution_id) or user.institution_id
    return service.create_message(body, scope)


@router.get("/{sms_id}", response_model=SmsResponse)
def get_sms(
    sms_id: str,
    user: CurrentUser = Depends(require_permission("sms:read")),
    service: SmsService = Depends(get_sms_service)
):
    return service.get_message(sms_id, resolve_institution(user))


@router.patch("/{sms_id}/parse", response_model=SmsResponse)
def update_parse_status(
    sms_id: str,
    body: SmsParseUpdate,
    user: CurrentUser = Depends(require_permission("sms:update")),
    service: SmsService = Depends(get_sms_service)
):
    return service.update_parse_status(sms_id, body, resolve_institution(user))


@router.post("/{sms_id}/link", response_model=SmsResponse)
def link_to_transaction(
    sms_id: str,
    body: SmsLinkRequest,
    user: CurrentUser = Depends(require_permission("sms:update")),
    service: SmsService = Depends(get_sms_service)
):
    return service.link_transaction(sms_id, body.transaction_id, resolve_institution(user))
