import json
import logging
from supabase import Client
from app.modules.sms.schemas import SmsFilters, SmsCreate, SmsParseUpdate, SmsResponse, SmsListResponse
from app.core.errors import DatabaseError, NotFoundError, ValidationError
from app.core.query_cache import QueryCache
from app.core.resilience import RequestDeduplicator
from app.database.query import run_query, scoped, check_scope, ilike_any
from typing import List, Optional

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50
SEARCH_COLUMNS = ("sender", "body")

# Shared across requests so identical in-flight reads hit the database once
sms_deduplicator = RequestDeduplicator()


class SmsService:
    def __init__(self, supabase: Client, cache: Optional[QueryCache] = None,
                 deduplicator: Optional[RequestDeduplicator] = None):
        self.supabase = supabase
        self.cache = cache
        self.deduplicator = deduplicator or sms_deduplicator

    def list_messages(self, institution_id: Optional[str], filters: SmsFilters,
                      limit: int = 50, offset: int = 0) -> SmsListResponse:
        key = f"list_sms:{institution_id}:{json.dumps(filters.model_dump(), sort_keys=True)}:{limit}:{offset}"

        def load():
            query = self.supabase.table("sms_messages").select("*", count="exact")
            if institution_id:
                query = query.eq("institution_id", institution_id)
            if filters.is_parsed is not None:
                query = query.eq("is_parsed", filters.is_parsed)
            if filters.source:
                query = query.eq("source", filters.source)
            if filters.date_from:
                query = query.gte("timestamp", f"{filters.date_from}T00:00:00")
            if filters.date_to:
                query = query.lte("timestamp", f"{filters.date_to}T23:59:59")
            result = run_query(
                query.order("timestamp", desc=True).range(offset, offset + limit - 1),
                "SmsService.list_messages",
                retry=True,
            )
            return SmsListResponse(items=[SmsResponse(**row) for row in result.data or []], total=result.count)

        return self.deduplicator.run(key, load)

    def get_message(self, sms_id: str, institution_id: Optional[str] = None) -> SmsResponse:
        def load():
            try:
                result = run_query(
                    scoped(self.supabase.table("sms_messages").select("*").eq("id", sms_id), institution_id).single(),
                    "SmsService.get_message",
                )
            except DatabaseError as e:
                if e.db_code == "PGRST116":
                    raise NotFoundError("SMS message", sms_id)
                raise
            if not result.data:
                raise NotFoundError("SMS message", sms_id)
            check_scope(result.data, institution_id, "SMS message", sms_id)
            return SmsResponse(**result.data)

        return self.deduplicator.run(f"get_sms:{institution_id}:{sms_id}", load)

    def search_messages(self, institution_id: Optional[str], term: str) -> List[SmsResponse]:
        """Match sender or body text"""
        term = (term or "").strip()
        if not term:
            return []

        def load():
            query = self.supabase.table("sms_messages").select("*")
            if institution_id:
                query = query.eq("institution_id", institution_id)
            result = run_query(
                query.or_(ilike_any(SEARCH_COLUMNS, term))
                .order("timestamp", desc=True)
                .limit(SEARCH_LIMIT),
                "SmsService.search_messages",
                retry=True,
            )
            return [SmsResponse(**row) for row in result.data or []]

        return self.deduplicator.run(f"search_sms:{institution_id}:{term}", load)

    def create_message(self, data: SmsCreate, institution_id: str) -> SmsResponse:
        if not institution_id:
            raise ValidationError("Institution ID is required")
        row = {
            "institution_id": institution_id,
            "sender": data.sender,
            "body": data.body,
            "source": data.source,
            "timestamp": data.timestamp.isoformat(),
            "is_parsed": False,
        }
        result = run_query(self.supabase.table("sms_messages").insert(row), "SmsService.create_message")
        if not result.data:
            raise DatabaseError("Failed to create SMS message")
        self._invalidate()
        return SmsResponse(**result.data[0])

    def update_parse_status(self, sms_id: str, update: SmsParseUpdate,
                            institution_id: Optional[str] = None) -> SmsResponse:
        return self._update(sms_id, update.model_dump(exclude_none=True), "SmsService.update_parse_status",
                            institution_id)

    def link_transaction(self, sms_id: str, transaction_id: str,
                         institution_id: Optional[str] = None) -> SmsResponse:
        if not transaction_id:
            raise ValidationError("Transaction ID is required")
        if institution_id:
            self._check_transaction(transaction_id, institution_id)
        sms = self._update(sms_id, {"linked_transaction_id": transaction_id}, "SmsService.link_transaction",
                           institution_id)
        logger.info(f"Linked SMS {sms_id} to transaction {transaction_id}")
        return sms

    def _check_transaction(self, transaction_id: str, institution_id: str):
        result = run_query(
            self.supabase.table("transactions").select("id, institution_id").eq("id", transaction_id).limit(1),
            "SmsService.check_transaction",
        )
        rows = result.data or []
        check_scope(rows[0] if rows else None, institution_id, "Transaction", transaction_id)

    def _update(self, sms_id: str, update: dict, operation: str, institution_id: Optional[str] = None) -> SmsResponse:
        result = run_query(
            scoped(self.supabase.table("sms_messages").update(update).eq("id", sms_id), institution_id),
            operation,
        )
        if not result.data:
            raise NotFoundError("SMS message", sms_id)
        check_scope(result.data[0], institution_id, "SMS message", sms_id)
        self._invalidate()
        return SmsResponse(**result.data[0])

    def _invalidate(self):
        if self.cache is not None:
            self.cache.invalidate(("sms",))
