import csv
import io
import logging
from datetime import datetime, timezone
from supabase import Client
from app.modules.transactions.schemas import (
    TransactionFilters, TransactionCreate, TransactionResponse, TransactionListResponse,
    BatchAllocateResponse, MemberSuggestion, TRANSACTION_TYPES, CHANNELS
)
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.config import settings
from app.core.errors import DatabaseError, NotFoundError, ValidationError
from app.core.pagination import page_meta, page_range
from app.core.query_cache import QueryCache
from app.database.query import run_query, call_rpc, scoped, check_scope, ilike_any
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TRANSACTION_SELECT = "*, members:members!transactions_member_id_fkey(full_name), groups(group_name)"

EXPORT_COLUMNS = [
    "occurred_at", "type", "amount", "currency", "channel", "status", "allocation_status",
    "momo_ref", "payer_phone", "payer_name", "member_name", "group_name", "note",
]
EXPORT_MAX_ROWS = 10000
SEARCH_COLUMNS = ("payer_phone", "momo_ref", "payer_name")


def _to_transaction(row: Dict[str, Any]) -> TransactionResponse:
    member = row.get("members") or {}
    group = row.get("groups") or {}
    data = {k: v for k, v in row.items() if k not in ("members", "groups")}
    return TransactionResponse(
        **data,
        member_name=member.get("full_name") if isinstance(member, dict) else None,
        group_name=group.get("group_name") if isinstance(group, dict) else None,
    )


def _mark_allocated(transaction_id: str, member_id: str):
    """Cache updater applied optimistically while allocation is in flight."""
    def apply(page: Any) -> Any:
        if not isinstance(page, TransactionListResponse):
            return page
        items = [
            item.model_copy(update={"member_id": member_id, "allocation_status": "allocated"})
            if item.id == transaction_id else item
            for item in page.items
        ]
        return page.model_copy(update={"items": items})
    return apply


class TransactionService:
    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None, cache: Optional[QueryCache] = None):
        self.supabase = supabase
        self.audit = audit
        self.cache = cache

    def _invalidate(self):
        if self.cache is not None:
            for prefix in (("transactions",), ("members",), ("dashboard",)):
                self.cache.invalidate(prefix)

    def _check_member(self, member_id: str, institution_id: str):
        result = run_query(
            self.supabase.table("members").select("id, institution_id").eq("id", member_id).limit(1),
            "TransactionService.check_member",
        )
        rows = result.data or []
        check_scope(rows[0] if rows else None, institution_id, "Member", member_id)

    def _filtered_query(self, institution_id: Optional[str], filters: TransactionFilters, count: bool = False):
        query = self.supabase.table("transactions").select(TRANSACTION_SELECT, count="exact" if count else None)
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if filters.member_id:
            query = query.eq("member_id", filters.member_id)
        if filters.group_id:
            query = query.eq("group_id", filters.group_id)
        if filters.status:
            query = query.eq("status", filters.status)
        if filters.allocation_status:
            query = query.eq("allocation_status", filters.allocation_status)
        if filters.date_from:
            query = query.gte("occurred_at", f"{filters.date_from}T00:00:00")
        if filters.date_to:
            query = query.lte("occurred_at", f"{filters.date_to}T23:59:59")
        if filters.search and filters.search.strip():
            query = query.or_(ilike_any(SEARCH_COLUMNS, filters.search))
        return query.order("occurred_at", desc=True)

    def list_transactions(self, institution_id: Optional[str], filters: TransactionFilters,
                          page: int = 1, limit: int = 50) -> TransactionListResponse:
        start, end = page_range(page, limit)
        result = run_query(
            self._filtered_query(institution_id, filters, count=True).range(start, end),
            "TransactionService.list_transactions",
            retry=True,
        )
        total = result.count if result.count is not None else len(result.data or [])
        return TransactionListResponse(
            items=[_to_transaction(row) for row in result.data or []],
            meta=page_meta(page, end - start + 1, total),
        )

    def get_transaction(self, transaction_id: str, institution_id: Optional[str] = None) -> TransactionResponse:
        try:
            result = run_query(
                scoped(self.supabase.table("transactions").select(TRANSACTION_SELECT).eq("id", transaction_id),
                       institution_id).single(),
                "TransactionService.get_transaction",
            )
        except DatabaseError as e:
            if e.db_code == "PGRST116":
                raise NotFoundError("Transaction", transaction_id)
            raise
        if not result.data:
            raise NotFoundError("Transaction", transaction_id)
        check_scope(result.data, institution_id, "Transaction", transaction_id)
        return _to_transaction(result.data)

    def create_transaction(self, data: TransactionCreate, institution_id: str,
                           actor: Optional[CurrentUser] = None,
                           request_meta: Optional[Dict[str, Any]] = None) -> TransactionResponse:
        if not institution_id:
            raise ValidationError("Institution ID is required")
        if data.amount is None or data.amount <= 0:
            raise ValidationError("Amount must be greater than 0", {"amount": "Invalid amount"})
        if data.type not in TRANSACTION_TYPES:
            raise ValidationError("Invalid transaction type", {"type": f"Must be one of {', '.join(TRANSACTION_TYPES)}"})
        if data.channel not in CHANNELS:
            raise ValidationError("Invalid channel", {"channel": f"Must be one of {', '.join(CHANNELS)}"})

        row = {
            "institution_id": institution_id,
            "member_id": data.member_id,
            "group_id": data.group_id,
            "type": data.type,
            "amount": data.amount,
            "currency": data.currency or settings.default_currency,
            "channel": data.channel,
            "status": data.status or "COMPLETED",
            "reference": data.reference,
            "payer_phone": data.payer_phone,
            "payer_name": data.payer_name,
            "allocation_status": "allocated" if data.member_id else "unallocated",
            "occurred_at": (data.occurred_at or datetime.now(timezone.utc)).isoformat(),
        }
        result = run_query(self.supabase.table("transactions").insert(row), "TransactionService.create_transaction")
        if not result.data:
            raise DatabaseError("Failed to create transaction")
        txn = result.data[0]
        if self.audit:
            self.audit.log(
                "create_transaction", "transaction", txn["id"],
                institution_id=institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                new_value={"type": data.type, "amount": data.amount, "channel": data.channel},
                request_meta=request_meta,
            )
        self._invalidate()
        return _to_transaction(txn)

    def update_status(self, transaction_id: str, status: str, institution_id: Optional[str] = None,
                      actor: Optional[CurrentUser] = None,
                      request_meta: Optional[Dict[str, Any]] = None) -> TransactionResponse:
        result = run_query(
            scoped(self.supabase.table("transactions").update({"status": status}).eq("id", transaction_id),
                   institution_id),
            "TransactionService.update_status",
        )
        if not result.data:
            raise NotFoundError("Transaction", transaction_id)
        txn = result.data[0]
        check_scope(txn, institution_id, "Transaction", transaction_id)
        if self.audit:
            self.audit.log(
                "update_transaction_status", "transaction", transaction_id,
                institution_id=txn.get("institution_id"),
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                new_value={"status": status},
                request_meta=request_meta,
            )
        self._invalidate()
        return _to_transaction(txn)

    def allocate(self, transaction_id: str, member_id: str, note: Optional[str] = None,
                 institution_id: Optional[str] = None, actor: Optional[CurrentUser] = None,
                 request_meta: Optional[Dict[str, Any]] = None) -> TransactionResponse:
        """
        Allocate a payment to a member through the allocate_transaction RPC.

        Cached transaction lists show the allocation immediately; they are rolled
        back if the RPC fails and invalidated once it succeeds.
        """
        if not member_id:
            raise ValidationError("Member ID is required")
        if institution_id:
            self.get_transaction(transaction_id, institution_id)
            self._check_member(member_id, institution_id)

        def run():
            call_rpc(self.supabase, "allocate_transaction", {
                "p_transaction_id": transaction_id,
                "p_member_id": member_id,
                "p_note": note or None,
            }, "TransactionService.allocate")
            return self.get_transaction(transaction_id)

        if self.cache is not None:
            with self.cache.optimistic_update(("transactions", "list"), _mark_allocated(transaction_id, member_id)):
                txn = run()
        else:
            txn = run()

        if self.audit:
            self.audit.log(
                "allocate_transaction", "transaction", transaction_id,
                institution_id=txn.institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                new_value={"member_id": member_id, "note": note},
                request_meta=request_meta,
            )
        self._invalidate()
        logger.info(f"Allocated transaction {transaction_id} to member {member_id}")
        return txn

    def allocate_batch(self, transaction_ids: List[str], member_id: str, group_id: Optional[str] = None,
                       institution_id: Optional[str] = None, actor: Optional[CurrentUser] = None,
                       request_meta: Optional[Dict[str, Any]] = None) -> BatchAllocateResponse:
        if not transaction_ids:
            raise ValidationError("At least one transaction ID is required")
        if not member_id:
            raise ValidationError("Member ID is required")
        if institution_id:
            self._check_member(member_id, institution_id)
        update = {
            "member_id": member_id,
            "allocation_status": "allocated",
            "allocated_at": datetime.now(timezone.utc).isoformat(),
            "allocated_by": actor.id if actor else None,
        }
        if group_id:
            update["group_id"] = group_id
        result = run_query(
            scoped(self.supabase.table("transactions").update(update).in_("id", transaction_ids), institution_id),
            "TransactionService.allocate_batch",
        )
        rows = result.data or []
        if self.audit:
            self.audit.log(
                "allocate_transactions_batch", "transaction",
                institution_id=rows[0].get("institution_id") if rows else (actor.institution_id if actor else None),
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                metadata={"transaction_ids": transaction_ids, "member_id": member_id, "allocated": len(rows)},
                request_meta=request_meta,
            )
        self._invalidate()
        return BatchAllocateResponse(allocated=len(rows), items=[_to_transaction(r) for r in rows])

    def flag_duplicate(self, transaction_id: str, duplicate_of: Optional[str] = None,
                       institution_id: Optional[str] = None, actor: Optional[CurrentUser] = None,
                       request_meta: Optional[Dict[str, Any]] = None) -> TransactionResponse:
        note = f"Duplicate of {duplicate_of}" if duplicate_of else "Flagged as duplicate"
        result = run_query(
            scoped(
                self.supabase.table("transactions")
                .update({"allocation_status": "duplicate", "note": note})
                .eq("id", transaction_id),
                institution_id,
            ),
            "TransactionService.flag_duplicate",
        )
        if not result.data:
            raise NotFoundError("Transaction", transaction_id)
        txn = result.data[0]
        check_scope(txn, institution_id, "Transaction", transaction_id)
        if self.audit:
            self.audit.log(
                "transaction_flagged_duplicate", "transaction", transaction_id,
                institution_id=txn.get("institution_id"),
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                metadata={"duplicate_of": duplicate_of},
                request_meta=request_meta,
            )
        self._invalidate()
        return _to_transaction(txn)

    def count_unallocated(self, institution_id: Optional[str]) -> int:
        query = self.supabase.table("transactions").select("id", count="exact", head=True)
        if institution_id:
            query = query.eq("institution_id", institution_id)
        result = run_query(query.eq("allocation_status", "unallocated"),
                           "TransactionService.count_unallocated", retry=True)
        return result.count or 0

    def suggest_member(self, transaction_id: str, institution_id: Optional[str] = None) -> MemberSuggestion:
        """Phone-based member match for an unallocated payment."""
        if institution_id:
            self.get_transaction(transaction_id, institution_id)
        result = call_rpc(self.supabase, "suggest_member_for_transaction",
                          {"p_transaction_id": transaction_id}, "TransactionService.suggest_member")
        data = result.data or {}
        if not data.get("success"):
            return MemberSuggestion(reason=data.get("error") or "No suggestion available")
        return MemberSuggestion(
            suggested_member=data.get("suggested_member"),
            match_type=data.get("match_type"),
            reason=data.get("reason"),
        )

    def export_csv(self, institution_id: Optional[str], filters: TransactionFilters) -> str:
        result = run_query(
            self._filtered_query(institution_id, filters).limit(EXPORT_MAX_ROWS),
            "TransactionService.export_csv",
            retry=True,
        )
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for row in result.data or []:
            txn = _to_transaction(row).model_dump()
            if txn.get("occurred_at"):
                txn["occurred_at"] = txn["occurred_at"].isoformat()
            writer.writerow(txn)
        return output.getvalue()
