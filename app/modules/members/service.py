import logging
from datetime import datetime, timezone
from supabase import Client
from app.modules.members.schemas import (
    MemberCreate, MemberUpdate, MemberResponse, MemberListResponse, GroupMembership,
    MemberBalance, MemberImportResult, MemberImportRowResult
)
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.core.errors import DatabaseError, ConflictError, NotFoundError, ValidationError
from app.core.pagination import page_meta, page_range
from app.core.query_cache import QueryCache, query_keys
from app.core.validation import parse_csv, validate_member_row
from app.database.query import run_query, scoped, check_scope, ilike_any
from pydantic import ValidationError as SchemaValidationError
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MEMBER_SELECT = """
    *,
    group_memberships:group_members(
        group_id,
        role,
        status,
        groups(id, group_name)
    )
"""

SEARCH_COLUMNS = ("full_name", "phone", "member_code")
SAVINGS_CREDIT_TYPES = ("DEPOSIT", "SAVINGS")
SAVINGS_DEBIT_TYPES = ("WITHDRAWAL",)


def _to_member(row: Dict[str, Any]) -> MemberResponse:
    memberships = []
    for gm in row.get("group_memberships") or []:
        group = gm.get("groups") or {}
        memberships.append(GroupMembership(
            group_id=gm.get("group_id") or group.get("id"),
            role=gm.get("role"),
            status=gm.get("status"),
            group_name=group.get("group_name"),
        ))
    data = {k: v for k, v in row.items() if k not in ("group_memberships", "groups")}
    return MemberResponse(**data, group_memberships=memberships)


def _conflict_for(error: DatabaseError) -> ConflictError:
    raw = (error.raw_message or "").lower()
    if "phone" in raw:
        return ConflictError("A member with this phone number already exists")
    if "national_id" in raw:
        return ConflictError("A member with this National ID already exists")
    return ConflictError("A member with these details already exists")


def compute_balance(member_id: str, transactions: List[Dict[str, Any]]) -> MemberBalance:
    """Savings and loan position from completed transactions."""
    savings = 0.0
    loans = 0.0
    for txn in transactions:
        amount = float(txn.get("amount") or 0)
        txn_type = txn.get("type")
        if txn_type in SAVINGS_CREDIT_TYPES:
            savings += amount
        elif txn_type in SAVINGS_DEBIT_TYPES:
            savings -= amount
        elif txn_type == "LOAN_DISBURSEMENT":
            loans += amount
        elif txn_type == "LOAN_REPAYMENT":
            loans -= amount
    return MemberBalance(
        member_id=member_id,
        total_savings=max(0.0, savings),
        total_loans=max(0.0, loans),
        net_balance=savings - loans,
    )


class MemberService:
    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None, cache: Optional[QueryCache] = None):
        self.supabase = supabase
        self.audit = audit
        self.cache = cache

    def _invalidate(self):
        if self.cache is not None:
            self.cache.invalidate(("members",))
            self.cache.invalidate(("groups",))
            self.cache.invalidate(("dashboard",))

    def list_members(
        self,
        institution_id: Optional[str],
        group_id: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> MemberListResponse:
        """Members with their group memberships, ordered by name"""
        select = MEMBER_SELECT
        if group_id:
            # !inner turns the embedded filter into a filter on members
            select = MEMBER_SELECT.replace("group_members(", "group_members!inner(")
        query = self.supabase.table("members").select(select, count="exact")
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if group_id:
            query = query.eq("group_memberships.group_id", group_id)
        if status:
            query = query.eq("status", status)
        if search and search.strip():
            term = search.strip()
            query = query.or_(ilike_any(SEARCH_COLUMNS, term))
        start, end = page_range(page, limit)
        result = run_query(
            query.order("full_name").range(start, end),
            "MemberService.list_members",
            retry=True,
        )
        total = result.count if result.count is not None else len(result.data or [])
        return MemberListResponse(
            items=[_to_member(row) for row in result.data or []],
            meta=page_meta(page, end - start + 1, total),
        )

    def get_member(self, member_id: str, institution_id: Optional[str] = None) -> MemberResponse:
        """Get member by ID within the caller's institution"""
        try:
            result = run_query(
                scoped(self.supabase.table("members").select(MEMBER_SELECT).eq("id", member_id),
                       institution_id).single(),
                "MemberService.get_member",
            )
        except DatabaseError as e:
            if e.db_code == "PGRST116":
                raise NotFoundError("Member", member_id)
            raise
        if not result.data:
            raise NotFoundError("Member", member_id)
        check_scope(result.data, institution_id, "Member", member_id)
        return _to_member(result.data)

    def search_members(self, institution_id: Optional[str], text: str, limit: int = 20) -> List[MemberResponse]:
        if not text or not text.strip():
            return []
        term = text.strip()
        query = self.supabase.table("members").select(MEMBER_SELECT)
        if institution_id:
            query = query.eq("institution_id", institution_id)
        result = run_query(
            query.or_(ilike_any(SEARCH_COLUMNS, term))
            .order("full_name")
            .limit(limit),
            "MemberService.search_members",
        )
        return [_to_member(row) for row in result.data or []]

    def create_member(self, member_data: MemberCreate, institution_id: str,
                      actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> MemberResponse:
        """Create a member and optionally link it to a group"""
        if not institution_id:
            raise ValidationError("Institution ID is required")
        full_name = member_data.full_name.strip()
        if not full_name:
            raise ValidationError("Full name is required", {"full_name": "Required"})

        row = {
            "institution_id": institution_id,
            "full_name": full_name,
            "phone": member_data.phone.strip() if member_data.phone else None,
            "email": member_data.email.strip().lower() if member_data.email else None,
            "national_id": member_data.national_id.strip() if member_data.national_id else None,
            "member_code": member_data.member_code.strip() if member_data.member_code else None,
            "date_of_birth": member_data.date_of_birth.isoformat() if member_data.date_of_birth else None,
            "status": "ACTIVE",
        }
        try:
            result = run_query(self.supabase.table("members").insert(row), "MemberService.create_member")
        except DatabaseError as e:
            if e.db_code == "23505":
                raise _conflict_for(e)
            raise
        if not result.data:
            raise DatabaseError("Failed to create member")
        member = result.data[0]

        if member_data.group_id:
            self._link_group(institution_id, member_data.group_id, member["id"])

        if self.audit:
            self.audit.log(
                "create_member", "member", member["id"],
                institution_id=institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                new_value={"full_name": full_name, "phone": row["phone"]},
                request_meta=request_meta,
            )
        self._invalidate()
        logger.info(f"Created member {member['id']} in institution {institution_id}")
        return _to_member(member)

    def _link_group(self, institution_id: str, group_id: str, member_id: str) -> bool:
        try:
            run_query(
                self.supabase.table("group_members").insert({
                    "institution_id": institution_id,
                    "group_id": group_id,
                    "member_id": member_id,
                    "role": "MEMBER",
                    "status": "GOOD_STANDING",
                }),
                "MemberService.link_group",
            )
            return True
        except DatabaseError as e:
            # The member exists either way; the link can be retried from the group screen
            logger.error(f"Error linking member {member_id} to group {group_id}: {e.raw_message}")
            return False

    def update_member(self, member_id: str, member_data: MemberUpdate, institution_id: Optional[str] = None,
                      actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> MemberResponse:
        """Update member"""
        updates = member_data.model_dump(exclude_none=True)
        if "full_name" in updates:
            updates["full_name"] = updates["full_name"].strip()
        if "email" in updates:
            updates["email"] = str(updates["email"]).strip().lower()
        if "date_of_birth" in updates:
            updates["date_of_birth"] = updates["date_of_birth"].isoformat()
        if not updates:
            raise ValidationError("No fields to update")
        updates["updated_at"] = datetime.now(timezone.utc).isoformat()

        try:
            result = run_query(
                scoped(self.supabase.table("members").update(updates).eq("id", member_id), institution_id),
                "MemberService.update_member",
            )
        except DatabaseError as e:
            if e.db_code == "23505":
                raise ConflictError("A member with these details already exists")
            raise
        if not result.data:
            raise NotFoundError("Member", member_id)

        member = result.data[0]
        check_scope(member, institution_id, "Member", member_id)
        if self.audit:
            self.audit.log(
                "update_member", "member", member_id,
                institution_id=member.get("institution_id"),
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                new_value={k: v for k, v in updates.items() if k != "updated_at"},
                request_meta=request_meta,
            )
        self._invalidate()
        return _to_member(member)

    def delete_member(self, member_id: str, institution_id: Optional[str] = None,
                      actor: Optional[CurrentUser] = None,
                      request_meta: Optional[Dict[str, Any]] = None) -> bool:
        """Soft delete: members with history are closed, never removed"""
        result = run_query(
            scoped(
                self.supabase.table("members")
                .update({"status": "CLOSED", "updated_at": datetime.now(timezone.utc).isoformat()})
                .eq("id", member_id),
                institution_id,
            ),
            "MemberService.delete_member",
        )
        if not result.data:
            raise NotFoundError("Member", member_id)
        check_scope(result.data[0], institution_id, "Member", member_id)
        if self.audit:
            self.audit.log(
                "close_member", "member", member_id,
                institution_id=result.data[0].get("institution_id"),
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                request_meta=request_meta,
            )
        self._invalidate()
        return True

    def get_transactions(self, member_id: str, limit: int = 50,
                         institution_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if institution_id:
            self.get_member(member_id, institution_id)
        result = run_query(
            scoped(self.supabase.table("transactions").select("*").eq("member_id", member_id), institution_id)
            .order("occurred_at", desc=True)
            .limit(limit),
            "MemberService.get_transactions",
            retry=True,
        )
        return result.data or []

    def get_balance(self, member_id: str, institution_id: Optional[str] = None) -> MemberBalance:
        if institution_id:
            self.get_member(member_id, institution_id)
        result = run_query(
            scoped(
                self.supabase.table("transactions")
                .select("type, amount")
                .eq("member_id", member_id)
                .eq("status", "COMPLETED"),
                institution_id,
            ),
            "MemberService.get_balance",
            retry=True,
        )
        return compute_balance(member_id, result.data or [])

    def _group_ids_by_code(self, institution_id: str) -> Dict[str, str]:
        result = run_query(
            self.supabase.table("groups").select("id, code, group_name").eq("institution_id", institution_id),
            "MemberService.group_lookup",
        )
        lookup = {}
        for group in result.data or []:
            if group.get("code"):
                lookup[group["code"].lower()] = group["id"]
            if group.get("group_name"):
                lookup.setdefault(group["group_name"].lower(), group["id"])
        return lookup

    def import_members(self, csv_text: str, institution_id: str, default_group_id: Optional[str] = None,
                       actor: Optional[CurrentUser] = None,
                       request_meta: Optional[Dict[str, Any]] = None) -> MemberImportResult:
        """Validate and create members row by row; duplicates are skipped, not fatal."""
        headers, rows = parse_csv(csv_text)
        if not headers:
            raise ValidationError("CSV file is empty")
        if not ({"full_name", "name"} & set(headers)) or not ({"phone", "phone_number"} & set(headers)):
            raise ValidationError("CSV must contain full_name and phone columns")

        groups = self._group_ids_by_code(institution_id) if any(r.get("group_code") or r.get("group") for r in rows) else {}
        results: List[MemberImportRowResult] = []
        for index, row in enumerate(rows, start=2):  # row 1 is the header
            validation = validate_member_row(row)
            if not validation.valid:
                results.append(MemberImportRowResult(row=index, status="failed",
                                                     errors=validation.errors, warnings=validation.warnings))
                continue
            data = validation.data
            warnings = list(validation.warnings)
            group_id = default_group_id
            if data.get("group_code"):
                group_id = groups.get(data["group_code"].lower())
                if not group_id:
                    warnings.append(f"Group '{data['group_code']}' not found; member not linked")
            try:
                member_data = MemberCreate(
                    full_name=data["full_name"],
                    phone=data["phone"],
                    email=data["email"],
                    national_id=data["national_id"],
                    member_code=data["member_code"],
                    group_id=group_id,
                )
            except SchemaValidationError as e:
                results.append(MemberImportRowResult(row=index, status="failed",
                                                     errors=[err["msg"] for err in e.errors()], warnings=warnings))
                continue
            try:
                member = self.create_member(member_data, institution_id)
            except ConflictError as e:
                results.append(MemberImportRowResult(row=index, status="skipped", errors=[e.message], warnings=warnings))
                continue
            except (ValidationError, DatabaseError) as e:
                results.append(MemberImportRowResult(row=index, status="failed", errors=[e.message], warnings=warnings))
                continue
            results.append(MemberImportRowResult(row=index, status="created", member_id=member.id, warnings=warnings))

        summary = MemberImportResult(
            total_rows=len(rows),
            created=sum(1 for r in results if r.status == "created"),
            skipped=sum(1 for r in results if r.status == "skipped"),
            failed=sum(1 for r in results if r.status == "failed"),
            rows=results,
        )
        if self.audit:
            self.audit.log(
                "bulk_import_members", "member",
                institution_id=institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                metadata={"created": summary.created, "skipped": summary.skipped, "failed": summary.failed},
                request_meta=request_meta,
            )
        logger.info(f"Member import for {institution_id}: {summary.created} created, "
                    f"{summary.skipped} skipped, {summary.failed} failed")
        return summary
