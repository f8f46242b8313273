import logging
from datetime import datetime, timezone
from supabase import Client
from app.modules.groups.schemas import (
    GroupCreate, GroupUpdate, GroupResponse, GroupListResponse,
    GroupMemberAdd, GroupMemberResponse, GroupImportResult, GroupImportRowResult
)
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.config import settings
from app.core.errors import DatabaseError, ConflictError, NotFoundError, ValidationError
from app.core.pagination import page_meta, page_range
from app.core.query_cache import QueryCache
from app.core.validation import parse_csv, validate_group_row
from app.database.query import run_query, scoped, check_scope
from pydantic import ValidationError as SchemaValidationError
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

GROUP_SELECT = "*, group_members(count)"


def _to_group(row: Dict[str, Any]) -> GroupResponse:
    data = {k: v for k, v in row.items() if k != "group_members"}
    counts = row.get("group_members") or []
    member_count = counts[0].get("count", 0) if counts and isinstance(counts[0], dict) else 0
    return GroupResponse(**data, member_count=member_count)


class GroupService:
    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None, cache: Optional[QueryCache] = None):
        self.supabase = supabase
        self.audit = audit
        self.cache = cache

    def _invalidate(self):
        if self.cache is not None:
            self.cache.invalidate(("groups",))
            self.cache.invalidate(("dashboard",))

    def _audit(self, action: str, group_id: Optional[str], institution_id: Optional[str],
               actor: Optional[CurrentUser], request_meta: Optional[Dict[str, Any]], **kwargs):
        if self.audit:
            self.audit.log(
                action, "group", group_id,
                institution_id=institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                request_meta=request_meta,
                **kwargs,
            )

    def create_group(self, group_data: GroupCreate, institution_id: str,
                     actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> GroupResponse:
        """Create a new group with institution defaults"""
        if not institution_id:
            raise ValidationError("Institution ID is required")
        row = {
            "institution_id": institution_id,
            "group_name": group_data.group_name.strip(),
            "code": group_data.code.strip() if group_data.code else None,
            "meeting_day": group_data.meeting_day or "Monday",
            "expected_amount": group_data.expected_amount,
            "frequency": group_data.frequency,
            "cycle_label": group_data.cycle_label or f"Cycle {datetime.now(timezone.utc).year}",
            "grace_days": group_data.grace_days or 0,
            "bank_name": group_data.bank_name,
            "account_ref": group_data.account_ref,
            "currency": group_data.currency or settings.default_currency,
            "status": group_data.status or "ACTIVE",
        }
        try:
            result = run_query(self.supabase.table("groups").insert(row), "GroupService.create_group")
        except DatabaseError as e:
            if e.db_code == "23505":
                raise ConflictError("A group with this name or code already exists")
            raise
        if not result.data:
            raise DatabaseError("Failed to create group")
        group = result.data[0]
        self._audit("create_group", group["id"], institution_id, actor, request_meta,
                    new_value={"group_name": row["group_name"]})
        self._invalidate()
        return _to_group(group)

    def get_group_by_id(self, group_id: str, institution_id: Optional[str] = None) -> GroupResponse:
        """Get group by ID within the caller's institution"""
        try:
            result = run_query(
                scoped(self.supabase.table("groups").select(GROUP_SELECT).eq("id", group_id),
                       institution_id).single(),
                "GroupService.get_group",
            )
        except DatabaseError as e:
            if e.db_code == "PGRST116":
                raise NotFoundError("Group", group_id)
            raise
        if not result.data:
            raise NotFoundError("Group", group_id)
        check_scope(result.data, institution_id, "Group", group_id)
        return _to_group(result.data)

    def update_group(self, group_id: str, group_data: GroupUpdate, institution_id: Optional[str] = None,
                     actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> GroupResponse:
        """Update group"""
        update_data = group_data.model_dump(exclude_none=True)
        if "group_name" in update_data:
            update_data["group_name"] = update_data["group_name"].strip()
        if not update_data:
            raise ValidationError("No fields to update")
        return self._update(group_id, update_data, "update_group", institution_id, actor, request_meta)

    def set_status(self, group_id: str, status: str, institution_id: Optional[str] = None,
                   actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> GroupResponse:
        return self._update(group_id, {"status": status}, "set_group_status", institution_id, actor, request_meta)

    def _update(self, group_id: str, update_data: Dict[str, Any], action: str, institution_id: Optional[str],
                actor: Optional[CurrentUser], request_meta: Optional[Dict[str, Any]]) -> GroupResponse:
        update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
        result = run_query(
            scoped(self.supabase.table("groups").update(update_data).eq("id", group_id), institution_id),
            f"GroupService.{action}",
        )
        if not result.data:
            raise NotFoundError("Group", group_id)
        group = result.data[0]
        check_scope(group, institution_id, "Group", group_id)
        self._audit(action, group_id, group.get("institution_id"), actor, request_meta,
                    new_value={k: v for k, v in update_data.items() if k != "updated_at"})
        self._invalidate()
        return _to_group(group)

    def list_groups(
        self,
        institution_id: Optional[str],
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> GroupListResponse:
        """List groups with member counts, newest first"""
        query = self.supabase.table("groups").select(GROUP_SELECT, count="exact")
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if status:
            query = query.eq("status", status)
        if search and search.strip():
            query = query.ilike("group_name", f"%{search.strip()}%")
        start, end = page_range(page, limit)
        result = run_query(
            query.order("created_at", desc=True).range(start, end),
            "GroupService.list_groups",
            retry=True,
        )
        total = result.count if result.count is not None else len(result.data or [])
        return GroupListResponse(
            items=[_to_group(group) for group in result.data or []],
            meta=page_meta(page, end - start + 1, total),
        )

    def delete_group(self, group_id: str, institution_id: Optional[str] = None,
                     actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> bool:
        """Groups keep their history; deleting closes them"""
        self.set_status(group_id, "CLOSED", institution_id, actor, request_meta)
        return True

    def list_members(self, group_id: str, institution_id: Optional[str] = None) -> List[GroupMemberResponse]:
        if institution_id:
            self.get_group_by_id(group_id, institution_id)
        result = run_query(
            self.supabase.table("group_members")
            .select("id, group_id, member_id, role, status, created_at, members(full_name, phone)")
            .eq("group_id", group_id)
            .order("created_at"),
            "GroupService.list_members",
            retry=True,
        )
        members = []
        for row in result.data or []:
            member = row.get("members") or {}
            members.append(GroupMemberResponse(
                **{k: v for k, v in row.items() if k != "members"},
                full_name=member.get("full_name"),
                phone=member.get("phone"),
            ))
        return members

    def add_member(self, group_id: str, member_data: GroupMemberAdd, institution_id: Optional[str] = None,
                   actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> GroupMemberResponse:
        """Add a member to group"""
        group = self.get_group_by_id(group_id, institution_id)
        if group.status == "CLOSED":
            raise ValidationError("Group is closed")
        try:
            result = run_query(
                self.supabase.table("group_members").insert({
                    "institution_id": group.institution_id,
                    "group_id": group_id,
                    "member_id": member_data.member_id,
                    "role": member_data.role,
                    "status": "GOOD_STANDING",
                }),
                "GroupService.add_member",
            )
        except DatabaseError as e:
            if e.db_code == "23505":
                raise ConflictError("Member already in group")
            raise
        if not result.data:
            raise DatabaseError("Failed to add member to group")
        self._audit("add_group_member", group_id, group.institution_id, actor, request_meta,
                    new_value={"member_id": member_data.member_id, "role": member_data.role})
        self._invalidate()
        if self.cache is not None:
            self.cache.invalidate(("members",))
        return GroupMemberResponse(**result.data[0])

    def remove_member(self, group_id: str, member_id: str, institution_id: Optional[str] = None,
                      actor: Optional[CurrentUser] = None, request_meta: Optional[Dict[str, Any]] = None) -> bool:
        """Remove a member from group"""
        result = run_query(
            scoped(
                self.supabase.table("group_members")
                .delete()
                .eq("group_id", group_id)
                .eq("member_id", member_id),
                institution_id,
            ),
            "GroupService.remove_member",
        )
        if not result.data:
            raise NotFoundError("Group member", member_id)
        self._audit("remove_group_member", group_id, result.data[0].get("institution_id"), actor, request_meta,
                    previous_value={"member_id": member_id})
        self._invalidate()
        if self.cache is not None:
            self.cache.invalidate(("members",))
        return True

    def import_groups(self, csv_text: str, institution_id: str, actor: Optional[CurrentUser] = None,
                      request_meta: Optional[Dict[str, Any]] = None) -> GroupImportResult:
        headers, rows = parse_csv(csv_text)
        if not headers:
            raise ValidationError("CSV file is empty")
        if not ({"group_name", "name"} & set(headers)):
            raise ValidationError("CSV must contain a group_name column")

        results: List[GroupImportRowResult] = []
        for index, row in enumerate(rows, start=2):
            validation = validate_group_row(row)
            if not validation.valid:
                results.append(GroupImportRowResult(row=index, status="failed",
                                                    errors=validation.errors, warnings=validation.warnings))
                continue
            data = validation.data
            try:
                group_data = GroupCreate(
                    group_name=data["group_name"],
                    code=data["code"],
                    expected_amount=data["expected_amount"] or 0,
                    currency=data["currency"],
                    frequency=data["frequency"] or "Weekly",
                    meeting_day=data["meeting_day"],
                )
            except SchemaValidationError as e:
                results.append(GroupImportRowResult(row=index, status="failed",
                                                    errors=[err["msg"] for err in e.errors()],
                                                    warnings=validation.warnings))
                continue
            try:
                group = self.create_group(group_data, institution_id)
            except ConflictError as e:
                results.append(GroupImportRowResult(row=index, status="skipped", errors=[e.message],
                                                    warnings=validation.warnings))
                continue
            except (ValidationError, DatabaseError) as e:
                results.append(GroupImportRowResult(row=index, status="failed", errors=[e.message],
                                                    warnings=validation.warnings))
                continue
            results.append(GroupImportRowResult(row=index, status="created", group_id=group.id,
                                                warnings=validation.warnings))

        summary = GroupImportResult(
            total_rows=len(rows),
            created=sum(1 for r in results if r.status == "created"),
            skipped=sum(1 for r in results if r.status == "skipped"),
            failed=sum(1 for r in results if r.status == "failed"),
            rows=results,
        )
        self._audit("bulk_import_groups", None, institution_id, actor, request_meta,
                    metadata={"created": summary.created, "skipped": summary.skipped, "failed": summary.failed})
        return summary
