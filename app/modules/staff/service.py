import logging
from datetime import datetime, timezone
from supabase import Client
from app.modules.staff.schemas import StaffInvite, StaffUpdate, StaffResponse, StaffListResponse, StaffInviteResult
from app.modules.audit.service import AuditLogger
from app.modules.auth.schemas import CurrentUser
from app.modules.auth.service import clear_auth_cache
from app.config.permissions_config import ROLE_HIERARCHY, PLATFORM_ADMIN
from app.core.errors import AppError, DatabaseError, ForbiddenError, NotFoundError, ValidationError
from app.core.pagination import page_meta, page_range
from app.database.query import run_query, ilike_any
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Display names used by the staff screen
ROLE_ALIASES = {
    "SUPER ADMIN": "ADMIN",
    "BRANCH MANAGER": "ADMIN",
    "TREASURER": "INSTITUTION_TREASURER",
    "AUDITOR": "INSTITUTION_AUDITOR",
}


def normalize_role(role: Optional[str]) -> str:
    """Map a requested role onto a profiles.role value; blank means STAFF."""
    if not role or not role.strip():
        return "STAFF"
    value = role.strip().upper()
    value = ROLE_ALIASES.get(value, value)
    if value not in ROLE_HIERARCHY:
        raise ValidationError("Invalid role", {"role": f"Must be one of {', '.join(ROLE_HIERARCHY)}"})
    return value


class StaffService:
    def __init__(self, supabase: Client, audit: Optional[AuditLogger] = None):
        self.supabase = supabase
        self.audit = audit

    def _audit(self, action: str, user_id: str, institution_id: Optional[str],
               actor: Optional[CurrentUser], request_meta: Optional[Dict[str, Any]], **kwargs):
        if self.audit:
            self.audit.log(
                action, "profile", user_id,
                institution_id=institution_id,
                actor_user_id=actor.id if actor else None,
                actor_email=actor.email if actor else None,
                request_meta=request_meta,
                **kwargs,
            )

    @staticmethod
    def _check_scope(actor: Optional[CurrentUser], institution_id: Optional[str]):
        if actor is None or actor.is_platform_admin:
            return
        if institution_id != actor.institution_id:
            raise ForbiddenError("Cannot manage staff of another institution")

    @staticmethod
    def _check_role_grant(actor: Optional[CurrentUser], role: str):
        if role == PLATFORM_ADMIN and not (actor and actor.is_platform_admin):
            raise ForbiddenError("Only platform admins can grant the PLATFORM_ADMIN role")

    def list_staff(self, institution_id: Optional[str], role: Optional[str] = None,
                   search: Optional[str] = None, page: int = 1, limit: int = 50) -> StaffListResponse:
        query = self.supabase.table("profiles").select("*", count="exact")
        if institution_id:
            query = query.eq("institution_id", institution_id)
        if role:
            query = query.eq("role", role.upper())
        if search and search.strip():
            query = query.or_(ilike_any(("full_name", "email"), search))
        start, end = page_range(page, limit)
        result = run_query(
            query.order("created_at", desc=True).range(start, end),
            "StaffService.list_staff",
            retry=True,
        )
        total = result.count if result.count is not None else len(result.data or [])
        return StaffListResponse(
            items=[StaffResponse(**row) for row in result.data or []],
            meta=page_meta(page, end - start + 1, total),
        )

    def get_staff(self, user_id: str) -> StaffResponse:
        try:
            result = run_query(
                self.supabase.table("profiles").select("*").eq("user_id", user_id).single(),
                "StaffService.get_staff",
            )
        except DatabaseError as e:
            if e.db_code == "PGRST116":
                raise NotFoundError("Staff member", user_id)
            raise
        if not result.data:
            raise NotFoundError("Staff member", user_id)
        return StaffResponse(**result.data)

    def update_staff(self, user_id: str, data: StaffUpdate, actor: Optional[CurrentUser] = None,
                     request_meta: Optional[Dict[str, Any]] = None) -> StaffResponse:
        update_data = data.model_dump(exclude_none=True)
        if not update_data:
            raise ValidationError("No fields to update")
        if "role" in update_data:
            update_data["role"] = normalize_role(update_data["role"])
            self._check_role_grant(actor, update_data["role"])
        if "institution_id" in update_data:
            self._check_scope(actor, update_data["institution_id"])
        return self._update(user_id, update_data, "update_staff", actor, request_meta)

    def set_status(self, user_id: str, status: str, actor: Optional[CurrentUser] = None,
                   request_meta: Optional[Dict[str, Any]] = None) -> StaffResponse:
        """Suspend or reactivate a staff account"""
        if actor and actor.id == user_id and status == "SUSPENDED":
            raise ValidationError("You cannot suspend your own account")
        action = "suspend_staff" if status == "SUSPENDED" else "activate_staff"
        profile = self._update(user_id, {"status": status, "is_active": status == "ACTIVE"},
                               action, actor, request_meta)
        # Cached identities would otherwise keep a suspended user signed in
        clear_auth_cache()
        return profile

    def _update(self, user_id: str, update_data: Dict[str, Any], action: str,
                actor: Optional[CurrentUser], request_meta: Optional[Dict[str, Any]]) -> StaffResponse:
        current = self.get_staff(user_id)
        self._check_scope(actor, current.institution_id)
        update_data["updated_at"] = datetime.now(timezone.utc).isoformat()
        result = run_query(
            self.supabase.table("profiles").update(update_data).eq("user_id", user_id),
            f"StaffService.{action}",
        )
        if not result.data:
            raise NotFoundError("Staff member", user_id)
        profile = StaffResponse(**result.data[0])
        changes = {k: v for k, v in update_data.items() if k not in ("updated_at", "is_active")}
        self._audit(action, user_id, profile.institution_id, actor, request_meta,
                    previous_value={k: getattr(current, k, None) for k in changes},
                    new_value=changes)
        logger.info(f"Staff {user_id}: {action}")
        return profile

    def _record_invite(self, email: str, institution_id: str, role: str,
                       actor: Optional[CurrentUser]) -> Optional[str]:
        try:
            result = run_query(
                self.supabase.table("staff_invites").insert({
                    "email": email,
                    "institution_id": institution_id,
                    "role": role,
                    "invited_by": actor.id if actor else None,
                    "status": "pending",
                }),
                "StaffService.record_invite",
            )
        except DatabaseError as e:
            # A pending invite for the same address is not fatal
            logger.warning(f"Could not record invite for {email}: {e.raw_message}")
            return None
        return result.data[0]["id"] if result.data else None

    def _expire_invite(self, invite_id: Optional[str], reason: str):
        if not invite_id:
            return
        try:
            run_query(
                self.supabase.table("staff_invites")
                .update({"status": "expired", "metadata": {"error": reason}})
                .eq("id", invite_id),
                "StaffService.expire_invite",
            )
        except AppError as e:
            logger.warning(f"Could not expire invite {invite_id}: {e.message}")

    def invite_staff(self, data: StaffInvite, actor: Optional[CurrentUser] = None,
                     request_meta: Optional[Dict[str, Any]] = None) -> StaffInviteResult:
        """
        Invite a staff member through the Supabase admin API.

        The auth user is created with role and institution metadata, then the
        profile row is upserted so the account is usable right after sign-up.
        Requires a client built with the service role key.
        """
        email = str(data.email).strip().lower()
        full_name = (data.full_name or "").strip()
        role = normalize_role(data.role)
        self._check_role_grant(actor, role)
        institution_id = data.institution_id or (actor.institution_id if actor else None)
        if not institution_id and role != PLATFORM_ADMIN:
            raise ValidationError("Institution ID is required")
        self._check_scope(actor, institution_id)

        invite_id = self._record_invite(email, institution_id, role, actor) if institution_id else None
        metadata = {"full_name": full_name, "role": role, "institution_id": institution_id}
        try:
            response = self.supabase.auth.admin.invite_user_by_email(email, {"data": metadata})
        except Exception as e:
            self._expire_invite(invite_id, str(e))
            logger.error(f"Failed to invite {email}: {e}")
            raise AppError(str(e) or "Failed to invite staff", code="INVITE_FAILED", status_code=400)
        new_user = getattr(response, "user", None)
        if new_user is None:
            self._expire_invite(invite_id, "no user returned")
            raise AppError("Failed to invite staff", code="INVITE_FAILED", status_code=400)

        result = run_query(
            self.supabase.table("profiles").upsert({
                "user_id": new_user.id,
                "institution_id": institution_id,
                "role": role,
                "email": email,
                "full_name": full_name or None,
                "is_active": True,
                "status": "ACTIVE",
            }),
            "StaffService.invite_staff",
        )
        if not result.data:
            raise DatabaseError("Failed to create staff profile")
        profile = StaffResponse(**result.data[0])
        self._audit("invite_staff", new_user.id, institution_id, actor, request_meta,
                    metadata={"email": email, "role": role, "invite_id": invite_id})
        logger.info(f"Invited staff {email} as {role}")
        return StaffInviteResult(profile=profile, invite_id=invite_id)
