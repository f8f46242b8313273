"""
Core dependencies for route protection and role checking
"""

from fastapi import Depends, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.database.supabase_client import get_supabase, get_session_supabase, get_service_supabase
from app.modules.auth.service import AuthService
from app.modules.auth.schemas import CurrentUser
from app.config.permissions_config import ROLE_HIERARCHY, get_required_level
from app.core.errors import UnauthorizedError, ForbiddenError
from supabase import Client
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

# auto_error=False so a missing header becomes a 401 AppError instead of FastAPI's 403
security = HTTPBearer(auto_error=False)


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_login_service(supabase: Client = Depends(get_session_supabase)) -> AuthService:
    return AuthService(supabase)


def get_logout_service(supabase: Client = Depends(get_service_supabase)) -> AuthService:
    return AuthService(supabase)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> CurrentUser:
    """Resolve the bearer token to the staff profile; cached on request.state for the request."""
    cached = getattr(request.state, "current_user", None)
    if cached is not None:
        return cached
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing authorization header")
    user = auth_service.get_current_user(credentials.credentials)
    request.state.current_user = user
    return user


def get_current_token(credentials: Optional[HTTPAuthorizationCredentials] = Security(security)) -> str:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing authorization header")
    return credentials.credentials


def require_role(min_role: str):
    """Factory function to create a minimum-role dependency"""
    min_level = ROLE_HIERARCHY[min_role]

    def check_role(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role_level < min_level:
            logger.info(f"User {user.id} with role {user.role} denied; requires {min_role}")
            raise ForbiddenError(f"Insufficient permissions. Required role: {min_role}")
        return user
    return check_role


require_staff = require_role("STAFF")
require_admin = require_role("ADMIN")
require_platform_admin = require_role("PLATFORM_ADMIN")


def require_permission(required_permission: str):
    """Factory function to create permission check dependency"""
    min_level = get_required_level(required_permission)

    def check_permission(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role_level < min_level:
            raise ForbiddenError(f"Insufficient permissions. Required: {required_permission}")
        return user
    return check_permission


def resolve_institution(user: CurrentUser, requested: Optional[str] = None) -> Optional[str]:
    """
    Institution scope for a query.

    Platform admins may target any institution (None means all); everyone
    else is pinned to their own institution.
    """
    if user.is_platform_admin:
        return requested
    if not user.institution_id:
        raise ForbiddenError("Your account is not linked to an institution")
    if requested and requested != user.institution_id:
        raise ForbiddenError("You do not have access to this institution")
    return user.institution_id


def get_request_meta(request: Request) -> Dict[str, Any]:
    """Caller details recorded in audit rows."""
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return {
        "request_id": getattr(request.state, "request_id", None),
        "ip_address": ip,
        "user_agent": request.headers.get("user-agent"),
    }
