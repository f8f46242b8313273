import hashlib
import logging
import time
from supabase import Client
from app.modules.auth.schemas import LoginRequest, TokenResponse, CurrentUser
from app.config.permissions_config import get_role_level
from app.core.errors import UnauthorizedError, ForbiddenError, create_app_error
from app.database.query import run_query
from typing import Dict, Any

logger = logging.getLogger(__name__)

# In-memory cache for get_current_user to reduce Supabase auth calls (e.g. many parallel requests with same token)
_AUTH_USER_CACHE: Dict[str, tuple] = {}
_AUTH_CACHE_TTL_SEC = 60
_AUTH_CACHE_MAX_SIZE = 500


def clear_auth_cache():
    _AUTH_USER_CACHE.clear()


class AuthService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def login(self, login_data: LoginRequest) -> TokenResponse:
        """Authenticate staff using Supabase Auth"""
        try:
            auth_response = self.supabase.auth.sign_in_with_password({
                "email": login_data.email,
                "password": login_data.password
            })
        except Exception as e:
            error_message = str(e).lower()
            if "invalid" in error_message or "credentials" in error_message:
                raise UnauthorizedError("Invalid email or password")
            raise create_app_error(e, "AuthService.login")

        if not auth_response.user or not auth_response.session:
            raise UnauthorizedError("Invalid email or password")

        return TokenResponse(
            access_token=auth_response.session.access_token,
            refresh_token=auth_response.session.refresh_token,
            token_type="bearer",
            expires_in=auth_response.session.expires_in,
            user_id=auth_response.user.id,
            email=auth_response.user.email or login_data.email
        )

    def get_auth_user(self, token: str) -> Dict[str, Any]:
        """Resolve a JWT to the Supabase auth user. Uses short TTL cache to reduce auth API calls."""
        cache_key = hashlib.sha256(token.encode()).hexdigest()
        now = time.monotonic()
        if cache_key in _AUTH_USER_CACHE:
            user_data, expiry = _AUTH_USER_CACHE[cache_key]
            if now < expiry:
                return user_data
            del _AUTH_USER_CACHE[cache_key]
        try:
            user_response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            error_msg = str(e)
            if "expired" in error_msg.lower():
                raise UnauthorizedError("jwt expired")
            logger.info(f"Token rejected: {error_msg}")
            raise UnauthorizedError("Invalid or expired token")
        if not user_response or not user_response.user:
            raise UnauthorizedError("Invalid or expired token")
        user = user_response.user
        user_data = {
            "id": user.id,
            "email": user.email,
            "user_metadata": user.user_metadata or {},
            "app_metadata": user.app_metadata or {},
        }
        if len(_AUTH_USER_CACHE) < _AUTH_CACHE_MAX_SIZE:
            _AUTH_USER_CACHE[cache_key] = (user_data, now + _AUTH_CACHE_TTL_SEC)
        return user_data

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        result = run_query(
            self.supabase.table("profiles")
            .select("user_id, email, full_name, role, institution_id, status")
            .eq("user_id", user_id)
            .limit(1),
            "AuthService.get_profile",
        )
        if not result.data:
            raise ForbiddenError("No staff profile found for this account")
        return result.data[0]

    def get_current_user(self, token: str) -> CurrentUser:
        """Auth user + profile; suspended accounts are rejected."""
        auth_user = self.get_auth_user(token)
        profile = self.get_profile(auth_user["id"])
        status = (profile.get("status") or "ACTIVE").upper()
        if status == "SUSPENDED":
            raise ForbiddenError("Account suspended")
        role = (profile.get("role") or "").upper()
        return CurrentUser(
            id=auth_user["id"],
            email=profile.get("email") or auth_user.get("email"),
            full_name=profile.get("full_name"),
            role=role,
            role_level=get_role_level(role),
            institution_id=profile.get("institution_id"),
            status=status,
        )

    def logout(self, token: str) -> bool:
        """Revoke the caller's refresh tokens; needs the service-role client"""
        _AUTH_USER_CACHE.pop(hashlib.sha256(token.encode()).hexdigest(), None)
        try:
            # The access token itself stays valid until it expires
            self.supabase.auth.admin.sign_out(token)
            return True
        except Exception as e:
            logger.warning(f"Sign out failed: {e}")
            return False
