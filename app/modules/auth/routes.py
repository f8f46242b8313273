from fastapi import APIRouter, Depends
from app.modules.auth.schemas import LoginRequest, TokenResponse, CurrentUser, MeResponse
from app.modules.auth.service import AuthService
from app.core.dependencies import get_login_service, get_logout_service, get_current_user, get_current_token
from app.config.permissions_config import permissions_for_role

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(
    login_data: LoginRequest,
    service: AuthService = Depends(get_login_service)
):
    """Login and get access token"""
    return service.login(login_data)


@router.post("/logout", status_code=200)
def logout(
    token: str = Depends(get_current_token),
    service: AuthService = Depends(get_logout_service)
):
    """Logout and drop the cached token"""
    service.logout(token)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=MeResponse)
def me(current_user: CurrentUser = Depends(get_current_user)):
    """Current staff member, role and granted permissions (for frontend UI)."""
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        role=current_user.role,
        role_level=current_user.role_level,
        institution_id=current_user.institution_id,
        is_platform_admin=current_user.is_platform_admin,
        permissions=permissions_for_role(current_user.role),
    )
