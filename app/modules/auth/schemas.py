from pydantic import BaseModel, EmailStr
from typing import List, Optional


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user_id: str
    email: str


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    role_level: int
    institution_id: Optional[str] = None
    status: str = "ACTIVE"

    @property
    def is_platform_admin(self) -> bool:
        return self.role == "PLATFORM_ADMIN"


class MeResponse(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    role_level: int
    institution_id: Optional[str] = None
    is_platform_admin: bool
    permissions: List[str]
