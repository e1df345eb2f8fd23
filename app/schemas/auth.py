"""Auth schemas for API validation."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    """Username, or email for portal patients."""
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=256)
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str


class AccountResponse(BaseModel):
    id: str
    username: str
    email: str
    role: str
    permissions: List[str] = []
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    """Token pair. The refresh token is shown exactly once."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: AccountResponse


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=1, max_length=256)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=256)


class PasswordStrengthRequest(BaseModel):
    password: str = Field(max_length=256)


class PasswordStrengthResponse(BaseModel):
    valid: bool
    violations: List[str]
    messages: List[str]


class LogoutAllResponse(BaseModel):
    message: str
    revoked: int


class MessageResponse(BaseModel):
    """Simple message response."""
    message: str


class AccountStatusResponse(BaseModel):
    id: str
    username: str
    is_active: bool
    failed_login_attempts: int
    locked_until: Optional[datetime] = None

    class Config:
        from_attributes = True
