"""Pydantic schemas for API request/response validation."""

from app.schemas.auth import (
    LoginRequest,
    RefreshRequest,
    AccountResponse,
    TokenResponse,
    PasswordChange,
    PasswordResetRequest,
    PasswordResetConfirm,
    MessageResponse,
)
from app.schemas.api_key import ApiKeyCreate, ApiKeyResponse, ApiKeyCreatedResponse

__all__ = [
    "LoginRequest",
    "RefreshRequest",
    "AccountResponse",
    "TokenResponse",
    "PasswordChange",
    "PasswordResetRequest",
    "PasswordResetConfirm",
    "MessageResponse",
    "ApiKeyCreate",
    "ApiKeyResponse",
    "ApiKeyCreatedResponse",
]
