"""Database models."""

from app.models.account import Account
from app.models.refresh_token import RefreshToken
from app.models.api_key import ApiKey
from app.models.auth_audit import AuthAuditLog

__all__ = [
    "Account",
    "RefreshToken",
    "ApiKey",
    "AuthAuditLog",
]
