"""Services for authentication and session lifecycle."""

from app.services.password_service import CredentialVerifier, PasswordStrength
from app.services.token_service import TokenClass, TokenClaims, TokenCodec
from app.services.lockout_service import LockoutState, LockoutTracker
from app.services.refresh_token_service import ClientContext, RefreshTokenLedger
from app.services.api_key_service import ApiKeyLedger
from app.services.auth_service import AuthService, SessionTokens

__all__ = [
    "CredentialVerifier",
    "PasswordStrength",
    "TokenClass",
    "TokenClaims",
    "TokenCodec",
    "LockoutState",
    "LockoutTracker",
    "ClientContext",
    "RefreshTokenLedger",
    "ApiKeyLedger",
    "AuthService",
    "SessionTokens",
]
