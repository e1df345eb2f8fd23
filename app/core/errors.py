"""Authentication error taxonomy.

Every failure the auth core can produce is an ``AuthError`` tagged with an
``AuthErrorKind``. Callers branch on ``err.kind``; the message is for humans.
"""

from enum import Enum
from typing import Any, Dict, Optional


class AuthErrorKind(str, Enum):
    # Credentials / account state
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_INACTIVE = "account_inactive"
    ACCOUNT_NOT_FOUND = "account_not_found"
    FORBIDDEN = "forbidden"

    # Token codec
    TOKEN_EXPIRED = "token_expired"
    TOKEN_MALFORMED = "token_malformed"
    TOKEN_WRONG_CLASS = "token_wrong_class"

    # Refresh ledger
    REFRESH_NOT_FOUND = "refresh_not_found"
    REFRESH_REVOKED = "refresh_revoked"
    REFRESH_EXPIRED = "refresh_expired"

    # API key ledger
    API_KEY_INVALID = "api_key_invalid"
    API_KEY_EXPIRED = "api_key_expired"
    API_KEY_OWNER_INACTIVE = "api_key_owner_inactive"
    API_KEY_NOT_FOUND = "api_key_not_found"

    # Password management
    WEAK_PASSWORD = "weak_password"
    INVALID_OR_EXPIRED_RESET_TOKEN = "invalid_or_expired_reset_token"


_STATUS_CODES: Dict[AuthErrorKind, int] = {
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.ACCOUNT_LOCKED: 423,
    AuthErrorKind.ACCOUNT_INACTIVE: 403,
    AuthErrorKind.ACCOUNT_NOT_FOUND: 404,
    AuthErrorKind.FORBIDDEN: 403,
    AuthErrorKind.TOKEN_EXPIRED: 401,
    AuthErrorKind.TOKEN_MALFORMED: 401,
    AuthErrorKind.TOKEN_WRONG_CLASS: 401,
    AuthErrorKind.REFRESH_NOT_FOUND: 401,
    AuthErrorKind.REFRESH_REVOKED: 401,
    AuthErrorKind.REFRESH_EXPIRED: 401,
    AuthErrorKind.API_KEY_INVALID: 401,
    AuthErrorKind.API_KEY_EXPIRED: 401,
    AuthErrorKind.API_KEY_OWNER_INACTIVE: 403,
    AuthErrorKind.API_KEY_NOT_FOUND: 404,
    AuthErrorKind.WEAK_PASSWORD: 400,
    AuthErrorKind.INVALID_OR_EXPIRED_RESET_TOKEN: 400,
}

_DEFAULT_MESSAGES: Dict[AuthErrorKind, str] = {
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid credentials",
    AuthErrorKind.ACCOUNT_LOCKED: "Account is locked",
    AuthErrorKind.ACCOUNT_INACTIVE: "Account is deactivated",
    AuthErrorKind.ACCOUNT_NOT_FOUND: "Account not found",
    AuthErrorKind.FORBIDDEN: "Insufficient permissions",
    AuthErrorKind.TOKEN_EXPIRED: "Token has expired",
    AuthErrorKind.TOKEN_MALFORMED: "Invalid token",
    AuthErrorKind.TOKEN_WRONG_CLASS: "Invalid token type",
    AuthErrorKind.REFRESH_NOT_FOUND: "Invalid refresh token",
    AuthErrorKind.REFRESH_REVOKED: "Refresh token has been revoked",
    AuthErrorKind.REFRESH_EXPIRED: "Refresh token expired",
    AuthErrorKind.API_KEY_INVALID: "Invalid API key",
    AuthErrorKind.API_KEY_EXPIRED: "API key expired",
    AuthErrorKind.API_KEY_OWNER_INACTIVE: "User account is inactive",
    AuthErrorKind.API_KEY_NOT_FOUND: "API key not found",
    AuthErrorKind.WEAK_PASSWORD: "Password does not meet strength requirements",
    AuthErrorKind.INVALID_OR_EXPIRED_RESET_TOKEN: "Invalid or expired reset token",
}


class AuthError(Exception):
    """Tagged authentication failure, mapped to an HTTP response by the API layer."""

    def __init__(
        self,
        kind: AuthErrorKind,
        message: Optional[str] = None,
        *,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        self.detail = detail or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    def __repr__(self) -> str:
        return f"<AuthError(kind={self.kind.value}, message={self.message!r})>"


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected at startup."""


__all__ = ["AuthErrorKind", "AuthError", "ConfigurationError"]
