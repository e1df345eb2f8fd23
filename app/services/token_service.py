"""
Signed access/refresh token codec.

Tokens are compact JWS (header.claims.signature) signed with HS256. Access
and refresh tokens use distinct secrets and carry a ``type`` claim so one
class can never be accepted where the other is expected.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from app.core.config import MIN_SECRET_BYTES, Settings
from app.core.errors import AuthError, AuthErrorKind, ConfigurationError

logger = logging.getLogger(__name__)

RESERVED_CLAIMS = frozenset({"sub", "type", "iss", "aud", "iat", "exp", "jti"})


class TokenClass(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Verified token contents."""
    subject: str
    token_class: TokenClass
    issuer: str
    audience: str
    issued_at: datetime
    expires_at: datetime
    jti: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def role(self) -> Optional[str]:
        return self.extra.get("role")

    @property
    def permissions(self) -> List[str]:
        return list(self.extra.get("permissions", []))


class TokenCodec:
    """Stateless creation and verification of signed, expiring tokens."""

    def __init__(self, settings: Settings):
        self._secrets = {
            TokenClass.ACCESS: settings.jwt_access_secret,
            TokenClass.REFRESH: settings.jwt_refresh_secret,
        }
        for token_class, secret in self._secrets.items():
            if not secret:
                raise ConfigurationError(f"Missing {token_class.value} token signing secret")
            if len(secret.encode("utf-8")) < MIN_SECRET_BYTES:
                raise ConfigurationError(
                    f"{token_class.value} token signing secret must be at least {MIN_SECRET_BYTES} bytes"
                )
        if self._secrets[TokenClass.ACCESS] == self._secrets[TokenClass.REFRESH]:
            raise ConfigurationError("Access and refresh tokens must use different secrets")

        self.algorithm = settings.jwt_algorithm
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.access_ttl = timedelta(minutes=settings.access_token_expire_minutes)
        self.refresh_ttl = timedelta(days=settings.refresh_token_expire_days)

    # ─── Minting ────────────────────────────────
    def mint_access(
        self,
        account_id: str,
        claims: Optional[Mapping[str, Any]] = None,
        ttl: Optional[timedelta] = None,
    ) -> str:
        if ttl is None:
            ttl = self.access_ttl
        return self._mint(TokenClass.ACCESS, account_id, ttl, claims)

    def mint_refresh(
        self,
        account_id: str,
        ttl: Optional[timedelta] = None,
        jti: Optional[str] = None,
    ) -> str:
        if ttl is None:
            ttl = self.refresh_ttl
        return self._mint(TokenClass.REFRESH, account_id, ttl, None, jti=jti)

    def _mint(
        self,
        token_class: TokenClass,
        account_id: str,
        ttl: timedelta,
        claims: Optional[Mapping[str, Any]],
        jti: Optional[str] = None,
    ) -> str:
        extra = dict(claims or {})
        clash = RESERVED_CLAIMS.intersection(extra)
        if clash:
            raise ValueError(f"Reserved claims cannot be overridden: {sorted(clash)}")

        now = datetime.now(timezone.utc)
        payload = {
            **extra,
            "sub": str(account_id),
            "type": token_class.value,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": jti or secrets.token_urlsafe(32),
        }
        return jwt.encode(payload, self._secrets[token_class], algorithm=self.algorithm)

    # ─── Verification ───────────────────────────
    def verify(self, token: str, expected_class: TokenClass) -> TokenClaims:
        """
        Verify signature, issuer, audience, expiry and class.

        Raises:
            AuthError: ``TOKEN_EXPIRED``, ``TOKEN_MALFORMED`` or ``TOKEN_WRONG_CLASS``
        """
        if not isinstance(token, str) or not token:
            raise AuthError(AuthErrorKind.TOKEN_MALFORMED)

        # The claimed class selects the secret; the signature check below
        # decides whether that claim is trustworthy.
        try:
            unverified = jwt.get_unverified_claims(token)
            claimed_class = TokenClass(unverified.get("type"))
        except (JWTError, ValueError, AttributeError):
            raise AuthError(AuthErrorKind.TOKEN_MALFORMED)

        try:
            payload = jwt.decode(
                token,
                self._secrets[claimed_class],
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "require_iat": True, "require_sub": True},
            )
        except ExpiredSignatureError:
            raise AuthError(AuthErrorKind.TOKEN_EXPIRED)
        except JWTError as e:
            logger.debug(f"Token rejected: {e}")
            raise AuthError(AuthErrorKind.TOKEN_MALFORMED)

        if claimed_class != expected_class:
            logger.warning(
                f"{claimed_class.value} token presented where {expected_class.value} token expected"
            )
            raise AuthError(AuthErrorKind.TOKEN_WRONG_CLASS)

        return TokenClaims(
            subject=payload["sub"],
            token_class=claimed_class,
            issuer=payload["iss"],
            audience=payload["aud"],
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            jti=payload.get("jti", ""),
            extra={k: v for k, v in payload.items() if k not in RESERVED_CLAIMS},
        )
