"""
Credential verification and password policy.

Passwords are hashed with bcrypt (configurable cost, fresh salt per hash).
Machine secrets that exceed bcrypt's 72-byte input limit (signed refresh
tokens, API keys) use ``bcrypt_sha256`` instead.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List

from passlib.context import CryptContext

from app.core.errors import AuthError, AuthErrorKind

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
PASSWORD_SYMBOLS = "@$!%*?&#"

_RULES = (
    ("min_length", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
     lambda s: len(s) >= MIN_PASSWORD_LENGTH),
    ("uppercase", "Password must contain at least one uppercase letter",
     lambda s: re.search(r"[A-Z]", s) is not None),
    ("lowercase", "Password must contain at least one lowercase letter",
     lambda s: re.search(r"[a-z]", s) is not None),
    ("digit", "Password must contain at least one digit",
     lambda s: re.search(r"\d", s) is not None),
    ("symbol", f"Password must contain at least one special character ({PASSWORD_SYMBOLS})",
     lambda s: any(ch in PASSWORD_SYMBOLS for ch in s)),
)


@dataclass(frozen=True)
class PasswordStrength:
    """Result of a strength check. ``violations`` lists every failed rule code."""
    valid: bool
    violations: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)


class CredentialVerifier:
    """Salted one-way hashing and comparison of secrets."""

    def __init__(self, rounds: int = 12, scheme: str = "bcrypt"):
        self.scheme = scheme
        self._context = CryptContext(
            schemes=[scheme],
            deprecated="auto",
            **{f"{scheme}__rounds": rounds},
        )
        # Compared against when the account does not exist, so unknown
        # usernames cost the same as wrong passwords.
        self.dummy_hash = self._context.hash("never-a-real-credential-0000")

    def hash(self, secret: str) -> str:
        return self._context.hash(secret)

    def verify(self, secret: str, hashed: str) -> bool:
        """Compare a secret with a stored hash. Malformed hashes verify as False."""
        if not secret or not hashed:
            return False
        try:
            return self._context.verify(secret, hashed)
        except (ValueError, TypeError) as e:
            logger.warning(f"Unverifiable {self.scheme} hash: {e}")
            return False

    def burn(self, secret: str) -> None:
        """Spend one verification's worth of time without a real hash."""
        self.verify(secret or "x", self.dummy_hash)

    @staticmethod
    def check_strength(secret: str) -> PasswordStrength:
        secret = secret or ""
        violations = []
        messages = []
        for code, message, passes in _RULES:
            if not passes(secret):
                violations.append(code)
                messages.append(message)
        return PasswordStrength(valid=not violations, violations=violations, messages=messages)

    @classmethod
    def require_strong(cls, secret: str) -> None:
        """Raise ``WeakPassword`` listing every violated rule."""
        result = cls.check_strength(secret)
        if not result.valid:
            raise AuthError(
                AuthErrorKind.WEAK_PASSWORD,
                "; ".join(result.messages),
                detail={"violations": result.violations, "messages": result.messages},
            )
