"""
Unit tests for the stateless auth building blocks.

Run with: pytest tests/test_services.py -v
"""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest
from jose import jwt
from pydantic import ValidationError

from app.core.errors import AuthError, AuthErrorKind, ConfigurationError
from tests.conftest import ACCESS_SECRET, REFRESH_SECRET


# ============================================
# CredentialVerifier Tests
# ============================================

class TestCredentialVerifier:
    """Tests for hashing and the password strength policy."""

    def test_hash_and_verify(self, password_hasher):
        hashed = password_hasher.hash("Abc123!@")

        assert hashed != "Abc123!@"
        assert hashed.startswith("$2b$")
        assert password_hasher.verify("Abc123!@", hashed) is True
        assert password_hasher.verify("Abc123!#", hashed) is False

    def test_hashes_are_salted(self, password_hasher):
        assert password_hasher.hash("Abc123!@") != password_hasher.hash("Abc123!@")

    def test_default_cost_is_twelve(self):
        from app.services.password_service import CredentialVerifier

        hashed = CredentialVerifier().hash("Abc123!@")
        assert hashed.split("$")[2] == "12"

    def test_verify_rejects_empty_and_malformed(self, password_hasher):
        hashed = password_hasher.hash("Abc123!@")

        assert password_hasher.verify("", hashed) is False
        assert password_hasher.verify("Abc123!@", "") is False
        assert password_hasher.verify("Abc123!@", "not-a-bcrypt-hash") is False

    def test_long_machine_secrets_are_not_truncated(self):
        from app.services.password_service import CredentialVerifier

        hasher = CredentialVerifier(rounds=4, scheme="bcrypt_sha256")
        secret = "x" * 100
        hashed = hasher.hash(secret)

        assert hasher.verify(secret, hashed) is True
        assert hasher.verify("x" * 99 + "y", hashed) is False

    def test_weak_password_lists_missing_rules(self):
        """abc12345 lacks an uppercase letter and a symbol."""
        from app.services.password_service import CredentialVerifier

        result = CredentialVerifier.check_strength("abc12345")

        assert result.valid is False
        assert set(result.violations) == {"uppercase", "symbol"}
        assert len(result.messages) == 2

    def test_strong_password_passes(self):
        from app.services.password_service import CredentialVerifier

        result = CredentialVerifier.check_strength("Abc123!@")

        assert result.valid is True
        assert result.violations == []

    def test_empty_password_violates_every_rule(self):
        from app.services.password_service import CredentialVerifier

        result = CredentialVerifier.check_strength("")

        assert result.violations == ["min_length", "uppercase", "lowercase", "digit", "symbol"]

    def test_require_strong_raises_weak_password(self):
        from app.services.password_service import CredentialVerifier

        with pytest.raises(AuthError) as exc_info:
            CredentialVerifier.require_strong("short")

        assert exc_info.value.kind == AuthErrorKind.WEAK_PASSWORD
        assert exc_info.value.status_code == 400
        assert "min_length" in exc_info.value.detail["violations"]


# ============================================
# TokenCodec Tests
# ============================================

class TestTokenCodec:
    """Tests for signed token minting and verification."""

    @pytest.fixture
    def codec(self, settings):
        from app.services.token_service import TokenCodec

        return TokenCodec(settings)

    def test_access_round_trip(self, codec):
        from app.services.token_service import TokenClass

        token = codec.mint_access("acc-1", claims={"role": "ADMIN", "permissions": ["users.read"]})
        claims = codec.verify(token, TokenClass.ACCESS)

        assert claims.subject == "acc-1"
        assert claims.token_class == TokenClass.ACCESS
        assert claims.issuer == "nutrivault"
        assert claims.audience == "nutrivault-api"
        assert claims.role == "ADMIN"
        assert claims.permissions == ["users.read"]
        assert claims.expires_at - claims.issued_at == timedelta(minutes=30)

    def test_refresh_lifetime_is_thirty_days(self, codec):
        from app.services.token_service import TokenClass

        claims = codec.verify(codec.mint_refresh("acc-1"), TokenClass.REFRESH)

        assert claims.expires_at - claims.issued_at == timedelta(days=30)
        assert claims.jti

    def test_refresh_tokens_are_unique(self, codec):
        assert codec.mint_refresh("acc-1") != codec.mint_refresh("acc-1")

    def test_wrong_class_rejected(self, codec):
        from app.services.token_service import TokenClass

        with pytest.raises(AuthError) as exc_info:
            codec.verify(codec.mint_refresh("acc-1"), TokenClass.ACCESS)
        assert exc_info.value.kind == AuthErrorKind.TOKEN_WRONG_CLASS

        with pytest.raises(AuthError) as exc_info:
            codec.verify(codec.mint_access("acc-1"), TokenClass.REFRESH)
        assert exc_info.value.kind == AuthErrorKind.TOKEN_WRONG_CLASS

    def test_expired_token(self, codec):
        from app.services.token_service import TokenClass

        token = codec.mint_access("acc-1", ttl=timedelta(seconds=-5))

        with pytest.raises(AuthError) as exc_info:
            codec.verify(token, TokenClass.ACCESS)
        assert exc_info.value.kind == AuthErrorKind.TOKEN_EXPIRED

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed_token(self, codec, token):
        from app.services.token_service import TokenClass

        with pytest.raises(AuthError) as exc_info:
            codec.verify(token, TokenClass.ACCESS)
        assert exc_info.value.kind == AuthErrorKind.TOKEN_MALFORMED

    def test_tampered_signature(self, codec):
        from app.services.token_service import TokenClass

        forged = jwt.encode(
            {"sub": "acc-1", "type": "access", "iss": "nutrivault", "aud": "nutrivault-api",
             "iat": 0, "exp": 4102444800},
            "another-secret-that-is-long-enough-0000",
            algorithm="HS256",
        )
        with pytest.raises(AuthError) as exc_info:
            codec.verify(forged, TokenClass.ACCESS)
        assert exc_info.value.kind == AuthErrorKind.TOKEN_MALFORMED

    def test_refresh_class_claim_with_access_secret_is_malformed(self, codec):
        """A token claiming the refresh class must carry the refresh signature."""
        from app.services.token_service import TokenClass

        forged = jwt.encode(
            {"sub": "acc-1", "type": "refresh", "iss": "nutrivault", "aud": "nutrivault-api",
             "iat": 0, "exp": 4102444800},
            ACCESS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(AuthError) as exc_info:
            codec.verify(forged, TokenClass.REFRESH)
        assert exc_info.value.kind == AuthErrorKind.TOKEN_MALFORMED

    def test_wrong_audience(self, codec, settings):
        from app.services.token_service import TokenClass, TokenCodec

        other = TokenCodec(settings.model_copy(update={"jwt_audience": "someone-else"}))
        with pytest.raises(AuthError) as exc_info:
            codec.verify(other.mint_access("acc-1"), TokenClass.ACCESS)
        assert exc_info.value.kind == AuthErrorKind.TOKEN_MALFORMED

    def test_zero_lifetime_is_honoured(self, codec):
        claims = jwt.get_unverified_claims(codec.mint_access("acc-1", ttl=timedelta(0)))
        assert claims["exp"] == claims["iat"]

        claims = jwt.get_unverified_claims(codec.mint_refresh("acc-1", ttl=timedelta(0)))
        assert claims["exp"] == claims["iat"]

    def test_reserved_claims_cannot_be_overridden(self, codec):
        with pytest.raises(ValueError):
            codec.mint_access("acc-1", claims={"sub": "someone-else"})

    def test_rejects_short_secret(self, settings):
        from app.services.token_service import TokenCodec

        with pytest.raises(ConfigurationError):
            TokenCodec(settings.model_copy(update={"jwt_access_secret": "short"}))

    def test_rejects_shared_secret(self, settings):
        from app.services.token_service import TokenCodec

        with pytest.raises(ConfigurationError):
            TokenCodec(settings.model_copy(update={"jwt_refresh_secret": ACCESS_SECRET}))


# ============================================
# Settings Tests
# ============================================

class TestSettings:
    """Tests for startup configuration validation."""

    def test_defaults(self, settings):
        assert settings.access_token_expire_minutes == 30
        assert settings.refresh_token_expire_days == 30
        assert settings.max_login_attempts == 5
        assert settings.lockout_duration_minutes == 30
        assert settings.password_reset_expire_minutes == 60

    def test_short_secret_fails_fast(self):
        from app.core.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None, jwt_access_secret="too-short", jwt_refresh_secret=REFRESH_SECRET)

    def test_identical_secrets_fail_fast(self):
        from app.core.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None, jwt_access_secret=ACCESS_SECRET, jwt_refresh_secret=ACCESS_SECRET)

    def test_comma_separated_lists(self, settings):
        updated = settings.model_copy(update={"cors_origins": "https://a.example, https://b.example"})
        assert updated.cors_origins_list == ["https://a.example", "https://b.example"]


# ============================================
# Permissions / Errors / Rate limiter
# ============================================

class TestPermissions:

    def test_role_permissions(self):
        from app.core.permissions import has_permission, sorted_permissions

        assert has_permission("ADMIN", "users.update") is True
        assert has_permission("VIEWER", "users.update") is False
        assert has_permission("UNKNOWN", "patients.read") is False
        assert sorted_permissions("PATIENT") == ["portal.messages", "portal.read"]


class TestAuthError:

    def test_status_codes_and_messages(self):
        assert AuthError(AuthErrorKind.ACCOUNT_LOCKED).status_code == 423
        assert AuthError(AuthErrorKind.API_KEY_OWNER_INACTIVE).status_code == 403
        assert AuthError(AuthErrorKind.INVALID_CREDENTIALS).message == "Invalid credentials"
        assert AuthError(AuthErrorKind.INVALID_CREDENTIALS, "custom").message == "custom"


class TestRateLimiter:

    def test_blocks_after_limit(self):
        from app.core.rate_limiter import RateLimitConfig, RateLimiter

        limiter = RateLimiter({"login_ip": RateLimitConfig(max_requests=2, window_seconds=60)})

        assert limiter.is_allowed("login_ip", "1.2.3.4") == (True, 0)
        assert limiter.is_allowed("login_ip", "1.2.3.4") == (True, 0)
        allowed, retry_after = limiter.is_allowed("login_ip", "1.2.3.4")
        assert allowed is False
        assert 1 <= retry_after <= 61

        # Other clients are unaffected
        assert limiter.is_allowed("login_ip", "5.6.7.8")[0] is True

    def test_reset_and_unknown_type(self):
        from app.core.rate_limiter import RateLimitConfig, RateLimiter

        limiter = RateLimiter({"login_ip": RateLimitConfig(max_requests=1, window_seconds=60)})
        limiter.is_allowed("login_ip", "ip")
        limiter.reset("login_ip", "ip")

        assert limiter.is_allowed("login_ip", "ip")[0] is True
        assert limiter.is_allowed("no_such_limit", "ip") == (True, 0)


# ============================================
# EmailService Tests
# ============================================

class TestEmailService:
    """Recipients must never appear in full in the logs."""

    @pytest.mark.asyncio
    async def test_console_mode_masks_recipient(self, settings, caplog):
        from app.services.email_service import EmailService

        service = EmailService(settings)
        assert service.is_configured is False

        with caplog.at_level(logging.INFO, logger="app.services.email_service"):
            assert await service.send_password_reset("j.dupont@example.com", "Jeanne", "a" * 64) is True

        assert "j.dupont@example.com" not in caplog.text
        assert "j.d***" in caplog.text
        assert "a" * 64 not in caplog.text

    def test_smtp_success_masks_recipient(self, settings, caplog):
        from app.services.email_service import EmailService

        service = EmailService(settings.model_copy(update={"smtp_host": "smtp.example.com"}))
        with patch("app.services.email_service.smtplib.SMTP"):
            with caplog.at_level(logging.INFO, logger="app.services.email_service"):
                assert service._send_smtp("j.dupont@example.com", "Subject", "Body", None) is True

        assert "j.dupont@example.com" not in caplog.text

    def test_rate_limit_warning_omits_identifier(self, caplog):
        from fastapi import HTTPException

        from app.api.routes.auth import check_rate_limit
        from app.core.rate_limiter import rate_limiter

        rate_limiter.clear()
        with caplog.at_level(logging.WARNING, logger="app.api.routes.auth"):
            with pytest.raises(HTTPException):
                for _ in range(4):
                    check_rate_limit("password_reset_email", "j.dupont@example.com")
        rate_limiter.clear()

        assert "Rate limit exceeded for password_reset_email" in caplog.text
        assert "j.dupont" not in caplog.text
