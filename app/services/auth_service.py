"""Authentication service: login, logout, refresh rotation, API keys, password reset."""

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.errors import AuthError, AuthErrorKind
from app.core.permissions import CATALOGUE_VERSION, EMAIL_LOGIN_ROLE, sorted_permissions
from app.core.timeutils import as_utc, utcnow
from app.models.account import Account
from app.models.api_key import ApiKey
from app.services.api_key_service import ApiKeyLedger, IssuedApiKey
from app.services.audit_service import AuditEvent, AuditService
from app.services.lockout_service import LockoutTracker
from app.services.password_service import CredentialVerifier, PasswordStrength
from app.services.refresh_token_service import ClientContext, RefreshTokenLedger
from app.services.token_service import TokenClass, TokenCodec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSummary:
    id: str
    username: str
    email: str
    role: str
    permissions: List[str] = field(default_factory=list)
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountSummary":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            permissions=sorted_permissions(account.role),
            first_name=account.first_name,
            last_name=account.last_name,
        )


@dataclass(frozen=True)
class SessionTokens:
    """Token pair handed to the client. ``refresh_token`` is never shown again."""
    account: AccountSummary
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class AuthService:
    """Composes credential checks, lockout, token minting and the ledgers."""

    def __init__(
        self,
        settings: Settings,
        verifier: CredentialVerifier,
        codec: TokenCodec,
        lockout: LockoutTracker,
        refresh_tokens: RefreshTokenLedger,
        api_keys: ApiKeyLedger,
        notifier: Any,
        audit: Any,
    ):
        self.settings = settings
        self.verifier = verifier
        self.codec = codec
        self.lockout = lockout
        self.refresh_tokens = refresh_tokens
        self.api_keys = api_keys
        self.notifier = notifier
        self.audit = audit
        self.remember_me_ttl = timedelta(minutes=settings.remember_me_access_token_expire_minutes)
        self.reset_ttl = timedelta(minutes=settings.password_reset_expire_minutes)

    @classmethod
    def from_settings(cls, settings: Settings, notifier: Any, audit: Any) -> "AuthService":
        """Wire the full service graph. Raises ``ConfigurationError`` on bad secrets."""
        codec = TokenCodec(settings)
        token_hasher = CredentialVerifier(rounds=settings.token_hash_rounds, scheme="bcrypt_sha256")
        return cls(
            settings=settings,
            verifier=CredentialVerifier(rounds=settings.password_hash_rounds),
            codec=codec,
            lockout=LockoutTracker(settings),
            refresh_tokens=RefreshTokenLedger(settings, codec, token_hasher),
            api_keys=ApiKeyLedger(settings, token_hasher),
            notifier=notifier,
            audit=audit,
        )

    # ─── Helpers ────────────────────────────────
    def _audit(
        self,
        action: str,
        account: Optional[Account] = None,
        success: bool = True,
        context: Optional[ClientContext] = None,
        username: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        context = context or ClientContext()
        try:
            self.audit.record(
                AuditEvent(
                    action=action,
                    account_id=account.id if account else None,
                    username=account.username if account else (username or None),
                    success=success,
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                    metadata=metadata,
                )
            )
        except Exception as e:
            logger.warning(f"Audit sink rejected {action}: {e}")

    async def _notify(self, pending: Awaitable) -> None:
        try:
            await pending
        except Exception as e:
            logger.error(f"Notification delivery failed: {e}")

    def _mint_access(self, account: Account, ttl: Optional[timedelta] = None) -> str:
        return self.codec.mint_access(
            account.id,
            claims={
                "username": account.username,
                "role": account.role,
                "permissions": sorted_permissions(account.role),
                "pv": CATALOGUE_VERSION,
            },
            ttl=ttl,
        )

    @staticmethod
    def _reset_digest(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    # ─── Account Lookup ─────────────────────────
    @staticmethod
    async def get_account_by_id(db: AsyncSession, account_id: str) -> Optional[Account]:
        return await db.get(Account, account_id)

    @staticmethod
    async def get_account_by_username(db: AsyncSession, username: str) -> Optional[Account]:
        result = await db.execute(select(Account).where(Account.username == username))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_account_by_email_and_role(db: AsyncSession, email: str, role: str) -> Optional[Account]:
        result = await db.execute(
            select(Account).where(Account.email == email.strip().lower(), Account.role == role)
        )
        return result.scalar_one_or_none()

    async def resolve_identifier(self, db: AsyncSession, identifier: str) -> Optional[Account]:
        """Username first; portal patients may also sign in with their email."""
        identifier = (identifier or "").strip()
        if not identifier:
            return None
        account = await self.get_account_by_username(db, identifier)
        if account is None and "@" in identifier:
            account = await self.get_account_by_email_and_role(db, identifier, EMAIL_LOGIN_ROLE.value)
        return account

    # ─── Login ──────────────────────────────────
    async def login(
        self,
        db: AsyncSession,
        identifier: str,
        secret: str,
        context: Optional[ClientContext] = None,
        remember_me: bool = False,
    ) -> SessionTokens:
        account = await self.resolve_identifier(db, identifier)
        if account is None:
            # Same hashing cost and error as a wrong password
            self.verifier.burn(secret)
            self._audit(AuditService.ACTION_FAILED_LOGIN, success=False, context=context,
                        username=(identifier or "")[:100], reason="unknown_identifier")
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

        try:
            await self.lockout.ensure_not_locked(db, account)
        except AuthError:
            self._audit(AuditService.ACTION_FAILED_LOGIN, account, success=False, context=context,
                        reason="locked")
            raise

        if not account.is_active:
            self._audit(AuditService.ACTION_FAILED_LOGIN, account, success=False, context=context,
                        reason="inactive")
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE)

        if not self.verifier.verify(secret, account.password_hash):
            state = await self.lockout.record_failure(db, account)
            self._audit(AuditService.ACTION_FAILED_LOGIN, account, success=False, context=context,
                        reason="bad_password", failed_attempts=account.failed_login_attempts)
            if state.is_locked:
                self._audit(AuditService.ACTION_LOCKOUT, account, context=context,
                            locked_until=state.locked_until.isoformat())
                raise self.lockout.locked_error(state.locked_until)
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)

        await self.lockout.record_success(db, account)
        account.last_login = utcnow()

        access_ttl = self.remember_me_ttl if remember_me else self.codec.access_ttl
        access_token = self._mint_access(account, access_ttl)
        issued = await self.refresh_tokens.issue(db, account.id, context=context)
        await db.flush()

        self._audit(AuditService.ACTION_LOGIN, account, context=context, remember_me=remember_me)
        logger.info(f"Login succeeded for account {account.id[:8]}...")

        return SessionTokens(
            account=AccountSummary.from_account(account),
            access_token=access_token,
            refresh_token=issued.cleartext,
            expires_in=int(access_ttl.total_seconds()),
        )

    # ─── Logout ─────────────────────────────────
    async def logout(
        self,
        db: AsyncSession,
        refresh_token: str,
        context: Optional[ClientContext] = None,
    ) -> bool:
        """Revoke the presented refresh token. Always reports success."""
        revoked = await self.refresh_tokens.revoke(db, refresh_token)
        if revoked:
            self._audit(AuditService.ACTION_LOGOUT, context=context)
        else:
            logger.debug("Logout with unknown or already revoked refresh token")
        return True

    async def logout_all(
        self,
        db: AsyncSession,
        account: Account,
        context: Optional[ClientContext] = None,
    ) -> int:
        count = await self.refresh_tokens.revoke_all(db, account.id)
        self._audit(AuditService.ACTION_LOGOUT_ALL, account, context=context, revoked=count)
        return count

    # ─── Refresh (Rotation) ─────────────────────
    async def refresh(
        self,
        db: AsyncSession,
        refresh_token: str,
        context: Optional[ClientContext] = None,
    ) -> SessionTokens:
        try:
            rotation = await self.refresh_tokens.validate_and_rotate(db, refresh_token, context)
        except AuthError as e:
            if e.kind == AuthErrorKind.REFRESH_REVOKED:
                self._audit(AuditService.ACTION_TOKEN_REUSE, success=False, context=context)
            raise

        account = await self.get_account_by_id(db, rotation.account_id)
        if account is None or not account.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE)

        access_token = self._mint_access(account)
        self._audit(AuditService.ACTION_TOKEN_REFRESH, account, context=context)

        return SessionTokens(
            account=AccountSummary.from_account(account),
            access_token=access_token,
            refresh_token=rotation.cleartext,
            expires_in=int(self.codec.access_ttl.total_seconds()),
        )

    # ─── Request Authentication ─────────────────
    async def authenticate_access_token(self, db: AsyncSession, token: str) -> Account:
        claims = self.codec.verify(token, TokenClass.ACCESS)
        account = await self.get_account_by_id(db, claims.subject)
        if account is None:
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
        if not account.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE)
        return account

    async def authenticate_api_key(self, db: AsyncSession, api_key: str) -> Account:
        return await self.api_keys.validate(db, api_key)

    # ─── API Keys ───────────────────────────────
    async def issue_api_key(
        self,
        db: AsyncSession,
        account: Account,
        label: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        context: Optional[ClientContext] = None,
    ) -> IssuedApiKey:
        if not account.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE)

        issued = await self.api_keys.issue(db, account.id, label, expires_at)
        self._audit(AuditService.ACTION_API_KEY_CREATE, account, context=context,
                    key_id=issued.record.id, prefix=issued.record.key_prefix)
        await self._notify(
            self.notifier.send_api_key_created(
                account.email, account.display_name, issued.record.label, issued.record.key_prefix
            )
        )
        return issued

    async def list_api_keys(
        self,
        db: AsyncSession,
        account: Account,
        include_inactive: bool = False,
    ) -> List[ApiKey]:
        return await self.api_keys.list(db, account.id, include_inactive=include_inactive)

    async def revoke_api_key(
        self,
        db: AsyncSession,
        account: Account,
        key_id: str,
        context: Optional[ClientContext] = None,
    ) -> None:
        await self.api_keys.revoke(db, key_id, account.id)
        self._audit(AuditService.ACTION_API_KEY_REVOKE, account, context=context, key_id=key_id)

    # ─── Password Reset ─────────────────────────
    async def request_password_reset(
        self,
        db: AsyncSession,
        email: str,
        context: Optional[ClientContext] = None,
    ) -> None:
        """
        Start a password reset. Returns nothing whether or not the email is known.

        Every active account registered with the address gets its own
        single-use token; the email carries the token, the row only its digest.
        """
        normalized = (email or "").strip().lower()
        result = await db.execute(
            select(Account).where(Account.email == normalized, Account.is_active.is_(True))
        )
        accounts = list(result.scalars().all())

        if not accounts:
            # Response is identical either way; mail goes out on a background task
            self._audit(AuditService.ACTION_PASSWORD_RESET_REQUEST, success=False, context=context,
                        username=normalized[:100])
            return

        expires_at = utcnow() + self.reset_ttl
        for account in accounts:
            token = secrets.token_hex(32)
            account.password_reset_token_hash = self._reset_digest(token)
            account.password_reset_expires_at = expires_at
            await db.flush()

            self._audit(AuditService.ACTION_PASSWORD_RESET_REQUEST, account, context=context)
            await self._notify(self.notifier.send_password_reset(account.email, account.display_name, token))

    async def reset_password(
        self,
        db: AsyncSession,
        reset_token: str,
        new_password: str,
        context: Optional[ClientContext] = None,
    ) -> None:
        if not reset_token:
            raise AuthError(AuthErrorKind.INVALID_OR_EXPIRED_RESET_TOKEN)

        result = await db.execute(
            select(Account).where(Account.password_reset_token_hash == self._reset_digest(reset_token))
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AuthError(AuthErrorKind.INVALID_OR_EXPIRED_RESET_TOKEN)

        expires_at = as_utc(account.password_reset_expires_at)
        if expires_at is None or expires_at <= utcnow():
            raise AuthError(AuthErrorKind.INVALID_OR_EXPIRED_RESET_TOKEN)

        self.verifier.require_strong(new_password)

        account.password_hash = self.verifier.hash(new_password)
        account.password_reset_token_hash = None
        account.password_reset_expires_at = None
        await self.lockout.reset(db, account)

        # Force re-authentication everywhere
        revoked = await self.refresh_tokens.revoke_all(db, account.id)

        self._audit(AuditService.ACTION_PASSWORD_RESET, account, context=context, sessions_revoked=revoked)
        logger.info(f"Password reset completed for account {account.id[:8]}..., all sessions invalidated")
        await self._notify(self.notifier.send_password_changed(account.email, account.display_name))

    async def change_password(
        self,
        db: AsyncSession,
        account: Account,
        current_password: str,
        new_password: str,
        context: Optional[ClientContext] = None,
    ) -> int:
        """Change a signed-in account's password. Returns the number of sessions revoked."""
        if not self.verifier.verify(current_password, account.password_hash):
            self._audit(AuditService.ACTION_PASSWORD_CHANGE, account, success=False, context=context)
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "Current password is incorrect")

        self.verifier.require_strong(new_password)

        account.password_hash = self.verifier.hash(new_password)
        await db.flush()
        revoked = await self.refresh_tokens.revoke_all(db, account.id)

        self._audit(AuditService.ACTION_PASSWORD_CHANGE, account, context=context, sessions_revoked=revoked)
        await self._notify(self.notifier.send_password_changed(account.email, account.display_name))
        return revoked

    def check_strength(self, secret: str) -> PasswordStrength:
        return self.verifier.check_strength(secret)

    # ─── Administration ─────────────────────────
    async def unlock_account(
        self,
        db: AsyncSession,
        account_id: str,
        actor: Optional[Account] = None,
        context: Optional[ClientContext] = None,
    ) -> Account:
        account = await self.get_account_by_id(db, account_id)
        if account is None:
            raise AuthError(AuthErrorKind.ACCOUNT_NOT_FOUND)

        await self.lockout.reset(db, account)
        self._audit(AuditService.ACTION_ACCOUNT_UNLOCK, account, context=context,
                    actor_id=actor.id if actor else None)
        return account
