"""
Refresh token ledger: issuance, single-use rotation, revocation.

A refresh token is a signed token of class ``refresh`` returned to the
client exactly once. The database keeps only:
- a salted slow hash of the token (final comparison)
- a short HMAC digest of the token (narrows lookup to a handful of rows)

Rotation revokes the presented record with a conditional UPDATE, so when
the same token is presented twice concurrently only one request wins and
the other observes ``REFRESH_REVOKED``.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.errors import AuthError, AuthErrorKind
from app.core.timeutils import as_utc, utcnow
from app.models.refresh_token import RefreshToken
from app.services.password_service import CredentialVerifier
from app.services.token_service import TokenClass, TokenCodec

logger = logging.getLogger(__name__)

LOOKUP_DIGEST_LENGTH = 24


@dataclass(frozen=True)
class ClientContext:
    """Where a request came from; stored with refresh records for forensics."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class IssuedRefreshToken:
    cleartext: str
    record: RefreshToken


@dataclass(frozen=True)
class RotationResult:
    account_id: str
    cleartext: str
    record: RefreshToken


class RefreshTokenLedger:
    """Persistent record of issued refresh tokens."""

    def __init__(self, settings: Settings, codec: TokenCodec, hasher: CredentialVerifier):
        self.codec = codec
        self.hasher = hasher
        self._lookup_key = settings.jwt_refresh_secret.encode("utf-8")

    def lookup_digest(self, cleartext: str) -> str:
        mac = hmac.new(self._lookup_key, cleartext.encode("utf-8"), hashlib.sha256)
        return mac.hexdigest()[:LOOKUP_DIGEST_LENGTH]

    async def issue(
        self,
        db: AsyncSession,
        account_id: str,
        ttl: Optional[timedelta] = None,
        context: Optional[ClientContext] = None,
    ) -> IssuedRefreshToken:
        if ttl is None:
            ttl = self.codec.refresh_ttl
        context = context or ClientContext()

        cleartext = self.codec.mint_refresh(account_id, ttl)
        record = RefreshToken(
            account_id=account_id,
            lookup_digest=self.lookup_digest(cleartext),
            token_hash=self.hasher.hash(cleartext),
            expires_at=utcnow() + ttl,
            ip_address=context.ip_address,
            user_agent=context.user_agent[:500] if context.user_agent else None,
        )
        db.add(record)
        await db.flush()

        logger.debug(f"Refresh token issued for account {account_id[:8]}...")
        return IssuedRefreshToken(cleartext=cleartext, record=record)

    async def find(self, db: AsyncSession, cleartext: str) -> Optional[RefreshToken]:
        """Record whose hash matches the presented token, revoked or not."""
        if not cleartext:
            return None

        result = await db.execute(
            select(RefreshToken)
            .where(RefreshToken.lookup_digest == self.lookup_digest(cleartext))
            .order_by(RefreshToken.created_at.desc())
        )
        for record in result.scalars().all():
            if self.hasher.verify(cleartext, record.token_hash):
                return record
        return None

    async def validate_and_rotate(
        self,
        db: AsyncSession,
        cleartext: str,
        context: Optional[ClientContext] = None,
    ) -> RotationResult:
        """
        Consume a refresh token and issue its replacement.

        Raises:
            AuthError: ``REFRESH_NOT_FOUND``, ``REFRESH_REVOKED`` or ``REFRESH_EXPIRED``
        """
        # Signature and expiry first, so a token whose record was already
        # purged still reports REFRESH_EXPIRED
        try:
            claims = self.codec.verify(cleartext, TokenClass.REFRESH)
        except AuthError as e:
            if e.kind == AuthErrorKind.TOKEN_EXPIRED:
                raise AuthError(AuthErrorKind.REFRESH_EXPIRED)
            raise AuthError(AuthErrorKind.REFRESH_NOT_FOUND)

        record = await self.find(db, cleartext)
        if record is None:
            raise AuthError(AuthErrorKind.REFRESH_NOT_FOUND)

        if record.revoked_at is not None:
            logger.warning(
                f"Revoked refresh token presented for account {record.account_id[:8]}... (possible replay)"
            )
            raise AuthError(AuthErrorKind.REFRESH_REVOKED)

        now = utcnow()
        if as_utc(record.expires_at) <= now:
            raise AuthError(AuthErrorKind.REFRESH_EXPIRED)

        if claims.subject != record.account_id:
            raise AuthError(AuthErrorKind.REFRESH_NOT_FOUND)

        # Compare-and-set: only the request that flips revoked_at may rotate
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AuthError(AuthErrorKind.REFRESH_REVOKED)
        await db.refresh(record, attribute_names=["revoked_at"])

        issued = await self.issue(db, record.account_id, context=context)
        logger.info(f"Refresh token rotated for account {record.account_id[:8]}...")

        return RotationResult(
            account_id=record.account_id,
            cleartext=issued.cleartext,
            record=issued.record,
        )

    async def revoke(self, db: AsyncSession, cleartext: str) -> bool:
        """Revoke one token. Returns False when nothing live matched."""
        record = await self.find(db, cleartext)
        if record is None or record.revoked_at is not None:
            return False

        record.revoked_at = utcnow()
        await db.flush()
        return True

    async def revoke_all(self, db: AsyncSession, account_id: str) -> int:
        """Revoke every live token of an account. Returns the number revoked."""
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.account_id == account_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        count = result.rowcount
        if count:
            logger.info(f"Revoked {count} refresh tokens for account {account_id[:8]}...")
        return count

    async def purge_expired(self, db: AsyncSession) -> int:
        """Delete records past expiry. Call periodically."""
        result = await db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < utcnow())
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount
        if count > 0:
            logger.info(f"Purged {count} expired refresh tokens")
        return count
