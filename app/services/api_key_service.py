"""API key ledger: issuance, validation with usage tracking, soft revocation."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.errors import AuthError, AuthErrorKind
from app.core.timeutils import as_utc, utcnow
from app.models.account import Account
from app.models.api_key import ApiKey
from app.services.password_service import CredentialVerifier

logger = logging.getLogger(__name__)

KEY_RANDOM_BYTES = 32
PREFIX_RANDOM_CHARS = 12
DEFAULT_LABEL = "API Key"


@dataclass(frozen=True)
class IssuedApiKey:
    cleartext: str
    record: ApiKey


class ApiKeyLedger:
    """
    Persistent record of long-lived machine keys.

    Keys look like ``nv_ak_<64 hex chars>``. The first characters (fixed
    prefix plus a little random material) are stored in clear to narrow
    lookups; the whole key only ever exists as a salted hash.
    """

    def __init__(self, settings: Settings, hasher: CredentialVerifier):
        self.prefix = settings.api_key_prefix
        self.hasher = hasher

    def display_prefix(self, cleartext: str) -> str:
        return cleartext[: len(self.prefix) + PREFIX_RANDOM_CHARS]

    async def issue(
        self,
        db: AsyncSession,
        account_id: str,
        label: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> IssuedApiKey:
        cleartext = f"{self.prefix}{secrets.token_hex(KEY_RANDOM_BYTES)}"
        record = ApiKey(
            account_id=account_id,
            label=(label or "").strip() or DEFAULT_LABEL,
            key_prefix=self.display_prefix(cleartext),
            key_hash=self.hasher.hash(cleartext),
            expires_at=as_utc(expires_at),
            is_active=True,
            usage_count=0,
        )
        db.add(record)
        await db.flush()

        logger.info(f"API key {record.key_prefix}... created for account {account_id[:8]}...")
        return IssuedApiKey(cleartext=cleartext, record=record)

    async def validate(self, db: AsyncSession, cleartext: str) -> Account:
        """
        Resolve a presented key to its owning account and record the use.

        Raises:
            AuthError: ``API_KEY_INVALID``, ``API_KEY_EXPIRED`` or ``API_KEY_OWNER_INACTIVE``
        """
        if not cleartext or not cleartext.startswith(self.prefix):
            raise AuthError(AuthErrorKind.API_KEY_INVALID)

        result = await db.execute(
            select(ApiKey).where(
                ApiKey.key_prefix == self.display_prefix(cleartext),
                ApiKey.is_active.is_(True),
            )
        )
        record = next(
            (r for r in result.scalars().all() if self.hasher.verify(cleartext, r.key_hash)),
            None,
        )
        if record is None:
            raise AuthError(AuthErrorKind.API_KEY_INVALID)

        now = utcnow()
        if record.expires_at is not None and as_utc(record.expires_at) <= now:
            raise AuthError(AuthErrorKind.API_KEY_EXPIRED)

        account = await db.get(Account, record.account_id)
        if account is None or not account.is_active:
            raise AuthError(AuthErrorKind.API_KEY_OWNER_INACTIVE)

        await db.execute(
            update(ApiKey)
            .where(ApiKey.id == record.id)
            .values(last_used_at=now, usage_count=ApiKey.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(record, attribute_names=["last_used_at", "usage_count"])

        return account

    async def revoke(self, db: AsyncSession, key_id: str, owner_account_id: str) -> None:
        result = await db.execute(
            select(ApiKey).where(ApiKey.id == key_id, ApiKey.account_id == owner_account_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise AuthError(AuthErrorKind.API_KEY_NOT_FOUND)

        if record.is_active:
            record.is_active = False
            record.revoked_at = utcnow()
            await db.flush()
            logger.info(f"API key {record.key_prefix}... revoked")

    async def list(
        self,
        db: AsyncSession,
        account_id: str,
        include_inactive: bool = False,
    ) -> List[ApiKey]:
        query = select(ApiKey).where(ApiKey.account_id == account_id)
        if not include_inactive:
            query = query.where(ApiKey.is_active.is_(True))
        result = await db.execute(query.order_by(ApiKey.created_at.desc()))
        return list(result.scalars().all())
