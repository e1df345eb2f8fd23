"""
Per-account lockout after repeated failed logins.

State machine:
    Unlocked(n) --fail--> Unlocked(n+1)          while n+1 < max_attempts
    Unlocked(n) --fail--> Locked(now + duration) when n+1 == max_attempts
    Unlocked(n) --success--> Unlocked(0)
    Locked(t)   --any attempt before t--> rejected, unchanged
    Locked(t)   --any attempt at/after t--> Unlocked(0), then handled normally
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.errors import AuthError, AuthErrorKind
from app.core.timeutils import as_utc, utcnow
from app.models.account import Account

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutState:
    failed_attempts: int
    locked_until: Optional[datetime] = None

    @property
    def is_locked(self) -> bool:
        return self.locked_until is not None


class LockoutTracker:
    """Reads and mutates the lockout columns of ``Account`` rows."""

    def __init__(self, settings: Settings):
        self.max_attempts = settings.max_login_attempts
        self.lockout_duration = timedelta(minutes=settings.lockout_duration_minutes)

    def state(self, account: Account, now: Optional[datetime] = None) -> LockoutState:
        now = now or utcnow()
        locked_until = as_utc(account.locked_until)
        if locked_until is not None:
            if now < locked_until:
                return LockoutState(account.failed_login_attempts, locked_until)
            # Lock has lapsed
            return LockoutState(0, None)
        return LockoutState(account.failed_login_attempts or 0, None)

    def locked_error(self, locked_until: datetime, now: Optional[datetime] = None) -> AuthError:
        remaining = max((locked_until - (now or utcnow())).total_seconds(), 0)
        minutes = max(math.ceil(remaining / 60), 1)
        return AuthError(
            AuthErrorKind.ACCOUNT_LOCKED,
            f"Account is locked. Try again in {minutes} minutes",
            detail={
                "retry_after_seconds": int(math.ceil(remaining)),
                "retry_after_minutes": minutes,
                "locked_until": locked_until.isoformat(),
            },
        )

    async def ensure_not_locked(self, db: AsyncSession, account: Account) -> None:
        """Reject the attempt while locked; clear a lapsed lock."""
        now = utcnow()
        current = self.state(account, now)
        if current.is_locked:
            raise self.locked_error(current.locked_until, now)

        if account.locked_until is not None:
            logger.info(f"Lock expired for account {account.id[:8]}..., counter reset")
            account.failed_login_attempts = 0
            account.locked_until = None
            await db.flush()

    async def record_failure(self, db: AsyncSession, account: Account) -> LockoutState:
        """
        Count a failed attempt and lock when the budget is spent.

        Committed before returning so the attempt counts even though the
        login itself fails.
        """
        await db.flush()
        # Increment in SQL so concurrent failures cannot overwrite each other
        await db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(failed_login_attempts=Account.failed_login_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(account, attribute_names=["failed_login_attempts"])

        if account.failed_login_attempts >= self.max_attempts:
            account.locked_until = utcnow() + self.lockout_duration
            logger.warning(
                f"Account {account.id[:8]}... locked after {account.failed_login_attempts} failed attempts"
            )

        await db.commit()
        return self.state(account)

    async def record_success(self, db: AsyncSession, account: Account) -> None:
        account.failed_login_attempts = 0
        account.locked_until = None
        await db.flush()

    async def reset(self, db: AsyncSession, account: Account) -> None:
        """Administrative reset: clear the counter and any lock."""
        await self.record_success(db, account)
        logger.info(f"Lockout reset for account {account.id[:8]}...")
