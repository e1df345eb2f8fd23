"""
Fire-and-forget audit sink for authentication events.

Events are written to ``auth_audit_logs`` through their own session on a
background task, so a failing or slow audit write never fails or delays
the request that produced it.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set

from app.models.auth_audit import AuthAuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    action: str
    account_id: Optional[str] = None
    username: Optional[str] = None
    success: bool = True
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AuditService:
    """Persists ``AuditEvent`` rows without blocking the caller."""

    ACTION_LOGIN = "login"
    ACTION_FAILED_LOGIN = "failed_login"
    ACTION_LOCKOUT = "account_locked"
    ACTION_LOGOUT = "logout"
    ACTION_LOGOUT_ALL = "logout_all"
    ACTION_TOKEN_REFRESH = "token_refresh"
    ACTION_TOKEN_REUSE = "token_reuse"
    ACTION_PASSWORD_RESET_REQUEST = "password_reset_request"
    ACTION_PASSWORD_RESET = "password_reset"
    ACTION_PASSWORD_CHANGE = "password_change"
    ACTION_ACCOUNT_UNLOCK = "account_unlock"
    ACTION_API_KEY_CREATE = "api_key_create"
    ACTION_API_KEY_REVOKE = "api_key_revoke"

    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory
        self._pending: Set[asyncio.Task] = set()

    def record(self, event: AuditEvent) -> None:
        logger.info(
            f"[AUDIT] {event.action} success={event.success} "
            f"account={(event.account_id or '-')[:8]} ip={event.ip_address or '-'}"
        )
        try:
            task = asyncio.get_running_loop().create_task(self._write(event))
        except RuntimeError:
            logger.warning(f"No running event loop; audit event {event.action} not persisted")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, event: AuditEvent) -> None:
        try:
            async with self._session_factory() as session:
                session.add(
                    AuthAuditLog(
                        account_id=event.account_id,
                        username=event.username,
                        action=event.action,
                        success=event.success,
                        ip_address=event.ip_address,
                        user_agent=event.user_agent[:500] if event.user_agent else None,
                        metadata_json=json.dumps(event.metadata) if event.metadata else None,
                    )
                )
                await session.commit()
        except Exception as e:
            logger.warning(f"Failed to write audit event {event.action}: {e}")

    async def drain(self) -> None:
        """Wait for queued writes (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
