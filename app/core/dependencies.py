"""FastAPI dependencies: database session, auth service, current account."""

from typing import Annotated, Callable, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AuthError, AuthErrorKind
from app.core.permissions import has_permission
from app.core.rate_limiter import get_client_ip
from app.db.session import get_db
from app.models.account import Account
from app.services.auth_service import AuthService
from app.services.refresh_token_service import ClientContext

bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    """The service graph is built once at startup and kept on app state."""
    return request.app.state.auth_service


def get_client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


DbSession = Annotated[AsyncSession, Depends(get_db)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
ClientCtx = Annotated[ClientContext, Depends(get_client_context)]


async def get_current_account(
    db: DbSession,
    service: AuthServiceDep,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Account:
    if credentials is None or not credentials.credentials:
        raise AuthError(AuthErrorKind.TOKEN_MALFORMED, "Not authenticated")
    return await service.authenticate_access_token(db, credentials.credentials)


async def get_api_key_account(
    db: DbSession,
    service: AuthServiceDep,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Account:
    if not x_api_key:
        raise AuthError(AuthErrorKind.API_KEY_INVALID, "API key required")
    return await service.authenticate_api_key(db, x_api_key)


CurrentAccount = Annotated[Account, Depends(get_current_account)]
ApiKeyAccount = Annotated[Account, Depends(get_api_key_account)]


def require_permission(permission: str) -> Callable:
    """Dependency factory: the bearer's role must grant ``permission``."""

    async def checker(account: CurrentAccount) -> Account:
        if not has_permission(account.role, permission):
            raise AuthError(AuthErrorKind.FORBIDDEN)
        return account

    return checker
