"""API key endpoints."""

from typing import List

from fastapi import APIRouter, status

from app.core.dependencies import ApiKeyAccount, AuthServiceDep, ClientCtx, CurrentAccount, DbSession
from app.schemas.api_key import ApiKeyCreate, ApiKeyCreatedResponse, ApiKeyResponse
from app.schemas.auth import AccountResponse, MessageResponse
from app.services.auth_service import AccountSummary

router = APIRouter()


@router.get("", response_model=List[ApiKeyResponse])
async def list_api_keys(
    current_account: CurrentAccount,
    db: DbSession,
    service: AuthServiceDep,
    include_inactive: bool = False,
):
    """List the account's keys. Only prefixes are ever shown."""
    return await service.list_api_keys(db, current_account, include_inactive=include_inactive)


@router.post("", response_model=ApiKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    body: ApiKeyCreate,
    current_account: CurrentAccount,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
):
    """
    Create a key for the signed-in account.
    The full key is returned in this response only.
    """
    issued = await service.issue_api_key(
        db, current_account, label=body.label, expires_at=body.expires_at, context=context
    )
    record = issued.record
    return ApiKeyCreatedResponse(
        id=record.id,
        label=record.label,
        key_prefix=record.key_prefix,
        is_active=record.is_active,
        expires_at=record.expires_at,
        last_used_at=record.last_used_at,
        usage_count=record.usage_count,
        created_at=record.created_at,
        api_key=issued.cleartext,
    )


@router.delete("/{key_id}", response_model=MessageResponse)
async def revoke_api_key(
    key_id: str,
    current_account: CurrentAccount,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
):
    await service.revoke_api_key(db, current_account, key_id, context=context)
    return MessageResponse(message="API key revoked")


@router.get("/whoami", response_model=AccountResponse)
async def whoami(account: ApiKeyAccount):
    """Resolve the ``X-API-Key`` header to its owning account."""
    return AccountResponse(**AccountSummary.from_account(account).__dict__)
