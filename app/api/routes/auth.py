"""Authentication endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.dependencies import AuthServiceDep, ClientCtx, CurrentAccount, DbSession, require_permission
from app.core.rate_limiter import get_client_ip, rate_limiter
from app.models.account import Account
from app.schemas.auth import (
    AccountResponse,
    AccountStatusResponse,
    LoginRequest,
    LogoutAllResponse,
    MessageResponse,
    PasswordChange,
    PasswordResetConfirm,
    PasswordResetRequest,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    RefreshRequest,
    TokenResponse,
)
from app.services.auth_service import AccountSummary, SessionTokens

logger = logging.getLogger(__name__)
router = APIRouter()

RESET_REQUESTED_MESSAGE = "If an account with this email exists, a password reset link has been sent."


def check_rate_limit(limit_type: str, identifier: str) -> None:
    """Check rate limit and raise HTTPException if exceeded."""
    allowed, retry_after = rate_limiter.is_allowed(limit_type, identifier)
    if not allowed:
        logger.warning(f"Rate limit exceeded for {limit_type}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many requests. Please try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )


def to_token_response(tokens: SessionTokens) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
        user=AccountResponse(**tokens.account.__dict__),
    )


# ─────────────────────────────────────────────
# Login
# ─────────────────────────────────────────────

@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
):
    """
    Authenticate with username (or email, for portal patients) and password.

    Rate limited per IP and per identifier on top of account lockout.
    """
    check_rate_limit("login_ip", get_client_ip(request))
    check_rate_limit("login_identifier", credentials.username.strip().lower())

    tokens = await service.login(
        db,
        credentials.username,
        credentials.password,
        context=context,
        remember_me=credentials.remember_me,
    )
    return to_token_response(tokens)


# ─────────────────────────────────────────────
# Logout
# ─────────────────────────────────────────────

@router.post("/logout", response_model=MessageResponse)
async def logout(body: RefreshRequest, db: DbSession, service: AuthServiceDep, context: ClientCtx):
    """Revoke a refresh token. Succeeds even when the token is unknown."""
    await service.logout(db, body.refresh_token, context=context)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all(
    current_account: CurrentAccount,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
):
    """Revoke every refresh token of the signed-in account."""
    revoked = await service.logout_all(db, current_account, context=context)
    return LogoutAllResponse(message="All sessions revoked", revoked=revoked)


# ─────────────────────────────────────────────
# Refresh Token (Rotation)
# ─────────────────────────────────────────────

@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(body: RefreshRequest, db: DbSession, service: AuthServiceDep, context: ClientCtx):
    """
    Rotate refresh token and get a new access token + refresh token.
    The presented token cannot be used again.
    """
    tokens = await service.refresh(db, body.refresh_token, context=context)
    return to_token_response(tokens)


# ─────────────────────────────────────────────
# Current Account
# ─────────────────────────────────────────────

@router.get("/me", response_model=AccountResponse)
async def get_current_account_info(current_account: CurrentAccount):
    """Return the authenticated account with its effective permissions."""
    return AccountResponse(**AccountSummary.from_account(current_account).__dict__)


# ─────────────────────────────────────────────
# Passwords
# ─────────────────────────────────────────────

@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    password_data: PasswordChange,
    current_account: CurrentAccount,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
):
    """
    Change the account's password.
    Requires current password; signs out every session.
    """
    await service.change_password(
        db,
        current_account,
        password_data.current_password,
        password_data.new_password,
        context=context,
    )
    return MessageResponse(message="Password changed successfully")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: PasswordResetRequest,
    request: Request,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
):
    """
    Request a password reset link.

    Always returns the same message to prevent account enumeration.
    Rate limited: 5 requests per 15 minutes per IP, 3 per hour per email.
    """
    email = body.email.lower()
    check_rate_limit("password_reset_ip", get_client_ip(request))
    check_rate_limit("password_reset_email", email)

    await service.request_password_reset(db, email, context=context)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: PasswordResetConfirm,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
):
    """
    Set a new password with a reset token.

    Invalidates ALL existing sessions and clears any lockout.
    """
    await service.reset_password(db, data.token, data.new_password, context=context)
    return MessageResponse(message="Password has been reset successfully. Please sign in again.")


@router.post("/password-strength", response_model=PasswordStrengthResponse)
async def password_strength(body: PasswordStrengthRequest, service: AuthServiceDep):
    strength = service.check_strength(body.password)
    return PasswordStrengthResponse(
        valid=strength.valid,
        violations=list(strength.violations),
        messages=list(strength.messages),
    )


# ─────────────────────────────────────────────
# Administration
# ─────────────────────────────────────────────

@router.post("/accounts/{account_id}/unlock", response_model=AccountStatusResponse)
async def unlock_account(
    account_id: str,
    db: DbSession,
    service: AuthServiceDep,
    context: ClientCtx,
    actor: Account = Depends(require_permission("users.update")),
):
    """Clear failed attempts and any lock on an account."""
    account = await service.unlock_account(db, account_id, actor=actor, context=context)
    return account
