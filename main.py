"""Main application entry point."""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes import api_router
from app.core.config import get_settings
from app.core.errors import AuthError, AuthErrorKind
from app.db.session import AsyncSessionLocal, close_db, init_db
from app.services.audit_service import AuditService
from app.services.auth_service import AuthService
from app.services.email_service import EmailService

# ─────────────────────────────────────────────────────────────
# Logging Setup
# ─────────────────────────────────────────────────────────────
settings = get_settings()

log_level = logging.DEBUG if settings.debug else logging.INFO

logging.basicConfig(
    level=log_level,
    format="%(asctime)s | %(levelname)-8s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("nutrivault")

# Suppress verbose SQLAlchemy and passlib logs in production
if not settings.debug:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)


# ─────────────────────────────────────────────────────────────
# Global exception handler - logs full traceback
# ─────────────────────────────────────────────────────────────
async def catch_exceptions_middleware(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error("=" * 60)
        logger.error(f"500 ERROR on {request.method} {request.url.path}")
        logger.error(f"Exception: {type(exc).__name__}: {exc}")
        logger.error("Full traceback:")
        logger.error(traceback.format_exc())
        logger.error("=" * 60)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    content = {"detail": exc.message, "error": exc.kind.value}
    if exc.detail:
        content["context"] = exc.detail

    headers = {}
    if exc.kind == AuthErrorKind.ACCOUNT_LOCKED and exc.detail.get("retry_after_seconds"):
        headers["Retry-After"] = str(exc.detail["retry_after_seconds"])
    elif exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


# ─────────────────────────────────────────────────────────────
# Service graph (fails fast on missing or weak signing secrets)
# ─────────────────────────────────────────────────────────────
def build_auth_service() -> AuthService:
    return AuthService.from_settings(
        settings,
        notifier=EmailService(settings),
        audit=AuditService(AsyncSessionLocal),
    )


# ─────────────────────────────────────────────────────────────
# Lifespan: Startup + Shutdown
# ─────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    # ─── Startup ───
    logger.info(f"Starting up {settings.app_name} v{app.version}...")

    # Initialize DB tables (auto-creates if not using Alembic migrations)
    await init_db()
    logger.info("Database tables initialized")

    async with AsyncSessionLocal() as session:
        purged = await app.state.auth_service.refresh_tokens.purge_expired(session)
        await session.commit()
    if purged:
        logger.info(f"Startup cleanup removed {purged} expired refresh tokens")

    logger.info("Application startup complete")
    yield

    # ─── Shutdown ───
    logger.info("Shutting down application...")
    service = app.state.auth_service
    await service.audit.drain()
    await service.notifier.drain()
    await close_db()
    logger.info("Database connections closed. Goodbye!")


# ─────────────────────────────────────────────────────────────
# FastAPI App
# ─────────────────────────────────────────────────────────────
app = FastAPI(
    title=settings.app_name,
    description="Authentication and session API for the NutriVault practice-management platform",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,  # Hide docs in prod
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
    default_response_class=JSONResponse,
)
app.state.auth_service = build_auth_service()

app.add_exception_handler(AuthError, auth_error_handler)

# ─────────────────────────────────────────────────────────────
# Security Middleware
# ─────────────────────────────────────────────────────────────
app.add_middleware(BaseHTTPMiddleware, dispatch=catch_exceptions_middleware)

# Trusted hosts (prevent DNS rebinding, host header attacks)
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts_list,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=600,
)

# ─────────────────────────────────────────────────────────────
# API Router
# ─────────────────────────────────────────────────────────────
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "app": settings.app_name, "version": "1.0.0"}


# ─────────────────────────────────────────────────────────────
# Run with Uvicorn (only when running directly)
# ─────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info" if not settings.debug else "debug",
    )
