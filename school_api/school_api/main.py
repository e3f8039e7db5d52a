"""FastAPI application entry-point for the school control plane."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from school_core.access.rls import apply_rls_policies
from school_core.errors import (
    AccessDenied,
    DuplicateProfile,
    InvitationAlreadyAccepted,
    InvitationAlreadyPending,
    InvitationExpired,
    InvitationNotFound,
    MemberAlreadyExists,
    TenancyError,
    TenantAlreadyClaimed,
    TenantNotFound,
    TenantVisibilityTimeout,
    UnauthorizedRoleTransition,
)
from school_core.state.tables import Base
from sqlalchemy.exc import SQLAlchemyError

from school_api import __version__
from school_api.config import APISettings, load_api_settings
from school_api.dependencies import (
    dispose_engine,
    get_core_settings,
    get_privileged_engine,
    get_session_factory,
    init_engine,
)
from school_api.middleware.auth import AuthenticationMiddleware
from school_api.middleware.json_formatter import configure_structured_logging
from school_api.middleware.logging import RequestLoggingMiddleware
from school_api.routers import health, identity, invitations, members, records, schools, session
from school_api.security import IdentityTokenVerifier
from school_api.services.invitation_purge import InvitationPurgeScheduler

logger = logging.getLogger(__name__)

# Status code per domain error.  AccessDenied is handled separately so its
# body never reveals the cause.
_ERROR_STATUS: dict[type[TenancyError], int] = {
    InvitationNotFound: 404,
    InvitationExpired: 410,
    InvitationAlreadyAccepted: 409,
    InvitationAlreadyPending: 409,
    MemberAlreadyExists: 409,
    DuplicateProfile: 409,
    TenantAlreadyClaimed: 409,
    UnauthorizedRoleTransition: 403,
    TenantNotFound: 404,
    TenantVisibilityTimeout: 503,
}


def _status_for(exc: TenancyError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 400


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the tenant-scoped and privileged database engines.
    - Create tables when running on local SQLite or when
      ``API_CREATE_TABLES`` is set (production uses migrations).
    - Install row-level security policies when ``API_APPLY_RLS_POLICIES``
      is set (PostgreSQL only).
    - Start the invitation purge scheduler.

    On shutdown:
    - Stop the scheduler and dispose the engine pools.
    """
    settings: APISettings = app.state.settings

    if settings.structured_logging:
        configure_structured_logging()
        logger.info("Structured JSON logging enabled")

    init_engine(settings)
    privileged = get_privileged_engine()
    is_local = settings.database_url.startswith("sqlite")
    logger.info("Database engine initialised (%s)", "local" if is_local else "postgres")

    if settings.create_tables or is_local:
        async with privileged.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    if settings.apply_rls_policies:
        count = await apply_rls_policies(privileged)
        logger.info("Row-level security policies applied (%d statements)", count)

    scheduler: InvitationPurgeScheduler | None = None
    if settings.invitation_purge_interval_seconds > 0:
        scheduler = InvitationPurgeScheduler(
            get_session_factory(),
            get_core_settings(),
            interval_seconds=settings.invitation_purge_interval_seconds,
        )
        await scheduler.start()

    yield

    if scheduler is not None:
        await scheduler.stop()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_api_settings()

    app = FastAPI(
        title="School API",
        description="Tenant-scoped control plane for school management.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -- Middleware (outermost last) -----------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-ID",
            "Accept",
        ],
    )
    app.add_middleware(
        AuthenticationMiddleware,
        verifier=IdentityTokenVerifier(settings.identity_token_secret),
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    # Versioned API routes: all business endpoints live under /api/v1.
    app.include_router(health.router, prefix="/api/v1")
    app.include_router(schools.router, prefix="/api/v1")
    app.include_router(identity.router, prefix="/api/v1")
    app.include_router(session.router, prefix="/api/v1")
    app.include_router(invitations.router, prefix="/api/v1")
    app.include_router(members.router, prefix="/api/v1")
    app.include_router(records.router, prefix="/api/v1")

    # Infrastructure endpoints: outside versioning (probes, root-level).
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(AccessDenied)
    async def access_denied_handler(request: Request, exc: AccessDenied) -> JSONResponse:
        # The reason is for logs only.
        logger.info("Access denied on %s %s: %s", request.method, request.url.path, exc.reason)
        return JSONResponse(status_code=403, content={"detail": "Access denied", "code": exc.code})

    @app.exception_handler(TenancyError)
    async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
        status_code = _status_for(exc)
        logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        # Log the full error for debugging; return a safe message to the client.
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error"},
        )

    return app


# Module-level application instance used by ``uvicorn school_api.main:app``.
app = create_app()
