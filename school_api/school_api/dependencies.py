"""FastAPI dependency injection for database sessions, session context, and settings."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from school_core.access.policy import AccessControlEngine, SessionContext
from school_core.access.session_context import SessionContextResolver
from school_core.config import CoreSettings, load_core_settings
from school_core.errors import AccessDenied
from school_core.state.database import get_engine, set_tenant_context
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from school_api.config import APISettings, load_api_settings
from school_api.security import IdentityClaims

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None
_core_settings_cache: CoreSettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


def get_core_settings() -> CoreSettings:
    """Return the cached :class:`CoreSettings` singleton."""
    global _core_settings_cache  # noqa: PLW0603
    if _core_settings_cache is None:
        _core_settings_cache = load_core_settings()
    return _core_settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]
CoreSettingsDep = Annotated[CoreSettings, Depends(get_core_settings)]

# ---------------------------------------------------------------------------
# Database engines
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_privileged_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_privileged_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the tenant-scoped and privileged async engines.

    When no separate privileged URL is configured both factories share one
    engine.  Returns the tenant-scoped engine.
    """
    global _engine, _privileged_engine, _session_factory, _privileged_session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    if settings.privileged_database_url and settings.privileged_database_url != settings.database_url:
        _privileged_engine = get_engine(settings.privileged_database_url, pool_size=5, max_overflow=5)
    else:
        _privileged_engine = _engine
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    _privileged_session_factory = async_sessionmaker(_privileged_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the engine pools (call during shutdown)."""
    global _engine, _privileged_engine, _session_factory, _privileged_session_factory  # noqa: PLW0603
    if _privileged_engine is not None and _privileged_engine is not _engine:
        await _privileged_engine.dispose()
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _privileged_engine = None
    _session_factory = None
    _privileged_session_factory = None


def get_privileged_engine() -> AsyncEngine:
    """Return the privileged engine (used for DDL at startup)."""
    if _privileged_engine is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _privileged_engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the privileged async session factory.

    Used by components that operate outside FastAPI's dependency injection
    (e.g. the invitation purge scheduler) and need direct session access.
    """
    if _privileged_session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _privileged_session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` on the privileged connection.

    .. warning:: **No Row-Level Security**

       Queries through this session are not filtered by the tenant
       policies.  Use it only for operations that run before the caller
       has a session context:

    - ``POST /schools`` -- the school does not exist yet.
    - ``POST /identity/events`` and ``POST /identity/provision`` --
      profile provisioning.
    - Resolving the caller's session context (one primary-key lookup).
    - ``GET /health`` and readiness probes.

    For everything else use :data:`SessionDep`.

    The session commits on clean exit and rolls back on exception.
    """
    factory = get_session_factory()
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


# WARNING: PublicSessionDep provides a session WITHOUT tenant RLS context.
# Only use it for bootstrap, provisioning, context resolution and health.
PublicSessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Identity and session context
# ---------------------------------------------------------------------------


def get_identity(request: Request) -> IdentityClaims:
    """Return the claims the authentication middleware stored on the request."""
    claims = getattr(request.state, "identity", None)
    if claims is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return claims


IdentityDep = Annotated[IdentityClaims, Depends(get_identity)]


async def get_session_context(
    request: Request,
    identity: IdentityDep,
    session: PublicSessionDep,
) -> SessionContext | None:
    """Resolve ``{tenant_id, role, active}`` for the caller.

    One resolver is created per request and kept on ``request.state`` so the
    lookup runs at most once.  Returns ``None`` for a profile-less identity.
    """
    resolver = getattr(request.state, "context_resolver", None)
    if resolver is None:
        resolver = SessionContextResolver(session)
        request.state.context_resolver = resolver
    context = await resolver.resolve(identity.sub)
    if context is not None:
        request.state.tenant_id = context.tenant_id
        request.state.role = context.role.value
    return context


OptionalContextDep = Annotated[SessionContext | None, Depends(get_session_context)]


async def require_session_context(context: OptionalContextDep) -> SessionContext:
    """Return an active session context or deny with a uniform 403."""
    if context is None:
        raise AccessDenied("no session context")
    if not context.active:
        raise AccessDenied("profile inactive")
    return context


ContextDep = Annotated[SessionContext, Depends(require_session_context)]


async def get_tenant_session(context: ContextDep) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` with the RLS tenant context set.

    Binds ``app.tenant_id`` and ``app.role`` from the already-resolved
    session context so that PostgreSQL Row-Level Security policies restrict
    all queries to the caller's school and role.

    This is the primary session dependency for all tenant-scoped endpoints.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    session = _session_factory()
    try:
        await set_tenant_context(session, context.tenant_id, context.role.value)
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_tenant_session)]

# ---------------------------------------------------------------------------
# Access control engine
# ---------------------------------------------------------------------------

_access_engine = AccessControlEngine()


def get_access_engine() -> AccessControlEngine:
    return _access_engine


AccessEngineDep = Annotated[AccessControlEngine, Depends(get_access_engine)]
