"""Async SQLAlchemy engine, session factory and per-transaction tenant context.

Supports both PostgreSQL (production) and SQLite (local dev mode and tests).
Engine type is determined by the database URL scheme:
  - ``postgresql+asyncpg://`` → connection-pooled PostgreSQL engine
  - ``sqlite+aiosqlite://``   → single-connection SQLite engine

Row-level security policies read the caller's school and role from the
transaction-local settings ``app.tenant_id`` and ``app.role``.  Those are
bound by :func:`set_tenant_context` from an already-resolved session
context, so the policies never have to query the ``profiles`` table.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

# Identifier allowlist for tenant ids: alphanumeric, hyphens, underscores, 1-64 chars.
_TENANT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

_VALID_ROLES = frozenset({"owner", "manager", "receptionist"})

_session_factories: dict[int, async_sessionmaker[AsyncSession]] = {}


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Parameters
    ----------
    database_url:
        Connection string (PostgreSQL or SQLite scheme).
    pool_size:
        Number of persistent connections for PostgreSQL (ignored for SQLite).
    max_overflow:
        Maximum overflow connections for PostgreSQL (ignored for SQLite).

    Returns
    -------
    AsyncEngine
        A configured async engine ready for session creation.
    """
    if database_url.startswith("sqlite"):
        from school_core.state.sqlite_adapter import get_local_engine

        db_path = database_url.split("///", 1)[-1] if "///" in database_url else ":memory:"
        return get_local_engine(db_path or ":memory:")

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        echo=False,
        connect_args={
            "server_settings": {
                "statement_timeout": "30000",
                "lock_timeout": "10000",
            }
        },
    )
    logger.info(
        "Created async engine pool_size=%d max_overflow=%d",
        pool_size,
        max_overflow,
    )
    return engine


def _dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    dialect = getattr(bind, "dialect", None)
    if dialect is not None:
        return str(getattr(dialect, "name", ""))
    return str(getattr(bind, "url", ""))


async def set_tenant_context(session: AsyncSession, tenant_id: str, role: str) -> None:
    """Bind the caller's school and role for RLS enforcement.

    Uses ``set_config(..., true)`` so both values are scoped to the current
    transaction.  For SQLite this is a no-op: there is no RLS and isolation
    is enforced by the repository layer alone.

    Parameters
    ----------
    session:
        An active async session with a transaction in progress.
    tenant_id:
        The school id of the resolved session context.
    role:
        The caller's profile role (``owner``, ``manager``, ``receptionist``).

    Raises
    ------
    ValueError
        If ``tenant_id`` or ``role`` fails the allowlist check.
    """
    if "sqlite" in _dialect_name(session):
        return

    if not _TENANT_ID_RE.match(tenant_id):
        raise ValueError(f"Invalid tenant_id: must match {_TENANT_ID_RE.pattern!r}, got {tenant_id!r}")
    if role not in _VALID_ROLES:
        raise ValueError(f"Invalid role for tenant context: {role!r}")

    await session.execute(
        text("SELECT set_config('app.tenant_id', :tid, true), set_config('app.role', :role, true)"),
        {"tid": tenant_id, "role": role},
    )


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session with automatic commit/rollback semantics.

    On successful exit the session is committed.  If an exception propagates
    the session is rolled back before the error is re-raised.
    """
    engine_key = id(engine)
    factory = _session_factories.get(engine_key)
    if factory is None:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        _session_factories[engine_key] = factory
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
