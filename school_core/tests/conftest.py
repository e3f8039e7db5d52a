"""Shared fixtures for school_core tests.

Every test runs against a fresh in-memory SQLite database via aiosqlite.
``DateTime(timezone=True)`` columns are swapped for a decorator that hands
back UTC-aware values, since SQLite drops the timezone on the way in.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from school_core.access.policy import SchoolRole, SessionContext
from school_core.state.repository import ProfileRepository, SchoolRepository
from school_core.state.sqlite_adapter import create_local_tables, get_local_engine
from school_core.state.tables import Base, SchoolTable
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.types import TypeDecorator


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility."""

    class _UTCAwareDateTime(TypeDecorator):
        """Ensures datetimes read back from SQLite are UTC-aware."""

        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, JSONB):
                column.type = JSON()
            elif isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    eng = get_local_engine(":memory:")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncSession:
    """One async session on the shared in-memory database."""
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as s:
        yield s


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_school(session: AsyncSession) -> Callable[..., Awaitable[SchoolTable]]:
    async def _make(name: str = "Riverside Academy") -> SchoolTable:
        return await SchoolRepository(session).create(name)

    return _make


@pytest.fixture
def make_member(session: AsyncSession) -> Callable[..., Awaitable[SessionContext]]:
    """Insert a profile directly and return its session context."""

    async def _make(
        school_id: str,
        role: str = "owner",
        *,
        identity_id: str | None = None,
        email: str | None = None,
        active: bool = True,
    ) -> SessionContext:
        identity_id = identity_id or uuid.uuid4().hex
        repo = ProfileRepository(session)
        await repo.insert_if_absent(
            identity_id=identity_id,
            school_id=school_id,
            role=role,
            full_name=f"{role} {identity_id[:6]}",
            email=email or f"{identity_id[:8]}@example.com",
        )
        if not active:
            await repo.set_active(identity_id, False)
        return SessionContext(
            identity_id=identity_id,
            tenant_id=school_id,
            role=SchoolRole(role),
            active=active,
        )

    return _make
