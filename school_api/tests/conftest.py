"""Shared fixtures for school API tests.

Each test gets a fresh SQLite database file under ``tmp_path``, the real
dependency chain (privileged session, session-context resolution, tenant
session), and an httpx client over ``ASGITransport``.  Identity tokens and
webhook signatures are produced with the same secrets the app verifies.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from collections.abc import Callable
from datetime import UTC
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set secrets BEFORE importing application modules so the module-level app
# in ``school_api.main`` is built with deterministic values.
_TOKEN_SECRET = "test-token-secret-for-school-tests"
_WEBHOOK_SECRET = "test-webhook-secret-for-school-tests"
os.environ.setdefault("API_IDENTITY_TOKEN_SECRET", _TOKEN_SECRET)
os.environ.setdefault("API_IDENTITY_WEBHOOK_SECRET", _WEBHOOK_SECRET)

from school_api import dependencies
from school_api.config import APISettings
from school_api.main import create_app
from school_api.security import IdentityTokenVerifier, compute_signature
from school_core.config import CoreSettings
from school_core.state.repository import ProfileRepository, SchoolRepository
from school_core.state.tables import Base
from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


def _patch_columns_for_sqlite() -> None:
    """Substitute Postgres-specific column types for SQLite compatibility."""

    class _UTCAwareDateTime(TypeDecorator):
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

# ---------------------------------------------------------------------------
# Tokens and signatures
# ---------------------------------------------------------------------------

_verifier = IdentityTokenVerifier(_TOKEN_SECRET)


def make_token(
    sub: str,
    email: str | None = None,
    *,
    verified: bool = True,
    ttl: float = 3600,
) -> str:
    """Issue an identity token the way the identity provider would."""
    now = time.time()
    claims: dict[str, Any] = {
        "sub": sub,
        "email": email or f"{sub}@example.com",
        "email_verified": verified,
        "iat": now,
        "exp": now + ttl,
    }
    return _verifier.issue(claims)


def auth_headers(sub: str, email: str | None = None, **kwargs: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub, email, **kwargs)}"}


def signed_event(
    payload: dict[str, Any] | bytes,
    secret: str = _WEBHOOK_SECRET,
) -> tuple[bytes, dict[str, str]]:
    """Serialise an identity event and sign it for ``POST /identity/events``."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Identity-Signature": compute_signature(secret, body),
    }
    return body, headers


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------


def _make_settings(tmp_path) -> APISettings:
    return APISettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        platform_env="dev",
        cors_origins=["http://localhost:3000"],
        identity_token_secret=_TOKEN_SECRET,
        identity_webhook_secret=_WEBHOOK_SECRET,
        invitation_purge_interval_seconds=0,
    )


def _make_core_settings() -> CoreSettings:
    return CoreSettings(
        tenant_visibility_max_attempts=2,
        tenant_visibility_initial_backoff_seconds=0.01,
        tenant_visibility_max_wait_seconds=0.05,
    )


@pytest.fixture
def settings(tmp_path) -> APISettings:
    return _make_settings(tmp_path)


@pytest.fixture
def core_settings() -> CoreSettings:
    return _make_core_settings()


@pytest_asyncio.fixture
async def app(settings: APISettings, core_settings: CoreSettings):
    """App wired to a fresh SQLite file with all tables created."""
    dependencies.init_engine(settings)
    async with dependencies.get_privileged_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    application = create_app(settings)
    application.dependency_overrides[dependencies.get_settings] = lambda: settings
    application.dependency_overrides[dependencies.get_core_settings] = lambda: core_settings
    yield application
    await dependencies.dispose_engine()


@pytest_asyncio.fixture
async def client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Direct data setup (bypasses the HTTP layer)
# ---------------------------------------------------------------------------


@pytest.fixture
def seed(app):
    """Helpers that write committed rows through the privileged factory."""

    class _Seed:
        async def school(self, name: str = "Riverside Academy") -> str:
            async with dependencies.get_session_factory()() as session:
                row = await SchoolRepository(session).create(name)
                await session.commit()
                return row.id

        async def member(
            self,
            school_id: str,
            role: str = "owner",
            *,
            identity_id: str | None = None,
            email: str | None = None,
            active: bool = True,
        ) -> str:
            identity_id = identity_id or uuid.uuid4().hex
            async with dependencies.get_session_factory()() as session:
                repo = ProfileRepository(session)
                await repo.insert_if_absent(
                    identity_id=identity_id,
                    school_id=school_id,
                    role=role,
                    full_name=f"{role} {identity_id[:6]}",
                    email=email or f"{identity_id}@example.com",
                )
                if not active:
                    await repo.set_active(identity_id, False)
                await session.commit()
            return identity_id

    return _Seed()


@pytest.fixture
def auth() -> Callable[..., dict[str, str]]:
    """``auth(sub, email=None, verified=True, ttl=3600)`` -> bearer headers."""
    return auth_headers


@pytest.fixture
def sign() -> Callable[..., tuple[bytes, dict[str, str]]]:
    """``sign(payload, secret=...)`` -> (body, headers) for the identity webhook."""
    return signed_event
