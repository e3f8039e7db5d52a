"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from school_core.state.database import get_engine, get_session, set_tenant_context
from school_core.state.repository import (
    InvitationRepository,
    ProfileRepository,
    SchoolRepository,
)

__all__ = [
    "InvitationRepository",
    "ProfileRepository",
    "SchoolRepository",
    "get_engine",
    "get_session",
    "set_tenant_context",
]
