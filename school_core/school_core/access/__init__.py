"""Access control: rule table, session context resolution, scoped data access."""

from school_core.access.policy import (
    ACCESS_RULES,
    AccessControlEngine,
    AccessRule,
    Decision,
    Operation,
    SchoolRole,
    SessionContext,
    authorize,
)
from school_core.access.scoped import TenantScopedRepository
from school_core.access.session_context import SessionContextResolver

__all__ = [
    "ACCESS_RULES",
    "AccessControlEngine",
    "AccessRule",
    "Decision",
    "Operation",
    "SchoolRole",
    "SessionContext",
    "SessionContextResolver",
    "TenantScopedRepository",
    "authorize",
]
