"""Role-based access control guards for FastAPI routes.

Roles are never taken from the bearer token.  They come from the caller's
resolved :class:`SessionContext`, and the role sets per entity live in one
place: :data:`school_core.access.policy.ACCESS_RULES`.  The guards here are
an early gate in front of the services, which repeat the same checks
together with the tenant match on each row.

Usage in a router::

    from school_api.middleware.rbac import require_entity_access

    @router.get("/records/revenue")
    async def list_revenue(
        ctx: SessionContext = Depends(require_entity_access("revenue", Operation.READ)),
    ):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from school_core.access.policy import Operation, SchoolRole, SessionContext
from school_core.errors import AccessDenied

from school_api.dependencies import AccessEngineDep, ContextDep

logger = logging.getLogger(__name__)


def require_entity_access(entity: str, operation: Operation) -> Callable[..., SessionContext]:
    """Return a dependency that enforces the rule table for *entity*.

    Unknown entities and insufficient roles both raise :class:`AccessDenied`.
    """

    def _guard(context: ContextDep, engine: AccessEngineDep) -> SessionContext:
        return engine.check_entity(context, entity, operation)

    return _guard


def require_roles(*roles: SchoolRole) -> Callable[..., SessionContext]:
    """Return a dependency that admits only the listed roles.

    Example::

        @router.delete("/schools/current")
        async def delete_school(
            ctx: SessionContext = Depends(require_roles(SchoolRole.OWNER)),
        ):
            ...
    """
    allowed = frozenset(roles)

    def _guard(context: ContextDep) -> SessionContext:
        if context.role not in allowed:
            logger.info(
                "Role check failed: has=%s, required one of %s",
                context.role.value,
                sorted(r.value for r in allowed),
            )
            raise AccessDenied(f"role {context.role.value} not permitted")
        return context

    return _guard
