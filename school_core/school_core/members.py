"""Membership management: listing members, changing roles, deactivation.

Profiles move ``active -> inactive`` and never back to absent; the row is
kept for audit.  Role changes follow the rank order
owner > manager > receptionist.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from school_core.access.policy import (
    AccessControlEngine,
    Operation,
    SchoolRole,
    SessionContext,
    parse_role,
)
from school_core.errors import AccessDenied, UnauthorizedRoleTransition
from school_core.state.repository import ProfileRepository
from school_core.state.tables import ProfileTable

logger = logging.getLogger(__name__)


class MembershipService:
    """Operations on the profiles of the caller's own school."""

    def __init__(self, session: AsyncSession, engine: AccessControlEngine | None = None) -> None:
        self._session = session
        self._engine = engine or AccessControlEngine()

    async def list_members(
        self,
        context: SessionContext | None,
        *,
        include_inactive: bool = True,
    ) -> list[ProfileTable]:
        ctx = self._engine.check_entity(context, "profiles", Operation.READ)
        repo = ProfileRepository(self._session, tenant_id=ctx.tenant_id)
        return await repo.list_members(include_inactive=include_inactive)

    async def _target(self, ctx: SessionContext, target_id: str) -> tuple[ProfileRepository, ProfileTable]:
        repo = ProfileRepository(self._session, tenant_id=ctx.tenant_id)
        target = await repo.get_by_id(target_id)
        if target is None:
            raise AccessDenied(f"profile {target_id} not visible")
        self._engine.check(ctx, "profiles", Operation.UPDATE, target.school_id)
        if target.id == ctx.identity_id:
            raise UnauthorizedRoleTransition("Members cannot change their own role or status")
        target_role = parse_role(target.role)
        if ctx.role.rank <= target_role.rank:
            raise UnauthorizedRoleTransition(
                f"A {ctx.role.value} cannot modify a {target_role.value}"
            )
        return repo, target

    async def change_role(
        self,
        actor: SessionContext | None,
        target_id: str,
        new_role: SchoolRole | str,
    ) -> ProfileTable:
        """Move *target_id* to *new_role*.

        Raises
        ------
        AccessDenied
            Actor missing, inactive, not owner/manager, or target outside
            the actor's school.
        UnauthorizedRoleTransition
            Self-change, target ranked at or above the actor, or a grant
            above the actor's own rank.
        """
        ctx = self._engine.check_entity(actor, "profiles", Operation.UPDATE)
        role = parse_role(new_role) if isinstance(new_role, str) else new_role
        repo, target = await self._target(ctx, target_id)
        if role.rank > ctx.role.rank:
            raise UnauthorizedRoleTransition(f"A {ctx.role.value} cannot grant {role.value}")
        if not target.is_active:
            raise UnauthorizedRoleTransition("Inactive members cannot be given a new role")

        if target.role != role.value:
            await repo.set_role(target.id, role.value)
            await self._session.refresh(target)
            logger.info(
                "Role change school=%s target=%s role=%s by=%s",
                ctx.tenant_id,
                target.id,
                role.value,
                ctx.identity_id,
            )
        return target

    async def deactivate(self, actor: SessionContext | None, target_id: str) -> ProfileTable:
        """Flip ``is_active`` to false.  Idempotent for already inactive members."""
        ctx = self._engine.check_entity(actor, "profiles", Operation.UPDATE)
        repo, target = await self._target(ctx, target_id)
        if target.is_active:
            await repo.set_active(target.id, False)
            await self._session.refresh(target)
            logger.info("Deactivated profile %s in school %s by %s", target.id, ctx.tenant_id, ctx.identity_id)
        return target
