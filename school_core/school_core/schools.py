"""School lifecycle: bootstrap creation and owner-only administration."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from school_core.access.policy import AccessControlEngine, Operation, SessionContext
from school_core.errors import AccessDenied
from school_core.state.repository import SchoolRepository
from school_core.state.tables import SchoolTable

logger = logging.getLogger(__name__)


class SchoolService:
    """Create a school without a session; read, update, delete with one."""

    def __init__(self, session: AsyncSession, engine: AccessControlEngine | None = None) -> None:
        self._repo = SchoolRepository(session)
        self._engine = engine or AccessControlEngine()

    async def create(self, name: str, **fields: Any) -> SchoolTable:
        """Bootstrap operation: reachable by a caller with no session context."""
        self._engine.require_context(None, "schools", Operation.CREATE)
        return await self._repo.create(name, **fields)

    async def get_current(self, context: SessionContext | None) -> SchoolTable:
        ctx = self._engine.check_entity(context, "schools", Operation.READ)
        row = await self._repo.get(ctx.tenant_id)
        if row is None:
            raise AccessDenied("school row missing")
        return row

    async def update_current(self, context: SessionContext | None, fields: dict[str, Any]) -> SchoolTable:
        ctx = self._engine.check_entity(context, "schools", Operation.UPDATE)
        row = await self._repo.update(ctx.tenant_id, **fields)
        if row is None:
            raise AccessDenied("school row missing")
        logger.info("School %s updated by %s: %s", ctx.tenant_id, ctx.identity_id, sorted(fields))
        return row

    async def delete_current(self, context: SessionContext | None) -> None:
        """Remove the caller's school and, by cascade, everything it owns."""
        ctx = self._engine.check_entity(context, "schools", Operation.DELETE)
        if not await self._repo.delete(ctx.tenant_id):
            raise AccessDenied("school row missing")
        logger.warning("School %s deleted by owner %s", ctx.tenant_id, ctx.identity_id)
