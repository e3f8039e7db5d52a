"""Resolve the caller's session context from its identity id."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from school_core.access.policy import SessionContext, parse_role
from school_core.state.repository import ProfileRepository

logger = logging.getLogger(__name__)

_MISSING = object()


class SessionContextResolver:
    """One direct primary-key lookup of ``profiles`` per identity.

    The session passed in must be the privileged (non-RLS) session: the
    lookup must not go through the tenant-scoped access path whose policies
    depend on the context being resolved here.  Results, including "no
    profile", are cached for the lifetime of the resolver, which the API
    creates once per request.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._profiles = ProfileRepository(session)
        self._cache: dict[str, SessionContext | None] = {}

    async def resolve(self, identity_id: str) -> SessionContext | None:
        """Return ``{tenant_id, role, active}`` claims or ``None`` when profile-less."""
        cached = self._cache.get(identity_id, _MISSING)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]

        row = await self._profiles.get_by_id(identity_id)
        context: SessionContext | None = None
        if row is not None:
            context = SessionContext(
                identity_id=row.id,
                tenant_id=row.school_id,
                role=parse_role(row.role),
                active=bool(row.is_active),
            )
        else:
            logger.debug("No profile for identity %s", identity_id)
        self._cache[identity_id] = context
        return context

    def invalidate(self, identity_id: str | None = None) -> None:
        """Drop cached results after this request changed a profile."""
        if identity_id is None:
            self._cache.clear()
        else:
            self._cache.pop(identity_id, None)
