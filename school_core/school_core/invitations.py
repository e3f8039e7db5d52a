"""Invitation registry: single-use, time-boxed grants of school membership.

At most one unaccepted, unexpired invitation exists per (school, email).
That invariant is enforced by the partial unique index on ``invitations``;
the pre-insert check here only exists to report a friendlier error.
Acceptance is a conditional ``UPDATE ... WHERE accepted_at IS NULL AND
expires_at > now`` so concurrent accepts of the same token have exactly
one winner.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_core.access.policy import (
    AccessControlEngine,
    Operation,
    SchoolRole,
    SessionContext,
    parse_role,
)
from school_core.config import CoreSettings
from school_core.errors import (
    InvitationAlreadyAccepted,
    InvitationAlreadyPending,
    InvitationExpired,
    InvitationNotFound,
    MemberAlreadyExists,
    UnauthorizedRoleTransition,
)
from school_core.state.repository import (
    InvitationRepository,
    ProfileRepository,
    ensure_aware,
    normalize_email,
)
from school_core.state.tables import InvitationTable

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class InvitationRegistry:
    """Create, look up, accept, revoke and purge invitations.

    Parameters
    ----------
    session:
        Active async session.  Token lookups and acceptance run without a
        session context (the invited identity has none yet), so this must
        be the privileged session when RLS is enabled.
    settings:
        Supplies the invitation TTL.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: CoreSettings | None = None,
        clock: Clock = utc_now,
        engine: AccessControlEngine | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or CoreSettings()
        self._clock = clock
        self._engine = engine or AccessControlEngine()

    def _issuer(self, issuer: SessionContext | None, operation: Operation) -> SessionContext:
        return self._engine.check_entity(issuer, "invitations", operation)

    async def create(
        self,
        email: str,
        role: SchoolRole | str,
        school_id: str,
        issuer: SessionContext | None,
    ) -> InvitationTable:
        """Issue a new invitation for *email* to join *school_id* as *role*.

        Raises
        ------
        AccessDenied
            Issuer missing, inactive, in another school, or not owner/manager.
        UnauthorizedRoleTransition
            Issuer tries to grant a role ranked above its own.
        MemberAlreadyExists
            The email already belongs to an active member of the school.
        InvitationAlreadyPending
            An unaccepted, unexpired invitation exists for the pair.
        """
        ctx = self._engine.check(issuer, "invitations", Operation.CREATE, school_id)
        grant = parse_role(role) if isinstance(role, str) else role
        if grant.rank > ctx.role.rank:
            raise UnauthorizedRoleTransition(f"A {ctx.role.value} cannot invite a {grant.value}")

        address = normalize_email(email)
        if not address or "@" not in address:
            raise ValueError(f"Invalid email address: {email!r}")

        now = self._clock()
        invitations = InvitationRepository(self._session, tenant_id=school_id)
        if await ProfileRepository(self._session, tenant_id=school_id).find_active_by_email(address):
            raise MemberAlreadyExists(f"{address} is already a member of this school")
        if await invitations.find_pending_for_email(school_id, address, now):
            raise InvitationAlreadyPending(f"An invitation for {address} is already pending")

        cleared = await invitations.delete_expired_pending_for_email(school_id, address, now)
        if cleared:
            logger.debug("Cleared %d expired invitation(s) for %s in %s", cleared, address, school_id)

        try:
            row = await invitations.create(
                email=address,
                role=grant.value,
                school_id=school_id,
                invited_by=ctx.identity_id,
                expires_at=now + timedelta(days=self._settings.invitation_ttl_days),
                now=now,
            )
        except IntegrityError:
            await self._session.rollback()
            raise InvitationAlreadyPending(f"An invitation for {address} is already pending")

        logger.info(
            "Invitation %s created school=%s role=%s by=%s",
            row.id,
            school_id,
            grant.value,
            ctx.identity_id,
        )
        return row

    async def lookup(self, token: str, email: str) -> InvitationTable | None:
        """Return the invitation only if it is unexpired and unaccepted."""
        return await InvitationRepository(self._session).find_pending(token, email, self._clock())

    async def get_pending(self, token: str, email: str) -> InvitationTable:
        """Like :meth:`lookup` but raises the specific reason on a miss."""
        row = await InvitationRepository(self._session).get_by_token(token, email)
        if row is None:
            raise InvitationNotFound("No invitation matches this token and email")
        self._raise_if_inert(row)
        return row

    def _raise_if_inert(self, row: InvitationTable) -> None:
        if row.accepted_at is not None:
            raise InvitationAlreadyAccepted("This invitation has already been used")
        if ensure_aware(row.expires_at) <= self._clock():  # type: ignore[operator]
            raise InvitationExpired("This invitation has expired")

    async def accept(self, invitation: InvitationTable) -> datetime:
        """Mark *invitation* accepted exactly once.

        Returns the acceptance timestamp.  The caller that loses a race
        gets :class:`InvitationAlreadyAccepted` (or :class:`InvitationExpired`
        if the expiry passed in between).
        """
        now = self._clock()
        won = await InvitationRepository(self._session).mark_accepted(invitation.id, now)
        if not won:
            await self._session.refresh(invitation)
            self._raise_if_inert(invitation)
            # Row vanished (purged or revoked) between lookup and accept.
            raise InvitationNotFound("No invitation matches this token and email")
        await self._session.refresh(invitation)
        logger.info("Invitation %s accepted", invitation.id)
        return now

    async def revoke(self, invitation_id: str, issuer: SessionContext | None) -> None:
        """Delete a pending invitation of the issuer's school."""
        ctx = self._issuer(issuer, Operation.DELETE)
        deleted = await InvitationRepository(self._session, tenant_id=ctx.tenant_id).delete_pending(invitation_id)
        if not deleted:
            raise InvitationNotFound("No pending invitation with this id")
        logger.info("Invitation %s revoked by %s", invitation_id, ctx.identity_id)

    async def list_pending(self, issuer: SessionContext | None) -> list[InvitationTable]:
        ctx = self._issuer(issuer, Operation.READ)
        return await InvitationRepository(self._session, tenant_id=ctx.tenant_id).list_pending(self._clock())

    async def purge_expired(self, grace: timedelta | None = None) -> int:
        """Delete invitations whose expiry is older than *grace*.

        Accepted rows are never in flight, and an accept racing the purge
        requires ``expires_at > now``, so the two never conflict on a row
        that is still usable.
        """
        if grace is None:
            grace = timedelta(days=self._settings.invitation_purge_grace_days)
        cutoff = self._clock() - grace
        removed = await InvitationRepository(self._session).delete_expired_before(cutoff)
        if removed:
            logger.info("Purged %d expired invitation(s) older than %s", removed, cutoff.isoformat())
        return removed
