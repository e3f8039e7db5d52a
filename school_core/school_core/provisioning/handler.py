"""Turn identity lifecycle events into school profiles.

Two onboarding paths are chosen from the event metadata:

* **Owner signup**: the school was created first (bootstrap, no session)
  and the metadata names it.  An owner profile is created immediately,
  whatever the verification state, once the school row is visible.  A
  school that already has members is refused (``tenant_already_claimed``).
* **Invitation signup**: the metadata carries an invitation token.  The
  invitation is consumed and a profile with its role is created, but only
  after the email is verified when ``require_verified_invitations`` is set.

Delivery is at-least-once.  Profile creation is ``INSERT ... ON CONFLICT
(id) DO NOTHING`` and acceptance is a conditional update, so redelivered
events never apply twice.  :meth:`ProvisioningHandler.handle` never raises:
failures are logged and reported in the returned result so the identity
provider's own operation is never broken by provisioning.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from school_core.access.policy import AccessControlEngine, Operation, SchoolRole
from school_core.config import CoreSettings
from school_core.errors import TenancyError, TenantAlreadyClaimed, TenantNotFound
from school_core.invitations import Clock, InvitationRegistry, utc_now
from school_core.provisioning.events import IdentityEvent, default_full_name
from school_core.provisioning.retry import Sleeper, VisibilityRetryPolicy, wait_until_visible
from school_core.state.repository import ProfileRepository, SchoolRepository, normalize_email

logger = logging.getLogger(__name__)


class ProvisioningOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    DEFERRED = "deferred"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ProvisioningResult:
    """Structured outcome of one provisioning attempt."""

    outcome: ProvisioningOutcome
    identity_id: str
    school_id: str | None = None
    role: str | None = None
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome in (ProvisioningOutcome.CREATED, ProvisioningOutcome.ALREADY_EXISTS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.outcome.value,
            "success": self.success,
            "identity_id": self.identity_id,
            "school_id": self.school_id,
            "role": self.role,
            "reason": self.reason,
        }


class ProvisioningHandler:
    """Create at most one profile per identity from signup events.

    Parameters
    ----------
    session:
        Privileged async session.  Provisioning is a bootstrap operation and
        runs before the identity has a session context.
    settings:
        Retry bounds and the verified-invitation policy.
    clock:
        Current UTC time; injectable for tests.
    sleep / monotonic:
        Backoff primitives for the school-visibility wait; injectable for tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: CoreSettings | None = None,
        *,
        clock: Clock = utc_now,
        sleep: Sleeper = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        engine: AccessControlEngine | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or CoreSettings()
        self._clock = clock
        self._sleep = sleep
        self._monotonic = monotonic
        self._profiles = ProfileRepository(session)
        self._schools = SchoolRepository(session)
        self._invitations = InvitationRegistry(session, self._settings, clock=clock)
        self._retry = VisibilityRetryPolicy.from_settings(self._settings)
        # Provisioning is one of the two operations allowed without a context.
        (engine or AccessControlEngine()).require_context(None, "profiles", Operation.PROVISION)

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle(self, event: IdentityEvent) -> ProvisioningResult:
        """Process one identity event.  Never raises."""
        try:
            result = await self._dispatch(event)
        except TenancyError as exc:
            await self._session.rollback()
            logger.warning(
                "Provisioning failed for identity %s: %s (%s)",
                event.identity_id,
                exc.code,
                exc.message,
            )
            return ProvisioningResult(ProvisioningOutcome.FAILED, event.identity_id, reason=exc.code)
        except Exception:
            await self._session.rollback()
            logger.error("Unexpected provisioning error for identity %s", event.identity_id, exc_info=True)
            return ProvisioningResult(ProvisioningOutcome.FAILED, event.identity_id, reason="internal_error")

        logger.info(
            "Provisioning identity=%s kind=%s outcome=%s school=%s",
            event.identity_id,
            event.kind,
            result.outcome.value,
            result.school_id,
        )
        return result

    async def _dispatch(self, event: IdentityEvent) -> ProvisioningResult:
        existing = await self._profiles.get_by_id(event.identity_id)
        if existing is not None:
            return ProvisioningResult(
                ProvisioningOutcome.ALREADY_EXISTS,
                event.identity_id,
                school_id=existing.school_id,
                role=existing.role,
            )

        metadata = event.metadata
        if metadata.is_owner_signup:
            if not metadata.school_id:
                raise TenantNotFound("Owner signup without a school id")
            return await self._create_owner(
                event.identity_id,
                metadata.school_id,
                full_name=metadata.full_name,
                email=event.email,
                phone=metadata.phone,
            )

        if metadata.invitation_token:
            if self._settings.require_verified_invitations and not event.verified:
                logger.info("Deferring invited identity %s until email is verified", event.identity_id)
                return ProvisioningResult(ProvisioningOutcome.DEFERRED, event.identity_id, reason="email_unverified")
            return await self._accept_invitation(event)

        return ProvisioningResult(ProvisioningOutcome.SKIPPED, event.identity_id, reason="no_signup_metadata")

    # ------------------------------------------------------------------
    # Owner path
    # ------------------------------------------------------------------

    async def _wait_for_school(self, school_id: str) -> None:
        await wait_until_visible(
            lambda: self._schools.exists(school_id),
            self._retry,
            subject=school_id,
            sleep=self._sleep,
            monotonic=self._monotonic,
        )

    async def _create_owner(
        self,
        identity_id: str,
        school_id: str,
        *,
        full_name: str | None,
        email: str | None,
        phone: str | None,
    ) -> ProvisioningResult:
        await self._wait_for_school(school_id)
        # A school with members is never handed to a new owner, whichever
        # entry point asked.
        await self._schools.lock(school_id)
        if await self._profiles.count_for_school(school_id) > 0:
            return await self._refuse_claim(identity_id, school_id)
        inserted = await self._profiles.insert_if_absent(
            identity_id=identity_id,
            school_id=school_id,
            role=SchoolRole.OWNER.value,
            full_name=full_name or default_full_name(email),
            email=email,
            phone=phone,
        )
        if not inserted:
            return await self._already_exists(identity_id)
        if await self._profiles.count_for_school(school_id) > 1:
            # Lost a race with another claimant that passed the same check.
            raise TenantAlreadyClaimed(f"School {school_id} already has members")
        return ProvisioningResult(
            ProvisioningOutcome.CREATED,
            identity_id,
            school_id=school_id,
            role=SchoolRole.OWNER.value,
        )

    async def _refuse_claim(self, identity_id: str, school_id: str) -> ProvisioningResult:
        if await self._profiles.get_by_id(identity_id) is not None:
            return await self._already_exists(identity_id)
        raise TenantAlreadyClaimed(f"School {school_id} already has members")

    async def _already_exists(self, identity_id: str) -> ProvisioningResult:
        row = await self._profiles.get_by_id(identity_id)
        return ProvisioningResult(
            ProvisioningOutcome.ALREADY_EXISTS,
            identity_id,
            school_id=row.school_id if row else None,
            role=row.role if row else None,
        )

    async def provision_owner(
        self,
        identity_id: str,
        school_id: str,
        full_name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> ProvisioningResult:
        """Fallback entry point for when the event-driven path has not completed.

        Returns ``created``, ``already_exists`` or ``failed`` with a reason;
        never raises.  A unique-violation race with a concurrent
        provisioning of the same identity counts as ``already_exists``.
        """
        try:
            existing = await self._profiles.get_by_id(identity_id)
            if existing is not None:
                return ProvisioningResult(
                    ProvisioningOutcome.ALREADY_EXISTS,
                    identity_id,
                    school_id=existing.school_id,
                    role=existing.role,
                )
            return await self._create_owner(
                identity_id,
                school_id,
                full_name=full_name,
                email=normalize_email(email) if email else None,
                phone=phone,
            )
        except IntegrityError:
            await self._session.rollback()
            if await self._profiles.get_by_id(identity_id) is not None:
                return await self._already_exists(identity_id)
            logger.warning("Owner provisioning for %s hit a constraint violation", identity_id, exc_info=True)
            return ProvisioningResult(ProvisioningOutcome.FAILED, identity_id, reason="tenant_not_found")
        except TenancyError as exc:
            await self._session.rollback()
            logger.warning("Owner provisioning failed for %s: %s", identity_id, exc.message)
            return ProvisioningResult(ProvisioningOutcome.FAILED, identity_id, reason=exc.code)
        except Exception:
            await self._session.rollback()
            logger.error("Unexpected error provisioning owner %s", identity_id, exc_info=True)
            return ProvisioningResult(ProvisioningOutcome.FAILED, identity_id, reason="internal_error")

    # ------------------------------------------------------------------
    # Invitation path
    # ------------------------------------------------------------------

    async def _accept_invitation(self, event: IdentityEvent) -> ProvisioningResult:
        token = event.metadata.invitation_token or ""
        invitation = await self._invitations.get_pending(token, event.email)
        await self._invitations.accept(invitation)

        inserted = await self._profiles.insert_if_absent(
            identity_id=event.identity_id,
            school_id=invitation.school_id,
            role=invitation.role,
            full_name=event.metadata.full_name or default_full_name(event.email),
            email=event.email,
            phone=event.metadata.phone,
            invited_by=invitation.invited_by,
        )
        if not inserted:
            # A concurrent delivery created the profile first; keep the
            # invitation pending rather than consuming it for nothing.
            await self._session.rollback()
            return await self._already_exists(event.identity_id)

        return ProvisioningResult(
            ProvisioningOutcome.CREATED,
            event.identity_id,
            school_id=invitation.school_id,
            role=invitation.role,
        )
