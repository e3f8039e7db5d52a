"""Background scheduler that purges long-expired invitations.

Runs as an ``asyncio`` background task started from the application
lifespan.  Each pass opens its own short transaction on the privileged
connection and deletes invitations whose expiry is older than the
configured grace period.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from school_core.config import CoreSettings
from school_core.invitations import InvitationRegistry
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class InvitationPurgeScheduler:
    """AsyncIO background task for invitation cleanup.

    Parameters
    ----------
    session_factory:
        An ``async_sessionmaker`` on the privileged engine.  The purge spans
        every school, so it must not run under a tenant context.
    settings:
        Supplies the purge grace period.
    interval_seconds:
        Pause between passes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: CoreSettings,
        interval_seconds: float = 3600.0,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Whether the scheduler loop is active."""
        return self._running

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._running:
            logger.warning("InvitationPurgeScheduler already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("InvitationPurgeScheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("InvitationPurgeScheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.purge_once()
            except asyncio.CancelledError:
                raise
            except (OperationalError, InterfaceError) as exc:
                logger.error("InvitationPurgeScheduler database error: %s", exc, exc_info=True)
            except Exception as exc:
                logger.critical("InvitationPurgeScheduler unexpected error: %s", exc, exc_info=True)
                raise
            await asyncio.sleep(self._interval)

    async def purge_once(self) -> int:
        """Run one purge pass in its own transaction and return the rows removed."""
        grace = timedelta(days=self._settings.invitation_purge_grace_days)
        async with self._session_factory() as session:
            removed = await InvitationRegistry(session, self._settings).purge_expired(grace)
            await session.commit()
        return removed
