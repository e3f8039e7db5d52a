"""Bounded wait for a row to become visible, with exponential backoff.

Covers the gap between "school created" and "identity created" when the
two arrive as separate client calls.  The loop is capped both by attempt
count and by wall-clock time, and raises
:class:`~school_core.errors.TenantVisibilityTimeout` instead of hanging.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, Field

from school_core.config import CoreSettings
from school_core.errors import TenantVisibilityTimeout

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class VisibilityRetryPolicy(BaseModel):
    """Tuneable bounds for the visibility wait."""

    max_attempts: int = Field(default=5, ge=1, description="Total existence checks, including the first.")
    initial_backoff_seconds: float = Field(default=0.2, gt=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_wait_seconds: float = Field(default=5.0, gt=0.0, description="Wall-clock cap across all attempts.")

    @classmethod
    def from_settings(cls, settings: CoreSettings) -> VisibilityRetryPolicy:
        return cls(
            max_attempts=settings.tenant_visibility_max_attempts,
            initial_backoff_seconds=settings.tenant_visibility_initial_backoff_seconds,
            backoff_multiplier=max(settings.tenant_visibility_backoff_multiplier, 1.0),
            max_wait_seconds=settings.tenant_visibility_max_wait_seconds,
        )


async def wait_until_visible(
    check: Callable[[], Awaitable[bool]],
    policy: VisibilityRetryPolicy,
    *,
    subject: str,
    sleep: Sleeper = asyncio.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> int:
    """Poll *check* until it returns ``True``.

    Parameters
    ----------
    check:
        Async predicate, re-run from scratch on every attempt.
    policy:
        Attempt and wall-clock bounds.
    subject:
        Identifier of the awaited row, for logs and the raised error.

    Returns
    -------
    int
        The attempt number on which the row became visible.

    Raises
    ------
    TenantVisibilityTimeout
        If either bound is exhausted first.
    """
    started = monotonic()
    delay = policy.initial_backoff_seconds
    attempt = 0

    while attempt < policy.max_attempts:
        attempt += 1
        if await check():
            if attempt > 1:
                logger.info("%s became visible on attempt %d", subject, attempt)
            return attempt
        if attempt >= policy.max_attempts:
            break
        remaining = policy.max_wait_seconds - (monotonic() - started)
        if remaining <= 0:
            break
        pause = min(delay, remaining)
        logger.warning(
            "%s not visible (attempt %d/%d); retrying in %.2fs",
            subject,
            attempt,
            policy.max_attempts,
            pause,
        )
        await sleep(pause)
        delay *= policy.backoff_multiplier

    waited = monotonic() - started
    raise TenantVisibilityTimeout(subject, attempt, waited)
