"""API router modules for the school control plane."""

from __future__ import annotations

from school_api.routers import health, identity, invitations, members, records, schools, session

__all__ = [
    "health",
    "identity",
    "invitations",
    "members",
    "records",
    "schools",
    "session",
]
