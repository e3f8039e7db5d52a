"""Middleware components for the school API."""

from __future__ import annotations

from school_api.middleware.auth import AuthenticationMiddleware
from school_api.middleware.logging import RequestLoggingMiddleware
from school_api.middleware.rbac import require_entity_access, require_roles

__all__ = [
    "AuthenticationMiddleware",
    "RequestLoggingMiddleware",
    "require_entity_access",
    "require_roles",
]
