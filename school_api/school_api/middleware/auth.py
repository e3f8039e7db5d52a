"""Bearer-token authentication middleware.

Validates the identity-provider token on every non-public request via
:class:`IdentityTokenVerifier`, and populates ``request.state`` with the
verified claims (``identity``, ``sub``, ``email``).  The caller's school
and role are not carried in the token: they are resolved from the
``profiles`` table by the session-context dependency.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from school_api.security import IdentityTokenVerifier

logger = logging.getLogger(__name__)

# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        # Authenticated by HMAC signature instead of a bearer token.
        "/api/v1/identity/events",
    }
)

# Prefixes that skip auth (e.g. static docs assets).
_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
)

# (method, path) pairs that are public only for that method.
_PUBLIC_ROUTES: frozenset[tuple[str, str]] = frozenset(
    {
        # Tenant bootstrap: the signing-up owner has no token yet.
        ("POST", "/api/v1/schools"),
    }
)


def _is_public_path(path: str, method: str = "GET") -> bool:
    """Return ``True`` if the request should bypass authentication."""
    if path in _PUBLIC_PATHS or (method.upper(), path) in _PUBLIC_ROUTES:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Checks whether the path is public (health, docs, bootstrap, webhook)
       and skips auth.
    2. Extracts the ``Authorization: Bearer <token>`` header.
    3. Validates the token signature and expiry.
    4. Stores the claims on ``request.state``.
    5. Returns a 401/403 JSON response on failure.
    """

    def __init__(self, app: Any, verifier: IdentityTokenVerifier) -> None:
        super().__init__(app)
        self._verifier = verifier

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if request.method == "OPTIONS" or _is_public_path(path, request.method):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing Authorization header"},
            )

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return JSONResponse(
                status_code=401,
                content={"detail": "Authorization header must use Bearer scheme"},
            )

        try:
            claims = self._verifier.verify(parts[1])
        except PermissionError as exc:
            error_msg = str(exc)
            # Distinguish expired tokens (403) from invalid tokens (401).
            if "expired" in error_msg.lower():
                return JSONResponse(
                    status_code=403,
                    content={"detail": "Token has expired"},
                )
            logger.debug("Rejected token on %s: %s", path, error_msg)
            return JSONResponse(
                status_code=401,
                content={"detail": f"Invalid token: {error_msg}"},
            )

        request.state.identity = claims
        request.state.sub = claims.sub
        request.state.email = claims.email

        return await call_next(request)
