"""Identity token and webhook signature verification.

Bearer tokens are issued by the external identity provider and signed with
a shared secret::

    <base64url(json claims)>.<hex hmac-sha256(json claims)>

Webhook deliveries carry ``X-Identity-Signature: sha256=<hex>`` computed
over the raw request body with a second shared secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


class IdentityClaims(BaseModel):
    """Validated claims carried by an identity token."""

    model_config = ConfigDict(extra="ignore")

    sub: str = Field(..., min_length=1, max_length=128)
    email: str | None = None
    email_verified: bool = False
    exp: float
    iat: float | None = None


def _secret_bytes(secret: SecretStr | str) -> bytes:
    raw = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
    return raw.encode("utf-8")


def _sign(secret: SecretStr | str, payload: bytes) -> str:
    return hmac.new(_secret_bytes(secret), payload, hashlib.sha256).hexdigest()


def _b64decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class IdentityTokenVerifier:
    """Validate HMAC-signed identity tokens.

    Parameters
    ----------
    secret:
        Shared secret configured with the identity provider.
    clock:
        Returns the current UNIX time; injectable for tests.
    leeway_seconds:
        Clock skew tolerated when checking ``exp``.
    """

    def __init__(
        self,
        secret: SecretStr | str,
        *,
        clock: Callable[[], float] = time.time,
        leeway_seconds: float = 0.0,
    ) -> None:
        self._secret = secret
        self._clock = clock
        self._leeway = leeway_seconds

    def issue(self, claims: dict[str, Any]) -> str:
        """Sign *claims* into a token.

        The identity provider normally issues tokens; this exists for local
        development and tests.
        """
        payload = json.dumps(claims, separators=(",", ":")).encode("utf-8")
        encoded = base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")
        return f"{encoded}.{_sign(self._secret, payload)}"

    def verify(self, token: str) -> IdentityClaims:
        """Return the claims of a valid token.

        Raises
        ------
        PermissionError
            If the token is malformed, the signature does not match, or the
            token has expired.
        """
        encoded, sep, signature = token.rpartition(".")
        if not sep or not encoded or not signature:
            raise PermissionError("Malformed token")

        try:
            payload = _b64decode(encoded)
        except (binascii.Error, ValueError) as exc:
            raise PermissionError("Malformed token") from exc

        if not hmac.compare_digest(_sign(self._secret, payload), signature):
            raise PermissionError("Invalid signature")

        try:
            claims = IdentityClaims.model_validate(json.loads(payload))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
            raise PermissionError("Malformed claims") from exc

        if claims.exp + self._leeway < self._clock():
            raise PermissionError("Token has expired")
        return claims


def compute_signature(secret: SecretStr | str, body: bytes) -> str:
    """Return the ``sha256=<hex>`` signature header value for *body*."""
    return SIGNATURE_PREFIX + _sign(secret, body)


def verify_signature(secret: SecretStr | str, body: bytes, signature_header: str | None) -> bool:
    """Constant-time check of a webhook ``sha256=<hex>`` signature."""
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature_header)
