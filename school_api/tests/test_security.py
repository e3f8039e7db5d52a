"""Tests for identity token and webhook signature verification."""

from __future__ import annotations

import base64
import json

import pytest
from school_api.security import IdentityTokenVerifier, compute_signature, verify_signature

_SECRET = "unit-test-secret"


@pytest.fixture
def verifier() -> IdentityTokenVerifier:
    return IdentityTokenVerifier(_SECRET, clock=lambda: 1_000.0)


class TestIdentityTokenVerifier:
    def test_round_trip(self, verifier: IdentityTokenVerifier) -> None:
        token = verifier.issue({"sub": "u1", "email": "u1@x.com", "email_verified": True, "exp": 2_000})

        claims = verifier.verify(token)

        assert claims.sub == "u1"
        assert claims.email == "u1@x.com"
        assert claims.email_verified is True

    def test_expired_token(self, verifier: IdentityTokenVerifier) -> None:
        token = verifier.issue({"sub": "u1", "exp": 999})

        with pytest.raises(PermissionError, match="expired"):
            verifier.verify(token)

    def test_leeway_accepts_slightly_expired(self) -> None:
        verifier = IdentityTokenVerifier(_SECRET, clock=lambda: 1_000.0, leeway_seconds=5)
        token = verifier.issue({"sub": "u1", "exp": 997})

        assert verifier.verify(token).sub == "u1"

    def test_wrong_secret(self, verifier: IdentityTokenVerifier) -> None:
        token = IdentityTokenVerifier("other-secret").issue({"sub": "u1", "exp": 2_000})

        with pytest.raises(PermissionError, match="Invalid signature"):
            verifier.verify(token)

    def test_tampered_payload(self, verifier: IdentityTokenVerifier) -> None:
        token = verifier.issue({"sub": "u1", "exp": 2_000})
        _, signature = token.rsplit(".", 1)
        forged = base64.urlsafe_b64encode(json.dumps({"sub": "admin", "exp": 2_000}).encode()).decode()

        with pytest.raises(PermissionError):
            verifier.verify(f"{forged}.{signature}")

    @pytest.mark.parametrize("token", ["", "no-dot", ".abc", "abc.", "!!!.deadbeef"])
    def test_malformed(self, verifier: IdentityTokenVerifier, token: str) -> None:
        with pytest.raises(PermissionError):
            verifier.verify(token)

    def test_missing_sub_claim(self, verifier: IdentityTokenVerifier) -> None:
        token = verifier.issue({"email": "x@x.com", "exp": 2_000})

        with pytest.raises(PermissionError, match="Malformed claims"):
            verifier.verify(token)


class TestWebhookSignature:
    def test_valid_signature(self) -> None:
        body = b'{"identity_id": "u1"}'
        assert verify_signature(_SECRET, body, compute_signature(_SECRET, body))

    def test_header_format(self) -> None:
        assert compute_signature(_SECRET, b"x").startswith("sha256=")

    def test_body_mismatch(self) -> None:
        header = compute_signature(_SECRET, b"original")
        assert not verify_signature(_SECRET, b"modified", header)

    @pytest.mark.parametrize("header", [None, "", "md5=abc", "deadbeef"])
    def test_rejects_missing_or_foreign_format(self, header: str | None) -> None:
        assert not verify_signature(_SECRET, b"body", header)
