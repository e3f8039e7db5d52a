"""Tests for CoreSettings and identity event parsing."""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from school_core.config import CoreSettings
from school_core.provisioning.events import IdentityEvent, default_full_name


class TestCoreSettings:
    def test_defaults(self, monkeypatch):
        for key in ("SCHOOL_INVITATION_TTL_DAYS", "SCHOOL_REQUIRE_VERIFIED_INVITATIONS"):
            monkeypatch.delenv(key, raising=False)
        settings = CoreSettings()
        assert settings.invitation_ttl_days == 7
        assert settings.require_verified_invitations is True
        assert settings.tenant_visibility_max_attempts == 5

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SCHOOL_INVITATION_TTL_DAYS", "3")
        monkeypatch.setenv("SCHOOL_REQUIRE_VERIFIED_INVITATIONS", "false")
        settings = CoreSettings()
        assert settings.invitation_ttl_days == 3
        assert settings.require_verified_invitations is False

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValidationError):
            CoreSettings(invitation_ttl_days=0)

    def test_rejects_negative_grace(self):
        with pytest.raises(ValidationError):
            CoreSettings(invitation_purge_grace_days=-1)


class TestIdentityEvent:
    def test_metadata_aliases(self):
        event = IdentityEvent.model_validate(
            {
                "identity_id": "u1",
                "email": "u1@x.com",
                "metadata": {"is_owner_signup": "true", "tenant_id": "t1", "display_name": "Uma"},
            }
        )
        assert event.metadata.is_owner_signup is True
        assert event.metadata.school_id == "t1"
        assert event.metadata.full_name == "Uma"
        assert event.kind == "created"
        assert event.verified is False

    def test_blank_token_is_none(self):
        event = IdentityEvent(identity_id="u1", email="u1@x.com", metadata={"invitation_token": "  "})
        assert event.metadata.invitation_token is None

    def test_unknown_metadata_ignored(self):
        event = IdentityEvent(identity_id="u1", email="u1@x.com", metadata={"favourite_colour": "teal"})
        assert event.metadata.is_owner_signup is False

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValidationError):
            IdentityEvent(identity_id="u1", email="u1@x.com", kind="deleted")

    def test_default_full_name(self):
        assert default_full_name("jo.smith@x.com") == "jo.smith"
        assert default_full_name(None) == "Member"
