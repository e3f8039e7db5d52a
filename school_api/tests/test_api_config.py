"""Tests for APISettings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError
from school_api.config import APISettings, PlatformEnv


class TestCorsValidation:
    def test_wildcard_with_credentials_rejected(self) -> None:
        with pytest.raises(ValidationError, match="wildcard"):
            APISettings(cors_origins=["*"], cors_allow_credentials=True)

    def test_wildcard_without_credentials_allowed(self) -> None:
        settings = APISettings(cors_origins=["*"], cors_allow_credentials=False)

        assert settings.cors_origins == ["*"]


class TestProductionSecrets:
    def test_dev_defaults_rejected_in_production(self, monkeypatch) -> None:
        monkeypatch.delenv("API_IDENTITY_TOKEN_SECRET", raising=False)
        monkeypatch.delenv("API_IDENTITY_WEBHOOK_SECRET", raising=False)

        with pytest.raises(ValidationError, match="identity_token_secret"):
            APISettings(platform_env=PlatformEnv.PRODUCTION)

    def test_explicit_secrets_accepted_in_production(self) -> None:
        settings = APISettings(
            platform_env="production",
            identity_token_secret="a-real-token-secret",
            identity_webhook_secret="a-real-webhook-secret",
        )

        assert settings.platform_env is PlatformEnv.PRODUCTION

    def test_dev_defaults_fine_outside_production(self, monkeypatch) -> None:
        monkeypatch.delenv("API_IDENTITY_TOKEN_SECRET", raising=False)

        settings = APISettings(platform_env="staging")

        assert settings.identity_token_secret.get_secret_value().startswith("school-dev-")


class TestDatabaseUrls:
    def test_privileged_url_falls_back(self) -> None:
        settings = APISettings(database_url="sqlite+aiosqlite:///x.db")

        assert settings.effective_privileged_url == "sqlite+aiosqlite:///x.db"

    def test_privileged_url_explicit(self) -> None:
        settings = APISettings(
            database_url="postgresql+asyncpg://app@db/school",
            privileged_database_url="postgresql+asyncpg://admin@db/school",
        )

        assert settings.effective_privileged_url == "postgresql+asyncpg://admin@db/school"

    def test_negative_purge_interval_rejected(self) -> None:
        with pytest.raises(ValidationError):
            APISettings(invitation_purge_interval_seconds=-5)

    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("API_PORT", "9001")

        assert APISettings().port == 9001
