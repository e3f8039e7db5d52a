"""Core configuration loaded from environment variables."""

from __future__ import annotations

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class CoreSettings(BaseSettings):
    """Provisioning and invitation settings loaded with the ``SCHOOL_`` prefix."""

    model_config = SettingsConfigDict(
        env_prefix="SCHOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Invitations
    invitation_ttl_days: int = 7
    invitation_purge_grace_days: int = 7

    # Invited identities only receive a profile once their email is verified.
    require_verified_invitations: bool = True

    # Owner signup: bounded wait for the school row to become visible.
    tenant_visibility_max_attempts: int = 5
    tenant_visibility_initial_backoff_seconds: float = 0.2
    tenant_visibility_backoff_multiplier: float = 2.0
    tenant_visibility_max_wait_seconds: float = 5.0

    @field_validator("invitation_ttl_days", "tenant_visibility_max_attempts")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("invitation_purge_grace_days")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value


def load_core_settings() -> CoreSettings:
    """Construct settings from the environment / ``.env`` file."""
    return CoreSettings()
