"""Identity lifecycle events as delivered by the identity provider."""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class SignupMetadata(BaseModel):
    """Opaque signup metadata attached to an identity.

    ``tenant_id`` and ``display_name`` are accepted as aliases for
    ``school_id`` and ``full_name``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_owner_signup: bool = False
    school_id: str | None = Field(default=None, validation_alias=AliasChoices("school_id", "tenant_id"))
    invitation_token: str | None = None
    full_name: str | None = Field(default=None, validation_alias=AliasChoices("full_name", "display_name"))
    phone: str | None = None

    @field_validator("school_id", "invitation_token", "full_name", "phone")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value.strip() if value is not None else None


class IdentityEvent(BaseModel):
    """One ``identity created`` or ``identity updated`` notification."""

    identity_id: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=3, max_length=320)
    verified: bool = False
    kind: Literal["created", "updated"] = "created"
    metadata: SignupMetadata = Field(default_factory=SignupMetadata)


def default_full_name(email: str | None, fallback: str = "Member") -> str:
    """Local part of *email*, used when signup metadata carries no name."""
    if email and "@" in email:
        local = email.split("@", 1)[0].strip()
        if local:
            return local
    return fallback
