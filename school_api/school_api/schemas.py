"""Shared Pydantic request/response models for API endpoints.

These schemas ensure that endpoint responses are validated and documented
in the OpenAPI specification.  Routers import from here to avoid duplication.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

_ROLE_PATTERN = "^(owner|manager|receptionist)$"

# ---------------------------------------------------------------------------
# School schemas
# ---------------------------------------------------------------------------


class SchoolCreateRequest(BaseModel):
    """Request body for ``POST /schools``."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=500)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=320)
    website: str | None = Field(default=None, max_length=500)
    logo_url: str | None = Field(default=None, max_length=1000)
    settings: dict[str, Any] = Field(default_factory=dict)


class SchoolUpdateRequest(BaseModel):
    """Request body for ``PATCH /schools/current``.  Only set fields change."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=500)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=320)
    website: str | None = Field(default=None, max_length=500)
    logo_url: str | None = Field(default=None, max_length=1000)
    settings: dict[str, Any] | None = None


class SchoolResponse(BaseModel):
    """A school (tenant)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    logo_url: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Identity / provisioning schemas
# ---------------------------------------------------------------------------


class ProvisionRequest(BaseModel):
    """Request body for the fallback ``POST /identity/provision``."""

    school_id: str = Field(..., min_length=1, max_length=64)
    full_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)


class ProvisioningResponse(BaseModel):
    """Outcome of one provisioning attempt."""

    status: Literal["created", "already_exists", "deferred", "skipped", "failed"]
    success: bool
    identity_id: str
    school_id: str | None = None
    role: str | None = None
    reason: str | None = None


class SessionContextResponse(BaseModel):
    """The caller's resolved session context; ``context`` is null when profile-less."""

    identity_id: str
    email: str | None = None
    context: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Invitation schemas
# ---------------------------------------------------------------------------


class InvitationCreateRequest(BaseModel):
    """Request body for ``POST /invitations``."""

    email: str = Field(..., min_length=3, max_length=320, description="Email address of the invitee.")
    role: str = Field(
        default="receptionist",
        pattern=_ROLE_PATTERN,
        description="Role granted on acceptance.",
    )


class InvitationResponse(BaseModel):
    """A pending invitation.  The token is only returned on creation."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    role: str
    school_id: str
    invited_by: str
    expires_at: datetime
    created_at: datetime | None = None
    token: str | None = None


class InvitationListResponse(BaseModel):
    invitations: list[InvitationResponse]
    total: int


# ---------------------------------------------------------------------------
# Member schemas
# ---------------------------------------------------------------------------


class MemberResponse(BaseModel):
    """A school member (profile)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    school_id: str
    role: str
    full_name: str
    email: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    invited_by: str | None = None
    is_active: bool
    created_at: datetime | None = None


class MembersResponse(BaseModel):
    members: list[MemberResponse]
    total: int


class UpdateRoleRequest(BaseModel):
    """Request body for changing a member's role."""

    role: str = Field(
        ...,
        pattern=_ROLE_PATTERN,
        description="New role for the member.",
    )


# ---------------------------------------------------------------------------
# Record schemas
# ---------------------------------------------------------------------------


class RecordListResponse(BaseModel):
    """Rows of one tenant-owned entity."""

    entity: str
    records: list[dict[str, Any]]
    total: int
    limit: int
    offset: int
