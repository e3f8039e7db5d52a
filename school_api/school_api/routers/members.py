"""Member endpoints: list, change role, deactivate.

Listing is open to every active member of the school.  Role changes and
deactivation require owner or manager and follow the rank order
owner > manager > receptionist.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from school_core.members import MembershipService

from school_api.dependencies import AccessEngineDep, ContextDep, SessionDep
from school_api.schemas import MemberResponse, MembersResponse, UpdateRoleRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/members", tags=["members"])


@router.get("", response_model=MembersResponse)
async def list_members(
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
    include_inactive: bool = Query(default=True),
) -> MembersResponse:
    rows = await MembershipService(session, engine).list_members(context, include_inactive=include_inactive)
    members = [MemberResponse.model_validate(row) for row in rows]
    return MembersResponse(members=members, total=len(members))


@router.patch("/{member_id}/role", response_model=MemberResponse)
async def change_role(
    member_id: str,
    body: UpdateRoleRequest,
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
) -> MemberResponse:
    """Move a member to a new role."""
    row = await MembershipService(session, engine).change_role(context, member_id, body.role)
    return MemberResponse.model_validate(row)


@router.post("/{member_id}/deactivate", response_model=MemberResponse)
async def deactivate_member(
    member_id: str,
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
) -> MemberResponse:
    """Deactivate a member.  The profile row is kept; access is revoked."""
    row = await MembershipService(session, engine).deactivate(context, member_id)
    return MemberResponse.model_validate(row)
