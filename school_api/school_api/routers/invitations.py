"""Invitation endpoints: issue, list and revoke invitations to the caller's school.

Owners and managers only.  A manager cannot invite an owner.  Accepting an
invitation happens during signup, through the identity event webhook.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from school_core.access.policy import Operation
from school_core.invitations import InvitationRegistry

from school_api.dependencies import AccessEngineDep, ContextDep, CoreSettingsDep, SessionDep
from school_api.middleware.rbac import require_entity_access
from school_api.schemas import InvitationCreateRequest, InvitationListResponse, InvitationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.post(
    "",
    response_model=InvitationResponse,
    status_code=201,
    dependencies=[Depends(require_entity_access("invitations", Operation.CREATE))],
)
async def create_invitation(
    body: InvitationCreateRequest,
    session: SessionDep,
    context: ContextDep,
    settings: CoreSettingsDep,
    engine: AccessEngineDep,
) -> InvitationResponse:
    """Invite *email* to the caller's school.

    The response carries the token once; it is delivered to the invitee
    out of band and passed back in their signup metadata.
    """
    registry = InvitationRegistry(session, settings, engine=engine)
    row = await registry.create(body.email, body.role, context.tenant_id, context)
    return InvitationResponse.model_validate(row)


@router.get(
    "",
    response_model=InvitationListResponse,
    dependencies=[Depends(require_entity_access("invitations", Operation.READ))],
)
async def list_invitations(
    session: SessionDep,
    context: ContextDep,
    settings: CoreSettingsDep,
    engine: AccessEngineDep,
) -> InvitationListResponse:
    """List the pending (unaccepted, unexpired) invitations of the caller's school."""
    rows = await InvitationRegistry(session, settings, engine=engine).list_pending(context)
    items = [InvitationResponse.model_validate(row).model_copy(update={"token": None}) for row in rows]
    return InvitationListResponse(invitations=items, total=len(items))


@router.delete(
    "/{invitation_id}",
    status_code=204,
    dependencies=[Depends(require_entity_access("invitations", Operation.DELETE))],
)
async def revoke_invitation(
    invitation_id: str,
    session: SessionDep,
    context: ContextDep,
    settings: CoreSettingsDep,
    engine: AccessEngineDep,
) -> Response:
    """Revoke a pending invitation of the caller's school."""
    await InvitationRegistry(session, settings, engine=engine).revoke(invitation_id, context)
    return Response(status_code=204)
