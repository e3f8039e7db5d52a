"""School (tenant) endpoints: bootstrap creation and owner administration."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from school_core.access.policy import SchoolRole, SessionContext
from school_core.schools import SchoolService

from school_api.dependencies import AccessEngineDep, ContextDep, PublicSessionDep, SessionDep
from school_api.middleware.rbac import require_roles
from school_api.schemas import SchoolCreateRequest, SchoolResponse, SchoolUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schools", tags=["schools"])


@router.post("", response_model=SchoolResponse, status_code=201)
async def create_school(body: SchoolCreateRequest, session: PublicSessionDep) -> SchoolResponse:
    """Create a new school.

    Public: the signing-up owner has no profile yet.  The returned ``id``
    is passed as ``school_id`` in the owner's signup metadata.
    """
    school = await SchoolService(session).create(**body.model_dump())
    logger.info("School %s created", school.id)
    return SchoolResponse.model_validate(school)


@router.get("/current", response_model=SchoolResponse)
async def get_current_school(
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
) -> SchoolResponse:
    """Return the caller's school.  Any active member may read it."""
    school = await SchoolService(session, engine).get_current(context)
    return SchoolResponse.model_validate(school)


@router.patch("/current", response_model=SchoolResponse)
async def update_current_school(
    body: SchoolUpdateRequest,
    session: SessionDep,
    engine: AccessEngineDep,
    context: SessionContext = Depends(require_roles(SchoolRole.OWNER)),
) -> SchoolResponse:
    """Update the caller's school.  Owner only."""
    fields = body.model_dump(exclude_unset=True)
    if "settings" in fields and fields["settings"] is None:
        fields["settings"] = {}
    school = await SchoolService(session, engine).update_current(context, fields)
    return SchoolResponse.model_validate(school)


@router.delete("/current", status_code=204)
async def delete_current_school(
    session: SessionDep,
    engine: AccessEngineDep,
    context: SessionContext = Depends(require_roles(SchoolRole.OWNER)),
) -> Response:
    """Delete the caller's school and every row it owns.  Owner only."""
    await SchoolService(session, engine).delete_current(context)
    return Response(status_code=204)
