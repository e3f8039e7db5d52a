"""Session context endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from school_api.dependencies import IdentityDep, OptionalContextDep
from school_api.schemas import SessionContextResponse

router = APIRouter(tags=["session"])


@router.get("/session", response_model=SessionContextResponse)
async def resolve_session(identity: IdentityDep, context: OptionalContextDep) -> SessionContextResponse:
    """Return the caller's ``{tenant_id, role, active}``.

    A profile-less identity (signup still in flight) gets ``context: null``,
    never an error.
    """
    return SessionContextResponse(
        identity_id=identity.sub,
        email=identity.email,
        context=context.to_dict() if context is not None else None,
    )
