"""Identity-provider integration: lifecycle webhook and fallback provisioning."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from school_core.provisioning.events import IdentityEvent
from school_core.provisioning.handler import ProvisioningHandler

from school_api.dependencies import CoreSettingsDep, IdentityDep, PublicSessionDep, SettingsDep
from school_api.schemas import ProvisioningResponse, ProvisionRequest
from school_api.security import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/identity", tags=["identity"])

_SIGNATURE_HEADER = "x-identity-signature"


@router.post("/events", response_model=ProvisioningResponse)
async def identity_event(
    request: Request,
    session: PublicSessionDep,
    settings: SettingsDep,
    core_settings: CoreSettingsDep,
) -> dict[str, Any]:
    """Receive an ``identity created`` / ``identity updated`` notification.

    Validates the ``X-Identity-Signature`` header via HMAC-SHA256 over the
    raw body and runs the provisioning handler.  This endpoint bypasses
    bearer-token auth.  Provisioning failures are reported in the body with
    HTTP 200 so the identity provider's own operation never fails because
    of them; only signature and payload errors are rejected.
    """
    # The HMAC MUST be verified BEFORE any processing.
    body = await request.body()
    signature = request.headers.get(_SIGNATURE_HEADER)
    if not signature:
        raise HTTPException(status_code=401, detail="Missing X-Identity-Signature header")
    if not verify_signature(settings.identity_webhook_secret, body, signature):
        logger.warning("Identity event rejected: signature mismatch")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = IdentityEvent.model_validate(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc

    result = await ProvisioningHandler(session, core_settings).handle(event)
    return result.to_dict()


@router.post("/provision", response_model=ProvisioningResponse)
async def provision_owner(
    body: ProvisionRequest,
    identity: IdentityDep,
    session: PublicSessionDep,
    core_settings: CoreSettingsDep,
) -> dict[str, Any]:
    """Make the authenticated identity the owner of a freshly created school.

    Fallback for when the event-driven path has not completed.  Returns
    ``created``, ``already_exists`` or ``failed`` with a reason; a school
    that already has members cannot be claimed.
    """
    handler = ProvisioningHandler(session, core_settings)
    result = await handler.provision_owner(
        identity.sub,
        body.school_id,
        full_name=body.full_name,
        email=identity.email,
        phone=body.phone,
    )
    return result.to_dict()
