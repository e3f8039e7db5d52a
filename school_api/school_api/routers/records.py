"""Generic CRUD over tenant-owned business tables.

``{entity}`` is one of the business table names (``students``,
``teachers``, ``course_templates``, ``course_instances``, ``attendance``,
``student_payments``, ``teacher_payouts``, ``revenue``,
``archive_requests``).  Every request is scoped to the caller's school;
financial entities are limited to owners and managers.  Unknown entities,
rows of other schools, and missing rows all answer 403.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Query, Response

from school_core.access.scoped import TenantScopedRepository, row_to_dict

from school_api.dependencies import AccessEngineDep, ContextDep, SessionDep
from school_api.schemas import RecordListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/records", tags=["records"])


@router.get("/{entity}", response_model=RecordListResponse)
async def list_records(
    entity: str,
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> RecordListResponse:
    rows = await TenantScopedRepository(session, entity, context, engine).list(limit=limit, offset=offset)
    records = [row_to_dict(row) for row in rows]
    return RecordListResponse(entity=entity, records=records, total=len(records), limit=limit, offset=offset)


@router.get("/{entity}/{record_id}")
async def get_record(
    entity: str,
    record_id: int,
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
) -> dict[str, Any]:
    row = await TenantScopedRepository(session, entity, context, engine).get(record_id)
    return row_to_dict(row)


@router.post("/{entity}", status_code=201)
async def create_record(
    entity: str,
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
    values: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    """Insert a row into the caller's school.  ``school_id`` is filled in."""
    row = await TenantScopedRepository(session, entity, context, engine).create(values)
    return row_to_dict(row)


@router.patch("/{entity}/{record_id}")
async def update_record(
    entity: str,
    record_id: int,
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
    values: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    row = await TenantScopedRepository(session, entity, context, engine).update(record_id, values)
    return row_to_dict(row)


@router.delete("/{entity}/{record_id}", status_code=204)
async def delete_record(
    entity: str,
    record_id: int,
    session: SessionDep,
    context: ContextDep,
    engine: AccessEngineDep,
) -> Response:
    await TenantScopedRepository(session, entity, context, engine).delete(record_id)
    return Response(status_code=204)
