"""Tenant-scoped CRUD over the business tables.

Every query is filtered by the caller's school through
:meth:`AccessControlEngine.scope`, and every row-level check goes through
:meth:`AccessControlEngine.check`.  A row that exists in another school and
a row that does not exist at all both raise :class:`AccessDenied`.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_core.access.policy import AccessControlEngine, Operation, SessionContext
from school_core.errors import AccessDenied
from school_core.state.tables import BUSINESS_TABLES, Base

logger = logging.getLogger(__name__)

_PROTECTED_COLUMNS = frozenset({"id", "school_id", "created_at"})

_MAX_PAGE_SIZE = 500


def _coerce(column: Any, value: Any) -> Any:
    """Parse ISO-8601 and decimal strings for date, time and numeric columns."""
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is datetime:
        return datetime.fromisoformat(value)
    if python_type is date:
        return date.fromisoformat(value)
    if python_type is Decimal:
        try:
            return Decimal(value)
        except InvalidOperation:
            raise ValueError(f"Invalid number for {column.key}: {value!r}") from None
    return value


def row_to_dict(row: Base) -> dict[str, Any]:
    """Plain JSON-friendly mapping of a business row."""
    out: dict[str, Any] = {}
    for column in inspect(type(row)).columns:
        value = getattr(row, column.key)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        out[column.key] = value
    return out


class TenantScopedRepository:
    """CRUD on one tenant-owned business table for one session context."""

    def __init__(
        self,
        session: AsyncSession,
        entity: str,
        context: SessionContext | None,
        engine: AccessControlEngine | None = None,
    ) -> None:
        table = BUSINESS_TABLES.get(entity)
        if table is None:
            raise AccessDenied(f"unknown entity '{entity}'")
        self._session = session
        self._entity = entity
        self._table = table
        self._engine = engine or AccessControlEngine()
        self._context = context

    def _ctx(self, operation: Operation) -> SessionContext:
        ctx = self._engine.require_context(self._context, self._entity, operation)
        if ctx is None:
            raise AccessDenied("no session context")
        # Role gate for the entity class before touching storage.
        return self._engine.check(ctx, self._entity, operation, ctx.tenant_id)

    async def _fetch(self, ctx: SessionContext, record_id: int) -> Any:
        stmt = self._engine.scope(select(self._table), self._table, ctx).where(self._table.id == record_id)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            raise AccessDenied(f"{self._entity} {record_id} not visible")
        return row

    async def list(self, limit: int = 100, offset: int = 0) -> list[Any]:
        """Rows of the caller's school only."""
        ctx = self._ctx(Operation.READ)
        limit = max(1, min(limit, _MAX_PAGE_SIZE))
        stmt = (
            self._engine.scope(select(self._table), self._table, ctx)
            .order_by(self._table.id)
            .limit(limit)
            .offset(max(0, offset))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, record_id: int) -> Any:
        ctx = self._ctx(Operation.READ)
        row = await self._fetch(ctx, record_id)
        self._engine.check(ctx, self._entity, Operation.READ, row.school_id)
        return row

    async def create(self, values: dict[str, Any]) -> Any:
        """Insert a row into the caller's school.

        A ``school_id`` in *values* must match the caller's school.
        """
        ctx = self._ctx(Operation.CREATE)
        data = dict(values)
        requested_school = data.pop("school_id", ctx.tenant_id)
        self._engine.check(ctx, self._entity, Operation.CREATE, requested_school)
        for key in ("id", "created_at"):
            data.pop(key, None)
        columns = {c.key: c for c in inspect(self._table).columns}
        unknown = set(data) - set(columns)
        if unknown:
            raise ValueError(f"Unknown columns for {self._entity}: {sorted(unknown)}")
        data = {key: _coerce(columns[key], value) for key, value in data.items()}
        row = self._table(school_id=ctx.tenant_id, **data)
        self._session.add(row)
        await self._session.flush()
        logger.debug("Created %s %s in school %s", self._entity, row.id, ctx.tenant_id)
        return row

    async def update(self, record_id: int, values: dict[str, Any]) -> Any:
        ctx = self._ctx(Operation.UPDATE)
        row = await self._fetch(ctx, record_id)
        self._engine.check(ctx, self._entity, Operation.UPDATE, row.school_id)
        columns = {c.key: c for c in inspect(self._table).columns}
        for key, value in values.items():
            if key in _PROTECTED_COLUMNS:
                continue
            if key not in columns:
                raise ValueError(f"Unknown column for {self._entity}: {key}")
            setattr(row, key, _coerce(columns[key], value))
        await self._session.flush()
        return row

    async def delete(self, record_id: int) -> None:
        ctx = self._ctx(Operation.DELETE)
        row = await self._fetch(ctx, record_id)
        self._engine.check(ctx, self._entity, Operation.DELETE, row.school_id)
        await self._session.delete(row)
        await self._session.flush()
