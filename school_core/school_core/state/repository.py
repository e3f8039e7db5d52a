"""Repository classes providing CRUD access to the tenancy tables.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on the ``get_session`` context manager).

Repositories constructed with ``tenant_id`` filter every query by that school.
Repositories constructed without one are the privileged accessors used by
the bootstrap operations and the session-context resolver.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from school_core.state.tables import InvitationTable, ProfileTable, SchoolTable

logger = logging.getLogger(__name__)

# Columns of ``schools`` that callers may set on create/update.
SCHOOL_MUTABLE_FIELDS: frozenset[str] = frozenset(
    {"name", "address", "phone", "email", "website", "logo_url", "settings"}
)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Coerce a naive datetime (as returned by SQLite) to UTC-aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def normalize_email(email: str) -> str:
    """Canonical form used for every stored and compared email address."""
    return email.strip().lower()


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to insert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names for conflict detection.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# SchoolRepository
# ---------------------------------------------------------------------------


class SchoolRepository:
    """CRUD operations for the ``schools`` table.

    Schools are addressed by id; authorization happens above this layer.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, name: str, **fields: Any) -> SchoolTable:
        """Insert a new school and return the persisted row.

        Raises
        ------
        ValueError
            If ``name`` is blank or an unknown field is supplied.
        """
        if not name or not name.strip():
            raise ValueError("School name must not be empty")
        unknown = set(fields) - SCHOOL_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown school fields: {sorted(unknown)}")
        settings = fields.pop("settings", None) or {}
        row = SchoolTable(id=uuid.uuid4().hex, name=name.strip(), settings=settings, **fields)
        self._session.add(row)
        await self._session.flush()
        logger.info("Created school %s", row.id)
        return row

    async def get(self, school_id: str) -> SchoolTable | None:
        """Fetch a school by id."""
        result = await self._session.execute(select(SchoolTable).where(SchoolTable.id == school_id))
        return result.scalar_one_or_none()

    async def lock(self, school_id: str) -> bool:
        """Take a row lock on the school for the rest of the transaction.

        Serialises concurrent claims of the same school on PostgreSQL.  SQLite
        has no row locks; the statement is a plain select there.
        """
        stmt = select(SchoolTable.id).where(SchoolTable.id == school_id).with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def exists(self, school_id: str) -> bool:
        """Return ``True`` when a row for *school_id* is visible to this transaction."""
        stmt = select(func.count()).select_from(SchoolTable).where(SchoolTable.id == school_id)
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0

    async def update(self, school_id: str, **fields: Any) -> SchoolTable | None:
        """Apply *fields* to a school.  Returns ``None`` when the school is gone."""
        unknown = set(fields) - SCHOOL_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown school fields: {sorted(unknown)}")
        if "name" in fields and (not fields["name"] or not str(fields["name"]).strip()):
            raise ValueError("School name must not be empty")
        row = await self.get(school_id)
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def delete(self, school_id: str) -> bool:
        """Delete a school; foreign keys cascade to every tenant-owned row."""
        result = await self._session.execute(delete(SchoolTable).where(SchoolTable.id == school_id))
        await self._session.flush()
        # Cascaded rows are removed by the database, not the ORM.
        self._session.expunge_all()
        deleted = (result.rowcount or 0) > 0  # type: ignore[attr-defined]
        if deleted:
            logger.info("Deleted school %s with cascade", school_id)
        return deleted


# ---------------------------------------------------------------------------
# ProfileRepository
# ---------------------------------------------------------------------------


class ProfileRepository:
    """Data access for the ``profiles`` table."""

    def __init__(self, session: AsyncSession, tenant_id: str | None = None) -> None:
        self._session = session
        self._tenant_id = tenant_id

    def _scoped(self, stmt: Any) -> Any:
        if self._tenant_id is not None:
            stmt = stmt.where(ProfileTable.school_id == self._tenant_id)
        return stmt

    async def get_by_id(self, identity_id: str) -> ProfileTable | None:
        """Primary-key lookup, filtered by tenant when the repository is scoped."""
        stmt = self._scoped(select(ProfileTable).where(ProfileTable.id == identity_id))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def insert_if_absent(
        self,
        *,
        identity_id: str,
        school_id: str,
        role: str,
        full_name: str,
        email: str | None = None,
        phone: str | None = None,
        invited_by: str | None = None,
    ) -> bool:
        """Conditionally insert a profile keyed by identity id.

        Returns ``True`` if a row was written, ``False`` if the identity
        already had a profile (``ON CONFLICT (id) DO NOTHING``).
        """
        now = datetime.now(UTC)
        result = await _dialect_upsert_nothing(
            self._session,
            ProfileTable,
            values={
                "id": identity_id,
                "school_id": school_id,
                "role": role,
                "full_name": full_name,
                "email": normalize_email(email) if email else None,
                "phone": phone,
                "invited_by": invited_by,
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["id"],
        )
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def list_members(self, *, include_inactive: bool = True) -> list[ProfileTable]:
        """Profiles of the scoped school ordered by creation time."""
        if self._tenant_id is None:
            raise ValueError("list_members requires a tenant-scoped repository")
        stmt = self._scoped(select(ProfileTable))
        if not include_inactive:
            stmt = stmt.where(ProfileTable.is_active.is_(True))
        stmt = stmt.order_by(ProfileTable.created_at, ProfileTable.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_school(self, school_id: str) -> int:
        """Number of profiles (active or not) attached to *school_id*."""
        stmt = select(func.count()).select_from(ProfileTable).where(ProfileTable.school_id == school_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def find_active_by_email(self, email: str) -> ProfileTable | None:
        """Active member of the scoped school with *email*, if any."""
        stmt = self._scoped(
            select(ProfileTable).where(
                ProfileTable.email == normalize_email(email),
                ProfileTable.is_active.is_(True),
            )
        )
        result = await self._session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def set_role(self, identity_id: str, role: str) -> None:
        stmt = self._scoped(
            update(ProfileTable)
            .where(ProfileTable.id == identity_id)
            .values(role=role, updated_at=datetime.now(UTC))
        )
        await self._session.execute(stmt.execution_options(synchronize_session="fetch"))
        await self._session.flush()

    async def set_active(self, identity_id: str, active: bool) -> None:
        stmt = self._scoped(
            update(ProfileTable)
            .where(ProfileTable.id == identity_id)
            .values(is_active=active, updated_at=datetime.now(UTC))
        )
        await self._session.execute(stmt.execution_options(synchronize_session="fetch"))
        await self._session.flush()


# ---------------------------------------------------------------------------
# InvitationRepository
# ---------------------------------------------------------------------------


class InvitationRepository:
    """Data access for the ``invitations`` table.

    Lookups by token are unscoped: the token itself is the capability and
    the invited identity has no session context yet.
    """

    def __init__(self, session: AsyncSession, tenant_id: str | None = None) -> None:
        self._session = session
        self._tenant_id = tenant_id

    def _scoped(self, stmt: Any) -> Any:
        if self._tenant_id is not None:
            stmt = stmt.where(InvitationTable.school_id == self._tenant_id)
        return stmt

    async def create(
        self,
        *,
        email: str,
        role: str,
        school_id: str,
        invited_by: str,
        expires_at: datetime,
        now: datetime,
    ) -> InvitationTable:
        """Insert a pending invitation with a fresh URL-safe token."""
        row = InvitationTable(
            id=uuid.uuid4().hex,
            email=normalize_email(email),
            role=role,
            school_id=school_id,
            invited_by=invited_by,
            token=secrets.token_urlsafe(32),
            expires_at=expires_at,
            created_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_id(self, invitation_id: str) -> InvitationTable | None:
        stmt = self._scoped(select(InvitationTable).where(InvitationTable.id == invitation_id))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_token(self, token: str, email: str) -> InvitationTable | None:
        """Fetch the invitation for ``(token, email)`` in any state."""
        stmt = select(InvitationTable).where(
            InvitationTable.token == token,
            InvitationTable.email == normalize_email(email),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_pending(self, token: str, email: str, now: datetime) -> InvitationTable | None:
        """Fetch the invitation only if it is unaccepted and unexpired at *now*."""
        stmt = select(InvitationTable).where(
            InvitationTable.token == token,
            InvitationTable.email == normalize_email(email),
            InvitationTable.accepted_at.is_(None),
            InvitationTable.expires_at > now,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_pending_for_email(self, school_id: str, email: str, now: datetime) -> InvitationTable | None:
        stmt = select(InvitationTable).where(
            InvitationTable.school_id == school_id,
            InvitationTable.email == normalize_email(email),
            InvitationTable.accepted_at.is_(None),
            InvitationTable.expires_at > now,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_expired_pending_for_email(self, school_id: str, email: str, now: datetime) -> int:
        """Clear expired unaccepted rows that would collide on the pending index."""
        stmt = delete(InvitationTable).where(
            InvitationTable.school_id == school_id,
            InvitationTable.email == normalize_email(email),
            InvitationTable.accepted_at.is_(None),
            InvitationTable.expires_at <= now,
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def mark_accepted(self, invitation_id: str, now: datetime) -> bool:
        """Conditional ``NULL -> now`` transition of ``accepted_at``.

        Returns ``True`` only for the single caller whose update matched.
        """
        stmt = (
            update(InvitationTable)
            .where(
                InvitationTable.id == invitation_id,
                InvitationTable.accepted_at.is_(None),
                InvitationTable.expires_at > now,
            )
            .values(accepted_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def list_pending(self, now: datetime) -> list[InvitationTable]:
        stmt = self._scoped(
            select(InvitationTable).where(
                InvitationTable.accepted_at.is_(None),
                InvitationTable.expires_at > now,
            )
        ).order_by(InvitationTable.created_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_pending(self, invitation_id: str) -> bool:
        stmt = self._scoped(
            delete(InvitationTable).where(
                InvitationTable.id == invitation_id,
                InvitationTable.accepted_at.is_(None),
            )
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def delete_expired_before(self, cutoff: datetime) -> int:
        """Delete every invitation whose expiry is earlier than *cutoff*."""
        stmt = delete(InvitationTable).where(InvitationTable.expires_at < cutoff)
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]
