"""SQLAlchemy 2.0 ORM table definitions for the school platform state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  Every
tenant-owned table carries a non-null ``school_id`` foreign key with
``ON DELETE CASCADE`` so that removing a school removes everything it owns.
The ``Base`` declarative base is exported for the repository layer and for
``create_all`` in local/dev mode.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Cross-dialect JSON type: JSONB on PostgreSQL, plain JSON on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")

# Closed set of profile roles.  Spelled out here so the CHECK constraints do
# not import the access layer.
_ROLE_CHECK = "role IN ('owner', 'manager', 'receptionist')"


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all school platform tables."""


def _school_fk() -> Any:
    return ForeignKey("schools.id", ondelete="CASCADE")


# ---------------------------------------------------------------------------
# Tenancy: schools, profiles, invitations
# ---------------------------------------------------------------------------


class SchoolTable(Base):
    """A school: the tenant isolation boundary.

    Created by the signup flow before any owner identity exists.
    """

    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    website: Mapped[str | None] = mapped_column(String(512), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    settings: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="ck_schools_name_not_empty"),
        Index("ix_schools_created_at", "created_at"),
    )


class ProfileTable(Base):
    """Tenant membership record for one external identity.

    ``id`` is the identity id (same id space as the identity provider), so
    there is at most one profile per identity.  Profiles are never deleted
    by members; deactivation flips ``is_active`` and keeps the row.
    """

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="receptionist")
    full_name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    invited_by: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(_ROLE_CHECK, name="ck_profiles_role"),
        CheckConstraint("length(trim(full_name)) > 0", name="ck_profiles_full_name_not_empty"),
        Index("ix_profiles_school", "school_id"),
        Index("ix_profiles_school_role", "school_id", "role"),
        Index("ix_profiles_school_email", "school_id", "email"),
    )


class InvitationTable(Base):
    """Single-use, time-boxed grant of future membership in a school.

    The partial unique index ``uq_invitations_pending`` allows at most one
    unaccepted invitation per (school, email).  Expired pending rows are
    cleared by the registry before a replacement is inserted.
    """

    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="receptionist")
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    invited_by: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(_ROLE_CHECK, name="ck_invitations_role"),
        Index(
            "uq_invitations_pending",
            "school_id",
            "email",
            unique=True,
            postgresql_where=text("accepted_at IS NULL"),
            sqlite_where=text("accepted_at IS NULL"),
        ),
        Index("ix_invitations_school", "school_id"),
        Index("ix_invitations_expires_at", "expires_at"),
    )


# ---------------------------------------------------------------------------
# Tenant-owned business tables
# ---------------------------------------------------------------------------


class StudentTable(Base):
    """Enrolled student."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    school_year: Mapped[str | None] = mapped_column(String(64), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    registration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_students_school", "school_id"),)


class TeacherTable(Base):
    """Teaching staff member (not necessarily a platform user)."""

    __tablename__ = "teachers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    subjects: Mapped[list[str] | None] = mapped_column(_JsonType, nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_teachers_school", "school_id"),)


class CourseTemplateTable(Base):
    """Reusable course definition."""

    __tablename__ = "course_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    subject: Mapped[str] = mapped_column(String(256), nullable=False)
    school_year: Mapped[str] = mapped_column(String(64), nullable=False)
    price_per_student: Mapped[float] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    max_students: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_course_templates_school", "school_id"),)


class CourseInstanceTable(Base):
    """A scheduled run of a course with a teacher and enrolled students."""

    __tablename__ = "course_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    template_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("course_templates.id", ondelete="SET NULL"), nullable=True
    )
    teacher_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("teachers.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    student_ids: Mapped[list[int] | None] = mapped_column(_JsonType, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="planned", nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_course_instances_school", "school_id"),)


class AttendanceTable(Base):
    """Attendance mark for one student in one course session."""

    __tablename__ = "attendance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    course_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("course_instances.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="present", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_attendance_school_course", "school_id", "course_id"),)


class StudentPaymentTable(Base):
    """Tuition payment received from a student (front-desk data)."""

    __tablename__ = "student_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    student_id: Mapped[int] = mapped_column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_student_payments_school", "school_id"),)


class TeacherPayoutTable(Base):
    """Payout owed or paid to a teacher (financial class)."""

    __tablename__ = "teacher_payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    teacher_id: Mapped[int] = mapped_column(Integer, ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    period: Mapped[str | None] = mapped_column(String(32), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_teacher_payouts_school", "school_id"),)


class RevenueTable(Base):
    """Revenue ledger entry (financial class)."""

    __tablename__ = "revenue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recorded_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_revenue_school", "school_id"),)


class ArchiveRequestTable(Base):
    """Request to archive a student, teacher, or course, pending approval."""

    __tablename__ = "archive_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    school_id: Mapped[str] = mapped_column(String(64), _school_fk(), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    requested_by: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "entity_type IN ('student', 'teacher', 'course', 'course_template')",
            name="ck_archive_requests_entity_type",
        ),
        Index("ix_archive_requests_school", "school_id"),
    )


# Tenant-owned business tables, keyed by table name.
BUSINESS_TABLES: dict[str, type[Base]] = {
    table.__tablename__: table
    for table in (
        StudentTable,
        TeacherTable,
        CourseTemplateTable,
        CourseInstanceTable,
        AttendanceTable,
        StudentPaymentTable,
        TeacherPayoutTable,
        RevenueTable,
        ArchiveRequestTable,
    )
}
