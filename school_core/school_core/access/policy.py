"""Access-control rule table and evaluation.

``ACCESS_RULES`` is the single authoritative description of who may read and
write each tenant-owned entity.  Request-time checks, query scoping and the
PostgreSQL row-level-security DDL (:mod:`school_core.access.rls`) are all
derived from it; there is no other place that grants access.

Evaluation consumes an already-resolved :class:`SessionContext`.  Nothing in
this module reads the ``profiles`` table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import Select

from school_core.errors import AccessDenied

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Roles and operations
# ---------------------------------------------------------------------------


class SchoolRole(str, Enum):
    """Closed set of profile roles."""

    OWNER = "owner"
    MANAGER = "manager"
    RECEPTIONIST = "receptionist"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK: dict[SchoolRole, int] = {
    SchoolRole.OWNER: 3,
    SchoolRole.MANAGER: 2,
    SchoolRole.RECEPTIONIST: 1,
}


def parse_role(raw: str) -> SchoolRole:
    """Convert a stored or submitted role string into a :class:`SchoolRole`.

    Raises :class:`ValueError` if the string is not a known role.
    """
    try:
        return SchoolRole(raw.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown role '{raw}'. Valid roles: {sorted(r.value for r in SchoolRole)}")


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PROVISION = "provision"

    @property
    def is_write(self) -> bool:
        return self is not Operation.READ


ALL_ROLES: frozenset[SchoolRole] = frozenset(SchoolRole)
STAFF_ADMINS: frozenset[SchoolRole] = frozenset({SchoolRole.OWNER, SchoolRole.MANAGER})
OWNER_ONLY: frozenset[SchoolRole] = frozenset({SchoolRole.OWNER})


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessRule:
    """Tenant match plus role sets for one entity.

    Attributes
    ----------
    entity:
        Table name.
    tenant_column:
        Column holding the owning school id (``id`` for ``schools`` itself).
    read_roles / write_roles:
        Roles allowed to read / write rows of the caller's own school.
    """

    entity: str
    tenant_column: str
    read_roles: frozenset[SchoolRole]
    write_roles: frozenset[SchoolRole]
    financial: bool = False

    def roles_for(self, operation: Operation) -> frozenset[SchoolRole]:
        return self.write_roles if operation.is_write else self.read_roles


def _standard(entity: str) -> AccessRule:
    return AccessRule(entity, "school_id", ALL_ROLES, ALL_ROLES)


def _financial(entity: str) -> AccessRule:
    return AccessRule(entity, "school_id", STAFF_ADMINS, STAFF_ADMINS, financial=True)


ACCESS_RULES: dict[str, AccessRule] = {
    rule.entity: rule
    for rule in (
        AccessRule("schools", "id", ALL_ROLES, OWNER_ONLY),
        AccessRule("profiles", "school_id", ALL_ROLES, STAFF_ADMINS),
        AccessRule("invitations", "school_id", STAFF_ADMINS, STAFF_ADMINS),
        _standard("students"),
        _standard("teachers"),
        _standard("course_templates"),
        _standard("course_instances"),
        _standard("attendance"),
        _standard("student_payments"),
        _standard("archive_requests"),
        _financial("teacher_payouts"),
        _financial("revenue"),
    )
}

# The only operations reachable without a session context.
BOOTSTRAP_OPERATIONS: frozenset[tuple[str, Operation]] = frozenset(
    {
        ("schools", Operation.CREATE),
        ("profiles", Operation.PROVISION),
    }
)


# ---------------------------------------------------------------------------
# Session context and decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionContext:
    """Resolved claims for the current caller.

    Immutable for the lifetime of a request, so it may be cached there.
    """

    identity_id: str
    tenant_id: str
    role: SchoolRole
    active: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity_id": self.identity_id,
            "tenant_id": self.tenant_id,
            "role": self.role.value,
            "active": self.active,
        }


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def authorize(
    context: SessionContext | None,
    entity_tenant_id: str | None,
    required_roles: frozenset[SchoolRole] | set[SchoolRole] | None = None,
) -> Decision:
    """Decide whether *context* may touch a row owned by *entity_tenant_id*.

    Denies a missing or inactive context, any tenant mismatch, and (when
    *required_roles* is given) a role outside that set.
    """
    if context is None:
        return Decision(False, "no session context")
    if not context.active:
        return Decision(False, "profile inactive")
    if entity_tenant_id is None or entity_tenant_id != context.tenant_id:
        return Decision(False, "tenant mismatch")
    if required_roles is not None and context.role not in required_roles:
        return Decision(False, f"role '{context.role.value}' not permitted")
    return ALLOW


class AccessControlEngine:
    """Rule-table driven checks for tenant-owned entities."""

    def __init__(self, rules: dict[str, AccessRule] | None = None) -> None:
        self._rules = rules if rules is not None else ACCESS_RULES

    def rule(self, entity: str) -> AccessRule:
        rule = self._rules.get(entity)
        if rule is None:
            raise AccessDenied(f"no access rule for entity '{entity}'")
        return rule

    def require_context(
        self,
        context: SessionContext | None,
        entity: str,
        operation: Operation,
    ) -> SessionContext | None:
        """Reject context-less calls except for the two bootstrap operations.

        Returns the context unchanged (``None`` only for bootstrap calls).
        """
        if context is None:
            if (entity, operation) in BOOTSTRAP_OPERATIONS:
                return None
            logger.info("Denied %s:%s without session context", entity, operation.value)
            raise AccessDenied("no session context")
        if not context.active:
            logger.info("Denied %s:%s for inactive profile %s", entity, operation.value, context.identity_id)
            raise AccessDenied("profile inactive")
        return context

    def check(
        self,
        context: SessionContext | None,
        entity: str,
        operation: Operation,
        row_tenant_id: str | None,
    ) -> SessionContext:
        """Raise :class:`AccessDenied` unless the operation is allowed."""
        rule = self.rule(entity)
        decision = authorize(context, row_tenant_id, rule.roles_for(operation))
        if not decision:
            logger.info(
                "Denied %s:%s identity=%s reason=%s",
                entity,
                operation.value,
                context.identity_id if context else None,
                decision.reason,
            )
            raise AccessDenied(decision.reason)
        assert context is not None  # noqa: S101
        return context

    def check_entity(self, context: SessionContext | None, entity: str, operation: Operation) -> SessionContext:
        """Role check for an operation on the caller's own school as a whole."""
        ctx = self.require_context(context, entity, operation)
        if ctx is None:
            raise AccessDenied("no session context")
        return self.check(ctx, entity, operation, ctx.tenant_id)

    def scope(self, stmt: Select[Any], table: Any, context: SessionContext) -> Select[Any]:
        """Restrict *stmt* to rows of the caller's school."""
        rule = self.rule(table.__tablename__)
        return stmt.where(getattr(table, rule.tenant_column) == context.tenant_id)
