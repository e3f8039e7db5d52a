"""PostgreSQL row-level-security DDL generated from the access rule table.

Every policy compares the row's tenant column with the transaction setting
``app.tenant_id`` and checks ``app.role`` against the rule's role set.  Both
settings are bound by :func:`school_core.state.database.set_tenant_context`
from the already-resolved session context, so no policy ever selects from
``profiles``.

The two bootstrap operations and the session-context resolver run on the
privileged connection (a database role with ``BYPASSRLS``) and are not
subject to these policies.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from school_core.access.policy import ACCESS_RULES, AccessRule, SchoolRole

logger = logging.getLogger(__name__)

_TENANT_SETTING = "current_setting('app.tenant_id', true)"
_ROLE_SETTING = "current_setting('app.role', true)"


def _role_list(roles: frozenset[SchoolRole]) -> str:
    return ", ".join(f"'{role.value}'" for role in sorted(roles, key=lambda r: r.value))


def _predicate(rule: AccessRule, roles: frozenset[SchoolRole]) -> str:
    return f"{rule.tenant_column} = {_TENANT_SETTING} AND {_ROLE_SETTING} IN ({_role_list(roles)})"


def render_rule_policies(rule: AccessRule) -> list[str]:
    """DDL statements enabling RLS and creating the four policies for *rule*."""
    table = rule.entity
    read = _predicate(rule, rule.read_roles)
    write = _predicate(rule, rule.write_roles)
    statements = [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY",
    ]
    for suffix in ("read", "insert", "update", "delete"):
        statements.append(f"DROP POLICY IF EXISTS {table}_{suffix} ON {table}")
    statements.extend(
        [
            f"CREATE POLICY {table}_read ON {table} FOR SELECT USING ({read})",
            f"CREATE POLICY {table}_insert ON {table} FOR INSERT WITH CHECK ({write})",
            f"CREATE POLICY {table}_update ON {table} FOR UPDATE USING ({write}) WITH CHECK ({write})",
            f"CREATE POLICY {table}_delete ON {table} FOR DELETE USING ({write})",
        ]
    )
    return statements


def render_rls_policies(rules: dict[str, AccessRule] | None = None) -> list[str]:
    """DDL for every entity in the rule table, in table-name order."""
    rules = rules if rules is not None else ACCESS_RULES
    statements: list[str] = []
    for entity in sorted(rules):
        statements.extend(render_rule_policies(rules[entity]))
    return statements


async def apply_rls_policies(engine: AsyncEngine) -> int:
    """Execute the generated DDL on a PostgreSQL engine.

    Returns the number of statements executed (0 on non-PostgreSQL engines).
    """
    if engine.dialect.name != "postgresql":
        logger.info("Skipping RLS policies on dialect %s", engine.dialect.name)
        return 0
    statements = render_rls_policies()
    async with engine.begin() as conn:
        for statement in statements:
            await conn.execute(text(statement))
    logger.info("Applied %d RLS statements for %d entities", len(statements), len(ACCESS_RULES))
    return len(statements)
