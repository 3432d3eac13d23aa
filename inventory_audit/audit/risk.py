"""Risk classification for audited row changes.

Rules are evaluated top to bottom and the first match wins. The same list
drives the Python classifier (ORM interceptor, tests) and the SQL `CASE`
expression compiled into the trigger function, so both paths agree.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from inventory_audit.audit.diff import values_differ
from inventory_audit.models.enums import AuditAction, RiskLevel

IDENTITY_TABLES = ("users", "roles")
DEVICE_TABLE = "plcs"
NETWORK_ADDRESS_FIELD = "ip_address"


@dataclass(frozen=True)
class RowChange:
    """One row-level mutation as seen by the classifier."""

    table: str
    action: AuditAction
    old: Mapping[str, Any] | None = None
    new: Mapping[str, Any] | None = None

    def field_changed(self, field: str) -> bool:
        old = self.old or {}
        new = self.new or {}
        return values_differ(old.get(field), new.get(field))


@dataclass(frozen=True)
class RiskRule:
    """Predicate → level, expressed once in Python and once in PL/pgSQL.

    `sql` may reference TG_TABLE_NAME, TG_OP and the trigger's `old_row` /
    `new_row` JSONB images.
    """

    name: str
    level: RiskLevel
    condition: Callable[[RowChange], bool]
    sql: str


RISK_RULES: list[RiskRule] = [
    RiskRule(
        name="identity_deletion",
        level=RiskLevel.CRITICAL,
        condition=lambda c: c.table == "users" and c.action == AuditAction.DELETE,
        sql="TG_TABLE_NAME = 'users' AND TG_OP = 'DELETE'",
    ),
    RiskRule(
        name="role_change",
        level=RiskLevel.CRITICAL,
        condition=lambda c: c.table == "roles" and c.action in (AuditAction.UPDATE, AuditAction.DELETE),
        sql="TG_TABLE_NAME = 'roles' AND TG_OP IN ('UPDATE', 'DELETE')",
    ),
    RiskRule(
        name="identity_change",
        level=RiskLevel.HIGH,
        condition=lambda c: c.table in IDENTITY_TABLES,
        sql="TG_TABLE_NAME IN ('users', 'roles')",
    ),
    RiskRule(
        name="device_deletion",
        level=RiskLevel.HIGH,
        condition=lambda c: c.table == DEVICE_TABLE and c.action == AuditAction.DELETE,
        sql=f"TG_TABLE_NAME = '{DEVICE_TABLE}' AND TG_OP = 'DELETE'",
    ),
    RiskRule(
        name="device_network_change",
        level=RiskLevel.MEDIUM,
        condition=lambda c: (
            c.table == DEVICE_TABLE
            and c.action == AuditAction.UPDATE
            and c.field_changed(NETWORK_ADDRESS_FIELD)
        ),
        sql=(
            f"TG_TABLE_NAME = '{DEVICE_TABLE}' AND TG_OP = 'UPDATE' "
            f"AND (old_row -> '{NETWORK_ADDRESS_FIELD}') IS DISTINCT FROM (new_row -> '{NETWORK_ADDRESS_FIELD}')"
        ),
    ),
    RiskRule(
        name="deletion",
        level=RiskLevel.MEDIUM,
        condition=lambda c: c.action == AuditAction.DELETE,
        sql="TG_OP = 'DELETE'",
    ),
]

DEFAULT_RISK_LEVEL = RiskLevel.LOW


def matching_rule(change: RowChange, rules: list[RiskRule] | None = None) -> RiskRule | None:
    """First rule whose condition holds, or None for the default level."""
    for rule in RISK_RULES if rules is None else rules:
        if rule.condition(change):
            return rule
    return None


def classify_risk(change: RowChange, rules: list[RiskRule] | None = None) -> RiskLevel:
    rule = matching_rule(change, rules)
    return rule.level if rule is not None else DEFAULT_RISK_LEVEL


def risk_case_sql(rules: list[RiskRule] | None = None) -> str:
    """Render the rules as a PL/pgSQL CASE expression yielding `risk_level`."""
    lines = ["CASE"]
    for rule in RISK_RULES if rules is None else rules:
        lines.append(f"            WHEN {rule.sql} THEN '{rule.level.value}'::risk_level")
    lines.append(f"            ELSE '{DEFAULT_RISK_LEVEL.value}'::risk_level")
    lines.append("        END")
    return "\n".join(lines)
