"""PostgreSQL DDL for the audit trigger engine.

`audit_trigger_function()` runs AFTER each INSERT/UPDATE/DELETE row on an
audited table, inside the mutating transaction. It reads the request's
session variables, classifies risk, diffs the row images and inserts one
`audit_logs` row stamped with transaction time.

Degrade-closed: any failure of the audit INSERT propagates and aborts the
statement, so a mutation that cannot be audited never commits. Only the
context reads are error-tolerant.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from inventory_audit.audit.context import CLIENT_IP_VAR, SESSION_ID_VAR, USER_AGENT_VAR, USER_ID_VAR
from inventory_audit.audit.risk import risk_case_sql
from inventory_audit.config import settings

logger = logging.getLogger(__name__)

AUDIT_FUNCTION_NAME = "audit_trigger_function"
RECENT_EVENTS_VIEW = "v_recent_audit_events"


def audit_function_sql(sentinel_user_id: uuid.UUID | None = None) -> str:
    """CREATE OR REPLACE statement for the trigger function."""
    sentinel = sentinel_user_id or settings.audit.sentinel_user_id
    return f"""
CREATE OR REPLACE FUNCTION {AUDIT_FUNCTION_NAME}()
RETURNS TRIGGER AS $$
DECLARE
    audit_user_id UUID;
    audit_ip INET;
    audit_user_agent TEXT;
    audit_session_id VARCHAR(255);
    old_row JSONB;
    new_row JSONB;
    audit_changed_fields TEXT[];
    audit_risk risk_level;
BEGIN
    BEGIN
        audit_user_id := NULLIF(current_setting('{USER_ID_VAR}', true), '')::UUID;
    EXCEPTION WHEN OTHERS THEN
        audit_user_id := NULL;
    END;

    IF audit_user_id IS NULL THEN
        audit_user_id := '{sentinel}'::UUID;
        RAISE WARNING 'Audit logging: missing user context for % operation on table %, using system fallback',
            TG_OP, TG_TABLE_NAME;
    END IF;

    BEGIN
        audit_ip := NULLIF(current_setting('{CLIENT_IP_VAR}', true), '')::INET;
    EXCEPTION WHEN OTHERS THEN
        audit_ip := NULL;
    END;

    audit_user_agent := NULLIF(current_setting('{USER_AGENT_VAR}', true), '');

    BEGIN
        audit_session_id := NULLIF(current_setting('{SESSION_ID_VAR}', true), '');
    EXCEPTION WHEN OTHERS THEN
        audit_session_id := NULL;
    END;

    IF TG_OP <> 'INSERT' THEN
        old_row := to_jsonb(OLD);
    END IF;
    IF TG_OP <> 'DELETE' THEN
        new_row := to_jsonb(NEW);
    END IF;

    audit_risk := {risk_case_sql()};

    IF TG_OP = 'UPDATE' THEN
        SELECT COALESCE(array_agg(n.key ORDER BY n.key), ARRAY[]::TEXT[])
          INTO audit_changed_fields
          FROM jsonb_each(new_row) AS n
         WHERE n.value IS DISTINCT FROM (old_row -> n.key);
    END IF;

    INSERT INTO audit_logs (
        id, table_name, record_id, action, old_values, new_values, changed_fields,
        user_id, timestamp, ip_address, user_agent, session_id, risk_level
    ) VALUES (
        gen_random_uuid(), TG_TABLE_NAME, (COALESCE(new_row, old_row) ->> 'id')::UUID,
        TG_OP::audit_action, old_row, new_row, audit_changed_fields,
        audit_user_id, now(), audit_ip, audit_user_agent, audit_session_id, audit_risk
    );

    IF TG_OP = 'DELETE' THEN
        RETURN OLD;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql
"""


def sentinel_user_sql(sentinel_user_id: uuid.UUID | None = None) -> str:
    """Idempotent INSERT of the system user that unattributed audit rows point at."""
    sentinel = sentinel_user_id or settings.audit.sentinel_user_id
    return (
        "INSERT INTO users (id, email, password_hash, first_name, last_name, is_active) "
        f"VALUES ('{sentinel}', 'system@localhost', '!', 'System', 'User', false) "
        "ON CONFLICT (id) DO NOTHING"
    )


def create_trigger_sql(table: str) -> list[str]:
    return [
        f"DROP TRIGGER IF EXISTS audit_{table} ON {table}",
        (
            f"CREATE TRIGGER audit_{table} AFTER INSERT OR UPDATE OR DELETE ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION {AUDIT_FUNCTION_NAME}()"
        ),
    ]


RECENT_EVENTS_VIEW_SQL = f"""
CREATE OR REPLACE VIEW {RECENT_EVENTS_VIEW} AS
SELECT
    al.timestamp,
    al.table_name,
    al.action,
    al.risk_level,
    u.email AS user_email,
    u.first_name || ' ' || u.last_name AS user_name,
    al.ip_address,
    al.changed_fields
FROM audit_logs al
JOIN users u ON al.user_id = u.id
WHERE al.timestamp > CURRENT_TIMESTAMP - INTERVAL '7 days'
ORDER BY al.timestamp DESC
LIMIT 1000
"""


def install_statements(tables: Iterable[str] | None = None) -> list[str]:
    """Ordered DDL that installs the function, the triggers and the view."""
    statements = [audit_function_sql()]
    for table in settings.audit.audited_tables if tables is None else tables:
        statements.extend(create_trigger_sql(table))
    statements.append(RECENT_EVENTS_VIEW_SQL)
    return statements


def uninstall_statements(tables: Iterable[str] | None = None) -> list[str]:
    statements = [f"DROP VIEW IF EXISTS {RECENT_EVENTS_VIEW}"]
    for table in settings.audit.audited_tables if tables is None else tables:
        statements.append(f"DROP TRIGGER IF EXISTS audit_{table} ON {table}")
    statements.append(f"DROP FUNCTION IF EXISTS {AUDIT_FUNCTION_NAME}()")
    return statements


async def install_audit_triggers(conn: AsyncConnection, tables: Iterable[str] | None = None) -> None:
    """Install (or refresh) the trigger engine on `conn`. Idempotent."""
    tables = list(settings.audit.audited_tables if tables is None else tables)
    for statement in install_statements(tables):
        await conn.execute(text(statement))
    logger.info("Audit triggers installed on %s", ", ".join(tables))
