"""Session context setter: attaches an AuditContext to a dedicated connection.

Degrade-open: if the pool or the database is unavailable the request
proceeds without audit context. The failure is logged at ERROR so
operators see the gap; rows written on such a request are still audited
by the trigger, attributed to the sentinel user.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from inventory_audit.audit.context import AuditContext, actor_or_sentinel
from inventory_audit.errors import AuditContextUnavailableError

logger = logging.getLogger(__name__)

# Session-scoped (is_local = false) so the values survive the commit below
# and stay visible to every later transaction on this connection.
SET_SESSION_VARIABLE = text("SELECT set_config(:name, :value, false)")


async def apply_audit_context(conn: AsyncConnection, context: AuditContext) -> None:
    """Set the four audit session variables on `conn`.

    Every variable is written, absent ones as '', so a pooled connection
    never carries a previous request's values.

    Raises:
        AuditContextUnavailableError: the statements could not be executed.
    """
    try:
        for name, value in context.session_settings().items():
            await conn.execute(SET_SESSION_VARIABLE, {"name": name, "value": value})
        await conn.commit()
    except (SQLAlchemyError, OSError) as exc:
        raise AuditContextUnavailableError(f"Could not set audit session variables: {exc}") from exc


def bind_actor(context: AuditContext, *, operation: str) -> AuditContext:
    """Return `context` with the sentinel user substituted when no principal is bound."""
    if context.has_principal:
        return context
    return context.with_user(actor_or_sentinel(context, table="request", operation=operation))


async def open_audit_connection(
    engine: AsyncEngine,
    context: AuditContext,
    *,
    operation: str,
) -> AsyncConnection | None:
    """Check out a connection and bind `context` to it.

    A missing principal is replaced by the sentinel user before the
    variables are written. Returns None (after logging) when context could
    not be established.
    """
    context = bind_actor(context, operation=operation)

    conn: AsyncConnection | None = None
    try:
        try:
            conn = await engine.connect()
        except (SQLAlchemyError, OSError) as exc:
            raise AuditContextUnavailableError(f"Connection pool unavailable: {exc}") from exc
        await apply_audit_context(conn, context)
    except AuditContextUnavailableError:
        logger.exception(
            "Audit context unavailable for %s, request proceeds without audit context",
            operation,
            extra={"operation": operation},
        )
        if conn is not None:
            await _close_quietly(conn)
        return None

    return conn


async def _close_quietly(conn: AsyncConnection) -> None:
    try:
        await conn.close()
    except Exception:
        logger.exception("Failed to close audit connection after context failure")
