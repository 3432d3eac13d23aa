"""ORM-level audit interceptor and immutability guard.

`GuardedSession` refuses to flush any change to an existing AuditLog row.
`InterceptedSession` additionally writes the audit trail itself, for
engines where the trigger function is not installed: after each flush it
diffs, classifies and inserts one `audit_logs` row per changed object on
the flush's own connection, so the records commit or roll back with the
mutation.

Degrade-closed: a failed audit insert raises AuditWriteError out of the
flush. Nothing here catches it.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import event, insert, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, UOWTransaction

from inventory_audit.audit.context import AuditContext, actor_or_sentinel
from inventory_audit.audit.payload import AuditPayload, build_payload
from inventory_audit.config import settings
from inventory_audit.errors import AuditImmutabilityError, AuditWriteError
from inventory_audit.models.audit import AuditLog
from inventory_audit.models.enums import AuditAction

logger = logging.getLogger(__name__)

CONTEXT_KEY = "audit_context"


class GuardedSession(Session):
    """Session that never updates or deletes audit records."""


class InterceptedSession(GuardedSession):
    """Session that records its own audit trail on flush."""


@event.listens_for(GuardedSession, "before_flush")
def _guard_audit_immutability(session: Session, flush_context: UOWTransaction, instances: Any) -> None:
    for obj in session.deleted:
        if isinstance(obj, AuditLog):
            raise AuditImmutabilityError()
    for obj in session.dirty:
        if isinstance(obj, AuditLog) and session.is_modified(obj, include_collections=False):
            raise AuditImmutabilityError()


def _ensure_identity(state: Any, image: dict[str, Any]) -> None:
    # Expired objects still know their primary key.
    if "id" not in image and state.identity:
        image["id"] = state.identity[0]


def _current_image(obj: Any) -> dict[str, Any]:
    """Loaded column values keyed by column name. Never triggers a load."""
    state = inspect(obj)
    image: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        if attr.key in state.dict:
            image[attr.columns[0].name] = state.dict[attr.key]
    _ensure_identity(state, image)
    return image


def _previous_image(obj: Any) -> dict[str, Any]:
    """Column values as they were before the pending changes.

    A column set while its old value was unloaded is left out, which the
    diff then reports as changed.
    """
    state = inspect(obj)
    image: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        name = attr.columns[0].name
        if history.deleted:
            image[name] = history.deleted[0]
        elif history.added:
            continue
        elif attr.key in state.dict:
            image[name] = state.dict[attr.key]
    _ensure_identity(state, image)
    return image


def _table_of(obj: Any) -> str | None:
    table = getattr(inspect(obj).mapper.local_table, "name", None)
    if table in settings.audit.audited_tables:
        return table
    return None


def collect_payloads(session: Session) -> list[AuditPayload]:
    """Audit payloads for everything the current flush is writing."""
    payloads: list[AuditPayload] = []
    for obj in session.new:
        table = _table_of(obj)
        if table:
            payloads.append(build_payload(table, AuditAction.INSERT, new=_current_image(obj)))
    for obj in session.dirty:
        table = _table_of(obj)
        if table and session.is_modified(obj, include_collections=False):
            payloads.append(
                build_payload(table, AuditAction.UPDATE, old=_previous_image(obj), new=_current_image(obj))
            )
    for obj in session.deleted:
        table = _table_of(obj)
        if table:
            payloads.append(build_payload(table, AuditAction.DELETE, old=_previous_image(obj)))
    return payloads


@event.listens_for(InterceptedSession, "after_flush")
def _record_audit_trail(session: Session, flush_context: UOWTransaction) -> None:
    payloads = collect_payloads(session)
    if not payloads:
        return

    context: AuditContext | None = session.info.get(CONTEXT_KEY)
    rows = []
    for payload in payloads:
        user_id = actor_or_sentinel(context, table=payload.table_name, operation=payload.action.value)
        rows.append(payload.as_row(user_id, context))

    try:
        session.connection().execute(insert(AuditLog.__table__), rows)
    except SQLAlchemyError as exc:
        first = payloads[0]
        raise AuditWriteError(
            f"Audit write failed for {first.action.value} on {first.table_name}: {exc}",
            table=first.table_name,
            operation=first.action.value,
        ) from exc

    logger.debug("Recorded %d audit rows", len(rows))
