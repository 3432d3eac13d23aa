"""Audit record payloads: one pure builder per action.

The builders compute everything an audit row needs from the row images
alone. Actor and request metadata are attached separately by the writer.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from inventory_audit.audit.context import AuditContext
from inventory_audit.audit.diff import changed_fields, to_document
from inventory_audit.audit.risk import RowChange, classify_risk
from inventory_audit.models.enums import AuditAction, RiskLevel


@dataclass(frozen=True)
class AuditPayload:
    """Content of one audit record, minus the actor."""

    table_name: str
    record_id: uuid.UUID
    action: AuditAction
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    changed_fields: list[str] | None
    risk_level: RiskLevel

    def as_row(self, user_id: uuid.UUID, context: AuditContext | None) -> dict[str, Any]:
        """Column values for an `audit_logs` insert."""
        return {
            "table_name": self.table_name,
            "record_id": self.record_id,
            "action": self.action,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "changed_fields": self.changed_fields,
            "user_id": user_id,
            "ip_address": context.ip_address if context else None,
            "user_agent": context.user_agent if context else None,
            "session_id": context.session_id if context else None,
            "risk_level": self.risk_level,
        }


def _record_id(image: Mapping[str, Any]) -> uuid.UUID:
    value = image["id"]
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def build_insert_payload(table: str, old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> AuditPayload:
    if new is None:
        raise ValueError("INSERT payload requires a new row image")
    new_doc = to_document(new)
    return AuditPayload(
        table_name=table,
        record_id=_record_id(new),
        action=AuditAction.INSERT,
        old_values=None,
        new_values=new_doc,
        changed_fields=None,
        risk_level=classify_risk(RowChange(table, AuditAction.INSERT, None, new_doc)),
    )


def build_update_payload(table: str, old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> AuditPayload:
    if old is None or new is None:
        raise ValueError("UPDATE payload requires old and new row images")
    old_doc = to_document(old)
    new_doc = to_document(new)
    return AuditPayload(
        table_name=table,
        record_id=_record_id(new),
        action=AuditAction.UPDATE,
        old_values=old_doc,
        new_values=new_doc,
        changed_fields=changed_fields(old_doc, new_doc),
        risk_level=classify_risk(RowChange(table, AuditAction.UPDATE, old_doc, new_doc)),
    )


def build_delete_payload(table: str, old: Mapping[str, Any] | None, new: Mapping[str, Any] | None) -> AuditPayload:
    if old is None:
        raise ValueError("DELETE payload requires an old row image")
    old_doc = to_document(old)
    return AuditPayload(
        table_name=table,
        record_id=_record_id(old),
        action=AuditAction.DELETE,
        old_values=old_doc,
        new_values=None,
        changed_fields=None,
        risk_level=classify_risk(RowChange(table, AuditAction.DELETE, old_doc, None)),
    )


PayloadBuilder = Callable[[str, Mapping[str, Any] | None, Mapping[str, Any] | None], AuditPayload]

PAYLOAD_BUILDERS: dict[AuditAction, PayloadBuilder] = {
    AuditAction.INSERT: build_insert_payload,
    AuditAction.UPDATE: build_update_payload,
    AuditAction.DELETE: build_delete_payload,
}


def build_payload(
    table: str,
    action: AuditAction,
    old: Mapping[str, Any] | None = None,
    new: Mapping[str, Any] | None = None,
) -> AuditPayload:
    return PAYLOAD_BUILDERS[action](table, old, new)
