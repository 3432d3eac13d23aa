"""AuditLog model, the immutable record of every audited row mutation.

Rows are written by the `audit_trigger_function()` trigger (or the ORM
interceptor on engines without triggers) inside the same transaction as
the mutation they describe. This table is append-only: no updates or
deletes from any application path.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_audit.models.base import Base, IPAddress, JSONDocument, TextList
from inventory_audit.models.enums import AuditAction, RiskLevel


class AuditLog(Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_table_record", "table_name", "record_id"),
        Index("idx_audit_logs_user_timestamp", "user_id", "timestamp"),
        Index("idx_audit_logs_timestamp", "timestamp"),
        Index("idx_audit_logs_action", "action"),
        Index(
            "idx_audit_logs_risk_level",
            "risk_level",
            postgresql_where=text("risk_level IN ('HIGH', 'CRITICAL')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Target
    table_name: Mapped[str] = mapped_column(String(50), nullable=False)
    record_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="audit_action", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    # Row images: old is NULL for INSERT, new is NULL for DELETE
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument)
    changed_fields: Mapped[list[str] | None] = mapped_column(TextList, comment="UPDATE only")

    # Actor, never NULL, falls back to the system sentinel user
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    # Request context (all nullable)
    ip_address: Mapped[str | None] = mapped_column(IPAddress)
    user_agent: Mapped[str | None] = mapped_column(Text)
    session_id: Mapped[str | None] = mapped_column(String(255))

    risk_level: Mapped[RiskLevel] = mapped_column(
        Enum(RiskLevel, name="risk_level", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RiskLevel.LOW,
        server_default=RiskLevel.LOW.value,
    )
    compliance_notes: Mapped[str | None] = mapped_column(Text, comment="Manual review annotations only")

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.table_name}/{self.record_id} risk={self.risk_level}>"
