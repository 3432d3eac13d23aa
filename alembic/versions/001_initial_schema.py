"""Initial schema: identity, inventory hierarchy, audit log.

Revision ID: 001
Revises: None
Create Date: 2025-07-29
"""
from __future__ import annotations

import uuid
from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from inventory_audit.audit.triggers import sentinel_user_sql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None

SYSTEM_USER_ID = "00000000-0000-0000-0000-000000000000"

equipment_type = postgresql.ENUM(
    "PRESS", "ROBOT", "OVEN", "CONVEYOR", "ASSEMBLY_TABLE", "OTHER", name="equipment_type", create_type=False
)
tag_data_type = postgresql.ENUM(
    "BOOL", "INT", "DINT", "REAL", "STRING", "TIMER", "COUNTER", name="tag_data_type", create_type=False
)
audit_action = postgresql.ENUM("INSERT", "UPDATE", "DELETE", name="audit_action", create_type=False)
risk_level = postgresql.ENUM("LOW", "MEDIUM", "HIGH", "CRITICAL", name="risk_level", create_type=False)


def _id_and_timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (equipment_type, tag_data_type, audit_action, risk_level):
        enum_type.create(bind, checkfirst=True)

    # ── Identity ───────────────────────────────────────────────────────

    op.create_table(
        "roles",
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("permissions", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_system", sa.Boolean(), server_default=sa.false()),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "users",
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("roles.id", ondelete="SET NULL")),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("last_login", sa.DateTime(timezone=True)),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_role_id", "users", ["role_id"])

    # ── Inventory hierarchy ────────────────────────────────────────────

    op.create_table(
        "sites",
        sa.Column("name", sa.String(100), nullable=False),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "cells",
        sa.Column("site_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("line_number", sa.String(50), nullable=False),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("site_id", "line_number", name="uk_cells_site_line"),
    )
    op.create_index("ix_cells_site_id", "cells", ["site_id"])

    op.create_table(
        "equipment",
        sa.Column("cell_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cells.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("equipment_type", equipment_type, nullable=False),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_equipment_cell_id", "equipment", ["cell_id"])

    op.create_table(
        "plcs",
        sa.Column(
            "equipment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("tag_id", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("make", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("ip_address", postgresql.INET()),
        sa.Column("firmware_version", sa.String(50)),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tag_id"),
    )
    op.create_index("ix_plcs_equipment_id", "plcs", ["equipment_id"])
    op.create_index("idx_plcs_make_model", "plcs", ["make", "model"])
    op.create_index(
        "idx_plcs_ip_address_unique",
        "plcs",
        ["ip_address"],
        unique=True,
        postgresql_where=sa.text("ip_address IS NOT NULL"),
    )

    op.create_table(
        "tags",
        sa.Column("plc_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("plcs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("data_type", tag_data_type, nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("address", sa.String(100)),
        *_id_and_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plc_id", "name", name="uk_tags_plc_name"),
    )
    op.create_index("ix_tags_plc_id", "tags", ["plc_id"])

    # ── Audit log (append-only) ────────────────────────────────────────

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("table_name", sa.String(50), nullable=False),
        sa.Column("record_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("old_values", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("new_values", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("changed_fields", postgresql.ARRAY(sa.Text()), comment="UPDATE only"),
        sa.Column(
            "user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("ip_address", postgresql.INET()),
        sa.Column("user_agent", sa.Text()),
        sa.Column("session_id", sa.String(255)),
        sa.Column("risk_level", risk_level, server_default="LOW", nullable=False),
        sa.Column("compliance_notes", sa.Text(), comment="Manual review annotations only"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_logs_table_record", "audit_logs", ["table_name", "record_id"])
    op.create_index("idx_audit_logs_user_timestamp", "audit_logs", ["user_id", sa.text("timestamp DESC")])
    op.create_index("idx_audit_logs_timestamp", "audit_logs", [sa.text("timestamp DESC")])
    op.create_index("idx_audit_logs_action", "audit_logs", ["action"])
    op.create_index(
        "idx_audit_logs_risk_level",
        "audit_logs",
        ["risk_level"],
        postgresql_where=sa.text("risk_level IN ('HIGH', 'CRITICAL')"),
    )

    # System user the audit trail falls back to when no principal is bound.
    op.execute(sentinel_user_sql(uuid.UUID(SYSTEM_USER_ID)))


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("audit_logs")
    op.drop_table("tags")
    op.drop_table("plcs")
    op.drop_table("equipment")
    op.drop_table("cells")
    op.drop_table("sites")
    op.drop_table("users")
    op.drop_table("roles")

    bind = op.get_bind()
    for enum_type in (risk_level, audit_action, tag_data_type, equipment_type):
        enum_type.drop(bind, checkfirst=True)
