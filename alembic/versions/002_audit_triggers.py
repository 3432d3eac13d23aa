"""Audit trigger function, per-table triggers, recent events view.

Revision ID: 002
Revises: 001
Create Date: 2025-07-29
"""
from __future__ import annotations

from typing import Union

from alembic import op

from inventory_audit.audit.triggers import install_statements, uninstall_statements

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None

AUDITED_TABLES = ["sites", "cells", "equipment", "plcs", "tags", "users", "roles"]


def upgrade() -> None:
    for statement in install_statements(AUDITED_TABLES):
        op.execute(statement)


def downgrade() -> None:
    for statement in uninstall_statements(AUDITED_TABLES):
        op.execute(statement)
