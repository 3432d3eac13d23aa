"""SQLAlchemy ORM models for the equipment inventory.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from inventory_audit.models.audit import AuditLog
from inventory_audit.models.base import Base
from inventory_audit.models.enums import AuditAction, EquipmentType, RiskLevel, TagDataType
from inventory_audit.models.inventory import PLC, Cell, Equipment, Site, Tag
from inventory_audit.models.user import Role, User

__all__ = [
    # Base
    "Base",
    # Models
    "AuditLog",
    "Role",
    "User",
    "Site",
    "Cell",
    "Equipment",
    "PLC",
    "Tag",
    # Enums
    "AuditAction",
    "RiskLevel",
    "EquipmentType",
    "TagDataType",
]
