"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization and PostgreSQL native enum types.
"""

from __future__ import annotations

from enum import Enum


class AuditAction(str, Enum):
    """Kind of row-level mutation an audit record describes."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class RiskLevel(str, Enum):
    """Coarse review priority attached to every audit record."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class EquipmentType(str, Enum):
    """Physical equipment category on a production cell."""

    PRESS = "PRESS"
    ROBOT = "ROBOT"
    OVEN = "OVEN"
    CONVEYOR = "CONVEYOR"
    ASSEMBLY_TABLE = "ASSEMBLY_TABLE"
    OTHER = "OTHER"


class TagDataType(str, Enum):
    """PLC tag data type."""

    BOOL = "BOOL"
    INT = "INT"
    DINT = "DINT"
    REAL = "REAL"
    STRING = "STRING"
    TIMER = "TIMER"
    COUNTER = "COUNTER"
