"""Pydantic schemas for the read-only audit API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from inventory_audit.models.enums import AuditAction, RiskLevel


class AuditLogRead(BaseModel):
    """One audit record as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    table_name: str
    record_id: uuid.UUID
    action: AuditAction
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changed_fields: list[str] | None = None
    user_id: uuid.UUID
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    risk_level: RiskLevel
    compliance_notes: str | None = None

    @field_validator("ip_address", mode="before")
    @classmethod
    def stringify_ip(cls, v: Any) -> str | None:
        """asyncpg decodes INET into ipaddress objects."""
        return None if v is None else str(v)


class AuditLogFilters(BaseModel):
    """Listing filters; every field optional."""

    user_id: uuid.UUID | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    action: AuditAction | None = None
    table_name: str | None = None
    risk_level: RiskLevel | None = None
    search: str | None = Field(default=None, description="Substring of table name or record id")


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class AuditLogPage(BaseModel):
    data: list[AuditLogRead]
    pagination: Pagination


class AuditStatistics(BaseModel):
    total_changes: int = 0
    risk_breakdown: dict[str, int] = Field(default_factory=dict)
    action_breakdown: dict[str, int] = Field(default_factory=dict)
    table_breakdown: dict[str, int] = Field(default_factory=dict)


class UserActivity(BaseModel):
    user_id: uuid.UUID
    total_changes: int
    action_breakdown: dict[str, int] = Field(default_factory=dict)


class ArchivalStrategy(BaseModel):
    retention_policy: str
    archival_trigger: str
    storage_location: str
    access_controls: str
    retrieval_process: str
    compliance_frameworks: list[str]


class CompliancePeriod(BaseModel):
    start_date: datetime
    end_date: datetime


class ComplianceReport(BaseModel):
    """Audit summary for a review period."""

    period: CompliancePeriod
    generated_at: datetime
    statistics: AuditStatistics
    user_activity: list[UserActivity]
    high_risk_events: list[AuditLogRead]
    compliance_notes: list[str]
    archival_strategy: ArchivalStrategy
