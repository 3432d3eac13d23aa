"""Read-only audit queries and compliance reporting.

There are deliberately no write functions here: audit rows are only ever
created by the trigger engine or the ORM interceptor.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import String, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import cast

from inventory_audit.config import settings
from inventory_audit.errors import AuditNotFoundError, AuditValidationError
from inventory_audit.models.audit import AuditLog
from inventory_audit.models.enums import AuditAction, RiskLevel
from inventory_audit.schemas.audit import (
    ArchivalStrategy,
    AuditLogFilters,
    AuditLogRead,
    AuditStatistics,
    CompliancePeriod,
    ComplianceReport,
    Pagination,
    UserActivity,
)

logger = logging.getLogger(__name__)

HIGH_RISK_LEVELS = (RiskLevel.HIGH, RiskLevel.CRITICAL)

ARCHIVAL_STRATEGY = ArchivalStrategy(
    retention_policy="Audit logs are retained indefinitely for ISO compliance",
    archival_trigger="No automatic archival - manual review required",
    storage_location="Primary database with backup to secure storage",
    access_controls="Restricted to audit administrators and compliance officers",
    retrieval_process="Full audit trail retrieval available via API with proper authorization",
    compliance_frameworks=["ISO 27001", "SOX", "GDPR Article 30"],
)


def _check_period(start: datetime | None, end: datetime | None) -> None:
    if start is not None and end is not None and start > end:
        raise AuditValidationError("start_date must not be after end_date")


def _apply_filters(query: Any, filters: AuditLogFilters) -> Any:
    if filters.user_id:
        query = query.where(AuditLog.user_id == filters.user_id)
    if filters.start_date:
        query = query.where(AuditLog.timestamp >= filters.start_date)
    if filters.end_date:
        query = query.where(AuditLog.timestamp <= filters.end_date)
    if filters.action:
        query = query.where(AuditLog.action == filters.action)
    if filters.table_name:
        query = query.where(AuditLog.table_name == filters.table_name)
    if filters.risk_level:
        query = query.where(AuditLog.risk_level == filters.risk_level)
    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.where(
            or_(AuditLog.table_name.ilike(pattern), cast(AuditLog.record_id, String).ilike(pattern))
        )
    return query


def clamp_page(page: int, page_size: int) -> tuple[int, int]:
    """Page ≥ 1, page size within [1, max_page_size]."""
    return max(page, 1), min(max(page_size, 1), settings.audit.max_page_size)


async def get_audit_logs_paginated(
    db: AsyncSession,
    filters: AuditLogFilters | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[AuditLog], Pagination]:
    """Filtered audit log, newest first. Returns (logs, pagination)."""
    filters = filters or AuditLogFilters()
    _check_period(filters.start_date, filters.end_date)
    page, page_size = clamp_page(page, page_size)

    result = await db.execute(_apply_filters(select(func.count(AuditLog.id)), filters))
    total = result.scalar() or 0

    result = await db.execute(
        _apply_filters(select(AuditLog), filters)
        .order_by(AuditLog.timestamp.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    logs = list(result.scalars().all())

    return logs, Pagination(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size),
    )


async def get_audit_log(db: AsyncSession, audit_id: uuid.UUID) -> AuditLog:
    """Single audit record. Raises AuditNotFoundError."""
    log = await db.get(AuditLog, audit_id)
    if log is None:
        raise AuditNotFoundError(f"Audit log {audit_id} not found")
    return log


async def get_high_risk_events(
    db: AsyncSession,
    limit: int = 50,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID | None = None,
) -> list[AuditLog]:
    """HIGH and CRITICAL events, newest first, optionally within a period or for one actor."""
    _check_period(start_date, end_date)
    query = select(AuditLog).where(AuditLog.risk_level.in_(HIGH_RISK_LEVELS))
    if user_id:
        query = query.where(AuditLog.user_id == user_id)
    if start_date:
        query = query.where(AuditLog.timestamp >= start_date)
    if end_date:
        query = query.where(AuditLog.timestamp <= end_date)
    result = await db.execute(query.order_by(AuditLog.timestamp.desc()).limit(limit))
    return list(result.scalars().all())


async def get_audit_statistics(
    db: AsyncSession,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID | None = None,
) -> AuditStatistics:
    """Totals and breakdowns by risk level, action and table."""
    filters = AuditLogFilters(start_date=start_date, end_date=end_date, user_id=user_id)

    result = await db.execute(_apply_filters(select(func.count(AuditLog.id)), filters))
    total = result.scalar() or 0

    breakdowns: dict[str, dict[str, int]] = {}
    for key, column in (
        ("risk", AuditLog.risk_level),
        ("action", AuditLog.action),
        ("table", AuditLog.table_name),
    ):
        result = await db.execute(
            _apply_filters(select(column, func.count(AuditLog.id)), filters).group_by(column)
        )
        breakdowns[key] = {getattr(value, "value", value): count for value, count in result.all()}

    return AuditStatistics(
        total_changes=total,
        risk_breakdown=breakdowns["risk"],
        action_breakdown=breakdowns["action"],
        table_breakdown=breakdowns["table"],
    )


async def get_user_activity_summary(
    db: AsyncSession,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID | None = None,
) -> list[UserActivity]:
    """Per-actor change counts, most active first."""
    filters = AuditLogFilters(start_date=start_date, end_date=end_date, user_id=user_id)
    result = await db.execute(
        _apply_filters(select(AuditLog.user_id, AuditLog.action, func.count(AuditLog.id)), filters)
        .group_by(AuditLog.user_id, AuditLog.action)
    )

    summary: dict[uuid.UUID, UserActivity] = {}
    for user_id, action, count in result.all():
        activity = summary.setdefault(user_id, UserActivity(user_id=user_id, total_changes=0))
        activity.total_changes += count
        activity.action_breakdown[getattr(action, "value", action)] = count

    return sorted(summary.values(), key=lambda a: a.total_changes, reverse=True)


def compliance_notes(statistics: AuditStatistics, high_risk_count: int) -> list[str]:
    """Reviewer-facing notes derived from period statistics."""
    notes: list[str] = []

    critical = statistics.risk_breakdown.get(RiskLevel.CRITICAL.value, 0)
    if critical > 0:
        notes.append(f"{critical} CRITICAL risk events detected requiring immediate review")

    high = statistics.risk_breakdown.get(RiskLevel.HIGH.value, 0)
    if high > 10:
        notes.append(f"High volume of HIGH risk events ({high}) - recommend security review")

    deletes = statistics.action_breakdown.get(AuditAction.DELETE.value, 0)
    if statistics.total_changes > 0 and deletes > statistics.total_changes * 0.1:
        percent = round(deletes / statistics.total_changes * 100)
        notes.append(f"High deletion rate detected ({percent}% of all changes) - verify data retention compliance")

    notes.append("All data modifications have been logged with full audit trail")
    notes.append("User context and session information captured for all changes")
    notes.append("Risk assessment performed for all audit events")

    if high_risk_count == 0:
        notes.append("No high-risk security events detected in reporting period")

    return notes


async def generate_compliance_report(
    db: AsyncSession,
    start_date: datetime,
    end_date: datetime,
    user_id: uuid.UUID | None = None,
) -> ComplianceReport:
    """Statistics, activity, high-risk events and notes for a review period.

    With `user_id` every section is scoped to that actor.
    """
    _check_period(start_date, end_date)

    statistics = await get_audit_statistics(db, start_date, end_date, user_id)
    high_risk = await get_high_risk_events(db, limit=100, start_date=start_date, end_date=end_date, user_id=user_id)
    activity = await get_user_activity_summary(db, start_date, end_date, user_id)

    logger.info(
        "Compliance report generated: %d changes, %d high-risk events",
        statistics.total_changes,
        len(high_risk),
    )
    return ComplianceReport(
        period=CompliancePeriod(start_date=start_date, end_date=end_date),
        generated_at=datetime.now(UTC),
        statistics=statistics,
        user_activity=activity,
        high_risk_events=[AuditLogRead.model_validate(log) for log in high_risk],
        compliance_notes=compliance_notes(statistics, len(high_risk)),
        archival_strategy=ARCHIVAL_STRATEGY,
    )
