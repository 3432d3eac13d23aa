"""Read-only REST API over the audit trail.

All routes require an authenticated principal, placed on
`request.state.principal` by the upstream auth layer. There are no write
endpoints: audit records are immutable.
"""
# ruff: noqa: B008 - Depends() in function defaults is standard FastAPI

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_audit.audit.context import Principal
from inventory_audit.audit.queries import (
    generate_compliance_report,
    get_audit_log,
    get_audit_logs_paginated,
    get_high_risk_events,
)
from inventory_audit.db.engine import get_session
from inventory_audit.models.enums import AuditAction, RiskLevel
from inventory_audit.schemas.audit import (
    AuditLogFilters,
    AuditLogPage,
    AuditLogRead,
    ComplianceReport,
)

router = APIRouter(prefix="/api/v1/audit", tags=["audit"])


async def require_principal(request: Request) -> Principal:
    """FastAPI dependency: the caller resolved by the auth layer, or 401."""
    principal = getattr(request.state, "principal", None)
    if not isinstance(principal, Principal):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return principal


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    page: int = Query(1),
    page_size: int = Query(50),
    user_id: uuid.UUID | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    action: AuditAction | None = Query(None),
    table_name: str | None = Query(None),
    risk_level: RiskLevel | None = Query(None),
    search: str | None = Query(None),
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_principal),
) -> AuditLogPage:
    """Paginated, filtered audit log, newest first."""
    filters = AuditLogFilters(
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        action=action,
        table_name=table_name,
        risk_level=risk_level,
        search=search,
    )
    logs, pagination = await get_audit_logs_paginated(db, filters, page=page, page_size=page_size)
    return AuditLogPage(
        data=[AuditLogRead.model_validate(log) for log in logs],
        pagination=pagination,
    )


@router.get("/high-risk", response_model=list[AuditLogRead])
async def high_risk_events(
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_principal),
) -> list[AuditLogRead]:
    """Most recent HIGH and CRITICAL events."""
    events = await get_high_risk_events(db, limit=limit)
    return [AuditLogRead.model_validate(e) for e in events]


@router.get("/reports/compliance", response_model=ComplianceReport)
async def compliance_report(
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    user_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_principal),
) -> ComplianceReport:
    """Compliance summary for a review period."""
    return await generate_compliance_report(db, start_date, end_date, user_id)


@router.get("/{audit_id}", response_model=AuditLogRead)
async def audit_log_detail(
    audit_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_principal),
) -> AuditLogRead:
    """One audit record by id."""
    return AuditLogRead.model_validate(await get_audit_log(db, audit_id))
