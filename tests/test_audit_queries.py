"""Tests for inventory_audit/audit/queries.py: read-side queries and compliance notes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from inventory_audit.audit.queries import (
    ARCHIVAL_STRATEGY,
    clamp_page,
    compliance_notes,
    generate_compliance_report,
    get_audit_log,
    get_audit_logs_paginated,
    get_audit_statistics,
    get_high_risk_events,
    get_user_activity_summary,
)
from inventory_audit.errors import AuditNotFoundError, AuditValidationError
from inventory_audit.models.enums import AuditAction, RiskLevel
from inventory_audit.schemas.audit import AuditLogFilters, AuditStatistics

START = datetime(2025, 7, 1, tzinfo=UTC)
END = datetime(2025, 7, 31, tzinfo=UTC)


@pytest.fixture
def mock_db():
    """Create a mock async DB session."""
    db = AsyncMock()
    db.execute = AsyncMock()
    db.get = AsyncMock()
    return db


def _scalar_result(value):
    result = MagicMock()
    result.scalar.return_value = value
    return result


def _scalars_result(items):
    result = MagicMock()
    result.scalars.return_value.all.return_value = items
    return result


def _rows_result(rows):
    result = MagicMock()
    result.all.return_value = rows
    return result


def _audit_row(**overrides):
    row = MagicMock()
    row.id = uuid.uuid4()
    row.table_name = "plcs"
    row.record_id = uuid.uuid4()
    row.action = AuditAction.DELETE
    row.old_values = {"ip_address": "10.0.0.5"}
    row.new_values = None
    row.changed_fields = None
    row.user_id = uuid.uuid4()
    row.timestamp = START + timedelta(days=1)
    row.ip_address = None
    row.user_agent = None
    row.session_id = None
    row.risk_level = RiskLevel.HIGH
    row.compliance_notes = None
    for key, value in overrides.items():
        setattr(row, key, value)
    return row


# ── Pagination ───────────────────────────────────────────────────────


class TestClampPage:
    def test_within_bounds(self):
        assert clamp_page(2, 25) == (2, 25)

    def test_page_size_capped(self):
        assert clamp_page(1, 1000) == (1, 100)

    def test_minimums(self):
        assert clamp_page(0, 0) == (1, 1)
        assert clamp_page(-3, -10) == (1, 1)


class TestGetAuditLogsPaginated:
    @pytest.mark.asyncio
    async def test_page_metadata(self, mock_db):
        logs = [_audit_row(), _audit_row()]
        mock_db.execute.side_effect = [_scalar_result(42), _scalars_result(logs)]

        result, pagination = await get_audit_logs_paginated(mock_db, AuditLogFilters(), page=2, page_size=20)

        assert result == logs
        assert pagination.page == 2
        assert pagination.page_size == 20
        assert pagination.total == 42
        assert pagination.total_pages == 3

    @pytest.mark.asyncio
    async def test_empty(self, mock_db):
        mock_db.execute.side_effect = [_scalar_result(0), _scalars_result([])]

        result, pagination = await get_audit_logs_paginated(mock_db)

        assert result == []
        assert pagination.total_pages == 0

    @pytest.mark.asyncio
    async def test_inverted_period_rejected(self, mock_db):
        with pytest.raises(AuditValidationError):
            await get_audit_logs_paginated(mock_db, AuditLogFilters(start_date=END, end_date=START))
        mock_db.execute.assert_not_awaited()


class TestGetAuditLog:
    @pytest.mark.asyncio
    async def test_found(self, mock_db):
        row = _audit_row()
        mock_db.get.return_value = row
        assert await get_audit_log(mock_db, row.id) is row

    @pytest.mark.asyncio
    async def test_not_found(self, mock_db):
        mock_db.get.return_value = None
        with pytest.raises(AuditNotFoundError) as exc_info:
            await get_audit_log(mock_db, uuid.uuid4())
        assert exc_info.value.status_code == 404


class TestHighRiskEvents:
    @pytest.mark.asyncio
    async def test_returns_rows(self, mock_db):
        rows = [_audit_row(risk_level=RiskLevel.CRITICAL)]
        mock_db.execute.return_value = _scalars_result(rows)

        assert await get_high_risk_events(mock_db, limit=10) == rows

        query = str(mock_db.execute.await_args.args[0])
        assert "risk_level IN" in query
        assert "audit_logs.user_id" not in query

    @pytest.mark.asyncio
    async def test_scoped_to_user(self, mock_db):
        mock_db.execute.return_value = _scalars_result([])

        await get_high_risk_events(mock_db, user_id=uuid.uuid4())

        query = str(mock_db.execute.await_args.args[0])
        assert "audit_logs.user_id = " in query


# ── Statistics ───────────────────────────────────────────────────────


class TestStatistics:
    @pytest.mark.asyncio
    async def test_breakdowns(self, mock_db):
        mock_db.execute.side_effect = [
            _scalar_result(10),
            _rows_result([(RiskLevel.LOW, 7), (RiskLevel.HIGH, 3)]),
            _rows_result([(AuditAction.INSERT, 6), (AuditAction.DELETE, 4)]),
            _rows_result([("plcs", 10)]),
        ]

        stats = await get_audit_statistics(mock_db, START, END)

        assert stats.total_changes == 10
        assert stats.risk_breakdown == {"LOW": 7, "HIGH": 3}
        assert stats.action_breakdown == {"INSERT": 6, "DELETE": 4}
        assert stats.table_breakdown == {"plcs": 10}

    @pytest.mark.asyncio
    async def test_user_activity_sorted(self, mock_db):
        quiet, busy = uuid.uuid4(), uuid.uuid4()
        mock_db.execute.return_value = _rows_result(
            [
                (quiet, AuditAction.INSERT, 1),
                (busy, AuditAction.INSERT, 3),
                (busy, AuditAction.UPDATE, 5),
            ]
        )

        activity = await get_user_activity_summary(mock_db, START, END)

        assert [a.user_id for a in activity] == [busy, quiet]
        assert activity[0].total_changes == 8
        assert activity[0].action_breakdown == {"INSERT": 3, "UPDATE": 5}

    @pytest.mark.asyncio
    async def test_user_activity_scoped_to_user(self, mock_db):
        user = uuid.uuid4()
        mock_db.execute.return_value = _rows_result([(user, AuditAction.UPDATE, 2)])

        activity = await get_user_activity_summary(mock_db, START, END, user)

        assert "audit_logs.user_id = " in str(mock_db.execute.await_args.args[0])
        assert [a.user_id for a in activity] == [user]


# ── Compliance ───────────────────────────────────────────────────────


class TestComplianceNotes:
    def test_quiet_period(self):
        notes = compliance_notes(AuditStatistics(total_changes=5, action_breakdown={"INSERT": 5}), 0)

        assert "All data modifications have been logged with full audit trail" in notes
        assert notes[-1] == "No high-risk security events detected in reporting period"
        assert not any("CRITICAL" in n for n in notes)

    def test_critical_events_flagged_first(self):
        stats = AuditStatistics(total_changes=5, risk_breakdown={"CRITICAL": 2})
        notes = compliance_notes(stats, 2)

        assert notes[0] == "2 CRITICAL risk events detected requiring immediate review"
        assert "No high-risk security events detected in reporting period" not in notes

    def test_high_volume(self):
        stats = AuditStatistics(total_changes=50, risk_breakdown={"HIGH": 11})
        assert any("High volume of HIGH risk events (11)" in n for n in compliance_notes(stats, 11))

    def test_ten_high_events_not_flagged(self):
        stats = AuditStatistics(total_changes=50, risk_breakdown={"HIGH": 10})
        assert not any("High volume" in n for n in compliance_notes(stats, 10))

    def test_deletion_rate(self):
        stats = AuditStatistics(total_changes=20, action_breakdown={"DELETE": 5})
        assert any("High deletion rate detected (25% of all changes)" in n for n in compliance_notes(stats, 0))

    def test_deletion_rate_at_threshold_not_flagged(self):
        stats = AuditStatistics(total_changes=20, action_breakdown={"DELETE": 2})
        assert not any("deletion rate" in n for n in compliance_notes(stats, 0))


class TestGenerateComplianceReport:
    @pytest.mark.asyncio
    async def test_report_assembly(self, mock_db):
        stats = AuditStatistics(total_changes=3, risk_breakdown={"HIGH": 1})
        event = _audit_row()
        with (
            patch("inventory_audit.audit.queries.get_audit_statistics", AsyncMock(return_value=stats)),
            patch("inventory_audit.audit.queries.get_high_risk_events", AsyncMock(return_value=[event])),
            patch("inventory_audit.audit.queries.get_user_activity_summary", AsyncMock(return_value=[])),
        ):
            report = await generate_compliance_report(mock_db, START, END)

        assert report.period.start_date == START
        assert report.statistics == stats
        assert len(report.high_risk_events) == 1
        assert report.high_risk_events[0].id == event.id
        assert report.archival_strategy == ARCHIVAL_STRATEGY
        assert "ISO 27001" in report.archival_strategy.compliance_frameworks

    @pytest.mark.asyncio
    async def test_user_filter_reaches_every_section(self, mock_db):
        user = uuid.uuid4()
        statistics = AsyncMock(return_value=AuditStatistics(total_changes=0))
        high_risk = AsyncMock(return_value=[])
        activity = AsyncMock(return_value=[])
        with (
            patch("inventory_audit.audit.queries.get_audit_statistics", statistics),
            patch("inventory_audit.audit.queries.get_high_risk_events", high_risk),
            patch("inventory_audit.audit.queries.get_user_activity_summary", activity),
        ):
            await generate_compliance_report(mock_db, START, END, user)

        assert statistics.await_args.args[-1] == user
        assert high_risk.await_args.kwargs["user_id"] == user
        assert activity.await_args.args[-1] == user

    @pytest.mark.asyncio
    async def test_inverted_period_rejected(self, mock_db):
        with pytest.raises(AuditValidationError):
            await generate_compliance_report(mock_db, END, START)
