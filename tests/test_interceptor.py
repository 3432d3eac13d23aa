"""Tests for inventory_audit/audit/interceptor.py against a real (SQLite) database.

Covers:
- One audit record per mutation, written in the same transaction
- Actor from session context, sentinel fallback with warning
- changed_fields lists exactly the touched columns
- Immutability of audit records
- A failed audit write aborts the mutation
"""

from __future__ import annotations

import logging
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import func, select, text

from inventory_audit.audit.interceptor import CONTEXT_KEY, GuardedSession, collect_payloads
from inventory_audit.config import SYSTEM_USER_ID
from inventory_audit.errors import AuditImmutabilityError, AuditWriteError
from inventory_audit.models import PLC, AuditAction, AuditLog, RiskLevel, Role, User

U1 = uuid.UUID("11111111-1111-1111-1111-111111111111")


def _logs_for(session, record_id) -> list[AuditLog]:
    result = session.execute(select(AuditLog).where(AuditLog.record_id == record_id).order_by(AuditLog.timestamp))
    return list(result.scalars().all())


class TestInsert:
    def test_hierarchy_insert_audited_per_row(self, session_factory, plc):
        with session_factory() as session:
            rows = session.execute(select(AuditLog.table_name, AuditLog.action)).all()

        assert sorted(rows) == sorted(
            [
                ("sites", AuditAction.INSERT),
                ("cells", AuditAction.INSERT),
                ("equipment", AuditAction.INSERT),
                ("plcs", AuditAction.INSERT),
            ]
        )

    def test_insert_record_contents(self, session_factory, plc):
        with session_factory() as session:
            (log,) = _logs_for(session, plc.id)

        assert log.action == AuditAction.INSERT
        assert log.old_values is None
        assert log.new_values["tag_id"] == "PLC-001"
        assert log.new_values["id"] == str(plc.id)
        assert log.changed_fields is None
        assert log.user_id == U1
        assert log.risk_level == RiskLevel.LOW
        assert log.timestamp is not None


class TestUpdate:
    def test_network_address_change(self, session_factory, plc, user_context):
        """U1 moves a PLC from 10.0.0.5 to 10.0.0.6."""
        with session_factory() as session:
            session.info[CONTEXT_KEY] = user_context
            device = session.get(PLC, plc.id)
            device.ip_address = "10.0.0.6"
            session.commit()

            updates = [log for log in _logs_for(session, plc.id) if log.action == AuditAction.UPDATE]

        assert len(updates) == 1
        log = updates[0]
        assert log.changed_fields == ["ip_address"]
        assert log.risk_level == RiskLevel.MEDIUM
        assert log.user_id == U1
        assert log.old_values["ip_address"] == "10.0.0.5"
        assert log.new_values["ip_address"] == "10.0.0.6"
        assert log.ip_address == "203.0.113.9"
        assert log.user_agent == "pytest"
        assert log.session_id == "s-1"

    def test_changed_fields_exactly_the_differing_columns(self, session_factory, plc, user_context):
        with session_factory() as session:
            session.info[CONTEXT_KEY] = user_context
            device = session.get(PLC, plc.id)
            device.firmware_version = "2.9"
            device.model = "S7-1200"
            device.make = "Siemens"  # unchanged value
            session.commit()

            (log,) = [log for log in _logs_for(session, plc.id) if log.action == AuditAction.UPDATE]

        assert log.changed_fields == ["firmware_version", "model"]
        assert log.risk_level == RiskLevel.LOW
        for key in log.old_values:
            if key not in log.changed_fields:
                assert log.old_values[key] == log.new_values[key]

    def test_noop_update_not_audited(self, session_factory, plc, user_context):
        with session_factory() as session:
            session.info[CONTEXT_KEY] = user_context
            device = session.get(PLC, plc.id)
            device.ip_address = "10.0.0.5"
            session.commit()

            actions = [log.action for log in _logs_for(session, plc.id)]

        assert actions == [AuditAction.INSERT]


class TestDelete:
    def test_delete_without_principal_uses_sentinel(self, session_factory, plc, caplog):
        with session_factory() as session, caplog.at_level(logging.WARNING):
            session.delete(session.get(PLC, plc.id))
            session.commit()

            deletes = [log for log in _logs_for(session, plc.id) if log.action == AuditAction.DELETE]

        assert len(deletes) == 1
        log = deletes[0]
        assert log.user_id == SYSTEM_USER_ID
        assert log.risk_level == RiskLevel.HIGH
        assert log.new_values is None
        assert log.old_values["ip_address"] == "10.0.0.5"
        assert any(
            getattr(r, "table", None) == "plcs" and getattr(r, "operation", None) == "DELETE"
            for r in caplog.records
        )

    def test_identity_delete_outranks_device_delete(self, session_factory, plc, user_context):
        with session_factory() as session:
            session.info[CONTEXT_KEY] = user_context
            user = User(email="op@example.com", password_hash="x", first_name="Op", last_name="One")
            session.add(user)
            session.commit()

            session.delete(user)
            session.delete(session.get(PLC, plc.id))
            session.commit()

            levels = dict(
                session.execute(
                    select(AuditLog.table_name, AuditLog.risk_level).where(AuditLog.action == AuditAction.DELETE)
                ).all()
            )

        assert levels == {"users": RiskLevel.CRITICAL, "plcs": RiskLevel.HIGH}


class TestAtomicity:
    def test_rolled_back_insert_leaves_no_record(self, session_factory, user_context):
        role = Role(name="Auditor", permissions={"audit": ["read"]})
        with session_factory() as session:
            session.info[CONTEXT_KEY] = user_context
            session.add(role)
            session.flush()
            role_id = role.id
            assert len(_logs_for(session, role_id)) == 1
            session.rollback()

        with session_factory() as session:
            assert _logs_for(session, role_id) == []
            assert session.get(Role, role_id) is None

    def test_every_record_has_an_actor(self, session_factory, plc):
        with session_factory() as session:
            session.delete(session.get(PLC, plc.id))
            session.commit()
            missing = session.execute(select(func.count()).where(AuditLog.user_id.is_(None))).scalar()

        assert missing == 0

    def test_failed_audit_write_aborts_mutation(self, session_factory, plc, user_context):
        with session_factory() as session:
            session.info[CONTEXT_KEY] = user_context
            device = session.get(PLC, plc.id)
            device.ip_address = "10.0.0.6"

            broken_insert = text("INSERT INTO no_such_table (table_name) VALUES (:table_name)")
            with (
                patch("inventory_audit.audit.interceptor.insert", return_value=broken_insert),
                pytest.raises(AuditWriteError) as exc_info,
            ):
                session.flush()
            session.rollback()

        assert exc_info.value.table == "plcs"
        assert exc_info.value.operation == "UPDATE"
        with session_factory() as session:
            assert session.get(PLC, plc.id).ip_address == "10.0.0.5"


class TestImmutability:
    def test_update_of_audit_record_rejected(self, session_factory, plc):
        with session_factory() as session:
            (log,) = _logs_for(session, plc.id)
            log.risk_level = RiskLevel.CRITICAL
            with pytest.raises(AuditImmutabilityError):
                session.flush()

    def test_delete_of_audit_record_rejected(self, session_factory, plc):
        with session_factory() as session:
            (log,) = _logs_for(session, plc.id)
            session.delete(log)
            with pytest.raises(AuditImmutabilityError):
                session.flush()

    def test_guarded_session_does_not_write_audit_rows(self, sqlite_engine, plc):
        with GuardedSession(sqlite_engine) as session:
            device = session.get(PLC, plc.id)
            device.ip_address = "10.0.0.9"
            session.commit()
            count = session.execute(select(func.count(AuditLog.id))).scalar()

        assert count == 4  # the fixture's hierarchy inserts only


class TestCollectPayloads:
    def test_unaudited_tables_ignored(self, session_factory):
        with session_factory() as session:
            session.add(
                AuditLog(
                    table_name="plcs",
                    record_id=uuid.uuid4(),
                    action=AuditAction.INSERT,
                    user_id=SYSTEM_USER_ID,
                )
            )
            assert collect_payloads(session) == []

    def test_pending_insert(self, session_factory):
        role_id = uuid.uuid4()
        with session_factory() as session:
            session.add(Role(id=role_id, name="Viewer", permissions={}))
            (payload,) = collect_payloads(session)

        assert payload.record_id == role_id
        assert payload.table_name == "roles"
        assert payload.action == AuditAction.INSERT
        assert payload.risk_level == RiskLevel.HIGH
