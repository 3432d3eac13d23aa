"""Shared fixtures: an in-memory SQLite schema driven through the ORM interceptor."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from inventory_audit.audit.context import AuditContext
from inventory_audit.audit.interceptor import CONTEXT_KEY, InterceptedSession
from inventory_audit.models import PLC, Base, Cell, Equipment, EquipmentType, Site

U1 = uuid.UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture
def sqlite_engine():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(sqlite_engine, class_=InterceptedSession, expire_on_commit=False)


@pytest.fixture
def user_context():
    return AuditContext(user_id=U1, ip_address="203.0.113.9", user_agent="pytest", session_id="s-1")


@pytest.fixture
def plc(session_factory):
    """A committed PLC at 10.0.0.5 with its parent hierarchy."""
    with session_factory() as session:
        site = Site(name="Plant A")
        cell = Cell(site=site, name="Line 1", line_number="L1")
        equipment = Equipment(cell=cell, name="Press 1", equipment_type=EquipmentType.PRESS)
        device = PLC(
            equipment=equipment,
            tag_id="PLC-001",
            description="Main press controller",
            make="Siemens",
            model="S7-1500",
            ip_address="10.0.0.5",
        )
        session.info[CONTEXT_KEY] = AuditContext(user_id=U1)
        session.add(device)
        session.commit()
        return device
