"""Inventory hierarchy: Site → Cell → Equipment → PLC → Tag.

Only the tables live here; the CRUD services built on them are separate.
Every table is audited.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Enum, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_audit.models.base import Base, IPAddress, TimestampMixin
from inventory_audit.models.enums import EquipmentType, TagDataType


class Site(TimestampMixin, Base):
    """A plant or facility."""

    __tablename__ = "sites"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    cells: Mapped[list[Cell]] = relationship("Cell", back_populates="site", cascade="all, delete-orphan")


class Cell(TimestampMixin, Base):
    """A production line within a site."""

    __tablename__ = "cells"
    __table_args__ = (UniqueConstraint("site_id", "line_number", name="uk_cells_site_line"),)

    site_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    line_number: Mapped[str] = mapped_column(String(50), nullable=False)

    site: Mapped[Site] = relationship("Site", back_populates="cells")
    equipment: Mapped[list[Equipment]] = relationship(
        "Equipment", back_populates="cell", cascade="all, delete-orphan"
    )


class Equipment(TimestampMixin, Base):
    """A machine on a cell."""

    __tablename__ = "equipment"

    cell_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("cells.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    equipment_type: Mapped[EquipmentType] = mapped_column(
        Enum(EquipmentType, name="equipment_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    cell: Mapped[Cell] = relationship("Cell", back_populates="equipment")
    plcs: Mapped[list[PLC]] = relationship("PLC", back_populates="equipment", cascade="all, delete-orphan")


class PLC(TimestampMixin, Base):
    """A programmable logic controller, the leaf device of the inventory."""

    __tablename__ = "plcs"
    __table_args__ = (
        Index("idx_plcs_make_model", "make", "model"),
        Index(
            "idx_plcs_ip_address_unique",
            "ip_address",
            unique=True,
            postgresql_where=text("ip_address IS NOT NULL"),
        ),
    )

    equipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), index=True, nullable=False
    )
    tag_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(IPAddress)
    firmware_version: Mapped[str | None] = mapped_column(String(50))

    equipment: Mapped[Equipment] = relationship("Equipment", back_populates="plcs")
    tags: Mapped[list[Tag]] = relationship("Tag", back_populates="plc", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<PLC {self.tag_id} ip={self.ip_address}>"


class Tag(TimestampMixin, Base):
    """A named data point exposed by a PLC."""

    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("plc_id", "name", name="uk_tags_plc_name"),)

    plc_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("plcs.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    data_type: Mapped[TagDataType] = mapped_column(
        Enum(TagDataType, name="tag_data_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(String(100))

    plc: Mapped[PLC] = relationship("PLC", back_populates="tags")
