"""Building and Space models."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, DateTime, ForeignKey, Integer, Numeric, Text, CheckConstraint, Index, Uuid, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.enums import SpaceType, CommonAreaType, db_enum


class Building(Base):
    """A building managed by a company, with site-access metadata."""

    __tablename__ = "buildings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    zip: Mapped[str] = mapped_column(String(10), nullable=False)

    # Site access
    gate_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    water_shutoff_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gas_shutoff_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    onsite_contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    onsite_contact_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    access_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Space(Base):
    """A unit or a common area inside a building."""

    __tablename__ = "spaces"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    building_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("buildings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    space_type: Mapped[SpaceType] = mapped_column(db_enum(SpaceType, "space_type"), nullable=False)
    unit_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    common_area_type: Mapped[Optional[CommonAreaType]] = mapped_column(
        db_enum(CommonAreaType, "common_area_type"), nullable=True
    )

    floor: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 1), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "(space_type = 'unit' AND unit_number IS NOT NULL AND common_area_type IS NULL)"
            " OR "
            "(space_type = 'common_area' AND common_area_type IS NOT NULL AND unit_number IS NULL)",
            name="ck_spaces_discriminator",
        ),
    )


# Unit numbers are unique per building, case-insensitively
Index(
    "uq_spaces_building_unit_number",
    Space.building_id,
    func.lower(Space.unit_number),
    unique=True,
)
