# backend/shopfloordb/apps/machines/models.py
#
# ORM models for machines and their operating-hours history:
# - Machine               : production asset with a cumulative hours counter.
# - OperatingHoursReading : append-only log of counter readings.
#
# Readings are never updated or deleted by the application; a machine delete
# cascades to its history.

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from ...database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MachineCategory(str, Enum):
    CNC = "cnc"
    AUTOMATION = "automation"
    MEASURING = "measuring"
    OTHER = "other"


class HoursSource(str, Enum):
    """Where an operating-hours reading came from."""
    MANUAL = "manual"  # typed in from the machine display
    OCR = "ocr"        # photo of the display, recognised
    API = "api"        # pushed by the machine controller


# ---------------------------------------------------------------------------
# Machine
# ---------------------------------------------------------------------------


class Machine(Base):
    __tablename__ = "machines"
    __table_args__ = (
        CheckConstraint("current_operating_hours >= 0", name="ck_machines_hours_nonneg"),
        Index("ix_machines_category_active", "machine_category", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=True)

    machine_category = Column(
        SQLEnum(MachineCategory, name="machine_category_enum", native_enum=False),
        nullable=False,
        default=MachineCategory.OTHER,
    )
    requires_shift_checklist = Column(Boolean, nullable=False, default=False)

    current_operating_hours = Column(Float, nullable=False, default=0.0)
    operating_hours_updated_at = Column(DateTime(timezone=True), nullable=True)
    last_maintenance_at = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    hours_readings = relationship(
        "OperatingHoursReading",
        back_populates="machine",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OperatingHoursReading.recorded_at",
    )

    def __repr__(self) -> str:
        return f"<Machine id={self.id} name={self.name} hours={self.current_operating_hours}>"


# ---------------------------------------------------------------------------
# OperatingHoursReading
# ---------------------------------------------------------------------------


class OperatingHoursReading(Base):
    """
    One counter reading. `previous_hours` is the machine counter before this
    reading; `delta_hours` is what the reading added (0 for clamped anomalies).
    """

    __tablename__ = "operating_hours_log"
    __table_args__ = (
        Index("ix_operating_hours_log_machine_time", "machine_id", "recorded_at"),
        CheckConstraint("recorded_hours >= 0", name="ck_operating_hours_log_recorded_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    machine_id = Column(
        Integer,
        ForeignKey("machines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    recorded_hours = Column(Float, nullable=False)
    previous_hours = Column(Float, nullable=True)
    delta_hours = Column(Float, nullable=True)
    is_anomaly = Column(Boolean, nullable=False, default=False)

    recorded_by_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    source = Column(
        SQLEnum(HoursSource, name="hours_source_enum", native_enum=False),
        nullable=False,
        default=HoursSource.MANUAL,
    )
    notes = Column(Text, nullable=True)

    machine = relationship("Machine", back_populates="hours_readings")

    def __repr__(self) -> str:
        return (
            f"<OperatingHoursReading id={self.id} machine={self.machine_id} "
            f"hours={self.recorded_hours} delta={self.delta_hours}>"
        )
