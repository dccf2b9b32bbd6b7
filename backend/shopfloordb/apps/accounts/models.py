# backend/shopfloordb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from ...database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountRole(str, enum.Enum):
    """High-level roles; who may plan, run and supervise maintenance."""

    ADMIN = "ADMIN"
    SHIFT_LEAD = "SHIFT_LEAD"   # Meister / shift supervisor
    TECHNICIAN = "TECHNICIAN"
    OPERATOR = "OPERATOR"
    VIEWER = "VIEWER"


class MaintenanceSkillLevel(enum.IntEnum):
    """Tier a user works at for maintenance tasks and escalations."""

    HELPER = 1
    OPERATOR = 2
    MASTER = 3


class User(Base):
    """
    Shop-floor user as seen by the maintenance engine.

    Accounts are provisioned and authenticated elsewhere; this table only
    carries what scheduling, assignment and escalation routing need.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        UniqueConstraint("staff_code", name="uq_users_staff_code"),
        Index("idx_users_role_active", "role", "is_active"),
        Index("idx_users_skill_available", "maintenance_skill_level", "is_active", "is_available"),
        CheckConstraint(
            "maintenance_skill_level BETWEEN 1 AND 3",
            name="ck_users_maintenance_skill_level_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    staff_code = Column(String(32), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)

    role = Column(
        Enum(AccountRole, name="account_role_enum", native_enum=False),
        nullable=False,
        default=AccountRole.OPERATOR,
        index=True,
    )

    maintenance_skill_level = Column(
        Integer,
        nullable=False,
        default=int(MaintenanceSkillLevel.HELPER),
        doc="1=helper, 2=operator, 3=master",
    )

    is_active = Column(Boolean, nullable=False, default=True)
    # False while on leave / off shift; excluded from assignment and routing.
    is_available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def skill_tier(self) -> MaintenanceSkillLevel:
        return MaintenanceSkillLevel(self.maintenance_skill_level or MaintenanceSkillLevel.HELPER)

    def __repr__(self) -> str:
        return f"<User id={self.id} staff_code={self.staff_code} skill={self.maintenance_skill_level}>"
