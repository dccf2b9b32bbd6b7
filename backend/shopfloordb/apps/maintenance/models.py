# backend/shopfloordb/apps/maintenance/models.py
#
# ORM models for the maintenance module:
# - MaintenanceType         : catalogue of kinds of maintenance (lubrication, ...).
# - MaintenancePlan         : recurring obligation for one machine, on a calendar
#                             clock, an operating-hours clock, or both.
# - ChecklistItem           : ordered checks a task executes for its plan.
# - MaintenanceInstruction  : step-by-step content for one checklist item.
# - MaintenanceTask         : concrete occurrence of a plan, or a standalone job.
# - ChecklistItemResult     : outcome of one checklist item inside one task.
# - Escalation              : routed problem report raised by a failed check.
# - TaskAssignment          : daily (user, plan, date) work allocation.
#
# Schema notes:
# - Non-native enums (stored as names) to keep Alembic free of enum types.
# - At most one open task per plan is guarded by a partial unique index so
#   overlapping generator runs cannot both insert.
# - Plans must carry at least one recurrence clock (check constraint); the
#   typed view of those columns is `MaintenancePlan.recurrence`.

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Enum as SQLEnum,
    text,
)
from sqlalchemy.orm import relationship

from ...database import Base
from .decisions import Decision, DecisionType, FailureAction, decision_from_columns
from .recurrence import IntervalType, Recurrence, recurrence_from_columns


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RequiredSkillLevel(str, Enum):
    """Skill a plan demands; maps onto the three user tiers."""
    HELPER = "helper"
    OPERATOR = "operator"
    TECHNICIAN = "technician"
    SPECIALIST = "specialist"

    @property
    def tier(self) -> int:
        return _REQUIRED_SKILL_TIERS[self]


_REQUIRED_SKILL_TIERS = {
    RequiredSkillLevel.HELPER: 1,
    RequiredSkillLevel.OPERATOR: 2,
    RequiredSkillLevel.TECHNICIAN: 3,
    RequiredSkillLevel.SPECIALIST: 3,
}


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        # 0 sorts first
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.NORMAL: 2,
    Priority.LOW: 3,
}


class DueStatus(str, Enum):
    OK = "ok"
    DUE_SOON = "due_soon"
    DUE_TODAY = "due_today"
    OVERDUE = "overdue"


class TaskType(str, Enum):
    PLAN_BASED = "plan_based"
    STANDALONE = "standalone"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


class RecurrencePattern(str, Enum):
    """Informational repeat hint on standalone tasks."""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class EscalationStatus(str, Enum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    CLOSED = "closed"


UNRESOLVED_ESCALATION_STATUSES = (EscalationStatus.OPEN, EscalationStatus.ACKNOWLEDGED)


# ---------------------------------------------------------------------------
# MaintenanceType
# ---------------------------------------------------------------------------


class MaintenanceType(Base):
    __tablename__ = "maintenance_types"
    __table_args__ = (UniqueConstraint("name", name="uq_maintenance_types_name"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<MaintenanceType id={self.id} name={self.name}>"


# ---------------------------------------------------------------------------
# MaintenancePlan
# ---------------------------------------------------------------------------


class MaintenancePlan(Base):
    """
    Recurring maintenance obligation for one machine.

    Next-due markers are absolute: `next_due_at` on the calendar clock,
    `next_due_hours` on the machine's operating-hours counter. `hours_status`
    caches the hours clock and is refreshed in the same transaction as every
    operating-hours reading.
    """

    __tablename__ = "maintenance_plans"
    __table_args__ = (
        CheckConstraint(
            "(interval_type IS NOT NULL AND interval_value IS NOT NULL) OR interval_hours IS NOT NULL",
            name="ck_maintenance_plans_has_recurrence",
        ),
        CheckConstraint("interval_value IS NULL OR interval_value > 0", name="ck_maintenance_plans_interval_value_pos"),
        CheckConstraint("interval_hours IS NULL OR interval_hours > 0", name="ck_maintenance_plans_interval_hours_pos"),
        CheckConstraint(
            "estimated_duration_minutes IS NULL OR estimated_duration_minutes >= 0",
            name="ck_maintenance_plans_duration_nonneg",
        ),
        Index("ix_maintenance_plans_active_due", "is_active", "next_due_at"),
        Index("ix_maintenance_plans_machine_active", "machine_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)

    machine_id = Column(
        Integer,
        ForeignKey("machines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    maintenance_type_id = Column(
        Integer,
        ForeignKey("maintenance_types.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    safety_notes = Column(Text, nullable=True)

    # Recurrence (see .recurrence for the typed view)
    interval_type = Column(
        SQLEnum(IntervalType, name="interval_type_enum", native_enum=False),
        nullable=True,
    )
    interval_value = Column(Integer, nullable=True)
    interval_hours = Column(Float, nullable=True)

    # Clock markers
    last_completed_at = Column(DateTime(timezone=True), nullable=True)
    last_completed_hours = Column(Float, nullable=True)
    next_due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    next_due_hours = Column(Float, nullable=True)
    hours_status = Column(
        SQLEnum(DueStatus, name="plan_hours_status_enum", native_enum=False),
        nullable=True,
    )

    required_skill_level = Column(
        SQLEnum(RequiredSkillLevel, name="required_skill_level_enum", native_enum=False),
        nullable=False,
        default=RequiredSkillLevel.HELPER,
    )
    estimated_duration_minutes = Column(Integer, nullable=True)
    priority = Column(
        SQLEnum(Priority, name="maintenance_priority_enum", native_enum=False),
        nullable=False,
        default=Priority.NORMAL,
    )

    is_shift_critical = Column(Boolean, nullable=False, default=False)
    shift_deadline_time = Column(Time, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    machine = relationship("Machine", lazy="joined")
    maintenance_type = relationship("MaintenanceType", lazy="joined")
    checklist_items = relationship(
        "ChecklistItem",
        back_populates="plan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChecklistItem.sequence",
    )

    @property
    def recurrence(self) -> Recurrence:
        return recurrence_from_columns(self.interval_type, self.interval_value, self.interval_hours)

    def __repr__(self) -> str:
        return f"<MaintenancePlan id={self.id} machine={self.machine_id} title={self.title!r}>"


# ---------------------------------------------------------------------------
# Checklist items + instructions
# ---------------------------------------------------------------------------


class ChecklistItem(Base):
    __tablename__ = "maintenance_checklist_items"
    __table_args__ = (
        Index("ix_maintenance_checklist_items_plan_sequence", "maintenance_plan_id", "sequence"),
        CheckConstraint(
            "min_value IS NULL OR max_value IS NULL OR min_value <= max_value",
            name="ck_maintenance_checklist_items_band",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    maintenance_plan_id = Column(
        Integer,
        ForeignKey("maintenance_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence = Column(Integer, nullable=False, default=0)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    decision_type = Column(
        SQLEnum(DecisionType, name="checklist_decision_type_enum", native_enum=False),
        nullable=False,
        default=DecisionType.NONE,
    )
    on_failure_action = Column(
        SQLEnum(FailureAction, name="checklist_failure_action_enum", native_enum=False),
        nullable=False,
        default=FailureAction.CONTINUE,
    )
    expected_answer = Column(Boolean, nullable=True)
    min_value = Column(Float, nullable=True)
    max_value = Column(Float, nullable=True)
    measurement_unit = Column(String(32), nullable=True)

    is_critical = Column(Boolean, nullable=False, default=False)

    plan = relationship("MaintenancePlan", back_populates="checklist_items")
    instructions = relationship(
        "MaintenanceInstruction",
        back_populates="checklist_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MaintenanceInstruction.step_number",
    )

    @property
    def decision(self) -> Decision:
        return decision_from_columns(
            self.decision_type,
            expected_answer=self.expected_answer,
            min_value=self.min_value,
            max_value=self.max_value,
            measurement_unit=self.measurement_unit,
        )

    def __repr__(self) -> str:
        return f"<ChecklistItem id={self.id} plan={self.maintenance_plan_id} seq={self.sequence}>"


class MaintenanceInstruction(Base):
    __tablename__ = "maintenance_instructions"
    __table_args__ = (
        UniqueConstraint("checklist_item_id", "step_number", name="uq_maintenance_instructions_item_step"),
    )

    id = Column(Integer, primary_key=True, index=True)
    checklist_item_id = Column(
        Integer,
        ForeignKey("maintenance_checklist_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_number = Column(Integer, nullable=False)
    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=False)
    image_ref = Column(String(500), nullable=True)
    video_url = Column(String(500), nullable=True)
    warning_text = Column(Text, nullable=True)
    tip_text = Column(Text, nullable=True)

    checklist_item = relationship("ChecklistItem", back_populates="instructions")


# ---------------------------------------------------------------------------
# MaintenanceTask
# ---------------------------------------------------------------------------


_OPEN_STATUS_SQL = "status IN ('PENDING', 'ASSIGNED', 'IN_PROGRESS')"


class MaintenanceTask(Base):
    __tablename__ = "maintenance_tasks"
    __table_args__ = (
        Index(
            "uq_maintenance_tasks_open_per_plan",
            "maintenance_plan_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUS_SQL),
            sqlite_where=text(_OPEN_STATUS_SQL),
        ),
        Index("ix_maintenance_tasks_status_due", "status", "due_date"),
        Index("ix_maintenance_tasks_assignee_status", "assigned_to_user_id", "status"),
        CheckConstraint(
            "task_type = 'STANDALONE' OR maintenance_plan_id IS NOT NULL",
            name="ck_maintenance_tasks_plan_based_has_plan",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    task_type = Column(
        SQLEnum(TaskType, name="maintenance_task_type_enum", native_enum=False),
        nullable=False,
        default=TaskType.PLAN_BASED,
    )
    # SET NULL keeps task history when a plan row is removed outright.
    maintenance_plan_id = Column(
        Integer,
        ForeignKey("maintenance_plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    machine_id = Column(
        Integer,
        ForeignKey("machines.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    priority = Column(
        SQLEnum(Priority, name="maintenance_priority_enum", native_enum=False),
        nullable=False,
        default=Priority.NORMAL,
    )
    recurrence_pattern = Column(
        SQLEnum(RecurrencePattern, name="task_recurrence_pattern_enum", native_enum=False),
        nullable=False,
        default=RecurrencePattern.NONE,
    )

    status = Column(
        SQLEnum(TaskStatus, name="maintenance_task_status_enum", native_enum=False),
        nullable=False,
        default=TaskStatus.PENDING,
        index=True,
    )
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    shift_deadline_at = Column(DateTime(timezone=True), nullable=True)
    is_past_deadline = Column(Boolean, nullable=False, default=False)

    assigned_to_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    operating_hours_at_completion = Column(Float, nullable=True)

    estimated_duration_minutes = Column(Integer, nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    created_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    plan = relationship("MaintenancePlan", lazy="joined")
    machine = relationship("Machine", lazy="joined")
    assignee = relationship("User", foreign_keys=[assigned_to_user_id], lazy="joined")
    results = relationship(
        "ChecklistItemResult",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    escalations = relationship(
        "Escalation",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Escalation.id",
    )

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        return self.plan.title if self.plan is not None else f"Task {self.id}"

    def __repr__(self) -> str:
        return f"<MaintenanceTask id={self.id} plan={self.maintenance_plan_id} status={self.status}>"


class ChecklistItemResult(Base):
    __tablename__ = "maintenance_checklist_results"
    __table_args__ = (
        UniqueConstraint("maintenance_task_id", "checklist_item_id", name="uq_maintenance_checklist_results_task_item"),
    )

    id = Column(Integer, primary_key=True, index=True)
    maintenance_task_id = Column(
        Integer,
        ForeignKey("maintenance_tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    checklist_item_id = Column(
        Integer,
        ForeignKey("maintenance_checklist_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    decision_type = Column(
        SQLEnum(DecisionType, name="checklist_decision_type_enum", native_enum=False),
        nullable=False,
    )
    answer = Column(Boolean, nullable=True)
    measurement_value = Column(Float, nullable=True)
    photo_ref = Column(String(500), nullable=True)
    passed = Column(Boolean, nullable=False)
    notes = Column(Text, nullable=True)

    completed_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    task = relationship("MaintenanceTask", back_populates="results")
    checklist_item = relationship("ChecklistItem", lazy="joined")


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


class Escalation(Base):
    """
    Routed problem report.

    `escalated_to_user_id` is null when nobody at the target tier was
    available; such rows surface in the unassigned-escalations view.
    `blocks_task` marks escalations raised by a `stop` check: the task cannot
    start or complete while one of those is open or acknowledged.
    """

    __tablename__ = "maintenance_escalations"
    __table_args__ = (
        CheckConstraint("escalation_level BETWEEN 1 AND 3", name="ck_maintenance_escalations_level_range"),
        Index("ix_maintenance_escalations_status_created", "status", "created_at"),
        Index("ix_maintenance_escalations_to_status", "escalated_to_user_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    maintenance_task_id = Column(
        Integer,
        ForeignKey("maintenance_tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    checklist_item_id = Column(
        Integer,
        ForeignKey("maintenance_checklist_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    parent_escalation_id = Column(
        Integer,
        ForeignKey("maintenance_escalations.id", ondelete="SET NULL"),
        nullable=True,
    )

    escalated_from_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    escalated_to_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    escalation_level = Column(Integer, nullable=False, default=1)

    reason = Column(Text, nullable=False)
    photo_ref = Column(String(500), nullable=True)
    blocks_task = Column(Boolean, nullable=False, default=False)

    status = Column(
        SQLEnum(EscalationStatus, name="maintenance_escalation_status_enum", native_enum=False),
        nullable=False,
        default=EscalationStatus.OPEN,
        index=True,
    )
    acknowledged_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    resolution = Column(Text, nullable=True)
    resolved_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    closed_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    task = relationship("MaintenanceTask", back_populates="escalations")
    checklist_item = relationship("ChecklistItem")
    escalated_to = relationship("User", foreign_keys=[escalated_to_user_id])

    def __repr__(self) -> str:
        return (
            f"<Escalation id={self.id} task={self.maintenance_task_id} "
            f"level={self.escalation_level} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# TaskAssignment
# ---------------------------------------------------------------------------


class TaskAssignment(Base):
    __tablename__ = "maintenance_task_assignments"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "maintenance_plan_id",
            "assignment_date",
            name="uq_maintenance_task_assignments_user_plan_date",
        ),
        Index("ix_maintenance_task_assignments_date_user", "assignment_date", "user_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    maintenance_plan_id = Column(
        Integer,
        ForeignKey("maintenance_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assignment_date = Column(Date, nullable=False)
    priority_order = Column(Integer, nullable=False, default=0)
    assigned_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    notes = Column(Text, nullable=True)

    user = relationship("User", foreign_keys=[user_id])
    plan = relationship("MaintenancePlan")

    def __repr__(self) -> str:
        return (
            f"<TaskAssignment user={self.user_id} plan={self.maintenance_plan_id} "
            f"date={self.assignment_date} order={self.priority_order}>"
        )
