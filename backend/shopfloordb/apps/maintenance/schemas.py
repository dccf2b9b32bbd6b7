# backend/shopfloordb/apps/maintenance/schemas.py

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from shopfloordb.apps.machines.models import HoursSource

from .decisions import DecisionType, FailureAction
from .models import (
    DueStatus,
    EscalationStatus,
    Priority,
    RecurrencePattern,
    RequiredSkillLevel,
    TaskStatus,
    TaskType,
)
from .recurrence import IntervalType


# ---------------------------------------------------------------------------
# Plans / checklist items / instructions
# ---------------------------------------------------------------------------


class MaintenanceTypeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    is_active: bool


class MaintenanceInstructionCreate(BaseModel):
    description: str = Field(min_length=1)
    step_number: Optional[int] = None
    title: Optional[str] = None
    image_ref: Optional[str] = None
    video_url: Optional[str] = None
    warning_text: Optional[str] = None
    tip_text: Optional[str] = None


class MaintenanceInstructionRead(MaintenanceInstructionCreate):
    id: int
    checklist_item_id: int
    step_number: int

    class Config:
        from_attributes = True


class ChecklistItemCreate(BaseModel):
    title: str = Field(min_length=1)
    sequence: Optional[int] = None
    description: Optional[str] = None
    decision_type: DecisionType = DecisionType.NONE
    on_failure_action: FailureAction = FailureAction.CONTINUE
    expected_answer: Optional[bool] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    measurement_unit: Optional[str] = None
    is_critical: bool = False


class ChecklistItemRead(ChecklistItemCreate):
    id: int
    maintenance_plan_id: int
    sequence: int
    instructions: List[MaintenanceInstructionRead] = []

    class Config:
        from_attributes = True


class ChecklistItemUpdate(BaseModel):
    title: Optional[str] = None
    sequence: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = None
    decision_type: Optional[DecisionType] = None
    on_failure_action: Optional[FailureAction] = None
    expected_answer: Optional[bool] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    measurement_unit: Optional[str] = None
    is_critical: Optional[bool] = None


class ChecklistOrderEntry(BaseModel):
    id: int
    sequence: int = Field(gt=0)


class ChecklistReorderRequest(BaseModel):
    items: List[ChecklistOrderEntry] = Field(min_length=1)


class MaintenancePlanBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    instructions: Optional[str] = None
    safety_notes: Optional[str] = None
    maintenance_type_id: Optional[int] = None
    interval_type: Optional[IntervalType] = None
    interval_value: Optional[int] = Field(default=None, gt=0)
    interval_hours: Optional[float] = Field(default=None, gt=0)
    required_skill_level: RequiredSkillLevel = RequiredSkillLevel.HELPER
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    priority: Priority = Priority.NORMAL
    is_shift_critical: bool = False
    shift_deadline_time: Optional[time] = None


class MaintenancePlanCreate(MaintenancePlanBase):
    machine_id: int
    next_due_at: Optional[datetime] = None


class MaintenancePlanUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    safety_notes: Optional[str] = None
    maintenance_type_id: Optional[int] = None
    interval_type: Optional[IntervalType] = None
    interval_value: Optional[int] = Field(default=None, gt=0)
    interval_hours: Optional[float] = Field(default=None, gt=0)
    next_due_at: Optional[datetime] = None
    next_due_hours: Optional[float] = None
    required_skill_level: Optional[RequiredSkillLevel] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    priority: Optional[Priority] = None
    is_shift_critical: Optional[bool] = None
    shift_deadline_time: Optional[time] = None
    is_active: Optional[bool] = None


class MaintenancePlanRead(MaintenancePlanBase):
    id: int
    machine_id: int
    last_completed_at: Optional[datetime] = None
    last_completed_hours: Optional[float] = None
    next_due_at: Optional[datetime] = None
    next_due_hours: Optional[float] = None
    hours_status: Optional[DueStatus] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    checklist_items: List[ChecklistItemRead] = []

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class MaintenanceTaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_type: TaskType
    maintenance_plan_id: Optional[int]
    machine_id: Optional[int]
    display_title: str
    description: Optional[str]
    location: Optional[str]
    priority: Priority
    status: TaskStatus
    recurrence_pattern: RecurrencePattern
    due_date: Optional[datetime]
    shift_deadline_at: Optional[datetime]
    is_past_deadline: bool
    assigned_to_user_id: Optional[int]
    assigned_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    completed_by_user_id: Optional[int]
    operating_hours_at_completion: Optional[float]
    estimated_duration_minutes: Optional[int]
    actual_duration_minutes: Optional[int]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class TaskCreate(BaseModel):
    maintenance_plan_id: int
    due_date: Optional[datetime] = None
    assigned_to_user_id: Optional[int] = None
    notes: Optional[str] = None


class StandaloneTaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    machine_id: Optional[int] = None
    location: Optional[str] = None
    priority: Priority = Priority.NORMAL
    due_date: Optional[datetime] = None
    recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE
    assigned_to_user_id: Optional[int] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class StandaloneTaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    machine_id: Optional[int] = None
    location: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class TaskAssignRequest(BaseModel):
    user_id: int
    on_date: Optional[date] = None


class TaskCompleteRequest(BaseModel):
    notes: Optional[str] = None
    actual_duration_minutes: Optional[int] = Field(default=None, ge=0)


class TaskCancelRequest(BaseModel):
    reason: Optional[str] = None


class GenerateTasksRequest(BaseModel):
    lookahead_hours: float = Field(default=24.0, ge=0)
    now: Optional[datetime] = None


class GenerationSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: str
    started_at: datetime
    lookahead_hours: float
    created: int
    skipped: int
    errors: List[Dict[str, Any]]
    created_task_ids: List[int]
    past_deadline_task_ids: List[int]


# ---------------------------------------------------------------------------
# Checklist submission
# ---------------------------------------------------------------------------


class ChecklistAnswerIn(BaseModel):
    checklist_item_id: int
    answer: Optional[StrictBool] = None
    measurement_value: Optional[float] = None
    photo_ref: Optional[str] = None
    notes: Optional[str] = None


class ChecklistSubmission(BaseModel):
    answers: List[ChecklistAnswerIn] = Field(min_length=1)


class ItemOutcomeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    checklist_item_id: int
    passed: bool
    action: Optional[FailureAction] = None
    escalation_id: Optional[int] = None


class ChecklistProgressRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    answered: int
    passed: int
    percentage: int


class ChecklistOutcomeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: int
    halted: bool
    items: List[ItemOutcomeRead]
    escalation_ids: List[int] = []
    not_evaluated: List[int]
    progress: Optional[ChecklistProgressRead] = None


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------


class EscalationCreate(BaseModel):
    maintenance_task_id: int
    reason: str = Field(min_length=1)
    checklist_item_id: Optional[int] = None
    photo_ref: Optional[str] = None
    blocks_task: bool = False
    escalation_level: Optional[int] = Field(default=None, ge=1, le=3)


class EscalationResolveRequest(BaseModel):
    resolution: str = Field(min_length=1)


class EscalationReescalateRequest(BaseModel):
    reason: Optional[str] = None


class EscalationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    maintenance_task_id: int
    checklist_item_id: Optional[int]
    parent_escalation_id: Optional[int]
    escalated_from_user_id: Optional[int]
    escalated_to_user_id: Optional[int]
    escalation_level: int
    reason: str
    photo_ref: Optional[str]
    blocks_task: bool
    status: EscalationStatus
    acknowledged_by_user_id: Optional[int]
    acknowledged_at: Optional[datetime]
    resolution: Optional[str]
    resolved_by_user_id: Optional[int]
    resolved_at: Optional[datetime]
    closed_by_user_id: Optional[int]
    closed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class EscalationStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_days: int
    total: int
    unassigned: int
    by_status: Dict[str, int]
    by_level: Dict[int, int]
    average_resolution_hours: Optional[float] = None


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


class TaskAssignmentCreate(BaseModel):
    user_id: int
    maintenance_plan_id: int
    assignment_date: date
    priority_order: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class TaskAssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    maintenance_plan_id: int
    assignment_date: date
    priority_order: int
    assigned_by_user_id: Optional[int]
    assigned_at: datetime
    notes: Optional[str]


class MatchRequest(BaseModel):
    target_date: date
    plan_ids: Optional[List[int]] = None


class MatchResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target_date: date
    created: List[TaskAssignmentRead]
    unmatched_plan_ids: List[int]
    already_assigned_plan_ids: List[int]


# ---------------------------------------------------------------------------
# Operating hours
# ---------------------------------------------------------------------------


class OperatingHoursReadingCreate(BaseModel):
    recorded_hours: float = Field(ge=0)
    source: HoursSource = HoursSource.MANUAL
    notes: Optional[str] = None


class OperatingHoursReadingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    machine_id: int
    recorded_hours: float
    previous_hours: Optional[float]
    delta_hours: Optional[float]
    is_anomaly: bool
    recorded_by_user_id: Optional[int]
    recorded_at: datetime
    source: HoursSource
    notes: Optional[str]


class ReadingOutcomeRead(BaseModel):
    reading: OperatingHoursReadingRead
    current_operating_hours: float
    is_anomaly: bool
    due_plan_ids: List[int]


class PlanHoursForecastRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_id: int
    title: str
    next_due_hours: float
    hours_remaining: float
    estimated_days_until_due: Optional[int]
    estimated_due_at: Optional[datetime]


class HoursStatisticsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machine_id: int
    current_operating_hours: float
    period_days: int
    reading_count: int
    total_hours_period: float
    average_daily_hours: float
    daily_hours: Dict[str, float]
    upcoming: List[PlanHoursForecastRead]


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------


class DueOverviewRowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_id: int
    title: str
    machine_id: int
    machine_name: Optional[str]
    location: Optional[str]
    priority: Priority
    next_due_at: Optional[datetime]
    next_due_hours: Optional[float]
    current_operating_hours: Optional[float]
    time_status: Optional[DueStatus]
    hours_status: Optional[DueStatus]
    status: DueStatus
    days_remaining: Optional[float]
    hours_remaining: Optional[float]
    open_task_id: Optional[int]


class MachineStatusRowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machine_id: int
    name: str
    location: Optional[str]
    current_operating_hours: float
    status: str
    overdue_count: int
    due_today_count: int
    due_soon_count: int
    open_task_count: int


class DashboardStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machines_total: int
    machines_critical: int
    machines_warning: int
    plans_active: int
    plans_overdue: int
    plans_due_today: int
    plans_due_soon: int
    tasks_open: int
    tasks_in_progress: int
    tasks_past_deadline: int
    tasks_completed_today: int
    escalations_open: int
    escalations_unassigned: int


# ---------------------------------------------------------------------------
# Task details / machine stats
# ---------------------------------------------------------------------------


class ChecklistItemResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    checklist_item_id: int
    decision_type: DecisionType
    answer: Optional[bool]
    measurement_value: Optional[float]
    photo_ref: Optional[str]
    passed: bool
    notes: Optional[str]
    completed_by_user_id: Optional[int]
    completed_at: datetime


class ChecklistRowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item: ChecklistItemRead
    result: Optional[ChecklistItemResultRead] = None


class TaskDetailsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task: MaintenanceTaskRead
    checklist: List[ChecklistRowRead]
    escalations: List[EscalationRead]
    completed_items: int


class UpcomingPlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    next_due_at: Optional[datetime]
    next_due_hours: Optional[float]
    interval_type: Optional[IntervalType]
    interval_value: Optional[int]
    interval_hours: Optional[float]
    is_shift_critical: bool


class MachineMaintenanceStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machine_id: int
    machine_name: str
    location: Optional[str]
    current_operating_hours: float
    total_plans: int
    overdue_count: int
    due_today_count: int
    due_week_count: int
    completed_30_days: int
    total_duration_30_days: int
    recent_tasks: List[MaintenanceTaskRead]
    upcoming_plans: List[UpcomingPlanRead]
