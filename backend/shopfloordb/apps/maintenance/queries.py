# backend/shopfloordb/apps/maintenance/queries.py
#
# Read models for dashboards and work lists. Each function returns plain
# dataclasses (or ORM rows) computed from the live tables with the same
# due-status rules the services use, so there is no second definition of
# "overdue" living in the database.

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from shopfloordb.apps.machines.models import Machine

from ...utils.timeutils import ensure_utc, local_date, local_datetime
from . import due_status
from .errors import ReferenceNotFound
from .models import (
    OPEN_TASK_STATUSES,
    UNRESOLVED_ESCALATION_STATUSES,
    ChecklistItem,
    ChecklistItemResult,
    DueStatus,
    Escalation,
    MaintenancePlan,
    MaintenanceTask,
    Priority,
    TaskAssignment,
    TaskStatus,
)


def _due_sort_value(value: Optional[datetime]) -> float:
    return ensure_utc(value).timestamp() if value is not None else float("inf")


def _task_order(task: MaintenanceTask):
    priority = task.priority or Priority.NORMAL
    return (priority.rank, _due_sort_value(task.due_date), task.id)


# ---------------------------------------------------------------------------
# Due overview
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DueOverviewRow:
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


def _open_task_ids(db: Session) -> Dict[int, int]:
    rows = (
        db.query(MaintenanceTask.maintenance_plan_id, MaintenanceTask.id)
        .filter(
            MaintenanceTask.maintenance_plan_id.isnot(None),
            MaintenanceTask.status.in_(OPEN_TASK_STATUSES),
        )
        .all()
    )
    return {plan_id: task_id for plan_id, task_id in rows}


def due_overview(
    db: Session,
    *,
    now: datetime,
    status: Optional[DueStatus] = None,
    machine_id: Optional[int] = None,
) -> List[DueOverviewRow]:
    """Active plans with their due status, most urgent first."""
    query = db.query(MaintenancePlan).filter(MaintenancePlan.is_active.is_(True))
    if machine_id is not None:
        query = query.filter(MaintenancePlan.machine_id == machine_id)
    open_tasks = _open_task_ids(db)

    rows: List[DueOverviewRow] = []
    for plan in query.all():
        machine = plan.machine
        evaluation = due_status.evaluate_plan(plan, now=now)
        if status is not None and evaluation.status != status:
            continue
        rows.append(
            DueOverviewRow(
                plan_id=plan.id,
                title=plan.title,
                machine_id=plan.machine_id,
                machine_name=machine.name if machine else None,
                location=machine.location if machine else None,
                priority=plan.priority,
                next_due_at=ensure_utc(plan.next_due_at),
                next_due_hours=plan.next_due_hours,
                current_operating_hours=machine.current_operating_hours if machine else None,
                time_status=evaluation.time_status,
                hours_status=evaluation.hours_status,
                status=evaluation.status,
                days_remaining=evaluation.days_remaining,
                hours_remaining=evaluation.hours_remaining,
                open_task_id=open_tasks.get(plan.id),
            )
        )

    rows.sort(key=lambda row: (-due_status.severity(row.status), _due_sort_value(row.next_due_at), row.plan_id))
    return rows


# ---------------------------------------------------------------------------
# Machine rollup
# ---------------------------------------------------------------------------


MACHINE_CRITICAL = "critical"
MACHINE_WARNING = "warning"
MACHINE_OK = "ok"


@dataclass(frozen=True)
class MachineStatusRow:
    machine_id: int
    name: str
    location: Optional[str]
    current_operating_hours: float
    status: str
    overdue_count: int
    due_today_count: int
    due_soon_count: int
    open_task_count: int


def machine_status_rollup(db: Session, *, now: datetime) -> List[MachineStatusRow]:
    """One row per active machine: critical if any plan is overdue, warning if
    any is due today or soon, else ok."""
    machines = db.query(Machine).filter(Machine.is_active.is_(True)).order_by(Machine.name, Machine.id).all()
    plans = db.query(MaintenancePlan).filter(MaintenancePlan.is_active.is_(True)).all()
    open_counts = dict(
        db.query(MaintenanceTask.machine_id, func.count(MaintenanceTask.id))
        .filter(MaintenanceTask.status.in_(OPEN_TASK_STATUSES))
        .group_by(MaintenanceTask.machine_id)
        .all()
    )

    per_machine: Dict[int, Counter] = {}
    hours_by_machine = {machine.id: machine.current_operating_hours for machine in machines}
    for plan in plans:
        if plan.machine_id not in hours_by_machine:
            continue
        evaluation = due_status.evaluate_plan(plan, now=now, current_hours=hours_by_machine[plan.machine_id])
        per_machine.setdefault(plan.machine_id, Counter())[evaluation.status] += 1

    rows: List[MachineStatusRow] = []
    for machine in machines:
        counts = per_machine.get(machine.id, Counter())
        if counts[DueStatus.OVERDUE]:
            overall = MACHINE_CRITICAL
        elif counts[DueStatus.DUE_TODAY] or counts[DueStatus.DUE_SOON]:
            overall = MACHINE_WARNING
        else:
            overall = MACHINE_OK
        rows.append(
            MachineStatusRow(
                machine_id=machine.id,
                name=machine.name,
                location=machine.location,
                current_operating_hours=float(machine.current_operating_hours or 0.0),
                status=overall,
                overdue_count=counts[DueStatus.OVERDUE],
                due_today_count=counts[DueStatus.DUE_TODAY],
                due_soon_count=counts[DueStatus.DUE_SOON],
                open_task_count=open_counts.get(machine.id, 0),
            )
        )
    return rows


# ---------------------------------------------------------------------------
# Work lists
# ---------------------------------------------------------------------------


def todays_tasks(db: Session, *, on_date: date, user_id: Optional[int] = None) -> List[MaintenanceTask]:
    """
    Open tasks due on or before `on_date` (shop-local). With a user, only the
    tasks assigned to them or whose plan is on their assignment list for the
    day.
    """
    end_of_day = local_datetime(on_date + timedelta(days=1), time(0, 0))
    query = db.query(MaintenanceTask).filter(
        MaintenanceTask.status.in_(OPEN_TASK_STATUSES),
        or_(MaintenanceTask.due_date.is_(None), MaintenanceTask.due_date < end_of_day),
    )
    if user_id is not None:
        planned = select(TaskAssignment.maintenance_plan_id).where(
            TaskAssignment.user_id == user_id,
            TaskAssignment.assignment_date == on_date,
        )
        query = query.filter(
            or_(
                MaintenanceTask.assigned_to_user_id == user_id,
                MaintenanceTask.maintenance_plan_id.in_(planned),
            )
        )
    return sorted(query.all(), key=_task_order)


def my_tasks(db: Session, *, user_id: int, include_closed: bool = False) -> List[MaintenanceTask]:
    query = db.query(MaintenanceTask).filter(MaintenanceTask.assigned_to_user_id == user_id)
    if not include_closed:
        query = query.filter(MaintenanceTask.status.in_(OPEN_TASK_STATUSES))
    return sorted(query.all(), key=_task_order)


def list_tasks(
    db: Session,
    *,
    status: Optional[TaskStatus] = None,
    machine_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    assigned_to_user_id: Optional[int] = None,
    limit: int = 200,
) -> List[MaintenanceTask]:
    query = db.query(MaintenanceTask)
    if status is not None:
        query = query.filter(MaintenanceTask.status == status)
    if machine_id is not None:
        query = query.filter(MaintenanceTask.machine_id == machine_id)
    if plan_id is not None:
        query = query.filter(MaintenanceTask.maintenance_plan_id == plan_id)
    if assigned_to_user_id is not None:
        query = query.filter(MaintenanceTask.assigned_to_user_id == assigned_to_user_id)
    return query.order_by(MaintenanceTask.due_date.asc().nullslast(), MaintenanceTask.id).limit(limit).all()


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DashboardStats:
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


def dashboard_stats(db: Session, *, now: datetime) -> DashboardStats:
    machines = machine_status_rollup(db, now=now)
    overview = due_overview(db, now=now)
    by_status = Counter(row.status for row in overview)

    today = local_date(now)
    day_start = local_datetime(today, time(0, 0))
    day_end = local_datetime(today + timedelta(days=1), time(0, 0))

    open_tasks = db.query(MaintenanceTask).filter(MaintenanceTask.status.in_(OPEN_TASK_STATUSES))
    completed_today = (
        db.query(MaintenanceTask)
        .filter(
            MaintenanceTask.status == TaskStatus.COMPLETED,
            MaintenanceTask.completed_at >= day_start,
            MaintenanceTask.completed_at < day_end,
        )
        .count()
    )
    unresolved = db.query(Escalation).filter(Escalation.status.in_(UNRESOLVED_ESCALATION_STATUSES))

    return DashboardStats(
        machines_total=len(machines),
        machines_critical=sum(1 for row in machines if row.status == MACHINE_CRITICAL),
        machines_warning=sum(1 for row in machines if row.status == MACHINE_WARNING),
        plans_active=len(overview),
        plans_overdue=by_status[DueStatus.OVERDUE],
        plans_due_today=by_status[DueStatus.DUE_TODAY],
        plans_due_soon=by_status[DueStatus.DUE_SOON],
        tasks_open=open_tasks.count(),
        tasks_in_progress=open_tasks.filter(MaintenanceTask.status == TaskStatus.IN_PROGRESS).count(),
        tasks_past_deadline=open_tasks.filter(MaintenanceTask.is_past_deadline.is_(True)).count(),
        tasks_completed_today=completed_today,
        escalations_open=unresolved.count(),
        escalations_unassigned=unresolved.filter(Escalation.escalated_to_user_id.is_(None)).count(),
    )


# ---------------------------------------------------------------------------
# Task details
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChecklistRow:
    item: ChecklistItem
    result: Optional[ChecklistItemResult]


@dataclass(frozen=True)
class TaskDetails:
    task: MaintenanceTask
    checklist: List[ChecklistRow]
    escalations: List[Escalation]

    @property
    def completed_items(self) -> int:
        return sum(1 for row in self.checklist if row.result is not None)


def task_details(db: Session, *, task_id: int) -> TaskDetails:
    """A task with its plan's checklist (ordered, each with its recorded
    result if any) and its escalations."""
    task = db.get(MaintenanceTask, task_id)
    if task is None:
        raise ReferenceNotFound.for_field("task_id", f"task {task_id} not found")

    checklist: List[ChecklistRow] = []
    if task.maintenance_plan_id is not None:
        rows = (
            db.query(ChecklistItem, ChecklistItemResult)
            .outerjoin(
                ChecklistItemResult,
                and_(
                    ChecklistItemResult.checklist_item_id == ChecklistItem.id,
                    ChecklistItemResult.maintenance_task_id == task.id,
                ),
            )
            .filter(ChecklistItem.maintenance_plan_id == task.maintenance_plan_id)
            .order_by(ChecklistItem.sequence, ChecklistItem.id)
            .all()
        )
        checklist = [ChecklistRow(item=item, result=result) for item, result in rows]

    escalations = (
        db.query(Escalation)
        .filter(Escalation.maintenance_task_id == task.id)
        .order_by(Escalation.created_at, Escalation.id)
        .all()
    )
    return TaskDetails(task=task, checklist=checklist, escalations=escalations)


# ---------------------------------------------------------------------------
# Per-machine stats
# ---------------------------------------------------------------------------

STATS_WINDOW_DAYS = 30
STATS_LIST_LIMIT = 10


@dataclass(frozen=True)
class MachineMaintenanceStats:
    machine: Machine
    total_plans: int
    overdue_count: int
    due_today_count: int
    due_week_count: int
    completed_30_days: int
    total_duration_30_days: int
    recent_tasks: List[MaintenanceTask]
    upcoming_plans: List[MaintenancePlan]


def machine_maintenance_stats(db: Session, *, machine_id: int, now: datetime) -> MachineMaintenanceStats:
    machine = db.get(Machine, machine_id)
    if machine is None:
        raise ReferenceNotFound.for_field("machine_id", f"machine {machine_id} not found")

    plans = (
        db.query(MaintenancePlan)
        .filter(MaintenancePlan.machine_id == machine.id, MaintenancePlan.is_active.is_(True))
        .all()
    )
    today = local_date(now)
    week_end = now + timedelta(days=7)
    statuses: Counter = Counter()
    due_week = 0
    for plan in plans:
        evaluation = due_status.evaluate_plan(plan, now=now, current_hours=machine.current_operating_hours)
        statuses[evaluation.status] += 1
        next_due_at = ensure_utc(plan.next_due_at)
        if next_due_at is not None and local_date(next_due_at) > today and next_due_at < week_end:
            due_week += 1

    window_start = now - timedelta(days=STATS_WINDOW_DAYS)
    completed, duration = (
        db.query(
            func.count(MaintenanceTask.id),
            func.coalesce(func.sum(MaintenanceTask.actual_duration_minutes), 0),
        )
        .filter(
            MaintenanceTask.machine_id == machine.id,
            MaintenanceTask.status == TaskStatus.COMPLETED,
            MaintenanceTask.completed_at >= window_start,
        )
        .one()
    )

    recent_tasks = (
        db.query(MaintenanceTask)
        .filter(MaintenanceTask.machine_id == machine.id)
        .order_by(
            func.coalesce(MaintenanceTask.completed_at, MaintenanceTask.created_at).desc(),
            MaintenanceTask.id.desc(),
        )
        .limit(STATS_LIST_LIMIT)
        .all()
    )
    upcoming_plans = sorted(plans, key=lambda plan: (_due_sort_value(plan.next_due_at), plan.id))[:STATS_LIST_LIMIT]

    return MachineMaintenanceStats(
        machine=machine,
        total_plans=len(plans),
        overdue_count=statuses[DueStatus.OVERDUE],
        due_today_count=statuses[DueStatus.DUE_TODAY],
        due_week_count=due_week,
        completed_30_days=int(completed or 0),
        total_duration_30_days=int(duration or 0),
        recent_tasks=recent_tasks,
        upcoming_plans=upcoming_plans,
    )
