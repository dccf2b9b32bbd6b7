# backend/shopfloordb/apps/maintenance/tasks.py
#
# Task lifecycle.
#
# Plan-based tasks go through the "maintenance_task" workflow, whose guards
# keep halted tasks from starting or completing and require every critical
# checklist item to have passed before completion. Standalone tasks (ad-hoc
# jobs with no plan or checklist) use the unguarded
# "maintenance_standalone_task" workflow. Completing a plan-based task
# advances its plan's clocks.

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopfloordb.apps.accounts.models import User
from shopfloordb.apps.audit import services as audit_services
from shopfloordb.apps.audit.models import AuditEvent
from shopfloordb.apps.machines.models import Machine
from shopfloordb.apps.workflow import WORKFLOWS, apply_transition

from ...utils.timeutils import ensure_utc, utcnow
from . import due_status
from .errors import ReferenceNotFound, StateConflict, ValidationFailed
from .models import (
    OPEN_TASK_STATUSES,
    MaintenancePlan,
    MaintenanceTask,
    Priority,
    RecurrencePattern,
    TaskStatus,
    TaskType,
)
from .recurrence import NextDue, advance, hours_interval

logger = logging.getLogger(__name__)

TASK_WORKFLOW = "maintenance_task"
STANDALONE_WORKFLOW = "maintenance_standalone_task"

TASK_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus[source]: frozenset(TaskStatus[target] for target in targets)
    for source, targets in WORKFLOWS[TASK_WORKFLOW]["transitions"].items()
}

TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)

STANDALONE_UPDATABLE_FIELDS = (
    "title",
    "description",
    "machine_id",
    "location",
    "priority",
    "due_date",
    "recurrence_pattern",
    "estimated_duration_minutes",
    "notes",
)


def workflow_for(task: MaintenanceTask) -> str:
    return STANDALONE_WORKFLOW if task.task_type == TaskType.STANDALONE else TASK_WORKFLOW


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def get_task(db: Session, task_id: int) -> MaintenanceTask:
    task = db.get(MaintenanceTask, task_id)
    if task is None:
        raise ReferenceNotFound.for_field("task_id", f"task {task_id} not found")
    return task


def get_task_for_update(db: Session, task_id: int) -> MaintenanceTask:
    task = (
        db.query(MaintenanceTask)
        .filter(MaintenanceTask.id == task_id)
        .with_for_update(of=MaintenanceTask)
        .populate_existing()
        .first()
    )
    if task is None:
        raise ReferenceNotFound.for_field("task_id", f"task {task_id} not found")
    return task


def task_history(db: Session, *, task_id: int) -> List[AuditEvent]:
    task = get_task(db, task_id)
    return audit_services.entity_history(db, entity_types=[workflow_for(task)], entity_id=str(task.id))


def _get_active_user(db: Session, user_id: int, *, field: str = "user_id") -> User:
    user = db.get(User, user_id)
    if user is None:
        raise ReferenceNotFound.for_field(field, f"user {user_id} not found")
    if not user.is_active:
        raise StateConflict.for_field(field, f"user {user_id} is inactive")
    return user


def _append_note(task: MaintenanceTask, line: str) -> None:
    task.notes = f"{task.notes}\n{line}" if task.notes else line


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def transition_task(
    db: Session,
    task: MaintenanceTask,
    *,
    to_status: TaskStatus,
    actor_user_id: Optional[int],
    extra: Optional[Mapping[str, Any]] = None,
) -> None:
    """Validate `task.status -> to_status` in the task's workflow and apply it."""
    after_obj: Dict[str, Any] = {
        "task_id": task.id,
        "plan_id": task.maintenance_plan_id,
        "actor_user_id": actor_user_id,
    }
    if extra:
        after_obj.update(extra)
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type=workflow_for(task),
        entity_id=task.id,
        from_state=task.status.name,
        to_state=to_status.name,
        before_obj={"task_id": task.id, "assigned_to_user_id": task.assigned_to_user_id},
        after_obj=after_obj,
    )
    task.status = to_status


def start_task(
    db: Session,
    *,
    task_id: int,
    actor_user_id: Optional[int],
    now: Optional[datetime] = None,
) -> MaintenanceTask:
    now = now or utcnow()
    task = get_task_for_update(db, task_id)
    transition_task(db, task, to_status=TaskStatus.IN_PROGRESS, actor_user_id=actor_user_id)
    task.started_at = task.started_at or now
    if task.assigned_to_user_id is None and actor_user_id is not None:
        task.assigned_to_user_id = actor_user_id
        task.assigned_at = now
    db.flush()
    return task


def advance_after_completion(
    db: Session,
    *,
    plan: MaintenancePlan,
    completed_at: datetime,
    completed_hours: Optional[float],
) -> NextDue:
    """
    Move both clocks of the plan forward from this completion. Each clock
    restarts from its own marker; an unused clock stays empty.
    """
    next_due = advance(plan.recurrence, completed_at=completed_at, completed_hours=completed_hours)
    plan.last_completed_at = completed_at
    plan.last_completed_hours = completed_hours
    plan.next_due_at = next_due.next_due_at
    plan.next_due_hours = next_due.next_due_hours
    if hours_interval(plan.recurrence) is not None:
        plan.hours_status = due_status.hours_status(next_due.next_due_hours, completed_hours)
    else:
        plan.hours_status = None
    db.flush()
    return next_due


def complete_task(
    db: Session,
    *,
    task_id: int,
    actor_user_id: Optional[int],
    notes: Optional[str] = None,
    actual_duration_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> MaintenanceTask:
    now = now or utcnow()
    task = get_task_for_update(db, task_id)
    if task.task_type == TaskType.STANDALONE:
        return _complete_standalone(db, task, actor_user_id=actor_user_id, notes=notes,
                                    actual_duration_minutes=actual_duration_minutes, now=now)

    if task.status != TaskStatus.IN_PROGRESS:
        raise StateConflict.for_field(
            "status", f"only in-progress tasks can be completed, task is {task.status.value}"
        )
    transition_task(db, task, to_status=TaskStatus.COMPLETED, actor_user_id=actor_user_id)

    machine = db.get(Machine, task.machine_id) if task.machine_id is not None else None
    hours = float(machine.current_operating_hours or 0.0) if machine is not None else None

    task.completed_at = now
    task.completed_by_user_id = actor_user_id
    task.operating_hours_at_completion = hours
    if actual_duration_minutes is not None:
        task.actual_duration_minutes = actual_duration_minutes
    if notes:
        _append_note(task, notes)

    plan = db.get(MaintenancePlan, task.maintenance_plan_id) if task.maintenance_plan_id else None
    if plan is not None:
        next_due = advance_after_completion(db, plan=plan, completed_at=now, completed_hours=hours)
        logger.info(
            "Plan advanced after completion",
            extra={
                "plan_id": plan.id,
                "task_id": task.id,
                "next_due_at": next_due.next_due_at.isoformat() if next_due.next_due_at else None,
                "next_due_hours": next_due.next_due_hours,
            },
        )
    if machine is not None:
        machine.last_maintenance_at = now

    db.flush()
    return task


def cancel_task(
    db: Session,
    *,
    task_id: int,
    actor_user_id: Optional[int],
    reason: Optional[str] = None,
) -> MaintenanceTask:
    task = get_task_for_update(db, task_id)
    if task.status in TERMINAL_STATUSES:
        raise StateConflict.for_field("status", f"task is already {task.status.value}")
    transition_task(
        db,
        task,
        to_status=TaskStatus.CANCELLED,
        actor_user_id=actor_user_id,
        extra={"reason": reason},
    )
    if reason and reason.strip():
        _append_note(task, f"Cancelled: {reason.strip()}")
    db.flush()
    return task


# ---------------------------------------------------------------------------
# Plan tasks created by hand
# ---------------------------------------------------------------------------


def create_task(
    db: Session,
    *,
    plan_id: int,
    created_by_user_id: Optional[int],
    due_date: Optional[datetime] = None,
    assigned_to_user_id: Optional[int] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MaintenanceTask:
    """
    Open a plan-based task outside the generator run.

    A plan has at most one open task; asking for a second one is a conflict,
    whether it is seen here or only by the partial unique index.
    """
    plan = (
        db.query(MaintenancePlan)
        .filter(MaintenancePlan.id == plan_id)
        .with_for_update(of=MaintenancePlan)
        .populate_existing()
        .first()
    )
    if plan is None:
        raise ReferenceNotFound.for_field("maintenance_plan_id", f"plan {plan_id} not found")
    if not plan.is_active:
        raise StateConflict.for_field("maintenance_plan_id", f"plan {plan.id} is inactive", code="plan_inactive")
    machine = _check_machine(db, plan.machine_id)

    open_task = (
        db.query(MaintenanceTask.id)
        .filter(
            MaintenanceTask.maintenance_plan_id == plan.id,
            MaintenanceTask.status.in_(OPEN_TASK_STATUSES),
        )
        .first()
    )
    if open_task is not None:
        raise StateConflict.for_field(
            "maintenance_plan_id",
            f"plan {plan.id} already has open task {open_task.id}",
            code="open_task_exists",
        )

    now = now or utcnow()
    task = MaintenanceTask(
        task_type=TaskType.PLAN_BASED,
        maintenance_plan_id=plan.id,
        machine_id=plan.machine_id,
        title=plan.title,
        description=plan.description,
        location=machine.location if machine is not None else None,
        priority=plan.priority,
        status=TaskStatus.PENDING,
        due_date=ensure_utc(due_date) if due_date is not None else now,
        estimated_duration_minutes=plan.estimated_duration_minutes,
        notes=notes,
        created_by_user_id=created_by_user_id,
    )
    if assigned_to_user_id is not None:
        _get_active_user(db, assigned_to_user_id, field="assigned_to_user_id")
        task.assigned_to_user_id = assigned_to_user_id
        task.assigned_at = now
        task.status = TaskStatus.ASSIGNED

    try:
        with db.begin_nested():
            db.add(task)
            db.flush()
    except IntegrityError:
        raise StateConflict.for_field(
            "maintenance_plan_id", f"plan {plan.id} already has an open task", code="open_task_exists"
        )

    audit_services.log_event(
        db,
        actor_user_id=created_by_user_id,
        entity_type=TASK_WORKFLOW,
        entity_id=str(task.id),
        action="CREATED",
        after={
            "plan_id": plan.id,
            "machine_id": task.machine_id,
            "due_date": task.due_date.isoformat(),
            "status": task.status.value,
            "assigned_to_user_id": task.assigned_to_user_id,
        },
    )
    return task


# ---------------------------------------------------------------------------
# Standalone tasks
# ---------------------------------------------------------------------------


def _check_machine(db: Session, machine_id: Optional[int]) -> Optional[Machine]:
    if machine_id is None:
        return None
    machine = db.get(Machine, machine_id)
    if machine is None:
        raise ReferenceNotFound.for_field("machine_id", f"machine {machine_id} not found")
    return machine


def create_standalone_task(
    db: Session,
    *,
    title: str,
    created_by_user_id: Optional[int],
    description: Optional[str] = None,
    machine_id: Optional[int] = None,
    location: Optional[str] = None,
    priority: Priority = Priority.NORMAL,
    due_date: Optional[datetime] = None,
    recurrence_pattern: RecurrencePattern = RecurrencePattern.NONE,
    assigned_to_user_id: Optional[int] = None,
    estimated_duration_minutes: Optional[int] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MaintenanceTask:
    if not title or not title.strip():
        raise ValidationFailed.for_field("title", "title is required")
    machine = _check_machine(db, machine_id)
    now = now or utcnow()

    task = MaintenanceTask(
        task_type=TaskType.STANDALONE,
        machine_id=machine_id,
        title=title.strip(),
        description=description,
        location=location or (machine.location if machine is not None else None),
        priority=priority,
        due_date=due_date,
        recurrence_pattern=recurrence_pattern,
        status=TaskStatus.PENDING,
        estimated_duration_minutes=estimated_duration_minutes,
        notes=notes,
        created_by_user_id=created_by_user_id,
    )
    if assigned_to_user_id is not None:
        _get_active_user(db, assigned_to_user_id, field="assigned_to_user_id")
        task.assigned_to_user_id = assigned_to_user_id
        task.assigned_at = now
        task.status = TaskStatus.ASSIGNED
    db.add(task)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=created_by_user_id,
        entity_type=STANDALONE_WORKFLOW,
        entity_id=str(task.id),
        action="CREATED",
        after={
            "title": task.title,
            "machine_id": task.machine_id,
            "status": task.status.value,
            "assigned_to_user_id": task.assigned_to_user_id,
        },
    )
    return task


def _get_standalone_for_update(db: Session, task_id: int) -> MaintenanceTask:
    task = get_task_for_update(db, task_id)
    if task.task_type != TaskType.STANDALONE:
        raise StateConflict.for_field("task_type", f"task {task_id} is not a standalone task")
    return task


def update_standalone_task(
    db: Session,
    *,
    task_id: int,
    actor_user_id: Optional[int],
    changes: Mapping[str, Any],
) -> MaintenanceTask:
    task = _get_standalone_for_update(db, task_id)
    if task.status in TERMINAL_STATUSES:
        raise StateConflict.for_field("status", f"cannot edit a {task.status.value} task")

    unknown = sorted(set(changes) - set(STANDALONE_UPDATABLE_FIELDS))
    if unknown:
        raise ValidationFailed.for_field(unknown[0], "field cannot be changed")
    if "title" in changes and (not changes["title"] or not str(changes["title"]).strip()):
        raise ValidationFailed.for_field("title", "title is required")
    if "machine_id" in changes:
        _check_machine(db, changes["machine_id"])

    before = {field: getattr(task, field) for field in changes}
    for field, value in changes.items():
        setattr(task, field, value.strip() if field == "title" else value)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type=STANDALONE_WORKFLOW,
        entity_id=str(task.id),
        action="UPDATED",
        before={k: _jsonable(v) for k, v in before.items()},
        after={k: _jsonable(getattr(task, k)) for k in changes},
    )
    return task


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def _complete_standalone(
    db: Session,
    task: MaintenanceTask,
    *,
    actor_user_id: Optional[int],
    notes: Optional[str],
    actual_duration_minutes: Optional[int],
    now: datetime,
) -> MaintenanceTask:
    transition_task(db, task, to_status=TaskStatus.COMPLETED, actor_user_id=actor_user_id)
    task.completed_at = now
    task.completed_by_user_id = actor_user_id
    task.started_at = task.started_at or now
    if actual_duration_minutes is not None:
        task.actual_duration_minutes = actual_duration_minutes
    if notes:
        _append_note(task, notes)
    if task.machine_id is not None:
        machine = db.get(Machine, task.machine_id)
        if machine is not None:
            task.operating_hours_at_completion = machine.current_operating_hours
    db.flush()
    return task


def complete_standalone_task(
    db: Session,
    *,
    task_id: int,
    actor_user_id: Optional[int],
    notes: Optional[str] = None,
    actual_duration_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> MaintenanceTask:
    task = _get_standalone_for_update(db, task_id)
    return _complete_standalone(
        db,
        task,
        actor_user_id=actor_user_id,
        notes=notes,
        actual_duration_minutes=actual_duration_minutes,
        now=now or utcnow(),
    )


def delete_standalone_task(db: Session, *, task_id: int, actor_user_id: Optional[int]) -> None:
    task = _get_standalone_for_update(db, task_id)
    if task.status == TaskStatus.COMPLETED:
        raise StateConflict.for_field("status", "completed tasks are kept as history and cannot be deleted")

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type=STANDALONE_WORKFLOW,
        entity_id=str(task.id),
        action="DELETED",
        before={"title": task.title, "status": task.status.value},
    )
    db.delete(task)
    db.flush()
