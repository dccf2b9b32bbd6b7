# backend/shopfloordb/apps/maintenance/assignments.py
#
# Assignment matching.
#
# Daily allocation of plans to users: a user qualifies for a plan when their
# skill tier reaches the plan's requirement. Among qualified users the one
# holding the lowest priority_order among that day's existing rows wins (users
# with no rows yet come last), then the least loaded one, then the lower id.
# A (user, plan, date) row exists at most once.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopfloordb.apps.accounts.models import User
from shopfloordb.apps.audit import services as audit_services

from ...utils.timeutils import ensure_utc, local_date, local_datetime, utcnow
from . import due_status
from .errors import ReferenceNotFound, StateConflict, ValidationFailed
from .models import (
    DueStatus,
    MaintenancePlan,
    MaintenanceTask,
    TaskAssignment,
    TaskStatus,
    TaskType,
)
from .tasks import TERMINAL_STATUSES, get_task_for_update, transition_task

logger = logging.getLogger(__name__)


def qualifies(plan: MaintenancePlan, user: User) -> bool:
    return int(user.maintenance_skill_level or 1) >= plan.required_skill_level.tier


def rank_candidates(
    plan: MaintenancePlan,
    users: Iterable[User],
    workload: Mapping[int, int],
    priority_orders: Optional[Mapping[int, int]] = None,
) -> List[User]:
    """Qualified users, best match first."""
    priority_orders = priority_orders or {}
    eligible = [user for user in users if qualifies(plan, user)]
    return sorted(
        eligible,
        key=lambda user: (
            priority_orders.get(user.id, float("inf")),
            workload.get(user.id, 0),
            user.id,
        ),
    )


def _daily_workload(db: Session, target_date: date) -> Dict[int, int]:
    rows = (
        db.query(TaskAssignment.user_id, func.count(TaskAssignment.id))
        .filter(TaskAssignment.assignment_date == target_date)
        .group_by(TaskAssignment.user_id)
        .all()
    )
    return {user_id: count for user_id, count in rows}


def _daily_priority_orders(db: Session, target_date: date) -> Dict[int, int]:
    rows = (
        db.query(TaskAssignment.user_id, func.min(TaskAssignment.priority_order))
        .filter(TaskAssignment.assignment_date == target_date)
        .group_by(TaskAssignment.user_id)
        .all()
    )
    return {user_id: order for user_id, order in rows}


def _check_skill(plan: MaintenancePlan, user: User) -> None:
    if not qualifies(plan, user):
        raise ValidationFailed.for_field(
            "user_id",
            f"user {user.id} (tier {user.maintenance_skill_level}) lacks the "
            f"{plan.required_skill_level.value} skill required by plan {plan.id}",
            code="insufficient_skill",
        )


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise ReferenceNotFound.for_field("user_id", f"user {user_id} not found")
    if not user.is_active:
        raise StateConflict.for_field("user_id", f"user {user_id} is inactive")
    return user


def _get_plan(db: Session, plan_id: int) -> MaintenancePlan:
    plan = db.get(MaintenancePlan, plan_id)
    if plan is None:
        raise ReferenceNotFound.for_field("maintenance_plan_id", f"plan {plan_id} not found")
    return plan


def _existing(db: Session, *, user_id: int, plan_id: int, assignment_date: date) -> Optional[TaskAssignment]:
    return (
        db.query(TaskAssignment)
        .filter(
            TaskAssignment.user_id == user_id,
            TaskAssignment.maintenance_plan_id == plan_id,
            TaskAssignment.assignment_date == assignment_date,
        )
        .first()
    )


# ---------------------------------------------------------------------------
# Assignment rows
# ---------------------------------------------------------------------------


def create_assignment(
    db: Session,
    *,
    user_id: int,
    plan_id: int,
    assignment_date: date,
    assigned_by_user_id: Optional[int],
    priority_order: Optional[int] = None,
    notes: Optional[str] = None,
) -> TaskAssignment:
    user = _get_user(db, user_id)
    plan = _get_plan(db, plan_id)
    _check_skill(plan, user)

    if _existing(db, user_id=user_id, plan_id=plan_id, assignment_date=assignment_date) is not None:
        raise StateConflict.for_field(
            "assignment_date",
            f"user {user_id} is already assigned plan {plan_id} on {assignment_date.isoformat()}",
            code="duplicate_assignment",
        )

    if priority_order is None:
        priority_order = _daily_workload(db, assignment_date).get(user_id, 0) + 1

    assignment = TaskAssignment(
        user_id=user_id,
        maintenance_plan_id=plan_id,
        assignment_date=assignment_date,
        priority_order=priority_order,
        assigned_by_user_id=assigned_by_user_id,
        notes=notes,
    )
    try:
        with db.begin_nested():
            db.add(assignment)
    except IntegrityError:
        raise StateConflict.for_field(
            "assignment_date",
            f"user {user_id} is already assigned plan {plan_id} on {assignment_date.isoformat()}",
            code="duplicate_assignment",
        )
    return assignment


def list_assignments(
    db: Session,
    *,
    assignment_date: Optional[date] = None,
    user_id: Optional[int] = None,
) -> List[TaskAssignment]:
    query = db.query(TaskAssignment)
    if assignment_date is not None:
        query = query.filter(TaskAssignment.assignment_date == assignment_date)
    if user_id is not None:
        query = query.filter(TaskAssignment.user_id == user_id)
    return query.order_by(
        TaskAssignment.assignment_date,
        TaskAssignment.user_id,
        TaskAssignment.priority_order,
        TaskAssignment.id,
    ).all()


# ---------------------------------------------------------------------------
# Daily matching
# ---------------------------------------------------------------------------


@dataclass
class MatchResult:
    target_date: date
    created: List[TaskAssignment] = field(default_factory=list)
    unmatched_plan_ids: List[int] = field(default_factory=list)
    already_assigned_plan_ids: List[int] = field(default_factory=list)


def plans_due_on(db: Session, target_date: date) -> List[MaintenancePlan]:
    """
    Active plans whose time clock falls due on or before the end of
    `target_date`, or whose hours clock is due soon or overdue.
    """
    end_of_day = local_datetime(target_date, time(23, 59, 59))
    plans = db.query(MaintenancePlan).filter(MaintenancePlan.is_active.is_(True)).all()
    due: List[MaintenancePlan] = []
    for plan in plans:
        evaluation = due_status.evaluate_plan(plan, now=end_of_day)
        if evaluation.time_status in (DueStatus.OVERDUE, DueStatus.DUE_TODAY):
            due.append(plan)
        elif evaluation.hours_status in (DueStatus.OVERDUE, DueStatus.DUE_SOON):
            due.append(plan)
    return due


def _plan_order(plan: MaintenancePlan):
    next_due = ensure_utc(plan.next_due_at).timestamp() if plan.next_due_at is not None else float("inf")
    return (plan.priority.rank, next_due, plan.id)


def match_daily_assignments(
    db: Session,
    *,
    target_date: date,
    assigned_by_user_id: Optional[int],
    plan_ids: Optional[Sequence[int]] = None,
) -> MatchResult:
    if plan_ids is None:
        plans = plans_due_on(db, target_date)
    else:
        plans = [_get_plan(db, plan_id) for plan_id in plan_ids]
        for plan in plans:
            if not plan.is_active:
                raise StateConflict.for_field(
                    "plan_ids", f"plan {plan.id} is inactive", code="plan_inactive"
                )
    plans = sorted(plans, key=_plan_order)

    users = (
        db.query(User)
        .filter(User.is_active.is_(True), User.is_available.is_(True))
        .order_by(User.id)
        .all()
    )
    workload = _daily_workload(db, target_date)
    priority_orders = _daily_priority_orders(db, target_date)
    assigned_plan_ids = {
        plan_id
        for (plan_id,) in db.query(TaskAssignment.maintenance_plan_id)
        .filter(TaskAssignment.assignment_date == target_date)
        .all()
    }

    result = MatchResult(target_date=target_date)
    for plan in plans:
        if plan.id in assigned_plan_ids:
            result.already_assigned_plan_ids.append(plan.id)
            continue
        ranked = rank_candidates(plan, users, workload, priority_orders)
        if not ranked:
            result.unmatched_plan_ids.append(plan.id)
            continue

        user = ranked[0]
        workload[user.id] = workload.get(user.id, 0) + 1
        assignment = TaskAssignment(
            user_id=user.id,
            maintenance_plan_id=plan.id,
            assignment_date=target_date,
            priority_order=workload[user.id],
            assigned_by_user_id=assigned_by_user_id,
        )
        db.add(assignment)
        assigned_plan_ids.add(plan.id)
        result.created.append(assignment)

    db.flush()
    if result.unmatched_plan_ids:
        logger.warning(
            "No qualified user for %d plan(s) on %s",
            len(result.unmatched_plan_ids),
            target_date.isoformat(),
            extra={"plan_ids": result.unmatched_plan_ids},
        )
    logger.info(
        "Daily assignment matching finished",
        extra={
            "target_date": target_date.isoformat(),
            "created": len(result.created),
            "unmatched": len(result.unmatched_plan_ids),
        },
    )
    return result


# ---------------------------------------------------------------------------
# Task assignment
# ---------------------------------------------------------------------------


def _move_daily_assignment(
    db: Session,
    *,
    plan_id: int,
    previous_user_id: Optional[int],
    new_user_id: int,
    on_date: date,
    actor_user_id: Optional[int],
) -> None:
    target = _existing(db, user_id=new_user_id, plan_id=plan_id, assignment_date=on_date)
    previous = None
    if previous_user_id is not None and previous_user_id != new_user_id:
        previous = _existing(db, user_id=previous_user_id, plan_id=plan_id, assignment_date=on_date)

    if previous is not None and target is None:
        previous.user_id = new_user_id
        previous.assigned_by_user_id = actor_user_id
        previous.assigned_at = utcnow()
        previous.priority_order = _daily_workload(db, on_date).get(new_user_id, 0) + 1
    elif previous is not None:
        db.delete(previous)
    elif target is None:
        db.add(
            TaskAssignment(
                user_id=new_user_id,
                maintenance_plan_id=plan_id,
                assignment_date=on_date,
                priority_order=_daily_workload(db, on_date).get(new_user_id, 0) + 1,
                assigned_by_user_id=actor_user_id,
            )
        )
    db.flush()


def assign_task(
    db: Session,
    *,
    task_id: int,
    user_id: int,
    actor_user_id: Optional[int],
    on_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> MaintenanceTask:
    """
    Give a task to a user. Reassigning moves the user's daily assignment row
    for the plan instead of leaving a stale one behind.
    """
    now = now or utcnow()
    task = get_task_for_update(db, task_id)
    if task.status in TERMINAL_STATUSES:
        raise StateConflict.for_field("status", f"cannot assign a {task.status.value} task")

    user = _get_user(db, user_id)
    plan = task.plan
    if plan is not None:
        _check_skill(plan, user)

    previous_user_id = task.assigned_to_user_id
    to_status = TaskStatus.IN_PROGRESS if task.status == TaskStatus.IN_PROGRESS else TaskStatus.ASSIGNED
    transition_task(
        db,
        task,
        to_status=to_status,
        actor_user_id=actor_user_id,
        extra={"assigned_to_user_id": user.id},
    )
    task.assigned_to_user_id = user.id
    task.assigned_at = now

    if task.task_type == TaskType.PLAN_BASED and task.maintenance_plan_id is not None:
        _move_daily_assignment(
            db,
            plan_id=task.maintenance_plan_id,
            previous_user_id=previous_user_id,
            new_user_id=user.id,
            on_date=on_date or local_date(now),
            actor_user_id=actor_user_id,
        )

    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance_task",
        entity_id=str(task.id),
        action="ASSIGNED",
        before={"assigned_to_user_id": previous_user_id},
        after={"assigned_to_user_id": user.id},
    )
    return task
