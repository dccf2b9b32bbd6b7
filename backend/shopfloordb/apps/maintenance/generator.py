# backend/shopfloordb/apps/maintenance/generator.py
#
# Task generation from maintenance plans.
#
# A run looks at every active plan whose time clock falls due within the
# lookahead window or whose hours clock is within the due-soon margin, and
# creates one pending task per plan unless the plan already has an open task.
#
# Each plan is handled inside its own SAVEPOINT with the plan row locked, so
# one failing plan never rolls back the others. Two overlapping runs are
# serialised by the row lock; if one still slips through, the partial unique
# index on open tasks rejects the second insert and that plan counts as
# skipped.
#
# The caller owns the transaction: the HTTP route commits, the cron job
# (shopfloordb.jobs.maintenance_task_runner) commits and closes.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from shopfloordb.apps.audit import services as audit_services
from shopfloordb.apps.machines.models import Machine

from ...utils.identifiers import generate_uuid7
from ...utils.timeutils import ensure_utc, local_date, local_datetime, utcnow
from .due_status import HOURS_DUE_SOON_MARGIN
from .errors import MaintenanceError, ReferenceNotFound, StateConflict, ValidationFailed
from .models import (
    OPEN_TASK_STATUSES,
    MaintenancePlan,
    MaintenanceTask,
    Priority,
    TaskStatus,
    TaskType,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD = timedelta(hours=24)


def configured_lookahead() -> timedelta:
    raw = os.getenv("MAINTENANCE_GENERATION_LOOKAHEAD_HOURS")
    if not raw:
        return DEFAULT_LOOKAHEAD
    try:
        hours = float(raw)
    except ValueError:
        logger.warning("Invalid MAINTENANCE_GENERATION_LOOKAHEAD_HOURS %r, using 24", raw)
        return DEFAULT_LOOKAHEAD
    if hours < 0:
        logger.warning("Negative MAINTENANCE_GENERATION_LOOKAHEAD_HOURS %r, using 24", raw)
        return DEFAULT_LOOKAHEAD
    return timedelta(hours=hours)


@dataclass
class GenerationSummary:
    run_id: str
    started_at: datetime
    lookahead_hours: float
    created: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    created_task_ids: List[int] = field(default_factory=list)
    past_deadline_task_ids: List[int] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "lookahead_hours": self.lookahead_hours,
            "created": self.created,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "created_task_ids": list(self.created_task_ids),
            "past_deadline_task_ids": list(self.past_deadline_task_ids),
        }


def candidate_plan_ids(db: Session, *, now: datetime, lookahead: timedelta) -> List[int]:
    horizon = now + lookahead
    time_due = and_(
        MaintenancePlan.interval_type.isnot(None),
        MaintenancePlan.next_due_at.isnot(None),
        MaintenancePlan.next_due_at <= horizon,
        or_(
            MaintenancePlan.last_completed_at.is_(None),
            MaintenancePlan.last_completed_at < MaintenancePlan.next_due_at,
        ),
    )
    hours_due = and_(
        MaintenancePlan.interval_hours.isnot(None),
        MaintenancePlan.next_due_hours.isnot(None),
        Machine.current_operating_hours >= MaintenancePlan.next_due_hours - HOURS_DUE_SOON_MARGIN,
    )
    rows = (
        db.query(MaintenancePlan.id)
        .outerjoin(Machine, Machine.id == MaintenancePlan.machine_id)
        .filter(MaintenancePlan.is_active.is_(True), or_(time_due, hours_due))
        .order_by(MaintenancePlan.id)
        .all()
    )
    return [plan_id for (plan_id,) in rows]


def _shift_deadline(plan: MaintenancePlan, *, due: datetime, now: datetime) -> Optional[datetime]:
    """Deadline time on the due day, or today when the due day has passed."""
    if not plan.is_shift_critical or plan.shift_deadline_time is None:
        return None
    day = max(local_date(due), local_date(now))
    return local_datetime(day, plan.shift_deadline_time)


def _create_task_for_plan(
    db: Session,
    plan_id: int,
    *,
    now: datetime,
    horizon: datetime,
    actor_user_id: Optional[int],
) -> Optional[MaintenanceTask]:
    plan = (
        db.query(MaintenancePlan)
        .filter(MaintenancePlan.id == plan_id)
        .with_for_update(of=MaintenancePlan)
        .populate_existing()
        .first()
    )
    if plan is None or not plan.is_active:
        return None

    machine = db.get(Machine, plan.machine_id)
    if machine is None:
        raise ReferenceNotFound.for_field("machine_id", f"machine {plan.machine_id} not found")
    if not machine.is_active:
        raise StateConflict.for_field(
            "machine_id", f"machine {machine.id} is inactive", code="machine_inactive"
        )

    open_task = (
        db.query(MaintenanceTask.id)
        .filter(
            MaintenanceTask.maintenance_plan_id == plan.id,
            MaintenanceTask.status.in_(OPEN_TASK_STATUSES),
        )
        .first()
    )
    if open_task is not None:
        return None

    next_due_at = ensure_utc(plan.next_due_at)
    due = next_due_at if next_due_at is not None and next_due_at <= horizon else now

    task = MaintenanceTask(
        task_type=TaskType.PLAN_BASED,
        maintenance_plan_id=plan.id,
        machine_id=machine.id,
        title=plan.title,
        description=plan.description,
        location=machine.location,
        priority=plan.priority,
        status=TaskStatus.PENDING,
        due_date=due,
        estimated_duration_minutes=plan.estimated_duration_minutes,
        created_by_user_id=actor_user_id,
    )

    deadline = _shift_deadline(plan, due=due, now=now)
    if deadline is not None:
        task.shift_deadline_at = deadline
        if deadline < now:
            task.is_past_deadline = True
            task.priority = Priority.CRITICAL

    db.add(task)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance_task",
        entity_id=str(task.id),
        action="CREATED",
        after={
            "plan_id": plan.id,
            "machine_id": machine.id,
            "due_date": due.isoformat(),
            "priority": task.priority.value,
        },
    )
    if task.is_past_deadline:
        logger.warning(
            "Shift-critical task created after its deadline",
            extra={"plan_id": plan.id, "task_id": task.id, "shift_deadline_at": deadline.isoformat()},
        )
        audit_services.log_event(
            db,
            actor_user_id=actor_user_id,
            entity_type="maintenance_task",
            entity_id=str(task.id),
            action="PAST_DEADLINE",
            after={"shift_deadline_at": deadline.isoformat(), "generated_at": now.isoformat()},
        )
    return task


def generate_tasks(
    db: Session,
    *,
    now: Optional[datetime] = None,
    lookahead: timedelta = DEFAULT_LOOKAHEAD,
    actor_user_id: Optional[int] = None,
) -> GenerationSummary:
    """
    Create pending tasks for plans due within `lookahead` of `now`.

    Never raises for a single plan: failures land in `summary.errors` as
    {"plan_id", "code", "reason"} and the run moves on.
    """
    if lookahead < timedelta(0):
        raise ValidationFailed.for_field("lookahead", "lookahead cannot be negative")
    now = ensure_utc(now) if now is not None else utcnow()
    horizon = now + lookahead

    summary = GenerationSummary(
        run_id=generate_uuid7(),
        started_at=now,
        lookahead_hours=lookahead.total_seconds() / 3600.0,
    )

    for plan_id in candidate_plan_ids(db, now=now, lookahead=lookahead):
        try:
            with db.begin_nested():
                task = _create_task_for_plan(
                    db, plan_id, now=now, horizon=horizon, actor_user_id=actor_user_id
                )
        except IntegrityError:
            # Lost the race against a concurrent run.
            summary.skipped += 1
            logger.info("Open task already created concurrently", extra={"plan_id": plan_id})
            continue
        except MaintenanceError as exc:
            summary.errors.append({"plan_id": plan_id, "code": exc.code, "reason": str(exc)})
            logger.warning("Task generation failed for plan %s: %s", plan_id, exc)
            continue
        except SQLAlchemyError as exc:
            summary.errors.append({"plan_id": plan_id, "code": "database_error", "reason": str(exc)})
            logger.warning("Task generation failed for plan %s: %s", plan_id, exc)
            continue

        if task is None:
            summary.skipped += 1
            continue
        summary.created += 1
        summary.created_task_ids.append(task.id)
        if task.is_past_deadline:
            summary.past_deadline_task_ids.append(task.id)

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance.generation",
        entity_id=summary.run_id,
        action="RUN",
        after={
            "created": summary.created,
            "skipped": summary.skipped,
            "errors": len(summary.errors),
        },
        metadata={"lookahead_hours": summary.lookahead_hours, "now": now.isoformat()},
    )
    logger.info(
        "Maintenance task generation finished: created=%d skipped=%d errors=%d",
        summary.created,
        summary.skipped,
        len(summary.errors),
        extra={"run_id": summary.run_id},
    )
    return summary
