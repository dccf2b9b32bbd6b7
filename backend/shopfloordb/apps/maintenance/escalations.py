# backend/shopfloordb/apps/maintenance/escalations.py
#
# Escalation management.
#
# Escalations move strictly forward: OPEN -> ACKNOWLEDGED -> RESOLVED -> CLOSED.
# The allowed transitions and their guards live in the workflow registry
# ("maintenance_escalation"); every transition is validated against the status
# stored on the row, which is re-read under a row lock first.
#
# Levels: 1 = operator, 2 = master/specialist, 3 = external. Level L is worked
# by users of skill tier L + 1, capped at the master tier.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from shopfloordb.apps.accounts.models import MaintenanceSkillLevel, User
from shopfloordb.apps.audit import services as audit_services
from shopfloordb.apps.workflow import apply_transition

from ...utils.timeutils import ensure_utc, utcnow
from .errors import ReferenceNotFound, StateConflict, ValidationFailed
from .models import (
    UNRESOLVED_ESCALATION_STATUSES,
    ChecklistItem,
    Escalation,
    EscalationStatus,
    MaintenanceTask,
    TaskStatus,
)

logger = logging.getLogger(__name__)

WORKFLOW = "maintenance_escalation"

MIN_ESCALATION_LEVEL = 1
MAX_ESCALATION_LEVEL = 3


# ---------------------------------------------------------------------------
# Level rules
# ---------------------------------------------------------------------------


def next_escalation_level(originator_skill_level: Optional[int]) -> int:
    """
    Level an escalation starts at for a given originator.

    The escalation goes to the first skill tier strictly above the
    originator's own tier. Level L is handled by tier L + 1, so a helper
    (tier 1) escalates at level 1 (operators), an operator at level 2
    (masters) and a master at level 3 (external).
    """
    skill = int(originator_skill_level or MaintenanceSkillLevel.HELPER)
    if skill < MaintenanceSkillLevel.HELPER or skill > MaintenanceSkillLevel.MASTER:
        raise ValidationFailed.for_field("maintenance_skill_level", f"skill level {skill} out of range 1..3")
    target_tier = skill + 1
    return max(MIN_ESCALATION_LEVEL, min(target_tier - 1, MAX_ESCALATION_LEVEL))


def target_skill_level(escalation_level: int) -> int:
    return min(escalation_level + 1, int(MaintenanceSkillLevel.MASTER))


def _validate_level(level: int) -> int:
    if level < MIN_ESCALATION_LEVEL or level > MAX_ESCALATION_LEVEL:
        raise ValidationFailed.for_field("escalation_level", f"level {level} out of range 1..3")
    return level


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def _open_counts(db: Session, user_ids: Iterable[int]) -> Dict[int, int]:
    ids = list(user_ids)
    if not ids:
        return {}
    rows = (
        db.query(Escalation.escalated_to_user_id, func.count(Escalation.id))
        .filter(
            Escalation.escalated_to_user_id.in_(ids),
            Escalation.status.in_(UNRESOLVED_ESCALATION_STATUSES),
        )
        .group_by(Escalation.escalated_to_user_id)
        .all()
    )
    return {user_id: count for user_id, count in rows}


def route_escalation(
    db: Session,
    *,
    escalation_level: int,
    exclude_user_ids: Iterable[int] = (),
) -> Optional[User]:
    """
    Active, available user at the target tier with the fewest unresolved
    escalations; None when nobody qualifies.
    """
    excluded = {uid for uid in exclude_user_ids if uid is not None}
    candidates = (
        db.query(User)
        .filter(
            User.maintenance_skill_level == target_skill_level(escalation_level),
            User.is_active.is_(True),
            User.is_available.is_(True),
        )
        .order_by(User.id)
        .all()
    )
    candidates = [user for user in candidates if user.id not in excluded]
    if not candidates:
        return None
    load = _open_counts(db, (user.id for user in candidates))
    return min(candidates, key=lambda user: (load.get(user.id, 0), user.id))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def open_escalation(
    db: Session,
    *,
    task: MaintenanceTask,
    reason: str,
    originator_user_id: Optional[int],
    checklist_item_id: Optional[int] = None,
    photo_ref: Optional[str] = None,
    blocks_task: bool = False,
    escalation_level: Optional[int] = None,
    parent_escalation_id: Optional[int] = None,
) -> Escalation:
    if not reason or not reason.strip():
        raise ValidationFailed.for_field("reason", "reason is required")
    if task.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
        raise StateConflict.for_field("status", f"cannot escalate a {task.status.value} task")
    if checklist_item_id is not None:
        item = db.get(ChecklistItem, checklist_item_id)
        if item is None or item.maintenance_plan_id != task.maintenance_plan_id:
            raise ReferenceNotFound.for_field(
                "checklist_item_id", f"checklist item {checklist_item_id} does not belong to task {task.id}"
            )

    originator: Optional[User] = None
    if originator_user_id is not None:
        originator = db.get(User, originator_user_id)
        if originator is None:
            raise ReferenceNotFound.for_field("escalated_from_user_id", f"user {originator_user_id} not found")

    if escalation_level is None:
        escalation_level = next_escalation_level(originator.maintenance_skill_level if originator else None)
    _validate_level(escalation_level)

    assignee = route_escalation(db, escalation_level=escalation_level, exclude_user_ids=[originator_user_id])
    if assignee is None:
        logger.info(
            "No user available for escalation level %s; escalation left unassigned",
            escalation_level,
            extra={"task_id": task.id, "escalation_level": escalation_level},
        )

    escalation = Escalation(
        maintenance_task_id=task.id,
        checklist_item_id=checklist_item_id,
        parent_escalation_id=parent_escalation_id,
        escalated_from_user_id=originator_user_id,
        escalated_to_user_id=assignee.id if assignee else None,
        escalation_level=escalation_level,
        reason=reason.strip(),
        photo_ref=photo_ref,
        blocks_task=blocks_task,
        status=EscalationStatus.OPEN,
    )
    db.add(escalation)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=originator_user_id,
        entity_type=WORKFLOW,
        entity_id=str(escalation.id),
        action="CREATED",
        after={
            "task_id": task.id,
            "escalation_level": escalation_level,
            "escalated_to_user_id": escalation.escalated_to_user_id,
            "blocks_task": blocks_task,
        },
        critical=True,
    )
    return escalation


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def get_escalation(db: Session, escalation_id: int) -> Escalation:
    escalation = db.get(Escalation, escalation_id)
    if escalation is None:
        raise ReferenceNotFound.for_field("escalation_id", f"escalation {escalation_id} not found")
    return escalation


def get_escalation_for_update(db: Session, escalation_id: int) -> Escalation:
    escalation = (
        db.query(Escalation)
        .filter(Escalation.id == escalation_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if escalation is None:
        raise ReferenceNotFound.for_field("escalation_id", f"escalation {escalation_id} not found")
    return escalation


def _transition(
    db: Session,
    escalation: Escalation,
    *,
    to_status: EscalationStatus,
    actor_user_id: Optional[int],
    resolution: Optional[str] = None,
) -> None:
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type=WORKFLOW,
        entity_id=escalation.id,
        from_state=escalation.status.name,
        to_state=to_status.name,
        before_obj={"task_id": escalation.maintenance_task_id},
        after_obj={
            "task_id": escalation.maintenance_task_id,
            "actor_user_id": actor_user_id,
            "resolution": resolution,
        },
    )


def acknowledge(db: Session, *, escalation_id: int, actor_user_id: Optional[int], now: Optional[datetime] = None) -> Escalation:
    escalation = get_escalation_for_update(db, escalation_id)
    _transition(db, escalation, to_status=EscalationStatus.ACKNOWLEDGED, actor_user_id=actor_user_id)
    escalation.status = EscalationStatus.ACKNOWLEDGED
    escalation.acknowledged_by_user_id = actor_user_id
    escalation.acknowledged_at = now or utcnow()
    if escalation.escalated_to_user_id is None:
        escalation.escalated_to_user_id = actor_user_id
    db.flush()
    return escalation


def resolve(
    db: Session,
    *,
    escalation_id: int,
    actor_user_id: Optional[int],
    resolution: Optional[str],
    now: Optional[datetime] = None,
) -> Escalation:
    escalation = get_escalation_for_update(db, escalation_id)
    _transition(
        db,
        escalation,
        to_status=EscalationStatus.RESOLVED,
        actor_user_id=actor_user_id,
        resolution=resolution,
    )
    escalation.status = EscalationStatus.RESOLVED
    escalation.resolution = resolution.strip()
    escalation.resolved_by_user_id = actor_user_id
    escalation.resolved_at = now or utcnow()
    db.flush()
    return escalation


def close(db: Session, *, escalation_id: int, actor_user_id: Optional[int], now: Optional[datetime] = None) -> Escalation:
    escalation = get_escalation_for_update(db, escalation_id)
    _transition(db, escalation, to_status=EscalationStatus.CLOSED, actor_user_id=actor_user_id)
    escalation.status = EscalationStatus.CLOSED
    escalation.closed_by_user_id = actor_user_id
    escalation.closed_at = now or utcnow()
    db.flush()
    return escalation


def reescalate(
    db: Session,
    *,
    escalation_id: int,
    actor_user_id: Optional[int],
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Escalation:
    """
    Hand an unresolved escalation to the next level up.

    The current escalation is walked forward to CLOSED with a generated
    resolution and a child escalation is opened one level higher, inheriting
    the task, checklist item, photo and blocking flag.
    """
    current = get_escalation_for_update(db, escalation_id)
    if current.status not in UNRESOLVED_ESCALATION_STATUSES:
        raise StateConflict.for_field("status", f"cannot re-escalate a {current.status.value} escalation")
    if current.escalation_level >= MAX_ESCALATION_LEVEL:
        raise StateConflict.for_field("escalation_level", "already at the highest escalation level")

    new_level = current.escalation_level + 1
    now = now or utcnow()
    task = current.task

    if current.status == EscalationStatus.OPEN:
        acknowledge(db, escalation_id=current.id, actor_user_id=actor_user_id, now=now)
    resolve(
        db,
        escalation_id=current.id,
        actor_user_id=actor_user_id,
        resolution=f"Re-escalated to level {new_level}" + (f": {reason}" if reason else ""),
        now=now,
    )
    close(db, escalation_id=current.id, actor_user_id=actor_user_id, now=now)

    return open_escalation(
        db,
        task=task,
        reason=reason or current.reason,
        originator_user_id=actor_user_id,
        checklist_item_id=current.checklist_item_id,
        photo_ref=current.photo_ref,
        blocks_task=current.blocks_task,
        escalation_level=new_level,
        parent_escalation_id=current.id,
    )


def has_blocking_escalation(db: Session, *, task_id: int) -> bool:
    return (
        db.query(Escalation.id)
        .filter(
            Escalation.maintenance_task_id == task_id,
            Escalation.blocks_task.is_(True),
            Escalation.status.in_(UNRESOLVED_ESCALATION_STATUSES),
        )
        .first()
        is not None
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_escalations(
    db: Session,
    *,
    status: Optional[EscalationStatus] = None,
    escalated_to_user_id: Optional[int] = None,
    escalation_level: Optional[int] = None,
    machine_id: Optional[int] = None,
    task_id: Optional[int] = None,
    limit: int = 200,
) -> List[Escalation]:
    query = db.query(Escalation)
    if status is not None:
        query = query.filter(Escalation.status == status)
    if escalated_to_user_id is not None:
        query = query.filter(Escalation.escalated_to_user_id == escalated_to_user_id)
    if escalation_level is not None:
        query = query.filter(Escalation.escalation_level == escalation_level)
    if task_id is not None:
        query = query.filter(Escalation.maintenance_task_id == task_id)
    if machine_id is not None:
        query = query.join(MaintenanceTask, MaintenanceTask.id == Escalation.maintenance_task_id).filter(
            MaintenanceTask.machine_id == machine_id
        )
    return query.order_by(Escalation.created_at.desc(), Escalation.id.desc()).limit(limit).all()


def list_unassigned(db: Session) -> List[Escalation]:
    """Unresolved escalations nobody was routed to, highest level first."""
    return (
        db.query(Escalation)
        .filter(
            Escalation.escalated_to_user_id.is_(None),
            Escalation.status.in_(UNRESOLVED_ESCALATION_STATUSES),
        )
        .order_by(Escalation.escalation_level.desc(), Escalation.created_at.asc(), Escalation.id.asc())
        .all()
    )


def list_for_user(db: Session, *, user_id: int) -> List[Escalation]:
    return (
        db.query(Escalation)
        .filter(
            Escalation.escalated_to_user_id == user_id,
            Escalation.status.in_(UNRESOLVED_ESCALATION_STATUSES),
        )
        .order_by(Escalation.escalation_level.desc(), Escalation.created_at.asc())
        .all()
    )


@dataclass(frozen=True)
class EscalationStats:
    period_days: int
    total: int
    unassigned: int
    by_status: Dict[str, int] = field(default_factory=dict)
    by_level: Dict[int, int] = field(default_factory=dict)
    average_resolution_hours: Optional[float] = None


def escalation_stats(db: Session, *, days: int = 30, now: Optional[datetime] = None) -> EscalationStats:
    if days <= 0:
        raise ValidationFailed.for_field("days", "must be positive")
    now = now or utcnow()
    rows = (
        db.query(Escalation)
        .filter(Escalation.created_at >= now - timedelta(days=days))
        .all()
    )

    by_status = {status.value: 0 for status in EscalationStatus}
    by_level = {level: 0 for level in range(MIN_ESCALATION_LEVEL, MAX_ESCALATION_LEVEL + 1)}
    durations: List[float] = []
    unassigned = 0
    for row in rows:
        by_status[row.status.value] += 1
        by_level[row.escalation_level] = by_level.get(row.escalation_level, 0) + 1
        if row.escalated_to_user_id is None and row.status in UNRESOLVED_ESCALATION_STATUSES:
            unassigned += 1
        if row.resolved_at is not None and row.created_at is not None:
            delta = ensure_utc(row.resolved_at) - ensure_utc(row.created_at)
            durations.append(delta.total_seconds() / 3600.0)

    return EscalationStats(
        period_days=days,
        total=len(rows),
        unassigned=unassigned,
        by_status=by_status,
        by_level=by_level,
        average_resolution_hours=(sum(durations) / len(durations)) if durations else None,
    )
