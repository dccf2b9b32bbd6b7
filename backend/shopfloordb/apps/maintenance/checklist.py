# backend/shopfloordb/apps/maintenance/checklist.py
#
# Checklist evaluation for a running task.
#
# Answers are judged against the item's decision variant, in step order.
# A failed item then follows its on_failure_action:
#   continue -> result recorded, next item
#   escalate -> result recorded, escalation opened, next item
#   stop     -> result recorded, blocking escalation opened, remaining
#               items are not evaluated and the task stays in progress

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from shopfloordb.apps.audit import services as audit_services

from ...utils.timeutils import utcnow
from . import escalations as escalation_services
from .decisions import Decision, FailureAction, Measurement, NoDecision, PhotoRequired, YesNo
from .errors import ReferenceNotFound, StateConflict, ValidationFailed
from .models import (
    ChecklistItem,
    ChecklistItemResult,
    Escalation,
    MaintenanceTask,
    TaskStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChecklistAnswer:
    checklist_item_id: int
    answer: Optional[bool] = None
    measurement_value: Optional[float] = None
    photo_ref: Optional[str] = None
    notes: Optional[str] = None


def _measurement_value(raw) -> float:
    if raw is None or isinstance(raw, bool):
        raise ValidationFailed.for_field("measurement_value", "a numeric measurement is required")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationFailed.for_field("measurement_value", f"{raw!r} is not a number")
    if not math.isfinite(value):
        raise ValidationFailed.for_field("measurement_value", "measurement must be a finite number")
    return value


def evaluate_answer(decision: Decision, answer: ChecklistAnswer) -> bool:
    """Pass/fail for one answer. Malformed input raises ValidationFailed."""
    if isinstance(decision, NoDecision):
        return True
    if isinstance(decision, YesNo):
        if not isinstance(answer.answer, bool):
            raise ValidationFailed.for_field("answer", "yes/no items need a true or false answer")
        return answer.answer == decision.expected
    if isinstance(decision, Measurement):
        return decision.band.contains(_measurement_value(answer.measurement_value))
    if isinstance(decision, PhotoRequired):
        return bool(answer.photo_ref and answer.photo_ref.strip())
    raise ValidationFailed.for_field("decision_type", f"unsupported decision {decision!r}")


def describe_failure(item: ChecklistItem, decision: Decision, answer: ChecklistAnswer) -> str:
    if isinstance(decision, YesNo):
        given = "yes" if answer.answer else "no"
        expected = "yes" if decision.expected else "no"
        return f"Check '{item.title}' answered {given}, expected {expected}"
    if isinstance(decision, Measurement):
        return (
            f"Check '{item.title}' measured {answer.measurement_value}, "
            f"outside tolerance {decision.band.describe()}"
        )
    if isinstance(decision, PhotoRequired):
        return f"Check '{item.title}' requires a photo, none attached"
    return f"Check '{item.title}' failed"


@dataclass(frozen=True)
class ChecklistProgress:
    total: int
    answered: int
    passed: int

    @property
    def percentage(self) -> int:
        if not self.total:
            return 100
        return round(100 * self.answered / self.total)


@dataclass
class ItemOutcome:
    checklist_item_id: int
    passed: bool
    action: Optional[FailureAction] = None
    escalation_id: Optional[int] = None


@dataclass
class ChecklistOutcome:
    task_id: int
    halted: bool
    items: List[ItemOutcome] = field(default_factory=list)
    escalations: List[Escalation] = field(default_factory=list)
    not_evaluated: List[int] = field(default_factory=list)
    progress: Optional[ChecklistProgress] = None


def _get_task_for_update(db: Session, task_id: int) -> MaintenanceTask:
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


def checklist_progress(db: Session, *, task: MaintenanceTask) -> ChecklistProgress:
    if task.maintenance_plan_id is None:
        return ChecklistProgress(total=0, answered=0, passed=0)
    total = (
        db.query(ChecklistItem)
        .filter(ChecklistItem.maintenance_plan_id == task.maintenance_plan_id)
        .count()
    )
    results = (
        db.query(ChecklistItemResult)
        .filter(ChecklistItemResult.maintenance_task_id == task.id)
        .all()
    )
    return ChecklistProgress(
        total=total,
        answered=len(results),
        passed=sum(1 for result in results if result.passed),
    )


def _upsert_result(
    db: Session,
    *,
    task: MaintenanceTask,
    item: ChecklistItem,
    answer: ChecklistAnswer,
    passed: bool,
    actor_user_id: Optional[int],
    now: datetime,
) -> ChecklistItemResult:
    result = (
        db.query(ChecklistItemResult)
        .filter(
            ChecklistItemResult.maintenance_task_id == task.id,
            ChecklistItemResult.checklist_item_id == item.id,
        )
        .first()
    )
    if result is None:
        result = ChecklistItemResult(maintenance_task_id=task.id, checklist_item_id=item.id)
        db.add(result)

    result.decision_type = item.decision_type
    result.answer = answer.answer
    result.measurement_value = answer.measurement_value
    result.photo_ref = answer.photo_ref
    result.notes = answer.notes
    result.passed = passed
    result.completed_by_user_id = actor_user_id
    result.completed_at = now
    return result


def submit_checklist(
    db: Session,
    *,
    task_id: int,
    answers: Sequence[ChecklistAnswer],
    actor_user_id: Optional[int],
    now: Optional[datetime] = None,
) -> ChecklistOutcome:
    """
    Evaluate submitted answers for a running task.

    Items without an answer in this submission are left untouched. Every
    answer is validated before anything is written.
    """
    now = now or utcnow()
    task = _get_task_for_update(db, task_id)

    if task.maintenance_plan_id is None:
        raise StateConflict.for_field("task_id", "standalone tasks have no checklist")
    if task.status != TaskStatus.IN_PROGRESS:
        raise StateConflict.for_field("status", f"checklist can only be submitted for in-progress tasks, task is {task.status.value}")
    if escalation_services.has_blocking_escalation(db, task_id=task.id):
        raise StateConflict.for_field("escalations", "task is halted until its stop escalation is resolved")

    items = (
        db.query(ChecklistItem)
        .filter(ChecklistItem.maintenance_plan_id == task.maintenance_plan_id)
        .order_by(ChecklistItem.sequence, ChecklistItem.id)
        .all()
    )
    items_by_id = {item.id: item for item in items}

    by_item: Dict[int, ChecklistAnswer] = {}
    for answer in answers:
        if answer.checklist_item_id not in items_by_id:
            raise ReferenceNotFound.for_field(
                "checklist_item_id",
                f"checklist item {answer.checklist_item_id} does not belong to task {task.id}",
            )
        if answer.checklist_item_id in by_item:
            raise ValidationFailed.for_field(
                "checklist_item_id",
                f"checklist item {answer.checklist_item_id} answered twice",
            )
        by_item[answer.checklist_item_id] = answer

    decisions: Dict[int, Decision] = {}
    verdicts: Dict[int, bool] = {}
    for item_id, answer in by_item.items():
        decisions[item_id] = items_by_id[item_id].decision
        verdicts[item_id] = evaluate_answer(decisions[item_id], answer)

    outcome = ChecklistOutcome(task_id=task.id, halted=False)
    for item in items:
        answer = by_item.get(item.id)
        if answer is None:
            continue
        if outcome.halted:
            outcome.not_evaluated.append(item.id)
            continue

        passed = verdicts[item.id]
        _upsert_result(db, task=task, item=item, answer=answer, passed=passed, actor_user_id=actor_user_id, now=now)
        item_outcome = ItemOutcome(checklist_item_id=item.id, passed=passed)
        outcome.items.append(item_outcome)
        if passed:
            continue

        action = item.on_failure_action or FailureAction.CONTINUE
        item_outcome.action = action
        if action in (FailureAction.ESCALATE, FailureAction.STOP):
            escalation = escalation_services.open_escalation(
                db,
                task=task,
                reason=describe_failure(item, decisions[item.id], answer),
                originator_user_id=actor_user_id,
                checklist_item_id=item.id,
                photo_ref=answer.photo_ref,
                blocks_task=action == FailureAction.STOP,
            )
            item_outcome.escalation_id = escalation.id
            outcome.escalations.append(escalation)
        if action == FailureAction.STOP:
            outcome.halted = True
            logger.warning(
                "Task halted by failed stop check",
                extra={"task_id": task.id, "checklist_item_id": item.id},
            )

    db.flush()
    outcome.progress = checklist_progress(db, task=task)

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance_task",
        entity_id=str(task.id),
        action="CHECKLIST_SUBMITTED",
        after={
            "passed": [o.checklist_item_id for o in outcome.items if o.passed],
            "failed": [o.checklist_item_id for o in outcome.items if not o.passed],
            "halted": outcome.halted,
        },
    )
    return outcome
