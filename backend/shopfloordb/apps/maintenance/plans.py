# backend/shopfloordb/apps/maintenance/plans.py
#
# Maintenance plans, their checklist items and step instructions.
#
# Plans are created with their first next-due markers already set: the
# calendar clock one interval from now (unless an explicit first due date is
# given), the hours clock one interval above the machine's current counter.

from __future__ import annotations

from datetime import datetime, time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from shopfloordb.apps.audit import services as audit_services
from shopfloordb.apps.machines.models import Machine

from ...utils.timeutils import ensure_utc, utcnow
from . import due_status
from .decisions import DecisionType, FailureAction, decision_from_columns, parse_failure_action
from .errors import ReferenceNotFound, StateConflict, ValidationFailed
from .models import (
    ChecklistItem,
    ChecklistItemResult,
    MaintenanceInstruction,
    MaintenancePlan,
    MaintenanceType,
    Priority,
    RequiredSkillLevel,
)
from .recurrence import IntervalType, hours_interval, initial_due, recurrence_from_columns, time_interval

PLAN_UPDATABLE_FIELDS = (
    "title",
    "description",
    "instructions",
    "safety_notes",
    "maintenance_type_id",
    "interval_type",
    "interval_value",
    "interval_hours",
    "next_due_at",
    "next_due_hours",
    "required_skill_level",
    "estimated_duration_minutes",
    "priority",
    "is_shift_critical",
    "shift_deadline_time",
    "is_active",
)

CHECKLIST_ITEM_UPDATABLE_FIELDS = (
    "sequence",
    "title",
    "description",
    "decision_type",
    "on_failure_action",
    "expected_answer",
    "min_value",
    "max_value",
    "measurement_unit",
    "is_critical",
)

_RECURRENCE_FIELDS = ("interval_type", "interval_value", "interval_hours")


def get_plan(db: Session, plan_id: int) -> MaintenancePlan:
    plan = db.get(MaintenancePlan, plan_id)
    if plan is None:
        raise ReferenceNotFound.for_field("plan_id", f"plan {plan_id} not found")
    return plan


def list_plans(
    db: Session,
    *,
    machine_id: Optional[int] = None,
    is_active: Optional[bool] = None,
) -> List[MaintenancePlan]:
    query = db.query(MaintenancePlan)
    if machine_id is not None:
        query = query.filter(MaintenancePlan.machine_id == machine_id)
    if is_active is not None:
        query = query.filter(MaintenancePlan.is_active.is_(is_active))
    return query.order_by(MaintenancePlan.machine_id, MaintenancePlan.id).all()


def list_maintenance_types(db: Session, *, is_active: Optional[bool] = None) -> List[MaintenanceType]:
    query = db.query(MaintenanceType)
    if is_active is not None:
        query = query.filter(MaintenanceType.is_active.is_(is_active))
    return query.order_by(MaintenanceType.name, MaintenanceType.id).all()


def _check_shift_deadline(is_shift_critical: bool, shift_deadline_time: Optional[time]) -> None:
    if is_shift_critical and shift_deadline_time is None:
        raise ValidationFailed.for_field("shift_deadline_time", "shift-critical plans need a deadline time")


def _check_maintenance_type(db: Session, maintenance_type_id: Optional[int]) -> None:
    if maintenance_type_id is not None and db.get(MaintenanceType, maintenance_type_id) is None:
        raise ReferenceNotFound.for_field(
            "maintenance_type_id", f"maintenance type {maintenance_type_id} not found"
        )


def create_plan(
    db: Session,
    *,
    machine_id: int,
    title: str,
    created_by_user_id: Optional[int],
    interval_type: Optional[IntervalType] = None,
    interval_value: Optional[int] = None,
    interval_hours: Optional[float] = None,
    maintenance_type_id: Optional[int] = None,
    description: Optional[str] = None,
    instructions: Optional[str] = None,
    safety_notes: Optional[str] = None,
    required_skill_level: RequiredSkillLevel = RequiredSkillLevel.HELPER,
    estimated_duration_minutes: Optional[int] = None,
    priority: Priority = Priority.NORMAL,
    is_shift_critical: bool = False,
    shift_deadline_time: Optional[time] = None,
    next_due_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> MaintenancePlan:
    if not title or not title.strip():
        raise ValidationFailed.for_field("title", "title is required")
    machine = db.get(Machine, machine_id)
    if machine is None:
        raise ReferenceNotFound.for_field("machine_id", f"machine {machine_id} not found")
    _check_maintenance_type(db, maintenance_type_id)
    _check_shift_deadline(is_shift_critical, shift_deadline_time)

    recurrence = recurrence_from_columns(interval_type, interval_value, interval_hours)
    now = now or utcnow()
    current_hours = float(machine.current_operating_hours or 0.0)
    first_due = initial_due(recurrence, start_at=now, start_hours=current_hours)
    if next_due_at is not None and time_interval(recurrence) is not None:
        first_due_at = ensure_utc(next_due_at)
    else:
        first_due_at = first_due.next_due_at

    plan = MaintenancePlan(
        machine_id=machine.id,
        maintenance_type_id=maintenance_type_id,
        title=title.strip(),
        description=description,
        instructions=instructions,
        safety_notes=safety_notes,
        interval_type=interval_type,
        interval_value=interval_value,
        interval_hours=interval_hours,
        next_due_at=first_due_at,
        next_due_hours=first_due.next_due_hours,
        required_skill_level=required_skill_level,
        estimated_duration_minutes=estimated_duration_minutes,
        priority=priority,
        is_shift_critical=is_shift_critical,
        shift_deadline_time=shift_deadline_time,
        is_active=True,
        created_by_user_id=created_by_user_id,
    )
    if hours_interval(recurrence) is not None:
        plan.hours_status = due_status.hours_status(plan.next_due_hours, current_hours)
    db.add(plan)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=created_by_user_id,
        entity_type="maintenance_plan",
        entity_id=str(plan.id),
        action="CREATED",
        after={
            "machine_id": plan.machine_id,
            "title": plan.title,
            "next_due_at": plan.next_due_at.isoformat() if plan.next_due_at else None,
            "next_due_hours": plan.next_due_hours,
        },
    )
    return plan


def update_plan(
    db: Session,
    *,
    plan_id: int,
    actor_user_id: Optional[int],
    changes: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> MaintenancePlan:
    """
    Apply a partial update. Changing the recurrence re-derives the markers of
    a clock that is newly added; a removed clock has its markers cleared.
    """
    plan = get_plan(db, plan_id)
    unknown = sorted(set(changes) - set(PLAN_UPDATABLE_FIELDS))
    if unknown:
        raise ValidationFailed.for_field(unknown[0], "field cannot be changed")
    if "title" in changes and (not changes["title"] or not str(changes["title"]).strip()):
        raise ValidationFailed.for_field("title", "title is required")
    if "maintenance_type_id" in changes:
        _check_maintenance_type(db, changes["maintenance_type_id"])

    merged = {name: changes.get(name, getattr(plan, name)) for name in _RECURRENCE_FIELDS}
    recurrence = recurrence_from_columns(merged["interval_type"], merged["interval_value"], merged["interval_hours"])
    _check_shift_deadline(
        changes.get("is_shift_critical", plan.is_shift_critical),
        changes.get("shift_deadline_time", plan.shift_deadline_time),
    )

    for name, value in changes.items():
        setattr(plan, name, value.strip() if name == "title" else value)

    now = now or utcnow()
    machine_hours = float(plan.machine.current_operating_hours or 0.0) if plan.machine else 0.0
    start_at = ensure_utc(plan.last_completed_at) or now
    start_hours = plan.last_completed_hours if plan.last_completed_hours is not None else machine_hours
    derived = initial_due(recurrence, start_at=start_at, start_hours=start_hours)

    if time_interval(recurrence) is None:
        plan.next_due_at = None
    elif plan.next_due_at is None:
        plan.next_due_at = derived.next_due_at
    if hours_interval(recurrence) is None:
        plan.next_due_hours = None
        plan.hours_status = None
    else:
        if plan.next_due_hours is None:
            plan.next_due_hours = derived.next_due_hours
        plan.hours_status = due_status.hours_status(plan.next_due_hours, machine_hours)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance_plan",
        entity_id=str(plan.id),
        action="UPDATED",
        after={"fields": sorted(changes)},
    )
    return plan


# ---------------------------------------------------------------------------
# Checklist items / instructions
# ---------------------------------------------------------------------------


def add_checklist_item(
    db: Session,
    *,
    plan_id: int,
    title: str,
    sequence: Optional[int] = None,
    description: Optional[str] = None,
    decision_type: DecisionType = DecisionType.NONE,
    on_failure_action: FailureAction = FailureAction.CONTINUE,
    expected_answer: Optional[bool] = None,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    measurement_unit: Optional[str] = None,
    is_critical: bool = False,
) -> ChecklistItem:
    plan = get_plan(db, plan_id)
    if not title or not title.strip():
        raise ValidationFailed.for_field("title", "title is required")
    decision_from_columns(
        decision_type,
        expected_answer=expected_answer,
        min_value=min_value,
        max_value=max_value,
        measurement_unit=measurement_unit,
    )
    action = parse_failure_action(on_failure_action)

    if sequence is None:
        current_max = (
            db.query(func.max(ChecklistItem.sequence))
            .filter(ChecklistItem.maintenance_plan_id == plan.id)
            .scalar()
        )
        sequence = (current_max or 0) + 1
    else:
        _check_sequence_free(db, plan_id=plan.id, sequence=sequence)

    item = ChecklistItem(
        maintenance_plan_id=plan.id,
        sequence=sequence,
        title=title.strip(),
        description=description,
        decision_type=DecisionType(decision_type),
        on_failure_action=action,
        expected_answer=expected_answer,
        min_value=min_value,
        max_value=max_value,
        measurement_unit=measurement_unit,
        is_critical=is_critical,
    )
    db.add(item)
    db.flush()
    return item


def get_checklist_item(db: Session, item_id: int) -> ChecklistItem:
    item = db.get(ChecklistItem, item_id)
    if item is None:
        raise ReferenceNotFound.for_field("checklist_item_id", f"checklist item {item_id} not found")
    return item


def _check_sequence_free(
    db: Session,
    *,
    plan_id: int,
    sequence: int,
    exclude_item_id: Optional[int] = None,
) -> None:
    if sequence <= 0:
        raise ValidationFailed.for_field("sequence", "must be positive")
    query = db.query(ChecklistItem.id).filter(
        ChecklistItem.maintenance_plan_id == plan_id,
        ChecklistItem.sequence == sequence,
    )
    if exclude_item_id is not None:
        query = query.filter(ChecklistItem.id != exclude_item_id)
    if query.first() is not None:
        raise StateConflict.for_field(
            "sequence", f"sequence {sequence} is already used in plan {plan_id}", code="duplicate_sequence"
        )


def update_checklist_item(
    db: Session,
    *,
    item_id: int,
    actor_user_id: Optional[int],
    changes: Mapping[str, Any],
) -> ChecklistItem:
    """
    Partial update of one checklist item.

    The decision columns are validated as a whole after merging, so switching
    an item from yes/no to a measurement must bring its band along.
    """
    item = get_checklist_item(db, item_id)
    unknown = sorted(set(changes) - set(CHECKLIST_ITEM_UPDATABLE_FIELDS))
    if unknown:
        raise ValidationFailed.for_field(unknown[0], "field cannot be changed")
    if "title" in changes and (not changes["title"] or not str(changes["title"]).strip()):
        raise ValidationFailed.for_field("title", "title is required")

    merged = {name: changes.get(name, getattr(item, name)) for name in CHECKLIST_ITEM_UPDATABLE_FIELDS}
    decision_from_columns(
        merged["decision_type"],
        expected_answer=merged["expected_answer"],
        min_value=merged["min_value"],
        max_value=merged["max_value"],
        measurement_unit=merged["measurement_unit"],
    )
    if "on_failure_action" in changes:
        changes = {**changes, "on_failure_action": parse_failure_action(changes["on_failure_action"])}
    if "decision_type" in changes:
        changes = {**changes, "decision_type": DecisionType(changes["decision_type"] or DecisionType.NONE)}
    if changes.get("sequence") is not None and changes["sequence"] != item.sequence:
        _check_sequence_free(
            db, plan_id=item.maintenance_plan_id, sequence=changes["sequence"], exclude_item_id=item.id
        )
    elif "sequence" in changes and changes["sequence"] is None:
        raise ValidationFailed.for_field("sequence", "sequence is required")

    for name, value in changes.items():
        setattr(item, name, value.strip() if name == "title" else value)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance_plan",
        entity_id=str(item.maintenance_plan_id),
        action="CHECKLIST_ITEM_UPDATED",
        after={"checklist_item_id": item.id, "fields": sorted(changes), "sequence": item.sequence},
    )
    return item


def delete_checklist_item(db: Session, *, item_id: int, actor_user_id: Optional[int]) -> None:
    item = get_checklist_item(db, item_id)
    recorded = (
        db.query(ChecklistItemResult.id)
        .filter(ChecklistItemResult.checklist_item_id == item.id)
        .first()
    )
    if recorded is not None:
        raise StateConflict.for_field(
            "checklist_item_id",
            f"checklist item {item.id} already has recorded results",
            code="item_has_results",
        )

    plan_id, title = item.maintenance_plan_id, item.title
    for instruction in list(item.instructions):
        db.delete(instruction)
    db.delete(item)
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance_plan",
        entity_id=str(plan_id),
        action="CHECKLIST_ITEM_DELETED",
        before={"checklist_item_id": item_id, "title": title},
    )


def reorder_checklist_items(
    db: Session,
    *,
    plan_id: int,
    order: Sequence[Tuple[int, int]],
    actor_user_id: Optional[int],
) -> List[ChecklistItem]:
    """
    Set new sequence numbers from (item id, sequence) pairs.

    Items left out keep their number; the resulting numbering across the
    whole plan must stay unique.
    """
    ids = [item_id for item_id, _ in order]
    if len(set(ids)) != len(ids):
        raise ValidationFailed.for_field("items", "each item may appear only once")
    sequences = dict(order)

    plan = get_plan(db, plan_id)
    items = (
        db.query(ChecklistItem)
        .filter(ChecklistItem.maintenance_plan_id == plan.id)
        .order_by(ChecklistItem.sequence, ChecklistItem.id)
        .all()
    )
    by_id = {item.id: item for item in items}
    foreign = sorted(set(sequences) - set(by_id))
    if foreign:
        raise ReferenceNotFound.for_field(
            "items", f"checklist item {foreign[0]} does not belong to plan {plan.id}"
        )
    if any(sequence is None or sequence <= 0 for sequence in sequences.values()):
        raise ValidationFailed.for_field("sequence", "must be positive")

    final: Dict[int, int] = {item.id: sequences.get(item.id, item.sequence) for item in items}
    if len(set(final.values())) != len(final):
        raise StateConflict.for_field(
            "items", "sequence numbers must be unique within the plan", code="duplicate_sequence"
        )

    before = {item.id: item.sequence for item in items}
    for item_id, sequence in final.items():
        by_id[item_id].sequence = sequence
    db.flush()

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="maintenance_plan",
        entity_id=str(plan.id),
        action="CHECKLIST_REORDERED",
        before={"sequences": {str(key): value for key, value in before.items()}},
        after={"sequences": {str(key): value for key, value in final.items()}},
    )
    return sorted(items, key=lambda item: (item.sequence, item.id))


def add_instruction(
    db: Session,
    *,
    checklist_item_id: int,
    description: str,
    step_number: Optional[int] = None,
    title: Optional[str] = None,
    image_ref: Optional[str] = None,
    video_url: Optional[str] = None,
    warning_text: Optional[str] = None,
    tip_text: Optional[str] = None,
) -> MaintenanceInstruction:
    item = db.get(ChecklistItem, checklist_item_id)
    if item is None:
        raise ReferenceNotFound.for_field("checklist_item_id", f"checklist item {checklist_item_id} not found")
    if not description or not description.strip():
        raise ValidationFailed.for_field("description", "description is required")

    if step_number is None:
        current_max = (
            db.query(func.max(MaintenanceInstruction.step_number))
            .filter(MaintenanceInstruction.checklist_item_id == item.id)
            .scalar()
        )
        step_number = (current_max or 0) + 1
    elif step_number <= 0:
        raise ValidationFailed.for_field("step_number", "must be positive")
    else:
        clash = (
            db.query(MaintenanceInstruction.id)
            .filter(
                MaintenanceInstruction.checklist_item_id == item.id,
                MaintenanceInstruction.step_number == step_number,
            )
            .first()
        )
        if clash is not None:
            raise StateConflict.for_field("step_number", f"step {step_number} already exists for this item")

    instruction = MaintenanceInstruction(
        checklist_item_id=item.id,
        step_number=step_number,
        title=title,
        description=description.strip(),
        image_ref=image_ref,
        video_url=video_url,
        warning_text=warning_text,
        tip_text=tip_text,
    )
    db.add(instruction)
    db.flush()
    return instruction
