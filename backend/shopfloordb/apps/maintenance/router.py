# backend/shopfloordb/apps/maintenance/router.py
#
# HTTP surface of the maintenance app.
#
# Services flush but never commit; each write endpoint commits once after the
# service returns. Service errors are mapped onto HTTP status codes by
# `_raise_http`; the session is closed (and rolled back) on the way out.

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, timedelta
from typing import Iterator, List, NoReturn, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from shopfloordb.apps.accounts import models as account_models
from shopfloordb.apps.audit.schemas import AuditEventRead
from shopfloordb.apps.workflow import TransitionError
from shopfloordb.database import get_db, get_read_db
from shopfloordb.security import get_current_active_user, require_roles

from ...utils.timeutils import local_date, utcnow
from . import (
    assignments,
    checklist,
    escalations,
    generator,
    models,
    operating_hours,
    plans,
    queries,
    schemas,
    tasks,
)
from .errors import MaintenanceError

router = APIRouter(prefix="/maintenance", tags=["maintenance"])

_PLANNERS = (account_models.AccountRole.SHIFT_LEAD,)


def _raise_http(exc: Union[MaintenanceError, TransitionError]) -> NoReturn:
    status_code = exc.status_code if isinstance(exc, MaintenanceError) else status.HTTP_409_CONFLICT
    raise HTTPException(status_code=status_code, detail={"code": exc.code, "errors": exc.detail})


@contextmanager
def _service_errors() -> Iterator[None]:
    try:
        yield
    except (MaintenanceError, TransitionError) as exc:
        _raise_http(exc)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.post("/tasks/generate", response_model=schemas.GenerationSummaryRead)
def generate_tasks(
    payload: schemas.GenerateTasksRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        summary = generator.generate_tasks(
            db,
            now=payload.now,
            lookahead=timedelta(hours=payload.lookahead_hours),
            actor_user_id=current_user.id,
        )
    db.commit()
    return schemas.GenerationSummaryRead.model_validate(summary)


@router.post("/tasks", response_model=schemas.MaintenanceTaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: schemas.TaskCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        task = tasks.create_task(
            db,
            plan_id=payload.maintenance_plan_id,
            created_by_user_id=current_user.id,
            due_date=payload.due_date,
            assigned_to_user_id=payload.assigned_to_user_id,
            notes=payload.notes,
        )
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.get("/tasks", response_model=List[schemas.MaintenanceTaskRead])
def list_tasks(
    status_filter: Optional[models.TaskStatus] = Query(None, alias="status"),
    machine_id: Optional[int] = None,
    plan_id: Optional[int] = None,
    assigned_to_user_id: Optional[int] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return queries.list_tasks(
        db,
        status=status_filter,
        machine_id=machine_id,
        plan_id=plan_id,
        assigned_to_user_id=assigned_to_user_id,
        limit=limit,
    )


@router.get("/tasks/my", response_model=List[schemas.MaintenanceTaskRead])
def list_my_tasks(
    include_closed: bool = False,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return queries.my_tasks(db, user_id=current_user.id, include_closed=include_closed)


@router.get("/tasks/today", response_model=List[schemas.MaintenanceTaskRead])
def list_todays_tasks(
    on_date: Optional[date] = None,
    mine: bool = False,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return queries.todays_tasks(
        db,
        on_date=on_date or local_date(utcnow()),
        user_id=current_user.id if mine else None,
    )


@router.post(
    "/tasks/standalone",
    response_model=schemas.MaintenanceTaskRead,
    status_code=status.HTTP_201_CREATED,
)
def create_standalone_task(
    payload: schemas.StandaloneTaskCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        task = tasks.create_standalone_task(db, created_by_user_id=current_user.id, **payload.model_dump())
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.patch("/tasks/standalone/{task_id}", response_model=schemas.MaintenanceTaskRead)
def update_standalone_task(
    task_id: int,
    payload: schemas.StandaloneTaskUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        task = tasks.update_standalone_task(
            db,
            task_id=task_id,
            actor_user_id=current_user.id,
            changes=payload.model_dump(exclude_unset=True),
        )
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.post("/tasks/standalone/{task_id}/complete", response_model=schemas.MaintenanceTaskRead)
def complete_standalone_task(
    task_id: int,
    payload: schemas.TaskCompleteRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        task = tasks.complete_standalone_task(
            db,
            task_id=task_id,
            actor_user_id=current_user.id,
            notes=payload.notes,
            actual_duration_minutes=payload.actual_duration_minutes,
        )
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.delete("/tasks/standalone/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_standalone_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        tasks.delete_standalone_task(db, task_id=task_id, actor_user_id=current_user.id)
    db.commit()


@router.get("/tasks/{task_id}", response_model=schemas.MaintenanceTaskRead)
def get_task(
    task_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        task = tasks.get_task(db, task_id)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.get("/tasks/{task_id}/details", response_model=schemas.TaskDetailsRead)
def get_task_details(
    task_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        details = queries.task_details(db, task_id=task_id)
    return schemas.TaskDetailsRead.model_validate(details)


@router.get("/tasks/{task_id}/history", response_model=List[AuditEventRead])
def get_task_history(
    task_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        events = tasks.task_history(db, task_id=task_id)
    return [AuditEventRead.model_validate(event) for event in events]


@router.post("/tasks/{task_id}/assign", response_model=schemas.MaintenanceTaskRead)
def assign_task(
    task_id: int,
    payload: schemas.TaskAssignRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        task = assignments.assign_task(
            db,
            task_id=task_id,
            user_id=payload.user_id,
            actor_user_id=current_user.id,
            on_date=payload.on_date,
        )
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.post("/tasks/{task_id}/start", response_model=schemas.MaintenanceTaskRead)
def start_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        task = tasks.start_task(db, task_id=task_id, actor_user_id=current_user.id)
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.post("/tasks/{task_id}/complete", response_model=schemas.MaintenanceTaskRead)
def complete_task(
    task_id: int,
    payload: schemas.TaskCompleteRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        task = tasks.complete_task(
            db,
            task_id=task_id,
            actor_user_id=current_user.id,
            notes=payload.notes,
            actual_duration_minutes=payload.actual_duration_minutes,
        )
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.post("/tasks/{task_id}/cancel", response_model=schemas.MaintenanceTaskRead)
def cancel_task(
    task_id: int,
    payload: schemas.TaskCancelRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        task = tasks.cancel_task(db, task_id=task_id, actor_user_id=current_user.id, reason=payload.reason)
    db.commit()
    db.refresh(task)
    return schemas.MaintenanceTaskRead.model_validate(task)


@router.post("/tasks/{task_id}/checklist", response_model=schemas.ChecklistOutcomeRead)
def submit_checklist(
    task_id: int,
    payload: schemas.ChecklistSubmission,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    answers = [checklist.ChecklistAnswer(**answer.model_dump()) for answer in payload.answers]
    with _service_errors():
        outcome = checklist.submit_checklist(
            db,
            task_id=task_id,
            answers=answers,
            actor_user_id=current_user.id,
        )
    db.commit()
    return schemas.ChecklistOutcomeRead(
        task_id=outcome.task_id,
        halted=outcome.halted,
        items=[schemas.ItemOutcomeRead.model_validate(item) for item in outcome.items],
        escalation_ids=[escalation.id for escalation in outcome.escalations],
        not_evaluated=outcome.not_evaluated,
        progress=schemas.ChecklistProgressRead.model_validate(outcome.progress) if outcome.progress else None,
    )


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------


@router.post("/escalations", response_model=schemas.EscalationRead, status_code=status.HTTP_201_CREATED)
def create_escalation(
    payload: schemas.EscalationCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        task = tasks.get_task_for_update(db, payload.maintenance_task_id)
        escalation = escalations.open_escalation(
            db,
            task=task,
            reason=payload.reason,
            originator_user_id=current_user.id,
            checklist_item_id=payload.checklist_item_id,
            photo_ref=payload.photo_ref,
            blocks_task=payload.blocks_task,
            escalation_level=payload.escalation_level,
        )
    db.commit()
    db.refresh(escalation)
    return schemas.EscalationRead.model_validate(escalation)


@router.get("/escalations", response_model=List[schemas.EscalationRead])
def list_escalations(
    status_filter: Optional[models.EscalationStatus] = Query(None, alias="status"),
    escalated_to_user_id: Optional[int] = None,
    escalation_level: Optional[int] = Query(None, ge=1, le=3),
    machine_id: Optional[int] = None,
    task_id: Optional[int] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return escalations.list_escalations(
        db,
        status=status_filter,
        escalated_to_user_id=escalated_to_user_id,
        escalation_level=escalation_level,
        machine_id=machine_id,
        task_id=task_id,
        limit=limit,
    )


@router.get("/escalations/unassigned", response_model=List[schemas.EscalationRead])
def list_unassigned_escalations(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    return escalations.list_unassigned(db)


@router.get("/escalations/my", response_model=List[schemas.EscalationRead])
def list_my_escalations(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return escalations.list_for_user(db, user_id=current_user.id)


@router.get("/escalations/stats", response_model=schemas.EscalationStatsRead)
def escalation_stats(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        stats = escalations.escalation_stats(db, days=days)
    return schemas.EscalationStatsRead.model_validate(stats)


@router.get("/escalations/{escalation_id}", response_model=schemas.EscalationRead)
def get_escalation(
    escalation_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        escalation = escalations.get_escalation(db, escalation_id)
    return schemas.EscalationRead.model_validate(escalation)


@router.post("/escalations/{escalation_id}/acknowledge", response_model=schemas.EscalationRead)
def acknowledge_escalation(
    escalation_id: int,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        escalation = escalations.acknowledge(db, escalation_id=escalation_id, actor_user_id=current_user.id)
    db.commit()
    db.refresh(escalation)
    return schemas.EscalationRead.model_validate(escalation)


@router.post("/escalations/{escalation_id}/resolve", response_model=schemas.EscalationRead)
def resolve_escalation(
    escalation_id: int,
    payload: schemas.EscalationResolveRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        escalation = escalations.resolve(
            db,
            escalation_id=escalation_id,
            actor_user_id=current_user.id,
            resolution=payload.resolution,
        )
    db.commit()
    db.refresh(escalation)
    return schemas.EscalationRead.model_validate(escalation)


@router.post("/escalations/{escalation_id}/close", response_model=schemas.EscalationRead)
def close_escalation(
    escalation_id: int,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        escalation = escalations.close(db, escalation_id=escalation_id, actor_user_id=current_user.id)
    db.commit()
    db.refresh(escalation)
    return schemas.EscalationRead.model_validate(escalation)


@router.post("/escalations/{escalation_id}/reescalate", response_model=schemas.EscalationRead)
def reescalate(
    escalation_id: int,
    payload: schemas.EscalationReescalateRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        escalation = escalations.reescalate(
            db,
            escalation_id=escalation_id,
            actor_user_id=current_user.id,
            reason=payload.reason,
        )
    db.commit()
    db.refresh(escalation)
    return schemas.EscalationRead.model_validate(escalation)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.post("/assignments", response_model=schemas.TaskAssignmentRead, status_code=status.HTTP_201_CREATED)
def create_assignment(
    payload: schemas.TaskAssignmentCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        assignment = assignments.create_assignment(
            db,
            user_id=payload.user_id,
            plan_id=payload.maintenance_plan_id,
            assignment_date=payload.assignment_date,
            assigned_by_user_id=current_user.id,
            priority_order=payload.priority_order,
            notes=payload.notes,
        )
    db.commit()
    db.refresh(assignment)
    return schemas.TaskAssignmentRead.model_validate(assignment)


@router.post("/assignments/match", response_model=schemas.MatchResultRead)
def match_assignments(
    payload: schemas.MatchRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        result = assignments.match_daily_assignments(
            db,
            target_date=payload.target_date,
            plan_ids=payload.plan_ids,
            assigned_by_user_id=current_user.id,
        )
    db.commit()
    return schemas.MatchResultRead.model_validate(result)


@router.get("/assignments", response_model=List[schemas.TaskAssignmentRead])
def list_assignments(
    assignment_date: Optional[date] = None,
    user_id: Optional[int] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return assignments.list_assignments(db, assignment_date=assignment_date, user_id=user_id)


# ---------------------------------------------------------------------------
# Operating hours
# ---------------------------------------------------------------------------


@router.post(
    "/machines/{machine_id}/operating-hours",
    response_model=schemas.ReadingOutcomeRead,
    status_code=status.HTTP_201_CREATED,
)
def record_operating_hours(
    machine_id: int,
    payload: schemas.OperatingHoursReadingCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        outcome = operating_hours.record_reading(
            db,
            machine_id=machine_id,
            recorded_hours=payload.recorded_hours,
            recorded_by_user_id=current_user.id,
            source=payload.source,
            notes=payload.notes,
        )
    db.commit()
    db.refresh(outcome.reading)
    return schemas.ReadingOutcomeRead(
        reading=schemas.OperatingHoursReadingRead.model_validate(outcome.reading),
        current_operating_hours=outcome.machine.current_operating_hours,
        is_anomaly=outcome.is_anomaly,
        due_plan_ids=[plan.id for plan in outcome.due_plans],
    )


@router.get("/machines/{machine_id}/operating-hours", response_model=List[schemas.OperatingHoursReadingRead])
def list_operating_hours(
    machine_id: int,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return operating_hours.list_readings(db, machine_id=machine_id, limit=limit)


@router.get("/machines/{machine_id}/operating-hours/stats", response_model=schemas.HoursStatisticsRead)
def operating_hours_stats(
    machine_id: int,
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        stats = operating_hours.hours_statistics(db, machine_id=machine_id, days=days)
    return schemas.HoursStatisticsRead.model_validate(stats)


@router.get("/machines/{machine_id}/stats", response_model=schemas.MachineMaintenanceStatsRead)
def machine_maintenance_stats(
    machine_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        stats = queries.machine_maintenance_stats(db, machine_id=machine_id, now=utcnow())
    return schemas.MachineMaintenanceStatsRead(
        machine_id=stats.machine.id,
        machine_name=stats.machine.name,
        location=stats.machine.location,
        current_operating_hours=float(stats.machine.current_operating_hours or 0.0),
        total_plans=stats.total_plans,
        overdue_count=stats.overdue_count,
        due_today_count=stats.due_today_count,
        due_week_count=stats.due_week_count,
        completed_30_days=stats.completed_30_days,
        total_duration_30_days=stats.total_duration_30_days,
        recent_tasks=[schemas.MaintenanceTaskRead.model_validate(task) for task in stats.recent_tasks],
        upcoming_plans=[schemas.UpcomingPlanRead.model_validate(plan) for plan in stats.upcoming_plans],
    )


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@router.post("/plans", response_model=schemas.MaintenancePlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: schemas.MaintenancePlanCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        plan = plans.create_plan(db, created_by_user_id=current_user.id, **payload.model_dump())
    db.commit()
    db.refresh(plan)
    return schemas.MaintenancePlanRead.model_validate(plan)


@router.get("/plans", response_model=List[schemas.MaintenancePlanRead])
def list_plans(
    machine_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return plans.list_plans(db, machine_id=machine_id, is_active=is_active)


@router.get("/plans/{plan_id}", response_model=schemas.MaintenancePlanRead)
def get_plan(
    plan_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with _service_errors():
        plan = plans.get_plan(db, plan_id)
    return schemas.MaintenancePlanRead.model_validate(plan)


@router.patch("/plans/{plan_id}", response_model=schemas.MaintenancePlanRead)
def update_plan(
    plan_id: int,
    payload: schemas.MaintenancePlanUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        plan = plans.update_plan(
            db,
            plan_id=plan_id,
            actor_user_id=current_user.id,
            changes=payload.model_dump(exclude_unset=True),
        )
    db.commit()
    db.refresh(plan)
    return schemas.MaintenancePlanRead.model_validate(plan)


@router.post(
    "/plans/{plan_id}/checklist-items",
    response_model=schemas.ChecklistItemRead,
    status_code=status.HTTP_201_CREATED,
)
def add_checklist_item(
    plan_id: int,
    payload: schemas.ChecklistItemCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        item = plans.add_checklist_item(db, plan_id=plan_id, **payload.model_dump())
    db.commit()
    db.refresh(item)
    return schemas.ChecklistItemRead.model_validate(item)


@router.post(
    "/checklist-items/{item_id}/instructions",
    response_model=schemas.MaintenanceInstructionRead,
    status_code=status.HTTP_201_CREATED,
)
def add_instruction(
    item_id: int,
    payload: schemas.MaintenanceInstructionCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        instruction = plans.add_instruction(db, checklist_item_id=item_id, **payload.model_dump())
    db.commit()
    db.refresh(instruction)
    return schemas.MaintenanceInstructionRead.model_validate(instruction)


@router.patch("/checklist-items/{item_id}", response_model=schemas.ChecklistItemRead)
def update_checklist_item(
    item_id: int,
    payload: schemas.ChecklistItemUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        item = plans.update_checklist_item(
            db,
            item_id=item_id,
            actor_user_id=current_user.id,
            changes=payload.model_dump(exclude_unset=True),
        )
    db.commit()
    db.refresh(item)
    return schemas.ChecklistItemRead.model_validate(item)


@router.delete("/checklist-items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_checklist_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        plans.delete_checklist_item(db, item_id=item_id, actor_user_id=current_user.id)
    db.commit()


@router.post("/plans/{plan_id}/checklist-items/reorder", response_model=List[schemas.ChecklistItemRead])
def reorder_checklist_items(
    plan_id: int,
    payload: schemas.ChecklistReorderRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*_PLANNERS)),
):
    with _service_errors():
        items = plans.reorder_checklist_items(
            db,
            plan_id=plan_id,
            order=[(entry.id, entry.sequence) for entry in payload.items],
            actor_user_id=current_user.id,
        )
    db.commit()
    return [schemas.ChecklistItemRead.model_validate(item) for item in items]


@router.get("/maintenance-types", response_model=List[schemas.MaintenanceTypeRead])
def list_maintenance_types(
    is_active: Optional[bool] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return plans.list_maintenance_types(db, is_active=is_active)


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------


@router.get("/overview/due", response_model=List[schemas.DueOverviewRowRead])
def due_overview(
    status_filter: Optional[models.DueStatus] = Query(None, alias="status"),
    machine_id: Optional[int] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    rows = queries.due_overview(db, now=utcnow(), status=status_filter, machine_id=machine_id)
    return [schemas.DueOverviewRowRead.model_validate(row) for row in rows]


@router.get("/overview/machines", response_model=List[schemas.MachineStatusRowRead])
def machine_overview(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return [schemas.MachineStatusRowRead.model_validate(row) for row in queries.machine_status_rollup(db, now=utcnow())]


@router.get("/overview/dashboard", response_model=schemas.DashboardStatsRead)
def dashboard(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return schemas.DashboardStatsRead.model_validate(queries.dashboard_stats(db, now=utcnow()))
