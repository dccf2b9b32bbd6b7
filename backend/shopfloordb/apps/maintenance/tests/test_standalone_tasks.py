from __future__ import annotations

from datetime import datetime, timezone

import pytest

from shopfloordb.apps.accounts import models as account_models
from shopfloordb.apps.audit import models as audit_models
from shopfloordb.apps.machines import models as machine_models
from shopfloordb.apps.maintenance import checklist
from shopfloordb.apps.maintenance import models as maintenance_models
from shopfloordb.apps.maintenance import tasks as task_services
from shopfloordb.apps.maintenance.errors import ReferenceNotFound, StateConflict, ValidationFailed
from shopfloordb.apps.maintenance.models import Priority, TaskStatus, TaskType

NOW = datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc)


def _create_user(db, staff_code: str = "LEAD-1") -> account_models.User:
    user = account_models.User(
        staff_code=staff_code,
        email=f"{staff_code.lower()}@example.com",
        full_name=f"{staff_code} User",
        role=account_models.AccountRole.SHIFT_LEAD,
        maintenance_skill_level=3,
        is_active=True,
        is_available=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _create_machine(db) -> machine_models.Machine:
    machine = machine_models.Machine(name="Grob G350", location="Hall D", current_operating_hours=812.5)
    db.add(machine)
    db.commit()
    return machine


def test_create_without_assignee_is_pending(db_session):
    lead = _create_user(db_session)
    machine = _create_machine(db_session)

    task = task_services.create_standalone_task(
        db_session,
        title="  Replace broken work light  ",
        created_by_user_id=lead.id,
        machine_id=machine.id,
        priority=Priority.HIGH,
        now=NOW,
    )
    db_session.commit()

    assert task.task_type == TaskType.STANDALONE
    assert task.maintenance_plan_id is None
    assert task.status == TaskStatus.PENDING
    assert task.title == "Replace broken work light"
    assert task.location == "Hall D"
    assert task.display_title == "Replace broken work light"

    event = (
        db_session.query(audit_models.AuditEvent)
        .filter(
            audit_models.AuditEvent.entity_type == task_services.STANDALONE_WORKFLOW,
            audit_models.AuditEvent.action == "CREATED",
        )
        .one()
    )
    assert event.entity_id == str(task.id)


def test_create_with_assignee_is_assigned(db_session):
    lead = _create_user(db_session)
    worker = _create_user(db_session, "TEC-7")

    task = task_services.create_standalone_task(
        db_session,
        title="Sweep chips behind cell 3",
        created_by_user_id=lead.id,
        location="Cell 3",
        assigned_to_user_id=worker.id,
        now=NOW,
    )

    assert task.status == TaskStatus.ASSIGNED
    assert task.assigned_to_user_id == worker.id
    assert task.location == "Cell 3"


def test_create_validates_input(db_session):
    lead = _create_user(db_session)
    with pytest.raises(ValidationFailed):
        task_services.create_standalone_task(db_session, title=" ", created_by_user_id=lead.id)
    with pytest.raises(ReferenceNotFound):
        task_services.create_standalone_task(db_session, title="Fix door", created_by_user_id=lead.id, machine_id=999)
    with pytest.raises(ReferenceNotFound):
        task_services.create_standalone_task(
            db_session, title="Fix door", created_by_user_id=lead.id, assigned_to_user_id=999
        )


def test_complete_directly_from_pending(db_session):
    lead = _create_user(db_session)
    machine = _create_machine(db_session)
    task = task_services.create_standalone_task(
        db_session, title="Refill hand soap", created_by_user_id=lead.id, machine_id=machine.id, now=NOW
    )
    db_session.commit()

    done = task_services.complete_task(db_session, task_id=task.id, actor_user_id=lead.id, notes="Done", now=NOW)
    db_session.commit()

    assert done.status == TaskStatus.COMPLETED
    assert done.completed_by_user_id == lead.id
    assert done.operating_hours_at_completion == 812.5
    assert done.notes == "Done"


def test_update_changes_allowed_fields_only(db_session):
    lead = _create_user(db_session)
    task = task_services.create_standalone_task(db_session, title="Fix leaking tap", created_by_user_id=lead.id)
    db_session.commit()

    updated = task_services.update_standalone_task(
        db_session,
        task_id=task.id,
        actor_user_id=lead.id,
        changes={"title": "Fix leaking tap in wash room", "priority": Priority.LOW},
    )
    assert updated.title == "Fix leaking tap in wash room"
    assert updated.priority == Priority.LOW

    with pytest.raises(ValidationFailed):
        task_services.update_standalone_task(
            db_session, task_id=task.id, actor_user_id=lead.id, changes={"status": TaskStatus.COMPLETED}
        )

    task_services.complete_standalone_task(db_session, task_id=task.id, actor_user_id=lead.id, now=NOW)
    with pytest.raises(StateConflict):
        task_services.update_standalone_task(
            db_session, task_id=task.id, actor_user_id=lead.id, changes={"notes": "late edit"}
        )


def test_delete_open_task_but_keep_completed_history(db_session):
    lead = _create_user(db_session)
    open_task = task_services.create_standalone_task(db_session, title="Tidy tool wall", created_by_user_id=lead.id)
    done_task = task_services.create_standalone_task(db_session, title="Label drawers", created_by_user_id=lead.id)
    db_session.commit()
    task_services.complete_task(db_session, task_id=done_task.id, actor_user_id=lead.id, now=NOW)
    db_session.commit()

    task_services.delete_standalone_task(db_session, task_id=open_task.id, actor_user_id=lead.id)
    db_session.commit()
    assert db_session.get(maintenance_models.MaintenanceTask, open_task.id) is None

    with pytest.raises(StateConflict):
        task_services.delete_standalone_task(db_session, task_id=done_task.id, actor_user_id=lead.id)


def test_standalone_tasks_have_no_checklist(db_session):
    lead = _create_user(db_session)
    task = task_services.create_standalone_task(db_session, title="Check fire blanket", created_by_user_id=lead.id)
    task_services.start_task(db_session, task_id=task.id, actor_user_id=lead.id, now=NOW)
    db_session.commit()

    with pytest.raises(StateConflict):
        checklist.submit_checklist(db_session, task_id=task.id, actor_user_id=lead.id, answers=[])
