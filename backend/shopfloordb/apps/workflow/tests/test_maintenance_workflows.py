from __future__ import annotations

import pytest

from shopfloordb.apps.audit import models as audit_models
from shopfloordb.apps.machines import models as machine_models
from shopfloordb.apps.maintenance import models as maintenance_models
from shopfloordb.apps.workflow import TransitionError, allowed_targets, apply_transition


def _create_task(db) -> maintenance_models.MaintenanceTask:
    machine = machine_models.Machine(name="Wash cabinet", current_operating_hours=0.0)
    db.add(machine)
    db.flush()
    task = maintenance_models.MaintenanceTask(
        task_type=maintenance_models.TaskType.STANDALONE,
        machine_id=machine.id,
        title="Change wash fluid",
        status=maintenance_models.TaskStatus.IN_PROGRESS,
    )
    db.add(task)
    db.commit()
    return task


def test_allowed_targets():
    assert allowed_targets("maintenance_escalation", "OPEN") == {"ACKNOWLEDGED"}
    assert allowed_targets("maintenance_escalation", "CLOSED") == set()
    assert "COMPLETED" in allowed_targets("maintenance_standalone_task", "PENDING")
    assert "COMPLETED" not in allowed_targets("maintenance_task", "PENDING")
    assert allowed_targets("unknown_entity", "OPEN") == set()


def test_apply_transition_writes_audit_event(db_session):
    apply_transition(
        db_session,
        actor_user_id=None,
        entity_type="maintenance_task",
        entity_id=42,
        from_state="PENDING",
        to_state="CANCELLED",
        before_obj={"task_id": 42},
        after_obj={"task_id": 42, "reason": "duplicate"},
    )

    event = (
        db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.entity_type == "maintenance_task", audit_models.AuditEvent.action == "transition")
        .one()
    )
    assert event.entity_id == "42"
    assert event.before["status"] == "PENDING"
    assert event.after["status"] == "CANCELLED"
    assert event.after["reason"] == "duplicate"


def test_unknown_workflow_is_rejected(db_session):
    with pytest.raises(TransitionError) as excinfo:
        apply_transition(
            db_session,
            actor_user_id=None,
            entity_type="coffee_machine",
            entity_id=1,
            from_state="EMPTY",
            to_state="FULL",
            before_obj=None,
            after_obj=None,
        )
    assert excinfo.value.code == "invalid_transition"


def test_halted_task_cannot_complete(db_session):
    task = _create_task(db_session)
    db_session.add(
        maintenance_models.Escalation(
            maintenance_task_id=task.id,
            escalation_level=1,
            reason="Leak",
            blocks_task=True,
            status=maintenance_models.EscalationStatus.ACKNOWLEDGED,
        )
    )
    db_session.commit()

    with pytest.raises(TransitionError) as excinfo:
        apply_transition(
            db_session,
            actor_user_id=None,
            entity_type="maintenance_task",
            entity_id=task.id,
            from_state="IN_PROGRESS",
            to_state="COMPLETED",
            before_obj={"task_id": task.id},
            after_obj={"task_id": task.id, "plan_id": None},
        )
    assert excinfo.value.code == "missing_requirements"
    assert excinfo.value.detail[0]["field"] == "escalations"


def test_resolution_text_required(db_session):
    with pytest.raises(TransitionError) as excinfo:
        apply_transition(
            db_session,
            actor_user_id=1,
            entity_type="maintenance_escalation",
            entity_id=1,
            from_state="ACKNOWLEDGED",
            to_state="RESOLVED",
            before_obj={"task_id": 1},
            after_obj={"task_id": 1, "actor_user_id": 1, "resolution": "   "},
        )
    assert [item["field"] for item in excinfo.value.detail] == ["resolution"]
