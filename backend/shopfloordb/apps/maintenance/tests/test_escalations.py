from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shopfloordb.apps.accounts import models as account_models
from shopfloordb.apps.audit import models as audit_models
from shopfloordb.apps.machines import models as machine_models
from shopfloordb.apps.maintenance import escalations
from shopfloordb.apps.maintenance import models as maintenance_models
from shopfloordb.apps.maintenance.errors import ReferenceNotFound, StateConflict, ValidationFailed
from shopfloordb.apps.workflow import TransitionError

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def _create_user(db, staff_code: str, skill: int, *, available: bool = True) -> account_models.User:
    user = account_models.User(
        staff_code=staff_code,
        email=f"{staff_code.lower()}@example.com",
        full_name=f"{staff_code} User",
        role=account_models.AccountRole.TECHNICIAN,
        maintenance_skill_level=skill,
        is_active=True,
        is_available=available,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _create_task(db, status=maintenance_models.TaskStatus.IN_PROGRESS) -> maintenance_models.MaintenanceTask:
    machine = machine_models.Machine(name="Hermle C42", current_operating_hours=0.0)
    db.add(machine)
    db.flush()
    task = maintenance_models.MaintenanceTask(
        task_type=maintenance_models.TaskType.STANDALONE,
        machine_id=machine.id,
        title="Coolant pump noise",
        status=status,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def test_next_escalation_level_follows_originator_tier():
    assert escalations.next_escalation_level(1) == 1
    assert escalations.next_escalation_level(2) == 2
    assert escalations.next_escalation_level(3) == 3
    assert escalations.next_escalation_level(None) == 1
    with pytest.raises(ValidationFailed):
        escalations.next_escalation_level(4)


def test_target_skill_level_is_capped_at_master():
    assert escalations.target_skill_level(1) == 2
    assert escalations.target_skill_level(2) == 3
    assert escalations.target_skill_level(3) == 3


def test_routing_prefers_least_loaded_and_skips_originator(db_session):
    originator = _create_user(db_session, "OPR-0", 2)
    master_a = _create_user(db_session, "MST-A", 3)
    master_b = _create_user(db_session, "MST-B", 3)
    task = _create_task(db_session)

    first = escalations.open_escalation(db_session, task=task, reason="Spindle vibration", originator_user_id=originator.id)
    second = escalations.open_escalation(db_session, task=task, reason="Axis drift", originator_user_id=originator.id)
    db_session.commit()

    assert first.escalation_level == 2
    assert first.escalated_to_user_id == master_a.id
    assert second.escalated_to_user_id == master_b.id

    self_escalation = escalations.open_escalation(
        db_session, task=task, reason="Second opinion", originator_user_id=master_a.id
    )
    assert self_escalation.escalation_level == 3
    assert self_escalation.escalated_to_user_id == master_b.id


def test_no_available_user_leaves_escalation_unassigned(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    _create_user(db_session, "OPR-OFF", 2, available=False)
    task = _create_task(db_session)

    escalation = escalations.open_escalation(db_session, task=task, reason="Belt worn", originator_user_id=helper.id)
    db_session.commit()

    assert escalation.escalated_to_user_id is None
    assert [row.id for row in escalations.list_unassigned(db_session)] == [escalation.id]


def test_escalation_requires_reason_and_open_task(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    task = _create_task(db_session)
    with pytest.raises(ValidationFailed):
        escalations.open_escalation(db_session, task=task, reason="  ", originator_user_id=helper.id)

    closed = _create_task(db_session, status=maintenance_models.TaskStatus.COMPLETED)
    with pytest.raises(StateConflict):
        escalations.open_escalation(db_session, task=closed, reason="Too late", originator_user_id=helper.id)


def test_full_lifecycle_is_audited(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    operator = _create_user(db_session, "OPR-1", 2)
    task = _create_task(db_session)
    escalation = escalations.open_escalation(db_session, task=task, reason="Chip conveyor jammed", originator_user_id=helper.id)
    db_session.commit()

    escalations.acknowledge(db_session, escalation_id=escalation.id, actor_user_id=operator.id, now=NOW)
    escalations.resolve(
        db_session,
        escalation_id=escalation.id,
        actor_user_id=operator.id,
        resolution="  Cleared jam, adjusted guide  ",
        now=NOW + timedelta(hours=2),
    )
    escalations.close(db_session, escalation_id=escalation.id, actor_user_id=helper.id, now=NOW + timedelta(hours=3))
    db_session.commit()

    row = escalations.get_escalation_for_update(db_session, escalation.id)
    assert row.status == maintenance_models.EscalationStatus.CLOSED
    assert row.acknowledged_by_user_id == operator.id
    assert row.resolved_by_user_id == operator.id
    assert row.closed_by_user_id == helper.id
    assert row.resolution == "Cleared jam, adjusted guide"

    transitions = (
        db_session.query(audit_models.AuditEvent)
        .filter(
            audit_models.AuditEvent.entity_type == escalations.WORKFLOW,
            audit_models.AuditEvent.entity_id == str(escalation.id),
            audit_models.AuditEvent.action == "transition",
        )
        .all()
    )
    assert sorted(event.after["status"] for event in transitions) == ["ACKNOWLEDGED", "CLOSED", "RESOLVED"]


def test_transitions_cannot_skip_or_move_backwards(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    operator = _create_user(db_session, "OPR-1", 2)
    task = _create_task(db_session)
    escalation = escalations.open_escalation(db_session, task=task, reason="Oil mist", originator_user_id=helper.id)
    db_session.commit()

    with pytest.raises(TransitionError) as excinfo:
        escalations.resolve(db_session, escalation_id=escalation.id, actor_user_id=operator.id, resolution="done")
    assert excinfo.value.code == "invalid_transition"

    with pytest.raises(TransitionError):
        escalations.close(db_session, escalation_id=escalation.id, actor_user_id=operator.id)

    with pytest.raises(TransitionError) as excinfo:
        escalations.acknowledge(db_session, escalation_id=escalation.id, actor_user_id=None)
    assert excinfo.value.code == "missing_requirements"

    escalations.acknowledge(db_session, escalation_id=escalation.id, actor_user_id=operator.id)
    with pytest.raises(TransitionError) as excinfo:
        escalations.resolve(db_session, escalation_id=escalation.id, actor_user_id=operator.id, resolution=None)
    assert excinfo.value.detail[0]["field"] == "resolution"

    with pytest.raises(TransitionError):
        escalations.acknowledge(db_session, escalation_id=escalation.id, actor_user_id=operator.id)


def test_acknowledging_unassigned_escalation_takes_ownership(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    shift_lead = _create_user(db_session, "LEAD-1", 3)
    task = _create_task(db_session)
    escalation = escalations.open_escalation(
        db_session, task=task, reason="Door interlock", originator_user_id=helper.id, escalation_level=1
    )
    assert escalation.escalated_to_user_id is None

    escalations.acknowledge(db_session, escalation_id=escalation.id, actor_user_id=shift_lead.id)
    assert escalation.escalated_to_user_id == shift_lead.id
    assert escalations.list_unassigned(db_session) == []


def test_reescalate_closes_current_and_opens_next_level(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    operator = _create_user(db_session, "OPR-1", 2)
    master = _create_user(db_session, "MST-1", 3)
    task = _create_task(db_session)
    escalation = escalations.open_escalation(
        db_session,
        task=task,
        reason="Leak at rotary union",
        originator_user_id=helper.id,
        photo_ref="photos/union.jpg",
        blocks_task=True,
    )
    db_session.commit()

    child = escalations.reescalate(
        db_session, escalation_id=escalation.id, actor_user_id=operator.id, reason="Needs a spare part"
    )
    db_session.commit()

    parent = escalations.get_escalation_for_update(db_session, escalation.id)
    assert parent.status == maintenance_models.EscalationStatus.CLOSED
    assert parent.resolution.startswith("Re-escalated to level 2")
    assert child.escalation_level == 2
    assert child.parent_escalation_id == escalation.id
    assert child.escalated_to_user_id == master.id
    assert child.blocks_task is True
    assert child.photo_ref == "photos/union.jpg"
    assert escalations.has_blocking_escalation(db_session, task_id=task.id) is True

    top = escalations.reescalate(db_session, escalation_id=child.id, actor_user_id=master.id)
    assert top.escalation_level == 3
    with pytest.raises(StateConflict):
        escalations.reescalate(db_session, escalation_id=top.id, actor_user_id=master.id)


def test_listing_and_stats(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    operator = _create_user(db_session, "OPR-1", 2)
    task = _create_task(db_session)
    first = escalations.open_escalation(db_session, task=task, reason="A", originator_user_id=helper.id)
    escalations.open_escalation(db_session, task=task, reason="B", originator_user_id=operator.id)
    db_session.commit()
    escalations.acknowledge(db_session, escalation_id=first.id, actor_user_id=operator.id)
    escalations.resolve(db_session, escalation_id=first.id, actor_user_id=operator.id, resolution="Fixed")
    db_session.commit()

    assert escalations.list_for_user(db_session, user_id=operator.id) == []
    assert len(escalations.list_escalations(db_session, task_id=task.id)) == 2
    assert len(escalations.list_escalations(db_session, machine_id=task.machine_id)) == 2
    assert len(escalations.list_escalations(db_session, escalation_level=2)) == 1

    stats = escalations.escalation_stats(db_session, days=7)
    assert stats.total == 2
    assert stats.by_status["resolved"] == 1
    assert stats.by_status["open"] == 1
    assert stats.by_level[1] == 1
    assert stats.by_level[2] == 1
    assert stats.unassigned == 1
    assert stats.average_resolution_hours is not None


def test_checklist_item_must_belong_to_the_task_plan(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    task = _create_task(db_session)
    other_machine = machine_models.Machine(name="Mazak QTN 200", current_operating_hours=0.0)
    db_session.add(other_machine)
    db_session.flush()
    other_plan = maintenance_models.MaintenancePlan(
        machine_id=other_machine.id,
        title="Check hydraulic pressure",
        interval_type=maintenance_models.IntervalType.DAYS,
        interval_value=7,
    )
    db_session.add(other_plan)
    db_session.flush()
    foreign_item = maintenance_models.ChecklistItem(
        maintenance_plan_id=other_plan.id,
        sequence=1,
        title="Pressure gauge reading",
        decision_type=maintenance_models.DecisionType.YES_NO,
    )
    db_session.add(foreign_item)
    db_session.commit()

    with pytest.raises(ReferenceNotFound):
        escalations.open_escalation(
            db_session,
            task=task,
            reason="Gauge reads zero",
            originator_user_id=helper.id,
            checklist_item_id=foreign_item.id,
        )
    with pytest.raises(ReferenceNotFound):
        escalations.open_escalation(
            db_session,
            task=task,
            reason="Gauge reads zero",
            originator_user_id=helper.id,
            checklist_item_id=foreign_item.id + 100,
        )
    assert db_session.query(maintenance_models.Escalation).count() == 0


def test_get_escalation_returns_row_or_raises(db_session):
    helper = _create_user(db_session, "HLP-1", 1)
    task = _create_task(db_session)
    escalation = escalations.open_escalation(
        db_session, task=task, reason="Coolant leak", originator_user_id=helper.id
    )
    db_session.commit()

    assert escalations.get_escalation(db_session, escalation.id).reason == "Coolant leak"
    with pytest.raises(ReferenceNotFound):
        escalations.get_escalation(db_session, escalation.id + 1)
