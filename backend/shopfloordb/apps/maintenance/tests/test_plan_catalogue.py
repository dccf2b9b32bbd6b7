from __future__ import annotations

from datetime import datetime, timezone

import pytest

from shopfloordb.apps.audit import models as audit_models
from shopfloordb.apps.machines import models as machine_models
from shopfloordb.apps.maintenance import models as maintenance_models
from shopfloordb.apps.maintenance import plans as plan_services
from shopfloordb.apps.maintenance.decisions import DecisionType, FailureAction
from shopfloordb.apps.maintenance.errors import ReferenceNotFound, StateConflict, ValidationFailed

NOW = datetime(2026, 3, 10, 7, 0, tzinfo=timezone.utc)


def _create_plan(db, title: str = "Weekly spindle check"):
    machine = machine_models.Machine(name="Haas VF-2", location="Hall D", current_operating_hours=0.0)
    db.add(machine)
    db.commit()
    plan = plan_services.create_plan(
        db,
        machine_id=machine.id,
        title=title,
        created_by_user_id=None,
        interval_type=maintenance_models.IntervalType.WEEKS,
        interval_value=1,
        now=NOW,
    )
    db.commit()
    return plan


def _add_items(db, plan, *titles):
    items = [plan_services.add_checklist_item(db, plan_id=plan.id, title=title) for title in titles]
    db.commit()
    return items


def test_maintenance_types_are_listed_by_name(db_session):
    for name, active in (("Lubrication", True), ("Calibration", True), ("Retired checks", False)):
        db_session.add(maintenance_models.MaintenanceType(name=name, is_active=active))
    db_session.commit()

    assert [row.name for row in plan_services.list_maintenance_types(db_session)] == [
        "Calibration",
        "Lubrication",
        "Retired checks",
    ]
    assert [row.name for row in plan_services.list_maintenance_types(db_session, is_active=True)] == [
        "Calibration",
        "Lubrication",
    ]


def test_explicit_sequence_must_be_free(db_session):
    plan = _create_plan(db_session)
    _add_items(db_session, plan, "Check oil")

    with pytest.raises(StateConflict) as excinfo:
        plan_services.add_checklist_item(db_session, plan_id=plan.id, title="Check air", sequence=1)
    assert excinfo.value.code == "duplicate_sequence"

    other = _create_plan(db_session, "Other plan")
    item = plan_services.add_checklist_item(db_session, plan_id=other.id, title="Check air", sequence=1)
    assert item.sequence == 1


def test_update_checklist_item_revalidates_decision(db_session):
    plan = _create_plan(db_session)
    (item,) = _add_items(db_session, plan, "Coolant concentration")

    with pytest.raises(ValidationFailed):
        plan_services.update_checklist_item(
            db_session,
            item_id=item.id,
            actor_user_id=None,
            changes={"decision_type": DecisionType.YES_NO},
        )

    updated = plan_services.update_checklist_item(
        db_session,
        item_id=item.id,
        actor_user_id=None,
        changes={
            "title": "  Coolant concentration (Brix) ",
            "decision_type": DecisionType.MEASUREMENT,
            "min_value": 6.0,
            "max_value": 9.0,
            "measurement_unit": "%",
            "on_failure_action": FailureAction.ESCALATE,
        },
    )
    db_session.commit()

    assert updated.title == "Coolant concentration (Brix)"
    assert updated.decision_type == DecisionType.MEASUREMENT
    assert updated.on_failure_action == FailureAction.ESCALATE
    event = (
        db_session.query(audit_models.AuditEvent)
        .filter(audit_models.AuditEvent.action == "CHECKLIST_ITEM_UPDATED")
        .one()
    )
    assert event.entity_id == str(plan.id)


def test_update_checklist_item_rejects_taken_sequence_and_unknown_fields(db_session):
    plan = _create_plan(db_session)
    first, second = _add_items(db_session, plan, "Check oil", "Check air")

    with pytest.raises(StateConflict):
        plan_services.update_checklist_item(
            db_session, item_id=second.id, actor_user_id=None, changes={"sequence": first.sequence}
        )
    with pytest.raises(ValidationFailed):
        plan_services.update_checklist_item(
            db_session, item_id=second.id, actor_user_id=None, changes={"maintenance_plan_id": 99}
        )
    with pytest.raises(ReferenceNotFound):
        plan_services.update_checklist_item(db_session, item_id=404, actor_user_id=None, changes={})

    same = plan_services.update_checklist_item(
        db_session, item_id=second.id, actor_user_id=None, changes={"sequence": second.sequence}
    )
    assert same.sequence == 2


def test_delete_checklist_item(db_session):
    plan = _create_plan(db_session)
    keep, drop = _add_items(db_session, plan, "Check oil", "Check air")
    plan_services.add_instruction(db_session, checklist_item_id=drop.id, description="Open the service hatch")
    db_session.commit()

    plan_services.delete_checklist_item(db_session, item_id=drop.id, actor_user_id=None)
    db_session.commit()

    remaining = db_session.query(maintenance_models.ChecklistItem).all()
    assert [item.id for item in remaining] == [keep.id]
    assert db_session.query(maintenance_models.MaintenanceInstruction).count() == 0
    with pytest.raises(ReferenceNotFound):
        plan_services.delete_checklist_item(db_session, item_id=drop.id, actor_user_id=None)


def test_delete_refuses_item_with_recorded_results(db_session):
    plan = _create_plan(db_session)
    (item,) = _add_items(db_session, plan, "Check oil")
    task = maintenance_models.MaintenanceTask(
        task_type=maintenance_models.TaskType.PLAN_BASED,
        maintenance_plan_id=plan.id,
        machine_id=plan.machine_id,
        title=plan.title,
        status=maintenance_models.TaskStatus.COMPLETED,
    )
    db_session.add(task)
    db_session.flush()
    db_session.add(
        maintenance_models.ChecklistItemResult(
            maintenance_task_id=task.id,
            checklist_item_id=item.id,
            decision_type=DecisionType.NONE,
            passed=True,
        )
    )
    db_session.commit()

    with pytest.raises(StateConflict) as excinfo:
        plan_services.delete_checklist_item(db_session, item_id=item.id, actor_user_id=None)
    assert excinfo.value.code == "item_has_results"


def test_reorder_checklist_items(db_session):
    plan = _create_plan(db_session)
    oil, air, guard = _add_items(db_session, plan, "Check oil", "Check air", "Check guard")

    ordered = plan_services.reorder_checklist_items(
        db_session,
        plan_id=plan.id,
        order=[(guard.id, 1), (oil.id, 2), (air.id, 3)],
        actor_user_id=None,
    )
    db_session.commit()

    assert [item.id for item in ordered] == [guard.id, oil.id, air.id]
    db_session.refresh(plan)
    assert [item.id for item in plan.checklist_items] == [guard.id, oil.id, air.id]


def test_reorder_rejects_clashes_and_foreign_items(db_session):
    plan = _create_plan(db_session)
    oil, air, guard = _add_items(db_session, plan, "Check oil", "Check air", "Check guard")
    other = _create_plan(db_session, "Other plan")
    (stranger,) = _add_items(db_session, other, "Check belt")

    with pytest.raises(StateConflict) as excinfo:
        plan_services.reorder_checklist_items(
            db_session, plan_id=plan.id, order=[(oil.id, 3)], actor_user_id=None
        )
    assert excinfo.value.code == "duplicate_sequence"
    with pytest.raises(ValidationFailed):
        plan_services.reorder_checklist_items(
            db_session, plan_id=plan.id, order=[(oil.id, 4), (oil.id, 5)], actor_user_id=None
        )
    with pytest.raises(ReferenceNotFound):
        plan_services.reorder_checklist_items(
            db_session, plan_id=plan.id, order=[(stranger.id, 4)], actor_user_id=None
        )

    db_session.refresh(guard)
    assert [oil.sequence, air.sequence, guard.sequence] == [1, 2, 3]
