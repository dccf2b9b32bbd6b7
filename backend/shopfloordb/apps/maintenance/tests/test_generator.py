from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

import pytest

from shopfloordb.apps.audit import models as audit_models
from shopfloordb.apps.machines import models as machine_models
from shopfloordb.apps.maintenance import generator
from shopfloordb.apps.maintenance import plans as plan_services
from shopfloordb.apps.maintenance import models as maintenance_models
from shopfloordb.apps.maintenance.errors import ValidationFailed
from shopfloordb.utils.timeutils import ensure_utc

NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)


def _create_machine(db, name: str = "DMG Mori 1", *, hours: float = 0.0, is_active: bool = True):
    machine = machine_models.Machine(
        name=name,
        location="Hall A",
        current_operating_hours=hours,
        is_active=is_active,
    )
    db.add(machine)
    db.commit()
    db.refresh(machine)
    return machine


def _create_plan(db, machine, **kwargs):
    kwargs.setdefault("title", "Lubricate spindle")
    if "interval_hours" not in kwargs:
        kwargs.setdefault("interval_type", maintenance_models.IntervalType.DAYS)
        kwargs.setdefault("interval_value", 1)
    plan = plan_services.create_plan(
        db,
        machine_id=machine.id,
        created_by_user_id=None,
        now=NOW - timedelta(days=1),
        **kwargs,
    )
    db.commit()
    return plan


def _open_tasks(db, plan_id: int):
    return (
        db.query(maintenance_models.MaintenanceTask)
        .filter(
            maintenance_models.MaintenanceTask.maintenance_plan_id == plan_id,
            maintenance_models.MaintenanceTask.status.in_(maintenance_models.OPEN_TASK_STATUSES),
        )
        .all()
    )


def test_due_plan_gets_one_pending_task(db_session):
    machine = _create_machine(db_session)
    plan = _create_plan(db_session, machine, next_due_at=NOW - timedelta(hours=2))

    summary = generator.generate_tasks(db_session, now=NOW)
    db_session.commit()

    assert summary.created == 1
    assert summary.skipped == 0
    assert summary.errors == []
    task = db_session.get(maintenance_models.MaintenanceTask, summary.created_task_ids[0])
    assert task.status == maintenance_models.TaskStatus.PENDING
    assert task.task_type == maintenance_models.TaskType.PLAN_BASED
    assert task.maintenance_plan_id == plan.id
    assert task.machine_id == machine.id
    assert task.location == "Hall A"
    assert ensure_utc(task.due_date) == NOW - timedelta(hours=2)
    assert task.is_past_deadline is False


def test_second_run_does_not_duplicate_open_task(db_session):
    machine = _create_machine(db_session)
    plan = _create_plan(db_session, machine, next_due_at=NOW - timedelta(hours=2))

    first = generator.generate_tasks(db_session, now=NOW)
    db_session.commit()
    second = generator.generate_tasks(db_session, now=NOW + timedelta(minutes=5))
    db_session.commit()

    assert first.created == 1
    assert second.created == 0
    assert second.skipped == 1
    assert len(_open_tasks(db_session, plan.id)) == 1


def test_open_task_index_catches_run_that_missed_the_lookup(db_session, monkeypatch):
    machine = _create_machine(db_session)
    plan = _create_plan(db_session, machine, next_due_at=NOW - timedelta(hours=2))

    first = generator.generate_tasks(db_session, now=NOW)
    db_session.commit()
    # The second run no longer sees the open task, as a concurrent run would not.
    monkeypatch.setattr(generator, "OPEN_TASK_STATUSES", ())
    second = generator.generate_tasks(db_session, now=NOW)
    db_session.commit()

    assert first.created == 1
    assert second.created == 0
    assert second.skipped == 1
    assert second.errors == []
    assert len(_open_tasks(db_session, plan.id)) == 1


def test_shift_critical_plan_generated_after_deadline_is_critical(db_session):
    machine = _create_machine(db_session)
    plan = _create_plan(
        db_session,
        machine,
        next_due_at=datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc),
        is_shift_critical=True,
        shift_deadline_time=time(17, 0),
        priority=maintenance_models.Priority.NORMAL,
    )

    summary = generator.generate_tasks(db_session, now=NOW)
    db_session.commit()

    assert summary.created == 1
    task = db_session.get(maintenance_models.MaintenanceTask, summary.created_task_ids[0])
    assert task.is_past_deadline is True
    assert task.priority == maintenance_models.Priority.CRITICAL
    assert ensure_utc(task.shift_deadline_at) == datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)
    assert summary.past_deadline_task_ids == [task.id]

    event = (
        db_session.query(audit_models.AuditEvent)
        .filter(
            audit_models.AuditEvent.entity_type == "maintenance_task",
            audit_models.AuditEvent.entity_id == str(task.id),
            audit_models.AuditEvent.action == "PAST_DEADLINE",
        )
        .first()
    )
    assert event is not None
    assert plan.priority == maintenance_models.Priority.NORMAL


def test_shift_critical_plan_generated_before_deadline_keeps_priority(db_session):
    machine = _create_machine(db_session)
    _create_plan(
        db_session,
        machine,
        next_due_at=datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc),
        is_shift_critical=True,
        shift_deadline_time=time(17, 0),
        priority=maintenance_models.Priority.HIGH,
    )

    summary = generator.generate_tasks(db_session, now=datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))

    task = db_session.get(maintenance_models.MaintenanceTask, summary.created_task_ids[0])
    assert task.is_past_deadline is False
    assert task.priority == maintenance_models.Priority.HIGH
    assert summary.past_deadline_task_ids == []


def test_lookahead_window_controls_candidates(db_session):
    machine = _create_machine(db_session)
    _create_plan(db_session, machine, next_due_at=NOW + timedelta(days=3))

    narrow = generator.generate_tasks(db_session, now=NOW)
    assert narrow.created == 0

    wide = generator.generate_tasks(db_session, now=NOW, lookahead=timedelta(hours=96))
    assert wide.created == 1
    task = db_session.get(maintenance_models.MaintenanceTask, wide.created_task_ids[0])
    assert ensure_utc(task.due_date) == NOW + timedelta(days=3)


def test_hours_plan_within_margin_is_due_now(db_session):
    machine = _create_machine(db_session, hours=0.0)
    plan = _create_plan(db_session, machine, interval_hours=100.0)
    assert plan.next_due_hours == 100.0

    machine.current_operating_hours = 60.0
    db_session.commit()

    summary = generator.generate_tasks(db_session, now=NOW)

    assert summary.created == 1
    task = db_session.get(maintenance_models.MaintenanceTask, summary.created_task_ids[0])
    assert ensure_utc(task.due_date) == NOW


def test_hours_plan_outside_margin_is_not_generated(db_session):
    machine = _create_machine(db_session, hours=0.0)
    _create_plan(db_session, machine, interval_hours=100.0)
    machine.current_operating_hours = 20.0
    db_session.commit()

    summary = generator.generate_tasks(db_session, now=NOW)
    assert summary.created == 0


def test_failing_plan_does_not_block_others(db_session):
    broken_machine = _create_machine(db_session, "Retired lathe", is_active=False)
    good_machine = _create_machine(db_session, "Hermle C42")
    broken_plan = _create_plan(db_session, broken_machine, next_due_at=NOW - timedelta(hours=1))
    good_plan = _create_plan(db_session, good_machine, next_due_at=NOW - timedelta(hours=1))

    summary = generator.generate_tasks(db_session, now=NOW)
    db_session.commit()

    assert summary.created == 1
    assert len(summary.errors) == 1
    assert summary.errors[0]["plan_id"] == broken_plan.id
    assert summary.errors[0]["code"] == "machine_inactive"
    assert _open_tasks(db_session, broken_plan.id) == []
    assert len(_open_tasks(db_session, good_plan.id)) == 1


def test_inactive_plan_is_ignored(db_session):
    machine = _create_machine(db_session)
    plan = _create_plan(db_session, machine, next_due_at=NOW - timedelta(hours=1))
    plan.is_active = False
    db_session.commit()

    summary = generator.generate_tasks(db_session, now=NOW)
    assert summary.created == 0
    assert summary.skipped == 0


def test_run_is_audited(db_session):
    machine = _create_machine(db_session)
    _create_plan(db_session, machine, next_due_at=NOW - timedelta(hours=1))

    summary = generator.generate_tasks(db_session, now=NOW)

    event = (
        db_session.query(audit_models.AuditEvent)
        .filter(
            audit_models.AuditEvent.entity_type == "maintenance.generation",
            audit_models.AuditEvent.entity_id == summary.run_id,
        )
        .one()
    )
    assert event.after["created"] == 1
    payload = summary.as_dict()
    assert payload["created"] == 1
    assert payload["lookahead_hours"] == 24.0


def test_negative_lookahead_is_rejected(db_session):
    with pytest.raises(ValidationFailed):
        generator.generate_tasks(db_session, now=NOW, lookahead=timedelta(hours=-1))


def test_configured_lookahead_reads_env(monkeypatch):
    monkeypatch.setenv("MAINTENANCE_GENERATION_LOOKAHEAD_HOURS", "48")
    assert generator.configured_lookahead() == timedelta(hours=48)
    monkeypatch.setenv("MAINTENANCE_GENERATION_LOOKAHEAD_HOURS", "soon")
    assert generator.configured_lookahead() == generator.DEFAULT_LOOKAHEAD
    monkeypatch.delenv("MAINTENANCE_GENERATION_LOOKAHEAD_HOURS")
    assert generator.configured_lookahead() == generator.DEFAULT_LOOKAHEAD


def test_negative_configured_lookahead_falls_back_to_default(monkeypatch, caplog):
    monkeypatch.setenv("MAINTENANCE_GENERATION_LOOKAHEAD_HOURS", "-6")

    with caplog.at_level("WARNING", logger=generator.logger.name):
        assert generator.configured_lookahead() == generator.DEFAULT_LOOKAHEAD
    assert "Negative MAINTENANCE_GENERATION_LOOKAHEAD_HOURS" in caplog.text
