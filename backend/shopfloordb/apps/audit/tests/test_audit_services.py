from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from shopfloordb.apps.audit import models as audit_models
from shopfloordb.apps.audit import services as audit_services
from shopfloordb.apps.machines import models as machine_models


def test_log_event_writes_record(db_session):
    event = audit_services.log_event(
        db_session,
        actor_user_id=None,
        entity_type="machines.operating_hours",
        entity_id=7,
        action="READING_RECORDED",
        after={"current_operating_hours": 1005.0},
        metadata={"source": "manual"},
    )
    db_session.commit()

    assert event is not None
    assert event.entity_id == "7"
    assert event.metadata_json == {"source": "manual"}
    assert db_session.query(audit_models.AuditEvent).count() == 1


def test_failed_non_critical_event_keeps_session_usable(db_session):
    machine = machine_models.Machine(name="DMG Mori NLX 2500", location="Hall A", current_operating_hours=10.0)
    db_session.add(machine)
    db_session.flush()

    event = audit_services.log_event(
        db_session,
        actor_user_id=None,
        entity_type="machines.operating_hours",
        entity_id=str(machine.id),
        action="READING_RECORDED",
        after={"unserialisable": object()},
    )
    db_session.commit()

    assert event is None
    assert db_session.query(audit_models.AuditEvent).count() == 0
    assert db_session.get(machine_models.Machine, machine.id) is not None


def test_failed_critical_event_raises(db_session):
    with pytest.raises(SQLAlchemyError):
        audit_services.log_event(
            db_session,
            actor_user_id=None,
            entity_type="maintenance_escalation",
            entity_id="1",
            action="CREATED",
            after={"unserialisable": object()},
            critical=True,
        )


def test_entity_history_filters_and_orders(db_session):
    earlier = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
    later = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    for entity_id, action, occurred_at in (
        ("3", "transition", later),
        ("3", "CREATED", earlier),
        ("4", "CREATED", earlier),
    ):
        audit_services.create_audit_event(
            db_session,
            data=audit_services.schemas.AuditEventCreate(
                entity_type="maintenance_task",
                entity_id=entity_id,
                action=action,
                occurred_at=occurred_at,
            ),
        )
    db_session.commit()

    history = audit_services.entity_history(db_session, entity_types=["maintenance_task"], entity_id="3")
    assert [event.action for event in history] == ["CREATED", "transition"]

    windowed = audit_services.entity_history(
        db_session,
        entity_types=["maintenance_task"],
        entity_id="3",
        start=later,
    )
    assert [event.action for event in windowed] == ["transition"]
