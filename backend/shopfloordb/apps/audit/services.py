from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)


def create_audit_event(db: Session, *, data: schemas.AuditEventCreate) -> models.AuditEvent:
    event = models.AuditEvent(
        entity_type=data.entity_type,
        entity_id=data.entity_id,
        action=data.action,
        actor_user_id=data.actor_user_id,
        before=data.before,
        after=data.after,
        correlation_id=data.correlation_id,
        metadata_json=data.metadata,
    )
    if data.occurred_at is not None:
        event.occurred_at = data.occurred_at
    db.add(event)
    db.flush()
    return event


def log_event(
    db: Session,
    *,
    actor_user_id: Optional[int],
    entity_type: str,
    entity_id: str,
    action: str,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    correlation_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    critical: bool = False,
) -> Optional[models.AuditEvent]:
    """
    Record one audit event inside a savepoint.

    A failed write only rolls back the savepoint, so the caller's unit of
    work stays usable. Critical events (escalation transitions) re-raise;
    everything else logs a warning and carries on.
    """
    data = schemas.AuditEventCreate(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        before=before,
        after=after,
        correlation_id=correlation_id,
        metadata=metadata,
    )
    try:
        with db.begin_nested():
            return create_audit_event(db, data=data)
    except SQLAlchemyError:
        logger.warning(
            "Failed to log audit event",
            exc_info=True,
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "critical": critical,
            },
        )
        if critical:
            raise
        return None


def entity_history(
    db: Session,
    *,
    entity_types: List[str],
    entity_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[models.AuditEvent]:
    """Events for one entity, oldest first."""
    query = db.query(models.AuditEvent).filter(
        models.AuditEvent.entity_type.in_(entity_types),
        models.AuditEvent.entity_id == str(entity_id),
    )
    if start:
        query = query.filter(models.AuditEvent.occurred_at >= start)
    if end:
        query = query.filter(models.AuditEvent.occurred_at <= end)
    return query.order_by(models.AuditEvent.occurred_at.asc(), models.AuditEvent.id.asc()).all()
