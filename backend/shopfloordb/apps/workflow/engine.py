from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from shopfloordb.apps.audit import services as audit_services

from .registry import WORKFLOWS


@dataclass(eq=False)
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]

    def __str__(self) -> str:
        reasons = "; ".join(f"{item.get('field')}: {item.get('reason')}" for item in self.detail)
        return f"{self.code} ({reasons})" if reasons else self.code


def allowed_targets(entity_type: str, from_state: str) -> Set[str]:
    workflow = WORKFLOWS.get(entity_type) or {}
    return set(workflow.get("transitions", {}).get(from_state, {}).keys())


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[int],
    entity_type: str,
    entity_id: Any,
    from_state: str,
    to_state: str,
    before_obj: Any,
    after_obj: Any,
    correlation_id: Optional[str] = None,
    critical: bool = True,
) -> None:
    """
    Validate `from_state -> to_state` against the registered workflow, run its
    guards and write the audit event. Raises TransitionError without touching
    the session when the transition is not allowed.

    `from_state` must be the status as stored, not a client-supplied value.
    """
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    transitions = workflow.get("transitions", {})
    allowed = transitions.get(from_state, {})
    guards = allowed.get(to_state)

    if guards is None:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "status", "reason": f"Cannot transition from {from_state} to {to_state}"}],
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_state,
                to_state=to_state,
            )
        )

    if failures:
        raise TransitionError(code="missing_requirements", detail=failures)

    before_payload: Dict[str, Any] = {"status": from_state}
    after_payload: Dict[str, Any] = {"status": to_state}
    if isinstance(before_obj, dict):
        before_payload.update(before_obj)
    if isinstance(after_obj, dict):
        after_payload.update(after_obj)

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action="transition",
        before=before_payload,
        after=after_payload,
        correlation_id=correlation_id,
        metadata={"workflow": entity_type},
        critical=critical,
    )
