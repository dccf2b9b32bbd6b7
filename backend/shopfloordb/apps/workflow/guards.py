from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_actor_recorded(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "actor_user_id"):
        return [{"field": "actor_user_id", "reason": "acting user required"}]
    return []


def guard_resolution_text(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    resolution = _get_value(after_obj, "resolution")
    if not resolution or not str(resolution).strip():
        return [{"field": "resolution", "reason": "resolution text required"}]
    return []


def guard_task_not_halted(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    from shopfloordb.apps.maintenance import models as maintenance_models

    task_id = _get_value(after_obj, "task_id") or _get_value(before_obj, "task_id")
    if not task_id:
        return [{"field": "task_id", "reason": "task identifier required"}]

    blocking = (
        db.query(maintenance_models.Escalation)
        .filter(
            maintenance_models.Escalation.maintenance_task_id == task_id,
            maintenance_models.Escalation.blocks_task.is_(True),
            maintenance_models.Escalation.status.in_(maintenance_models.UNRESOLVED_ESCALATION_STATUSES),
        )
        .count()
    )
    if blocking > 0:
        return [{"field": "escalations", "reason": "task is halted until its stop escalation is resolved"}]
    return []


def guard_critical_items_passed(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    from shopfloordb.apps.maintenance import models as maintenance_models

    task_id = _get_value(after_obj, "task_id") or _get_value(before_obj, "task_id")
    plan_id = _get_value(after_obj, "plan_id") or _get_value(before_obj, "plan_id")
    if not plan_id:
        return []

    critical_items = (
        db.query(maintenance_models.ChecklistItem)
        .filter(
            maintenance_models.ChecklistItem.maintenance_plan_id == plan_id,
            maintenance_models.ChecklistItem.is_critical.is_(True),
        )
        .all()
    )
    if not critical_items:
        return []

    passed_ids = {
        row.checklist_item_id
        for row in db.query(maintenance_models.ChecklistItemResult)
        .filter(
            maintenance_models.ChecklistItemResult.maintenance_task_id == task_id,
            maintenance_models.ChecklistItemResult.passed.is_(True),
        )
        .all()
    }
    return [
        {"field": f"checklist_item:{item.id}", "reason": f"critical item '{item.title}' not passed"}
        for item in critical_items
        if item.id not in passed_ids
    ]
