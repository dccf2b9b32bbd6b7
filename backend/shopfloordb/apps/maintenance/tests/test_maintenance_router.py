from __future__ import annotations

import pytest
from fastapi import HTTPException

from shopfloordb.apps.maintenance.errors import AnomalousReading, ReferenceNotFound, StateConflict
from shopfloordb.apps.maintenance.router import _service_errors, router as maintenance_router
from shopfloordb.apps.workflow import TransitionError


def _has(method: str, path: str) -> bool:
    return any(route.path == path and method in (route.methods or []) for route in maintenance_router.routes)


def test_router_has_task_routes():
    assert _has("POST", "/maintenance/tasks/generate")
    assert _has("GET", "/maintenance/tasks")
    assert _has("GET", "/maintenance/tasks/my")
    assert _has("GET", "/maintenance/tasks/today")
    assert _has("POST", "/maintenance/tasks/standalone")
    assert _has("PATCH", "/maintenance/tasks/standalone/{task_id}")
    assert _has("DELETE", "/maintenance/tasks/standalone/{task_id}")
    assert _has("POST", "/maintenance/tasks/{task_id}/assign")
    assert _has("POST", "/maintenance/tasks/{task_id}/start")
    assert _has("POST", "/maintenance/tasks/{task_id}/complete")
    assert _has("POST", "/maintenance/tasks/{task_id}/cancel")
    assert _has("POST", "/maintenance/tasks/{task_id}/checklist")
    assert _has("GET", "/maintenance/tasks/{task_id}/history")
    assert _has("POST", "/maintenance/tasks")
    assert _has("GET", "/maintenance/tasks/{task_id}/details")


def test_router_has_escalation_assignment_and_overview_routes():
    assert _has("POST", "/maintenance/escalations")
    assert _has("GET", "/maintenance/escalations/unassigned")
    assert _has("POST", "/maintenance/escalations/{escalation_id}/acknowledge")
    assert _has("POST", "/maintenance/escalations/{escalation_id}/resolve")
    assert _has("POST", "/maintenance/escalations/{escalation_id}/close")
    assert _has("POST", "/maintenance/escalations/{escalation_id}/reescalate")
    assert _has("POST", "/maintenance/assignments")
    assert _has("POST", "/maintenance/assignments/match")
    assert _has("POST", "/maintenance/machines/{machine_id}/operating-hours")
    assert _has("GET", "/maintenance/machines/{machine_id}/operating-hours/stats")
    assert _has("POST", "/maintenance/plans")
    assert _has("PATCH", "/maintenance/plans/{plan_id}")
    assert _has("POST", "/maintenance/plans/{plan_id}/checklist-items")
    assert _has("GET", "/maintenance/overview/due")
    assert _has("GET", "/maintenance/overview/machines")
    assert _has("GET", "/maintenance/overview/dashboard")


def test_router_has_catalogue_and_detail_routes():
    assert _has("GET", "/maintenance/escalations/{escalation_id}")
    assert _has("PATCH", "/maintenance/checklist-items/{item_id}")
    assert _has("DELETE", "/maintenance/checklist-items/{item_id}")
    assert _has("POST", "/maintenance/plans/{plan_id}/checklist-items/reorder")
    assert _has("GET", "/maintenance/maintenance-types")
    assert _has("GET", "/maintenance/machines/{machine_id}/stats")


@pytest.mark.parametrize(
    "exc, status_code",
    [
        (ReferenceNotFound.for_field("task_id", "task 9 not found"), 404),
        (StateConflict.for_field("status", "task is completed"), 409),
        (AnomalousReading.for_field("recorded_hours", "below counter"), 422),
        (TransitionError(code="invalid_transition", detail=[{"field": "status", "reason": "no"}]), 409),
    ],
)
def test_service_errors_map_to_http(exc, status_code):
    with pytest.raises(HTTPException) as excinfo:
        with _service_errors():
            raise exc
    assert excinfo.value.status_code == status_code
    assert excinfo.value.detail["code"] == exc.code
    assert excinfo.value.detail["errors"] == exc.detail
