from __future__ import annotations

from .guards import (
    guard_actor_recorded,
    guard_critical_items_passed,
    guard_resolution_text,
    guard_task_not_halted,
)

WORKFLOWS = {
    "maintenance_task": {
        "transitions": {
            "PENDING": {
                "ASSIGNED": [],
                "IN_PROGRESS": [guard_task_not_halted],
                "CANCELLED": [],
            },
            "ASSIGNED": {
                "ASSIGNED": [],
                "IN_PROGRESS": [guard_task_not_halted],
                "CANCELLED": [],
            },
            "IN_PROGRESS": {
                "IN_PROGRESS": [],
                "COMPLETED": [guard_task_not_halted, guard_critical_items_passed],
                "CANCELLED": [],
            },
            "COMPLETED": {},
            "CANCELLED": {},
        }
    },
    "maintenance_standalone_task": {
        "transitions": {
            "PENDING": {"ASSIGNED": [], "IN_PROGRESS": [], "COMPLETED": [], "CANCELLED": []},
            "ASSIGNED": {"ASSIGNED": [], "IN_PROGRESS": [], "COMPLETED": [], "CANCELLED": []},
            "IN_PROGRESS": {"IN_PROGRESS": [], "COMPLETED": [], "CANCELLED": []},
            "COMPLETED": {},
            "CANCELLED": {},
        }
    },
    "maintenance_escalation": {
        "transitions": {
            "OPEN": {
                "ACKNOWLEDGED": [guard_actor_recorded],
            },
            "ACKNOWLEDGED": {
                "RESOLVED": [guard_actor_recorded, guard_resolution_text],
            },
            "RESOLVED": {
                "CLOSED": [guard_actor_recorded],
            },
            "CLOSED": {},
        }
    },
}
