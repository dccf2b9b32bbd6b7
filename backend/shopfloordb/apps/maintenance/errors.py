from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Dict, List, Optional


@dataclass(eq=False)
class MaintenanceError(Exception):
    """
    Base error for maintenance operations.

    `detail` follows the workflow engine's shape: a list of
    {"field": ..., "reason": ...} dicts, so the router can return both
    kinds of failure the same way.
    """

    code: str
    detail: List[Dict[str, str]]

    status_code: ClassVar[int] = 400

    @classmethod
    def for_field(cls, field: str, reason: str, *, code: Optional[str] = None) -> "MaintenanceError":
        return cls(code=code or cls.default_code(), detail=[{"field": field, "reason": reason}])

    @classmethod
    def default_code(cls) -> str:
        return "maintenance_error"

    def __str__(self) -> str:
        reasons = "; ".join(f"{item.get('field')}: {item.get('reason')}" for item in self.detail)
        return f"{self.code} ({reasons})" if reasons else self.code


class ValidationFailed(MaintenanceError):
    """User-correctable input problem."""

    status_code: ClassVar[int] = 400

    @classmethod
    def default_code(cls) -> str:
        return "validation_error"


class ReferenceNotFound(MaintenanceError):
    """A referenced machine, plan, task, item or user does not exist."""

    status_code: ClassVar[int] = 404

    @classmethod
    def default_code(cls) -> str:
        return "not_found"


class StateConflict(MaintenanceError):
    """Operation not allowed in the entity's current state."""

    status_code: ClassVar[int] = 409

    @classmethod
    def default_code(cls) -> str:
        return "invalid_state"


class AnomalousReading(MaintenanceError):
    """Operating-hours reading lower than the machine's current counter."""

    status_code: ClassVar[int] = 422

    @classmethod
    def default_code(cls) -> str:
        return "anomalous_reading"
