"""
Checklist decision variants.

Each checklist item declares how its answer is judged. The variants carry
exactly the data they need: a yes/no item its expected answer, a measurement
item its tolerance band.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import ValidationFailed


class DecisionType(str, Enum):
    NONE = "none"
    YES_NO = "yes_no"
    MEASUREMENT = "measurement"
    PHOTO_REQUIRED = "photo_required"


class FailureAction(str, Enum):
    CONTINUE = "continue"
    ESCALATE = "escalate"
    STOP = "stop"


@dataclass(frozen=True)
class ToleranceBand:
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    unit: Optional[str] = None

    def __post_init__(self) -> None:
        if self.minimum is None and self.maximum is None:
            raise ValidationFailed.for_field("min_value", "measurement needs a minimum or maximum value")
        if self.minimum is not None and self.maximum is not None and self.minimum > self.maximum:
            raise ValidationFailed.for_field("min_value", "minimum must not exceed maximum")

    def contains(self, value: float) -> bool:
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True

    def describe(self) -> str:
        unit = f" {self.unit}" if self.unit else ""
        if self.minimum is not None and self.maximum is not None:
            return f"{self.minimum}..{self.maximum}{unit}"
        if self.minimum is not None:
            return f">= {self.minimum}{unit}"
        return f"<= {self.maximum}{unit}"


@dataclass(frozen=True)
class NoDecision:
    pass


@dataclass(frozen=True)
class YesNo:
    expected: bool


@dataclass(frozen=True)
class Measurement:
    band: ToleranceBand


@dataclass(frozen=True)
class PhotoRequired:
    pass


Decision = Union[NoDecision, YesNo, Measurement, PhotoRequired]


def decision_from_columns(
    decision_type: Union[DecisionType, str, None],
    *,
    expected_answer: Optional[bool] = None,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    measurement_unit: Optional[str] = None,
) -> Decision:
    try:
        kind = DecisionType(decision_type or DecisionType.NONE)
    except ValueError:
        raise ValidationFailed.for_field("decision_type", f"unknown decision type {decision_type!r}")

    if kind == DecisionType.YES_NO:
        if expected_answer is None:
            raise ValidationFailed.for_field("expected_answer", "yes/no items need an expected answer")
        return YesNo(expected=bool(expected_answer))
    if kind == DecisionType.MEASUREMENT:
        return Measurement(band=ToleranceBand(minimum=min_value, maximum=max_value, unit=measurement_unit))
    if kind == DecisionType.PHOTO_REQUIRED:
        return PhotoRequired()
    return NoDecision()


def parse_failure_action(value: Union[FailureAction, str, None]) -> FailureAction:
    try:
        return FailureAction(value or FailureAction.CONTINUE)
    except ValueError:
        raise ValidationFailed.for_field("on_failure_action", f"unknown failure action {value!r}")
