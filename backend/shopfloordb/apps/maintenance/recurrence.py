"""
Recurrence of a maintenance plan.

A plan recurs on a calendar clock, an operating-hours clock, or both. The
three shapes are separate types so that "no clock at all" cannot be built:
`recurrence_from_columns` is the only way to turn the nullable plan columns
into a `Recurrence`, and it rejects the empty combination.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from .errors import ValidationFailed


class IntervalType(str, Enum):
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


def _add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class TimeInterval:
    unit: IntervalType
    value: int

    def __post_init__(self) -> None:
        if self.value is None or self.value <= 0:
            raise ValidationFailed.for_field("interval_value", "must be a positive integer")

    def add_to(self, start: datetime) -> datetime:
        if self.unit == IntervalType.HOURS:
            return start + timedelta(hours=self.value)
        if self.unit == IntervalType.DAYS:
            return start + timedelta(days=self.value)
        if self.unit == IntervalType.WEEKS:
            return start + timedelta(weeks=self.value)
        if self.unit == IntervalType.MONTHS:
            return _add_months(start, self.value)
        return _add_months(start, 12 * self.value)


@dataclass(frozen=True)
class TimeOnly:
    interval: TimeInterval


@dataclass(frozen=True)
class HoursOnly:
    hours: float

    def __post_init__(self) -> None:
        if self.hours is None or self.hours <= 0:
            raise ValidationFailed.for_field("interval_hours", "must be positive")


@dataclass(frozen=True)
class Both:
    interval: TimeInterval
    hours: float

    def __post_init__(self) -> None:
        if self.hours is None or self.hours <= 0:
            raise ValidationFailed.for_field("interval_hours", "must be positive")


Recurrence = Union[TimeOnly, HoursOnly, Both]


@dataclass(frozen=True)
class NextDue:
    next_due_at: Optional[datetime]
    next_due_hours: Optional[float]


def recurrence_from_columns(
    interval_type: Optional[Union[IntervalType, str]],
    interval_value: Optional[int],
    interval_hours: Optional[float],
) -> Recurrence:
    has_time = interval_type is not None or interval_value is not None
    if has_time and (interval_type is None or interval_value is None):
        raise ValidationFailed.for_field(
            "interval_type",
            "interval_type and interval_value must be set together",
        )

    interval: Optional[TimeInterval] = None
    if has_time:
        try:
            unit = IntervalType(interval_type)
        except ValueError:
            raise ValidationFailed.for_field("interval_type", f"unknown interval type {interval_type!r}")
        interval = TimeInterval(unit=unit, value=int(interval_value))

    if interval is not None and interval_hours is not None:
        return Both(interval=interval, hours=float(interval_hours))
    if interval is not None:
        return TimeOnly(interval=interval)
    if interval_hours is not None:
        return HoursOnly(hours=float(interval_hours))
    raise ValidationFailed.for_field(
        "recurrence",
        "a plan needs a time interval, an operating-hours interval, or both",
    )


def time_interval(recurrence: Recurrence) -> Optional[TimeInterval]:
    if isinstance(recurrence, (TimeOnly, Both)):
        return recurrence.interval
    return None


def hours_interval(recurrence: Recurrence) -> Optional[float]:
    if isinstance(recurrence, (HoursOnly, Both)):
        return recurrence.hours
    return None


def to_columns(recurrence: Recurrence) -> dict:
    interval = time_interval(recurrence)
    return {
        "interval_type": interval.unit if interval else None,
        "interval_value": interval.value if interval else None,
        "interval_hours": hours_interval(recurrence),
    }


def initial_due(recurrence: Recurrence, *, start_at: datetime, start_hours: float) -> NextDue:
    """First due markers for a freshly created plan."""
    return advance(recurrence, completed_at=start_at, completed_hours=start_hours)


def advance(recurrence: Recurrence, *, completed_at: datetime, completed_hours: Optional[float]) -> NextDue:
    """
    Next-due markers after a completion. Each clock moves from its own
    completion marker; a clock the plan does not use stays None.
    """
    interval = time_interval(recurrence)
    hours = hours_interval(recurrence)

    next_at = interval.add_to(completed_at) if interval else None
    next_hours = None
    if hours is not None:
        next_hours = float(completed_hours or 0.0) + hours
    return NextDue(next_due_at=next_at, next_due_hours=next_hours)
