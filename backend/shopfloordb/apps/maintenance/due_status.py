# backend/shopfloordb/apps/maintenance/due_status.py
#
# Due-status evaluation for maintenance plans.
#
# Pure functions: callers pass the plan's recurrence and markers together
# with "now" and the machine's current operating hours. Nothing here reads
# the database or creates tasks; the dashboards sort on the result and the
# task generator uses its own lookahead window.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ...utils.timeutils import ensure_utc, local_date
from .models import DueStatus, MaintenancePlan
from .recurrence import Recurrence, hours_interval, time_interval

# Calendar lookahead for "due soon".
DUE_SOON_WINDOW = timedelta(days=7)

# Operating-hours margin for "due soon". One constant for every plan; a
# per-plan margin is not supported.
HOURS_DUE_SOON_MARGIN = 50.0

_SEVERITY = {
    DueStatus.OK: 0,
    DueStatus.DUE_SOON: 1,
    DueStatus.DUE_TODAY: 2,
    DueStatus.OVERDUE: 3,
}


def worst_of(*statuses: Optional[DueStatus]) -> DueStatus:
    present = [status for status in statuses if status is not None]
    if not present:
        return DueStatus.OK
    return max(present, key=_SEVERITY.__getitem__)


def severity(status: DueStatus) -> int:
    return _SEVERITY[status]


def time_status(next_due_at: Optional[datetime], now: datetime) -> DueStatus:
    if next_due_at is None:
        return DueStatus.OK
    due = ensure_utc(next_due_at)
    now = ensure_utc(now)
    if due < now:
        return DueStatus.OVERDUE
    if local_date(due) == local_date(now):
        return DueStatus.DUE_TODAY
    if due < now + DUE_SOON_WINDOW:
        return DueStatus.DUE_SOON
    return DueStatus.OK


def hours_status(next_due_hours: Optional[float], current_hours: Optional[float]) -> DueStatus:
    if next_due_hours is None:
        return DueStatus.OK
    current = float(current_hours or 0.0)
    if current >= next_due_hours:
        return DueStatus.OVERDUE
    if current >= next_due_hours - HOURS_DUE_SOON_MARGIN:
        return DueStatus.DUE_SOON
    return DueStatus.OK


@dataclass(frozen=True)
class DueEvaluation:
    time_status: Optional[DueStatus]    # None when the plan has no time clock
    hours_status: Optional[DueStatus]   # None when the plan has no hours clock
    status: DueStatus
    days_remaining: Optional[float] = None
    hours_remaining: Optional[float] = None

    @property
    def is_overdue(self) -> bool:
        return self.status == DueStatus.OVERDUE


def evaluate(
    recurrence: Recurrence,
    *,
    next_due_at: Optional[datetime],
    next_due_hours: Optional[float],
    now: datetime,
    current_hours: Optional[float],
) -> DueEvaluation:
    """
    Status per applicable clock plus the combined (worst) status.

    A clock the recurrence does not use is never consulted, whatever its
    marker column happens to hold.
    """
    t_status: Optional[DueStatus] = None
    h_status: Optional[DueStatus] = None
    days_remaining: Optional[float] = None
    hours_remaining: Optional[float] = None

    if time_interval(recurrence) is not None:
        t_status = time_status(next_due_at, now)
        if next_due_at is not None:
            days_remaining = (ensure_utc(next_due_at) - ensure_utc(now)).total_seconds() / 86400.0

    if hours_interval(recurrence) is not None:
        h_status = hours_status(next_due_hours, current_hours)
        if next_due_hours is not None:
            hours_remaining = next_due_hours - float(current_hours or 0.0)

    return DueEvaluation(
        time_status=t_status,
        hours_status=h_status,
        status=worst_of(t_status, h_status),
        days_remaining=days_remaining,
        hours_remaining=hours_remaining,
    )


def evaluate_plan(plan: MaintenancePlan, *, now: datetime, current_hours: Optional[float] = None) -> DueEvaluation:
    if current_hours is None and plan.machine is not None:
        current_hours = plan.machine.current_operating_hours
    return evaluate(
        plan.recurrence,
        next_due_at=plan.next_due_at,
        next_due_hours=plan.next_due_hours,
        now=now,
        current_hours=current_hours,
    )
