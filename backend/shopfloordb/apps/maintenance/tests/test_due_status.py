from __future__ import annotations

from datetime import datetime, timedelta, timezone

from shopfloordb.apps.maintenance import due_status
from shopfloordb.apps.maintenance.models import DueStatus
from shopfloordb.apps.maintenance.recurrence import Both, HoursOnly, IntervalType, TimeInterval, TimeOnly

NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


def test_time_status_buckets():
    assert due_status.time_status(NOW - timedelta(minutes=1), NOW) == DueStatus.OVERDUE
    assert due_status.time_status(NOW.replace(hour=15), NOW) == DueStatus.DUE_TODAY
    assert due_status.time_status(NOW + timedelta(days=3), NOW) == DueStatus.DUE_SOON
    assert due_status.time_status(NOW + timedelta(days=30), NOW) == DueStatus.OK
    assert due_status.time_status(None, NOW) == DueStatus.OK


def test_time_status_accepts_naive_database_values():
    naive = (NOW - timedelta(hours=2)).replace(tzinfo=None)
    assert due_status.time_status(naive, NOW) == DueStatus.OVERDUE


def test_hours_status_uses_due_soon_margin():
    assert due_status.hours_status(1000.0, 900.0) == DueStatus.OK
    assert due_status.hours_status(1000.0, 980.0) == DueStatus.DUE_SOON
    assert due_status.hours_status(1000.0, 1000.0) == DueStatus.OVERDUE
    assert due_status.hours_status(1000.0, 1005.0) == DueStatus.OVERDUE


def test_combined_status_is_worst_clock():
    recurrence = Both(interval=TimeInterval(unit=IntervalType.DAYS, value=30), hours=500.0)
    evaluation = due_status.evaluate(
        recurrence,
        next_due_at=NOW + timedelta(days=20),
        next_due_hours=1000.0,
        now=NOW,
        current_hours=1010.0,
    )
    assert evaluation.time_status == DueStatus.OK
    assert evaluation.hours_status == DueStatus.OVERDUE
    assert evaluation.status == DueStatus.OVERDUE
    assert evaluation.is_overdue
    assert evaluation.hours_remaining == -10.0


def test_unused_clock_is_ignored():
    # Stale calendar marker on an hours-only plan must not make it overdue.
    evaluation = due_status.evaluate(
        HoursOnly(hours=250.0),
        next_due_at=NOW - timedelta(days=10),
        next_due_hours=1000.0,
        now=NOW,
        current_hours=100.0,
    )
    assert evaluation.time_status is None
    assert evaluation.status == DueStatus.OK
    assert evaluation.days_remaining is None


def test_days_remaining_for_time_plan():
    evaluation = due_status.evaluate(
        TimeOnly(interval=TimeInterval(unit=IntervalType.WEEKS, value=1)),
        next_due_at=NOW + timedelta(days=2),
        next_due_hours=None,
        now=NOW,
        current_hours=None,
    )
    assert evaluation.status == DueStatus.DUE_SOON
    assert evaluation.hours_status is None
    assert round(evaluation.days_remaining, 3) == 2.0


def test_worst_of_without_statuses_is_ok():
    assert due_status.worst_of(None, None) == DueStatus.OK
    assert due_status.worst_of(DueStatus.DUE_SOON, DueStatus.DUE_TODAY) == DueStatus.DUE_TODAY
