from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shopfloordb.apps.maintenance.decisions import (
    DecisionType,
    FailureAction,
    Measurement,
    NoDecision,
    YesNo,
    decision_from_columns,
    parse_failure_action,
)
from shopfloordb.apps.maintenance.errors import ValidationFailed
from shopfloordb.apps.maintenance.recurrence import (
    Both,
    HoursOnly,
    IntervalType,
    TimeOnly,
    advance,
    recurrence_from_columns,
    to_columns,
)

COMPLETED = datetime(2026, 1, 31, 8, 0, tzinfo=timezone.utc)


def test_recurrence_shapes_from_columns():
    assert isinstance(recurrence_from_columns("days", 7, None), TimeOnly)
    assert isinstance(recurrence_from_columns(None, None, 250.0), HoursOnly)
    both = recurrence_from_columns(IntervalType.MONTHS, 3, 500.0)
    assert isinstance(both, Both)
    assert to_columns(both) == {
        "interval_type": IntervalType.MONTHS,
        "interval_value": 3,
        "interval_hours": 500.0,
    }


@pytest.mark.parametrize(
    "interval_type, interval_value, interval_hours",
    [
        (None, None, None),
        ("days", None, None),
        (None, 5, None),
        ("days", 0, None),
        (None, None, -10.0),
        ("fortnights", 1, None),
    ],
)
def test_invalid_recurrence_is_rejected(interval_type, interval_value, interval_hours):
    with pytest.raises(ValidationFailed):
        recurrence_from_columns(interval_type, interval_value, interval_hours)


def test_month_interval_clamps_to_month_end():
    next_due = advance(recurrence_from_columns("months", 1, None), completed_at=COMPLETED, completed_hours=None)
    assert next_due.next_due_at == datetime(2026, 2, 28, 8, 0, tzinfo=timezone.utc)
    assert next_due.next_due_hours is None


def test_both_clocks_advance_from_their_own_marker():
    recurrence = recurrence_from_columns("weeks", 2, 400.0)
    next_due = advance(recurrence, completed_at=COMPLETED, completed_hours=1234.5)
    assert next_due.next_due_at == COMPLETED + timedelta(weeks=2)
    assert next_due.next_due_hours == 1634.5


def test_hours_only_plan_has_no_calendar_marker():
    next_due = advance(recurrence_from_columns(None, None, 100.0), completed_at=COMPLETED, completed_hours=None)
    assert next_due.next_due_at is None
    assert next_due.next_due_hours == 100.0


def test_decision_variants():
    assert decision_from_columns(DecisionType.NONE) == NoDecision()
    assert decision_from_columns("yes_no", expected_answer=False) == YesNo(expected=False)
    measurement = decision_from_columns("measurement", min_value=2.0, max_value=4.0, measurement_unit="bar")
    assert isinstance(measurement, Measurement)
    assert measurement.band.contains(2.0)
    assert measurement.band.contains(4.0)
    assert not measurement.band.contains(4.01)
    assert measurement.band.describe() == "2.0..4.0 bar"


def test_decision_variants_reject_missing_data():
    with pytest.raises(ValidationFailed):
        decision_from_columns("yes_no")
    with pytest.raises(ValidationFailed):
        decision_from_columns("measurement")
    with pytest.raises(ValidationFailed):
        decision_from_columns("measurement", min_value=5.0, max_value=1.0)
    with pytest.raises(ValidationFailed):
        parse_failure_action("ignore")
    assert parse_failure_action(None) == FailureAction.CONTINUE
