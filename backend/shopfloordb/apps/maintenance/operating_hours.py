# backend/shopfloordb/apps/maintenance/operating_hours.py
#
# Operating-hours tracking.
#
# Responsibilities:
# - Append readings to a machine's hours log with previous value and delta.
# - Apply the configured policy to readings lower than the current counter.
# - Refresh the hours clock of every active plan on the machine in the same
#   transaction, so no reader sees a new counter with stale plan status.
# - Usage statistics and simple "days until due" forecasts.

from __future__ import annotations

import logging
import math
import os
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from shopfloordb.apps.audit import services as audit_services
from shopfloordb.apps.machines.models import HoursSource, Machine, OperatingHoursReading

from ...utils.timeutils import ensure_utc, local_date, utcnow
from . import due_status
from .errors import AnomalousReading, ReferenceNotFound, ValidationFailed
from .models import DueStatus, MaintenancePlan

logger = logging.getLogger(__name__)


class HoursDecreasePolicy(str, Enum):
    """What to do with a reading below the machine's current counter."""
    REJECT = "reject"  # refuse the reading, nothing is written
    FLAG = "flag"      # store it as an anomaly and accept the lower counter
    CLAMP = "clamp"    # store it as an anomaly, keep the counter where it was


def configured_decrease_policy() -> HoursDecreasePolicy:
    raw = (os.getenv("OPERATING_HOURS_DECREASE_POLICY") or HoursDecreasePolicy.REJECT.value).strip().lower()
    try:
        return HoursDecreasePolicy(raw)
    except ValueError:
        logger.warning("Unknown OPERATING_HOURS_DECREASE_POLICY %r, using reject", raw)
        return HoursDecreasePolicy.REJECT


@dataclass
class ReadingOutcome:
    reading: OperatingHoursReading
    machine: Machine
    is_anomaly: bool
    due_plans: List[MaintenancePlan] = field(default_factory=list)


def _get_machine_for_update(db: Session, machine_id: int) -> Machine:
    machine = (
        db.query(Machine)
        .filter(Machine.id == machine_id)
        .with_for_update()
        .first()
    )
    if machine is None:
        raise ReferenceNotFound.for_field("machine_id", f"machine {machine_id} not found")
    return machine


def refresh_plan_hours_status(db: Session, *, machine: Machine, now: datetime) -> List[MaintenancePlan]:
    """
    Recompute the cached hours status of the machine's active plans and return
    the plans that are not `ok` on their combined status.
    """
    plans = (
        db.query(MaintenancePlan)
        .filter(
            MaintenancePlan.machine_id == machine.id,
            MaintenancePlan.is_active.is_(True),
        )
        .order_by(MaintenancePlan.id)
        .all()
    )

    due: List[MaintenancePlan] = []
    for plan in plans:
        evaluation = due_status.evaluate_plan(plan, now=now, current_hours=machine.current_operating_hours)
        plan.hours_status = evaluation.hours_status
        if evaluation.status != DueStatus.OK:
            due.append(plan)
    db.flush()
    return due


def record_reading(
    db: Session,
    *,
    machine_id: int,
    recorded_hours: float,
    recorded_by_user_id: Optional[int] = None,
    source: HoursSource = HoursSource.MANUAL,
    notes: Optional[str] = None,
    policy: Optional[HoursDecreasePolicy] = None,
    now: Optional[datetime] = None,
) -> ReadingOutcome:
    if recorded_hours is None or not math.isfinite(float(recorded_hours)):
        raise ValidationFailed.for_field("recorded_hours", "a numeric reading is required")
    recorded_hours = float(recorded_hours)
    if recorded_hours < 0:
        raise ValidationFailed.for_field("recorded_hours", "operating hours cannot be negative")

    now = now or utcnow()
    machine = _get_machine_for_update(db, machine_id)
    previous = float(machine.current_operating_hours or 0.0)

    is_anomaly = recorded_hours < previous
    effective = recorded_hours
    if is_anomaly:
        policy = policy or configured_decrease_policy()
        if policy == HoursDecreasePolicy.REJECT:
            raise AnomalousReading.for_field(
                "recorded_hours",
                f"reading {recorded_hours} is below the current counter {previous}",
            )
        logger.warning(
            "Decreasing operating-hours reading accepted as anomaly",
            extra={
                "machine_id": machine.id,
                "previous_hours": previous,
                "recorded_hours": recorded_hours,
                "policy": policy.value,
            },
        )
        if policy == HoursDecreasePolicy.CLAMP:
            effective = previous

    reading = OperatingHoursReading(
        machine_id=machine.id,
        recorded_hours=recorded_hours,
        previous_hours=previous,
        delta_hours=effective - previous,
        is_anomaly=is_anomaly,
        recorded_by_user_id=recorded_by_user_id,
        recorded_at=now,
        source=source,
        notes=notes,
    )
    db.add(reading)

    machine.current_operating_hours = effective
    machine.operating_hours_updated_at = now
    db.flush()

    due_plans = refresh_plan_hours_status(db, machine=machine, now=now)

    audit_services.log_event(
        db,
        actor_user_id=recorded_by_user_id,
        entity_type="machines.operating_hours",
        entity_id=str(machine.id),
        action="READING_ANOMALY" if is_anomaly else "READING_RECORDED",
        before={"current_operating_hours": previous},
        after={"current_operating_hours": effective, "recorded_hours": recorded_hours},
        metadata={"reading_id": reading.id, "source": source.value},
    )

    return ReadingOutcome(reading=reading, machine=machine, is_anomaly=is_anomaly, due_plans=due_plans)


def list_readings(
    db: Session,
    *,
    machine_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
) -> List[OperatingHoursReading]:
    query = db.query(OperatingHoursReading).filter(OperatingHoursReading.machine_id == machine_id)
    if start:
        query = query.filter(OperatingHoursReading.recorded_at >= start)
    if end:
        query = query.filter(OperatingHoursReading.recorded_at <= end)
    return (
        query.order_by(OperatingHoursReading.recorded_at.desc(), OperatingHoursReading.id.desc())
        .limit(limit)
        .all()
    )


# ---------------------------------------------------------------------------
# Statistics / forecasts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlanHoursForecast:
    plan_id: int
    title: str
    next_due_hours: float
    hours_remaining: float
    estimated_days_until_due: Optional[int]
    estimated_due_at: Optional[datetime]


@dataclass(frozen=True)
class HoursStatistics:
    machine_id: int
    current_operating_hours: float
    period_days: int
    reading_count: int
    total_hours_period: float
    average_daily_hours: float
    daily_hours: Dict[str, float]
    upcoming: List[PlanHoursForecast]


def hours_statistics(
    db: Session,
    *,
    machine_id: int,
    days: int = 30,
    now: Optional[datetime] = None,
    forecast_limit: int = 5,
) -> HoursStatistics:
    """
    Average daily usage over the period (anomalies excluded) and, for each
    hours-based plan, the estimated number of days until its next due value.
    """
    if days <= 0:
        raise ValidationFailed.for_field("days", "must be positive")
    now = now or utcnow()
    machine = db.get(Machine, machine_id)
    if machine is None:
        raise ReferenceNotFound.for_field("machine_id", f"machine {machine_id} not found")

    readings = (
        db.query(OperatingHoursReading)
        .filter(
            OperatingHoursReading.machine_id == machine_id,
            OperatingHoursReading.recorded_at >= now - timedelta(days=days),
            OperatingHoursReading.is_anomaly.is_(False),
        )
        .all()
    )

    per_day: Dict[str, float] = defaultdict(float)
    for reading in readings:
        if reading.delta_hours and reading.delta_hours > 0:
            per_day[local_date(reading.recorded_at).isoformat()] += reading.delta_hours

    total = sum(per_day.values())
    average = total / len(per_day) if per_day else 0.0
    current = float(machine.current_operating_hours or 0.0)

    plans = (
        db.query(MaintenancePlan)
        .filter(
            MaintenancePlan.machine_id == machine_id,
            MaintenancePlan.is_active.is_(True),
            MaintenancePlan.interval_hours.isnot(None),
            MaintenancePlan.next_due_hours.isnot(None),
        )
        .order_by(MaintenancePlan.next_due_hours.asc())
        .limit(forecast_limit)
        .all()
    )

    upcoming: List[PlanHoursForecast] = []
    for plan in plans:
        remaining = plan.next_due_hours - current
        est_days: Optional[int] = None
        est_at: Optional[datetime] = None
        if average > 0:
            est_days = max(0, math.ceil(remaining / average))
            est_at = ensure_utc(now) + timedelta(days=est_days)
        upcoming.append(
            PlanHoursForecast(
                plan_id=plan.id,
                title=plan.title,
                next_due_hours=plan.next_due_hours,
                hours_remaining=remaining,
                estimated_days_until_due=est_days,
                estimated_due_at=est_at,
            )
        )

    return HoursStatistics(
        machine_id=machine_id,
        current_operating_hours=current,
        period_days=days,
        reading_count=len(readings),
        total_hours_period=total,
        average_daily_hours=average,
        daily_hours=dict(sorted(per_day.items(), reverse=True)),
        upcoming=upcoming,
    )
