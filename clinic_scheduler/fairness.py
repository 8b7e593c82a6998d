"""
Fairness ledger: cumulative per-staff deviation across five work-burden dimensions.

The running totals on Staff are a materialised view of an append-only ledger.
Each deployed schedule appends one MONTHLY entry per staff member holding
``baseline - actual`` per dimension; an administrator may append a RESET entry
that brings the totals back to zero. Replaying the ledger reproduces the totals.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .day_types import burdened_dimensions, classify
from .errors import DuplicateError, NotFound
from .models import (
    ALL_DIMENSIONS, Dimension, DoctorSchedule, FairnessLedgerEntry, Holiday, Schedule,
    ShiftType, Staff, StaffAssignment,
)

logger = logging.getLogger(__name__)

WORKED_SHIFTS = (ShiftType.DAY.value, ShiftType.NIGHT.value)


def _staff_field(dim: str) -> str:
    return f"fairness_{dim}"


def _delta_field(dim: str) -> str:
    return f"delta_{dim}"


def deviation(staff: Staff, dimension) -> float:
    dim = Dimension(dimension).value
    return float(getattr(staff, _staff_field(dim)) or 0.0)


def deviations(staff: Staff) -> Dict[str, float]:
    return {dim: deviation(staff, dim) for dim in ALL_DIMENSIONS}


def overall_score(staff: Staff, enabled: Optional[Iterable[str]] = None) -> float:
    """Sum of the enabled dimensions. Positive = has carried less than a fair share."""
    dims = list(enabled) if enabled is not None else ALL_DIMENSIONS
    return sum(deviation(staff, d) for d in dims)


def holidays_between(db: Session, clinic_id: int, start: date, end: date) -> List[date]:
    """Holidays in [start-1, end+1] so adjacency at the edges is visible."""
    rows = db.query(Holiday.date).filter(
        Holiday.clinic_id == clinic_id,
        Holiday.date >= start - timedelta(days=1),
        Holiday.date <= end + timedelta(days=1),
    ).all()
    return [r[0] for r in rows]


def _month_bounds(year: int, month: int):
    start = date(year, month, 1)
    nxt = date(year + (month // 12), month % 12 + 1, 1)
    return start, nxt - timedelta(days=1)


def compute_monthly_deviation(
    db: Session,
    schedule: Schedule,
    enabled: Optional[Iterable[str]] = None,
) -> Dict[int, Dict[str, float]]:
    """Per-staff ``baseline - actual`` for one schedule month.

    Baseline per dimension = department total / active staff in the department.
    Disabled dimensions contribute 0.
    """
    enabled_set = set(enabled) if enabled is not None else set(ALL_DIMENSIONS)
    start, end = _month_bounds(schedule.year, schedule.month)
    holidays = holidays_between(db, schedule.clinic_id, start, end)

    night_dates = {
        r[0] for r in db.query(DoctorSchedule.date).filter(
            DoctorSchedule.clinic_id == schedule.clinic_id,
            DoctorSchedule.date >= start,
            DoctorSchedule.date <= end,
            DoctorSchedule.night_shift.is_(True),
        ).all()
    }

    staff = db.query(Staff).filter(
        Staff.clinic_id == schedule.clinic_id, Staff.is_active.is_(True),
    ).order_by(Staff.id).all()
    actual: Dict[int, Dict[str, int]] = {s.id: defaultdict(int) for s in staff}

    worked = db.query(StaffAssignment).filter(
        StaffAssignment.schedule_id == schedule.id,
        StaffAssignment.shift_type.in_(WORKED_SHIFTS),
    ).all()
    for a in worked:
        if a.staff_id not in actual:
            continue  # deactivated since assignment
        night = a.shift_type == ShiftType.NIGHT.value or a.date in night_dates
        for dim in burdened_dimensions(classify(a.date, holidays), night):
            actual[a.staff_id][dim.value] += 1

    by_dept: Dict[str, List[Staff]] = defaultdict(list)
    for s in staff:
        by_dept[s.department_name].append(s)

    out: Dict[int, Dict[str, float]] = {}
    for dept, members in by_dept.items():
        n = len(members)
        for dim in ALL_DIMENSIONS:
            if dim not in enabled_set:
                continue
            baseline = sum(actual[m.id][dim] for m in members) / n
            for m in members:
                out.setdefault(m.id, {d: 0.0 for d in ALL_DIMENSIONS})[dim] = baseline - actual[m.id][dim]
        for m in members:
            out.setdefault(m.id, {d: 0.0 for d in ALL_DIMENSIONS})
    return out


def apply_monthly_deviation(
    db: Session,
    staff_id: int,
    deltas: Dict[str, float],
    schedule: Schedule,
    actor: Optional[str] = None,
) -> FairnessLedgerEntry:
    """Append the month's entry and add it to the running totals.

    The increment is a single UPDATE on the staff row. A second call for the
    same (staff, schedule) violates the ledger's unique key and raises
    DuplicateError, so a deployment can move the totals only once.
    """
    clean = {dim: float(deltas.get(dim, 0.0)) for dim in ALL_DIMENSIONS}
    entry = FairnessLedgerEntry(
        staff_id=staff_id,
        schedule_id=schedule.id,
        kind="MONTHLY",
        year=schedule.year,
        month=schedule.month,
        actor=actor,
        **{_delta_field(d): v for d, v in clean.items()},
    )
    try:
        with db.begin_nested():
            db.add(entry)
            db.flush()
    except IntegrityError as exc:
        raise DuplicateError(
            f"Fairness for staff {staff_id} was already updated for schedule {schedule.id}"
        ) from exc

    db.execute(
        update(Staff)
        .where(Staff.id == staff_id)
        .values({
            getattr(Staff, _staff_field(d)): getattr(Staff, _staff_field(d)) + v
            for d, v in clean.items()
        })
        .execution_options(synchronize_session="fetch")
    )
    return entry


def apply_schedule_deviation(
    db: Session,
    schedule: Schedule,
    enabled: Optional[Iterable[str]] = None,
    actor: Optional[str] = None,
) -> Dict[int, Dict[str, float]]:
    """Compute and apply the month's deviation for every active staff member."""
    deltas = compute_monthly_deviation(db, schedule, enabled)
    for staff_id, d in deltas.items():
        apply_monthly_deviation(db, staff_id, d, schedule, actor=actor)
    logger.info(
        "fairness ledger updated for %d staff (schedule %s, %04d-%02d)",
        len(deltas), schedule.id, schedule.year, schedule.month,
    )
    return deltas


def reset_fairness(db: Session, staff_id: int, actor: str, note: str = "") -> FairnessLedgerEntry:
    """Administrative reset: append a RESET entry that zeroes the running totals."""
    staff = db.get(Staff, staff_id)
    if staff is None:
        raise NotFound(f"Staff {staff_id} not found")
    current = deviations(staff)
    entry = FairnessLedgerEntry(
        staff_id=staff_id,
        kind="RESET",
        actor=actor,
        note=note,
        **{_delta_field(d): -v for d, v in current.items()},
    )
    db.add(entry)
    for d in ALL_DIMENSIONS:
        setattr(staff, _staff_field(d), 0.0)
    db.flush()
    logger.warning("fairness reset for staff %s by %s (%s)", staff_id, actor, note or "no note")
    return entry


def fairness_history(db: Session, staff_id: int) -> List[FairnessLedgerEntry]:
    return db.query(FairnessLedgerEntry).filter(
        FairnessLedgerEntry.staff_id == staff_id,
    ).order_by(FairnessLedgerEntry.created_at, FairnessLedgerEntry.id).all()


def replay(entries: Iterable[FairnessLedgerEntry]) -> Dict[str, float]:
    """Running totals implied by a sequence of ledger entries."""
    totals = {d: 0.0 for d in ALL_DIMENSIONS}
    for e in entries:
        for d in ALL_DIMENSIONS:
            totals[d] += getattr(e, _delta_field(d)) or 0.0
    return totals
