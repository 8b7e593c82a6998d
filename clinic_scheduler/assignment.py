"""
Auto-assignment of working shifts for one date.

For each (department, category) slot of the day's requirement, pick ``required``
staff from the active pool, excluding anyone on CONFIRMED leave. Candidates are
ranked by their cumulative deviation on the dimension that matters most for the
date (holiday > holiday-adjacent > weekend > night > total), ascending, with the
staff id as tie-break. Slots still short after the first pass are filled from
staff marked flexible for that category, ranked the same way and then by
flexibility priority. Any remaining gap is a warning; the day is saved partial.

Rows written per date: NIGHT or DAY for picked staff, ANNUAL/OFF mirrored from
confirmed leave (linked to the application), OFF for everyone else.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Set, Tuple

from sqlalchemy.orm import Session

from .config import load_policy
from .database import run_serializable
from .day_types import classify, relevant_dimension
from .errors import InvalidTransition, ValidationError
from .fairness import deviation, holidays_between
from .models import (
    Dimension, LeaveApplication, LeaveStatus, LeaveType, Schedule, ScheduleStatus, ShiftType,
    Staff, StaffAssignment,
)
from .requirements import ANY_DEPARTMENT, DailyRequirement, excluded_departments, resolve_for_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    staff_id: int
    name: str
    category: str
    department: str
    deviation: float
    flexible_categories: Tuple[str, ...] = ()
    flexibility_priority: int = 0

    @classmethod
    def from_staff(cls, s: Staff, dimension: Dimension) -> "Candidate":
        return cls(
            staff_id=s.id,
            name=s.name,
            category=s.category_name,
            department=s.department_name,
            deviation=deviation(s, dimension),
            flexible_categories=tuple(s.flexible_categories or ()),
            flexibility_priority=int(s.flexibility_priority or 0),
        )


def rank_candidates(candidates: Iterable[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (c.deviation, c.staff_id))


def rank_flexible(candidates: Iterable[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (c.deviation, -c.flexibility_priority, c.staff_id))


@dataclass
class Pick:
    staff_id: int
    department: str
    category: str
    flexible: bool = False


@dataclass
class DayPlan:
    date: date
    night_shift: bool
    dimension: Dimension
    picks: List[Pick] = field(default_factory=list)
    shortfalls: Dict[Tuple[str, str], int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def picked_ids(self) -> Set[int]:
        return {p.staff_id for p in self.picks}


def _in_department(c: Candidate, department: str) -> bool:
    return department == ANY_DEPARTMENT or c.department == department


def plan_day(requirement: DailyRequirement, candidates: List[Candidate], dimension: Dimension) -> DayPlan:
    """Pure selection; no database access."""
    plan = DayPlan(date=requirement.date, night_shift=requirement.night_shift, dimension=dimension)
    plan.warnings.extend(requirement.warnings)
    used: Set[int] = set()

    slots = [
        (dept, cat, n)
        for dept in sorted(requirement.by_department)
        for cat, n in sorted(requirement.by_department[dept].items())
        if n > 0
    ]

    short: List[Tuple[str, str, int]] = []
    for dept, cat, required in slots:
        pool = [c for c in candidates if c.category == cat and _in_department(c, dept) and c.staff_id not in used]
        chosen = rank_candidates(pool)[:required]
        for c in chosen:
            used.add(c.staff_id)
            plan.picks.append(Pick(c.staff_id, dept, cat))
        if len(chosen) < required:
            short.append((dept, cat, required - len(chosen)))

    for dept, cat, missing in short:
        pool = [
            c for c in candidates
            if c.staff_id not in used and c.category != cat and cat in c.flexible_categories
        ]
        chosen = rank_flexible(pool)[:missing]
        for c in chosen:
            used.add(c.staff_id)
            plan.picks.append(Pick(c.staff_id, dept, cat, flexible=True))
        left = missing - len(chosen)
        if left:
            plan.shortfalls[(dept, cat)] = left
            where = "" if dept == ANY_DEPARTMENT else f"{dept}/"
            plan.warnings.append(
                f"{requirement.date.isoformat()}: {where}{cat} short by {left} after flexible cover"
            )
    return plan


@dataclass
class AssignmentResult:
    date: date
    schedule_id: int
    dimension: str
    working: Dict[int, str] = field(default_factory=dict)  # staff_id -> DAY/NIGHT
    on_leave: Dict[int, str] = field(default_factory=dict)  # staff_id -> ANNUAL/OFF
    off: List[int] = field(default_factory=list)
    flexible: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def get_or_create_schedule(db: Session, clinic_id: int, year: int, month: int) -> Schedule:
    schedule = db.query(Schedule).filter(
        Schedule.clinic_id == clinic_id, Schedule.year == year, Schedule.month == month,
    ).first()
    if schedule is None:
        schedule = Schedule(clinic_id=clinic_id, year=year, month=month, status=ScheduleStatus.DRAFT.value)
        db.add(schedule)
        db.flush()
    return schedule


def assign_in_session(db: Session, clinic_id: int, day: date) -> AssignmentResult:
    policy = load_policy(db, clinic_id)
    schedule = get_or_create_schedule(db, clinic_id, day.year, day.month)
    if schedule.status == ScheduleStatus.DEPLOYED.value:
        raise InvalidTransition(f"Schedule {day.year}-{day.month:02d} is already deployed")

    requirement = resolve_for_date(db, clinic_id, day, policy.category_ratios)
    holidays = holidays_between(db, clinic_id, day, day)
    dimension = relevant_dimension(classify(day, holidays), requirement.night_shift, policy.enabled_dimensions)

    excluded = excluded_departments(db, clinic_id)
    staff = [
        s for s in db.query(Staff).filter(
            Staff.clinic_id == clinic_id, Staff.is_active.is_(True),
        ).order_by(Staff.id).all()
        if s.department_name not in excluded
    ]
    leave = {
        a.staff_id: a for a in db.query(LeaveApplication).filter(
            LeaveApplication.clinic_id == clinic_id,
            LeaveApplication.date == day,
            LeaveApplication.status == LeaveStatus.CONFIRMED.value,
        ).all()
    }

    candidates = [Candidate.from_staff(s, dimension) for s in staff if s.id not in leave]
    plan = plan_day(requirement, candidates, dimension)

    db.query(StaffAssignment).filter(
        StaffAssignment.schedule_id == schedule.id,
        StaffAssignment.date == day,
    ).delete(synchronize_session=False)

    result = AssignmentResult(date=day, schedule_id=schedule.id, dimension=dimension.value, warnings=list(plan.warnings))
    work_shift = ShiftType.NIGHT.value if requirement.night_shift else ShiftType.DAY.value
    picks = {p.staff_id: p for p in plan.picks}
    for s in staff:
        row = StaffAssignment(clinic_id=clinic_id, schedule_id=schedule.id, staff_id=s.id, date=day)
        if s.id in leave:
            app = leave[s.id]
            row.shift_type = ShiftType.ANNUAL.value if app.leave_type == LeaveType.ANNUAL.value else ShiftType.OFF.value
            row.leave_application_id = app.id
            result.on_leave[s.id] = row.shift_type
        elif s.id in picks:
            row.shift_type = work_shift
            row.category_name = picks[s.id].category
            result.working[s.id] = work_shift
            if picks[s.id].flexible:
                result.flexible.append(s.id)
        else:
            row.shift_type = ShiftType.OFF.value
            result.off.append(s.id)
        db.add(row)
    db.flush()

    for w in result.warnings:
        logger.warning(w)
    logger.info(
        "assign %s (%s): %d working, %d on leave, %d off",
        day.isoformat(), dimension.value, len(result.working), len(result.on_leave), len(result.off),
    )
    return result


def assign(session_factory: Callable[[], Session], clinic_id: int, day: date) -> AssignmentResult:
    return run_serializable(session_factory, lambda db: assign_in_session(db, clinic_id, day))


def assign_range(
    session_factory: Callable[[], Session],
    clinic_id: int,
    start: date,
    end: date,
) -> List[AssignmentResult]:
    """One transaction per date so a late failure keeps the earlier days."""
    if end < start:
        raise ValidationError("end date is before start date")
    results = []
    day = start
    while day <= end:
        results.append(assign(session_factory, clinic_id, day))
        day += timedelta(days=1)
    return results


def warnings_of(results: Iterable[AssignmentResult]) -> List[str]:
    return [w for r in results for w in r.warnings]
