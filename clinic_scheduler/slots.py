"""
Category slot allocation.

For one date and staff category:
  allowed_absences = max(0, active staff in category - required)
  approved         = CONFIRMED + PENDING applications (slots already reserved)
  on_hold          = ON_HOLD applications queued behind them

Only applications of active staff count; a deactivated person holds no slot.

A request is accepted while approved < allowed_absences, held while the hold
queue still has room (approved + on_hold < allowed_absences + hold_queue_size),
and rejected with SLOT_OVERFLOW once the category is provably oversubscribed.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .config import PolicyConfig, load_policy
from .errors import Reason
from .models import LeaveApplication, LeaveStatus, LeaveType, Staff
from .requirements import DailyRequirement, excluded_departments, resolve_for_date

logger = logging.getLogger(__name__)

RESERVING = (LeaveStatus.CONFIRMED.value, LeaveStatus.PENDING.value)


@dataclass
class CategoryCapacity:
    date: date
    category: str
    required: int
    total_staff: int
    confirmed: int = 0
    pending: int = 0
    on_hold: int = 0

    @property
    def allowed_absences(self) -> int:
        return max(0, self.total_staff - self.required)

    @property
    def approved(self) -> int:
        return self.confirmed + self.pending

    @property
    def available(self) -> int:
        return max(0, self.allowed_absences - self.approved)

    def overflow_threshold(self, hold_queue_size: int) -> int:
        return self.allowed_absences + max(0, hold_queue_size)

    def as_status(self) -> dict:
        return {
            "required": self.required,
            "total_staff": self.total_staff,
            "allowed": self.allowed_absences,
            "available": self.available,
            "approved": self.approved,
            "onHold": self.on_hold,
        }


@dataclass(frozen=True)
class SlotDecision:
    status: str
    reason: Optional[str] = None

    @property
    def message(self) -> str:
        if self.status == LeaveStatus.ON_HOLD.value:
            return "Held: no free slot in your category right now; it is approved automatically if one frees up"
        if self.status == LeaveStatus.REJECTED.value:
            if self.reason == Reason.ANNUAL_DAILY_LIMIT.value:
                return "Rejected: the daily limit for annual leave on this date is reached"
            return "Rejected: your category is fully booked for this date, including the waiting list"
        if self.status == LeaveStatus.PENDING.value:
            return "Submitted: a slot is reserved and waiting for administrator review"
        return "Confirmed"


def active_staff_count(db: Session, clinic_id: int, category: str) -> int:
    q = db.query(func.count(Staff.id)).filter(
        Staff.clinic_id == clinic_id,
        Staff.category_name == category,
        Staff.is_active.is_(True),
    )
    excluded = excluded_departments(db, clinic_id)
    if excluded:
        q = q.filter(Staff.department_name.notin_(excluded))
    return q.scalar() or 0


def _status_counts(db: Session, clinic_id: int, day: date, category: Optional[str] = None):
    q = db.query(Staff.category_name, LeaveApplication.status, func.count(LeaveApplication.id)).join(
        Staff, Staff.id == LeaveApplication.staff_id,
    ).filter(
        LeaveApplication.clinic_id == clinic_id,
        LeaveApplication.date == day,
        LeaveApplication.status != LeaveStatus.REJECTED.value,
        Staff.is_active.is_(True),
    )
    if category is not None:
        q = q.filter(Staff.category_name == category)
    counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for cat, status, n in q.group_by(Staff.category_name, LeaveApplication.status).all():
        counts[cat][status] = n
    return counts


def category_capacity(
    db: Session,
    clinic_id: int,
    day: date,
    category: str,
    requirement: Optional[DailyRequirement] = None,
    policy: Optional[PolicyConfig] = None,
) -> CategoryCapacity:
    """Fresh capacity for one category. Call inside the caller's transaction so
    the counts and the write that follows see the same snapshot."""
    if requirement is None:
        policy = policy or load_policy(db, clinic_id)
        requirement = resolve_for_date(db, clinic_id, day, policy.category_ratios)
    counts = _status_counts(db, clinic_id, day, category)[category]
    return CategoryCapacity(
        date=day,
        category=category,
        required=requirement.required_for(category),
        total_staff=active_staff_count(db, clinic_id, category),
        confirmed=counts.get(LeaveStatus.CONFIRMED.value, 0),
        pending=counts.get(LeaveStatus.PENDING.value, 0),
        on_hold=counts.get(LeaveStatus.ON_HOLD.value, 0),
    )


def annual_reserved_count(db: Session, clinic_id: int, day: date) -> int:
    return db.query(func.count(LeaveApplication.id)).join(
        Staff, Staff.id == LeaveApplication.staff_id,
    ).filter(
        LeaveApplication.clinic_id == clinic_id,
        Staff.is_active.is_(True),
        LeaveApplication.date == day,
        LeaveApplication.leave_type == LeaveType.ANNUAL.value,
        LeaveApplication.status.in_(RESERVING),
    ).scalar() or 0


def decide(
    capacity: CategoryCapacity,
    policy: PolicyConfig,
    leave_type: str = LeaveType.OFF.value,
    annual_reserved: int = 0,
) -> SlotDecision:
    """Outcome for one more request against ``capacity``."""
    if (
        leave_type == LeaveType.ANNUAL.value
        and policy.max_annual_per_day > 0
        and annual_reserved >= policy.max_annual_per_day
    ):
        return SlotDecision(LeaveStatus.REJECTED.value, Reason.ANNUAL_DAILY_LIMIT.value)

    if capacity.approved < capacity.allowed_absences:
        status = LeaveStatus.CONFIRMED if policy.auto_confirm else LeaveStatus.PENDING
        return SlotDecision(status.value)

    if capacity.approved + capacity.on_hold < capacity.overflow_threshold(policy.hold_queue_size):
        return SlotDecision(LeaveStatus.ON_HOLD.value, Reason.CAPACITY_HELD.value)

    return SlotDecision(LeaveStatus.REJECTED.value, Reason.SLOT_OVERFLOW.value)


def capacity_status(
    db: Session,
    clinic_id: int,
    start: date,
    end: date,
    policy: Optional[PolicyConfig] = None,
) -> Dict[str, Dict[str, dict]]:
    """Read-only slot view: {date: {category: {required, available, approved, onHold, ...}}}."""
    policy = policy or load_policy(db, clinic_id)
    staff_categories = [
        r[0] for r in db.query(Staff.category_name).filter(
            Staff.clinic_id == clinic_id, Staff.is_active.is_(True),
        ).distinct().order_by(Staff.category_name).all()
    ]
    totals = {c: active_staff_count(db, clinic_id, c) for c in staff_categories}

    out: Dict[str, Dict[str, dict]] = {}
    day = start
    while day <= end:
        req = resolve_for_date(db, clinic_id, day, policy.category_ratios)
        counts = _status_counts(db, clinic_id, day)
        categories = list(staff_categories) + [c for c in req.categories if c not in staff_categories]
        per_cat = {}
        for cat in categories:
            c = counts.get(cat, {})
            per_cat[cat] = CategoryCapacity(
                date=day,
                category=cat,
                required=req.required_for(cat),
                total_staff=totals.get(cat, 0),
                confirmed=c.get(LeaveStatus.CONFIRMED.value, 0),
                pending=c.get(LeaveStatus.PENDING.value, 0),
                on_hold=c.get(LeaveStatus.ON_HOLD.value, 0),
            ).as_status()
        out[day.isoformat()] = per_cat
        if req.gap:
            logger.info("capacity view %s: %s", day.isoformat(), req.gap.message)
        day += timedelta(days=1)
    return out
