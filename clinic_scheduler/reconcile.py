"""On-hold reconciliation: promote held requests into capacity freed since they were held."""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from .config import HOLD_BY_FAIRNESS, PolicyConfig, load_policy
from .database import run_serializable
from .fairness import overall_score
from .models import LeaveApplication, LeaveStatus, Staff, utcnow
from .notifications import DEFAULT_NOTIFIER, LeaveEvent, Notifier, notify_safely
from .requirements import resolve_for_date
from .slots import category_capacity

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    date: date
    promoted: List[int] = field(default_factory=list)
    still_held: List[int] = field(default_factory=list)
    events: List[LeaveEvent] = field(default_factory=list)

    def partition(self) -> Dict[str, List[int]]:
        return {"CONFIRMED": sorted(self.promoted), "ON_HOLD": sorted(self.still_held)}


def hold_order(apps: List[LeaveApplication], staff: Dict[int, Staff], policy: PolicyConfig) -> List[LeaveApplication]:
    """Submission order by default. FAIRNESS puts the most-owed staff first,
    submission order breaking ties."""
    if policy.hold_priority == HOLD_BY_FAIRNESS:
        return sorted(apps, key=lambda a: (
            -overall_score(staff[a.staff_id], policy.enabled_dimensions), a.created_at, a.id,
        ))
    return sorted(apps, key=lambda a: (a.created_at, a.id))


def reconcile_in_session(db: Session, clinic_id: int, day: date) -> ReconcileResult:
    """Promote ON_HOLD applications for ``day`` while their category has room.
    Counts are re-read after each promotion. Does not commit."""
    policy = load_policy(db, clinic_id)
    result = ReconcileResult(date=day)
    held = db.query(LeaveApplication).filter(
        LeaveApplication.clinic_id == clinic_id,
        LeaveApplication.date == day,
        LeaveApplication.status == LeaveStatus.ON_HOLD.value,
    ).all()
    if not held:
        return result

    staff = {s.id: s for s in db.query(Staff).filter(Staff.id.in_(sorted({a.staff_id for a in held}))).all()}
    by_category: Dict[str, List[LeaveApplication]] = defaultdict(list)
    for a in held:
        by_category[staff[a.staff_id].category_name].append(a)

    requirement = resolve_for_date(db, clinic_id, day, policy.category_ratios)
    for category in sorted(by_category):
        for app in hold_order(by_category[category], staff, policy):
            if not staff[app.staff_id].is_active:
                result.still_held.append(app.id)
                continue
            capacity = category_capacity(db, clinic_id, day, category, requirement)
            if capacity.approved < capacity.allowed_absences:
                app.status = LeaveStatus.CONFIRMED.value
                app.reason = None
                app.reviewed_at = utcnow()
                db.flush()
                result.promoted.append(app.id)
                result.events.append(LeaveEvent(app.staff_id, app.date, app.leave_type, app.status, app.id))
            else:
                result.still_held.append(app.id)
    if result.promoted:
        logger.info("reconcile %s: promoted %s, still held %s", day.isoformat(), result.promoted, result.still_held)
    return result


def reconcile(
    session_factory: Callable[[], Session],
    clinic_id: int,
    day: date,
    notifier: Optional[Notifier] = None,
) -> ReconcileResult:
    """Idempotent: with no change in between, a second run promotes nothing."""
    result = run_serializable(session_factory, lambda db: reconcile_in_session(db, clinic_id, day))
    for event in result.events:
        notify_safely(notifier if notifier is not None else DEFAULT_NOTIFIER, event)
    return result


def held_dates(db: Session, clinic_id: int, start: Optional[date] = None) -> List[date]:
    q = db.query(LeaveApplication.date).filter(
        LeaveApplication.clinic_id == clinic_id,
        LeaveApplication.status == LeaveStatus.ON_HOLD.value,
    )
    if start is not None:
        q = q.filter(LeaveApplication.date >= start)
    return [r[0] for r in q.distinct().order_by(LeaveApplication.date).all()]


def reconcile_all(
    session_factory: Callable[[], Session],
    clinic_id: int,
    start: Optional[date] = None,
    notifier: Optional[Notifier] = None,
) -> List[ReconcileResult]:
    """Reconcile every date that has held requests, e.g. after the requirement
    table changed."""
    db = session_factory()
    try:
        dates = held_dates(db, clinic_id, start)
    finally:
        db.close()
    return [reconcile(session_factory, clinic_id, d, notifier) for d in dates]
