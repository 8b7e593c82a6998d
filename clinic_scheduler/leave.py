"""
Leave application state machine.

    submit ──> CONFIRMED | PENDING | ON_HOLD | REJECTED(SLOT_OVERFLOW / ANNUAL_DAILY_LIMIT)
    PENDING ──review──> CONFIRMED | REJECTED(DECLINED)
    PENDING, ON_HOLD ──cancel──> REJECTED(CANCELLED)
    ON_HOLD ──reconcile──> CONFIRMED
    CONFIRMED ──cancel_confirmed (admin)──> REJECTED(CANCELLED), then reconcile
    any live ──deactivate_staff──> REJECTED(CANCELLED), then reconcile

The duplicate check, the capacity count and the insert of ``submit`` run in one
serializable transaction; two requests racing for the last slot in a category
cannot both see it free. Notifications go out only after the commit.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import load_policy
from .database import run_serializable
from .entitlement import remaining_annual_days
from .errors import (
    DuplicateError, EntitlementExhausted, FairnessBelowThreshold, InvalidTransition,
    NotFound, Reason, ValidationError,
)
from .fairness import overall_score
from .models import LeaveApplication, LeaveStatus, LeaveType, Staff, utcnow
from .notifications import DEFAULT_NOTIFIER, LeaveEvent, Notifier, notify_safely
from .reconcile import ReconcileResult, reconcile, reconcile_in_session
from .requirements import resolve_for_date
from .slots import SlotDecision, annual_reserved_count, category_capacity, decide

logger = logging.getLogger(__name__)

NOTIFY_ON = (LeaveStatus.CONFIRMED.value, LeaveStatus.ON_HOLD.value)

TRANSITIONS: Dict[str, Set[str]] = {
    LeaveStatus.PENDING.value: {LeaveStatus.CONFIRMED.value, LeaveStatus.REJECTED.value},
    LeaveStatus.ON_HOLD.value: {LeaveStatus.CONFIRMED.value, LeaveStatus.REJECTED.value},
    LeaveStatus.CONFIRMED.value: {LeaveStatus.REJECTED.value},
    LeaveStatus.REJECTED.value: set(),
}


@dataclass
class SubmitResult:
    id: int
    staff_id: int
    date: date
    leave_type: str
    status: str
    reason: Optional[str] = None
    message: str = ""
    warnings: List[str] = field(default_factory=list)
    reconciled: Optional[ReconcileResult] = None

    @classmethod
    def from_row(cls, app: LeaveApplication, message: str = "", warnings=None) -> "SubmitResult":
        return cls(
            id=app.id,
            staff_id=app.staff_id,
            date=app.date,
            leave_type=app.leave_type,
            status=app.status,
            reason=app.reason,
            message=message,
            warnings=list(warnings or []),
        )


def _validate(day, leave_type) -> str:
    if not isinstance(day, date):
        raise ValidationError("date is required")
    try:
        return LeaveType(leave_type).value
    except ValueError:
        raise ValidationError(f"leave type must be one of {[t.value for t in LeaveType]}, got {leave_type!r}")


def _load_staff(db: Session, clinic_id: int, staff_id: int) -> Staff:
    staff = db.get(Staff, staff_id)
    if staff is None or staff.clinic_id != clinic_id:
        raise NotFound(f"Staff {staff_id} not found")
    if not staff.is_active:
        raise ValidationError(f"Staff {staff_id} is not active")
    return staff


def _load_application(db: Session, application_id: int) -> LeaveApplication:
    app = db.get(LeaveApplication, application_id)
    if app is None:
        raise NotFound(f"Leave application {application_id} not found")
    return app


def _ensure_no_active(db: Session, staff_id: int, day: date) -> None:
    existing = db.query(LeaveApplication).filter(
        LeaveApplication.staff_id == staff_id,
        LeaveApplication.date == day,
        LeaveApplication.status != LeaveStatus.REJECTED.value,
    ).first()
    if existing:
        raise DuplicateError(
            f"Staff {staff_id} already has a {existing.status} application for {day.isoformat()}"
        )


def _insert(db: Session, app: LeaveApplication) -> None:
    try:
        with db.begin_nested():
            db.add(app)
            db.flush()
    except IntegrityError as exc:
        raise DuplicateError(
            f"Staff {app.staff_id} already has an active application for {app.date.isoformat()}"
        ) from exc


def transition(app: LeaveApplication, target: str, reason: Optional[str] = None) -> None:
    if target not in TRANSITIONS.get(app.status, set()):
        raise InvalidTransition(f"Cannot move application {app.id} from {app.status} to {target}")
    app.status = target
    app.reason = reason
    app.reviewed_at = utcnow()


def _notify(notifier: Optional[Notifier], result: SubmitResult) -> None:
    if result.status in NOTIFY_ON:
        notify_safely(
            notifier if notifier is not None else DEFAULT_NOTIFIER,
            LeaveEvent(result.staff_id, result.date, result.leave_type, result.status, result.id),
        )


def submit(
    session_factory: Callable[[], Session],
    clinic_id: int,
    staff_id: int,
    day: date,
    leave_type: str,
    notifier: Optional[Notifier] = None,
    note: Optional[str] = None,
) -> SubmitResult:
    """Self-service submission. Raises DuplicateError, FairnessBelowThreshold,
    EntitlementExhausted or ConcurrencyConflict; capacity outcomes are returned."""
    leave_type = _validate(day, leave_type)

    def work(db: Session) -> SubmitResult:
        staff = _load_staff(db, clinic_id, staff_id)
        policy = load_policy(db, clinic_id)
        _ensure_no_active(db, staff_id, day)

        if policy.fairness_gate_enabled:
            score = overall_score(staff, policy.enabled_dimensions)
            threshold = policy.threshold_for(leave_type)
            if score < threshold:
                raise FairnessBelowThreshold(
                    f"Fairness score {score:.2f} is below the {leave_type} threshold {threshold:.2f}"
                )

        if leave_type == LeaveType.ANNUAL.value:
            remaining = remaining_annual_days(db, staff, day)
            if remaining <= 0:
                raise EntitlementExhausted(f"No annual leave days remaining ({remaining})")

        requirement = resolve_for_date(db, clinic_id, day, policy.category_ratios)
        capacity = category_capacity(db, clinic_id, day, staff.category_name, requirement)
        reconciled = None
        if capacity.on_hold and capacity.approved < capacity.allowed_absences:
            # earlier held requests take the free slots first
            reconciled = reconcile_in_session(db, clinic_id, day)
            capacity = category_capacity(db, clinic_id, day, staff.category_name, requirement)
        annual_today = annual_reserved_count(db, clinic_id, day) if leave_type == LeaveType.ANNUAL.value else 0
        decision: SlotDecision = decide(capacity, policy, leave_type, annual_today)

        now = utcnow()
        app = LeaveApplication(
            clinic_id=clinic_id,
            staff_id=staff_id,
            date=day,
            leave_type=leave_type,
            status=decision.status,
            reason=decision.reason,
            note=note,
            created_by="STAFF",
            created_at=now,
            reviewed_at=now if decision.status == LeaveStatus.CONFIRMED.value else None,
        )
        _insert(db, app)
        logger.info(
            "submit staff=%s %s %s category=%s allowed=%d approved=%d on_hold=%d -> %s%s",
            staff_id, leave_type, day.isoformat(), staff.category_name, capacity.allowed_absences,
            capacity.approved, capacity.on_hold, decision.status,
            f" ({decision.reason})" if decision.reason else "",
        )
        result = SubmitResult.from_row(app, decision.message, requirement.warnings)
        result.reconciled = reconciled
        return result

    result = run_serializable(session_factory, work)
    if result.reconciled is not None:
        for event in result.reconciled.events:
            notify_safely(notifier if notifier is not None else DEFAULT_NOTIFIER, event)
    _notify(notifier, result)
    return result


def admin_create(
    session_factory: Callable[[], Session],
    clinic_id: int,
    staff_id: int,
    day: date,
    leave_type: str,
    actor: str = "admin",
    note: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> SubmitResult:
    """Administrator entry: CONFIRMED directly, no capacity or fairness check.
    The one-active-application rule still applies."""
    leave_type = _validate(day, leave_type)

    def work(db: Session) -> SubmitResult:
        _load_staff(db, clinic_id, staff_id)
        _ensure_no_active(db, staff_id, day)
        now = utcnow()
        app = LeaveApplication(
            clinic_id=clinic_id,
            staff_id=staff_id,
            date=day,
            leave_type=leave_type,
            status=LeaveStatus.CONFIRMED.value,
            note=note,
            created_by="ADMIN",
            created_at=now,
            reviewed_at=now,
        )
        _insert(db, app)
        logger.info("admin %s confirmed %s %s for staff %s", actor, leave_type, day.isoformat(), staff_id)
        return SubmitResult.from_row(app, "Confirmed by administrator")

    result = run_serializable(session_factory, work)
    _notify(notifier, result)
    return result


def review(
    session_factory: Callable[[], Session],
    application_id: int,
    approve: bool,
    actor: str = "admin",
    notifier: Optional[Notifier] = None,
) -> SubmitResult:
    """Administrator decision on a PENDING application (decline also covers ON_HOLD).
    Declining a PENDING one frees its slot, so held requests are reconciled."""

    def work(db: Session):
        app = _load_application(db, application_id)
        was = app.status
        if approve:
            if was != LeaveStatus.PENDING.value:
                raise InvalidTransition(f"Only PENDING applications can be approved (is {was})")
            transition(app, LeaveStatus.CONFIRMED.value)
        else:
            if was not in (LeaveStatus.PENDING.value, LeaveStatus.ON_HOLD.value):
                raise InvalidTransition(f"Only PENDING or ON_HOLD applications can be declined (is {was})")
            transition(app, LeaveStatus.REJECTED.value, Reason.DECLINED.value)
        db.flush()
        logger.info("admin %s %s application %s (%s)", actor, "approved" if approve else "declined", app.id, was)
        freed = was == LeaveStatus.PENDING.value and not approve
        return SubmitResult.from_row(app, "Approved" if approve else "Declined by administrator"), freed, app.clinic_id

    result, freed, clinic_id = run_serializable(session_factory, work)
    _notify(notifier, result)
    if freed:
        result.reconciled = reconcile(session_factory, clinic_id, result.date, notifier)
    return result


def cancel(
    session_factory: Callable[[], Session],
    application_id: int,
    staff_id: Optional[int] = None,
    notifier: Optional[Notifier] = None,
) -> SubmitResult:
    """Staff withdrawal of a PENDING or ON_HOLD request."""

    def work(db: Session) -> SubmitResult:
        app = _load_application(db, application_id)
        if staff_id is not None and app.staff_id != staff_id:
            raise NotFound(f"Leave application {application_id} not found")
        if app.status == LeaveStatus.CONFIRMED.value:
            raise InvalidTransition("Confirmed leave can only be cancelled by an administrator")
        was = app.status
        transition(app, LeaveStatus.REJECTED.value, Reason.CANCELLED.value)
        db.flush()
        logger.info("staff %s cancelled application %s (%s)", app.staff_id, app.id, was)
        result = SubmitResult.from_row(app, "Cancelled")
        return result, was, app.clinic_id

    result, was, clinic_id = run_serializable(session_factory, work)
    if was == LeaveStatus.PENDING.value:
        result.reconciled = reconcile(session_factory, clinic_id, result.date, notifier)
    return result


def cancel_confirmed(
    session_factory: Callable[[], Session],
    application_id: int,
    actor: str = "admin",
    notifier: Optional[Notifier] = None,
) -> SubmitResult:
    """Administrative cancellation of CONFIRMED leave; the freed slot goes to the
    held queue through reconcile."""

    def work(db: Session):
        app = _load_application(db, application_id)
        if app.status != LeaveStatus.CONFIRMED.value:
            raise InvalidTransition(f"Application {application_id} is {app.status}, not CONFIRMED")
        transition(app, LeaveStatus.REJECTED.value, Reason.CANCELLED.value)
        db.flush()
        logger.warning("admin %s cancelled confirmed leave %s (staff %s, %s)", actor, app.id, app.staff_id, app.date.isoformat())
        return SubmitResult.from_row(app, "Cancelled by administrator"), app.clinic_id

    result, clinic_id = run_serializable(session_factory, work)
    result.reconciled = reconcile(session_factory, clinic_id, result.date, notifier)
    return result


def deactivate_staff(
    session_factory: Callable[[], Session],
    staff_id: int,
    actor: str = "admin",
    today: Optional[date] = None,
    notifier: Optional[Notifier] = None,
) -> List[SubmitResult]:
    """Soft delete. Live applications from ``today`` on are withdrawn and the
    held queue on those dates is reconciled; past leave stays as history."""
    today = today or date.today()

    def work(db: Session):
        staff = db.get(Staff, staff_id)
        if staff is None:
            raise NotFound(f"Staff {staff_id} not found")
        staff.is_active = False
        live = db.query(LeaveApplication).filter(
            LeaveApplication.staff_id == staff_id,
            LeaveApplication.date >= today,
            LeaveApplication.status != LeaveStatus.REJECTED.value,
        ).order_by(LeaveApplication.date, LeaveApplication.id).all()
        for app in live:
            transition(app, LeaveStatus.REJECTED.value, Reason.CANCELLED.value)
        db.flush()
        logger.info("admin %s deactivated staff %s; withdrew %d application(s)", actor, staff_id, len(live))
        return [SubmitResult.from_row(a, "Withdrawn: staff deactivated") for a in live], staff.clinic_id

    withdrawn, clinic_id = run_serializable(session_factory, work)
    for day in sorted({w.date for w in withdrawn}):
        reconcile(session_factory, clinic_id, day, notifier)
    return withdrawn


def list_applications(
    db: Session,
    clinic_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    status: Optional[str] = None,
    staff_id: Optional[int] = None,
) -> List[LeaveApplication]:
    q = db.query(LeaveApplication).filter(LeaveApplication.clinic_id == clinic_id)
    if start:
        q = q.filter(LeaveApplication.date >= start)
    if end:
        q = q.filter(LeaveApplication.date <= end)
    if status:
        q = q.filter(LeaveApplication.status == status)
    if staff_id:
        q = q.filter(LeaveApplication.staff_id == staff_id)
    return q.order_by(LeaveApplication.date, LeaveApplication.created_at, LeaveApplication.id).all()
