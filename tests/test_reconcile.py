from datetime import date

from clinic_scheduler.leave import cancel, cancel_confirmed, deactivate_staff, submit
from clinic_scheduler.models import Clinic, LeaveApplication, Staff
from clinic_scheduler.notifications import RecordingNotifier
from clinic_scheduler.reconcile import reconcile, reconcile_all

from conftest import LEAVE_DAY


def _statuses(db):
    return {a.id: a.status for a in db.query(LeaveApplication).all()}


def _fill(session_factory, clinic_id, staff):
    return [submit(session_factory, clinic_id, sid, LEAVE_DAY, "OFF") for sid in staff]


def test_hold_queue_then_overflow(session_factory, clinic_id, hygienist_day):
    results = _fill(session_factory, clinic_id, hygienist_day)
    assert [r.status for r in results] == ["CONFIRMED", "CONFIRMED", "ON_HOLD", "ON_HOLD", "REJECTED"]
    assert results[2].reason == "CAPACITY_HELD"
    assert results[4].reason == "SLOT_OVERFLOW"


def test_scenario_d_cancel_promotes_earliest_held(db, session_factory, clinic_id, hygienist_day):
    first, _, held_a, held_b = _fill(session_factory, clinic_id, hygienist_day[:4])
    notifier = RecordingNotifier()
    result = cancel_confirmed(session_factory, first.id, notifier=notifier)
    assert result.status == "REJECTED"
    assert result.reconciled.promoted == [held_a.id]
    assert result.reconciled.still_held == [held_b.id]
    assert [e.application_id for e in notifier.events] == [held_a.id]
    statuses = _statuses(db)
    assert statuses[held_a.id] == "CONFIRMED"
    assert statuses[held_b.id] == "ON_HOLD"


def test_reconcile_is_idempotent(db, session_factory, clinic_id, hygienist_day):
    first, _, held_a, held_b = _fill(session_factory, clinic_id, hygienist_day[:4])
    cancel_confirmed(session_factory, first.id)
    before = _statuses(db)
    db.rollback()
    again = reconcile(session_factory, clinic_id, LEAVE_DAY)
    assert again.promoted == []
    assert again.partition() == {"CONFIRMED": [], "ON_HOLD": [held_b.id]}
    assert _statuses(db) == before


def test_reconcile_without_free_capacity_changes_nothing(db, session_factory, clinic_id, hygienist_day):
    _fill(session_factory, clinic_id, hygienist_day[:4])
    result = reconcile(session_factory, clinic_id, LEAVE_DAY)
    assert result.promoted == []
    assert len(result.still_held) == 2


def test_cancelling_held_request_frees_queue_not_slot(db, session_factory, clinic_id, hygienist_day):
    results = _fill(session_factory, clinic_id, hygienist_day[:4])
    cancelled = cancel(session_factory, results[2].id, staff_id=hygienist_day[2])
    assert cancelled.reconciled is None
    late = submit(session_factory, clinic_id, hygienist_day[4], LEAVE_DAY, "OFF")
    assert late.status == "ON_HOLD"


def test_fairness_priority_order(db, session_factory, clinic_id, hygienist_day):
    first, _, held_a, held_b = _fill(session_factory, clinic_id, hygienist_day[:4])
    db.get(Clinic, clinic_id).hold_priority = "FAIRNESS"
    db.get(Staff, hygienist_day[3]).fairness_total = 2.0  # owed more than the earlier applicant
    db.commit()
    result = cancel_confirmed(session_factory, first.id)
    assert result.reconciled.promoted == [held_b.id]


def test_capacity_increase_reconciles_all_dates(db, session_factory, clinic_id, hygienist_day, make_staff):
    _fill(session_factory, clinic_id, hygienist_day[:3])
    make_staff(clinic_id, "New hire")  # six hygienists: three may be away
    results = reconcile_all(session_factory, clinic_id)
    assert [r.date for r in results] == [LEAVE_DAY]
    assert len(results[0].promoted) == 1


def test_new_request_does_not_overtake_held(db, session_factory, clinic_id, hygienist_day, make_staff):
    _, _, held = _fill(session_factory, clinic_id, hygienist_day[:3])
    assert held.status == "ON_HOLD"
    make_staff(clinic_id, "New hire")  # capacity grows with no cancellation
    notifier = RecordingNotifier()
    late = submit(session_factory, clinic_id, hygienist_day[3], LEAVE_DAY, "OFF", notifier=notifier)
    assert late.reconciled.promoted == [held.id]
    assert late.status == "ON_HOLD"
    assert _statuses(db)[held.id] == "CONFIRMED"
    assert [(e.application_id, e.outcome) for e in notifier.events] == [(held.id, "CONFIRMED"), (late.id, "ON_HOLD")]


def test_submit_without_held_queue_skips_reconcile(session_factory, clinic_id, hygienist_day):
    result = submit(session_factory, clinic_id, hygienist_day[0], LEAVE_DAY, "OFF")
    assert result.reconciled is None


def test_deactivation_withdraws_upcoming_leave(db, session_factory, clinic_id, hygienist_day):
    first, second, held_a, held_b = _fill(session_factory, clinic_id, hygienist_day[:4])
    withdrawn = deactivate_staff(session_factory, hygienist_day[2], today=LEAVE_DAY)
    assert [(w.id, w.status, w.reason) for w in withdrawn] == [(held_a.id, "REJECTED", "CANCELLED")]
    db.expire_all()
    assert db.get(Staff, hygienist_day[2]).is_active is False
    statuses = _statuses(db)
    assert (statuses[first.id], statuses[second.id], statuses[held_b.id]) == ("CONFIRMED", "CONFIRMED", "ON_HOLD")


def test_deactivation_keeps_past_leave_as_history(db, session_factory, clinic_id, hygienist_day):
    first = submit(session_factory, clinic_id, hygienist_day[0], LEAVE_DAY, "OFF")
    withdrawn = deactivate_staff(session_factory, hygienist_day[0], today=date(2025, 12, 1))
    assert withdrawn == []
    assert _statuses(db)[first.id] == "CONFIRMED"
