from datetime import date

import pytest

from clinic_scheduler.deployment import deploy_schedule
from clinic_scheduler.errors import DuplicateError, InvalidTransition, NotFound
from clinic_scheduler.fairness import (
    apply_monthly_deviation, compute_monthly_deviation, deviations, fairness_history, overall_score,
    replay, reset_fairness,
)
from clinic_scheduler.models import Schedule, Staff, StaffAssignment


@pytest.fixture
def november(db, clinic_id, make_staff):
    """Treatment: A works three weekdays plus a Saturday night, B one weekday. Desk: C idle."""
    a = make_staff(clinic_id, "A")
    b = make_staff(clinic_id, "B")
    c = make_staff(clinic_id, "C", category="Coordinator", department="Desk")
    schedule = Schedule(clinic_id=clinic_id, year=2025, month=11)
    db.add(schedule)
    db.flush()
    rows = [
        (a, date(2025, 11, 3), "DAY"), (a, date(2025, 11, 4), "DAY"), (a, date(2025, 11, 5), "DAY"),
        (a, date(2025, 11, 8), "NIGHT"),
        (b, date(2025, 11, 3), "DAY"), (b, date(2025, 11, 8), "OFF"),
        (c, date(2025, 11, 3), "ANNUAL"),
    ]
    for sid, day, shift in rows:
        db.add(StaffAssignment(clinic_id=clinic_id, schedule_id=schedule.id, staff_id=sid, date=day, shift_type=shift))
    sched_id = schedule.id
    db.commit()
    return {"a": a, "b": b, "c": c, "schedule": sched_id}


def test_monthly_deviation_is_baseline_minus_actual(db, november):
    deltas = compute_monthly_deviation(db, db.get(Schedule, november["schedule"]))
    a, b, c = deltas[november["a"]], deltas[november["b"]], deltas[november["c"]]
    assert a["total"] == pytest.approx(-1.5)
    assert b["total"] == pytest.approx(1.5)
    assert a["night"] == pytest.approx(-0.5)
    assert b["weekend"] == pytest.approx(0.5)
    assert a["holiday"] == 0.0
    assert c == {"total": 0.0, "night": 0.0, "weekend": 0.0, "holiday": 0.0, "holiday_adjacent": 0.0}


def test_department_deltas_sum_to_zero(db, november):
    deltas = compute_monthly_deviation(db, db.get(Schedule, november["schedule"]))
    for dim in ("total", "night", "weekend"):
        assert deltas[november["a"]][dim] + deltas[november["b"]][dim] == pytest.approx(0.0)


def test_disabled_dimensions_contribute_nothing(db, november):
    deltas = compute_monthly_deviation(db, db.get(Schedule, november["schedule"]), enabled=["total"])
    assert deltas[november["a"]]["night"] == 0.0
    assert deltas[november["a"]]["total"] == pytest.approx(-1.5)


def test_holiday_dimensions(db, clinic_id, november, add_holiday):
    add_holiday(clinic_id, date(2025, 11, 4))
    deltas = compute_monthly_deviation(db, db.get(Schedule, november["schedule"]))
    # A worked the holiday and both neighbours; B worked the day before
    assert deltas[november["a"]]["holiday"] == pytest.approx(-0.5)
    assert deltas[november["a"]]["holiday_adjacent"] == pytest.approx(-0.5)
    assert deltas[november["b"]]["holiday_adjacent"] == pytest.approx(0.5)


def test_deploy_updates_totals_once(db, session_factory, clinic_id, november):
    deploy_schedule(session_factory, clinic_id, november["schedule"], actor="admin")
    a = db.get(Staff, november["a"])
    assert a.fairness_total == pytest.approx(-1.5)
    assert db.get(Schedule, november["schedule"]).status == "DEPLOYED"
    db.rollback()

    with pytest.raises(InvalidTransition):
        deploy_schedule(session_factory, clinic_id, november["schedule"])
    with pytest.raises(DuplicateError):
        apply_monthly_deviation(db, november["a"], {"total": 5.0}, db.get(Schedule, november["schedule"]))
    db.rollback()
    assert db.get(Staff, november["a"]).fairness_total == pytest.approx(-1.5)


def test_deviation_is_cumulative_across_months(db, session_factory, clinic_id, november):
    deploy_schedule(session_factory, clinic_id, november["schedule"])
    december = Schedule(clinic_id=clinic_id, year=2025, month=12)
    db.add(december)
    db.flush()
    db.add(StaffAssignment(clinic_id=clinic_id, schedule_id=december.id, staff_id=november["a"], date=date(2025, 12, 1), shift_type="DAY"))
    dec_id = december.id
    db.commit()
    deploy_schedule(session_factory, clinic_id, dec_id)
    assert db.get(Staff, november["a"]).fairness_total == pytest.approx(-1.5 - 0.5)
    assert db.get(Staff, november["b"]).fairness_total == pytest.approx(1.5 + 0.5)


def test_reset_is_audited_and_replayable(db, session_factory, clinic_id, november):
    deploy_schedule(session_factory, clinic_id, november["schedule"])
    db.rollback()
    staff = db.get(Staff, november["a"])
    assert replay(fairness_history(db, staff.id)) == pytest.approx(deviations(staff))

    entry = reset_fairness(db, staff.id, actor="admin", note="contract renewed")
    db.commit()
    assert entry.kind == "RESET"
    assert entry.delta_total == pytest.approx(1.5)
    assert overall_score(staff) == 0.0
    history = fairness_history(db, staff.id)
    assert [e.kind for e in history] == ["MONTHLY", "RESET"]
    assert replay(history) == pytest.approx(deviations(staff))


def test_reset_unknown_staff(db):
    with pytest.raises(NotFound):
        reset_fairness(db, 4242, actor="admin")
