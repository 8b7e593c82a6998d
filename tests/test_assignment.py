from datetime import date

import pytest

from clinic_scheduler.assignment import Candidate, assign, assign_range, plan_day, rank_candidates
from clinic_scheduler.deployment import deploy_schedule
from clinic_scheduler.errors import InvalidTransition
from clinic_scheduler.leave import admin_create, submit
from clinic_scheduler.models import Clinic, Dimension, StaffAssignment
from clinic_scheduler.requirements import DailyRequirement

from conftest import LEAVE_DAY


def _req(table, night=False, day=LEAVE_DAY):
    return DailyRequirement(
        date=day, doctors=("K",), night_shift=night,
        total_required=sum(sum(c.values()) for c in table.values()), by_department=table,
    )


def _cand(sid, dev, category="Nurse", department="Ward", flexible=(), priority=0):
    return Candidate(sid, f"S{sid}", category, department, dev, tuple(flexible), priority)


def test_scenario_e_lowest_deviation_first():
    cands = [_cand(1, 1.0), _cand(2, -0.5), _cand(3, 0.3)]
    plan = plan_day(_req({"Ward": {"Nurse": 2}}), cands, Dimension.HOLIDAY)
    assert plan.picked_ids == {2, 3}
    assert not plan.warnings


def test_ties_broken_by_staff_id():
    ranked = rank_candidates([_cand(9, 0.0), _cand(4, 0.0), _cand(7, -1.0)])
    assert [c.staff_id for c in ranked] == [7, 4, 9]


def test_department_scopes_the_pool():
    cands = [_cand(1, -5.0, department="Other"), _cand(2, 0.0), _cand(3, 1.0)]
    plan = plan_day(_req({"Ward": {"Nurse": 2}}), cands, Dimension.TOTAL)
    assert plan.picked_ids == {2, 3}


def test_flexible_pool_fills_shortfall():
    cands = [
        _cand(1, 0.0),
        _cand(2, 0.0, category="Aide", flexible=["Nurse"], priority=1),
        _cand(3, 0.0, category="Aide", flexible=["Nurse"], priority=5),
        _cand(4, -3.0, category="Aide"),
    ]
    plan = plan_day(_req({"Ward": {"Nurse": 2}}), cands, Dimension.TOTAL)
    assert plan.picked_ids == {1, 3}
    assert [p.staff_id for p in plan.picks if p.flexible] == [3]


def test_remaining_shortfall_is_warning():
    cands = [_cand(1, 0.0), _cand(2, 0.0, category="Aide", flexible=["Nurse"])]
    plan = plan_day(_req({"Ward": {"Nurse": 4}}), cands, Dimension.TOTAL)
    assert plan.picked_ids == {1, 2}
    assert plan.shortfalls == {("Ward", "Nurse"): 2}
    assert "short by 2" in plan.warnings[0]


@pytest.fixture
def ward(clinic_id, make_staff, make_combination, put_doctors, add_holiday):
    ids = {
        "plus": make_staff(clinic_id, "Plus", category="Nurse", department="Ward", fairness_holiday=1.0),
        "minus": make_staff(clinic_id, "Minus", category="Nurse", department="Ward", fairness_holiday=-0.5),
        "small": make_staff(clinic_id, "Small", category="Nurse", department="Ward", fairness_holiday=0.3),
    }
    make_combination(clinic_id, ["K"], {"Ward": {"Nurse": 2}})
    put_doctors(clinic_id, LEAVE_DAY, ["K"])
    add_holiday(clinic_id, LEAVE_DAY)
    return ids


def _rows(db, day=LEAVE_DAY):
    return {a.staff_id: a for a in db.query(StaffAssignment).filter(StaffAssignment.date == day).all()}


def test_assign_uses_holiday_dimension(db, session_factory, clinic_id, ward):
    result = assign(session_factory, clinic_id, LEAVE_DAY)
    assert result.dimension == "holiday"
    assert set(result.working) == {ward["minus"], ward["small"]}
    assert result.off == [ward["plus"]]
    rows = _rows(db)
    assert rows[ward["minus"]].shift_type == "DAY"
    assert rows[ward["minus"]].category_name == "Nurse"
    assert rows[ward["plus"]].shift_type == "OFF"


def test_confirmed_leave_excluded_and_mirrored(db, session_factory, clinic_id, ward):
    leave = admin_create(session_factory, clinic_id, ward["minus"], LEAVE_DAY, "ANNUAL")
    result = assign(session_factory, clinic_id, LEAVE_DAY)
    assert set(result.working) == {ward["small"], ward["plus"]}
    assert result.on_leave == {ward["minus"]: "ANNUAL"}
    row = _rows(db)[ward["minus"]]
    assert (row.shift_type, row.leave_application_id) == ("ANNUAL", leave.id)


def test_held_leave_does_not_exclude(db, session_factory, clinic_id, ward):
    db.get(Clinic, clinic_id).auto_confirm = False
    db.commit()
    submit(session_factory, clinic_id, ward["minus"], LEAVE_DAY, "OFF")  # PENDING, not excluded
    result = assign(session_factory, clinic_id, LEAVE_DAY)
    assert ward["minus"] in result.working


def test_rerun_replaces_the_day(db, session_factory, clinic_id, ward):
    assign(session_factory, clinic_id, LEAVE_DAY)
    assign(session_factory, clinic_id, LEAVE_DAY)
    assert len(_rows(db)) == 3


def test_night_shift_rows(db, session_factory, clinic_id, make_staff, make_combination, put_doctors):
    day = date(2025, 11, 19)
    nurse = make_staff(clinic_id, "Night nurse", category="Nurse", department="Ward")
    make_combination(clinic_id, ["K"], {"Ward": {"Nurse": 1}}, night_shift=True)
    put_doctors(clinic_id, day, ["K"], night_shift=True)
    result = assign(session_factory, clinic_id, day)
    assert result.dimension == "night"
    assert result.working == {nurse: "NIGHT"}


def test_configuration_gap_surfaces_as_warning(session_factory, clinic_id, ward, put_doctors):
    day = date(2025, 11, 18)
    put_doctors(clinic_id, day, ["Z"])
    result = assign(session_factory, clinic_id, day)
    assert result.working == {}
    assert any("no doctor combination" in w for w in result.warnings)


def test_assign_range_and_deployed_month(session_factory, clinic_id, ward):
    results = assign_range(session_factory, clinic_id, date(2025, 11, 20), LEAVE_DAY)
    assert [r.date for r in results] == [date(2025, 11, 20), LEAVE_DAY]
    deploy_schedule(session_factory, clinic_id, results[0].schedule_id)
    with pytest.raises(InvalidTransition):
        assign(session_factory, clinic_id, LEAVE_DAY)
