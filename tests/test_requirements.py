from datetime import date

import pytest

from clinic_scheduler.errors import ValidationError
from clinic_scheduler.requirements import (
    ANY_DEPARTMENT, CombinationEntry, parse_requirement_table, resolve, resolve_for_date, split_by_ratio,
)

DAY = date(2025, 11, 21)


def _entry(doctors, table, night=False, total=None):
    return CombinationEntry(
        doctors=tuple(sorted(doctors)),
        night_shift=night,
        total_required=total if total is not None else sum(sum(c.values()) for c in table.values()),
        table=table,
    )


COMBOS = [
    _entry(["K", "L"], {"Treatment": {"Hygienist": 3, "Assistant": 1}, "Desk": {"Coordinator": 1}}),
    _entry(["K", "L"], {"Treatment": {"Hygienist": 2}}, night=True),
]


def test_doctor_order_does_not_matter():
    req = resolve(DAY, ["L", "K"], False, COMBOS)
    assert req.total_required == 5
    assert req.required_for("Hygienist") == 3
    assert req.gap is None


def test_night_flag_selects_other_combination():
    req = resolve(DAY, ["K", "L"], True, COMBOS)
    assert req.required_for("Hygienist") == 2
    assert req.night_shift is True


def test_no_match_is_configuration_gap():
    req = resolve(DAY, ["K", "M"], False, COMBOS)
    assert req.total_required == 0
    assert req.gap is not None
    assert req.gap.doctors == ("K", "M")
    assert req.warnings and "no doctor combination" in req.warnings[0]


def test_no_doctors_is_closed_day_not_gap():
    req = resolve(DAY, [], False, COMBOS)
    assert req.total_required == 0
    assert req.gap is None


def test_excluded_department_dropped_from_total():
    req = resolve(DAY, ["K", "L"], False, COMBOS, excluded_departments={"Desk"})
    assert "Desk" not in req.by_department
    assert req.total_required == 4
    assert req.required_for("Coordinator") == 0


def test_ratio_fallback_when_no_table():
    combos = [_entry(["K"], {}, total=5)]
    req = resolve(DAY, ["K"], False, combos, category_ratios={"Hygienist": 60, "Assistant": 40})
    assert req.by_department == {ANY_DEPARTMENT: {"Hygienist": 3, "Assistant": 2}}
    assert req.total_required == 5


def test_fully_excluded_table_does_not_fall_back_to_ratios():
    combos = [_entry(["K"], {"Treatment": {"Hygienist": 3}})]
    req = resolve(
        DAY, ["K"], False, combos, excluded_departments={"Treatment"}, category_ratios={"Hygienist": 100},
    )
    assert req.by_department == {}
    assert req.total_required == 0
    assert req.required_for("Hygienist") == 0


def test_split_by_ratio_gives_remainder_to_last():
    assert split_by_ratio(7, {"A": 33.3, "B": 33.3, "C": 33.4}) == {"A": 2, "B": 2, "C": 3}


def test_split_by_ratio_must_sum_to_100():
    with pytest.raises(ValidationError):
        split_by_ratio(5, {"A": 50, "B": 30})


def test_parse_long_form_table():
    table = parse_requirement_table({"Treatment": {"Hygienist": {"count": 3, "minRequired": 2}, "Assistant": 1}})
    assert table == {"Treatment": {"Hygienist": 3, "Assistant": 1}}


@pytest.mark.parametrize("raw", [
    {"Treatment": {"Hygienist": -1}},
    {"Treatment": {"Hygienist": "many"}},
    {"Treatment": ["Hygienist"]},
    {" ": {"Hygienist": 1}},
])
def test_parse_rejects_malformed_tables(raw):
    with pytest.raises(ValidationError):
        parse_requirement_table(raw)


def test_resolve_for_date_reads_store(db, clinic_id, make_combination, put_doctors, add_department):
    make_combination(clinic_id, ["K"], {"Treatment": {"Hygienist": 2}, "Lab": {"Technician": 1}})
    add_department(clinic_id, "Lab", use_auto_assignment=False)
    put_doctors(clinic_id, DAY, ["K"])
    req = resolve_for_date(db, clinic_id, DAY)
    assert req.doctors == ("K",)
    assert req.by_department == {"Treatment": {"Hygienist": 2}}
    assert req.total_required == 2
