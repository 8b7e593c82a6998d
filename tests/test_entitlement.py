from datetime import date

import pytest

from clinic_scheduler.entitlement import calculate_annual_leave, completed_months, remaining_annual_days
from clinic_scheduler.leave import admin_create
from clinic_scheduler.models import Staff

BASE = date(2025, 11, 21)


@pytest.mark.parametrize("hire, expected", [
    (date(2025, 5, 21), 6),
    (date(2025, 5, 22), 5),
    (date(2024, 12, 1), 11),
    (date(2024, 11, 21), 15),
    (date(2022, 11, 22), 15),
    (date(2022, 11, 21), 16),
    (date(2020, 11, 21), 17),
    (date(1990, 1, 1), 25),
    (date(2026, 1, 1), 0),
])
def test_calculate_annual_leave(hire, expected):
    assert calculate_annual_leave(hire, BASE) == expected


def test_completed_months_respects_day_of_month():
    assert completed_months(date(2025, 1, 31), date(2025, 2, 28)) == 0
    assert completed_months(date(2025, 1, 15), date(2025, 3, 15)) == 2


def test_remaining_counts_live_applications(db, session_factory, clinic_id, make_staff):
    sid = make_staff(clinic_id, "Kim", annual_leave_days=3, annual_leave_used=1)
    admin_create(session_factory, clinic_id, sid, date(2025, 3, 4), "ANNUAL")
    admin_create(session_factory, clinic_id, sid, date(2024, 3, 4), "ANNUAL")  # other year
    staff = db.get(Staff, sid)
    assert remaining_annual_days(db, staff, BASE) == 1
