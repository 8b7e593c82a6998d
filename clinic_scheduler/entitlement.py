"""Annual leave entitlement and remaining balance."""
from datetime import date
from typing import Optional

from sqlalchemy import extract, func
from sqlalchemy.orm import Session

from .models import LeaveApplication, LeaveStatus, LeaveType, Staff

MAX_FIRST_YEAR_DAYS = 11
BASE_DAYS = 15
MAX_DAYS = 25


def completed_months(start: date, end: date) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(0, months)


def years_of_service(hire_date: date, base_date: date) -> int:
    return completed_months(hire_date, base_date) // 12


def calculate_annual_leave(hire_date: Optional[date], base_date: Optional[date] = None) -> int:
    """Statutory entitlement from hire date.

    Under one year: one day per completed month (max 11).
    One to three years: 15. From three years: one extra day every two years, max 25.
    """
    if hire_date is None:
        return BASE_DAYS
    base_date = base_date or date.today()
    if base_date < hire_date:
        return 0
    years = years_of_service(hire_date, base_date)
    if years < 1:
        return min(completed_months(hire_date, base_date), MAX_FIRST_YEAR_DAYS)
    if years < 3:
        return BASE_DAYS
    return min(BASE_DAYS + (years - 1) // 2, MAX_DAYS)


def entitlement(staff: Staff, base_date: Optional[date] = None) -> int:
    if staff.annual_leave_days is not None:
        return staff.annual_leave_days
    return calculate_annual_leave(staff.hire_date, base_date)


def applied_annual_days(db: Session, staff_id: int, year: int) -> int:
    """Live ANNUAL applications in ``year``: PENDING, CONFIRMED and ON_HOLD all hold a day."""
    return db.query(func.count(LeaveApplication.id)).filter(
        LeaveApplication.staff_id == staff_id,
        LeaveApplication.leave_type == LeaveType.ANNUAL.value,
        LeaveApplication.status != LeaveStatus.REJECTED.value,
        extract("year", LeaveApplication.date) == year,
    ).scalar() or 0


def remaining_annual_days(db: Session, staff: Staff, on: Optional[date] = None) -> int:
    on = on or date.today()
    used = staff.annual_leave_used or 0
    return entitlement(staff, on) - used - applied_annual_days(db, staff.id, on.year)
