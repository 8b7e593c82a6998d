"""SQLAlchemy models for the clinic scheduling DB."""
from datetime import datetime, timezone
from enum import Enum
from typing import List

from sqlalchemy import (
    Column, Integer, String, Boolean, Float, ForeignKey, JSON, Date, DateTime, Text,
    Index, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LeaveType(str, Enum):
    ANNUAL = "ANNUAL"
    OFF = "OFF"


class LeaveStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    ON_HOLD = "ON_HOLD"
    REJECTED = "REJECTED"


class ShiftType(str, Enum):
    DAY = "DAY"
    NIGHT = "NIGHT"
    OFF = "OFF"
    ANNUAL = "ANNUAL"


class ScheduleStatus(str, Enum):
    DRAFT = "DRAFT"
    DEPLOYED = "DEPLOYED"


class Dimension(str, Enum):
    """Work-burden dimensions tracked by the fairness ledger."""
    TOTAL = "total"
    NIGHT = "night"
    WEEKEND = "weekend"
    HOLIDAY = "holiday"
    HOLIDAY_ADJACENT = "holiday_adjacent"


ALL_DIMENSIONS: List[str] = [d.value for d in Dimension]


class Clinic(Base):
    __tablename__ = "clinics"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    auto_confirm = Column(Boolean, default=True)  # False = fitting requests wait as PENDING
    hold_queue_size = Column(Integer, default=2)  # ON_HOLD allowed beyond allowed absences
    hold_priority = Column(String(20), default="SUBMISSION")  # SUBMISSION or FAIRNESS
    fairness_gate_enabled = Column(Boolean, default=True)
    annual_fairness_threshold = Column(Float, default=-10.0)
    off_fairness_threshold = Column(Float, default=-3.0)
    enabled_dimensions = Column(JSON, default=lambda: list(ALL_DIMENSIONS))
    max_annual_per_day = Column(Integer, default=0)  # 0 = unlimited
    category_ratios = Column(JSON, default=dict)  # {"Hygienist": 60, "Assistant": 40}
    created_at = Column(DateTime, default=utcnow)


class Department(Base):
    __tablename__ = "departments"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    name = Column(String(50), nullable=False)
    use_auto_assignment = Column(Boolean, default=True)

    __table_args__ = (UniqueConstraint("clinic_id", "name", name="uq_department_name"),)


class Staff(Base):
    __tablename__ = "staff"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    category_name = Column(String(50), nullable=False, index=True)  # e.g. "Hygienist"
    department_name = Column(String(50), nullable=False)
    is_active = Column(Boolean, default=True)
    hire_date = Column(Date, nullable=True)
    annual_leave_days = Column(Integer, nullable=True)  # null = derive from hire_date
    annual_leave_used = Column(Integer, default=0)  # taken outside the application flow
    flexible_categories = Column(JSON, default=list)  # other categories this person can cover
    flexibility_priority = Column(Integer, default=0)  # higher covers first
    # Cumulative deviation (baseline - actual), owned by the fairness ledger
    fairness_total = Column(Float, default=0.0, nullable=False)
    fairness_night = Column(Float, default=0.0, nullable=False)
    fairness_weekend = Column(Float, default=0.0, nullable=False)
    fairness_holiday = Column(Float, default=0.0, nullable=False)
    fairness_holiday_adjacent = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    leave_applications = relationship("LeaveApplication", back_populates="staff")
    assignments = relationship("StaffAssignment", back_populates="staff")
    ledger_entries = relationship("FairnessLedgerEntry", back_populates="staff")


class Holiday(Base):
    __tablename__ = "holidays"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    date = Column(Date, nullable=False)
    name = Column(String(100), default="")

    __table_args__ = (UniqueConstraint("clinic_id", "date", name="uq_holiday_date"),)


class DoctorCombination(Base):
    """Admin-authored: on-duty doctor set + night flag -> required staff."""
    __tablename__ = "doctor_combinations"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False, index=True)
    name = Column(String(100), default="")
    doctors = Column(JSON, nullable=False)  # sorted short codes ["K", "L"]
    night_shift = Column(Boolean, default=False)
    total_required = Column(Integer, nullable=False, default=0)
    department_category_staff = Column(JSON, default=dict)  # {"Treatment": {"Hygienist": 3}}


class DoctorSchedule(Base):
    __tablename__ = "doctor_schedules"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    doctor_code = Column(String(20), nullable=False)
    night_shift = Column(Boolean, default=False)

    __table_args__ = (UniqueConstraint("clinic_id", "date", "doctor_code", name="uq_doctor_on_duty"),)


class Schedule(Base):
    __tablename__ = "schedules"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    status = Column(String(20), default=ScheduleStatus.DRAFT.value)
    deployed_at = Column(DateTime, nullable=True)

    assignments = relationship("StaffAssignment", back_populates="schedule")

    __table_args__ = (UniqueConstraint("clinic_id", "year", "month", name="uq_schedule_month"),)


class LeaveApplication(Base):
    __tablename__ = "leave_applications"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    leave_type = Column(String(10), nullable=False)  # ANNUAL, OFF
    status = Column(String(20), nullable=False, default=LeaveStatus.PENDING.value)
    reason = Column(String(40), nullable=True)  # hold / rejection reason code
    note = Column(Text, nullable=True)
    created_by = Column(String(10), default="STAFF")  # STAFF or ADMIN
    created_at = Column(DateTime, default=utcnow)
    reviewed_at = Column(DateTime, nullable=True)

    staff = relationship("Staff", back_populates="leave_applications")

    __table_args__ = (
        # At most one live application per (staff, date)
        Index(
            "uq_active_leave_application", "staff_id", "date", unique=True,
            sqlite_where=text("status != 'REJECTED'"),
            postgresql_where=text("status != 'REJECTED'"),
        ),
    )


class StaffAssignment(Base):
    __tablename__ = "staff_assignments"
    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    schedule_id = Column(Integer, ForeignKey("schedules.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    shift_type = Column(String(10), nullable=False)  # DAY, NIGHT, OFF, ANNUAL
    category_name = Column(String(50), nullable=True)  # slot covered; differs for flexible cover
    leave_application_id = Column(Integer, ForeignKey("leave_applications.id"), nullable=True)

    staff = relationship("Staff", back_populates="assignments")
    schedule = relationship("Schedule", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("staff_id", "date", "schedule_id", name="uq_assignment_per_day"),
    )


class FairnessLedgerEntry(Base):
    """Append-only. MONTHLY rows hold baseline - actual; RESET rows zero the totals."""
    __tablename__ = "fairness_ledger"
    id = Column(Integer, primary_key=True, index=True)
    staff_id = Column(Integer, ForeignKey("staff.id"), nullable=False, index=True)
    schedule_id = Column(Integer, ForeignKey("schedules.id"), nullable=True)  # null for RESET
    kind = Column(String(10), nullable=False, default="MONTHLY")
    year = Column(Integer, nullable=True)
    month = Column(Integer, nullable=True)
    delta_total = Column(Float, default=0.0, nullable=False)
    delta_night = Column(Float, default=0.0, nullable=False)
    delta_weekend = Column(Float, default=0.0, nullable=False)
    delta_holiday = Column(Float, default=0.0, nullable=False)
    delta_holiday_adjacent = Column(Float, default=0.0, nullable=False)
    actor = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    staff = relationship("Staff", back_populates="ledger_entries")

    __table_args__ = (
        UniqueConstraint("staff_id", "schedule_id", name="uq_ledger_once_per_schedule"),
    )
