"""Pydantic schemas for API."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator, model_validator

from .errors import SchedulingError
from .models import ALL_DIMENSIONS, LeaveType
from .requirements import normalize_doctors, parse_requirement_table


class ClinicBase(BaseModel):
    name: str
    auto_confirm: bool = True
    hold_queue_size: int = 2
    hold_priority: str = "SUBMISSION"
    fairness_gate_enabled: bool = True
    annual_fairness_threshold: float = -10.0
    off_fairness_threshold: float = -3.0
    enabled_dimensions: List[str] = list(ALL_DIMENSIONS)
    max_annual_per_day: int = 0
    category_ratios: Dict[str, float] = {}

    @field_validator("enabled_dimensions")
    @classmethod
    def known_dimensions(cls, v):
        unknown = [d for d in v if d not in ALL_DIMENSIONS]
        if unknown:
            raise ValueError(f"unknown dimensions {unknown}")
        return v

    @field_validator("hold_priority")
    @classmethod
    def known_priority(cls, v):
        if v not in ("SUBMISSION", "FAIRNESS"):
            raise ValueError("hold_priority must be SUBMISSION or FAIRNESS")
        return v


class ClinicCreate(ClinicBase):
    pass


class ClinicUpdate(BaseModel):
    auto_confirm: Optional[bool] = None
    hold_queue_size: Optional[int] = None
    hold_priority: Optional[str] = None
    fairness_gate_enabled: Optional[bool] = None
    annual_fairness_threshold: Optional[float] = None
    off_fairness_threshold: Optional[float] = None
    enabled_dimensions: Optional[List[str]] = None
    max_annual_per_day: Optional[int] = None
    category_ratios: Optional[Dict[str, float]] = None


class ClinicOut(ClinicBase):
    id: int

    class Config:
        from_attributes = True


class DepartmentCreate(BaseModel):
    name: str
    use_auto_assignment: bool = True


class DepartmentOut(DepartmentCreate):
    id: int
    clinic_id: int

    class Config:
        from_attributes = True


class HolidayCreate(BaseModel):
    date: date
    name: str = ""


class HolidayOut(HolidayCreate):
    id: int
    clinic_id: int

    class Config:
        from_attributes = True


class StaffBase(BaseModel):
    name: str
    category_name: str
    department_name: str
    hire_date: Optional[date] = None
    annual_leave_days: Optional[int] = None
    annual_leave_used: int = 0
    flexible_categories: List[str] = []
    flexibility_priority: int = 0


class StaffCreate(StaffBase):
    clinic_id: int


class StaffUpdate(BaseModel):
    name: Optional[str] = None
    category_name: Optional[str] = None
    department_name: Optional[str] = None
    is_active: Optional[bool] = None
    hire_date: Optional[date] = None
    annual_leave_days: Optional[int] = None
    annual_leave_used: Optional[int] = None
    flexible_categories: Optional[List[str]] = None
    flexibility_priority: Optional[int] = None


class StaffOut(StaffBase):
    id: int
    clinic_id: int
    is_active: bool
    fairness_total: float = 0.0
    fairness_night: float = 0.0
    fairness_weekend: float = 0.0
    fairness_holiday: float = 0.0
    fairness_holiday_adjacent: float = 0.0

    class Config:
        from_attributes = True


class CombinationBase(BaseModel):
    name: str = ""
    doctors: List[str]
    night_shift: bool = False
    total_required: int = 0
    department_category_staff: Dict[str, Dict[str, Any]] = {}

    @field_validator("doctors")
    @classmethod
    def sorted_doctors(cls, v):
        doctors = list(normalize_doctors(v))
        if not doctors:
            raise ValueError("at least one doctor code is required")
        return doctors

    @field_validator("department_category_staff")
    @classmethod
    def typed_table(cls, v):
        try:
            return parse_requirement_table(v)
        except SchedulingError as exc:
            raise ValueError(exc.message)

    @model_validator(mode="after")
    def total_from_table(self):
        if self.department_category_staff and not self.total_required:
            self.total_required = sum(sum(c.values()) for c in self.department_category_staff.values())
        return self


class CombinationCreate(CombinationBase):
    clinic_id: int


class CombinationOut(CombinationBase):
    id: int
    clinic_id: int

    class Config:
        from_attributes = True


class DoctorDayUpsert(BaseModel):
    """Replace the doctors on duty for one date."""
    clinic_id: int
    date: date
    doctors: List[str] = []
    night_shift: bool = False


class RequirementOut(BaseModel):
    date: date
    doctors: List[str]
    night_shift: bool
    total_required: int
    by_department: Dict[str, Dict[str, int]]
    warnings: List[str] = []


class LeaveSubmit(BaseModel):
    clinic_id: int
    staff_id: int
    date: date
    leave_type: LeaveType
    note: Optional[str] = None


class LeaveAdminCreate(LeaveSubmit):
    actor: str = "admin"


class LeaveReview(BaseModel):
    approve: bool
    actor: str = "admin"


class LeaveCancel(BaseModel):
    staff_id: Optional[int] = None
    actor: str = "admin"


class LeaveOut(BaseModel):
    id: int
    clinic_id: int
    staff_id: int
    date: date
    leave_type: str
    status: str
    reason: Optional[str] = None
    note: Optional[str] = None
    created_by: str
    created_at: datetime
    reviewed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubmitResultOut(BaseModel):
    id: int
    staff_id: int
    date: date
    leave_type: str
    status: str
    reason: Optional[str] = None
    message: str = ""
    warnings: List[str] = []
    promoted: List[int] = []


class ReconcileOut(BaseModel):
    date: date
    promoted: List[int]
    still_held: List[int]


class AssignRequest(BaseModel):
    clinic_id: int
    start: date
    end: Optional[date] = None


class AssignmentOut(BaseModel):
    date: date
    schedule_id: int
    dimension: str
    working: Dict[int, str]
    on_leave: Dict[int, str]
    off: List[int]
    flexible: List[int]
    warnings: List[str]


class StaffAssignmentOut(BaseModel):
    id: int
    staff_id: int
    date: date
    shift_type: str
    category_name: Optional[str] = None
    leave_application_id: Optional[int] = None

    class Config:
        from_attributes = True


class ScheduleOut(BaseModel):
    id: int
    clinic_id: int
    year: int
    month: int
    status: str
    deployed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeployRequest(BaseModel):
    clinic_id: int
    actor: Optional[str] = None


class LedgerEntryOut(BaseModel):
    id: int
    staff_id: int
    schedule_id: Optional[int] = None
    kind: str
    year: Optional[int] = None
    month: Optional[int] = None
    delta_total: float
    delta_night: float
    delta_weekend: float
    delta_holiday: float
    delta_holiday_adjacent: float
    actor: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class FairnessOut(BaseModel):
    staff_id: int
    deviations: Dict[str, float]
    overall: float
    remaining_annual_days: int


class FairnessReset(BaseModel):
    actor: str
    note: str = ""
