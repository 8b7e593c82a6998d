from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..assignment import assign_range
from ..config import load_policy
from ..database import get_db, get_session_factory
from ..deployment import deploy_schedule
from ..errors import SchedulingError
from ..models import DoctorSchedule, Schedule, StaffAssignment
from ..reconcile import reconcile
from ..requirements import normalize_doctors, resolve_for_date
from ..schemas import (
    AssignmentOut, AssignRequest, DeployRequest, DoctorDayUpsert, ReconcileOut, RequirementOut,
    ScheduleOut, StaffAssignmentOut,
)
from ..slots import capacity_status
from . import http_error

router = APIRouter()

MAX_RANGE_DAYS = 62


@router.get("/", response_model=list[ScheduleOut])
def list_schedules(clinic_id: int, db: Session = Depends(get_db)):
    rows = db.query(Schedule).filter(Schedule.clinic_id == clinic_id).order_by(Schedule.year, Schedule.month).all()
    return [ScheduleOut.model_validate(s) for s in rows]


@router.put("/doctors", response_model=RequirementOut)
def upsert_doctor_day(
    data: DoctorDayUpsert,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Replace the doctors on duty for a date and re-evaluate held leave for it."""
    db.query(DoctorSchedule).filter(
        DoctorSchedule.clinic_id == data.clinic_id, DoctorSchedule.date == data.date,
    ).delete()
    for code in normalize_doctors(data.doctors):
        db.add(DoctorSchedule(clinic_id=data.clinic_id, date=data.date, doctor_code=code, night_shift=data.night_shift))
    db.commit()
    try:
        reconcile(session_factory, data.clinic_id, data.date)
    except SchedulingError as exc:
        raise http_error(exc)
    return get_requirement(data.clinic_id, data.date, db)


@router.get("/requirement", response_model=RequirementOut)
def get_requirement(clinic_id: int, day: date, db: Session = Depends(get_db)):
    req = resolve_for_date(db, clinic_id, day, load_policy(db, clinic_id).category_ratios)
    return RequirementOut(
        date=req.date,
        doctors=list(req.doctors),
        night_shift=req.night_shift,
        total_required=req.total_required,
        by_department=req.by_department,
        warnings=req.warnings,
    )


@router.get("/capacity", response_model=dict)
def get_capacity(clinic_id: int, start: date, end: Optional[date] = None, db: Session = Depends(get_db)):
    end = end or start
    if end < start:
        raise HTTPException(400, "end is before start")
    if (end - start).days >= MAX_RANGE_DAYS:
        raise HTTPException(400, f"Range is limited to {MAX_RANGE_DAYS} days")
    return capacity_status(db, clinic_id, start, end)


@router.post("/assign", response_model=list[AssignmentOut])
def run_assign(data: AssignRequest, session_factory=Depends(get_session_factory)):
    end = data.end or data.start
    if (end - data.start).days >= MAX_RANGE_DAYS:
        raise HTTPException(400, f"Range is limited to {MAX_RANGE_DAYS} days")
    try:
        results = assign_range(session_factory, data.clinic_id, data.start, end)
    except SchedulingError as exc:
        raise http_error(exc)
    return [AssignmentOut(**r.__dict__) for r in results]


@router.post("/reconcile", response_model=ReconcileOut)
def run_reconcile(clinic_id: int, day: date, session_factory=Depends(get_session_factory)):
    try:
        result = reconcile(session_factory, clinic_id, day)
    except SchedulingError as exc:
        raise http_error(exc)
    return ReconcileOut(date=result.date, promoted=result.promoted, still_held=result.still_held)


@router.get("/{schedule_id}/assignments", response_model=list[StaffAssignmentOut])
def list_assignments(schedule_id: int, day: Optional[date] = None, db: Session = Depends(get_db)):
    q = db.query(StaffAssignment).filter(StaffAssignment.schedule_id == schedule_id)
    if day:
        q = q.filter(StaffAssignment.date == day)
    return [StaffAssignmentOut.model_validate(a) for a in q.order_by(StaffAssignment.date, StaffAssignment.staff_id).all()]


@router.post("/{schedule_id}/deploy", response_model=ScheduleOut)
def deploy(schedule_id: int, data: DeployRequest, session_factory=Depends(get_session_factory), db: Session = Depends(get_db)):
    try:
        deploy_schedule(session_factory, data.clinic_id, schedule_id, actor=data.actor)
    except SchedulingError as exc:
        raise http_error(exc)
    return ScheduleOut.model_validate(db.query(Schedule).filter(Schedule.id == schedule_id).first())
