from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db, get_session_factory
from ..models import Clinic, Department, Holiday
from ..schemas import (
    ClinicCreate, ClinicOut, ClinicUpdate, DepartmentCreate, DepartmentOut, HolidayCreate, HolidayOut,
)
from . import reconcile_upcoming

router = APIRouter()


def _get_clinic(db: Session, clinic_id: int) -> Clinic:
    c = db.query(Clinic).filter(Clinic.id == clinic_id).first()
    if not c:
        raise HTTPException(404, "Clinic not found")
    return c


@router.get("/", response_model=list[ClinicOut])
def list_clinics(db: Session = Depends(get_db)):
    return [ClinicOut.model_validate(c) for c in db.query(Clinic).order_by(Clinic.id).all()]


@router.post("/", response_model=ClinicOut)
def create_clinic(data: ClinicCreate, db: Session = Depends(get_db)):
    if db.query(Clinic).filter(Clinic.name == data.name).first():
        raise HTTPException(400, f"Clinic {data.name} already exists")
    c = Clinic(**data.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    return ClinicOut.model_validate(c)


@router.get("/{clinic_id}", response_model=ClinicOut)
def get_clinic(clinic_id: int, db: Session = Depends(get_db)):
    return ClinicOut.model_validate(_get_clinic(db, clinic_id))


@router.patch("/{clinic_id}", response_model=ClinicOut)
def update_clinic(clinic_id: int, data: ClinicUpdate, db: Session = Depends(get_db)):
    """Policy changes apply to the next decision; existing applications keep their status."""
    c = _get_clinic(db, clinic_id)
    for k, v in data.model_dump(exclude_unset=True).items():
        setattr(c, k, v)
    db.commit()
    db.refresh(c)
    return ClinicOut.model_validate(c)


@router.get("/{clinic_id}/departments", response_model=list[DepartmentOut])
def list_departments(clinic_id: int, db: Session = Depends(get_db)):
    rows = db.query(Department).filter(Department.clinic_id == clinic_id).order_by(Department.name).all()
    return [DepartmentOut.model_validate(d) for d in rows]


@router.post("/{clinic_id}/departments", response_model=DepartmentOut)
def upsert_department(
    clinic_id: int,
    data: DepartmentCreate,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    _get_clinic(db, clinic_id)
    d = db.query(Department).filter(Department.clinic_id == clinic_id, Department.name == data.name).first()
    if d:
        d.use_auto_assignment = data.use_auto_assignment
    else:
        d = Department(clinic_id=clinic_id, **data.model_dump())
        db.add(d)
    db.commit()
    db.refresh(d)
    out = DepartmentOut.model_validate(d)
    # excluding or including a department changes both headcount and requirement
    reconcile_upcoming(session_factory, clinic_id)
    return out


@router.get("/{clinic_id}/holidays", response_model=list[HolidayOut])
def list_holidays(clinic_id: int, db: Session = Depends(get_db)):
    rows = db.query(Holiday).filter(Holiday.clinic_id == clinic_id).order_by(Holiday.date).all()
    return [HolidayOut.model_validate(h) for h in rows]


@router.post("/{clinic_id}/holidays", response_model=HolidayOut)
def create_holiday(clinic_id: int, data: HolidayCreate, db: Session = Depends(get_db)):
    _get_clinic(db, clinic_id)
    if db.query(Holiday).filter(Holiday.clinic_id == clinic_id, Holiday.date == data.date).first():
        raise HTTPException(400, f"Holiday on {data.date.isoformat()} already exists")
    h = Holiday(clinic_id=clinic_id, **data.model_dump())
    db.add(h)
    db.commit()
    db.refresh(h)
    return HolidayOut.model_validate(h)


@router.delete("/{clinic_id}/holidays/{holiday_id}")
def delete_holiday(clinic_id: int, holiday_id: int, db: Session = Depends(get_db)):
    h = db.query(Holiday).filter(Holiday.id == holiday_id, Holiday.clinic_id == clinic_id).first()
    if not h:
        raise HTTPException(404, "Holiday not found")
    db.delete(h)
    db.commit()
    return {"ok": True}
