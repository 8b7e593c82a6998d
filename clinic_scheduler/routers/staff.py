from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db, get_session_factory
from ..errors import SchedulingError
from ..leave import deactivate_staff as withdraw_staff
from ..models import Clinic, Staff
from ..schemas import StaffCreate, StaffOut, StaffUpdate
from . import http_error, reconcile_upcoming

router = APIRouter()

# Owned by the fairness ledger; never set through this router
LEDGER_FIELDS = {
    "fairness_total", "fairness_night", "fairness_weekend", "fairness_holiday", "fairness_holiday_adjacent",
}


def _get_staff(db: Session, staff_id: int) -> Staff:
    s = db.query(Staff).filter(Staff.id == staff_id).first()
    if not s:
        raise HTTPException(404, "Staff not found")
    return s


def _withdraw(session_factory, staff_id: int) -> int:
    try:
        return len(withdraw_staff(session_factory, staff_id))
    except SchedulingError as exc:
        raise http_error(exc)


@router.get("/", response_model=list[StaffOut])
def list_staff(clinic_id: int, include_inactive: bool = False, category: str = None, db: Session = Depends(get_db)):
    q = db.query(Staff).filter(Staff.clinic_id == clinic_id)
    if not include_inactive:
        q = q.filter(Staff.is_active.is_(True))
    if category:
        q = q.filter(Staff.category_name == category)
    return [StaffOut.model_validate(s) for s in q.order_by(Staff.category_name, Staff.name).all()]


@router.post("/", response_model=StaffOut)
def create_staff(data: StaffCreate, db: Session = Depends(get_db), session_factory=Depends(get_session_factory)):
    if not db.query(Clinic).filter(Clinic.id == data.clinic_id).first():
        raise HTTPException(404, "Clinic not found")
    s = Staff(**data.model_dump())
    db.add(s)
    db.commit()
    db.refresh(s)
    out = StaffOut.model_validate(s)
    db.close()
    if out.is_active:
        reconcile_upcoming(session_factory, out.clinic_id)
    return out


@router.get("/{staff_id}", response_model=StaffOut)
def get_staff(staff_id: int, db: Session = Depends(get_db)):
    return StaffOut.model_validate(_get_staff(db, staff_id))


@router.patch("/{staff_id}", response_model=StaffOut)
def update_staff(
    staff_id: int,
    data: StaffUpdate,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    s = _get_staff(db, staff_id)
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if k not in LEDGER_FIELDS}
    deactivating = changes.get("is_active") is False and s.is_active
    if deactivating:
        changes.pop("is_active")
    for k, v in changes.items():
        setattr(s, k, v)
    db.commit()
    clinic_id = s.clinic_id
    db.close()
    if deactivating:
        _withdraw(session_factory, staff_id)
    # a reactivation or a category move can open slots for held requests
    reconcile_upcoming(session_factory, clinic_id)
    return StaffOut.model_validate(_get_staff(db, staff_id))


@router.delete("/{staff_id}")
def deactivate_staff(staff_id: int, db: Session = Depends(get_db), session_factory=Depends(get_session_factory)):
    """Soft delete: history stays; upcoming leave is withdrawn and the freed
    slots go to held requests."""
    _get_staff(db, staff_id)
    db.close()
    withdrawn = _withdraw(session_factory, staff_id)
    return {"ok": True, "withdrawn": withdrawn}
