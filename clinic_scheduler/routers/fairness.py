from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import fairness as ledger
from ..config import load_policy
from ..database import get_db
from ..entitlement import remaining_annual_days
from ..errors import SchedulingError
from ..models import Staff
from ..schemas import FairnessOut, FairnessReset, LedgerEntryOut
from . import http_error

router = APIRouter()


def _get_staff(db: Session, staff_id: int) -> Staff:
    s = db.query(Staff).filter(Staff.id == staff_id).first()
    if not s:
        raise HTTPException(404, "Staff not found")
    return s


@router.get("/{staff_id}", response_model=FairnessOut)
def get_fairness(staff_id: int, db: Session = Depends(get_db)):
    s = _get_staff(db, staff_id)
    policy = load_policy(db, s.clinic_id)
    return FairnessOut(
        staff_id=s.id,
        deviations=ledger.deviations(s),
        overall=ledger.overall_score(s, policy.enabled_dimensions),
        remaining_annual_days=remaining_annual_days(db, s),
    )


@router.get("/{staff_id}/ledger", response_model=list[LedgerEntryOut])
def get_ledger(staff_id: int, db: Session = Depends(get_db)):
    _get_staff(db, staff_id)
    return [LedgerEntryOut.model_validate(e) for e in ledger.fairness_history(db, staff_id)]


@router.post("/{staff_id}/reset", response_model=LedgerEntryOut)
def reset(staff_id: int, data: FairnessReset, db: Session = Depends(get_db)):
    """Audited reset to zero. Never implicit."""
    try:
        entry = ledger.reset_fairness(db, staff_id, data.actor, data.note)
    except SchedulingError as exc:
        db.rollback()
        raise http_error(exc)
    db.commit()
    db.refresh(entry)
    return LedgerEntryOut.model_validate(entry)
