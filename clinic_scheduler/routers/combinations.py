import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db, get_session_factory
from ..models import DoctorCombination
from ..schemas import CombinationCreate, CombinationOut
from . import reconcile_upcoming

logger = logging.getLogger(__name__)

router = APIRouter()


def _find_same_key(db: Session, data: CombinationCreate, exclude_id: int = None):
    q = db.query(DoctorCombination).filter(
        DoctorCombination.clinic_id == data.clinic_id,
        DoctorCombination.night_shift == data.night_shift,
    )
    if exclude_id:
        q = q.filter(DoctorCombination.id != exclude_id)
    return next((c for c in q.all() if sorted(c.doctors or []) == data.doctors), None)


@router.get("/", response_model=list[CombinationOut])
def list_combinations(clinic_id: int, db: Session = Depends(get_db)):
    rows = db.query(DoctorCombination).filter(DoctorCombination.clinic_id == clinic_id).order_by(DoctorCombination.id).all()
    return [CombinationOut.model_validate(c) for c in rows]


@router.post("/", response_model=CombinationOut)
def create_combination(
    data: CombinationCreate,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    if _find_same_key(db, data):
        raise HTTPException(400, f"A combination for {data.doctors} (night={data.night_shift}) already exists")
    c = DoctorCombination(**data.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    out = CombinationOut.model_validate(c)
    reconcile_upcoming(session_factory, data.clinic_id)
    return out


@router.put("/{combination_id}", response_model=CombinationOut)
def update_combination(
    combination_id: int,
    data: CombinationCreate,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    c = db.query(DoctorCombination).filter(DoctorCombination.id == combination_id).first()
    if not c:
        raise HTTPException(404, "Combination not found")
    if _find_same_key(db, data, exclude_id=combination_id):
        raise HTTPException(400, f"A combination for {data.doctors} (night={data.night_shift}) already exists")
    for k, v in data.model_dump().items():
        setattr(c, k, v)
    db.commit()
    db.refresh(c)
    out = CombinationOut.model_validate(c)
    reconcile_upcoming(session_factory, data.clinic_id)
    return out


@router.delete("/{combination_id}")
def delete_combination(
    combination_id: int,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    c = db.query(DoctorCombination).filter(DoctorCombination.id == combination_id).first()
    if not c:
        raise HTTPException(404, "Combination not found")
    clinic_id = c.clinic_id
    db.delete(c)
    db.commit()
    logger.warning("combination %s deleted; dates using it now resolve to a configuration gap", combination_id)
    reconcile_upcoming(session_factory, clinic_id)
    return {"ok": True}
