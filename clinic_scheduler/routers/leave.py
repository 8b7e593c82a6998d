from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import leave as leave_service
from ..database import get_db, get_session_factory
from ..errors import SchedulingError
from ..schemas import LeaveAdminCreate, LeaveCancel, LeaveOut, LeaveReview, LeaveSubmit, SubmitResultOut
from . import http_error

router = APIRouter()


def _out(result) -> SubmitResultOut:
    return SubmitResultOut(
        id=result.id,
        staff_id=result.staff_id,
        date=result.date,
        leave_type=result.leave_type,
        status=result.status,
        reason=result.reason,
        message=result.message,
        warnings=result.warnings,
        promoted=result.reconciled.promoted if result.reconciled else [],
    )


@router.get("/", response_model=list[LeaveOut])
def list_leave(
    clinic_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    status: Optional[str] = None,
    staff_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    rows = leave_service.list_applications(db, clinic_id, start, end, status, staff_id)
    return [LeaveOut.model_validate(a) for a in rows]


@router.post("/", response_model=SubmitResultOut)
def submit_leave(data: LeaveSubmit, session_factory=Depends(get_session_factory)):
    """Staff self-service. ON_HOLD and REJECTED(SLOT_OVERFLOW) are answered 200 with the status."""
    try:
        result = leave_service.submit(
            session_factory, data.clinic_id, data.staff_id, data.date, data.leave_type.value, note=data.note,
        )
    except SchedulingError as exc:
        raise http_error(exc)
    return _out(result)


@router.post("/admin", response_model=SubmitResultOut)
def admin_create_leave(data: LeaveAdminCreate, session_factory=Depends(get_session_factory)):
    try:
        result = leave_service.admin_create(
            session_factory, data.clinic_id, data.staff_id, data.date, data.leave_type.value,
            actor=data.actor, note=data.note,
        )
    except SchedulingError as exc:
        raise http_error(exc)
    return _out(result)


@router.post("/{application_id}/review", response_model=SubmitResultOut)
def review_leave(application_id: int, data: LeaveReview, session_factory=Depends(get_session_factory)):
    try:
        result = leave_service.review(session_factory, application_id, data.approve, actor=data.actor)
    except SchedulingError as exc:
        raise http_error(exc)
    return _out(result)


@router.post("/{application_id}/cancel", response_model=SubmitResultOut)
def cancel_leave(application_id: int, data: LeaveCancel, session_factory=Depends(get_session_factory)):
    try:
        result = leave_service.cancel(session_factory, application_id, staff_id=data.staff_id)
    except SchedulingError as exc:
        raise http_error(exc)
    return _out(result)


@router.post("/{application_id}/cancel-confirmed", response_model=SubmitResultOut)
def cancel_confirmed_leave(application_id: int, data: LeaveCancel, session_factory=Depends(get_session_factory)):
    try:
        result = leave_service.cancel_confirmed(session_factory, application_id, actor=data.actor)
    except SchedulingError as exc:
        raise http_error(exc)
    return _out(result)
