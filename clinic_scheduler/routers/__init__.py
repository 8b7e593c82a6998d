"""API routers. Service errors become HTTPException with a {reason, message} detail."""
from datetime import date

from fastapi import HTTPException

from ..errors import SchedulingError
from ..reconcile import reconcile_all


def http_error(exc: SchedulingError) -> HTTPException:
    return HTTPException(exc.status_code, exc.as_detail())


def reconcile_upcoming(session_factory, clinic_id: int) -> None:
    """Capacity may have grown for upcoming dates; let held requests in."""
    try:
        reconcile_all(session_factory, clinic_id, date.today())
    except SchedulingError as exc:
        raise http_error(exc)
