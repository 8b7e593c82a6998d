"""Schedule deployment: the one trigger that moves the fairness ledger."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from .config import load_policy
from .database import run_serializable
from .errors import InvalidTransition, NotFound
from .fairness import apply_schedule_deviation
from .models import Schedule, ScheduleStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    schedule_id: int
    year: int
    month: int
    deployed_at: datetime
    deltas: Dict[int, Dict[str, float]] = field(default_factory=dict)


def deploy_in_session(db: Session, clinic_id: int, schedule_id: int, actor: Optional[str] = None) -> DeployResult:
    schedule = db.get(Schedule, schedule_id)
    if schedule is None or schedule.clinic_id != clinic_id:
        raise NotFound(f"Schedule {schedule_id} not found")
    if schedule.status == ScheduleStatus.DEPLOYED.value:
        raise InvalidTransition(f"Schedule {schedule_id} is already deployed")

    policy = load_policy(db, clinic_id)
    deltas = apply_schedule_deviation(db, schedule, policy.enabled_dimensions, actor=actor)
    schedule.status = ScheduleStatus.DEPLOYED.value
    schedule.deployed_at = utcnow()
    db.flush()
    logger.info("schedule %s (%04d-%02d) deployed by %s", schedule.id, schedule.year, schedule.month, actor or "system")
    return DeployResult(schedule.id, schedule.year, schedule.month, schedule.deployed_at, deltas)


def deploy_schedule(
    session_factory: Callable[[], Session],
    clinic_id: int,
    schedule_id: int,
    actor: Optional[str] = None,
) -> DeployResult:
    """Mark DEPLOYED and apply the month's deviation, atomically and only once."""
    return run_serializable(session_factory, lambda db: deploy_in_session(db, clinic_id, schedule_id, actor))


def find_schedule(db: Session, clinic_id: int, year: int, month: int) -> Schedule:
    schedule = db.query(Schedule).filter(
        Schedule.clinic_id == clinic_id, Schedule.year == year, Schedule.month == month,
    ).first()
    if schedule is None:
        raise NotFound(f"No schedule for {year}-{month:02d}")
    return schedule
