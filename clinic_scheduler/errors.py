"""Error taxonomy for leave allocation and assignment.

Every user-visible rejection carries a machine ``reason`` code and the HTTP
status the routers answer with. Capacity outcomes that are persisted on the
application itself (held, overflowed) are ``Reason`` members, not exceptions.
"""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Tuple


class Reason(str, Enum):
    VALIDATION = "VALIDATION"
    DUPLICATE = "DUPLICATE"
    FAIRNESS_BELOW_THRESHOLD = "FAIRNESS_BELOW_THRESHOLD"
    ANNUAL_EXHAUSTED = "ANNUAL_EXHAUSTED"
    ANNUAL_DAILY_LIMIT = "ANNUAL_DAILY_LIMIT"
    SLOT_OVERFLOW = "SLOT_OVERFLOW"
    CAPACITY_HELD = "CAPACITY_HELD"
    CANCELLED = "CANCELLED"
    DECLINED = "DECLINED"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"


class SchedulingError(Exception):
    reason: Reason = Reason.VALIDATION
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def as_detail(self) -> dict:
        return {"reason": self.reason.value, "message": self.message}


class ValidationError(SchedulingError):
    reason = Reason.VALIDATION
    status_code = 422


class NotFound(SchedulingError):
    reason = Reason.NOT_FOUND
    status_code = 404


class DuplicateError(SchedulingError):
    reason = Reason.DUPLICATE
    status_code = 409


class EntitlementExhausted(SchedulingError):
    reason = Reason.ANNUAL_EXHAUSTED
    status_code = 400


class FairnessBelowThreshold(SchedulingError):
    reason = Reason.FAIRNESS_BELOW_THRESHOLD
    status_code = 400


class InvalidTransition(SchedulingError):
    reason = Reason.INVALID_TRANSITION
    status_code = 409


class ConcurrencyConflict(SchedulingError):
    """Serialization failure that survived the transparent retries."""
    reason = Reason.CONCURRENCY_CONFLICT
    status_code = 409


@dataclass(frozen=True)
class ConfigurationGap:
    """No DoctorCombination matched a date; required staff was treated as 0."""
    date: date
    doctors: Tuple[str, ...] = field(default_factory=tuple)
    night_shift: bool = False

    @property
    def message(self) -> str:
        who = ", ".join(self.doctors) or "no doctors"
        night = " (night)" if self.night_shift else ""
        return (
            f"{self.date.isoformat()}: no doctor combination for [{who}]{night}; "
            "required staff treated as 0, leave capacity is permissive for this date"
        )
