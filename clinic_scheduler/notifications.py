"""Outbound leave-decision events. Delivery belongs to an external collaborator;
nothing here may affect the outcome of the application that triggered it."""
import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaveEvent:
    staff_id: int
    date: date
    leave_type: str
    outcome: str
    application_id: Optional[int] = None


class Notifier(Protocol):
    def send(self, event: LeaveEvent) -> None: ...


class LoggingNotifier:
    """Default collaborator: writes the event to the log."""

    def send(self, event: LeaveEvent) -> None:
        logger.info("notify staff %s: %s %s -> %s", event.staff_id, event.leave_type, event.date.isoformat(), event.outcome)


class RecordingNotifier:
    """Keeps events in memory (admin previews, tests)."""

    def __init__(self):
        self.events: List[LeaveEvent] = []

    def send(self, event: LeaveEvent) -> None:
        self.events.append(event)


def notify_safely(notifier: Optional[Notifier], event: LeaveEvent) -> bool:
    """Fire and forget. Returns False when delivery failed; the failure is only logged."""
    if notifier is None:
        return False
    try:
        notifier.send(event)
        return True
    except Exception:
        logger.exception("notification failed for %s", asdict(event))
        return False


DEFAULT_NOTIFIER = LoggingNotifier()
