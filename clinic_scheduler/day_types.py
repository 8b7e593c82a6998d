"""Calendar classification used by the fairness ledger and auto-assignment."""
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Set

from .models import Dimension


class DayType(str, Enum):
    WEEKDAY = "WEEKDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"
    HOLIDAY = "HOLIDAY"
    HOLIDAY_ADJACENT = "HOLIDAY_ADJACENT"


def _counted_holidays(holidays: Iterable[date]) -> Set[date]:
    # A holiday falling on a Sunday is already a day off and does not count
    return {h for h in holidays if h.weekday() != 6}


def classify(day: date, holidays: Iterable[date]) -> List[DayType]:
    """A date can carry several types, e.g. a Saturday before a holiday is
    [SATURDAY, HOLIDAY_ADJACENT]."""
    counted = _counted_holidays(holidays)
    wd = day.weekday()
    if wd == 6:
        types = [DayType.SUNDAY]
    elif wd == 5:
        types = [DayType.SATURDAY]
    else:
        types = [DayType.WEEKDAY]

    if day in counted:
        types.append(DayType.HOLIDAY)
    if (day - timedelta(days=1)) in counted or (day + timedelta(days=1)) in counted:
        types.append(DayType.HOLIDAY_ADJACENT)
    return types


def burdened_dimensions(day_types: Iterable[DayType], night_shift: bool) -> List[Dimension]:
    """Every dimension a worked shift on this day counts toward."""
    types = set(day_types)
    dims = [Dimension.TOTAL]
    if night_shift:
        dims.append(Dimension.NIGHT)
    if DayType.SATURDAY in types or DayType.SUNDAY in types:
        dims.append(Dimension.WEEKEND)
    if DayType.HOLIDAY in types:
        dims.append(Dimension.HOLIDAY)
    if DayType.HOLIDAY_ADJACENT in types:
        dims.append(Dimension.HOLIDAY_ADJACENT)
    return dims


# Highest first: the dimension that decides ranking when several apply
DIMENSION_PRIORITY = [
    Dimension.HOLIDAY,
    Dimension.HOLIDAY_ADJACENT,
    Dimension.WEEKEND,
    Dimension.NIGHT,
]


def relevant_dimension(day_types: Iterable[DayType], night_shift: bool, enabled: Iterable[str] = None) -> Dimension:
    burdened = set(burdened_dimensions(day_types, night_shift))
    allowed = set(enabled) if enabled is not None else None
    for dim in DIMENSION_PRIORITY:
        if dim in burdened and (allowed is None or dim.value in allowed):
            return dim
    return Dimension.TOTAL
