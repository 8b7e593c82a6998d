"""Daily requirement resolution from admin-authored doctor combinations."""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from pydantic import BaseModel, NonNegativeInt, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from .errors import ConfigurationGap, ValidationError
from .models import Department, DoctorCombination, DoctorSchedule

logger = logging.getLogger(__name__)

# department -> category -> required count
RequirementTable = Dict[str, Dict[str, int]]

# Department key used when a total is split by category ratios only
ANY_DEPARTMENT = "*"


class CategorySlotConfig(BaseModel):
    """Long form some combinations are authored in: {"count": 3, "minRequired": 2}."""
    count: NonNegativeInt
    minRequired: NonNegativeInt = 0


_RAW_TABLE = TypeAdapter(Dict[str, Dict[str, Union[NonNegativeInt, CategorySlotConfig]]])


def parse_requirement_table(raw) -> RequirementTable:
    """Validate an untyped department->category->count blob into a RequirementTable."""
    if not raw:
        return {}
    try:
        parsed = _RAW_TABLE.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid department/category requirement table: {exc}") from exc
    table: RequirementTable = {}
    for dept, cats in parsed.items():
        dept = dept.strip()
        if not dept:
            raise ValidationError("Department name in requirement table is empty")
        table[dept] = {}
        for cat, val in cats.items():
            cat = cat.strip()
            if not cat:
                raise ValidationError(f"Empty category name under department {dept}")
            table[dept][cat] = val.count if isinstance(val, CategorySlotConfig) else int(val)
    return table


def normalize_doctors(doctors: Iterable[str]) -> Tuple[str, ...]:
    return tuple(sorted({d.strip() for d in doctors if d and d.strip()}))


def split_by_ratio(total: int, ratios: Mapping[str, float]) -> Dict[str, int]:
    """Round each category's share; the last category takes the remainder."""
    if not ratios:
        return {}
    if abs(sum(ratios.values()) - 100) > 0.01:
        raise ValidationError(f"Category ratios must sum to 100, got {sum(ratios.values())}")
    names = list(ratios)
    out: Dict[str, int] = {}
    allocated = 0
    for name in names[:-1]:
        n = int(round(total * ratios[name] / 100))
        out[name] = n
        allocated += n
    out[names[-1]] = total - allocated
    return out


@dataclass(frozen=True)
class CombinationEntry:
    doctors: Tuple[str, ...]
    night_shift: bool
    total_required: int
    table: RequirementTable

    @classmethod
    def from_row(cls, row: DoctorCombination) -> "CombinationEntry":
        return cls(
            doctors=normalize_doctors(row.doctors or []),
            night_shift=bool(row.night_shift),
            total_required=int(row.total_required or 0),
            table=parse_requirement_table(row.department_category_staff),
        )


@dataclass
class DailyRequirement:
    date: date
    doctors: Tuple[str, ...]
    night_shift: bool
    total_required: int
    by_department: RequirementTable = field(default_factory=dict)
    gap: Optional[ConfigurationGap] = None

    @property
    def categories(self) -> List[str]:
        seen: List[str] = []
        for cats in self.by_department.values():
            for c in cats:
                if c not in seen:
                    seen.append(c)
        return seen

    def required_for(self, category: str) -> int:
        return sum(cats.get(category, 0) for cats in self.by_department.values())

    @property
    def warnings(self) -> List[str]:
        return [self.gap.message] if self.gap else []


def resolve(
    day: date,
    on_duty_doctors: Iterable[str],
    night_shift: bool,
    combinations: Sequence[CombinationEntry],
    excluded_departments: Optional[Set[str]] = None,
    category_ratios: Optional[Mapping[str, float]] = None,
) -> DailyRequirement:
    """Look up the combination matching the doctor set (order-independent) and
    night flag. Deterministic and side-effect free apart from logging.

    Departments in ``excluded_departments`` do not take part in auto-assignment
    and are dropped, so total_required always equals the sum of the table.
    """
    doctors = normalize_doctors(on_duty_doctors)
    night = bool(night_shift)
    match = next(
        (c for c in combinations if c.doctors == doctors and c.night_shift == night),
        None,
    )
    if match is None:
        # No doctors on duty means the clinic is closed, not a configuration gap
        gap = ConfigurationGap(date=day, doctors=doctors, night_shift=night) if doctors else None
        if gap:
            logger.warning(gap.message)
        return DailyRequirement(date=day, doctors=doctors, night_shift=night, total_required=0, gap=gap)

    excluded = excluded_departments or set()
    table = {d: dict(c) for d, c in match.table.items() if d not in excluded}
    if not match.table and match.total_required and category_ratios:
        table = {ANY_DEPARTMENT: split_by_ratio(match.total_required, category_ratios)}

    total = sum(sum(c.values()) for c in table.values())
    if match.table and total != match.total_required and not excluded:
        logger.warning(
            "%s: combination %s total %d != per-category sum %d; using the sum",
            day.isoformat(), list(doctors), match.total_required, total,
        )
    return DailyRequirement(
        date=day, doctors=doctors, night_shift=night, total_required=total, by_department=table,
    )


def load_combinations(db: Session, clinic_id: int) -> List[CombinationEntry]:
    rows = db.query(DoctorCombination).filter(DoctorCombination.clinic_id == clinic_id).all()
    return [CombinationEntry.from_row(r) for r in rows]


def excluded_departments(db: Session, clinic_id: int) -> Set[str]:
    rows = db.query(Department.name).filter(
        Department.clinic_id == clinic_id, Department.use_auto_assignment.is_(False),
    ).all()
    return {r[0] for r in rows}


def doctors_on_duty(db: Session, clinic_id: int, day: date) -> Tuple[Tuple[str, ...], bool]:
    rows = db.query(DoctorSchedule).filter(
        DoctorSchedule.clinic_id == clinic_id, DoctorSchedule.date == day,
    ).all()
    return normalize_doctors(r.doctor_code for r in rows), any(r.night_shift for r in rows)


def resolve_for_date(
    db: Session,
    clinic_id: int,
    day: date,
    category_ratios: Optional[Mapping[str, float]] = None,
) -> DailyRequirement:
    doctors, night = doctors_on_duty(db, clinic_id, day)
    return resolve(
        day, doctors, night, load_combinations(db, clinic_id),
        excluded_departments=excluded_departments(db, clinic_id),
        category_ratios=category_ratios,
    )
