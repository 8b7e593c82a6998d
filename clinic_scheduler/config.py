"""
Per-clinic allocation policy.
Defaults live here; a Clinic row overrides them field by field.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import ALL_DIMENSIONS, Clinic, LeaveType

HOLD_BY_SUBMISSION = "SUBMISSION"
HOLD_BY_FAIRNESS = "FAIRNESS"


@dataclass
class PolicyConfig:
    auto_confirm: bool = True
    hold_queue_size: int = 2
    hold_priority: str = HOLD_BY_SUBMISSION
    fairness_gate_enabled: bool = True
    annual_fairness_threshold: float = -10.0  # annual leave is an entitlement: lower bar
    off_fairness_threshold: float = -3.0
    enabled_dimensions: List[str] = field(default_factory=lambda: list(ALL_DIMENSIONS))
    max_annual_per_day: int = 0
    category_ratios: Dict[str, float] = field(default_factory=dict)

    def threshold_for(self, leave_type: str) -> float:
        if leave_type == LeaveType.ANNUAL.value:
            return self.annual_fairness_threshold
        return self.off_fairness_threshold

    @classmethod
    def from_clinic(cls, clinic: Optional[Clinic]) -> "PolicyConfig":
        cfg = cls()
        if clinic is None:
            return cfg
        for name in (
            "auto_confirm", "hold_queue_size", "hold_priority", "fairness_gate_enabled",
            "annual_fairness_threshold", "off_fairness_threshold", "max_annual_per_day",
        ):
            value = getattr(clinic, name, None)
            if value is not None:
                setattr(cfg, name, value)
        if clinic.enabled_dimensions is not None:
            cfg.enabled_dimensions = [d for d in clinic.enabled_dimensions if d in ALL_DIMENSIONS]
        if clinic.category_ratios:
            cfg.category_ratios = dict(clinic.category_ratios)
        return cfg


def load_policy(db, clinic_id: int) -> PolicyConfig:
    return PolicyConfig.from_clinic(db.get(Clinic, clinic_id))
