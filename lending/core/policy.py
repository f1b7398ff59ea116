# lending/core/policy.py
from dataclasses import dataclass

from lending.models.enum import OverdueSeverity


@dataclass(frozen=True)
class LendingPolicy:
    """Numeric knobs of the lifecycle. Defaults match the production rules."""

    # overdue severity bands (inclusive upper bounds, in days)
    moderate_max_days: int = 3
    high_max_days: int = 7

    # overdue penalty
    overdue_penalty_per_day: float = 2.0
    overdue_penalty_cap: float = 30.0
    min_penalty_multiplier: float = 0.5
    max_penalty_multiplier: float = 3.0
    min_overdue_threshold_days: int = 1
    max_overdue_threshold_days: int = 365

    # return condition
    condition_penalty_per_level: float = 5.0
    max_penalty_override: float = 100.0

    # owner cancellation
    free_cancellation_hours: float = 24.0
    late_cancellation_penalty: float = -5.0
    no_show_cancellation_penalty: float = -10.0

    # owner modification floor
    owner_modify_min_hours: float = 2.0

    trust_score_baseline: float = 100.0

    def severity_for(self, days_overdue: int) -> OverdueSeverity:
        if days_overdue <= self.moderate_max_days:
            return OverdueSeverity.MODERATE
        if days_overdue <= self.high_max_days:
            return OverdueSeverity.HIGH
        return OverdueSeverity.CRITICAL


DEFAULT_POLICY = LendingPolicy()
