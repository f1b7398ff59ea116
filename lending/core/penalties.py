# lending/core/penalties.py
"""Pure penalty and score arithmetic. No I/O, no clock."""
from lending.models.enum import ItemCondition
from lending.core.policy import LendingPolicy, DEFAULT_POLICY

CONDITION_SCORES = {
    ItemCondition.EXCELLENT: 5,
    ItemCondition.GOOD: 4,
    ItemCondition.FAIR: 3,
    ItemCondition.POOR: 2,
    ItemCondition.DAMAGED: 1,
}


def condition_score(condition: ItemCondition) -> int:
    return CONDITION_SCORES[ItemCondition(condition)]


def is_degraded(original: ItemCondition, current: ItemCondition) -> bool:
    return condition_score(current) < condition_score(original)


def condition_penalty(
    original: ItemCondition,
    current: ItemCondition,
    policy: LendingPolicy = DEFAULT_POLICY,
) -> float:
    """(original - current) * 5 when the item came back worse, else 0."""
    drop = condition_score(original) - condition_score(current)
    if drop <= 0:
        return 0.0
    return drop * policy.condition_penalty_per_level


def overdue_penalty(
    days_overdue: int,
    multiplier: float = 1.0,
    policy: LendingPolicy = DEFAULT_POLICY,
) -> float:
    """min(days * 2, 30) scaled by the multiplier. Non-positive days cost nothing."""
    if days_overdue <= 0:
        return 0.0
    base = min(days_overdue * policy.overdue_penalty_per_day, policy.overdue_penalty_cap)
    return base * multiplier


def cancellation_penalty(
    hours_until_start: float,
    policy: LendingPolicy = DEFAULT_POLICY,
) -> float:
    """Trust score delta for an owner cancellation (0, -5 or -10)."""
    if hours_until_start >= policy.free_cancellation_hours:
        return 0.0
    if hours_until_start > 0:
        return policy.late_cancellation_penalty
    return policy.no_show_cancellation_penalty
