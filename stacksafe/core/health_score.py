"""
StackSafe Engine - Stack Health Score
0-100 gauge derived from a stack's result record
"""
from typing import Dict, Optional, Tuple

from stacksafe.core.models import Severity, StackInteractionResult

BASE_SCORE = 75
MIN_SCORE = 0
MAX_SCORE = 100

# Severity -> (adjustment, floor). NONE is a bonus capped at MAX_SCORE.
SEVERITY_ADJUSTMENTS: Dict[Severity, Tuple[int, Optional[int]]] = {
    Severity.CRITICAL: (-50, 0),
    Severity.HIGH: (-35, 10),
    Severity.MODERATE: (-20, 30),
    Severity.LOW: (-10, 60),
    Severity.NONE: (10, None),
}

INTERACTION_PENALTY_EACH = 5
INTERACTION_PENALTY_CAP = 30
WARNING_PENALTY_EACH = 3
WARNING_PENALTY_CAP = 20
ENGAGEMENT_BONUS_EACH = 2
ENGAGEMENT_BONUS_CAP = 15

SCORE_LABELS = ((80, "Excellent"), (50, "Good"), (MIN_SCORE, "Poor"))


def _clamp(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def score_from_counts(overall_risk_level: Severity, interaction_count: int,
                      warning_count: int, stack_size: int) -> int:
    """
    Order is fixed: severity adjustment with floor, count penalties, clamp,
    engagement bonus, clamp. An empty stack has nothing to assess and stays at base.
    """
    if min(interaction_count, warning_count, stack_size) < 0:
        raise ValueError("Counts and stack size must be non-negative")
    if stack_size == 0:
        return BASE_SCORE

    adjustment, floor = SEVERITY_ADJUSTMENTS[overall_risk_level]
    score = BASE_SCORE + adjustment
    if floor is None:
        score = min(MAX_SCORE, score)
    else:
        score = max(floor, score)

    score -= min(INTERACTION_PENALTY_CAP, interaction_count * INTERACTION_PENALTY_EACH)
    score -= min(WARNING_PENALTY_CAP, warning_count * WARNING_PENALTY_EACH)
    score = _clamp(score)

    score += min(ENGAGEMENT_BONUS_CAP, stack_size * ENGAGEMENT_BONUS_EACH)
    return _clamp(score)


def score(result: StackInteractionResult, stack_size: int) -> int:
    return score_from_counts(
        result.overall_risk_level,
        len(result.interactions),
        len(result.nutrient_warnings),
        stack_size,
    )


def score_label(value: int) -> str:
    for threshold, label in SCORE_LABELS:
        if value >= threshold:
            return label
    return "Poor"
