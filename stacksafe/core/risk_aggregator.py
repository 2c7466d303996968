"""
StackSafe Engine - Risk Aggregator
Combines findings and nutrient warnings into a single result record
"""
from itertools import chain
from typing import Sequence

from stacksafe.core.models import (
    InteractionFinding, NutrientWarning, StackInteractionResult, highest_severity
)


def aggregate(findings: Sequence[InteractionFinding],
              warnings: Sequence[NutrientWarning]) -> StackInteractionResult:
    """
    Derive the overall risk level. Both input lists are passed through
    unchanged; only the scalar level is reduced.
    """
    level = highest_severity(chain(
        (finding.severity for finding in findings),
        (warning.severity for warning in warnings),
    ))
    return StackInteractionResult(
        overall_risk_level=level,
        interactions=list(findings),
        nutrient_warnings=list(warnings),
    )
