"""
StackSafe Engine - Nutrient Aggregator
Sums nutrient doses across the stack and flags totals above the upper limit
"""
import math
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Sequence

from config.settings import NUTRIENT_WARNING_THRESHOLD_PERCENT
from stacksafe.core.errors import InvalidStackItem, UnitMismatch
from stacksafe.core.knowledge_base import KnowledgeBase
from stacksafe.core.models import NutrientLimit, NutrientWarning, ResolvedItem, StackItem

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Mass units expressed in micrograms
MCG_PER_UNIT = {"mcg": 1.0, "mg": 1000.0, "g": 1000000.0}

UNIT_ALIASES = {
    "mcg": "mcg", "µg": "mcg", "μg": "mcg", "ug": "mcg",
    "microgram": "mcg", "micrograms": "mcg",
    "mg": "mg", "milligram": "mg", "milligrams": "mg",
    "g": "g", "gm": "g", "gram": "g", "grams": "g",
    "iu": "IU", "i.u.": "IU", "international units": "IU",
}


def canonical_unit(unit: str) -> Optional[str]:
    """'MG', 'µg', 'I.U.' -> 'mg', 'mcg', 'IU'; None when unknown"""
    return UNIT_ALIASES.get(str(unit).strip().lower())


def convert_dose(value: float, from_unit: str, limit: NutrientLimit,
                 item_name: Optional[str] = None) -> float:
    """
    Convert a dose into the unit of the nutrient's limit.

    Mass units convert freely. IU converts only through the nutrient's own
    IU-per-mcg factor; anything else raises UnitMismatch.
    """
    source = canonical_unit(from_unit)
    target = limit.unit
    if source is None:
        raise UnitMismatch(limit.nutrient_key, from_unit, target, item_name)
    if source == target:
        return value

    if source == "IU":
        if limit.iu_per_mcg is None:
            raise UnitMismatch(limit.nutrient_key, from_unit, target, item_name)
        return value / limit.iu_per_mcg / MCG_PER_UNIT[target]

    micrograms = value * MCG_PER_UNIT[source]
    if target == "IU":
        if limit.iu_per_mcg is None:
            raise UnitMismatch(limit.nutrient_key, from_unit, target, item_name)
        return micrograms * limit.iu_per_mcg
    return micrograms / MCG_PER_UNIT[target]


@dataclass
class NutrientAggregation:
    """Warnings plus everything that kept a nutrient from being totaled"""
    warnings: List[NutrientWarning] = field(default_factory=list)
    totals: Dict[str, float] = field(default_factory=dict)
    unit_errors: List[UnitMismatch] = field(default_factory=list)
    missing_doses: List[StackItem] = field(default_factory=list)


class NutrientAggregator:
    """Totals each nutrient across the stack and compares it to the upper limit"""

    def __init__(self, knowledge_base: KnowledgeBase,
                 warning_threshold_percent: float = NUTRIENT_WARNING_THRESHOLD_PERCENT):
        self.knowledge_base = knowledge_base
        # A warning always means the total is above the upper limit
        if warning_threshold_percent < 100:
            raise ValueError(
                f"Nutrient warning threshold must be at least 100%, got {warning_threshold_percent}"
            )
        self.warning_threshold_percent = warning_threshold_percent

    def aggregate_nutrients(self, stack: Sequence[ResolvedItem]) -> NutrientAggregation:
        aggregation = NutrientAggregation()
        amounts: Dict[str, List[float]] = {}
        contributors: Dict[str, List[str]] = {}
        failed = set()

        for entry in stack:
            nutrient_key = self.knowledge_base.nutrient_for(entry.ingredient_key)
            if nutrient_key is None:
                continue
            item = entry.item
            if item.dose is None:
                aggregation.missing_doses.append(item)
                continue

            limit = self.knowledge_base.nutrient_limits[nutrient_key]
            try:
                amount = convert_dose(item.dose.value, item.dose.unit, limit, item.name)
            except UnitMismatch as e:
                logger.warning(f"Skipping {nutrient_key} aggregation: {e}")
                aggregation.unit_errors.append(e)
                failed.add(nutrient_key)
                continue
            if not math.isfinite(amount):
                raise InvalidStackItem(item.name, f"dose is out of range in {limit.unit}")
            amounts.setdefault(nutrient_key, []).append(amount)
            contributors.setdefault(nutrient_key, []).append(item.name)

        # A nutrient with any unconvertible dose gets no total and no warning
        for nutrient_key in sorted(amounts):
            if nutrient_key in failed:
                continue
            limit = self.knowledge_base.nutrient_limits[nutrient_key]
            try:
                total = math.fsum(sorted(amounts[nutrient_key]))
                percent = total / limit.upper_limit * 100
            except OverflowError:
                total = percent = math.inf
            if not math.isfinite(percent):
                raise InvalidStackItem(
                    ", ".join(contributors[nutrient_key]),
                    f"combined {nutrient_key} dose is out of range",
                )
            aggregation.totals[nutrient_key] = total
            if percent > self.warning_threshold_percent:
                aggregation.warnings.append(self._build_warning(
                    limit, total, percent, contributors[nutrient_key]
                ))

        return aggregation

    @staticmethod
    def _build_warning(limit: NutrientLimit, total: float, percent: float,
                       contributors: List[str]) -> NutrientWarning:
        excess = total - limit.upper_limit
        label = limit.nutrient_key.replace("_", " ")
        return NutrientWarning(
            nutrient_key=limit.nutrient_key,
            current_total=total,
            unit=limit.unit,
            upper_limit=limit.upper_limit,
            percent_of_limit=percent,
            recommendation=(
                f"Reduce total {label} intake by {round(excess, 2):g} {limit.unit}. "
                f"Consult a healthcare provider."
            ),
            contributors=tuple(sorted(contributors)),
        )
