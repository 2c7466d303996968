"""
StackSafe Engine - Stack Analysis Service
Runs the full pipeline: normalize, match, aggregate, summarize, score
"""
import math
import logging
import time
from typing import List, Dict, Optional, Any, Sequence

from config.settings import ENABLE_TIMING_GUIDANCE
from stacksafe.core.errors import InvalidStackItem
from stacksafe.core.models import (
    ItemRole, IssueKind, StackItem, InteractionFinding,
    StackInteractionResult, AnalysisIssue, StackAnalysis
)
from stacksafe.core.knowledge_base import KnowledgeBase, get_knowledge_base
from stacksafe.core.normalizer import IngredientNormalizer
from stacksafe.core.interaction_matcher import InteractionMatcher
from stacksafe.core.nutrient_aggregator import NutrientAggregator
from stacksafe.core import risk_aggregator, health_score

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class StackAnalysisService:
    """
    Main service for analyzing a supplement/medication stack:
    - Ingredient normalization
    - Rule-based interaction matching
    - Nutrient upper-limit checks
    - Overall risk level and health score
    """

    def __init__(
        self,
        knowledge_base: Optional[KnowledgeBase] = None,
        nutrient_aggregator: Optional[NutrientAggregator] = None,
    ):
        self.knowledge_base = knowledge_base or get_knowledge_base()
        self.normalizer = IngredientNormalizer(self.knowledge_base)
        self.matcher = InteractionMatcher(self.knowledge_base)
        self.nutrient_aggregator = nutrient_aggregator or NutrientAggregator(self.knowledge_base)
        logger.info(f"Stack Analysis Service initialized with knowledge base {self.knowledge_base.version}")

    def analyze(self, stack: Sequence[StackItem]) -> StackAnalysis:
        """
        Analyze a stack snapshot.

        Raises InvalidStackItem before any analysis if an item is malformed.
        Unrecognized ingredients and unit problems are reported as issues
        alongside the best-effort result.
        """
        start_time = time.time()
        self.validate_stack(stack)

        resolved, unresolved = self.normalizer.normalize_stack(stack)
        findings = self.matcher.find_for_items(resolved)
        aggregation = self.nutrient_aggregator.aggregate_nutrients(resolved)
        result = risk_aggregator.aggregate(findings, aggregation.warnings)
        score = health_score.score(result, len(stack))

        issues = [
            AnalysisIssue(IssueKind.UNRESOLVED_INGREDIENT, err.raw_name, str(err))
            for err in unresolved
        ]
        issues.extend(
            AnalysisIssue(IssueKind.UNIT_MISMATCH, err.nutrient_key, str(err))
            for err in aggregation.unit_errors
        )
        issues.extend(
            AnalysisIssue(
                IssueKind.MISSING_DOSE, item.name,
                f"No dose given for {item.name}; it was not counted toward nutrient totals"
            )
            for item in aggregation.missing_doses
        )

        analysis_time = (time.time() - start_time) * 1000
        logger.debug(
            f"Analyzed stack of {len(stack)} items: {result.overall_risk_level.value} risk, "
            f"score {score}, {len(issues)} issue(s) in {analysis_time:.1f}ms"
        )

        return StackAnalysis(
            result=result,
            score=score,
            score_label=health_score.score_label(score),
            stack_size=len(stack),
            analyzed_items=len(resolved),
            issues=issues,
            recommendations=self._generate_recommendations(result),
            timing_guidance=(
                self._generate_timing_guidance(findings) if ENABLE_TIMING_GUIDANCE else []
            ),
            nutrient_totals=aggregation.totals,
            analysis_time_ms=round(analysis_time, 2),
        )

    def analyze_with_candidate(self, stack: Sequence[StackItem],
                               candidate: StackItem) -> StackAnalysis:
        """Preview the stack as it would be after adding candidate"""
        return self.analyze(list(stack) + [candidate])

    def normalize_names(self, names: Sequence[str]) -> Dict[str, Optional[str]]:
        return {name: self.normalizer.normalize(name) for name in names}

    def validate_stack(self, stack: Sequence[StackItem]) -> None:
        for item in stack:
            self.validate_item(item)

    @staticmethod
    def validate_item(item: StackItem) -> None:
        """Reject structurally invalid items at the boundary"""
        name = item.name if isinstance(item.name, str) else ""
        if not name.strip():
            raise InvalidStackItem(repr(item.name), "name must not be blank")
        if not isinstance(item.role, ItemRole):
            raise InvalidStackItem(name, f"unknown role {item.role!r}")
        if item.dose is None:
            return
        value = item.dose.value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidStackItem(name, f"dose must be a number, got {value!r}")
        if not math.isfinite(value) or value <= 0:
            raise InvalidStackItem(name, f"dose must be positive, got {value!r}")
        if not isinstance(item.dose.unit, str) or not item.dose.unit.strip():
            raise InvalidStackItem(name, "dose unit must not be blank")

    def _generate_recommendations(self, result: StackInteractionResult) -> List[str]:
        """Actionable guidance, most severe first"""
        ranked = sorted(
            [(f.severity, self._finding_recommendation(f)) for f in result.interactions]
            + [(w.severity, w.recommendation) for w in result.nutrient_warnings],
            key=lambda pair: pair[0],
            reverse=True,
        )
        recommendations: List[str] = []
        for _, text in ranked:
            if text not in recommendations:
                recommendations.append(text)
        return recommendations

    @staticmethod
    def _finding_recommendation(finding: InteractionFinding) -> str:
        names = " + ".join(finding.participants)
        return f"{finding.severity.value.upper()}: {names}. {finding.rule.management}"

    @staticmethod
    def _generate_timing_guidance(findings: Sequence[InteractionFinding]) -> List[str]:
        guidance = []
        for finding in findings:
            spacing = finding.rule.spacing
            if spacing is None:
                continue
            names = " and ".join(finding.participants)
            text = (
                f"Separate {names} by at least {spacing.minimum_hours:g} hours "
                f"(optimal: {spacing.optimal_hours:g} hours)."
            )
            if spacing.explanation:
                text = f"{text} {spacing.explanation}"
            guidance.append(text)
        return guidance

    def get_nutrient_info(self, nutrient_key: str) -> Optional[Dict[str, Any]]:
        """Get reference information for a nutrient"""
        key = self.normalizer.normalize(nutrient_key)
        nutrient = self.knowledge_base.nutrient_for(key) if key else None
        if nutrient is None:
            return None
        limit = self.knowledge_base.nutrient_limits[nutrient]
        grade = self.knowledge_base.evidence_grades[limit.evidence_level]
        return {
            "nutrient_key": limit.nutrient_key,
            "upper_limit": limit.upper_limit,
            "recommended_daily_intake": limit.recommended_daily_intake,
            "unit": limit.unit,
            "risk": limit.risk_description,
            "at_risk_populations": list(limit.at_risk_populations),
            "evidence_level": limit.evidence_level.value,
            "evidence_label": grade.label,
            "evidence_weight": grade.weight,
        }


# Singleton instance
_analysis_service: Optional[StackAnalysisService] = None

def get_analysis_service() -> StackAnalysisService:
    """Get or create analysis service singleton"""
    global _analysis_service
    if _analysis_service is None:
        _analysis_service = StackAnalysisService()
    return _analysis_service
