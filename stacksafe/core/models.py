"""
StackSafe Engine - Data Models
Core data structures shared by the analysis pipeline
"""
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Tuple, FrozenSet, Iterable
from enum import Enum
from functools import total_ordering


@total_ordering
class Severity(Enum):
    NONE = "none"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: str) -> "Severity":
        """Parse 'CRITICAL', 'critical' or ' High ' into a Severity"""
        return cls(str(value).strip().lower())


# Highest to lowest: CRITICAL > HIGH > MODERATE > LOW > NONE
SEVERITY_RANK: Dict[Severity, int] = {
    Severity.NONE: 0,
    Severity.LOW: 1,
    Severity.MODERATE: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}

# Percent-of-upper-limit bands for nutrient warnings, checked top-down.
# Anything above the warning threshold but below the last band is LOW.
NUTRIENT_SEVERITY_BANDS: Tuple[Tuple[float, Severity], ...] = (
    (200.0, Severity.CRITICAL),
    (150.0, Severity.HIGH),
    (110.0, Severity.MODERATE),
)


def highest_severity(severities: Iterable[Severity]) -> Severity:
    """Maximum severity of an iterable, NONE when empty"""
    return max(severities, default=Severity.NONE)


def severity_for_percent_of_limit(percent_of_limit: float) -> Severity:
    """Map a nutrient total (as % of its upper limit) to a severity band"""
    for lower_bound, severity in NUTRIENT_SEVERITY_BANDS:
        if percent_of_limit >= lower_bound:
            return severity
    if percent_of_limit > 100.0:
        return Severity.LOW
    return Severity.NONE


class EvidenceLevel(Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class VerificationLevel(Enum):
    FDA_VERIFIED = "FDA_VERIFIED"
    NIH_VALIDATED = "NIH_VALIDATED"
    CLINICAL_STUDY = "CLINICAL_STUDY"
    RULE_BASED = "RULE_BASED"
    AI_ANALYSIS = "AI_ANALYSIS"


class ItemRole(Enum):
    SUPPLEMENT = "supplement"
    MEDICATION = "medication"


class IssueKind(Enum):
    UNRESOLVED_INGREDIENT = "unresolved_ingredient"
    UNIT_MISMATCH = "unit_mismatch"
    MISSING_DOSE = "missing_dose"


@dataclass(frozen=True)
class EvidenceGrade:
    """Qualitative grade describing the research behind a rule or limit"""
    level: EvidenceLevel
    label: str
    description: str
    weight: float


@dataclass(frozen=True)
class Dose:
    value: float
    unit: str

    def __str__(self) -> str:
        return f"{self.value:g} {self.unit}"


@dataclass(frozen=True)
class StackItem:
    """One entry in the user's active stack"""
    name: str
    role: ItemRole = ItemRole.SUPPLEMENT
    dose: Optional[Dose] = None
    item_id: Optional[str] = None


@dataclass(frozen=True)
class ResolvedItem:
    """A stack item paired with its canonical ingredient key"""
    ingredient_key: str
    item: StackItem


@dataclass(frozen=True)
class SourceRef:
    id: str
    type: VerificationLevel = VerificationLevel.CLINICAL_STUDY
    url: str = ""


@dataclass(frozen=True)
class Spacing:
    """Recommended separation between doses of the interacting substances"""
    minimum_hours: float
    optimal_hours: float
    explanation: str = ""


@dataclass(frozen=True)
class InteractionRule:
    """
    Static interaction rule from the knowledge base.

    One trigger group describes a same-role conflict (any two members clash);
    two groups describe a cross-role rule (one member from each side).
    """
    rule_id: str
    trigger_groups: Tuple[FrozenSet[str], ...]
    severity: Severity
    mechanism: str
    evidence: str = ""
    management: str = ""
    sources: Tuple[SourceRef, ...] = ()
    category: str = ""
    evidence_level: EvidenceLevel = EvidenceLevel.C
    spacing: Optional[Spacing] = None

    @property
    def trigger_keys(self) -> FrozenSet[str]:
        return frozenset().union(*self.trigger_groups)

    @property
    def is_cross_group(self) -> bool:
        return len(self.trigger_groups) == 2


@dataclass(frozen=True)
class NutrientLimit:
    nutrient_key: str
    upper_limit: float
    unit: str
    risk_description: str = ""
    at_risk_populations: Tuple[str, ...] = ()
    evidence_level: EvidenceLevel = EvidenceLevel.A
    recommended_daily_intake: Optional[float] = None
    iu_per_mcg: Optional[float] = None


@dataclass(frozen=True)
class InteractionFinding:
    """An interaction rule that matched, with the stack items that triggered it"""
    rule: InteractionRule
    matched_keys: Tuple[str, ...]
    matched_items: Tuple[StackItem, ...] = ()

    @property
    def rule_id(self) -> str:
        return self.rule.rule_id

    @property
    def severity(self) -> Severity:
        return self.rule.severity

    @property
    def participants(self) -> List[str]:
        """Display names of the substances involved, one per matched key"""
        if not self.matched_items:
            return [key.replace("_", " ") for key in self.matched_keys]
        names: List[str] = []
        for item in self.matched_items:
            if item.name not in names:
                names.append(item.name)
        return names

    @property
    def message(self) -> str:
        return f"{' + '.join(self.participants)}: {self.rule.mechanism}"

    def to_dict(self) -> Dict[str, Any]:
        rule = self.rule
        return {
            "rule_id": rule.rule_id,
            "severity": rule.severity.value,
            "category": rule.category,
            "matched_keys": list(self.matched_keys),
            "matched_items": [item.name for item in self.matched_items],
            "message": self.message,
            "mechanism": rule.mechanism,
            "evidence": rule.evidence,
            "evidence_level": rule.evidence_level.value,
            "management": rule.management,
            "sources": [
                {"id": s.id, "type": s.type.value, "url": s.url} for s in rule.sources
            ],
        }


@dataclass(frozen=True)
class NutrientWarning:
    nutrient_key: str
    current_total: float
    unit: str
    upper_limit: float
    percent_of_limit: float
    recommendation: str
    contributors: Tuple[str, ...] = ()

    @property
    def display_percent(self) -> int:
        return int(round(self.percent_of_limit))

    @property
    def severity(self) -> Severity:
        return severity_for_percent_of_limit(self.percent_of_limit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nutrient_key": self.nutrient_key,
            "current_total": self.current_total,
            "unit": self.unit,
            "upper_limit": self.upper_limit,
            "percent_of_limit": self.percent_of_limit,
            "display_percent": self.display_percent,
            "severity": self.severity.value,
            "recommendation": self.recommendation,
            "contributors": list(self.contributors),
        }


@dataclass
class StackInteractionResult:
    """The engine's output for one stack snapshot"""
    overall_risk_level: Severity = Severity.NONE
    interactions: List[InteractionFinding] = field(default_factory=list)
    nutrient_warnings: List[NutrientWarning] = field(default_factory=list)

    @property
    def has_interactions(self) -> bool:
        return len(self.interactions) > 0

    @property
    def overall_safe(self) -> bool:
        return self.overall_risk_level in (Severity.NONE, Severity.LOW)

    @property
    def severity_counts(self) -> Dict[str, int]:
        counts = {"critical": 0, "high": 0, "moderate": 0, "low": 0}
        for finding in self.interactions:
            counts[finding.severity.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_risk_level": self.overall_risk_level.value,
            "overall_safe": self.overall_safe,
            "interactions": [f.to_dict() for f in self.interactions],
            "nutrient_warnings": [w.to_dict() for w in self.nutrient_warnings],
            "summary": self.severity_counts,
        }


@dataclass(frozen=True)
class AnalysisIssue:
    """Something that kept part of the stack from being analyzed"""
    kind: IssueKind
    subject: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "subject": self.subject, "message": self.message}


@dataclass
class StackAnalysis:
    """Full analysis of a stack: result record, score, guidance and issues"""
    result: StackInteractionResult
    score: int
    score_label: str
    stack_size: int
    analyzed_items: int = 0
    issues: List[AnalysisIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    timing_guidance: List[str] = field(default_factory=list)
    nutrient_totals: Dict[str, float] = field(default_factory=dict)
    analysis_time_ms: float = 0

    @property
    def is_complete(self) -> bool:
        """False when some items could not be analyzed"""
        return not self.issues

    @property
    def unresolved_items(self) -> List[str]:
        return [i.subject for i in self.issues if i.kind == IssueKind.UNRESOLVED_INGREDIENT]

    @property
    def unit_errors(self) -> List[AnalysisIssue]:
        return [i for i in self.issues if i.kind == IssueKind.UNIT_MISMATCH]
