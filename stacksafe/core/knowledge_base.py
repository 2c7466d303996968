"""
StackSafe Engine - Knowledge Base
Loads and validates the static interaction rules, nutrient limits and synonym tables
"""
import re
import json
import logging
import threading
from types import MappingProxyType
from pathlib import Path
from typing import List, Dict, Optional, Tuple, Any, Mapping, FrozenSet
from dataclasses import dataclass
from collections import defaultdict

from config.settings import KNOWLEDGE_BASE_PATH
from stacksafe.core.errors import KnowledgeBaseLoadError
from stacksafe.core.models import (
    Severity, EvidenceLevel, EvidenceGrade, VerificationLevel,
    SourceRef, Spacing, InteractionRule, NutrientLimit
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Units a nutrient limit may be expressed in
LIMIT_UNITS = ("g", "mg", "mcg", "IU")


def make_key(text: str) -> str:
    """Canonical key form: lowercase, apostrophes dropped, separators collapsed to '_'"""
    key = str(text).strip().lower()
    key = re.sub(r"['’`]", "", key)
    key = re.sub(r"[^0-9a-z]+", "_", key)
    return key.strip("_")


@dataclass(frozen=True)
class KnowledgeBase:
    """Immutable, validated knowledge base. Safe to share across threads."""
    version: str
    rules: Tuple[InteractionRule, ...]
    nutrient_limits: Mapping[str, NutrientLimit]
    synonyms: Mapping[str, str]
    nutrient_sources: Mapping[str, str]
    evidence_grades: Mapping[EvidenceLevel, EvidenceGrade]
    known_keys: FrozenSet[str]
    rule_index: Mapping[str, Tuple[InteractionRule, ...]]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeBase":
        """Validate a raw knowledge-base document. Any defect rejects the whole document."""
        if not isinstance(data, dict):
            raise KnowledgeBaseLoadError("Knowledge base document must be an object")

        evidence_grades = _parse_evidence_grades(_optional_mapping(data, "evidence_levels"))

        limits: Dict[str, NutrientLimit] = {}
        for raw_key, raw_limit in _require_mapping(data, "nutrient_limits").items():
            limit = _parse_nutrient_limit(raw_key, raw_limit)
            limits[limit.nutrient_key] = limit

        rules: List[InteractionRule] = []
        seen_ids = set()
        for raw_rule in _require_list(data, "rules"):
            rule = _parse_rule(raw_rule)
            if rule.rule_id in seen_ids:
                raise KnowledgeBaseLoadError(f"Duplicate rule id: {rule.rule_id}")
            seen_ids.add(rule.rule_id)
            rules.append(rule)

        nutrient_sources: Dict[str, str] = {}
        for source_key, nutrient_key in _optional_mapping(data, "nutrient_sources").items():
            key = _require_key(source_key, "nutrient source")
            if not isinstance(nutrient_key, str) or nutrient_key not in limits:
                raise KnowledgeBaseLoadError(
                    f"Nutrient source {key} points to unknown nutrient {nutrient_key!r}"
                )
            nutrient_sources[key] = nutrient_key

        known = set(limits) | set(nutrient_sources)
        for rule in rules:
            known |= rule.trigger_keys

        synonyms: Dict[str, str] = {}
        for canonical, aliases in _optional_mapping(data, "synonyms").items():
            canonical = _require_key(canonical, "synonym target")
            if canonical not in known:
                raise KnowledgeBaseLoadError(f"Synonyms given for unknown ingredient {canonical!r}")
            if not isinstance(aliases, list):
                raise KnowledgeBaseLoadError(f"Synonyms for {canonical} must be a list")
            for alias in aliases:
                alias_key = make_key(alias) if isinstance(alias, str) else ""
                if not alias_key:
                    raise KnowledgeBaseLoadError(
                        f"Blank or non-string synonym for {canonical}: {alias!r}"
                    )
                existing = synonyms.get(alias_key)
                if existing is not None and existing != canonical:
                    raise KnowledgeBaseLoadError(
                        f"Synonym {alias!r} maps to both {existing} and {canonical}"
                    )
                if alias_key != canonical:
                    synonyms[alias_key] = canonical

        index: Dict[str, List[InteractionRule]] = defaultdict(list)
        for rule in rules:
            for key in sorted(rule.trigger_keys):
                index[key].append(rule)

        return cls(
            version=str(data.get("version", "unversioned")),
            rules=tuple(rules),
            nutrient_limits=MappingProxyType(limits),
            synonyms=MappingProxyType(synonyms),
            nutrient_sources=MappingProxyType(nutrient_sources),
            evidence_grades=MappingProxyType(evidence_grades),
            known_keys=frozenset(known),
            rule_index=MappingProxyType({k: tuple(v) for k, v in index.items()}),
        )

    def rules_for(self, ingredient_key: str) -> Tuple[InteractionRule, ...]:
        return self.rule_index.get(ingredient_key, ())

    def get_nutrient_limit(self, nutrient_key: str) -> Optional[NutrientLimit]:
        return self.nutrient_limits.get(nutrient_key)

    def nutrient_for(self, ingredient_key: str) -> Optional[str]:
        """Nutrient a canonical ingredient contributes to, if any"""
        if ingredient_key in self.nutrient_limits:
            return ingredient_key
        return self.nutrient_sources.get(ingredient_key)

    def get_statistics(self) -> Dict[str, Any]:
        """Get knowledge base statistics"""
        severity_counts: Dict[str, int] = defaultdict(int)
        category_counts: Dict[str, int] = defaultdict(int)
        for rule in self.rules:
            severity_counts[rule.severity.value] += 1
            category_counts[rule.category or "uncategorized"] += 1

        return {
            "version": self.version,
            "total_rules": len(self.rules),
            "rules_by_severity": dict(severity_counts),
            "rules_by_category": dict(category_counts),
            "rules_with_spacing": sum(1 for r in self.rules if r.spacing),
            "nutrient_limits": len(self.nutrient_limits),
            "synonyms": len(self.synonyms),
            "known_ingredients": len(self.known_keys),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the document format accepted by from_dict"""
        synonyms: Dict[str, List[str]] = defaultdict(list)
        for alias, canonical in sorted(self.synonyms.items()):
            synonyms[canonical].append(alias)

        return {
            "version": self.version,
            "evidence_levels": {
                level.value: {
                    "label": grade.label,
                    "description": grade.description,
                    "weight": grade.weight,
                }
                for level, grade in self.evidence_grades.items()
            },
            "nutrient_limits": {
                key: _limit_to_dict(limit) for key, limit in self.nutrient_limits.items()
            },
            "nutrient_sources": dict(self.nutrient_sources),
            "synonyms": dict(synonyms),
            "rules": [_rule_to_dict(rule) for rule in self.rules],
        }


def _require_mapping(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    if not isinstance(value, dict):
        raise KnowledgeBaseLoadError(f"Missing or malformed section: {name}")
    return value


def _optional_mapping(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise KnowledgeBaseLoadError(f"Malformed section: {name} must be an object")
    return value


def _require_list(data: Dict[str, Any], name: str) -> List[Any]:
    value = data.get(name)
    if not isinstance(value, list):
        raise KnowledgeBaseLoadError(f"Missing or malformed section: {name}")
    return value


def _require_key(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value or make_key(value) != value:
        raise KnowledgeBaseLoadError(f"Invalid {what} key: {value!r}")
    return value


def _require_number(value: Any, what: str, positive: bool = True) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise KnowledgeBaseLoadError(f"{what} must be a number, got {value!r}")
    if positive and value <= 0:
        raise KnowledgeBaseLoadError(f"{what} must be positive, got {value!r}")
    return float(value)


def _parse_evidence_level(value: Any, what: str) -> EvidenceLevel:
    try:
        return EvidenceLevel(str(value).strip().upper())
    except ValueError:
        raise KnowledgeBaseLoadError(f"Unknown evidence level {value!r} for {what}")


def _parse_evidence_grades(raw: Dict[str, Any]) -> Dict[EvidenceLevel, EvidenceGrade]:
    grades = {}
    for raw_level, info in raw.items():
        level = _parse_evidence_level(raw_level, "evidence taxonomy")
        if not isinstance(info, dict):
            raise KnowledgeBaseLoadError(f"Malformed evidence level: {level.value}")
        grades[level] = EvidenceGrade(
            level=level,
            label=str(info.get("label", "")),
            description=str(info.get("description", "")),
            weight=_require_number(info.get("weight"), f"Evidence level {level.value} weight"),
        )
    missing = [level.value for level in EvidenceLevel if level not in grades]
    if missing:
        raise KnowledgeBaseLoadError(f"Evidence taxonomy missing levels: {', '.join(missing)}")
    return grades


def _parse_nutrient_limit(raw_key: str, raw: Dict[str, Any]) -> NutrientLimit:
    key = _require_key(raw_key, "nutrient")
    if not isinstance(raw, dict):
        raise KnowledgeBaseLoadError(f"Malformed nutrient limit: {key}")
    unit = raw.get("unit")
    if unit not in LIMIT_UNITS:
        raise KnowledgeBaseLoadError(f"Unsupported unit {unit!r} for nutrient {key}")

    populations = raw.get("at_risk_populations", [])
    if not isinstance(populations, list):
        raise KnowledgeBaseLoadError(f"at_risk_populations of {key} must be a list")

    rdi = raw.get("rdi")
    iu_per_mcg = raw.get("iu_per_mcg")
    return NutrientLimit(
        nutrient_key=key,
        upper_limit=_require_number(raw.get("ul"), f"Upper limit of {key}"),
        unit=unit,
        risk_description=str(raw.get("risk", "")),
        at_risk_populations=tuple(str(p) for p in populations),
        evidence_level=_parse_evidence_level(raw.get("evidence_level", "A"), key),
        recommended_daily_intake=(
            None if rdi is None else _require_number(rdi, f"RDI of {key}")
        ),
        iu_per_mcg=(
            None if iu_per_mcg is None else _require_number(iu_per_mcg, f"IU factor of {key}")
        ),
    )


def _parse_rule(raw: Dict[str, Any]) -> InteractionRule:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise KnowledgeBaseLoadError(f"Rule without id: {raw!r}")
    rule_id = str(raw["id"])

    raw_groups = raw.get("groups")
    if not isinstance(raw_groups, list) or len(raw_groups) not in (1, 2):
        raise KnowledgeBaseLoadError(f"Rule {rule_id} must have one or two trigger groups")
    groups = []
    for raw_group in raw_groups:
        if not isinstance(raw_group, list) or not raw_group:
            raise KnowledgeBaseLoadError(f"Rule {rule_id} has an empty trigger group")
        groups.append(frozenset(_require_key(k, f"rule {rule_id} trigger") for k in raw_group))

    if len(groups) == 1 and len(groups[0]) < 2:
        raise KnowledgeBaseLoadError(f"Single-group rule {rule_id} needs at least two members")
    if len(groups) == 2 and groups[0] & groups[1]:
        raise KnowledgeBaseLoadError(f"Rule {rule_id} trigger groups overlap")

    try:
        severity = Severity.parse(raw.get("severity", ""))
    except ValueError:
        raise KnowledgeBaseLoadError(f"Rule {rule_id} has unknown severity {raw.get('severity')!r}")
    if severity == Severity.NONE:
        raise KnowledgeBaseLoadError(f"Rule {rule_id} cannot have severity none")

    mechanism = str(raw.get("mechanism", "")).strip()
    if not mechanism:
        raise KnowledgeBaseLoadError(f"Rule {rule_id} has no mechanism")

    raw_sources = raw.get("sources", [])
    if not isinstance(raw_sources, list):
        raise KnowledgeBaseLoadError(f"Rule {rule_id} sources must be a list")
    sources = []
    for raw_source in raw_sources:
        if not isinstance(raw_source, dict):
            raise KnowledgeBaseLoadError(f"Rule {rule_id} has a malformed source: {raw_source!r}")
        try:
            verification = VerificationLevel(raw_source.get("type", "CLINICAL_STUDY"))
        except ValueError:
            raise KnowledgeBaseLoadError(
                f"Rule {rule_id} source has unknown type {raw_source.get('type')!r}"
            )
        sources.append(SourceRef(
            id=str(raw_source.get("id", "")),
            type=verification,
            url=str(raw_source.get("url", "")),
        ))

    spacing = None
    if raw.get("spacing"):
        raw_spacing = raw["spacing"]
        if not isinstance(raw_spacing, dict):
            raise KnowledgeBaseLoadError(f"Rule {rule_id} has malformed spacing")
        spacing = Spacing(
            minimum_hours=_require_number(raw_spacing.get("minimum_hours"), f"Rule {rule_id} spacing"),
            optimal_hours=_require_number(raw_spacing.get("optimal_hours"), f"Rule {rule_id} spacing"),
            explanation=str(raw_spacing.get("explanation", "")),
        )

    return InteractionRule(
        rule_id=rule_id,
        trigger_groups=tuple(groups),
        severity=severity,
        mechanism=mechanism,
        evidence=str(raw.get("evidence", "")),
        management=str(raw.get("management", "")),
        sources=tuple(sources),
        category=str(raw.get("category", "")),
        evidence_level=_parse_evidence_level(raw.get("evidence_level", "C"), rule_id),
        spacing=spacing,
    )


def _limit_to_dict(limit: NutrientLimit) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "ul": limit.upper_limit,
        "unit": limit.unit,
        "risk": limit.risk_description,
        "at_risk_populations": list(limit.at_risk_populations),
        "evidence_level": limit.evidence_level.value,
    }
    if limit.recommended_daily_intake is not None:
        data["rdi"] = limit.recommended_daily_intake
    if limit.iu_per_mcg is not None:
        data["iu_per_mcg"] = limit.iu_per_mcg
    return data


def _rule_to_dict(rule: InteractionRule) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": rule.rule_id,
        "groups": [sorted(group) for group in rule.trigger_groups],
        "severity": rule.severity.value,
        "category": rule.category,
        "mechanism": rule.mechanism,
        "evidence": rule.evidence,
        "evidence_level": rule.evidence_level.value,
        "management": rule.management,
        "sources": [{"id": s.id, "type": s.type.value, "url": s.url} for s in rule.sources],
    }
    if rule.spacing:
        data["spacing"] = {
            "minimum_hours": rule.spacing.minimum_hours,
            "optimal_hours": rule.spacing.optimal_hours,
            "explanation": rule.spacing.explanation,
        }
    return data


def read_document(path) -> Any:
    """Read a raw knowledge-base JSON document; any read or parse failure is a load error"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise KnowledgeBaseLoadError(f"Knowledge base not found: {path}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise KnowledgeBaseLoadError(f"Knowledge base is not valid JSON: {path} - {e}")
    except OSError as e:
        raise KnowledgeBaseLoadError(f"Knowledge base could not be read: {path} - {e}")


def load_knowledge_base(path: Optional[str] = None) -> KnowledgeBase:
    """Load and validate a knowledge base JSON file"""
    filepath = Path(path or KNOWLEDGE_BASE_PATH)
    logger.info(f"Loading knowledge base from {filepath}")
    kb = KnowledgeBase.from_dict(read_document(filepath))
    logger.info(
        f"Knowledge base {kb.version} loaded: {len(kb.rules)} rules, "
        f"{len(kb.nutrient_limits)} nutrient limits, {len(kb.synonyms)} synonyms"
    )
    return kb


# Singleton instance
_knowledge_base: Optional[KnowledgeBase] = None
_knowledge_base_lock = threading.Lock()


def get_knowledge_base() -> KnowledgeBase:
    """Get or load the knowledge base singleton"""
    global _knowledge_base
    if _knowledge_base is None:
        with _knowledge_base_lock:
            if _knowledge_base is None:
                _knowledge_base = load_knowledge_base()
    return _knowledge_base


def init_knowledge_base(path: str) -> KnowledgeBase:
    """Replace the singleton with a knowledge base loaded from path"""
    global _knowledge_base
    kb = load_knowledge_base(path)
    with _knowledge_base_lock:
        _knowledge_base = kb
    return kb
