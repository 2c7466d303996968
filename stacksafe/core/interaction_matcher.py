"""
StackSafe Engine - Interaction Matcher
Evaluates every knowledge-base rule against a normalized stack
"""
import logging
from typing import List, Dict, Optional, Tuple, Iterable, Mapping, Sequence, FrozenSet
from collections import defaultdict

from stacksafe.core.knowledge_base import KnowledgeBase
from stacksafe.core.models import (
    InteractionRule, InteractionFinding, StackItem, ResolvedItem
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def match_rule(rule: InteractionRule, present: FrozenSet[str]) -> Optional[Tuple[str, ...]]:
    """
    Return the sorted trigger keys present in the stack when the rule fires, else None.

    Two groups: at least one key from each side. One group: at least two members.
    """
    hits = [group & present for group in rule.trigger_groups]
    matched = frozenset().union(*hits)
    if len(hits) == 1:
        fires = len(matched) >= 2
    else:
        fires = all(hits) and len(matched) >= 2
    return tuple(sorted(matched)) if fires else None


class InteractionMatcher:
    """Finds all interaction rules triggered by a stack, one finding per rule"""

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    def find_interactions(
        self,
        normalized_stack: Iterable[str],
        items_by_key: Optional[Mapping[str, Sequence[StackItem]]] = None,
    ) -> List[InteractionFinding]:
        """
        Evaluate every rule against the set of ingredient keys.

        Findings come back in knowledge-base rule order. A nutrient-source
        compound (ferrous sulfate) also counts as the nutrient it supplies
        (iron). When items_by_key is given, each finding carries every stack
        item behind its matched keys.
        """
        present = self._with_nutrients(normalized_stack)
        candidate_ids = {
            rule.rule_id for key in present for rule in self.knowledge_base.rules_for(key)
        }

        findings = []
        for rule in self.knowledge_base.rules:
            if rule.rule_id not in candidate_ids:
                continue
            matched_keys = match_rule(rule, present)
            if matched_keys is None:
                continue
            matched_items: List[StackItem] = []
            if items_by_key:
                for key in matched_keys:
                    for item in items_by_key.get(key, ()):
                        if not any(item is seen for seen in matched_items):
                            matched_items.append(item)
            findings.append(InteractionFinding(
                rule=rule,
                matched_keys=matched_keys,
                matched_items=tuple(matched_items),
            ))

        if findings:
            logger.info(
                f"{len(findings)} interaction(s) found across {len(present)} ingredients"
            )
        return findings

    def find_for_items(self, resolved: Sequence[ResolvedItem]) -> List[InteractionFinding]:
        """Match resolved stack items, attaching items to findings for explanation text"""
        items_by_key: Dict[str, List[StackItem]] = defaultdict(list)
        for entry in resolved:
            items_by_key[entry.ingredient_key].append(entry.item)
            nutrient_key = self.knowledge_base.nutrient_for(entry.ingredient_key)
            if nutrient_key is not None and nutrient_key != entry.ingredient_key:
                items_by_key[nutrient_key].append(entry.item)
        return self.find_interactions(items_by_key.keys(), items_by_key)

    def _with_nutrients(self, keys: Iterable[str]) -> FrozenSet[str]:
        present = set(keys)
        for key in list(present):
            nutrient_key = self.knowledge_base.nutrient_for(key)
            if nutrient_key is not None:
                present.add(nutrient_key)
        return frozenset(present)
