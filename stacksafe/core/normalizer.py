"""
StackSafe Engine - Ingredient Normalizer
Maps free-form ingredient names to canonical ingredient keys
"""
import re
import logging
from typing import List, Optional, Tuple, Sequence, Iterator

from stacksafe.core.errors import UnresolvedIngredient
from stacksafe.core.knowledge_base import KnowledgeBase, make_key
from stacksafe.core.models import StackItem, ResolvedItem

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Strength and dosage-form noise on product labels, e.g. "Fish Oil 1000 mg softgels"
STRENGTH_PATTERN = re.compile(
    r"\b\d+(?:[.,]\d+)?\s*(?:mg|mcg|µg|ug|g|iu|ml|%)(?=\W|$)", re.IGNORECASE
)
FORM_PATTERN = re.compile(
    r"\b(?:tabs?|tablets?|caps?|capsules?|softgels?|gummies|gummy|chewables?|"
    r"drops|powder|liquid|extended release|er|xr)\b",
    re.IGNORECASE,
)
PAREN_PATTERN = re.compile(r"\(([^)]+)\)")


class IngredientNormalizer:
    """Exact and alias lookup against the knowledge base; never fuzzy-matches"""

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    def normalize(self, raw_name: str) -> Optional[str]:
        """Return the canonical ingredient key for raw_name, or None when unknown"""
        if not raw_name or not raw_name.strip():
            return None
        for candidate in self._candidates(raw_name):
            key = self._lookup(candidate)
            if key is not None:
                return key
        return None

    def require(self, raw_name: str) -> str:
        """Like normalize but raises UnresolvedIngredient"""
        key = self.normalize(raw_name)
        if key is None:
            raise UnresolvedIngredient(raw_name)
        return key

    def normalize_stack(
        self, items: Sequence[StackItem]
    ) -> Tuple[List[ResolvedItem], List[UnresolvedIngredient]]:
        """Split a stack into resolved items and unresolved-ingredient errors, preserving order"""
        resolved: List[ResolvedItem] = []
        unresolved: List[UnresolvedIngredient] = []
        for item in items:
            key = self.normalize(item.name)
            if key is None:
                logger.warning(f"Unrecognized ingredient excluded from analysis: {item.name}")
                unresolved.append(UnresolvedIngredient(item.name))
            else:
                resolved.append(ResolvedItem(ingredient_key=key, item=item))
        return resolved, unresolved

    def _lookup(self, text: str) -> Optional[str]:
        key = make_key(text)
        if not key:
            return None
        if key in self.knowledge_base.known_keys:
            return key
        return self.knowledge_base.synonyms.get(key)

    @staticmethod
    def _candidates(raw_name: str) -> Iterator[str]:
        # As typed, then with label noise removed, then any parenthesized generic
        yield raw_name
        stripped = FORM_PATTERN.sub(" ", STRENGTH_PATTERN.sub(" ", raw_name))
        stripped = PAREN_PATTERN.sub(" ", stripped)
        yield stripped
        for inner in PAREN_PATTERN.findall(raw_name):
            yield inner
