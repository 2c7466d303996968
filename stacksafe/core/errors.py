"""
StackSafe Engine - Errors
"""
from typing import Optional


class StackSafetyError(Exception):
    """Base class for engine errors"""


class UnresolvedIngredient(StackSafetyError):
    """A stack item's name does not map to any known ingredient"""

    def __init__(self, raw_name: str):
        self.raw_name = raw_name
        super().__init__(f"Unrecognized ingredient: {raw_name!r}")


class UnitMismatch(StackSafetyError):
    """A dose unit cannot be converted to the nutrient limit's unit"""

    def __init__(self, nutrient_key: str, from_unit: str, to_unit: str,
                 item_name: Optional[str] = None):
        self.nutrient_key = nutrient_key
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.item_name = item_name
        source = f" (from {item_name})" if item_name else ""
        super().__init__(
            f"Cannot convert {from_unit!r} to {to_unit!r} for {nutrient_key}{source}"
        )


class KnowledgeBaseLoadError(StackSafetyError):
    """The knowledge base is missing or malformed. Never served partially."""


class InvalidStackItem(StackSafetyError):
    """A stack item is structurally invalid (blank name, bad dose, bad role)"""

    def __init__(self, item_name: str, reason: str):
        self.item_name = item_name
        self.reason = reason
        super().__init__(f"Invalid stack item {item_name!r}: {reason}")
