"""
StackSafe Engine - Tabular Reference Data Import
Reads nutrient limits and synonyms from CSV or Excel sheets into knowledge-base sections
"""
import logging
from pathlib import Path
from typing import List, Dict, Any, Optional

import pandas as pd

from stacksafe.core.errors import KnowledgeBaseLoadError
from stacksafe.core.knowledge_base import KnowledgeBase, make_key

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

LIMIT_COLUMNS = ("nutrient", "ul", "unit")
SYNONYM_COLUMNS = ("alias", "ingredient")


def read_table(filepath: str) -> pd.DataFrame:
    """Read a .csv, .xlsx or .xls file into a DataFrame"""
    path = Path(filepath)
    logger.info(f"Reading reference table from {path}")
    try:
        if path.suffix.lower() in (".xlsx", ".xls"):
            df = pd.read_excel(path)
        else:
            df = pd.read_csv(path)
    except FileNotFoundError:
        raise KnowledgeBaseLoadError(f"Reference table not found: {path}")
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df


def _require_columns(df: pd.DataFrame, columns, filepath: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise KnowledgeBaseLoadError(f"{filepath} is missing columns: {', '.join(missing)}")


def _cell(row: pd.Series, column: str) -> Optional[Any]:
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    return value


def _split_list(value: Optional[Any]) -> List[str]:
    if value is None:
        return []
    return [part.strip() for part in str(value).split(";") if part.strip()]


def _number(value: Any, column: str, filepath: str, index: int) -> float:
    try:
        return float(value)
    except ValueError:
        raise KnowledgeBaseLoadError(f"{filepath} row {index + 2}: {column} is not a number: {value!r}")


def nutrient_limits_from_table(filepath: str) -> Dict[str, Dict[str, Any]]:
    """
    Columns: nutrient, ul, unit, and optionally rdi, risk, at_risk_populations
    (semicolon separated), evidence_level, iu_per_mcg.
    """
    df = read_table(filepath)
    _require_columns(df, LIMIT_COLUMNS, filepath)

    limits: Dict[str, Dict[str, Any]] = {}
    for index, row in df.iterrows():
        name = _cell(row, "nutrient")
        if name is None:
            raise KnowledgeBaseLoadError(f"{filepath} row {index + 2}: blank nutrient name")
        key = make_key(name)
        entry: Dict[str, Any] = {
            "ul": _cell(row, "ul"),
            "unit": str(_cell(row, "unit") or "").strip(),
            "risk": str(_cell(row, "risk") or ""),
            "at_risk_populations": _split_list(_cell(row, "at_risk_populations")),
            "evidence_level": str(_cell(row, "evidence_level") or "A"),
        }
        for optional in ("rdi", "iu_per_mcg"):
            value = _cell(row, optional)
            if value is not None:
                entry[optional] = _number(value, optional, filepath, index)
        if entry["ul"] is not None:
            entry["ul"] = _number(entry["ul"], "ul", filepath, index)
        limits[key] = entry

    logger.info(f"Read {len(limits)} nutrient limits from {filepath}")
    return limits


def synonyms_from_table(filepath: str) -> Dict[str, List[str]]:
    """Columns: alias, ingredient (canonical key or name)"""
    df = read_table(filepath)
    _require_columns(df, SYNONYM_COLUMNS, filepath)

    synonyms: Dict[str, List[str]] = {}
    for index, row in df.iterrows():
        alias = _cell(row, "alias")
        ingredient = _cell(row, "ingredient")
        if alias is None or ingredient is None:
            raise KnowledgeBaseLoadError(f"{filepath} row {index + 2}: alias and ingredient are required")
        synonyms.setdefault(make_key(ingredient), []).append(str(alias).strip())

    logger.info(f"Read {sum(len(v) for v in synonyms.values())} synonyms from {filepath}")
    return synonyms


def merge_tables(base: Dict[str, Any],
                 limits_path: Optional[str] = None,
                 synonyms_path: Optional[str] = None) -> KnowledgeBase:
    """
    Overlay tabular limits and synonyms onto a knowledge-base document and
    validate the result. Table rows replace limits with the same key; synonyms
    are added to the existing lists.
    """
    if not isinstance(base, dict):
        raise KnowledgeBaseLoadError("Knowledge base document must be an object")
    for section in ("nutrient_limits", "synonyms"):
        if not isinstance(base.get(section, {}), dict):
            raise KnowledgeBaseLoadError(f"Malformed section: {section} must be an object")

    document = dict(base)
    if limits_path:
        limits = dict(document.get("nutrient_limits", {}))
        limits.update(nutrient_limits_from_table(limits_path))
        document["nutrient_limits"] = limits
    if synonyms_path:
        synonyms = {
            k: list(v) if isinstance(v, list) else v
            for k, v in document.get("synonyms", {}).items()
        }
        for canonical, aliases in synonyms_from_table(synonyms_path).items():
            existing = synonyms.setdefault(canonical, [])
            if not isinstance(existing, list):
                raise KnowledgeBaseLoadError(f"Synonyms for {canonical} must be a list")
            existing.extend(a for a in aliases if a not in existing)
        document["synonyms"] = synonyms
    return KnowledgeBase.from_dict(document)
