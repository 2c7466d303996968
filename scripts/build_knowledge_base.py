#!/usr/bin/env python3
"""
StackSafe Engine
Knowledge Base Builder - merge tabular reference data into the bundled JSON

Usage:
    python build_knowledge_base.py [--limits limits.xlsx] [--synonyms synonyms.csv]
                                   [--base knowledge_base.json] [--output out.json]
"""
import sys
import json
import logging
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import KNOWLEDGE_BASE_PATH, LOG_LEVEL, LOG_FORMAT
from stacksafe.core.errors import KnowledgeBaseLoadError
from stacksafe.core.knowledge_base import read_document
from stacksafe.core.tabular_import import merge_tables

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
logger = logging.getLogger(__name__)


def build_knowledge_base(base_path: str, output_path: str,
                         limits_path: str = None, synonyms_path: str = None,
                         version: str = None):
    """
    Load the base document, overlay tables, validate and write the result.
    Nothing is written when validation fails.
    """
    logger.info(f"Loading base knowledge base from: {base_path}")
    base = read_document(base_path)
    if not isinstance(base, dict):
        raise KnowledgeBaseLoadError(f"Base knowledge base must be a JSON object: {base_path}")
    if version:
        base["version"] = version

    kb = merge_tables(base, limits_path=limits_path, synonyms_path=synonyms_path)

    stats = kb.get_statistics()
    logger.info("Knowledge Base Statistics:")
    for key, value in stats.items():
        logger.info(f"  {key}: {value}")

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(kb.to_dict(), f, indent=2, ensure_ascii=False)
        f.write("\n")
    logger.info(f"Wrote knowledge base to: {output_path}")
    return kb, stats


def main():
    parser = argparse.ArgumentParser(description="Build the StackSafe knowledge base")
    parser.add_argument("--base", default=KNOWLEDGE_BASE_PATH, help="Base knowledge base JSON")
    parser.add_argument("--limits", help="CSV/Excel table of nutrient limits")
    parser.add_argument("--synonyms", help="CSV/Excel table of ingredient synonyms")
    parser.add_argument("--output", "-o", help="Output JSON path (defaults to --base)")
    parser.add_argument("--version", help="Version string for the built knowledge base")

    args = parser.parse_args()

    try:
        build_knowledge_base(
            args.base,
            args.output or args.base,
            limits_path=args.limits,
            synonyms_path=args.synonyms,
            version=args.version,
        )
    except KnowledgeBaseLoadError as e:
        logger.error(f"Knowledge base rejected: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
