"""
StackSafe Engine - Knowledge Base Tests
Loading, validation, immutability and tabular import
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import copy
import json
import dataclasses
import pytest

from stacksafe.core.models import Severity, EvidenceLevel
from stacksafe.core.errors import KnowledgeBaseLoadError
from stacksafe.core.knowledge_base import (
    KnowledgeBase, load_knowledge_base, get_knowledge_base
)
from stacksafe.core.tabular_import import merge_tables, nutrient_limits_from_table
from scripts.build_knowledge_base import build_knowledge_base


def minimal_document():
    return {
        "version": "test",
        "evidence_levels": {
            level: {"label": level, "description": "", "weight": weight}
            for level, weight in (("A", 1.0), ("B", 0.8), ("C", 0.6), ("D", 0.4))
        },
        "nutrient_limits": {
            "iron": {"ul": 45, "unit": "mg", "evidence_level": "A"},
        },
        "nutrient_sources": {"ferrous_sulfate": "iron"},
        "synonyms": {"warfarin": ["Coumadin"]},
        "rules": [
            {
                "id": "warfarin_vitamin_k",
                "groups": [["warfarin"], ["vitamin_k"]],
                "severity": "critical",
                "mechanism": "Opposes anticoagulation",
            },
            {
                "id": "ssri_duplication",
                "groups": [["sertraline", "fluoxetine"]],
                "severity": "HIGH",
                "mechanism": "Serotonin excess",
            },
        ],
    }


def set_value(*path, value):
    """Build a mutation that sets doc[path...] = value"""
    def mutate(doc):
        target = doc
        for part in path[:-1]:
            target = target[part]
        target[path[-1]] = value
    return mutate


def delete(*path):
    def mutate(doc):
        target = doc
        for part in path[:-1]:
            target = target[part]
        del target[path[-1]]
    return mutate


BROKEN_DOCUMENTS = {
    "unknown severity": set_value("rules", 0, "severity", value="severe"),
    "none severity": set_value("rules", 0, "severity", value="none"),
    "single member group": set_value("rules", 1, "groups", value=[["sertraline"]]),
    "three groups": set_value("rules", 0, "groups", value=[["a"], ["b"], ["c"]]),
    "overlapping groups": set_value("rules", 0, "groups", value=[["warfarin"], ["warfarin", "vitamin_k"]]),
    "duplicate id": set_value("rules", 1, "id", value="warfarin_vitamin_k"),
    "unnormalized key": set_value("rules", 0, "groups", value=[["Warfarin"], ["vitamin_k"]]),
    "no mechanism": set_value("rules", 0, "mechanism", value=""),
    "bad unit": set_value("nutrient_limits", "iron", "unit", value="tsp"),
    "zero limit": set_value("nutrient_limits", "iron", "ul", value=0),
    "string limit": set_value("nutrient_limits", "iron", "ul", value="45"),
    "missing evidence level": delete("evidence_levels", "D"),
    "unknown synonym target": set_value("synonyms", "unobtainium", value=["Unob"]),
    "conflicting synonym": set_value("synonyms", "vitamin_k", value=["Coumadin"]),
    "unknown nutrient source": set_value("nutrient_sources", "zinc_gluconate", value="zinc"),
    "missing rules": delete("rules"),
    "nutrient sources not an object": set_value("nutrient_sources", value=["ferrous_sulfate"]),
    "nutrient source target not a string": set_value("nutrient_sources", "ferrous_sulfate", value=["iron"]),
    "synonyms not an object": set_value("synonyms", value="warfarin"),
    "non-string synonym": set_value("synonyms", "warfarin", value=[5]),
    "evidence level not an object": set_value("evidence_levels", "A", value=1),
    "populations not a list": set_value("nutrient_limits", "iron", "at_risk_populations", value=3),
    "sources not a list": set_value("rules", 0, "sources", value={"id": "label"}),
    "source not an object": set_value("rules", 0, "sources", value=["pubmed"]),
    "spacing not an object": set_value("rules", 0, "spacing", value=4),
}


class TestBundledKnowledgeBase:
    """Test the shipped knowledge base"""

    @pytest.fixture(scope="class")
    def kb(self):
        return load_knowledge_base()

    def test_loads(self, kb):
        stats = kb.get_statistics()
        assert stats["total_rules"] == len(kb.rules) > 20
        assert stats["nutrient_limits"] == 19
        assert stats["rules_by_severity"]["critical"] > 0

    def test_lossless_values(self, kb):
        assert kb.nutrient_limits["vitamin_b6"].upper_limit == 100.0
        assert kb.nutrient_limits["copper"].recommended_daily_intake == 0.9
        assert kb.nutrient_limits["vitamin_a"].iu_per_mcg == 3.33
        assert kb.nutrient_limits["vitamin_d"].unit == "IU"

    def test_rule_shapes(self, kb):
        for rule in kb.rules:
            assert len(rule.trigger_groups) in (1, 2)
            assert rule.severity != Severity.NONE
            assert rule.mechanism

    def test_evidence_taxonomy(self, kb):
        assert set(kb.evidence_grades) == set(EvidenceLevel)
        assert kb.evidence_grades[EvidenceLevel.A].weight == 1.0
        assert kb.evidence_grades[EvidenceLevel.D].label == "Expert Opinion"

    def test_immutable(self, kb):
        with pytest.raises(TypeError):
            kb.nutrient_limits["iron"] = None
        with pytest.raises(TypeError):
            kb.synonyms["foo"] = "bar"
        with pytest.raises(dataclasses.FrozenInstanceError):
            kb.rules[0].severity = Severity.LOW
        with pytest.raises(dataclasses.FrozenInstanceError):
            kb.version = "changed"

    def test_serialization_preserves_content(self, kb):
        rebuilt = KnowledgeBase.from_dict(json.loads(json.dumps(kb.to_dict())))
        assert rebuilt.get_statistics() == kb.get_statistics()
        assert rebuilt.rules == kb.rules
        assert dict(rebuilt.nutrient_limits) == dict(kb.nutrient_limits)

    def test_singleton(self):
        assert get_knowledge_base() is get_knowledge_base()


class TestLoaderValidation:
    """Malformed documents are rejected as a whole"""

    def test_minimal_document(self):
        kb = KnowledgeBase.from_dict(minimal_document())
        assert kb.synonyms["coumadin"] == "warfarin"
        assert kb.nutrient_for("ferrous_sulfate") == "iron"
        assert kb.rules[1].severity == Severity.HIGH
        assert [r.rule_id for r in kb.rules_for("warfarin")] == ["warfarin_vitamin_k"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(KnowledgeBaseLoadError):
            load_knowledge_base(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text("{not json")
        with pytest.raises(KnowledgeBaseLoadError):
            load_knowledge_base(str(path))

    def test_not_utf8(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_bytes(b"\xff\xfe{\x00}")
        with pytest.raises(KnowledgeBaseLoadError):
            load_knowledge_base(str(path))

    def test_unreadable_path(self, tmp_path):
        with pytest.raises(KnowledgeBaseLoadError):
            load_knowledge_base(str(tmp_path))

    @pytest.mark.parametrize("document", [[], "kb", 3])
    def test_document_not_an_object(self, document):
        with pytest.raises(KnowledgeBaseLoadError):
            KnowledgeBase.from_dict(document)

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(minimal_document()))
        assert load_knowledge_base(str(path)).version == "test"

    @pytest.mark.parametrize("defect", sorted(BROKEN_DOCUMENTS))
    def test_rejected(self, defect):
        doc = copy.deepcopy(minimal_document())
        BROKEN_DOCUMENTS[defect](doc)
        with pytest.raises(KnowledgeBaseLoadError):
            KnowledgeBase.from_dict(doc)


class TestTabularImport:
    """CSV/Excel reference tables"""

    @pytest.fixture
    def limits_csv(self, tmp_path):
        path = tmp_path / "limits.csv"
        path.write_text(
            "Nutrient,UL,Unit,RDI,Risk,At_Risk_Populations,Evidence_Level\n"
            "Iron,40,mg,8,GI distress,hemochromatosis;liver disease,A\n"
            "Lutein,20,mg,,Skin yellowing,,C\n"
        )
        return str(path)

    @pytest.fixture
    def synonyms_csv(self, tmp_path):
        path = tmp_path / "synonyms.csv"
        path.write_text("alias,ingredient\nFerrous Bisglycinate,iron\nCoumadin,warfarin\n")
        return str(path)

    def test_read_limits(self, limits_csv):
        limits = nutrient_limits_from_table(limits_csv)
        assert limits["iron"]["ul"] == 40.0
        assert limits["iron"]["at_risk_populations"] == ["hemochromatosis", "liver disease"]
        assert "rdi" not in limits["lutein"]
        assert limits["lutein"]["evidence_level"] == "C"

    def test_merge(self, limits_csv, synonyms_csv):
        kb = merge_tables(minimal_document(), limits_path=limits_csv, synonyms_path=synonyms_csv)
        assert kb.nutrient_limits["iron"].upper_limit == 40.0
        assert kb.nutrient_limits["lutein"].unit == "mg"
        assert kb.synonyms["ferrous_bisglycinate"] == "iron"
        assert kb.synonyms["coumadin"] == "warfarin"

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("name,limit\niron,45\n")
        with pytest.raises(KnowledgeBaseLoadError):
            nutrient_limits_from_table(str(path))

    def test_build_script(self, tmp_path, limits_csv):
        base = tmp_path / "base.json"
        base.write_text(json.dumps(minimal_document()))
        output = tmp_path / "out.json"
        kb, stats = build_knowledge_base(str(base), str(output), limits_path=limits_csv, version="v2")
        assert stats["nutrient_limits"] == 2
        reloaded = load_knowledge_base(str(output))
        assert reloaded.version == "v2"
        assert reloaded.nutrient_limits["lutein"].upper_limit == 20.0

    @pytest.mark.parametrize("content", [b"[1, 2]", b"\xff\xfe", b'{"synonyms": "warfarin"}'])
    def test_build_script_rejects_bad_base(self, tmp_path, content):
        base = tmp_path / "base.json"
        base.write_bytes(content)
        output = tmp_path / "out.json"
        with pytest.raises(KnowledgeBaseLoadError):
            build_knowledge_base(str(base), str(output))
        assert not output.exists()

    def test_merge_rejects_malformed_synonyms(self, synonyms_csv):
        doc = minimal_document()
        doc["synonyms"]["warfarin"] = 7
        with pytest.raises(KnowledgeBaseLoadError):
            merge_tables(doc, synonyms_path=synonyms_csv)
