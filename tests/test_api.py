"""
StackSafe Engine - API Tests
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import logging

import pytest
from fastapi.testclient import TestClient

from config.settings import LOG_LEVEL, LOG_FORMAT
from stacksafe.api.main import app


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as test_client:
        yield test_client


class TestHealthEndpoints:
    """Test service descriptor and health"""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["rules_loaded"] > 0


class TestKnowledgeBaseEndpoints:
    """Test knowledge base lookups"""

    def test_statistics(self, client):
        data = client.get("/knowledge-base/statistics").json()
        assert data["nutrient_limits"] == 19
        assert data["total_rules"] > 0

    def test_nutrient(self, client):
        data = client.get("/knowledge-base/nutrients/vitamin_d").json()
        assert data["upper_limit"] == 4000
        assert data["unit"] == "IU"

    def test_nutrient_by_alias(self, client):
        data = client.get("/knowledge-base/nutrients/Cholecalciferol").json()
        assert data["nutrient_key"] == "vitamin_d"

    def test_unknown_nutrient(self, client):
        assert client.get("/knowledge-base/nutrients/warfarin").status_code == 404


class TestAnalysisEndpoints:
    """Test stack analysis endpoints"""

    def test_normalize(self, client):
        response = client.post("/normalize", json={"names": ["Coumadin", "Mystery"]})
        assert response.json()["results"] == {"Coumadin": "warfarin", "Mystery": None}

    def test_analyze_stack(self, client):
        response = client.post("/analyze/stack", json={"items": [
            {"name": "Warfarin", "role": "medication", "dose": {"value": 5, "unit": "mg"}},
            {"name": "Vitamin E", "dose": {"value": 400, "unit": "mg"}},
        ]})
        assert response.status_code == 200
        data = response.json()
        assert data["overall_risk_level"] == "high"
        assert data["is_complete"] is True
        assert [i["rule_id"] for i in data["interactions"]] == ["warfarin_bleeding_supplements"]
        assert data["summary"]["high"] == 1

    def test_empty_stack(self, client):
        data = client.post("/analyze/stack", json={"items": []}).json()
        assert data["overall_risk_level"] == "none"
        assert data["score"] == 75

    def test_nutrient_warning(self, client):
        data = client.post("/analyze/stack", json={"items": [
            {"name": "Vitamin D3", "dose": {"value": 5000, "unit": "IU"}},
        ]}).json()
        warning = data["nutrient_warnings"][0]
        assert warning["display_percent"] == 125
        assert warning["severity"] == "moderate"

    def test_incomplete_analysis_flagged(self, client):
        data = client.post("/analyze/stack", json={"items": [{"name": "Unobtainium"}]}).json()
        assert data["is_complete"] is False
        assert data["issues"][0]["kind"] == "unresolved_ingredient"
        assert data["interactions"] == []

    @pytest.mark.parametrize("item", [
        {"name": "Iron", "dose": {"value": 0, "unit": "mg"}},
        {"name": "Iron", "dose": {"value": -1, "unit": "mg"}},
        {"name": "", "dose": {"value": 1, "unit": "mg"}},
        {"name": "Iron", "role": "herb"},
        {"name": "   "},
    ])
    def test_invalid_items(self, client, item):
        response = client.post("/analyze/stack", json={"items": [item]})
        assert response.status_code == 422

    def test_dose_overflowing_on_conversion(self, client):
        response = client.post("/analyze/stack", json={"items": [
            {"name": "Iron", "dose": {"value": 1e306, "unit": "g"}},
        ]})
        assert response.status_code == 422

    def test_salt_form_triggers_rule(self, client):
        data = client.post("/analyze/stack", json={"items": [
            {"name": "Levothyroxine", "role": "medication"},
            {"name": "Ferrous Sulfate", "dose": {"value": 65, "unit": "mg"}},
        ]}).json()
        assert [i["rule_id"] for i in data["interactions"]] == ["levothyroxine_absorption"]

    def test_score(self, client):
        response = client.post("/analyze/score", json={
            "overall_risk_level": "none", "interaction_count": 0,
            "warning_count": 0, "stack_size": 10,
        })
        assert response.json() == {"score": 100, "label": "Excellent"}

    def test_score_rejects_negative(self, client):
        response = client.post("/analyze/score", json={"stack_size": -1})
        assert response.status_code == 422


class TestLoggingConfiguration:
    """Logging follows config/settings.py once the service is imported"""

    def test_level_and_format_applied(self):
        root = logging.getLogger()
        assert root.level == logging.getLevelName(LOG_LEVEL.upper())
        formats = [h.formatter._fmt for h in root.handlers if h.formatter is not None]
        assert LOG_FORMAT in formats
