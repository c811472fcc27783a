"""
Tests for portfolio.ai.result_mapper.

Covers:
    - Closed schema: every canonical field present, unknown keys dropped
    - Candidate-path precedence for maturity pillars
    - Derived fields: roadmap, technology_recommendations, training_recommendations
    - Determinism and no aliasing between input and output
"""

import copy

import pytest

from portfolio.ai.gateway import LocalStubProvider
from portfolio.ai.result_mapper import CANONICAL_FIELD_NAMES, empty_document, map_to_canonical
from portfolio.core.exceptions import ResponseParseError


def _stub_output():
    return LocalStubProvider._stub_assessment("Company: Acme | Industry: Retail | Size: 10")


# ═════════════════════════════════════════════════════════════════════════════
# Schema
# ═════════════════════════════════════════════════════════════════════════════


class TestCanonicalSchema:
    def test_every_field_present_and_extras_dropped(self):
        doc = map_to_canonical({"unexpected": 1, "quick_wins": []})
        assert set(doc) == CANONICAL_FIELD_NAMES
        assert "unexpected" not in doc

    def test_empty_input_matches_empty_document(self):
        assert map_to_canonical({}) == empty_document()

    def test_list_fields_default_to_empty_lists(self):
        doc = map_to_canonical({})
        for name in ("tier1_citizen_led", "tier2_hybrid", "tier3_technical", "quick_wins",
                     "pilot_recommendations", "technology_recommendations",
                     "existing_tool_opportunities"):
            assert doc[name] == []
        assert doc["roadmap"] is None
        assert doc["data_strategy"] is None

    @pytest.mark.parametrize("value", [[1, 2], "text", None, 3])
    def test_non_object_rejected(self, value):
        with pytest.raises(ResponseParseError):
            map_to_canonical(value)


# ═════════════════════════════════════════════════════════════════════════════
# Field mapping
# ═════════════════════════════════════════════════════════════════════════════


class TestFieldMapping:
    def test_nested_maturity_pillar_preferred_over_top_level(self):
        doc = map_to_canonical({
            "maturity_assessment": {"data_strategy": {"score": 4}},
            "data_strategy": {"score": 1},
        })
        assert doc["data_strategy"] == {"score": 4}

    def test_top_level_pillar_used_as_fallback(self):
        doc = map_to_canonical({"ai_strategy": {"score": 2}})
        assert doc["ai_strategy"] == {"score": 2}

    def test_items_wrapper_is_unwrapped(self):
        doc = map_to_canonical({"quick_wins": {"title": "Quick wins", "items": [{"title": "A"}]}})
        assert doc["quick_wins"] == [{"title": "A"}]

    def test_roadmap_built_from_day_keys(self):
        doc = map_to_canonical({"roadmap_30_days": {"focus": "a"}, "roadmap_90_days": {"focus": "c"}})
        assert doc["roadmap"] == {"month_1": {"focus": "a"}, "month_2": None, "month_3": {"focus": "c"}}

    def test_technology_recommendations_concatenate_tiers(self):
        doc = map_to_canonical({
            "tier1_citizen_led": [{"name": "Zapier"}],
            "tier3_technical": [{"name": "Snowflake"}],
            "technology_recommendations": {"top_tools": [{"name": "ignored"}]},
        })
        assert doc["technology_recommendations"] == [{"name": "Zapier"}, {"name": "Snowflake"}]

    def test_technology_recommendations_fall_back_to_top_tools(self):
        doc = map_to_canonical({"technology_recommendations": {"top_tools": [{"name": "Airtable"}]}})
        assert doc["technology_recommendations"] == [{"name": "Airtable"}]

    def test_training_derived_from_change_management(self):
        doc = map_to_canonical({"change_management_plan": {"training_approach": "Workshops"}})
        assert doc["training_recommendations"] == {"approach": "Workshops", "resources": []}

    def test_full_model_output(self):
        doc = map_to_canonical(_stub_output())
        assert doc["quick_wins"][0]["title"] == "Automate weekly status email"
        assert doc["people_strategy"]["score"] == 3
        assert doc["pilot_recommendations"] == [{"team": "Finance", "scope": "Month-end reporting"}]
        assert len(doc["technology_recommendations"]) == 4
        assert doc["roadmap"]["month_2"]["focus"] == "Scale"


# ═════════════════════════════════════════════════════════════════════════════
# Purity
# ═════════════════════════════════════════════════════════════════════════════


class TestPurity:
    def test_deterministic(self):
        parsed = _stub_output()
        assert map_to_canonical(parsed) == map_to_canonical(copy.deepcopy(parsed))

    def test_output_does_not_alias_input(self):
        parsed = _stub_output()
        before = copy.deepcopy(parsed)
        doc = map_to_canonical(parsed)
        doc["quick_wins"][0]["title"] = "changed"
        doc["data_strategy"]["score"] = 99
        doc["technology_recommendations"][0]["name"] = "changed"
        assert parsed == before
