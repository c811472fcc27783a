"""
Tests for section path parsing and portfolio.services.path_mutator.

Covers:
    - Path grammar: keys, indices, malformed segments, unknown roots, caching
    - resolve / apply on copies (no aliasing in either direction)
    - Resolution failures surface as PathResolutionError
    - apply_batch ordering and all-or-nothing behaviour
    - PathUpdate payload validation
"""

import copy

import pytest

from portfolio.ai import path_expression
from portfolio.ai.path_expression import IndexStep, KeyStep
from portfolio.core.exceptions import PathResolutionError, ValidationError
from portfolio.services import path_mutator
from portfolio.services.path_mutator import PathUpdate


def _document():
    return {
        "quick_wins": [
            {"title": "X", "pillar": "automation"},
            {"title": "Second", "pillar": "data"},
        ],
        "roadmap": {"month_1": {"focus": "Quick wins", "actions": ["a", "b"]}, "month_2": None},
        "success_metrics": {"hours_saved_per_week": 20},
        "data_strategy": None,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Path grammar
# ═════════════════════════════════════════════════════════════════════════════


class TestPathExpression:
    def test_parse_keys_and_indices(self):
        assert path_expression.parse("quick_wins[2].title") == (
            KeyStep("quick_wins"), IndexStep(2), KeyStep("title"),
        )
        assert path_expression.parse("roadmap.month_1.actions[0]") == (
            KeyStep("roadmap"), KeyStep("month_1"), KeyStep("actions"), IndexStep(0),
        )

    def test_render_is_inverse_of_parse(self):
        path = "roadmap.month_1.actions[10]"
        assert path_expression.render(path_expression.parse(path)) == path

    def test_parse_is_cached(self):
        assert path_expression.parse("quick_wins[0]") is path_expression.parse("quick_wins[0]")

    @pytest.mark.parametrize("path", [
        "",
        "   ",
        "quick_wins[-1]",
        "quick_wins[]",
        "quick_wins[1]x",
        "quick_wins..title",
        "quick_wins.",
        "[0].title",
        "quick wins",
        "quick_wins[0][1]",
    ])
    def test_malformed_paths_fail_fast(self, path):
        with pytest.raises(PathResolutionError):
            path_expression.parse(path)

    def test_unknown_root_rejected(self):
        with pytest.raises(PathResolutionError, match="not a document section"):
            path_expression.parse("favourite_colour")


# ═════════════════════════════════════════════════════════════════════════════
# resolve / apply
# ═════════════════════════════════════════════════════════════════════════════


class TestApply:
    def test_replace_title_records_old_value(self):
        doc = _document()
        new_doc, record = path_mutator.apply(
            doc, "quick_wins[0].title", "Y",
            update_type="quick_wins", reason="user asked", assessment_id="a-1", applied_by="u-1",
        )
        assert new_doc["quick_wins"][0]["title"] == "Y"
        assert record.old_value == "X"
        assert record.new_value == "Y"
        assert record.section_path == "quick_wins[0].title"
        assert record.to_dict()["assessment_id"] == "a-1"

    def test_input_document_is_untouched(self):
        doc = _document()
        before = copy.deepcopy(doc)
        path_mutator.apply(doc, "quick_wins[0].title", "Y")
        assert doc == before

    def test_new_value_is_copied(self):
        value = {"focus": "Scale", "actions": ["roll out"]}
        new_doc, record = path_mutator.apply(_document(), "roadmap.month_1", value)
        value["actions"].append("mutated later")
        assert new_doc["roadmap"]["month_1"]["actions"] == ["roll out"]
        assert record.new_value["actions"] == ["roll out"]

    def test_old_value_is_copied(self):
        doc = _document()
        new_doc, record = path_mutator.apply(doc, "roadmap.month_1", {})
        record.old_value["actions"].append("c")
        assert doc["roadmap"]["month_1"]["actions"] == ["a", "b"]
        assert new_doc["roadmap"]["month_1"] == {}

    def test_missing_final_key_is_created(self):
        new_doc, record = path_mutator.apply(_document(), "success_metrics.adoption_rate", "60%")
        assert new_doc["success_metrics"]["adoption_rate"] == "60%"
        assert record.old_value is None

    def test_whole_list_element_replaced(self):
        new_doc, _ = path_mutator.apply(_document(), "quick_wins[1]", {"title": "Z"})
        assert new_doc["quick_wins"][1] == {"title": "Z"}

    def test_resolve_returns_copy(self):
        doc = _document()
        value = path_mutator.resolve(doc, "roadmap.month_1.actions")
        value.append("c")
        assert doc["roadmap"]["month_1"]["actions"] == ["a", "b"]
        assert path_mutator.resolve(doc, "quick_wins[1].title") == "Second"

    @pytest.mark.parametrize("path, reason", [
        ("quick_wins[5].title", "out of range"),
        ("quick_wins[2]", "out of range"),
        ("quick_wins.title", "cannot set key"),
        ("roadmap[0]", "cannot index"),
        ("roadmap.month_2.focus", "is null"),
        ("data_strategy.score", "is null"),
        ("roadmap.month_9.focus", "does not exist"),
        ("tier1_citizen_led[0]", "does not exist"),
    ])
    def test_unresolvable_paths(self, path, reason):
        with pytest.raises(PathResolutionError, match=reason) as exc_info:
            path_mutator.apply(_document(), path, "v")
        assert exc_info.value.path == path


# ═════════════════════════════════════════════════════════════════════════════
# apply_batch
# ═════════════════════════════════════════════════════════════════════════════


class TestApplyBatch:
    def test_updates_apply_in_order(self):
        updates = [
            PathUpdate("quick_wins[0]", {"title": "Z"}, "quick_wins"),
            PathUpdate("quick_wins[0].title", "W", "quick_wins"),
        ]
        new_doc, records = path_mutator.apply_batch(_document(), updates, applied_by="u-1")
        assert new_doc["quick_wins"][0] == {"title": "W"}
        assert records[1].old_value == "Z"
        assert all(r.applied_by == "u-1" for r in records)

    def test_batch_is_all_or_nothing(self):
        doc = _document()
        before = copy.deepcopy(doc)
        updates = [
            PathUpdate("quick_wins[0].title", "Y", "quick_wins"),
            PathUpdate("quick_wins[9].title", "nope", "quick_wins"),
        ]
        with pytest.raises(PathResolutionError):
            path_mutator.apply_batch(doc, updates)
        assert doc == before


# ═════════════════════════════════════════════════════════════════════════════
# PathUpdate payloads
# ═════════════════════════════════════════════════════════════════════════════


class TestPathUpdatePayload:
    def test_from_payload(self):
        item = PathUpdate.from_payload({
            "sectionPath": " quick_wins[0].title ",
            "oldValue": "X",
            "newValue": "Y",
            "reason": "clearer",
        })
        assert item.section_path == "quick_wins[0].title"
        assert item.update_type == "quick_wins"
        assert item.new_value == "Y"
        assert item.reason == "clearer"

    def test_explicit_update_type_kept(self):
        item = PathUpdate.from_payload({"sectionPath": "roadmap.month_1", "newValue": {}, "updateType": "roadmap_edit"})
        assert item.update_type == "roadmap_edit"

    def test_null_new_value_is_allowed(self):
        assert PathUpdate.from_payload({"sectionPath": "roadmap.month_1", "newValue": None}).new_value is None

    @pytest.mark.parametrize("payload", [
        "quick_wins[0]",
        {"newValue": "Y"},
        {"sectionPath": "", "newValue": "Y"},
        {"sectionPath": "quick_wins[0].title"},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValidationError):
            PathUpdate.from_payload(payload)

    def test_over_long_update_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            PathUpdate.from_payload({"sectionPath": "roadmap.month_1", "newValue": 1, "updateType": "x" * 81})
        assert exc_info.value.details == {"field": "updateType"}

    def test_over_long_section_path_rejected(self):
        path = "roadmap." + "m" * 300
        with pytest.raises(ValidationError) as exc_info:
            PathUpdate.from_payload({"sectionPath": path, "newValue": 1})
        assert exc_info.value.details == {"field": "sectionPath"}

    def test_update_type_at_column_width_accepted(self):
        item = PathUpdate.from_payload({"sectionPath": "roadmap.month_1", "newValue": 1, "updateType": "x" * 80})
        assert len(item.update_type) == path_mutator.MAX_UPDATE_TYPE_LENGTH
