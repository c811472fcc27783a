"""
Tests for portfolio.ai.response_repair.

Covers:
    - Code-fence stripping and surrounding prose
    - String-aware scanning (braces inside string literals)
    - Truncation repair: open containers, open strings, dangling commas
    - Failure modes: no object, unbalanced non-truncated output, unrepairable truncation
    - Diagnostics carried on the error (never the raw text)
"""

import json

import pytest

from portfolio.ai.response_repair import (
    close_truncated,
    extract_json,
    scan_object,
    strip_code_fences,
)
from portfolio.core.exceptions import ResponseParseError, TruncatedResponseError


# ═════════════════════════════════════════════════════════════════════════════
# Complete responses
# ═════════════════════════════════════════════════════════════════════════════


class TestCompleteResponses:
    def test_plain_object(self):
        assert extract_json('{"a": 1, "b": [true, null]}') == {"a": 1, "b": [True, None]}

    def test_fenced_object_with_prose(self):
        raw = 'Here is the assessment:\n```json\n{"quick_wins": [{"title": "X"}]}\n```\nHope this helps.'
        assert extract_json(raw) == {"quick_wins": [{"title": "X"}]}

    def test_strip_code_fences_keeps_body(self):
        assert strip_code_fences("```json\n{}\n```") == "{}"
        assert strip_code_fences(None) == ""

    def test_backticks_inside_string_values_survive(self):
        doc = {"note": "Run ```bash``` snippets", "steps": ["```python\nprint(1)\n```"]}
        assert extract_json(json.dumps(doc)) == doc
        fenced = "```json\n" + json.dumps(doc) + "\n```"
        assert extract_json(fenced) == doc

    def test_braces_inside_strings_are_ignored(self):
        raw = '{"note": "use {placeholders} and } freely", "n": 2} trailing } text'
        assert extract_json(raw) == {"note": "use {placeholders} and } freely", "n": 2}

    def test_escaped_quote_inside_string(self):
        raw = r'{"quote": "she said \"}\" loudly", "ok": true}'
        assert extract_json(raw) == {"quote": 'she said "}" loudly', "ok": True}

    def test_only_first_object_is_returned(self):
        assert extract_json('{"first": 1} {"second": 2}') == {"first": 1}


# ═════════════════════════════════════════════════════════════════════════════
# Truncation repair
# ═════════════════════════════════════════════════════════════════════════════


class TestTruncationRepair:
    def test_open_list_and_object_closed_in_nesting_order(self):
        text = '{"a":[1,2'
        scan = scan_object(text, 0)
        assert scan.end is None
        assert scan.open_stack == ["{", "["]
        assert close_truncated(text, scan) == '{"a":[1,2]}'
        assert extract_json(text, was_truncated=True) == {"a": [1, 2]}

    def test_open_string_is_closed(self):
        assert extract_json('{"title": "Autom', was_truncated=True) == {"title": "Autom"}

    def test_pending_escape_is_dropped(self):
        assert extract_json('{"title": "line\\', was_truncated=True) == {"title": "line"}

    def test_dangling_comma_is_removed(self):
        assert extract_json('{"a": 1,  ', was_truncated=True) == {"a": 1}

    def test_nested_complete_members_survive(self):
        raw = '```json\n{"a": {"b": 1}, "c": ['
        assert extract_json(raw, was_truncated=True) == {"a": {"b": 1}, "c": []}

    def test_dangling_key_is_unrecoverable(self):
        with pytest.raises(TruncatedResponseError) as exc_info:
            extract_json('{"a": ', was_truncated=True, stop_reason="max_tokens")
        assert exc_info.value.was_truncated is True
        assert exc_info.value.stop_reason == "max_tokens"

    def test_complete_object_is_not_modified_when_truncated(self):
        assert extract_json('{"a": [1]} and then the model kept', was_truncated=True) == {"a": [1]}


# ═════════════════════════════════════════════════════════════════════════════
# Failures
# ═════════════════════════════════════════════════════════════════════════════


class TestFailures:
    def test_unbalanced_without_truncation_is_not_repaired(self):
        with pytest.raises(ResponseParseError) as exc_info:
            extract_json('{"a":[1,2')
        assert not isinstance(exc_info.value, TruncatedResponseError)
        assert exc_info.value.was_truncated is False
        assert exc_info.value.brace_delta == 2

    def test_no_object(self):
        with pytest.raises(ResponseParseError) as exc_info:
            extract_json("I cannot help with that.")
        assert exc_info.value.raw_length == len("I cannot help with that.")

    def test_no_object_truncated_raises_truncated_error(self):
        with pytest.raises(TruncatedResponseError):
            extract_json("Sure! Here is", was_truncated=True)

    def test_malformed_complete_object(self):
        with pytest.raises(ResponseParseError, match="malformed JSON"):
            extract_json('{"a": 1,}')

    def test_diagnostics_do_not_leak_raw_text(self):
        raw = '{"secret_field": "customer data", broken}'
        with pytest.raises(ResponseParseError) as exc_info:
            extract_json(raw, stop_reason="end_turn")
        diagnostics = exc_info.value.diagnostics
        assert set(diagnostics) == {"raw_length", "was_truncated", "brace_delta", "stop_reason"}
        assert diagnostics["raw_length"] == len(raw)
        assert "customer data" not in str(exc_info.value)
