"""
Tests for portfolio.ai.generation and portfolio.ai.prompt_builder.

Covers:
    - Streaming and non-streaming generation into a canonical document
    - Truncated responses: repaired when possible, TruncatedResponseError otherwise
    - Malformed complete responses raise ResponseParseError
    - Section regeneration request shape and result extraction
    - Prompt building from an assessment and its answers
"""

import json

import pytest

from portfolio.ai import prompt_builder
from portfolio.ai.generation import GenerationOrchestrator
from portfolio.ai.prompt_builder import Prompt
from portfolio.ai.result_mapper import CANONICAL_FIELD_NAMES
from portfolio.core.exceptions import (
    ResponseParseError,
    TruncatedResponseError,
    UpstreamRateLimitError,
)
from portfolio.models import db
from portfolio.models.assessment import Assessment

PROMPT = Prompt(
    system_instructions=[{"type": "text", "text": "You are a consultant."}],
    user_message="COMPANY PROFILE:\nCompany: Acme | Industry: Retail",
)

MODEL_JSON = json.dumps({
    "quick_wins": [{"title": "Automate weekly status email"}],
    "maturity_assessment": {"data_strategy": {"score": 2}},
})


def _orchestrator(make_gateway, provider, **kwargs):
    kwargs.setdefault("model", "local-stub")
    return GenerationOrchestrator(make_gateway(provider), **kwargs)


# ═════════════════════════════════════════════════════════════════════════════
# generate
# ═════════════════════════════════════════════════════════════════════════════


class TestGenerate:
    def test_streamed_generation(self, make_gateway, scripted, reply):
        provider = scripted([reply("```json\n" + MODEL_JSON + "\n```")])
        result = _orchestrator(make_gateway, provider).generate(PROMPT, assessment_id="a-1")

        assert set(result.document) == CANONICAL_FIELD_NAMES
        assert result.document["quick_wins"] == [{"title": "Automate weekly status email"}]
        assert result.document["data_strategy"] == {"score": 2}
        assert result.usage["stop_reason"] == "end_turn"
        assert result.usage["attempts"] == 1

        call = provider.calls[0]
        assert call["system"] == PROMPT.system_instructions
        assert call["max_tokens"] == 16000
        assert call["temperature"] == 0.7
        assert call["messages"] == [{"role": "user", "content": PROMPT.user_message}]

    def test_non_streaming_generation(self, make_gateway, scripted, reply):
        class ChatOnly(scripted):
            def stream(self, messages, model, **kwargs):
                raise AssertionError("stream() must not be used")

        provider = ChatOnly([reply(MODEL_JSON)])
        result = _orchestrator(make_gateway, provider, streaming=False).generate(PROMPT)
        assert result.document["quick_wins"][0]["title"] == "Automate weekly status email"

    def test_truncated_response_is_repaired(self, make_gateway, scripted, reply):
        truncated = '{"quick_wins": [{"title": "Automate weekly status email"}, {"title": "Publish'
        provider = scripted([reply(truncated, stop_reason="max_tokens")])
        result = _orchestrator(make_gateway, provider).generate(PROMPT)
        assert result.document["quick_wins"] == [
            {"title": "Automate weekly status email"},
            {"title": "Publish"},
        ]
        assert result.usage["stop_reason"] == "max_tokens"

    def test_unrepairable_truncation(self, make_gateway, scripted, reply):
        provider = scripted([reply('{"quick_wins": [{"title": ', stop_reason="max_tokens")])
        with pytest.raises(TruncatedResponseError) as exc_info:
            _orchestrator(make_gateway, provider).generate(PROMPT)
        assert exc_info.value.diagnostics["was_truncated"] is True

    def test_unbalanced_complete_response_is_not_repaired(self, make_gateway, scripted, reply):
        provider = scripted([reply('{"quick_wins": [{"title": "x"}')])
        with pytest.raises(ResponseParseError) as exc_info:
            _orchestrator(make_gateway, provider).generate(PROMPT)
        assert not isinstance(exc_info.value, TruncatedResponseError)

    def test_first_object_inside_array_is_used(self, make_gateway, scripted, reply):
        provider = scripted([reply('Here: [1, 2, {"quick_wins": [{"title": "A"}]}]')])
        result = _orchestrator(make_gateway, provider).generate(PROMPT)
        assert result.document["quick_wins"] == [{"title": "A"}]

    def test_rate_limit_propagates_after_retries(self, make_gateway, sleeps, scripted):
        provider = scripted([UpstreamRateLimitError("slow down")] * 4)
        with pytest.raises(UpstreamRateLimitError):
            _orchestrator(make_gateway, provider).generate(PROMPT)
        assert sleeps.calls == [1, 2, 4]

    def test_from_config(self, make_gateway, scripted, app):
        gw = make_gateway(scripted([]))
        orchestrator = GenerationOrchestrator.from_config(gw, app.config)
        assert orchestrator.model == "local-stub"
        assert orchestrator.max_tokens == app.config["ASSESSMENT_MAX_TOKENS"]
        assert orchestrator.section_max_tokens == app.config["SECTION_MAX_TOKENS"]
        assert orchestrator.streaming is True


# ═════════════════════════════════════════════════════════════════════════════
# regenerate_section
# ═════════════════════════════════════════════════════════════════════════════


class TestRegenerateSection:
    def test_request_and_result(self, make_gateway, scripted, reply):
        provider = scripted([reply('Sure: {"title": "Automate the Monday status email"}')])
        value = _orchestrator(make_gateway, provider).regenerate_section(
            "quick_wins[0]",
            {"title": "Automate weekly status email"},
            ["Make it specific to Mondays", ""],
            [{"role": "user", "content": "We send it on Mondays"},
             {"role": "assistant", "content": "Noted"}],
            assessment_id="a-1",
        )
        assert value == {"title": "Automate the Monday status email"}

        call = provider.calls[0]
        assert call["max_tokens"] == 4096
        assert "system" not in call
        content = call["messages"][0]["content"]
        assert "Section: quick_wins[0]" in content
        assert "user: We send it on Mondays" in content
        assert "Make it specific to Mondays" in content
        assert '"title": "Automate weekly status email"' in content

    def test_unparseable_section_raises(self, make_gateway, scripted, reply):
        provider = scripted([reply("I would rather not.")])
        with pytest.raises(ResponseParseError):
            _orchestrator(make_gateway, provider).regenerate_section("quick_wins[0]", {}, [])


# ═════════════════════════════════════════════════════════════════════════════
# prompt_builder
# ═════════════════════════════════════════════════════════════════════════════


class TestPromptBuilder:
    def test_build_from_assessment(self, assessment):
        a = db.session.get(Assessment, assessment)
        prompt = prompt_builder.build(a, a.responses.all())

        assert prompt.system_instructions[0]["text"] == prompt_builder.SYSTEM_ROLE
        assert prompt.system_instructions[1]["cache_control"] == {"type": "ephemeral"}
        assert "Company: Northwind Traders | Size: 51-200 | Industry: Retail" in prompt.user_message
        assert '- top_frustration: ["manual reporting"]' in prompt.user_message
        assert "- data_maturity: 2" in prompt.user_message
        # answers are listed in key order
        lines = prompt.user_message.splitlines()
        assert lines.index("- data_maturity: 2") < lines.index("- timeline: 90 days")

    def test_prompt_is_immutable(self):
        with pytest.raises(AttributeError):
            PROMPT.user_message = "changed"
