"""
Portfolio Platform
LLM Gateway — provider abstraction, rate-limit retry and stream collection.

Provider-agnostic model client with:
    - Anthropic Claude provider and a deterministic local stub
    - Exponential backoff (1s, 2s, 4s) on rate limiting only
    - Streaming collection with cancellation between text deltas
    - Token / cost / outcome logging to ai_usage_logs

The gateway owns one injected provider instance; nothing here is a module
level singleton. The Flask app keeps one gateway per app (see
``portfolio.blueprints.assessment_bp._get_gateway``) and tests inject fakes.

Usage:
    from portfolio.ai.gateway import LLMGateway, LocalStubProvider
    gw = LLMGateway(LocalStubProvider(), default_model="local-stub")
    result = gw.chat([{"role": "user", "content": "..."}], purpose="section_regeneration")
"""

import contextlib
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator

import anthropic
from sqlalchemy.exc import SQLAlchemyError

from portfolio.core.exceptions import (
    GenerationCancelledError,
    UpstreamError,
    UpstreamRateLimitError,
)
from portfolio.models import db
from portfolio.models.ai import AIUsageLog, calculate_cost

logger = logging.getLogger(__name__)

STOP_MAX_TOKENS = "max_tokens"


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for model providers."""

    name = "base"

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a (non-streaming) chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: system, temperature, max_tokens.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model, stop_reason
        """
        ...

    def stream(self, messages: list, model: str, **kwargs) -> Iterator[dict]:
        """
        Stream a chat completion.

        Yields ``{"type": "text", "text": ...}`` per delta, then exactly one
        ``{"type": "final", "prompt_tokens", "completion_tokens", "model",
        "stop_reason"}`` record. Providers without native streaming emit the
        whole completion as a single delta.
        """
        result = self.chat(messages, model, **kwargs)
        yield {"type": "text", "text": result["content"]}
        yield {"type": "final", **{k: v for k, v in result.items() if k != "content"}}


# ── Anthropic Provider ────────────────────────────────────────────────────────

@contextlib.contextmanager
def _translate_anthropic_errors():
    """Map SDK exceptions onto the platform's upstream error types."""
    try:
        yield
    except anthropic.RateLimitError as exc:
        raise UpstreamRateLimitError(str(exc), status_code=429) from exc
    except anthropic.APIStatusError as exc:
        raise UpstreamError(str(exc), status_code=exc.status_code) from exc
    except anthropic.APIError as exc:
        raise UpstreamError(str(exc)) from exc


class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    name = "anthropic"

    def __init__(self, api_key: str = "", client=None):
        self.api_key = api_key
        self._client = client

    def _get_client(self):
        if self._client is None:
            # SDK retries are disabled; the gateway owns the retry policy
            self._client = anthropic.Anthropic(api_key=self.api_key, max_retries=0)
        return self._client

    @staticmethod
    def _params(messages: list, model: str, **kwargs) -> dict:
        system = kwargs.get("system")
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "temperature": kwargs.get("temperature", 0.7),
        }
        if system:
            params["system"] = system
        return params

    def chat(self, messages: list, model: str = "claude-sonnet-4-20250514", **kwargs) -> dict:
        client = self._get_client()
        with _translate_anthropic_errors():
            response = client.messages.create(**self._params(messages, model, **kwargs))

        return {
            "content": "".join(b.text for b in response.content if b.type == "text"),
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": response.model or model,
            "stop_reason": response.stop_reason,
        }

    def stream(self, messages: list, model: str = "claude-sonnet-4-20250514", **kwargs) -> Iterator[dict]:
        client = self._get_client()
        with _translate_anthropic_errors():
            with client.messages.stream(**self._params(messages, model, **kwargs)) as stream:
                for text in stream.text_stream:
                    yield {"type": "text", "text": text}
                final = stream.get_final_message()

        yield {
            "type": "final",
            "prompt_tokens": final.usage.input_tokens,
            "completion_tokens": final.usage.output_tokens,
            "model": final.model or model,
            "stop_reason": final.stop_reason,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    name = "local"

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = m["content"]
                break

        if "Update the following section" in user_msg:
            content = json.dumps(self._stub_section(user_msg))
        else:
            content = "```json\n" + json.dumps(self._stub_assessment(user_msg), indent=2) + "\n```"

        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
            "stop_reason": "end_turn",
        }

    def stream(self, messages: list, model: str = "local-stub", **kwargs) -> Iterator[dict]:
        result = self.chat(messages, model, **kwargs)
        content = result["content"]
        for i in range(0, len(content), 256):
            yield {"type": "text", "text": content[i:i + 256]}
        yield {"type": "final", **{k: v for k, v in result.items() if k != "content"}}

    @staticmethod
    def _stub_section(user_msg: str) -> dict:
        section = ""
        for line in user_msg.splitlines():
            if line.startswith("Section:"):
                section = line.split(":", 1)[1].strip()
                break
        return {
            "title": f"Refined {section or 'section'}",
            "description": "Adjusted to reflect the points raised in the conversation.",
        }

    @staticmethod
    def _stub_assessment(user_msg: str) -> dict:
        industry = "your industry"
        for line in user_msg.splitlines():
            if "Industry:" in line:
                industry = line.split("Industry:", 1)[1].split("|")[0].strip() or industry
                break

        def pillar(score, target):
            return {"score": score, "gap_analysis": "Manual processes dominate", "target": target,
                    "sub_categories": []}

        return {
            "executive_summary": {
                "current_state": f"Early digital maturity for a {industry} organisation.",
                "key_opportunity": "Automate recurring reporting",
                "recommended_starting_point": "Connect existing spreadsheets to a BI tool",
            },
            "maturity_assessment": {
                "data_strategy": pillar(2, "Single reporting source in 90 days"),
                "automation_strategy": pillar(2, "Automate three workflows"),
                "ai_strategy": pillar(1, "One AI-assisted process"),
                "ux_strategy": pillar(2, "Shared design system"),
                "people_strategy": pillar(3, "Champion network in place"),
            },
            "tier1_citizen_led": [
                {"name": "Power Automate", "category": "automation", "cost": "$15/user/month"},
                {"name": "Zapier", "category": "automation", "cost": "$20/month"},
            ],
            "tier2_hybrid": [{"name": "Power BI", "category": "data", "cost": "$10/user/month"}],
            "tier3_technical": [{"name": "Snowflake", "category": "data", "cost": "usage based"}],
            "quick_wins": [
                {"title": "Automate weekly status email", "pillar": "automation", "time_to_value": "1 week"},
                {"title": "Publish a shared KPI dashboard", "pillar": "data", "time_to_value": "2 weeks"},
                {"title": "Draft meeting notes with an AI assistant", "pillar": "ai", "time_to_value": "1 week"},
            ],
            "roadmap_30_days": {"focus": "Quick wins", "actions": ["Pick champions", "Ship first automation"]},
            "roadmap_60_days": {"focus": "Scale", "actions": ["Roll out dashboard"]},
            "roadmap_90_days": {"focus": "Embed", "actions": ["Review metrics"]},
            "change_management_plan": {
                "communication_strategy": "Fortnightly demos",
                "training_approach": "Champion-led workshops",
                "pilot_recommendations": [{"team": "Finance", "scope": "Month-end reporting"}],
            },
            "success_metrics": {"hours_saved_per_week": 20, "adoption_rate_target": "60%"},
            "risk_mitigation": [{"risk": "Tool sprawl", "mitigation": "Central tool registry"}],
            "existing_tool_opportunities": [{"tool": "Microsoft 365", "opportunity": "Use Forms + Lists"}],
            "project_tracking": {"recommended_tools": ["Planner"]},
            "long_term_vision": {"year_1_goals": ["20 hours saved per week"]},
        }


# ── LLM Gateway (Main Interface) ─────────────────────────────────────────────

class LLMGateway:
    """
    Gateway for all model calls.

    Features:
        - Retry with exponential backoff on UpstreamRateLimitError only
        - Streaming collection with cooperative cancellation
        - Token/cost tracking (ai_usage_logs, flushed in a savepoint)

    Every other upstream error propagates on the first failure.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        default_model: str = "claude-sonnet-4-20250514",
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
        log_usage: bool = True,
    ):
        self.provider = provider
        self.default_model = default_model
        self.max_retries = max_retries
        self._sleep = sleep
        self._log_usage_enabled = log_usage

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", type(self.provider).__name__)

    def chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        user: str = "system",
        assessment_id: str | None = None,
        **kwargs,
    ) -> dict:
        """
        Non-streaming completion with rate-limit retry.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, stop_reason,
                   cost_usd, latency_ms, attempts, provider, streamed}
        """
        model = model or self.default_model
        return self._call(
            lambda: self.provider.chat(messages, model, **kwargs),
            model=model, purpose=purpose, user=user,
            assessment_id=assessment_id, streamed=False,
        )

    def stream_chat(
        self,
        messages: list,
        model: str | None = None,
        *,
        purpose: str = "",
        user: str = "system",
        assessment_id: str | None = None,
        cancel_event: threading.Event | None = None,
        **kwargs,
    ) -> dict:
        """
        Streaming completion collected into one result.

        Text deltas are buffered per attempt. If ``cancel_event`` is set
        between deltas, or the stream fails part way, the buffer is dropped
        and an error is raised; callers never see partial text.
        """
        model = model or self.default_model
        return self._call(
            lambda: self._collect_stream(messages, model, cancel_event, **kwargs),
            model=model, purpose=purpose, user=user,
            assessment_id=assessment_id, streamed=True,
        )

    # ── Internals ─────────────────────────────────────────────────────────

    def _collect_stream(self, messages, model, cancel_event, **kwargs) -> dict:
        chunks: list[str] = []
        final = None
        with contextlib.closing(self.provider.stream(messages, model, **kwargs)) as events:
            for event in events:
                if cancel_event is not None and cancel_event.is_set():
                    raise GenerationCancelledError(
                        f"Generation cancelled after {len(chunks)} chunks"
                    )
                if event["type"] == "text":
                    chunks.append(event["text"])
                elif event["type"] == "final":
                    final = event

        if final is None:
            raise UpstreamError("Stream ended without a final message")

        return {
            "content": "".join(chunks),
            "prompt_tokens": final.get("prompt_tokens", 0),
            "completion_tokens": final.get("completion_tokens", 0),
            "model": final.get("model") or model,
            "stop_reason": final.get("stop_reason"),
        }

    def _call(self, invoke, *, model, purpose, user, assessment_id, streamed) -> dict:
        attempt = 0
        start_time = time.time()
        while True:
            attempt += 1
            try:
                result = invoke()
            except UpstreamRateLimitError as e:
                if attempt > self.max_retries:
                    self._record_failure(e, model, purpose, user, assessment_id, streamed, attempt, start_time)
                    raise
                backoff = min(2 ** (attempt - 1), 4)
                logger.warning(
                    "Rate limited (attempt %d/%d), retrying in %ss",
                    attempt, self.max_retries + 1, backoff,
                    extra={"assessment_id": assessment_id, "attempt": attempt},
                )
                self._sleep(backoff)
                continue
            except UpstreamError as e:
                logger.error("Model call failed: %s", e, extra={"assessment_id": assessment_id})
                self._record_failure(e, model, purpose, user, assessment_id, streamed, attempt, start_time)
                raise
            break

        latency_ms = int((time.time() - start_time) * 1000)
        cost = calculate_cost(result["model"], result["prompt_tokens"], result["completion_tokens"])
        result.update(
            cost_usd=cost,
            latency_ms=latency_ms,
            attempts=attempt,
            provider=self.provider_name,
            streamed=streamed,
        )
        logger.info(
            "Model call ok: model=%s tokens=%d/%d stop=%s attempts=%d",
            result["model"], result["prompt_tokens"], result["completion_tokens"],
            result["stop_reason"], attempt,
            extra={"assessment_id": assessment_id, "duration_ms": latency_ms,
                   "stop_reason": result["stop_reason"]},
        )
        self._log_usage(
            model=result["model"], prompt_tokens=result["prompt_tokens"],
            completion_tokens=result["completion_tokens"], cost_usd=cost,
            latency_ms=latency_ms, user=user, purpose=purpose,
            assessment_id=assessment_id, stop_reason=result["stop_reason"],
            streamed=streamed, attempts=attempt, success=True,
        )
        return result

    def _record_failure(self, error, model, purpose, user, assessment_id, streamed, attempts, start_time):
        self._log_usage(
            model=model, prompt_tokens=0, completion_tokens=0, cost_usd=0.0,
            latency_ms=int((time.time() - start_time) * 1000),
            user=user, purpose=purpose, assessment_id=assessment_id,
            stop_reason=None, streamed=streamed, attempts=attempts,
            success=False, error_message=str(error)[:1000],
        )

    def _log_usage(self, *, model, prompt_tokens, completion_tokens, cost_usd,
                   latency_ms, user, purpose, assessment_id, stop_reason,
                   streamed, attempts, success, error_message=None):
        """Persist a usage row inside a savepoint so the caller's transaction is untouched."""
        if not self._log_usage_enabled:
            return
        try:
            with db.session.begin_nested():
                db.session.add(AIUsageLog(
                    provider=self.provider_name, model=model,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    cost_usd=cost_usd, latency_ms=latency_ms,
                    user=user, purpose=purpose, assessment_id=assessment_id,
                    stop_reason=stop_reason, streamed=streamed,
                    attempts=attempts, success=success,
                    error_message=error_message,
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to log AI usage: %s", e)


def build_gateway(config) -> LLMGateway:
    """Create the gateway described by a Flask config mapping."""
    provider_name = config.get("LLM_PROVIDER", "local")
    if provider_name == "anthropic":
        provider = AnthropicProvider(api_key=config.get("ANTHROPIC_API_KEY", ""))
        default_model = config.get("ASSESSMENT_MODEL", "claude-sonnet-4-20250514")
    elif provider_name == "local":
        provider = LocalStubProvider()
        default_model = "local-stub"
    else:
        raise ValueError(f"Unknown LLM_PROVIDER {provider_name!r} (expected 'anthropic' or 'local')")

    logger.info("LLM gateway ready: provider=%s model=%s", provider.name, default_model)
    return LLMGateway(
        provider,
        default_model=default_model,
        max_retries=config.get("LLM_MAX_RETRIES", 3),
    )
