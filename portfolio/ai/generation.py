"""
Portfolio Platform
Generation orchestrator — model call → repair → canonical document.

Flow:
    1. send the prompt through the injected LLMGateway (streamed by default;
       rate-limit backoff lives in the gateway)
    2. stop reason ``max_tokens`` marks the response as truncated
    3. response_repair.extract_json on the complete text only
    4. result_mapper.map_to_canonical

Nothing is persisted here. Callers store the document after this returns.
"""

import json
import logging
import threading
from dataclasses import dataclass, field

from portfolio.ai.gateway import STOP_MAX_TOKENS, LLMGateway
from portfolio.ai.prompt_builder import Prompt
from portfolio.ai.response_repair import extract_json
from portfolio.ai.result_mapper import map_to_canonical

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 16000
DEFAULT_TEMPERATURE = 0.7
SECTION_MAX_TOKENS = 4096
CONTEXT_MESSAGE_LIMIT = 10


@dataclass
class GenerationResult:
    document: dict
    usage: dict = field(default_factory=dict)


class GenerationOrchestrator:
    """Turns one prompt into one canonical ResultDocument."""

    def __init__(
        self,
        gateway: LLMGateway,
        *,
        model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        section_max_tokens: int = SECTION_MAX_TOKENS,
        streaming: bool = True,
    ):
        self.gateway = gateway
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.section_max_tokens = section_max_tokens
        self.streaming = streaming

    @classmethod
    def from_config(cls, gateway: LLMGateway, config) -> "GenerationOrchestrator":
        return cls(
            gateway,
            model=gateway.default_model,
            max_tokens=config.get("ASSESSMENT_MAX_TOKENS", DEFAULT_MAX_TOKENS),
            temperature=config.get("ASSESSMENT_TEMPERATURE", DEFAULT_TEMPERATURE),
            section_max_tokens=config.get("SECTION_MAX_TOKENS", SECTION_MAX_TOKENS),
            streaming=config.get("LLM_STREAMING", True),
        )

    def generate(
        self,
        prompt: Prompt,
        *,
        assessment_id: str | None = None,
        purpose: str = "assessment_generation",
        user: str = "system",
        cancel_event: threading.Event | None = None,
    ) -> GenerationResult:
        """
        Generate a canonical document from ``prompt``.

        Raises:
            UpstreamRateLimitError: Still rate limited after the retry budget.
            UpstreamError / GenerationCancelledError: Any other upstream failure.
            TruncatedResponseError: Truncated output that could not be repaired.
            ResponseParseError: Complete output that is not a JSON object.
        """
        messages = [{"role": "user", "content": prompt.user_message}]
        call_kwargs = dict(
            model=self.model,
            purpose=purpose,
            user=user,
            assessment_id=assessment_id,
            system=prompt.system_instructions,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        if self.streaming:
            result = self.gateway.stream_chat(messages, cancel_event=cancel_event, **call_kwargs)
        else:
            result = self.gateway.chat(messages, **call_kwargs)

        stop_reason = result.get("stop_reason")
        was_truncated = stop_reason == STOP_MAX_TOKENS
        if was_truncated:
            logger.warning(
                "Response hit max_tokens (%d chars), attempting repair",
                len(result["content"]),
                extra={"assessment_id": assessment_id, "stop_reason": stop_reason},
            )

        parsed = extract_json(result["content"], was_truncated, stop_reason=stop_reason)
        document = map_to_canonical(parsed)

        return GenerationResult(document=document, usage=_usage(result))

    def regenerate_section(
        self,
        section_path: str,
        current_value,
        reasons: list[str],
        conversation_context: list[dict] | None = None,
        *,
        assessment_id: str | None = None,
        user: str = "system",
    ):
        """
        Ask the model for a replacement value for one document section.

        Single non-streaming call; the returned JSON object is extracted with
        the same repairer as full generation.
        """
        context = "\n\n".join(
            f"{m['role']}: {m['content']}" for m in (conversation_context or [])
        )
        content = (
            f"Based on this conversation:\n\n{context}\n\n"
            "Update the following section of the assessment results:\n\n"
            f"Section: {section_path}\n"
            f"Current value: {json.dumps(current_value, indent=2, ensure_ascii=False)}\n"
            f"Context: {chr(10).join(r for r in reasons if r)}\n\n"
            "Provide the updated section in JSON format that matches the original structure."
        )
        result = self.gateway.chat(
            [{"role": "user", "content": content}],
            self.model,
            purpose="section_regeneration",
            user=user,
            assessment_id=assessment_id,
            max_tokens=self.section_max_tokens,
            temperature=self.temperature,
        )
        stop_reason = result.get("stop_reason")
        return extract_json(result["content"], stop_reason == STOP_MAX_TOKENS, stop_reason=stop_reason)


def _usage(result: dict) -> dict:
    return {
        "model": result.get("model"),
        "prompt_tokens": result.get("prompt_tokens", 0),
        "completion_tokens": result.get("completion_tokens", 0),
        "stop_reason": result.get("stop_reason"),
        "latency_ms": result.get("latency_ms", 0),
        "attempts": result.get("attempts", 1),
        "cost_usd": round(result.get("cost_usd", 0.0), 6),
    }
