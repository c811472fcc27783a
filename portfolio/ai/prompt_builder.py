"""
Default assessment prompt builder.

Produces the opaque ``Prompt(system_instructions, user_message)`` pair the
generation orchestrator sends upstream. Wording is replaceable: anything
with a ``build(assessment, responses) -> Prompt`` signature can be passed to
the orchestrator instead.
"""

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class Prompt:
    system_instructions: list[dict]
    user_message: str


SYSTEM_ROLE = (
    "You are a digital transformation consultant. Analyze this assessment "
    "and provide a comprehensive, actionable roadmap."
)

SCHEMA_AND_GUIDELINES = """
Generate VALID JSON with this structure:

{
  "executive_summary": {"current_state": "", "key_opportunity": "", "recommended_starting_point": ""},
  "maturity_assessment": {
    "data_strategy": {"score": 1-5, "gap_analysis": "", "target": "", "sub_categories": []},
    "automation_strategy": {...}, "ai_strategy": {...}, "ux_strategy": {...}, "people_strategy": {...}
  },
  "tier1_citizen_led": [{"name": "", "category": "", "cost": "", "why": ""}],
  "tier2_hybrid": [...],
  "tier3_technical": [...],
  "quick_wins": [{"title": "", "pillar": "", "time_to_value": "", "steps": []}],
  "roadmap_30_days": {"focus": "", "actions": []},
  "roadmap_60_days": {...},
  "roadmap_90_days": {...},
  "change_management_plan": {"communication_strategy": "", "training_approach": "", "pilot_recommendations": []},
  "success_metrics": {},
  "risk_mitigation": [{"risk": "", "mitigation": ""}],
  "existing_tool_opportunities": [{"tool": "", "opportunity": ""}],
  "project_tracking": {},
  "long_term_vision": {}
}

Guidelines: every pillar needs at least one quick win; 5-7 quick wins; 3-5
tools per tier; address the exact pain points given.

Return ONLY valid JSON, no markdown or explanation."""


def _answers(responses) -> dict:
    return {r.question_key: r.answer_value for r in responses}


def _fmt(value) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def build(assessment, responses) -> Prompt:
    """Build the generation prompt for an assessment and its answered questions."""
    answers = _answers(responses)

    lines = [
        "COMPANY PROFILE:",
        f"Company: {assessment.company_name or 'n/a'} | Size: {assessment.company_size or 'n/a'} "
        f"| Industry: {assessment.industry or 'n/a'} | Role: {assessment.user_role or 'n/a'}",
        "",
        "ANSWERS:",
    ]
    for key in sorted(answers):
        lines.append(f"- {key}: {_fmt(answers[key])}")
    lines += ["", f"Industry Context: {assessment.industry or 'n/a'}"]

    return Prompt(
        system_instructions=[
            {"type": "text", "text": SYSTEM_ROLE},
            {"type": "text", "text": SCHEMA_AND_GUIDELINES, "cache_control": {"type": "ephemeral"}},
        ],
        user_message="\n".join(lines),
    )
