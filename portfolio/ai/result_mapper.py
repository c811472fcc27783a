"""
Portfolio Platform
Result mapper — parsed model output → canonical ResultDocument.

The canonical document is a closed schema: every field in CANONICAL_FIELDS
is present (``None`` or ``[]`` when the model did not supply it) and any
other upstream key is dropped. Mapping is pure: same input, same output, no
timestamps, and the output never aliases the input.
"""

import copy

from portfolio.core.exceptions import ResponseParseError

# field → (candidate dotted paths, default factory)
# The first candidate that resolves to a non-null value wins.
CANONICAL_FIELDS: dict[str, tuple[tuple[str, ...], type | None]] = {
    "data_strategy": (("maturity_assessment.data_strategy", "data_strategy"), None),
    "automation_strategy": (("maturity_assessment.automation_strategy", "automation_strategy"), None),
    "ai_strategy": (("maturity_assessment.ai_strategy", "ai_strategy"), None),
    "ux_strategy": (("maturity_assessment.ux_strategy", "ux_strategy"), None),
    "people_strategy": (("maturity_assessment.people_strategy", "people_strategy"), None),
    "agile_framework": (("agile_framework", "change_management_plan"), None),
    "tier1_citizen_led": (("tier1_citizen_led",), list),
    "tier2_hybrid": (("tier2_hybrid",), list),
    "tier3_technical": (("tier3_technical",), list),
    "quick_wins": (("quick_wins",), list),
    "roadmap": ((), None),
    "pilot_recommendations": (("change_management_plan.pilot_recommendations", "pilot_recommendations"), list),
    "technology_recommendations": ((), list),
    "existing_tool_opportunities": (("existing_tool_opportunities",), list),
    "maturity_assessment": (("maturity_assessment",), None),
    "priority_matrix": (("executive_summary", "priority_matrix"), None),
    "risk_considerations": (("risk_mitigation", "risk_considerations"), None),
    "change_management_plan": (("change_management_plan",), None),
    "training_recommendations": ((), None),
    "success_metrics": (("success_metrics",), None),
    "project_tracking": (("project_tracking",), None),
    "long_term_vision": (("long_term_vision",), None),
}

CANONICAL_FIELD_NAMES = frozenset(CANONICAL_FIELDS)

# roadmap month → candidate paths
_ROADMAP_MONTHS = {
    "month_1": ("roadmap_30_days", "roadmap.month_1", "roadmap.30_days"),
    "month_2": ("roadmap_60_days", "roadmap.month_2", "roadmap.60_days", "roadmap.90_days"),
    "month_3": ("roadmap_90_days", "roadmap.month_3", "roadmap.180_days"),
}

_TIERS = ("tier1_citizen_led", "tier2_hybrid", "tier3_technical")


def _lookup(parsed: dict, dotted: str):
    current = parsed
    for key in dotted.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def _first(parsed: dict, candidates) -> object:
    for path in candidates:
        value = _lookup(parsed, path)
        if value is not None:
            return value
    return None


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    # {"title": ..., "items": [...]} shape used by older prompts
    if isinstance(value, dict) and isinstance(value.get("items"), list):
        return value["items"]
    return [value]


def _roadmap(parsed: dict):
    months = {month: _first(parsed, paths) for month, paths in _ROADMAP_MONTHS.items()}
    if all(value is None for value in months.values()):
        return None
    return months


def _technology_recommendations(parsed: dict) -> list:
    combined = []
    for tier in _TIERS:
        combined.extend(_as_list(parsed.get(tier)))
    if combined:
        return combined
    explicit = parsed.get("technology_recommendations")
    if isinstance(explicit, dict):
        explicit = explicit.get("top_tools")
    return _as_list(explicit)


def _training_recommendations(parsed: dict):
    explicit = parsed.get("training_recommendations")
    if explicit is not None:
        return explicit
    approach = _lookup(parsed, "change_management_plan.training_approach")
    if approach is None:
        return None
    return {"approach": approach, "resources": []}


_DERIVED = {
    "roadmap": _roadmap,
    "technology_recommendations": _technology_recommendations,
    "training_recommendations": _training_recommendations,
}


def empty_document() -> dict:
    """A canonical document with every field at its default."""
    return {name: (default() if default else None) for name, (_, default) in CANONICAL_FIELDS.items()}


def map_to_canonical(parsed) -> dict:
    """
    Map arbitrary parsed model JSON into the canonical ResultDocument.

    Raises:
        ResponseParseError: If ``parsed`` is not a JSON object.
    """
    if not isinstance(parsed, dict):
        raise ResponseParseError(
            f"Expected a JSON object from the model, got {type(parsed).__name__}"
        )

    document = {}
    for name, (candidates, default) in CANONICAL_FIELDS.items():
        if name in _DERIVED:
            value = _DERIVED[name](parsed)
        else:
            value = _first(parsed, candidates)
        if default is list:
            value = _as_list(value)
        document[name] = copy.deepcopy(value)
    return document
