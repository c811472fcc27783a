"""Assessment results blueprint.

Endpoints (prefix /api/v1/assessments):
  Generation      POST /generate                        {assessment_id, regenerate}
  Current result  GET  /<assessment_id>/results
  Targeted edits  POST /<assessment_id>/chat/apply-update
                       {conversationId, messageId, updates[], regenerateSection}
  Versions        GET  /<assessment_id>/versions
                  GET  /<assessment_id>/versions/<version_number>
                  POST /<assessment_id>/versions           {version_number}  (restore)
  Audit trail     GET  /<assessment_id>/updates

Service layer owns all business logic and commits. Errors raised by the
service are mapped to JSON by the handlers below.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

import portfolio.services.assessment_results_service as svc
from portfolio import limiter
from portfolio.ai.gateway import LLMGateway, build_gateway
from portfolio.ai.generation import GenerationOrchestrator
from portfolio.core.exceptions import (
    ConflictError,
    NotFoundError,
    PathResolutionError,
    RegenerationLimitError,
    ResponseParseError,
    TruncatedResponseError,
    UpstreamError,
    ValidationError,
)
from portfolio.models.assessment import MAX_REGENERATIONS
from portfolio.utils.errors import E, api_error

logger = logging.getLogger(__name__)

assessment_bp = Blueprint("assessment", __name__, url_prefix="/api/v1/assessments")

_generate_limit = limiter.shared_limit(
    lambda: current_app.config.get("GENERATE_RATE_LIMIT", "10 per minute"),
    scope="assessment_generate",
)


# ── Lazy singletons stored on Flask app (test-isolation safe) ───────────────

def _get_gateway() -> LLMGateway:
    if not hasattr(current_app, "_llm_gateway"):
        current_app._llm_gateway = build_gateway(current_app.config)
    return current_app._llm_gateway


def _get_orchestrator() -> GenerationOrchestrator:
    return GenerationOrchestrator.from_config(_get_gateway(), current_app.config)


def _regeneration_limit() -> int:
    # The schema check constraint is the ceiling; config may only lower it
    return min(current_app.config.get("MAX_REGENERATIONS", MAX_REGENERATIONS), MAX_REGENERATIONS)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ── Error handlers ────────────────────────────────────────────────────────────


@assessment_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    code = E.VALIDATION_REQUIRED if "required" in str(error) else E.VALIDATION_INVALID
    return api_error(code, str(error), details=error.details)


@assessment_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@assessment_bp.errorhandler(RegenerationLimitError)
def _handle_regeneration_limit(error: RegenerationLimitError):
    return api_error(
        E.REGENERATION_LIMIT,
        "Regeneration limit reached",
        details={
            "message": f"You have reached the maximum of {error.limit} regenerations for this assessment.",
            "regeneration_count": error.count,
        },
    )


@assessment_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_STATE, str(error))


@assessment_bp.errorhandler(PathResolutionError)
def _handle_path(error: PathResolutionError):
    return api_error(E.PATH_RESOLUTION, str(error), details={"path": error.path, "reason": error.reason})


@assessment_bp.errorhandler(UpstreamError)
def _handle_upstream(error: UpstreamError):
    logger.error("Upstream model failure: %s", error)
    details = {"status_code": error.status_code} if error.status_code else None
    return api_error(E.UPSTREAM_FAILURE, "The AI service is unavailable, please retry later", details=details)


@assessment_bp.errorhandler(ResponseParseError)
def _handle_parse(error: ResponseParseError):
    code = E.TRUNCATED_UNRECOVERABLE if isinstance(error, TruncatedResponseError) else E.RESPONSE_PARSE
    logger.error("Unusable model response: %s diagnostics=%s", error, error.diagnostics)
    return api_error(code, "The AI response could not be processed", details=error.diagnostics)


@assessment_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in assessment_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Generation
# ═════════════════════════════════════════════════════════════════════════


@assessment_bp.route("/generate", methods=["POST"])
@_generate_limit
def generate():
    """Generate (or serve cached) results.

    Body: {"assessment_id": str, "regenerate": bool = false}
    Returns: {success, results, cached, regeneration_count, regenerations_remaining, usage?}
    """
    data = _json_body()
    regenerate = data.get("regenerate", False)
    if not isinstance(regenerate, bool):
        raise ValidationError("regenerate must be a boolean", details={"field": "regenerate"})

    payload = svc.generate(
        data.get("assessment_id"),
        regenerate,
        orchestrator=_get_orchestrator(),
        limit=_regeneration_limit(),
    )
    return jsonify(payload), 200


@assessment_bp.route("/<assessment_id>/results", methods=["GET"])
def get_results(assessment_id):
    return jsonify(svc.get_results(assessment_id, limit=_regeneration_limit())), 200


# ═════════════════════════════════════════════════════════════════════════
# Targeted edits
# ═════════════════════════════════════════════════════════════════════════


@assessment_bp.route("/<assessment_id>/chat/apply-update", methods=["POST"])
def apply_update(assessment_id):
    """Apply path edits proposed in an assessment chat.

    Body: {"conversationId", "messageId", "updates": [{updateType, sectionPath,
           oldValue, newValue, reason}], "regenerateSection": bool}
    """
    data = _json_body()
    regenerate_section = data.get("regenerateSection", False)
    if not isinstance(regenerate_section, bool):
        raise ValidationError("regenerateSection must be a boolean", details={"field": "regenerateSection"})
    payload = svc.apply_update(
        assessment_id,
        conversation_id=data.get("conversationId"),
        message_id=data.get("messageId"),
        updates=data.get("updates"),
        regenerate_section=regenerate_section,
        orchestrator=_get_orchestrator() if regenerate_section else None,
    )
    return jsonify(payload), 200


@assessment_bp.route("/<assessment_id>/updates", methods=["GET"])
def list_updates(assessment_id):
    items = svc.list_updates(assessment_id)
    return jsonify({"items": items, "total": len(items)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Versions
# ═════════════════════════════════════════════════════════════════════════


@assessment_bp.route("/<assessment_id>/versions", methods=["GET"])
def list_versions(assessment_id):
    items = svc.list_versions(assessment_id)
    return jsonify({"items": items, "total": len(items)}), 200


@assessment_bp.route("/<assessment_id>/versions/<int:version_number>", methods=["GET"])
def get_version(assessment_id, version_number):
    return jsonify(svc.get_version(assessment_id, version_number)), 200


@assessment_bp.route("/<assessment_id>/versions", methods=["POST"])
def restore_version(assessment_id):
    """Restore a historical version by appending it as the new current version.

    Body: {"version_number": int}
    """
    data = _json_body()
    version = svc.restore_version(assessment_id, data.get("version_number"))
    return jsonify({"success": True, "version": version}), 201
