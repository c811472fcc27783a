"""Assessment results service — generate, targeted edits, versions and audit.

Transaction policy: every public write here commits exactly once, after the
model call (if any) has fully succeeded, and rolls back on any failure. The
regeneration counter, the new version, the mirrored current document and the
audit rows are committed together or not at all.

Operations:
- generate: cached read, initial generation or capped regeneration
- get_results: current document + regeneration metadata
- apply_update: batch of path edits (+ optional best-effort AI section rewrite)
- list_versions / get_version / restore_version
- list_updates: audit trail
"""

import copy
import logging
import threading
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from portfolio.ai import prompt_builder
from portfolio.ai.generation import CONTEXT_MESSAGE_LIMIT, GenerationOrchestrator
from portfolio.core.exceptions import (
    AIError,
    ConflictError,
    NotFoundError,
    RegenerationLimitError,
    ValidationError,
)
from portfolio.models import db
from portfolio.models.ai import AIConversationMessage
from portfolio.models.assessment import (
    MAX_REGENERATIONS,
    Assessment,
    AssessmentChatUpdate,
    AssessmentResult,
)
from portfolio.services import path_mutator, version_store
from portfolio.services.path_mutator import PathUpdate
from portfolio.services.regeneration_policy import (
    RegenerationCounter,
    can_regenerate,
    claim_regeneration,
    remaining,
)

logger = logging.getLogger(__name__)

AI_APPLIED_BY = "ai"


# ── Helpers ──────────────────────────────────────────────────────────────


def _require_id(value, field: str = "assessment_id") -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", details={"field": field})
    if not isinstance(value, str) or len(value) > 36:
        raise ValidationError(f"{field} is invalid", details={"field": field})
    return value.strip()


def _optional_id(value, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > 36:
        raise ValidationError(f"{field} must be a string of at most 36 characters", details={"field": field})
    return value


def _get_assessment(assessment_id: str) -> Assessment:
    assessment = db.session.get(Assessment, assessment_id)
    if assessment is None:
        raise NotFoundError(resource="Assessment", resource_id=assessment_id)
    return assessment


def _get_result(assessment_id: str) -> AssessmentResult | None:
    return AssessmentResult.query.filter_by(assessment_id=assessment_id).first()


def _results_payload(result: AssessmentResult, *, cached: bool, limit: int, version_number=None) -> dict:
    count = result.regeneration_count or 0
    payload = {
        "success": True,
        "results": copy.deepcopy(result.document),
        "cached": cached,
        "regeneration_count": count,
        "regenerations_remaining": remaining(RegenerationCounter(result.assessment_id, count), limit),
    }
    if version_number is not None:
        payload["version_number"] = version_number
    return payload


# ── Generate ─────────────────────────────────────────────────────────────


def generate(
    assessment_id,
    regenerate: bool = False,
    *,
    orchestrator: GenerationOrchestrator,
    limit: int = MAX_REGENERATIONS,
    build_prompt=prompt_builder.build,
    cancel_event: threading.Event | None = None,
) -> dict:
    """Return the assessment's document, generating it if needed.

    - existing document and ``regenerate`` false → cached, counter untouched
    - no document → initial generation, counter stays 0
    - ``regenerate`` true → capped regeneration, counter + 1

    Raises:
        ValidationError, NotFoundError, RegenerationLimitError, ConflictError,
        UpstreamError, TruncatedResponseError, ResponseParseError
    """
    assessment_id = _require_id(assessment_id)
    assessment = _get_assessment(assessment_id)
    existing = _get_result(assessment_id)

    if existing is not None and existing.document is not None and not regenerate:
        logger.debug("Serving cached results", extra={"assessment_id": assessment_id})
        return _results_payload(existing, cached=True, limit=limit)

    is_regeneration = bool(regenerate) and existing is not None
    counter = RegenerationCounter.of(existing, assessment_id)
    if is_regeneration and not can_regenerate(counter, limit):
        logger.info("Regeneration refused at cap (%d/%d)", counter.count, limit,
                    extra={"assessment_id": assessment_id, "regeneration_count": counter.count})
        raise RegenerationLimitError(assessment_id, counter.count, limit)

    prompt = build_prompt(assessment, assessment.responses.all())
    purpose = "assessment_regeneration" if is_regeneration else "assessment_generation"
    try:
        generated = orchestrator.generate(
            prompt,
            assessment_id=assessment_id,
            purpose=purpose,
            user=assessment.user_id or "system",
            cancel_event=cancel_event,
        )
    except AIError:
        # Nothing but the failed call's usage row is pending
        db.session.commit()
        raise

    try:
        if existing is None:
            row = AssessmentResult(assessment_id=assessment_id, regeneration_count=0)
            db.session.add(row)
            db.session.flush()
        else:
            row = version_store.lock_result_row(assessment_id)

        if is_regeneration:
            claim_regeneration(assessment_id, counter.count, limit)

        usage = generated.usage
        row.generated_by = "local" if usage.get("model") == "local-stub" else "claude"
        row.model_version = usage.get("model") or ""
        row.prompt_tokens = usage.get("prompt_tokens", 0)
        row.completion_tokens = usage.get("completion_tokens", 0)
        row.stop_reason = usage.get("stop_reason")
        row.generated_at = datetime.now(timezone.utc)

        version = version_store.append_version(
            assessment_id,
            generated.document,
            "ai_regeneration" if is_regeneration else "ai_generation",
            f"Regeneration {counter.count + 1} of {limit}" if is_regeneration else "Initial generation",
            result=row,
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Concurrent generation rejected: %s", exc.orig, extra={"assessment_id": assessment_id})
        raise ConflictError("AssessmentResult", "assessment_id", assessment_id) from exc
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(row)
    logger.info(
        "Results %s: v%d regeneration_count=%d",
        "regenerated" if is_regeneration else "generated",
        version.version_number, row.regeneration_count,
        extra={"assessment_id": assessment_id, "version_number": version.version_number,
               "regeneration_count": row.regeneration_count},
    )
    payload = _results_payload(row, cached=False, limit=limit, version_number=version.version_number)
    payload["usage"] = generated.usage
    return payload


def get_results(assessment_id, *, limit: int = MAX_REGENERATIONS) -> dict:
    assessment_id = _require_id(assessment_id)
    _get_assessment(assessment_id)
    result = _get_result(assessment_id)
    if result is None or result.document is None:
        raise NotFoundError(resource="AssessmentResult", resource_id=assessment_id)
    current = version_store.get_current(assessment_id)
    payload = _results_payload(result, cached=True, limit=limit, version_number=current.version_number)
    payload["generated_at"] = result.generated_at.isoformat() if result.generated_at else None
    payload["model_version"] = result.model_version
    return payload


# ── Targeted edits ───────────────────────────────────────────────────────


def _conversation_context(conversation_id: str | None) -> list[dict]:
    """The last CONTEXT_MESSAGE_LIMIT messages of a conversation, oldest first."""
    if not conversation_id:
        return []
    rows = db.session.execute(
        select(AIConversationMessage)
        .where(AIConversationMessage.conversation_id == conversation_id)
        .order_by(AIConversationMessage.created_at.desc(), AIConversationMessage.id.desc())
        .limit(CONTEXT_MESSAGE_LIMIT)
    ).scalars().all()
    return [{"role": m.role, "content": m.content} for m in reversed(rows)]


def _regenerate_first_section(document, items, orchestrator, audit) -> tuple[dict, object]:
    """Best effort: on any failure, or a reply shaped unlike the section, keep ``document`` as is."""
    first = items[0]
    try:
        current_value = path_mutator.resolve(document, first.section_path)
        value = orchestrator.regenerate_section(
            first.section_path,
            current_value,
            [item.reason for item in items],
            _conversation_context(audit["conversation_id"]),
            assessment_id=audit["assessment_id"],
            user=audit["applied_by"] or "system",
        )
        if isinstance(value, dict) != isinstance(current_value, dict):
            logger.warning(
                "Section regeneration skipped for %s: reply is %s, section holds %s",
                first.section_path, type(value).__name__, type(current_value).__name__,
                extra={"assessment_id": audit["assessment_id"]},
            )
            return document, None
        return path_mutator.apply(
            document, first.section_path, value,
            update_type=first.update_type,
            reason="AI section regeneration",
            **{**audit, "applied_by": AI_APPLIED_BY},
        )
    except Exception as exc:
        # the manual edits in ``document`` are committed regardless
        logger.warning("Section regeneration skipped for %s: %s", first.section_path, exc,
                       extra={"assessment_id": audit["assessment_id"]}, exc_info=True)
        return document, None


def apply_update(
    assessment_id,
    *,
    conversation_id=None,
    message_id=None,
    updates=None,
    regenerate_section: bool = False,
    orchestrator: GenerationOrchestrator | None = None,
) -> dict:
    """Apply a batch of path edits and commit them as one new version.

    The batch is all-or-nothing: if any path fails to resolve nothing is
    written. The optional AI rewrite of the first edited section never
    blocks or reverts the manual edits.
    """
    assessment_id = _require_id(assessment_id)
    conversation_id = _optional_id(conversation_id, "conversationId")
    message_id = _optional_id(message_id, "messageId")
    if not isinstance(updates, list) or not updates:
        raise ValidationError("updates must be a non-empty list", details={"field": "updates"})
    items = [PathUpdate.from_payload(u) for u in updates]

    assessment = _get_assessment(assessment_id)
    result = _get_result(assessment_id)
    if result is None or result.document is None:
        raise NotFoundError(resource="AssessmentResult", resource_id=assessment_id)

    audit = {
        "assessment_id": assessment_id,
        "conversation_id": conversation_id,
        "message_id": message_id,
        "applied_by": assessment.user_id,
    }
    document, records = path_mutator.apply_batch(result.document, items, **audit)

    if regenerate_section and orchestrator is not None:
        document, ai_record = _regenerate_first_section(document, items, orchestrator, audit)
        if ai_record is not None:
            records.append(ai_record)

    try:
        locked = version_store.lock_result_row(assessment_id)
        version = version_store.append_version(
            assessment_id,
            document,
            "chat_update",
            "Updated " + ", ".join(item.section_path for item in items),
            result=locked,
        )
        for record in records:
            db.session.add(AssessmentChatUpdate(
                assessment_id=assessment_id,
                conversation_id=record.conversation_id,
                message_id=record.message_id,
                update_type=record.update_type,
                section_path=record.section_path,
                old_value=record.old_value,
                new_value=record.new_value,
                reason=record.reason,
                applied_by=record.applied_by,
                created_at=record.created_at,
            ))
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("AssessmentVersion", "assessment_id", assessment_id) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info("Applied %d update(s) as v%d", len(records), version.version_number,
                extra={"assessment_id": assessment_id, "version_number": version.version_number})
    return {
        "success": True,
        "updatedSections": [item.update_type for item in items],
        "version_number": version.version_number,
        "message": "Updates applied successfully",
    }


def list_updates(assessment_id) -> list[dict]:
    assessment_id = _require_id(assessment_id)
    _get_assessment(assessment_id)
    rows = (
        AssessmentChatUpdate.query
        .filter_by(assessment_id=assessment_id)
        .order_by(AssessmentChatUpdate.id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]


# ── Versions ─────────────────────────────────────────────────────────────


def _require_version_number(value) -> int:
    if value is None:
        raise ValidationError("version_number is required", details={"field": "version_number"})
    if isinstance(value, bool):
        raise ValidationError("version_number must be a positive integer", details={"field": "version_number"})
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError("version_number must be a positive integer", details={"field": "version_number"})
    if number < 1 or str(number) != str(value).strip():
        raise ValidationError("version_number must be a positive integer", details={"field": "version_number"})
    return number


def list_versions(assessment_id) -> list[dict]:
    assessment_id = _require_id(assessment_id)
    _get_assessment(assessment_id)
    return [v.to_dict() for v in version_store.list_versions(assessment_id)]


def get_version(assessment_id, version_number) -> dict:
    assessment_id = _require_id(assessment_id)
    number = _require_version_number(version_number)
    return version_store.get_version(assessment_id, number).to_dict(include_snapshot=True)


def restore_version(assessment_id, version_number) -> dict:
    assessment_id = _require_id(assessment_id)
    number = _require_version_number(version_number)
    _get_assessment(assessment_id)
    version = version_store.restore(assessment_id, number)
    logger.info("Restored v%d as v%d", number, version.version_number,
                extra={"assessment_id": assessment_id, "version_number": version.version_number})
    return version.to_dict(include_snapshot=True)
