"""
Portfolio Platform
Assessment domain models.

Models:
    - Assessment: questionnaire header (company, owner)
    - AssessmentResponse: one answered question
    - AssessmentResult: the single current-document row per assessment,
      carrying the regeneration counter and generation metadata
    - AssessmentVersion: append-only snapshot ledger (exactly one current)
    - AssessmentChatUpdate: append-only audit trail of targeted edits
"""

import copy
import uuid
from datetime import datetime, timezone

from sqlalchemy import event, inspect

from portfolio.models import db

MAX_REGENERATIONS = 2

VERSION_SOURCES = {"ai_generation", "ai_regeneration", "chat_update", "restore", "manual_snapshot"}


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


# ── Assessment ───────────────────────────────────────────────────────────────

class Assessment(db.Model):
    __tablename__ = "assessments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), nullable=True, index=True)
    company_name = db.Column(db.String(200), default="")
    company_size = db.Column(db.String(50), default="")
    industry = db.Column(db.String(100), default="")
    user_role = db.Column(db.String(100), default="")
    status = db.Column(db.String(20), default="draft", comment="draft | submitted | completed")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    responses = db.relationship(
        "AssessmentResponse",
        backref="assessment",
        lazy="dynamic",
        order_by="AssessmentResponse.step_number",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_name": self.company_name,
            "company_size": self.company_size,
            "industry": self.industry,
            "user_role": self.user_role,
            "status": self.status,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Assessment {self.id} {self.company_name!r}>"


class AssessmentResponse(db.Model):
    __tablename__ = "assessment_responses"

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(
        db.String(36), db.ForeignKey("assessments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_number = db.Column(db.Integer, default=1)
    question_key = db.Column(db.String(100), nullable=False)
    question_text = db.Column(db.Text, default="")
    answer_value = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "assessment_id": self.assessment_id,
            "step_number": self.step_number,
            "question_key": self.question_key,
            "question_text": self.question_text,
            "answer_value": self.answer_value,
        }


# ── AssessmentResult (current-document row) ─────────────────────────────────

class AssessmentResult(db.Model):
    """
    One row per assessment.

    ``document`` mirrors the snapshot of the current AssessmentVersion and is
    written only by the version store. ``regeneration_count`` is the
    regeneration counter; it is only ever advanced by a conditional UPDATE.
    """

    __tablename__ = "assessment_results"
    __table_args__ = (
        db.CheckConstraint(
            f"regeneration_count >= 0 AND regeneration_count <= {MAX_REGENERATIONS}",
            name="ck_assessment_results_regeneration_count",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(
        db.String(36), db.ForeignKey("assessments.id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    document = db.Column(db.JSON, nullable=True)
    regeneration_count = db.Column(db.Integer, nullable=False, default=0)

    generated_by = db.Column(db.String(30), default="claude")
    model_version = db.Column(db.String(80), default="")
    prompt_tokens = db.Column(db.Integer, default=0)
    completion_tokens = db.Column(db.Integer, default=0)
    stop_reason = db.Column(db.String(30), nullable=True)
    generated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self, include_document=True):
        d = {
            "assessment_id": self.assessment_id,
            "regeneration_count": self.regeneration_count,
            "regenerations_remaining": MAX_REGENERATIONS - (self.regeneration_count or 0),
            "generated_by": self.generated_by,
            "model_version": self.model_version,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "stop_reason": self.stop_reason,
            "generated_at": _iso(self.generated_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_document:
            d["document"] = copy.deepcopy(self.document)
        return d


# ── AssessmentVersion (append-only ledger) ──────────────────────────────────

class AssessmentVersion(db.Model):
    """
    Immutable numbered snapshot of a ResultDocument.

    version_number runs 1..N per assessment without gaps. The partial unique
    index keeps at most one ``is_current`` row per assessment at the storage
    layer; the version store keeps it at exactly one.
    """

    __tablename__ = "assessment_versions"
    __table_args__ = (
        db.UniqueConstraint("assessment_id", "version_number", name="uq_assessment_version_number"),
        db.Index(
            "uq_assessment_versions_one_current",
            "assessment_id",
            unique=True,
            sqlite_where=db.text("is_current = 1"),
            postgresql_where=db.text("is_current"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(
        db.String(36), db.ForeignKey("assessments.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    version_number = db.Column(db.Integer, nullable=False)
    is_current = db.Column(db.Boolean, nullable=False, default=False)
    snapshot = db.Column(db.JSON, nullable=False)
    created_by = db.Column(db.String(30), nullable=False, default="ai_generation",
                           comment="ai_generation | ai_regeneration | chat_update | restore | manual_snapshot")
    change_summary = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self, include_snapshot=False):
        d = {
            "id": self.id,
            "assessment_id": self.assessment_id,
            "version_number": self.version_number,
            "is_current": self.is_current,
            "created_by": self.created_by,
            "change_summary": self.change_summary,
            "created_at": _iso(self.created_at),
        }
        if include_snapshot:
            d["snapshot"] = copy.deepcopy(self.snapshot)
        return d

    def __repr__(self):
        flag = " current" if self.is_current else ""
        return f"<AssessmentVersion {self.assessment_id} v{self.version_number}{flag}>"


# ── AssessmentChatUpdate (UpdateRecord audit) ───────────────────────────────

class AssessmentChatUpdate(db.Model):
    """Audit row written once per applied mutation. Never read back to rebuild state."""

    __tablename__ = "assessment_chat_updates"

    id = db.Column(db.Integer, primary_key=True)
    assessment_id = db.Column(
        db.String(36), db.ForeignKey("assessments.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    conversation_id = db.Column(db.String(36), nullable=True, index=True)
    message_id = db.Column(db.String(36), nullable=True)
    update_type = db.Column(db.String(80), nullable=False)
    section_path = db.Column(db.String(300), nullable=False)
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    reason = db.Column(db.Text, default="")
    applied_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "assessment_id": self.assessment_id,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "update_type": self.update_type,
            "section_path": self.section_path,
            "old_value": copy.deepcopy(self.old_value),
            "new_value": copy.deepcopy(self.new_value),
            "reason": self.reason,
            "applied_by": self.applied_by,
            "created_at": _iso(self.created_at),
        }


# ── Append-only guards ──────────────────────────────────────────────────────

_VERSION_MUTABLE_COLUMNS = frozenset({"is_current"})


@event.listens_for(AssessmentVersion, "before_update")
def _guard_version_update(mapper, connection, target):
    state = inspect(target)
    for attr in state.attrs:
        if attr.key in _VERSION_MUTABLE_COLUMNS:
            continue
        if attr.history.has_changes():
            raise ValueError(
                f"AssessmentVersion is append-only; refusing to modify {attr.key!r} "
                f"on v{target.version_number} of {target.assessment_id}"
            )


@event.listens_for(AssessmentVersion, "before_delete")
def _guard_version_delete(mapper, connection, target):
    raise ValueError("AssessmentVersion rows are never deleted")


@event.listens_for(AssessmentChatUpdate, "before_update")
def _guard_update_record_update(mapper, connection, target):
    raise ValueError("AssessmentChatUpdate is append-only")


@event.listens_for(AssessmentChatUpdate, "before_delete")
def _guard_update_record_delete(mapper, connection, target):
    raise ValueError("AssessmentChatUpdate rows are never deleted")
