"""assessment_results_versioning

Creates the assessment results tables:
  - assessments / assessment_responses  — questionnaire input
  - assessment_results                  — one current-document row per assessment,
                                          regeneration counter capped at 2
  - assessment_versions                 — append-only snapshots, one current per assessment
  - assessment_chat_updates             — append-only audit of targeted edits
  - ai_conversation_messages            — chat context for section regeneration
  - ai_usage_logs                       — per-call token / cost / outcome

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5e1f0a2b7c31
Revises:
Create Date: 2026-10-19 09:12:44.310215
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1f0a2b7c31'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Assessment ────────────────────────────────────────────────────────
    if "assessments" not in existing:
        op.create_table(
            "assessments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=True),
            sa.Column("company_name", sa.String(length=200), nullable=True),
            sa.Column("company_size", sa.String(length=50), nullable=True),
            sa.Column("industry", sa.String(length=100), nullable=True),
            sa.Column("user_role", sa.String(length=100), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True,
                      comment="draft | submitted | completed"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_assessments_user_id", "assessments", ["user_id"])

    if "assessment_responses" not in existing:
        op.create_table(
            "assessment_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("assessment_id", sa.String(length=36), nullable=False),
            sa.Column("step_number", sa.Integer(), nullable=True),
            sa.Column("question_key", sa.String(length=100), nullable=False),
            sa.Column("question_text", sa.Text(), nullable=True),
            sa.Column("answer_value", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_assessment_responses_assessment_id", "assessment_responses", ["assessment_id"])

    # ── AssessmentResult (current-document row) ───────────────────────────
    if "assessment_results" not in existing:
        op.create_table(
            "assessment_results",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("assessment_id", sa.String(length=36), nullable=False),
            sa.Column("document", sa.JSON(), nullable=True),
            sa.Column("regeneration_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("generated_by", sa.String(length=30), nullable=True),
            sa.Column("model_version", sa.String(length=80), nullable=True),
            sa.Column("prompt_tokens", sa.Integer(), nullable=True),
            sa.Column("completion_tokens", sa.Integer(), nullable=True),
            sa.Column("stop_reason", sa.String(length=30), nullable=True),
            sa.Column("generated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "regeneration_count >= 0 AND regeneration_count <= 2",
                name="ck_assessment_results_regeneration_count",
            ),
            sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("assessment_id"),
        )

    # ── AssessmentVersion (append-only) ───────────────────────────────────
    if "assessment_versions" not in existing:
        op.create_table(
            "assessment_versions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("assessment_id", sa.String(length=36), nullable=False),
            sa.Column("version_number", sa.Integer(), nullable=False),
            sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("snapshot", sa.JSON(), nullable=False),
            sa.Column("created_by", sa.String(length=30), nullable=False,
                      comment="ai_generation | ai_regeneration | chat_update | restore | manual_snapshot"),
            sa.Column("change_summary", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("assessment_id", "version_number", name="uq_assessment_version_number"),
        )
        op.create_index("ix_assessment_versions_assessment_id", "assessment_versions", ["assessment_id"])
        op.create_index(
            "uq_assessment_versions_one_current",
            "assessment_versions",
            ["assessment_id"],
            unique=True,
            sqlite_where=sa.text("is_current = 1"),
            postgresql_where=sa.text("is_current"),
        )

    # ── AssessmentChatUpdate (append-only audit) ──────────────────────────
    if "assessment_chat_updates" not in existing:
        op.create_table(
            "assessment_chat_updates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("assessment_id", sa.String(length=36), nullable=False),
            sa.Column("conversation_id", sa.String(length=36), nullable=True),
            sa.Column("message_id", sa.String(length=36), nullable=True),
            sa.Column("update_type", sa.String(length=80), nullable=False),
            sa.Column("section_path", sa.String(length=300), nullable=False),
            sa.Column("old_value", sa.JSON(), nullable=True),
            sa.Column("new_value", sa.JSON(), nullable=True),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("applied_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_assessment_chat_updates_assessment_id", "assessment_chat_updates", ["assessment_id"])
        op.create_index("ix_assessment_chat_updates_conversation_id", "assessment_chat_updates", ["conversation_id"])

    # ── AI tables ─────────────────────────────────────────────────────────
    if "ai_conversation_messages" not in existing:
        op.create_table(
            "ai_conversation_messages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.String(length=36), nullable=False),
            sa.Column("assessment_id", sa.String(length=36), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("role IN ('user','assistant','system')", name="ck_ai_msg_role"),
            sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_ai_conversation_messages_conversation_id", "ai_conversation_messages", ["conversation_id"])
        op.create_index("ix_ai_conversation_messages_assessment_id", "ai_conversation_messages", ["assessment_id"])

    if "ai_usage_logs" not in existing:
        op.create_table(
            "ai_usage_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("provider", sa.String(length=30), nullable=False),
            sa.Column("model", sa.String(length=80), nullable=False),
            sa.Column("prompt_tokens", sa.Integer(), nullable=True),
            sa.Column("completion_tokens", sa.Integer(), nullable=True),
            sa.Column("total_tokens", sa.Integer(), nullable=True),
            sa.Column("cost_usd", sa.Float(), nullable=True),
            sa.Column("latency_ms", sa.Integer(), nullable=True),
            sa.Column("user", sa.String(length=150), nullable=True),
            sa.Column("purpose", sa.String(length=100), nullable=True),
            sa.Column("assessment_id", sa.String(length=36), nullable=True),
            sa.Column("stop_reason", sa.String(length=30), nullable=True),
            sa.Column("streamed", sa.Boolean(), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_ai_usage_logs_assessment_id", "ai_usage_logs", ["assessment_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    for table in (
        "ai_usage_logs",
        "ai_conversation_messages",
        "assessment_chat_updates",
        "assessment_versions",
        "assessment_results",
        "assessment_responses",
        "assessments",
    ):
        if table in existing:
            op.drop_table(table)
