"""
Portfolio Platform
AI models.

Models:
    - AIUsageLog: token/cost/outcome tracking per upstream model call
    - AIConversationMessage: chat history read as context for section regeneration
"""

from datetime import datetime, timezone

from portfolio.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AI_PROVIDERS = {"anthropic", "local"}

USAGE_PURPOSES = {"assessment_generation", "assessment_regeneration", "section_regeneration"}

# Token costs per 1M tokens (input/output)
TOKEN_COSTS = {
    "claude-sonnet-4-20250514":    {"input": 3.00, "output": 15.00},
    "claude-3-5-sonnet-20241022":  {"input": 3.00, "output": 15.00},
    "claude-3-5-haiku-20241022":   {"input": 1.00, "output": 5.00},
    "claude-opus-4-20250514":      {"input": 15.00, "output": 75.00},
    "local-stub":                  {"input": 0.00, "output": 0.00},
}


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Calculate USD cost for a given model + token counts."""
    costs = TOKEN_COSTS.get(model, {"input": 0.0, "output": 0.0})
    return (prompt_tokens * costs["input"] + completion_tokens * costs["output"]) / 1_000_000


# ── AIUsageLog ────────────────────────────────────────────────────────────────

class AIUsageLog(db.Model):
    """
    Tracks token usage, cost and outcome for every upstream model call.
    One row per call, written after retries are exhausted or the call succeeds.
    """

    __tablename__ = "ai_usage_logs"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(30), nullable=False, comment="anthropic / local")
    model = db.Column(db.String(80), nullable=False)
    prompt_tokens = db.Column(db.Integer, default=0)
    completion_tokens = db.Column(db.Integer, default=0)
    total_tokens = db.Column(db.Integer, default=0)
    cost_usd = db.Column(db.Float, default=0.0)
    latency_ms = db.Column(db.Integer, default=0, comment="End-to-end latency in milliseconds")

    # Context
    user = db.Column(db.String(150), default="system")
    purpose = db.Column(db.String(100), default="", comment="assessment_generation, section_regeneration, ...")
    assessment_id = db.Column(db.String(36), nullable=True, index=True)

    # Outcome
    stop_reason = db.Column(db.String(30), nullable=True, comment="end_turn | max_tokens | ...")
    streamed = db.Column(db.Boolean, default=False)
    attempts = db.Column(db.Integer, default=1, comment="Including rate-limit retries")
    success = db.Column(db.Boolean, default=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "provider": self.provider,
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd or 0, 6),
            "latency_ms": self.latency_ms,
            "user": self.user,
            "purpose": self.purpose,
            "assessment_id": self.assessment_id,
            "stop_reason": self.stop_reason,
            "streamed": self.streamed,
            "attempts": self.attempts,
            "success": self.success,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ── AIConversationMessage ─────────────────────────────────────────────────────

class AIConversationMessage(db.Model):
    """Individual message within an assessment chat conversation."""

    __tablename__ = "ai_conversation_messages"

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.String(36), nullable=False, index=True)
    assessment_id = db.Column(
        db.String(36), db.ForeignKey("assessments.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    role = db.Column(db.String(20), nullable=False, comment="user | assistant | system")
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint(
            "role IN ('user','assistant','system')",
            name="ck_ai_msg_role",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "assessment_id": self.assessment_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AIConversationMessage conv={self.conversation_id} role={self.role}>"
