"""
Shared pytest fixtures for the Portfolio Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - assessment: Pre-created Assessment with answered questions
    - result_row: Empty AssessmentResult row for the assessment
    - scripted / reply / make_gateway: fake model provider with recorded sleeps
"""

import pytest

from portfolio import create_app
from portfolio.ai.gateway import LLMGateway, LLMProvider
from portfolio.models import db as _db
from portfolio.models.assessment import Assessment, AssessmentResponse, AssessmentResult


# ── Fake provider ────────────────────────────────────────────────────────


def make_reply(content: str, stop_reason: str = "end_turn", prompt_tokens: int = 120, completion_tokens: int = 80):
    """A scripted provider outcome."""
    return {
        "content": content,
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "model": "local-stub",
        "stop_reason": stop_reason,
    }


class ScriptedProvider(LLMProvider):
    """Plays back a list of outcomes: reply() dicts or exceptions to raise.

    ``chunk_size`` splits streamed content; ``fail_after_chunks`` raises
    ``stream_error`` mid-stream; ``on_chunk`` runs after each yielded chunk.
    """

    name = "local"

    def __init__(self, outcomes, *, chunk_size=8, fail_after_chunks=None, stream_error=None, on_chunk=None):
        self.outcomes = list(outcomes)
        self.chunk_size = chunk_size
        self.fail_after_chunks = fail_after_chunks
        self.stream_error = stream_error
        self.on_chunk = on_chunk
        self.calls = []
        self.stream_closed = False

    def _next(self, messages, model, kwargs):
        self.calls.append({"messages": messages, "model": model, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return dict(outcome)

    def chat(self, messages, model, **kwargs):
        return self._next(messages, model, kwargs)

    def stream(self, messages, model, **kwargs):
        result = self._next(messages, model, kwargs)
        content = result.pop("content")
        try:
            for n, i in enumerate(range(0, len(content), self.chunk_size), start=1):
                yield {"type": "text", "text": content[i:i + self.chunk_size]}
                if self.on_chunk is not None:
                    self.on_chunk(n)
                if self.fail_after_chunks is not None and n >= self.fail_after_chunks:
                    raise self.stream_error
            yield {"type": "final", **result}
        finally:
            self.stream_closed = True


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture()
def scripted():
    """The ScriptedProvider class, for building per-test providers."""
    return ScriptedProvider


@pytest.fixture()
def reply():
    return make_reply


@pytest.fixture()
def sleeps():
    return SleepRecorder()


@pytest.fixture()
def make_gateway(sleeps):
    """Build an LLMGateway around a ScriptedProvider with recorded sleeps."""

    def _make(provider, **kwargs):
        kwargs.setdefault("default_model", "local-stub")
        return LLMGateway(provider, sleep=sleeps, **kwargs)

    return _make


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        # Tests may inject a fake gateway on the app
        if hasattr(app, "_llm_gateway"):
            del app._llm_gateway
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def assessment():
    """Create an answered assessment and return its id."""
    a = Assessment(
        user_id="user-0001",
        company_name="Northwind Traders",
        company_size="51-200",
        industry="Retail",
        user_role="Operations Lead",
        status="submitted",
    )
    _db.session.add(a)
    _db.session.flush()
    for step, key, value in (
        (1, "top_frustration", ["manual reporting"]),
        (2, "data_maturity", 2),
        (3, "timeline", "90 days"),
    ):
        _db.session.add(AssessmentResponse(
            assessment_id=a.id, step_number=step, question_key=key, answer_value=value,
        ))
    _db.session.commit()
    return a.id


@pytest.fixture()
def result_row(assessment):
    """An AssessmentResult with no document yet."""
    row = AssessmentResult(assessment_id=assessment, regeneration_count=0)
    _db.session.add(row)
    _db.session.commit()
    return row
