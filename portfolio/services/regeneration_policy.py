"""Regeneration policy — the hard per-assessment cap on full regenerations.

State machine::

    NONE ──generate──▶ GENERATED(0) ──regenerate──▶ REGENERATED(1) ──regenerate──▶ REGENERATED(2)

A regenerate request at the cap is rejected and the count is left as is.
Targeted edits never touch the counter.

can_regenerate / record_regeneration are pure. claim_regeneration is the
only writer of ``assessment_results.regeneration_count`` and does it with a
single conditional UPDATE, so two concurrent requests that both read the
same count cannot both advance it.
"""

import enum
import logging
from dataclasses import dataclass

from sqlalchemy import select, update

from portfolio.core.exceptions import ConflictError, NotFoundError, RegenerationLimitError
from portfolio.models import db
from portfolio.models.assessment import MAX_REGENERATIONS, AssessmentResult

logger = logging.getLogger(__name__)


class RegenerationState(enum.Enum):
    NONE = "none"
    GENERATED = "generated"
    REGENERATED = "regenerated"


@dataclass(frozen=True)
class RegenerationCounter:
    assessment_id: str | None
    count: int | None   # None: no document generated yet

    @classmethod
    def of(cls, result: AssessmentResult | None, assessment_id: str | None = None):
        if result is None:
            return cls(assessment_id, None)
        return cls(result.assessment_id, result.regeneration_count or 0)


def state_of(counter: RegenerationCounter) -> RegenerationState:
    if counter.count is None:
        return RegenerationState.NONE
    if counter.count == 0:
        return RegenerationState.GENERATED
    return RegenerationState.REGENERATED


def remaining(counter: RegenerationCounter, limit: int = MAX_REGENERATIONS) -> int:
    return max(limit - (counter.count or 0), 0)


def can_regenerate(counter: RegenerationCounter, limit: int = MAX_REGENERATIONS) -> bool:
    return (counter.count or 0) < limit


def record_regeneration(counter: RegenerationCounter, limit: int = MAX_REGENERATIONS) -> RegenerationCounter:
    """Return the advanced counter. Raises RegenerationLimitError at the cap."""
    current = counter.count or 0
    if current >= limit:
        raise RegenerationLimitError(counter.assessment_id, current, limit)
    return RegenerationCounter(counter.assessment_id, current + 1)


def claim_regeneration(assessment_id: str, expected_count: int, limit: int = MAX_REGENERATIONS) -> int:
    """Atomically advance the stored counter from ``expected_count``. No commit.

    Returns:
        The new count.

    Raises:
        RegenerationLimitError: The stored count is already at the cap.
        ConflictError: Another regeneration advanced the count first.
        NotFoundError: No result row exists for the assessment.
    """
    rows = db.session.execute(
        update(AssessmentResult)
        .where(
            AssessmentResult.assessment_id == assessment_id,
            AssessmentResult.regeneration_count == expected_count,
            AssessmentResult.regeneration_count < limit,
        )
        .values(regeneration_count=AssessmentResult.regeneration_count + 1)
        .execution_options(synchronize_session="fetch")
    ).rowcount

    if rows == 1:
        logger.info("Regeneration claimed: %d → %d", expected_count, expected_count + 1,
                    extra={"assessment_id": assessment_id, "regeneration_count": expected_count + 1})
        return expected_count + 1

    stored = db.session.execute(
        select(AssessmentResult.regeneration_count)
        .where(AssessmentResult.assessment_id == assessment_id)
    ).scalar_one_or_none()
    if stored is None:
        raise NotFoundError(resource="AssessmentResult", resource_id=assessment_id)
    if stored >= limit:
        raise RegenerationLimitError(assessment_id, stored, limit)
    logger.warning("Regeneration lost a race: expected=%d stored=%d", expected_count, stored,
                   extra={"assessment_id": assessment_id})
    raise ConflictError("AssessmentResult", "regeneration_count", str(expected_count))
