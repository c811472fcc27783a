"""Version store — append-only snapshot ledger with exactly one current version.

Transaction policy:
    append_version() flushes but never commits; generate / apply-update call
    it and commit counter, audit rows and the version together.
    create_version() and restore() own their commit and roll back on failure.

Concurrency: the assessment's current-document row is locked with
SELECT ... FOR UPDATE before the next version number is computed, and the
partial unique index ``uq_assessment_versions_one_current`` rejects a second
current row at the storage layer. On SQLite FOR UPDATE is a no-op and the
index alone serialises writers.
"""

import copy
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from portfolio.core.exceptions import ConflictError, NotFoundError, ValidationError
from portfolio.models import db
from portfolio.models.assessment import (
    VERSION_SOURCES,
    AssessmentResult,
    AssessmentVersion,
)

logger = logging.getLogger(__name__)


def lock_result_row(assessment_id: str) -> AssessmentResult:
    """Load the current-document row with a row lock. Raises NotFoundError."""
    result = db.session.execute(
        select(AssessmentResult)
        .where(AssessmentResult.assessment_id == assessment_id)
        .with_for_update()
    ).scalar_one_or_none()
    if result is None:
        raise NotFoundError(resource="AssessmentResult", resource_id=assessment_id)
    return result


def _next_version_number(assessment_id: str) -> int:
    current_max = db.session.execute(
        select(func.max(AssessmentVersion.version_number))
        .where(AssessmentVersion.assessment_id == assessment_id)
    ).scalar()
    return (current_max or 0) + 1


def append_version(
    assessment_id: str,
    snapshot: dict,
    created_by: str,
    change_summary: str = "",
    *,
    result: AssessmentResult | None = None,
) -> AssessmentVersion:
    """Stage a new current version and mirror it onto the result row. No commit.

    Args:
        result: The already-locked AssessmentResult, if the caller holds it.
    """
    if created_by not in VERSION_SOURCES:
        raise ValidationError(f"Invalid version source: {created_by}")
    if not isinstance(snapshot, dict):
        raise ValidationError("Version snapshot must be a JSON object")

    if result is None:
        result = lock_result_row(assessment_id)

    version_number = _next_version_number(assessment_id)

    # Clear the old flag in SQL first so the partial unique index never
    # sees two current rows, whatever order the ORM flushes in.
    db.session.execute(
        update(AssessmentVersion)
        .where(
            AssessmentVersion.assessment_id == assessment_id,
            AssessmentVersion.is_current.is_(True),
        )
        .values(is_current=False)
        .execution_options(synchronize_session="fetch")
    )

    version = AssessmentVersion(
        assessment_id=assessment_id,
        version_number=version_number,
        is_current=True,
        snapshot=copy.deepcopy(snapshot),
        created_by=created_by,
        change_summary=change_summary or "",
    )
    db.session.add(version)
    result.document = copy.deepcopy(snapshot)
    db.session.flush()

    logger.info(
        "Version staged: v%d (%s)", version_number, created_by,
        extra={"assessment_id": assessment_id, "version_number": version_number},
    )
    return version


def create_version(
    assessment_id: str,
    snapshot: dict,
    created_by: str,
    change_summary: str = "",
) -> AssessmentVersion:
    """Append a new current version and commit it.

    Raises:
        NotFoundError: The assessment has no result row yet.
        ConflictError: A concurrent writer claimed the same version number.
    """
    try:
        version = append_version(assessment_id, snapshot, created_by, change_summary)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Concurrent version write rejected: %s", exc.orig,
                       extra={"assessment_id": assessment_id})
        raise ConflictError("AssessmentVersion", "assessment_id", assessment_id) from exc
    except Exception:
        db.session.rollback()
        raise
    return version


def get_current(assessment_id: str) -> AssessmentVersion:
    version = db.session.execute(
        select(AssessmentVersion).where(
            AssessmentVersion.assessment_id == assessment_id,
            AssessmentVersion.is_current.is_(True),
        )
    ).scalar_one_or_none()
    if version is None:
        raise NotFoundError(resource="AssessmentVersion", resource_id=assessment_id)
    return version


def get_version(assessment_id: str, version_number: int) -> AssessmentVersion:
    version = db.session.execute(
        select(AssessmentVersion).where(
            AssessmentVersion.assessment_id == assessment_id,
            AssessmentVersion.version_number == version_number,
        )
    ).scalar_one_or_none()
    if version is None:
        raise NotFoundError(
            resource="AssessmentVersion", resource_id=f"{assessment_id}/v{version_number}",
        )
    return version


def list_versions(assessment_id: str) -> list[AssessmentVersion]:
    """All versions, ascending by version_number."""
    return list(
        db.session.execute(
            select(AssessmentVersion)
            .where(AssessmentVersion.assessment_id == assessment_id)
            .order_by(AssessmentVersion.version_number.asc())
        ).scalars()
    )


def restore(assessment_id: str, version_number: int) -> AssessmentVersion:
    """Non-destructive restore: append a new version carrying an old snapshot."""
    source = get_version(assessment_id, version_number)
    return create_version(
        assessment_id,
        source.snapshot,
        "restore",
        f"Restored from version {version_number}",
    )
