"""Path mutator — targeted edits of a ResultDocument via section paths.

Every mutation works on a deep copy; the caller's document (and therefore
any stored version snapshot) is never touched. Resolution failures are
raised as PathResolutionError, never as a bare KeyError / IndexError /
TypeError.
"""

import copy
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from portfolio.ai import path_expression
from portfolio.ai.path_expression import IndexStep, KeyStep
from portfolio.core.exceptions import PathResolutionError, ValidationError

logger = logging.getLogger(__name__)

# column widths of assessment_chat_updates
MAX_SECTION_PATH_LENGTH = 300
MAX_UPDATE_TYPE_LENGTH = 80


@dataclass
class UpdateRecord:
    """Audit entry for one applied mutation; mirrors AssessmentChatUpdate."""

    section_path: str
    old_value: object
    new_value: object
    update_type: str = ""
    reason: str = ""
    assessment_id: str | None = None
    conversation_id: str | None = None
    message_id: str | None = None
    applied_by: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PathUpdate:
    """One requested edit."""

    section_path: str
    new_value: object
    update_type: str = ""
    reason: str = ""
    old_value: object = None   # as seen by the client; informational only

    @classmethod
    def from_payload(cls, payload) -> "PathUpdate":
        """Build from the camelCase apply-update payload item."""
        if not isinstance(payload, dict):
            raise ValidationError("Each update must be an object")
        path = payload.get("sectionPath")
        if not isinstance(path, str) or not path.strip():
            raise ValidationError("sectionPath is required", details={"field": "sectionPath"})
        path = path.strip()
        if len(path) > MAX_SECTION_PATH_LENGTH:
            raise ValidationError(
                f"sectionPath must be at most {MAX_SECTION_PATH_LENGTH} characters",
                details={"field": "sectionPath"},
            )
        if "newValue" not in payload:
            raise ValidationError("newValue is required", details={"field": "newValue"})
        update_type = str(payload.get("updateType") or path.split(".")[0].split("[")[0])
        if len(update_type) > MAX_UPDATE_TYPE_LENGTH:
            raise ValidationError(
                f"updateType must be at most {MAX_UPDATE_TYPE_LENGTH} characters",
                details={"field": "updateType"},
            )
        return cls(
            section_path=path,
            new_value=payload["newValue"],
            update_type=update_type,
            reason=str(payload.get("reason") or ""),
            old_value=payload.get("oldValue"),
        )


def _step_into(container, step, path: str):
    if isinstance(step, KeyStep):
        if not isinstance(container, dict):
            raise PathResolutionError(path, f"cannot read key {step.key!r} from {type(container).__name__}")
        if step.key not in container:
            raise PathResolutionError(path, f"key {step.key!r} does not exist")
        value = container[step.key]
    else:
        if not isinstance(container, list):
            raise PathResolutionError(path, f"cannot index {type(container).__name__} with [{step.index}]")
        if step.index >= len(container):
            raise PathResolutionError(path, f"index {step.index} out of range (len={len(container)})")
        value = container[step.index]

    if value is None:
        raise PathResolutionError(path, f"{step} is null")
    return value


def resolve(document: dict, path: str):
    """Read the value at ``path`` without modifying anything."""
    steps = path_expression.parse(path)
    current = document
    for step in steps[:-1]:
        current = _step_into(current, step, path)
    last = steps[-1]
    if isinstance(last, KeyStep):
        if not isinstance(current, dict):
            raise PathResolutionError(path, f"cannot read key {last.key!r} from {type(current).__name__}")
        return copy.deepcopy(current.get(last.key))
    if not isinstance(current, list):
        raise PathResolutionError(path, f"cannot index {type(current).__name__} with {last}")
    if last.index >= len(current):
        raise PathResolutionError(path, f"index {last.index} out of range (len={len(current)})")
    return copy.deepcopy(current[last.index])


def _write(document: dict, path: str, new_value):
    """Write in place on ``document``; return the value that was replaced."""
    steps = path_expression.parse(path)
    parent = document
    for step in steps[:-1]:
        parent = _step_into(parent, step, path)

    last = steps[-1]
    if isinstance(last, KeyStep):
        if not isinstance(parent, dict):
            raise PathResolutionError(path, f"cannot set key {last.key!r} on {type(parent).__name__}")
        old_value = parent.get(last.key)
        parent[last.key] = copy.deepcopy(new_value)
    else:
        if not isinstance(parent, list):
            raise PathResolutionError(path, f"cannot index {type(parent).__name__} with {last}")
        if last.index >= len(parent):
            raise PathResolutionError(path, f"index {last.index} out of range (len={len(parent)})")
        old_value = parent[last.index]
        parent[last.index] = copy.deepcopy(new_value)
    return copy.deepcopy(old_value)


def apply(document: dict, path: str, new_value, **audit) -> tuple[dict, UpdateRecord]:
    """Apply one edit to a copy of ``document``.

    Args:
        audit: update_type, reason, assessment_id, conversation_id,
               message_id, applied_by for the UpdateRecord.

    Returns:
        (new_document, UpdateRecord); ``old_value`` is what was found at the path.
    """
    working = copy.deepcopy(document)
    old_value = _write(working, path, new_value)
    record = UpdateRecord(
        section_path=path,
        old_value=old_value,
        new_value=copy.deepcopy(new_value),
        **audit,
    )
    return working, record


def apply_batch(document: dict, updates: list[PathUpdate], **audit) -> tuple[dict, list[UpdateRecord]]:
    """Apply ``updates`` in order to one working copy. All-or-nothing.

    Raises:
        PathResolutionError: On the first update that does not resolve; no
            records are returned and ``document`` is unchanged.
    """
    working = copy.deepcopy(document)
    records = []
    for position, item in enumerate(updates):
        try:
            old_value = _write(working, item.section_path, item.new_value)
        except PathResolutionError:
            logger.info("Batch rejected at update %d/%d: %s", position + 1, len(updates), item.section_path)
            raise
        records.append(UpdateRecord(
            section_path=item.section_path,
            old_value=old_value,
            new_value=copy.deepcopy(item.new_value),
            update_type=item.update_type,
            reason=item.reason,
            **audit,
        ))
    return working, records
