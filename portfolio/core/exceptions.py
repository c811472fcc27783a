"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. Nothing in the service or
AI layer returns error dicts.

Usage:
    from portfolio.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Assessment", resource_id=assessment_id)
    raise ValidationError("assessment_id is required")
    raise PathResolutionError("quick_wins[9].title", "index 9 out of range (len=3)")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Assessment", "AssessmentVersion").
        resource_id: The key that was looked up. Included in logs and the message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is missing or malformed (identifiers, update payloads).

    Reported immediately, never retried. Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a concurrent writer won a race on the same row.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} {field}={value!r} was changed concurrently")


class RegenerationLimitError(Exception):
    """Raised when an explicit regenerate request hits the per-assessment cap.

    User-facing and non-retryable. The stored count is left unchanged.
    """

    def __init__(self, assessment_id: str | None, count: int, limit: int) -> None:
        self.assessment_id = assessment_id
        self.count = count
        self.limit = limit
        super().__init__(
            f"Regeneration limit reached: {count} of {limit} regenerations used"
        )


class PathResolutionError(Exception):
    """Raised when a section path is malformed or does not resolve in the document.

    Indicates a stale or malformed edit request; user-facing, non-retryable.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot resolve path {path!r}: {reason}")


# ── AI errors ────────────────────────────────────────────────────────────────


class AIError(Exception):
    """Base class for failures while acquiring or decoding model output."""


class UpstreamError(AIError):
    """The upstream model call failed. Not retried."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UpstreamRateLimitError(UpstreamError):
    """The upstream model signalled rate limiting. The only retried failure class."""


class GenerationCancelledError(UpstreamError):
    """A streaming generation was cancelled before the final message arrived."""


class ResponseParseError(AIError):
    """Model output could not be turned into a JSON object.

    Carries diagnostics for operator triage; the raw text itself is never
    attached so it does not leak into logs or HTTP responses.
    """

    def __init__(
        self,
        message: str,
        *,
        raw_length: int = 0,
        was_truncated: bool = False,
        brace_delta: int = 0,
        stop_reason: str | None = None,
    ) -> None:
        self.raw_length = raw_length
        self.was_truncated = was_truncated
        self.brace_delta = brace_delta
        self.stop_reason = stop_reason
        super().__init__(message)

    @property
    def diagnostics(self) -> dict:
        return {
            "raw_length": self.raw_length,
            "was_truncated": self.was_truncated,
            "brace_delta": self.brace_delta,
            "stop_reason": self.stop_reason,
        }


class TruncatedResponseError(ResponseParseError):
    """A truncated response (stop reason ``max_tokens``) could not be repaired."""
