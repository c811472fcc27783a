"""Standardised API error responses.

Usage
-----
    from portfolio.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Assessment not found")
    return api_error(E.VALIDATION_REQUIRED, "assessment_id is required")
    return api_error(E.RESPONSE_PARSE, "Malformed model output", details=exc.diagnostics)
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Regeneration cap – HTTP 403
    REGENERATION_LIMIT = "ERR_REGENERATION_LIMIT_EXCEEDED"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Stale / malformed section path – HTTP 422
    PATH_RESOLUTION = "ERR_PATH_RESOLUTION"

    # Upstream model – HTTP 502
    UPSTREAM_FAILURE = "ERR_UPSTREAM_FAILURE"
    TRUNCATED_UNRECOVERABLE = "ERR_TRUNCATED_UNRECOVERABLE"
    RESPONSE_PARSE = "ERR_RESPONSE_PARSE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.REGENERATION_LIMIT: 403,
    E.CONFLICT_STATE: 409,
    E.PATH_RESOLUTION: 422,
    E.UPSTREAM_FAILURE: 502,
    E.TRUNCATED_UNRECOVERABLE: 502,
    E.RESPONSE_PARSE: 502,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (regeneration count, parse diagnostics, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
