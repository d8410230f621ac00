"""Standardised API error responses.

Usage
-----
    from query_workflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Query not found")
    return api_error(E.CONFLICT_STATE, "Item already approved", details={"currentStatus": "approved"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Routing / authorization – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Method / throttling – HTTP 405 / 429
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Storage – HTTP 503, outcome unknown
    STORAGE = "ERR_STORAGE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.STORAGE: 503,
    E.INTERNAL: 500,
}

# Caller errors are rejected before anything is written.
_CALLER_ERRORS = frozenset({
    E.VALIDATION_REQUIRED,
    E.VALIDATION_INVALID,
    E.NOT_FOUND,
    E.CONFLICT_STATE,
    E.FORBIDDEN,
    E.METHOD_NOT_ALLOWED,
    E.RATE_LIMITED,
})


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
        Extra structured payload (current status, field errors, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.

    Caller errors carry ``applied: false`` so a UI never shows an optimistic
    change.  Storage errors carry ``outcome: "unknown"`` instead: the write
    may or may not have committed and the caller must re-fetch.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if code in _CALLER_ERRORS:
        body["applied"] = False
    elif code == E.STORAGE:
        body["outcome"] = "unknown"
        body["retryable"] = True
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(blueprint):
    """Map the core exception hierarchy onto ``api_error`` for one blueprint."""
    import logging

    from query_workflow.core.exceptions import (
        ConflictError,
        NotFoundError,
        StorageError,
        UnauthorizedError,
        ValidationError,
    )

    logger = logging.getLogger(blueprint.import_name)

    @blueprint.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        missing_only = bool(error.details) and all(v == "required" for v in error.details.values())
        code = E.VALIDATION_REQUIRED if missing_only else E.VALIDATION_INVALID
        return api_error(code, str(error), details=error.details)

    @blueprint.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @blueprint.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):
        return api_error(E.FORBIDDEN, str(error))

    @blueprint.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"currentStatus": error.current_status},
        )

    @blueprint.errorhandler(StorageError)
    def _handle_storage(error: StorageError):
        logger.error("Storage error during %s: %s", error.operation, error)
        return api_error(E.STORAGE, str(error))
