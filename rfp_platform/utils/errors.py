"""Standardised API error responses.

Usage
-----
    from rfp_platform.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "RFP not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")

Service exceptions (``rfp_platform.core.exceptions``) are mapped to the
same body shape by ``register_error_handlers`` so blueprints can simply
let them propagate.
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from rfp_platform.core.exceptions import (
    ArchivedReadOnlyError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SubmissionsClosedError,
    UnauthenticatedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    ARCHIVED_READ_ONLY = "ERR_ARCHIVED_READ_ONLY"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.INVALID_TRANSITION: 409,
    E.ARCHIVED_READ_ONLY: 409,
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
        Extra structured payload (validation fields, blocking tasks, etc.).

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


# ── App-level handlers ────────────────────────────────────────────────


def register_error_handlers(app):
    """Map the platform exception hierarchy to JSON error responses."""

    @app.errorhandler(UnauthenticatedError)
    def _handle_unauthenticated(error):
        return api_error(E.UNAUTHENTICATED, str(error))

    @app.errorhandler(ForbiddenError)
    def _handle_forbidden(error):
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error):
        return api_error(
            E.INVALID_TRANSITION, error.reason,
            details={
                "from": error.from_stage,
                "to": error.to_stage,
                "required_tasks_incomplete": error.result.get("required_tasks_incomplete", []),
            },
        )

    @app.errorhandler(ArchivedReadOnlyError)
    def _handle_archived(error):
        return api_error(E.ARCHIVED_READ_ONLY, str(error))

    @app.errorhandler(ConflictError)
    def _handle_conflict(error):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @app.errorhandler(SubmissionsClosedError)
    def _handle_submissions_closed(error):
        return api_error(E.CONFLICT_STATE, str(error))

    @app.errorhandler(StaleDataError)
    def _handle_stale(error):
        from rfp_platform.models import db

        db.session.rollback()
        logger.warning("Concurrent update rejected: %s", error)
        return api_error(E.CONFLICT_STATE, "Record was modified concurrently; reload and retry")

    @app.errorhandler(SQLAlchemyError)
    def _handle_database(error):
        from rfp_platform.models import db

        logger.exception("Database error")
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")
