"""Shared utility functions used across blueprints and services.

get_or_404:       tuple-return lookup for simple routes
get_or_raise:     NotFoundError-raising lookup for services
as_utc:           normalise stored datetimes (SQLite returns naive values)
parse_datetime:   lenient ISO parser (returns None on bad input)
db_commit_or_error: commit with a JSON error response on failure
"""
import logging
from datetime import date, datetime, time, timezone

from flask import jsonify

from rfp_platform.core.exceptions import NotFoundError
from rfp_platform.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(Notification, nid)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found", "code": "ERR_NOT_FOUND"}), 404)
    return obj, None


def get_or_raise(model, pk, label=None, session=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = (session or db.session).get(model, pk)
    if obj is None:
        raise NotFoundError(resource=label or model.__name__, resource_id=pk)
    return obj


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return *value* as a UTC-aware datetime.

    Naive datetimes are assumed to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime to a UTC-aware datetime.

    Returns None for empty/invalid input.  Date-only values mean midnight
    UTC.  A trailing ``Z`` is accepted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        return None


def isoformat(value):
    value = as_utc(value)
    return value.isoformat() if value else None


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    IntegrityError → 409 (duplicate / constraint violation)
    StaleDataError → 409 (concurrent update of a versioned row)
    Other SQLAlchemyError → 500
    """
    from sqlalchemy.exc import IntegrityError, SQLAlchemyError
    from sqlalchemy.orm.exc import StaleDataError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return jsonify({"error": "Duplicate or constraint violation", "code": "ERR_CONFLICT_DUPLICATE"}), 409
    except StaleDataError:
        db.session.rollback()
        logger.warning("Stale row on commit")
        return jsonify({"error": "Record was modified concurrently; reload and retry",
                        "code": "ERR_CONFLICT_STATE"}), 409
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Database error on commit")
        return jsonify({"error": "Database error", "code": "ERR_DATABASE"}), 500
