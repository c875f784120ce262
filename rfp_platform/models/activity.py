"""
RFP Platform
Activity log domain model.

Models:
    - ActivityLog: immutable, append-only trail of buyer, supplier and
      system events on an RFP.
"""

import json
import logging
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from rfp_platform.models import db

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

ACTOR_ROLES = {"BUYER", "SUPPLIER", "SYSTEM"}

ACTIVITY_EVENT_TYPES = {
    # RFP lifecycle
    "RFP_CREATED",
    "RFP_UPDATED",
    "RFP_STAGE_CHANGED",
    "RFP_ARCHIVED",
    "RFP_OPPORTUNITY_SCORED",
    "RFP_TIMELINE_UPDATED",
    "RFP_TIMELINE_TICK",
    "RFP_AUTO_ADVANCED",
    "RFP_SUBMISSIONS_REOPENED",
    "SUPPLIER_OUTCOMES_VIEWED",
    # Stage tasks
    "STAGE_TASKS_AUTOMATED",
    "STAGE_TASKS_GENERATED",
    "STAGE_TASK_CREATED",
    "STAGE_TASK_UPDATED",
    # Suppliers
    "SUPPLIER_INVITED",
    "SUPPLIER_RESPONSE_SAVED",
    "SUPPLIER_RESPONSE_SUBMITTED",
    "READINESS_RECALCULATED",
    # Session
    "USER_LOGIN",
}


class ActivityLog(db.Model):
    """
    One row per event.  ``details_json`` carries the event-specific payload
    (old/new stage, applied actions, scores, ...).
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_rfp_ts", "rfp_id", "created_at"),
        db.Index("idx_activity_event", "event_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rfp_id = db.Column(db.Integer, db.ForeignKey("rfps.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    supplier_contact_id = db.Column(
        db.Integer, db.ForeignKey("supplier_contacts.id", ondelete="SET NULL"), nullable=True,
    )
    supplier_response_id = db.Column(
        db.Integer, db.ForeignKey("supplier_responses.id", ondelete="SET NULL"), nullable=True,
    )
    event_type = db.Column(db.String(60), nullable=False)
    actor_role = db.Column(db.String(20), nullable=False, default="SYSTEM")
    summary = db.Column(db.String(500), nullable=False, default="")
    details_json = db.Column(db.Text, default="{}")
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(300), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rfp_id": self.rfp_id,
            "user_id": self.user_id,
            "supplier_contact_id": self.supplier_contact_id,
            "supplier_response_id": self.supplier_response_id,
            "event_type": self.event_type,
            "actor_role": self.actor_role,
            "summary": self.summary,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.event_type} on RFP {self.rfp_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────


def _request_metadata() -> tuple[str | None, str | None]:
    from flask import has_request_context, request

    if not has_request_context():
        return None, None
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = forwarded.split(",")[0].strip() if forwarded else request.remote_addr
    return ip, (request.user_agent.string or "")[:300] or None


def log_activity(
    *,
    event_type: str,
    actor_role: str = "SYSTEM",
    summary: str = "",
    rfp_id: int | None = None,
    user_id: int | None = None,
    supplier_contact_id: int | None = None,
    supplier_response_id: int | None = None,
    details: dict | None = None,
    session=None,
) -> ActivityLog | None:
    """
    Append one activity row inside a savepoint.

    Best effort: a database failure is logged and swallowed so the
    caller's operation carries on.  The savepoint keeps the outer
    transaction usable after such a failure.  Callers keep commit control.

    Returns the flushed ActivityLog, or None when the write failed.
    """
    session = session or db.session
    if actor_role not in ACTOR_ROLES:
        actor_role = "SYSTEM"
    ip_address, user_agent = _request_metadata()

    entry = ActivityLog(
        rfp_id=rfp_id,
        user_id=user_id,
        supplier_contact_id=supplier_contact_id,
        supplier_response_id=supplier_response_id,
        event_type=event_type,
        actor_role=actor_role,
        summary=(summary or "")[:500],
        details_json=json.dumps(details or {}, default=str),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        with session.begin_nested():
            session.add(entry)
    except SQLAlchemyError:
        logger.exception("Failed to write activity log event_type=%s rfp_id=%s", event_type, rfp_id)
        return None
    return entry
